import logging

import numpy as np
import pandas as pd
import pytest

from pedgrowth.errors import InvalidInputError, ReferenceDataNotFoundError
from pedgrowth.models import ChartType, Gender
from pedgrowth.reference import ReferenceStore, load_who_reference, who_table_to_frame
from pedgrowth.zscores import lms_value


def test_tc001_exact_match_returns_row_unchanged(store) -> None:
    bracket = store.lookup(Gender.MALE, ChartType.HFA, 30)
    assert bracket.lower is bracket.upper
    assert bracket.exact
    params = store.interpolate(Gender.MALE, ChartType.HFA, 30)
    assert (params.L, params.M, params.S) == (1.0, 54.0, 0.04)
    assert not params.interpolated


def test_tc002_bracket_between_rows(store) -> None:
    bracket = store.lookup(Gender.MALE, ChartType.HFA, 100)
    assert bracket.lower.age_days == 30
    assert bracket.upper.age_days == 365


def test_tc003_linear_interpolation_by_age_ratio(store) -> None:
    params = store.interpolate(Gender.MALE, ChartType.HFA, 15)
    assert params.interpolated
    assert params.M == pytest.approx(52.0)
    assert params.S == pytest.approx(0.04)


def test_tc004_sd_curves_interpolated(store) -> None:
    params = store.interpolate(Gender.MALE, ChartType.HFA, 15)
    low = float(lms_value(-2.0, 1.0, 50.0, 0.04))
    high = float(lms_value(-2.0, 1.0, 54.0, 0.04))
    assert params.sd_values["sd2neg"] == pytest.approx((low + high) / 2)


def test_tc005_out_of_range_clamps_with_warning(store, caplog) -> None:
    caplog.set_level(logging.WARNING)
    bracket = store.lookup(Gender.MALE, ChartType.WFA, 400)
    assert bracket.clamped
    assert bracket.lower is bracket.upper
    assert bracket.lower.age_days == 30
    assert any("clamping" in str(record.message) for record in caplog.records)


def test_tc006_negative_age_rejected(store) -> None:
    with pytest.raises(InvalidInputError):
        store.lookup(Gender.MALE, ChartType.WFA, -1)


def test_tc007_missing_group_not_found(store) -> None:
    with pytest.raises(ReferenceDataNotFoundError) as exc_info:
        store.lookup(Gender.FEMALE, ChartType.WFA, 10)
    assert exc_info.value.code == "NOT_FOUND"


def test_tc008_interpolate_many_clamps(store) -> None:
    L, M, S = store.interpolate_many(Gender.MALE, ChartType.HFA, np.array([0.0, 15.0, 5000.0]))
    assert np.allclose(M, [50.0, 52.0, 76.0])
    assert np.allclose(L, 1.0)


def test_tc009_interpolate_many_rejects_negative(store) -> None:
    with pytest.raises(InvalidInputError):
        store.interpolate_many(Gender.MALE, ChartType.HFA, np.array([-3.0]))


def test_tc010_invalid_rows_dropped(reference_frame, caplog) -> None:
    caplog.set_level(logging.WARNING)
    bad = pd.concat(
        [
            reference_frame,
            pd.DataFrame(
                {
                    "gender": ["MALE", "MALE"],
                    "chart_type": ["WFA", "WFA"],
                    "age_days": [61, 91],
                    "age_months": [2.0, 3.0],
                    "L": [1.0, 1.0],
                    "M": [0.0, 3.5],
                    "S": [0.15, -0.1],
                }
            ),
        ],
        ignore_index=True,
    )
    store = ReferenceStore.from_frame(bad)
    assert store.age_range(Gender.MALE, ChartType.WFA) == (0, 30)
    assert any("Dropping 2 reference rows" in str(record.message) for record in caplog.records)


def test_tc020_incomplete_rows_dropped_with_warning(reference_frame, caplog) -> None:
    caplog.set_level(logging.WARNING)
    incomplete = pd.DataFrame(
        {
            "gender": ["MALE", None],
            "chart_type": ["WFA", "WFA"],
            "age_days": [61, 91],
            "age_months": [2.0, 3.0],
            "L": [float("nan"), 1.0],
            "M": [4.0, 4.5],
            "S": [0.15, 0.15],
        }
    )
    store = ReferenceStore.from_frame(pd.concat([reference_frame, incomplete], ignore_index=True))
    assert store.age_range(Gender.MALE, ChartType.WFA) == (0, 30)
    assert any(
        "Dropping 2 reference rows with missing key or LMS values" in str(record.message)
        for record in caplog.records
    )


def test_tc011_missing_columns_rejected(reference_frame) -> None:
    with pytest.raises(ValueError, match="missing columns"):
        ReferenceStore.from_frame(reference_frame.drop(columns=["S"]))


def test_tc012_duplicate_ages_keep_first(reference_frame, caplog) -> None:
    caplog.set_level(logging.WARNING)
    dup = pd.concat([reference_frame, reference_frame.iloc[[0]].assign(M=9.9)], ignore_index=True)
    store = ReferenceStore.from_frame(dup)
    assert store.points(Gender.MALE, ChartType.WFA)[0].M == 3.3
    assert any("Duplicate reference row" in str(record.message) for record in caplog.records)


def test_tc013_who_day_table_keeps_published_sd_curves() -> None:
    table = pd.DataFrame(
        {
            "Day": [0, 1],
            "L": [0.3487, 0.3127],
            "M": [3.3464, 3.3174],
            "S": [0.14602, 0.14693],
            "SD2neg": [2.5, 2.4],
            "SD2": [4.4, 4.3],
        }
    )
    store = ReferenceStore.from_who_tables({(Gender.MALE, ChartType.WFA): table})
    first = store.points(Gender.MALE, ChartType.WFA)[0]
    assert first.sd2neg == 2.5
    assert first.sd2pos == 4.4
    # absent curves derived from LMS
    assert first.sd0 == pytest.approx(3.3464)


def test_tc014_who_month_table_derives_days() -> None:
    table = pd.DataFrame({"Month": [0, 24], "L": [1.0, 1.0], "M": [34.5, 48.0], "S": [0.035, 0.03]})
    frame = who_table_to_frame(table, Gender.FEMALE, ChartType.HcFA)
    assert frame["age_days"].tolist() == [0, 731]
    assert set(frame["gender"]) == {"FEMALE"}


def test_tc015_who_table_requires_age_column() -> None:
    with pytest.raises(ValueError, match="'Day' or 'Month'"):
        who_table_to_frame(pd.DataFrame({"L": [1.0], "M": [1.0], "S": [0.1]}), Gender.MALE, ChartType.WFA)


def test_tc016_from_csv(tmp_path, reference_frame) -> None:
    path = tmp_path / "ref.csv"
    reference_frame.to_csv(path, index=False)
    assert len(ReferenceStore.from_csv(path)) == len(reference_frame)


def test_tc017_packaged_reference_covers_all_charts() -> None:
    store = load_who_reference()
    for gender in Gender:
        for chart_type in ChartType:
            low, high = store.age_range(gender, chart_type)
            assert low == 0
            assert high == 1096
    params = store.interpolate(Gender.MALE, ChartType.WFA, 0)
    assert (params.L, params.M, params.S) == (0.3487, 3.3464, 0.14602)


def test_tc018_packaged_reference_is_shared() -> None:
    assert load_who_reference() is load_who_reference()


def test_tc019_chart(store) -> None:
    chart = store.chart(Gender.MALE, ChartType.HFA)
    assert chart.min_age_days == 0
    assert chart.max_age_days == 365
    assert chart.max_age_months == 12.0
    assert len(chart.points) == 3
