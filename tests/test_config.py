import datetime

import pytest
from pydantic import ValidationError

from pedgrowth.config import DEFAULT_CONFIG, EngineConfig, VelocityThresholds
from pedgrowth.models import ChartType, Gender, Measurement, TimeRange


def test_tc001_defaults() -> None:
    assert DEFAULT_CONFIG.projection_step_months == 3
    assert DEFAULT_CONFIG.projection_base_confidence == 0.7
    assert DEFAULT_CONFIG.velocity_thresholds["WFA"] == VelocityThresholds(slow=0.1, fast=0.5)
    assert DEFAULT_CONFIG.velocity_thresholds["HFA"] == VelocityThresholds(slow=0.3, fast=1.0)
    assert "HcFA" not in DEFAULT_CONFIG.velocity_thresholds


def test_tc002_thresholds_ordered() -> None:
    with pytest.raises(ValueError, match="slow threshold must be < fast threshold"):
        VelocityThresholds(slow=1.0, fast=0.5)


def test_tc003_floor_not_above_base() -> None:
    with pytest.raises(ValidationError):
        EngineConfig(projection_base_confidence=0.5, projection_confidence_floor=0.6)


def test_tc004_unknown_chart_threshold() -> None:
    with pytest.raises(ValidationError, match="Unknown chart types"):
        EngineConfig(velocity_thresholds={"BMI": {"slow": 0.1, "fast": 0.2}})


def test_tc005_positive_step() -> None:
    with pytest.raises(ValidationError):
        EngineConfig(projection_step_months=0)


@pytest.mark.parametrize("alias", ["M", "m", "male", "MALE"])
def test_tc006_gender_aliases(alias) -> None:
    assert Gender(alias) is Gender.MALE


def test_tc007_chart_fields() -> None:
    assert ChartType.WFA.measurement_field == "weight"
    assert ChartType.HcFA.measurement_field == "head_circumference"
    assert ChartType.HFA.unit == "cm"
    assert ChartType.WFA.unit == "kg"


def test_tc008_time_range_order() -> None:
    with pytest.raises(ValidationError):
        TimeRange(start_date=datetime.date(2024, 2, 1), end_date=datetime.date(2024, 1, 1))
    assert TimeRange().cache_token() == "open:open"


def test_tc009_measurement_negative_age_rejected() -> None:
    with pytest.raises(ValidationError):
        Measurement(patient_id="p1", date=datetime.date(2024, 1, 1), age_days=-1, age_months=0.0)
