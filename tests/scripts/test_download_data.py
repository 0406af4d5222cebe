"""
Tests for scripts/download_data.py - WHO reference table acquisition.
"""

import logging
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pandas as pd
import pytest
import requests

# Add scripts to path for testing
script_dir = Path(__file__).parent.parent.parent / "scripts"
sys.path.insert(0, str(script_dir))

from download_data import (  # noqa: E402  # type: ignore
    DATA_SOURCES,
    OUTPUT_COLUMNS,
    compute_sha256,
    default_output_path,
    download_csv,
    main,
    merge_reference,
    parse_who_csv,
)


@pytest.fixture
def sample_who_boys_wtage_csv():
    """Sample WHO boys weight-for-age CSV content."""
    return """Month,L,M,S,P01,P1,P3,P5,P10,P25,P50,P75,P90,P95,P97,P99,P999
0,0.3487,3.3464,0.14602,1.701,2.08,2.355,2.459,2.604,2.904,3.346,3.781,4.197,4.444,4.61,4.93,5.388
1,0.2297,4.4709,0.13395,2.557,3.046,3.395,3.523,3.738,4.079,4.471,4.902,5.319,5.568,5.742,6.084,6.577
2,0.197,5.5675,0.12385,3.33,3.964,4.392,4.546,4.79,5.11,5.567,6.088,6.575,6.86,7.05,7.427,7.992
""".strip()


def _mock_session(mock_session_class, text="", get_side_effect=None, status_error=None):
    session = MagicMock()
    session.__enter__ = MagicMock(return_value=session)
    session.__exit__ = MagicMock(return_value=None)
    response = MagicMock()
    response.text = text
    if status_error is not None:
        response.raise_for_status.side_effect = status_error
    session.get.return_value = response
    if get_side_effect is not None:
        session.get.side_effect = get_side_effect
    mock_session_class.return_value = session
    return session


class TestDownloadCSV:
    """Test download_csv function."""

    def test_tc001_download_valid_url(self):
        """Download a WHO table successfully."""
        with patch("download_data.requests.Session") as mock_session_class:
            session = _mock_session(mock_session_class, text="Month,L,M,S")
            result = download_csv("https://ftp.cdc.gov/pub/example.csv")
            assert result == "Month,L,M,S"
            session.get.assert_called_once_with(
                "https://ftp.cdc.gov/pub/example.csv", timeout=30, verify=True
            )

    def test_tc002_handle_network_timeout(self, caplog):
        """Timeouts are logged and re-raised."""
        caplog.set_level(logging.ERROR)
        with patch("download_data.requests.Session") as mock_session_class:
            _mock_session(mock_session_class, get_side_effect=requests.Timeout("timeout"))
            with pytest.raises(requests.Timeout, match="timeout"):
                download_csv("http://example.com")
        assert any("Failed to download" in str(record.message) for record in caplog.records)

    def test_tc003_handle_http_error_status_codes(self):
        """HTTP error status codes propagate."""
        with patch("download_data.requests.Session") as mock_session_class:
            _mock_session(
                mock_session_class, status_error=requests.HTTPError("404 Client Error")
            )
            with pytest.raises(requests.HTTPError, match="404"):
                download_csv("http://example.com")


class TestComputeSHA256:
    def test_tc004_compute_sha256_correct(self):
        expected = "6ae8a75555209fd6c44157c0aed8016e763ff435a19cf186f76863140143ff72"
        assert compute_sha256("test content") == expected


class TestParseWHOCSV:
    def test_tc005_parse_reference_schema(self, sample_who_boys_wtage_csv):
        df = parse_who_csv(sample_who_boys_wtage_csv, "MALE", "WFA")
        assert list(df.columns) == OUTPUT_COLUMNS
        assert len(df) == 3
        assert df["age_days"].tolist() == [0, 30, 61]
        assert df["M"].iloc[0] == pytest.approx(3.3464)
        assert set(df["gender"]) == {"MALE"}
        assert set(df["chart_type"]) == {"WFA"}

    def test_tc006_handle_bom_in_header(self):
        content = "\ufeffMonth,L,M,S\n0,1,49.8842,0.03795"
        df = parse_who_csv(content, "MALE", "HFA")
        assert df["M"].iloc[0] == pytest.approx(49.8842)

    def test_tc007_missing_columns(self):
        with pytest.raises(ValueError, match="missing columns"):
            parse_who_csv("Length,L,M,S\n45,1,2.5,0.1", "MALE", "WFA")

    def test_tc008_non_positive_median(self):
        with pytest.raises(ValueError, match="non-positive"):
            parse_who_csv("Month,L,M,S\n0,1,0,0.1", "MALE", "WFA")

    def test_tc009_unparseable_rows_dropped(self, caplog):
        caplog.set_level(logging.WARNING)
        df = parse_who_csv("Month,L,M,S\n0,1,3.3,0.1\n1,x,4.4,0.1", "FEMALE", "WFA")
        assert len(df) == 1
        assert any("unparseable" in str(record.message) for record in caplog.records)

    def test_tc010_month_24_maps_to_day_731(self):
        df = parse_who_csv("Month,L,M,S\n24,1,48.0,0.03", "FEMALE", "HcFA")
        assert df["age_days"].tolist() == [731]


class TestMergeReference:
    def test_tc011_fresh_rows_win_and_others_kept(self):
        existing = pd.DataFrame(
            {
                "gender": ["MALE", "MALE"],
                "chart_type": ["WFA", "WFA"],
                "age_days": [0, 1096],
                "age_months": [0.0, 36.0],
                "L": [1.0, 1.0],
                "M": [3.0, 14.3],
                "S": [0.1, 0.1],
            }
        )
        fresh = existing.iloc[[0]].assign(M=3.3464)
        merged = merge_reference(existing, fresh)
        assert merged["age_days"].tolist() == [0, 1096]
        assert merged["M"].tolist() == [3.3464, 14.3]

    def test_tc012_no_existing(self, sample_who_boys_wtage_csv):
        fresh = parse_who_csv(sample_who_boys_wtage_csv, "MALE", "WFA")
        assert len(merge_reference(None, fresh)) == 3


class TestMainFunction:
    def test_tc013_default_output_is_packaged_table(self):
        path = default_output_path()
        assert path.name == "who_lms_monthly.csv"
        assert path.parent.name == "data"

    @patch("download_data.download_csv")
    def test_tc014_main_end_to_end(self, mock_download, tmp_path, sample_who_boys_wtage_csv):
        mock_download.return_value = sample_who_boys_wtage_csv
        output = tmp_path / "ref.csv"
        merged = main(output_path=output)
        assert mock_download.call_count == len(DATA_SOURCES)
        assert output.exists()
        # 6 tables x 3 rows
        assert len(merged) == 18
        assert len(pd.read_csv(output)) == 18

    @patch("download_data.download_csv", side_effect=requests.ConnectionError("down"))
    def test_tc015_failures_leave_existing_data(self, mock_download, tmp_path):
        output = tmp_path / "ref.csv"
        pd.DataFrame([["MALE", "WFA", 0, 0.0, 1.0, 3.3, 0.1]], columns=OUTPUT_COLUMNS).to_csv(
            output, index=False
        )
        result = main(output_path=output)
        assert len(result) == 1
        assert len(pd.read_csv(output)) == 1

    @patch("download_data.download_csv", side_effect=requests.ConnectionError("down"))
    def test_tc016_strict_mode_raises(self, mock_download, tmp_path):
        with pytest.raises(RuntimeError, match="Strict mode failed"):
            main(output_path=tmp_path / "ref.csv", strict_mode=True)
