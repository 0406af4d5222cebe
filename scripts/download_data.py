#!/usr/bin/env python3
"""
Download WHO growth standard LMS tables into the package reference CSV.

Fetches the WHO weight-, length- and head-circumference-for-age percentile
tables (monthly L, M, S) published on the CDC FTP mirror, reshapes them to
the reference schema (gender, chart_type, age_days, age_months, L, M, S)
and merges them into src/pedgrowth/data/who_lms_monthly.csv.

Rows already in the output for ages or charts a download does not cover
are kept, so the packaged 24-36 month rows survive a refresh of the 0-24
month WHO files.
"""

import argparse
import hashlib
import io
import logging
from pathlib import Path
from typing import List, Optional, Tuple

import pandas as pd
import requests
from requests.adapters import HTTPAdapter
from tqdm import tqdm
from urllib3.util.retry import Retry

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

WHO_DAYS_PER_MONTH = 30.4375
OUTPUT_COLUMNS = ["gender", "chart_type", "age_days", "age_months", "L", "M", "S"]

_FTP = "https://ftp.cdc.gov/pub/Health_Statistics/NCHS/growthcharts"

# (gender, chart_type, url)
DATA_SOURCES: List[Tuple[str, str, str]] = [
    ("MALE", "WFA", f"{_FTP}/WHO-Boys-Weight-for-age-Percentiles.csv"),
    ("MALE", "HFA", f"{_FTP}/WHO-Boys-Length-for-age-Percentiles.csv"),
    ("MALE", "HcFA", f"{_FTP}/WHO-Boys-Head-Circumference-for-age-Percentiles.csv"),
    ("FEMALE", "WFA", f"{_FTP}/WHO-Girls-Weight-for-age%20Percentiles.csv"),
    ("FEMALE", "HFA", f"{_FTP}/WHO-Girls-Length-for-age-Percentiles.csv"),
    ("FEMALE", "HcFA", f"{_FTP}/WHO-Girls-Head-Circumference-for-age-Percentiles.csv"),
]


def default_output_path() -> Path:
    return (
        Path(__file__).parent.parent / "src" / "pedgrowth" / "data" / "who_lms_monthly.csv"
    )


def download_csv(url: str, timeout: int = 30) -> str:
    """Download CSV content from URL with retries."""
    try:
        retry_strategy = Retry(
            total=3,
            status_forcelist=[429, 500, 502, 503, 504],
            backoff_factor=2,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)

        with requests.Session() as session:
            session.mount("https://", adapter)
            session.mount("http://", adapter)
            response = session.get(url, timeout=timeout, verify=True)
            response.raise_for_status()
            return response.text
    except requests.RequestException as e:
        logger.error(f"Failed to download {url}: {e}")
        raise


def compute_sha256(content: str) -> str:
    """Compute SHA-256 hash of content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def parse_who_csv(content: str, gender: str, chart_type: str) -> pd.DataFrame:
    """
    Parse a WHO percentile CSV into reference rows.

    Raises:
        ValueError: If Month/L/M/S columns are missing or M/S are not positive.
    """
    raw = pd.read_csv(io.StringIO(content))
    raw.columns = [str(c).replace("\ufeff", "").strip() for c in raw.columns]

    missing = [col for col in ["Month", "L", "M", "S"] if col not in raw.columns]
    if missing:
        raise ValueError(f"{gender} {chart_type}: missing columns {missing}")

    df = raw[["Month", "L", "M", "S"]].apply(pd.to_numeric, errors="coerce")
    dropped = int(df.isna().any(axis=1).sum())
    if dropped:
        logger.warning(f"{gender} {chart_type}: dropping {dropped} rows with unparseable values")
        df = df.dropna()

    if (df["M"] <= 0).any() or (df["S"] <= 0).any():
        raise ValueError(f"{gender} {chart_type}: non-positive M or S values")
    if not df["Month"].is_monotonic_increasing:
        raise ValueError(f"{gender} {chart_type}: Month not monotonically increasing")

    return pd.DataFrame(
        {
            "gender": gender,
            "chart_type": chart_type,
            "age_days": (df["Month"] * WHO_DAYS_PER_MONTH + 0.5).astype(int),
            "age_months": df["Month"],
            "L": df["L"],
            "M": df["M"],
            "S": df["S"],
        }
    )[OUTPUT_COLUMNS]


def merge_reference(existing: Optional[pd.DataFrame], fresh: pd.DataFrame) -> pd.DataFrame:
    """Overlay fresh rows onto existing ones, keyed by gender, chart and age."""
    frames = [fresh] if existing is None else [fresh, existing[OUTPUT_COLUMNS]]
    merged = pd.concat(frames, ignore_index=True)
    merged = merged.drop_duplicates(subset=["gender", "chart_type", "age_days"], keep="first")
    return merged.sort_values(["gender", "chart_type", "age_days"]).reset_index(drop=True)


def main(output_path: Optional[Path] = None, strict_mode: bool = False) -> pd.DataFrame:
    """Download all WHO tables and write the merged reference CSV."""
    output_path = Path(output_path) if output_path else default_output_path()
    output_path.parent.mkdir(parents=True, exist_ok=True)

    existing = pd.read_csv(output_path) if output_path.exists() else None

    fresh_frames = []
    failed_sources = []
    with tqdm(total=len(DATA_SOURCES), desc="Fetching WHO tables") as pbar:
        for gender, chart_type, url in DATA_SOURCES:
            pbar.set_postfix({"source": f"{gender} {chart_type}"})
            pbar.update(1)
            try:
                content = download_csv(url)
                logger.info(f"{gender} {chart_type}: sha256 {compute_sha256(content)}")
                fresh_frames.append(parse_who_csv(content, gender, chart_type))
            except (requests.RequestException, ValueError) as e:
                failed_sources.append(f"{gender}::{chart_type}")
                logger.error(f"Failed to process {gender}::{chart_type}: {e}")

    if strict_mode and failed_sources:
        raise RuntimeError(
            f"Strict mode failed: Unable to process sources: {', '.join(failed_sources)}"
        )
    if not fresh_frames:
        logger.warning("No sources downloaded; leaving reference data unchanged")
        return existing if existing is not None else pd.DataFrame(columns=OUTPUT_COLUMNS)

    merged = merge_reference(existing, pd.concat(fresh_frames, ignore_index=True))
    merged.to_csv(output_path, index=False)
    logger.info(f"Saved {len(merged)} reference rows to {output_path}")
    return merged


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Download WHO growth standard LMS tables."
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Output CSV path (defaults to the packaged reference table)",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Strict mode: exit on any error instead of continuing with warnings",
    )
    args = parser.parse_args()

    main(output_path=args.output, strict_mode=args.strict)
