"""
WHO LMS reference store and age interpolation.

Reference rows are loaded once, validated, grouped by (gender, chart type)
and sorted by age. Lookups return the bracketing rows for an age; the
interpolator blends L, M, S and the SD curves linearly by age ratio. Ages
outside the table are clamped to the nearest boundary row.
"""

from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Dict, Iterable, List, Tuple, Union
import functools
import logging

import numpy as np
import pandas as pd

from .config import REFERENCE_COLUMNS, SD_COLUMNS, SD_LEVELS, WHO_DAYS_PER_MONTH
from .errors import InvalidInputError, ReferenceDataNotFoundError
from .models import ChartType, Gender, ReferenceChart, ReferencePoint
from .zscores import lms_value

# WHO expanded-table headers mapped to reference columns
WHO_TABLE_COLUMNS = {
    "Day": "age_days",
    "Month": "age_months",
    "L": "L",
    "M": "M",
    "S": "S",
    "SD4neg": "sd4neg",
    "SD3neg": "sd3neg",
    "SD2neg": "sd2neg",
    "SD1neg": "sd1neg",
    "SD0": "sd0",
    "SD1": "sd1pos",
    "SD2": "sd2pos",
    "SD3": "sd3pos",
    "SD4": "sd4pos",
}

GroupKey = Tuple[Gender, ChartType]


@dataclass(frozen=True)
class ReferenceBracket:
    """Nearest reference rows at or below (lower) and at or above (upper) an age."""

    lower: ReferencePoint
    upper: ReferencePoint
    clamped: bool = False

    @property
    def exact(self) -> bool:
        return self.lower is self.upper and not self.clamped


@dataclass(frozen=True)
class LMSParameters:
    """L, M, S and SD-curve values resolved for a specific age."""

    age_days: float
    L: float
    M: float
    S: float
    sd_values: Dict[str, float] = field(default_factory=dict)
    interpolated: bool = False


@dataclass(frozen=True)
class _Group:
    points: Tuple[ReferencePoint, ...]
    ages: np.ndarray
    L: np.ndarray
    M: np.ndarray
    S: np.ndarray


def _build_group(points: List[ReferencePoint]) -> _Group:
    ordered = sorted(points, key=lambda p: p.age_days)
    deduped: List[ReferencePoint] = []
    for point in ordered:
        if deduped and deduped[-1].age_days == point.age_days:
            logging.warning(
                f"Duplicate reference row for {point.gender.value}/{point.chart_type.value} "
                f"at day {point.age_days}; keeping the first"
            )
            continue
        deduped.append(point)
    return _Group(
        points=tuple(deduped),
        ages=np.array([p.age_days for p in deduped], dtype=np.float64),
        L=np.array([p.L for p in deduped], dtype=np.float64),
        M=np.array([p.M for p in deduped], dtype=np.float64),
        S=np.array([p.S for p in deduped], dtype=np.float64),
    )


def _validate_age(age_days: float) -> float:
    if age_days is None or not np.isfinite(age_days):
        raise InvalidInputError(f"Age must be a finite number of days, got {age_days!r}")
    if age_days < 0:
        raise InvalidInputError(f"Age must be non-negative, got {age_days} days")
    return float(age_days)


class ReferenceStore:
    """
    Read-only lookup of WHO LMS reference points.

    Usage:
        store = ReferenceStore.from_csv("who_lms.csv")
        bracket = store.lookup(Gender.MALE, ChartType.WFA, 45)
        params = store.interpolate(Gender.MALE, ChartType.WFA, 45)
    """

    def __init__(self, points: Iterable[ReferencePoint]) -> None:
        grouped: Dict[GroupKey, List[ReferencePoint]] = {}
        for point in points:
            grouped.setdefault((point.gender, point.chart_type), []).append(point)
        self._groups: Dict[GroupKey, _Group] = {
            key: _build_group(rows) for key, rows in grouped.items()
        }

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "ReferenceStore":
        """
        Build a store from a DataFrame in the reference column layout.

        Rows with missing L/M/S, non-positive M or S, or negative ages are
        dropped with a warning. Missing SD-curve columns are derived from
        the LMS parameters.

        Raises:
            ValueError: If required columns are missing.
        """
        missing = [col for col in REFERENCE_COLUMNS if col not in df.columns]
        if missing:
            raise ValueError(f"Reference data missing columns: {missing}")

        frame = df.copy()
        incomplete = frame[["gender", "chart_type", "age_days", "L", "M", "S"]].isna().any(axis=1)
        if incomplete.any():
            logging.warning(
                f"Dropping {int(incomplete.sum())} reference rows with missing key or LMS values"
            )
            frame = frame[~incomplete]
        invalid = (frame["M"] <= 0) | (frame["S"] <= 0) | (frame["age_days"] < 0)
        if invalid.any():
            logging.warning(
                f"Dropping {int(invalid.sum())} reference rows with non-positive M/S or negative age"
            )
            frame = frame[~invalid]

        frame = _fill_sd_columns(frame)
        points = [
            ReferencePoint(
                gender=Gender(row["gender"]),
                chart_type=ChartType(row["chart_type"]),
                age_days=int(row["age_days"]),
                age_months=float(row["age_months"]),
                L=float(row["L"]),
                M=float(row["M"]),
                S=float(row["S"]),
                **{col: float(row[col]) for col in SD_COLUMNS if pd.notna(row[col])},
            )
            for row in frame.to_dict("records")
        ]
        return cls(points)

    @classmethod
    def from_csv(cls, path: Union[str, Path]) -> "ReferenceStore":
        """Load a reference CSV with columns gender, chart_type, age_days, age_months, L, M, S[, sd...]."""
        return cls.from_frame(pd.read_csv(path))

    @classmethod
    def from_who_tables(
        cls, tables: Dict[GroupKey, Union[str, Path, pd.DataFrame]]
    ) -> "ReferenceStore":
        """
        Build a store from WHO expanded z-score tables.

        Args:
            tables: Mapping of (gender, chart type) to a WHO table (path or
                DataFrame) with a 'Day' or 'Month' column, L, M, S and
                optionally SD4neg..SD4.
        """
        frames = []
        for (gender, chart_type), table in tables.items():
            frames.append(who_table_to_frame(table, Gender(gender), ChartType(chart_type)))
        if not frames:
            return cls([])
        return cls.from_frame(pd.concat(frames, ignore_index=True))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _group(self, gender: Gender, chart_type: ChartType) -> _Group:
        try:
            key = (Gender(gender), ChartType(chart_type))
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        group = self._groups.get(key)
        if group is None or not group.points:
            raise ReferenceDataNotFoundError(
                f"No WHO reference data for {key[0].value} {key[1].value}"
            )
        return group

    def points(self, gender: Gender, chart_type: ChartType) -> Tuple[ReferencePoint, ...]:
        return self._group(gender, chart_type).points

    def age_range(self, gender: Gender, chart_type: ChartType) -> Tuple[int, int]:
        group = self._group(gender, chart_type)
        return group.points[0].age_days, group.points[-1].age_days

    def lookup(
        self, gender: Gender, chart_type: ChartType, age_days: float
    ) -> ReferenceBracket:
        """
        Find the reference rows bracketing an age.

        Raises:
            InvalidInputError: If age is negative or not finite.
            ReferenceDataNotFoundError: If no rows exist for gender/chart type.
        """
        age = _validate_age(age_days)
        group = self._group(gender, chart_type)
        idx = int(np.searchsorted(group.ages, age, side="left"))
        n = len(group.points)

        if idx < n and group.ages[idx] == age:
            row = group.points[idx]
            return ReferenceBracket(lower=row, upper=row)
        if idx == 0 or idx == n:
            row = group.points[0] if idx == 0 else group.points[-1]
            logging.warning(
                f"Age {age} days outside reference range "
                f"[{group.points[0].age_days}, {group.points[-1].age_days}] for "
                f"{row.gender.value} {row.chart_type.value}; clamping to day {row.age_days}"
            )
            return ReferenceBracket(lower=row, upper=row, clamped=True)
        return ReferenceBracket(lower=group.points[idx - 1], upper=group.points[idx])

    def interpolate(
        self, gender: Gender, chart_type: ChartType, age_days: float
    ) -> LMSParameters:
        """Resolve L, M, S and SD curves at an arbitrary age."""
        bracket = self.lookup(gender, chart_type, age_days)
        return interpolate_bracket(bracket, float(age_days))

    def interpolate_many(
        self, gender: Gender, chart_type: ChartType, ages: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Vectorized L, M, S interpolation with boundary clamping.

        Returns:
            Tuple of (L, M, S) arrays matching the shape of ages.
        """
        ages_arr = np.asarray(ages, dtype=np.float64)
        if ages_arr.size and (not np.all(np.isfinite(ages_arr)) or np.any(ages_arr < 0)):
            raise InvalidInputError("Ages must be finite and non-negative")
        group = self._group(gender, chart_type)
        # np.interp clamps to the first/last row outside the table
        return (
            np.interp(ages_arr, group.ages, group.L),
            np.interp(ages_arr, group.ages, group.M),
            np.interp(ages_arr, group.ages, group.S),
        )

    def chart(self, gender: Gender, chart_type: ChartType) -> ReferenceChart:
        """Reference rows and age range for charting."""
        points = self.points(gender, chart_type)
        return ReferenceChart(
            gender=Gender(gender),
            chart_type=ChartType(chart_type),
            points=list(points),
            min_age_days=points[0].age_days,
            max_age_days=points[-1].age_days,
            min_age_months=min(p.age_months for p in points),
            max_age_months=max(p.age_months for p in points),
        )

    def __len__(self) -> int:
        return sum(len(group.points) for group in self._groups.values())


def interpolate_bracket(bracket: ReferenceBracket, age_days: float) -> LMSParameters:
    """
    Linearly interpolate LMS parameters between bracketing rows.

    An exact or clamped bracket returns the row's parameters unmodified.
    """
    lower, upper = bracket.lower, bracket.upper
    if lower is upper:
        return LMSParameters(
            age_days=age_days,
            L=lower.L,
            M=lower.M,
            S=lower.S,
            sd_values=_row_sd_values(lower),
            interpolated=False,
        )

    ratio = (age_days - lower.age_days) / (upper.age_days - lower.age_days)
    L = lower.L + ratio * (upper.L - lower.L)
    M = lower.M + ratio * (upper.M - lower.M)
    S = lower.S + ratio * (upper.S - lower.S)

    sd_values = {}
    for col in SD_COLUMNS:
        low_v, up_v = getattr(lower, col), getattr(upper, col)
        if low_v is not None and up_v is not None:
            sd_values[col] = low_v + ratio * (up_v - low_v)
        else:
            sd_values[col] = float(lms_value(SD_LEVELS[col], L, M, S))
    return LMSParameters(age_days=age_days, L=L, M=M, S=S, sd_values=sd_values, interpolated=True)


def _row_sd_values(row: ReferencePoint) -> Dict[str, float]:
    values = {}
    for col in SD_COLUMNS:
        v = getattr(row, col)
        values[col] = v if v is not None else float(lms_value(SD_LEVELS[col], row.L, row.M, row.S))
    return values


def _fill_sd_columns(frame: pd.DataFrame) -> pd.DataFrame:
    """Derive missing SD-curve values from L, M, S."""
    frame = frame.copy()
    for col in SD_COLUMNS:
        derived = lms_value(SD_LEVELS[col], frame["L"].to_numpy(), frame["M"].to_numpy(), frame["S"].to_numpy())
        if col not in frame.columns:
            frame[col] = derived
        else:
            frame[col] = frame[col].where(frame[col].notna(), derived)
    return frame


def who_table_to_frame(
    table: Union[str, Path, pd.DataFrame], gender: Gender, chart_type: ChartType
) -> pd.DataFrame:
    """
    Normalize a WHO expanded table to the reference column layout.

    Tables indexed by 'Day' get months from WHO's 30.4375-day month; tables
    indexed by 'Month' get days the other way round.
    """
    raw = table if isinstance(table, pd.DataFrame) else pd.read_csv(table, sep=None, engine="python")
    raw = raw.rename(columns=lambda c: str(c).replace("\ufeff", "").strip())
    frame = raw.rename(columns=WHO_TABLE_COLUMNS)
    if "age_days" not in frame.columns and "age_months" not in frame.columns:
        raise ValueError("WHO table needs a 'Day' or 'Month' column")
    if "age_days" not in frame.columns:
        frame["age_days"] = (frame["age_months"] * WHO_DAYS_PER_MONTH + 0.5).astype(int)
    if "age_months" not in frame.columns:
        frame["age_months"] = (frame["age_days"] / WHO_DAYS_PER_MONTH).round(2)
    frame["gender"] = gender.value
    frame["chart_type"] = chart_type.value
    keep = REFERENCE_COLUMNS + [col for col in SD_COLUMNS if col in frame.columns]
    return frame[keep]


@functools.lru_cache(maxsize=1)
def load_who_reference() -> ReferenceStore:
    """
    Load the packaged WHO monthly LMS table (0-36 months).

    The store is immutable, so a single instance is shared per process.
    """
    path = resources.files("pedgrowth") / "data" / "who_lms_monthly.csv"
    with path.open("r", encoding="utf-8") as f:
        return ReferenceStore.from_frame(pd.read_csv(f))
