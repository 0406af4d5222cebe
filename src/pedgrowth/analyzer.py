"""
Trend, velocity, projection and comparison analytics over a measurement history.

Every operation is a pure function of the history it is given: the analyzer
holds only the reference store and settings, never patient data.
"""

from typing import Any, Dict, Iterable, List, Optional
import datetime
import logging

import numpy as np
import pandas as pd

from .config import (
    DAYS_PER_MONTH,
    DAYS_PER_WEEK,
    DAYS_PER_YEAR,
    DEFAULT_CONFIG,
    VELOCITY_DECIMALS,
    EngineConfig,
)
from .errors import INSUFFICIENT_DATA, InvalidInputError
from .models import (
    ChartType,
    ComparisonMode,
    Gender,
    GrowthComparison,
    GrowthProjection,
    GrowthTrends,
    Measurement,
    ProjectionPoint,
    TimeRange,
    TrendPoint,
    TrendSummary,
    Velocity,
)
from .reference import ReferenceStore
from .scoring import assess_value, score_series
from .zscores import round_percentile, round_zscore

NO_DATA = "no_data"

FRAME_COLUMNS = ["date", "age_days", "age_months", "value"]


def measurements_to_frame(
    history: Iterable[Measurement],
    chart_type: ChartType,
    time_range: Optional[TimeRange] = None,
) -> pd.DataFrame:
    """
    Tabulate the values one chart reads from a measurement history.

    Points outside the (inclusive) time range and points without a value for
    the chart are dropped; non-positive values are dropped with a warning.
    The result is sorted ascending by date.
    """
    chart_type = ChartType(chart_type)
    rows = []
    for m in history:
        value = m.value_for(chart_type)
        if value is None:
            continue
        if time_range is not None:
            if time_range.start_date is not None and m.date < time_range.start_date:
                continue
            if time_range.end_date is not None and m.date > time_range.end_date:
                continue
        if not np.isfinite(value) or value <= 0:
            logging.warning(
                f"Skipping {chart_type.value} point for patient {m.patient_id} on "
                f"{m.date}: value {value} is not a positive number"
            )
            continue
        rows.append(
            {
                "date": pd.Timestamp(m.date),
                "age_days": m.age_days,
                "age_months": m.age_months,
                "value": float(value),
            }
        )
    df = pd.DataFrame(rows, columns=FRAME_COLUMNS)
    return df.sort_values("date", kind="stable").reset_index(drop=True)


def velocity_from_frame(df: pd.DataFrame) -> Optional[Velocity]:
    """
    Rate of change between the first and last rows of a sorted frame.

    Returns None with fewer than two rows or when no time elapsed.
    """
    if len(df) < 2:
        return None
    first, last = df.iloc[0], df.iloc[-1]
    days = int((last["date"] - first["date"]).days)
    if days <= 0:
        return None
    total_change = float(last["value"] - first["value"])
    per_day = total_change / days
    return Velocity(
        per_day=round(per_day, VELOCITY_DECIMALS),
        per_week=round(per_day * DAYS_PER_WEEK, VELOCITY_DECIMALS),
        per_month=round(per_day * DAYS_PER_MONTH, VELOCITY_DECIMALS),
        per_year=round(per_day * DAYS_PER_YEAR, VELOCITY_DECIMALS),
        total_change=round(total_change, VELOCITY_DECIMALS),
        days_between=days,
        age_change_months=round(float(last["age_months"] - first["age_months"]), 2),
    )


class GrowthAnalyzer:
    """
    Stateless analytics over measurement histories.

    Usage:
        analyzer = GrowthAnalyzer(load_who_reference())
        trends = analyzer.get_trends(history, ChartType.WFA, Gender.MALE)
        velocity = analyzer.calculate_velocity(history, ChartType.WFA, start, end)

    Attributes:
        store (ReferenceStore): Reference data used for Z-scores.
        config (EngineConfig): Projection and comparison settings.
    """

    def __init__(self, store: ReferenceStore, config: EngineConfig = DEFAULT_CONFIG):
        self.store = store
        self.config = config

    def get_trends(
        self,
        history: Iterable[Measurement],
        chart_type: ChartType,
        gender: Gender,
        time_range: Optional[TimeRange] = None,
    ) -> GrowthTrends:
        """
        Z-score and percentile series for one chart.

        Returns:
            GrowthTrends with ascending points, a summary and, with two or
            more points, the velocity between the first and last.
        """
        df = measurements_to_frame(history, chart_type, time_range)
        if df.empty:
            return GrowthTrends(trends=[], velocity=None, summary=TrendSummary())

        z, pct = score_series(
            self.store,
            gender,
            chart_type,
            df["age_days"].to_numpy(dtype=np.float64),
            df["value"].to_numpy(dtype=np.float64),
        )
        trends = [
            TrendPoint(
                date=row.date.date(),
                age_months=row.age_months,
                value=row.value,
                z_score=round_zscore(z_i),
                percentile=round_percentile(p_i),
            )
            for row, z_i, p_i in zip(df.itertuples(index=False), z, pct)
        ]
        summary = TrendSummary(
            first_date=trends[0].date,
            last_date=trends[-1].date,
            current_value=trends[-1].value,
            current_percentile=trends[-1].percentile,
            total_measurements=len(trends),
        )
        return GrowthTrends(trends=trends, velocity=velocity_from_frame(df), summary=summary)

    def calculate_velocity(
        self,
        history: Iterable[Measurement],
        chart_type: ChartType,
        start_date: Optional[datetime.date] = None,
        end_date: Optional[datetime.date] = None,
    ) -> Optional[Velocity]:
        """
        Growth velocity over an inclusive date window.

        Raises:
            InvalidInputError: If start_date is after end_date.
        """
        if start_date is not None and end_date is not None and start_date > end_date:
            raise InvalidInputError("start_date must be <= end_date")
        window = TimeRange(start_date=start_date, end_date=end_date)
        return velocity_from_frame(measurements_to_frame(history, chart_type, window))

    def get_growth_projection(
        self,
        history: Iterable[Measurement],
        chart_type: ChartType,
        horizon_months: int = 12,
    ) -> GrowthProjection:
        """
        Linear projection from the recent average monthly growth rate.

        Uses the history within the lookback window before the latest
        measurement. The rate is the mean over the most recent intervals
        (zero-length intervals skipped). Each step k has confidence
        max(base - decay * k, floor), a placeholder heuristic.

        Raises:
            InvalidInputError: If horizon_months is not positive.
        """
        if horizon_months is None or horizon_months <= 0:
            raise InvalidInputError(f"horizon_months must be positive, got {horizon_months}")
        cfg = self.config

        df = measurements_to_frame(history, chart_type)
        if not df.empty:
            cutoff = df["date"].iloc[-1] - pd.Timedelta(days=cfg.projection_lookback_days)
            df = df[df["date"] >= cutoff].reset_index(drop=True)
        if len(df) < 2:
            return GrowthProjection(
                projections=[], confidence="low", message="Insufficient data for projection"
            )

        age_steps = df["age_months"].diff().iloc[1:]
        value_steps = df["value"].diff().iloc[1:]
        valid = age_steps != 0
        rates = (value_steps[valid] / age_steps[valid]).tail(cfg.projection_intervals)
        if rates.empty:
            return GrowthProjection(
                projections=[],
                confidence="low",
                message="Insufficient data for projection",
            )
        average_growth = float(rates.mean())

        current_age = float(df["age_months"].iloc[-1])
        current_value = float(df["value"].iloc[-1])
        # a horizon shorter than one step still gets a single point at the horizon
        step_months = cfg.projection_step_months
        offsets = list(range(step_months, horizon_months + 1, step_months))
        projections: List[ProjectionPoint] = []
        for step, months_ahead in enumerate(offsets or [horizon_months], start=1):
            confidence = max(
                cfg.projection_base_confidence - cfg.projection_confidence_decay * step,
                cfg.projection_confidence_floor,
            )
            projections.append(
                ProjectionPoint(
                    months_ahead=months_ahead,
                    age_months=round(current_age + months_ahead, 2),
                    projected_value=round(current_value + average_growth * months_ahead, 2),
                    confidence=round(confidence, 2),
                )
            )

        return GrowthProjection(
            projections=projections,
            confidence="moderate" if average_growth > 0 else "low",
            average_monthly_growth=round(average_growth, VELOCITY_DECIMALS),
            current_age_months=current_age,
            current_value=current_value,
        )

    def compare_growth(
        self,
        history: Iterable[Measurement],
        mode: ComparisonMode,
        params: Optional[Dict[str, Any]] = None,
        gender: Optional[Gender] = None,
    ) -> GrowthComparison:
        """
        Compare the latest measurement against a reference.

        Modes:
            age: measured age vs params['reference_age_months'].
            percentile: classification of the latest value on params['chart_type'].
            velocity: rate over the window ending at the latest measurement,
                graded slow/normal/fast per chart.

        Raises:
            InvalidInputError: Unknown mode or missing parameter.
        """
        try:
            mode = ComparisonMode(mode)
        except ValueError as e:
            raise InvalidInputError(f"Unknown comparison mode {mode!r}") from e
        params = dict(params or {})
        history = sorted(history, key=lambda m: m.date)
        latest = history[-1] if history else None

        if mode is ComparisonMode.AGE:
            return self._compare_age(latest, params)
        chart_type = self._chart_param(params)
        if mode is ComparisonMode.PERCENTILE:
            return self._compare_percentile(latest, chart_type, gender)
        return self._compare_velocity(history, latest, chart_type)

    @staticmethod
    def _chart_param(params: Dict[str, Any]) -> ChartType:
        try:
            return ChartType(params.get("chart_type", ChartType.WFA))
        except ValueError as e:
            raise InvalidInputError(f"Unknown chart type {params.get('chart_type')!r}") from e

    def _compare_age(
        self, latest: Optional[Measurement], params: Dict[str, Any]
    ) -> GrowthComparison:
        reference_age = params.get("reference_age_months")
        if reference_age is None:
            raise InvalidInputError("Age comparison requires reference_age_months")
        if latest is None:
            return GrowthComparison(comparison="age", status=NO_DATA)
        difference = latest.age_months - float(reference_age)
        return GrowthComparison(
            comparison="age",
            status="ahead" if difference >= 0 else "behind",
            details={
                "current_age_months": latest.age_months,
                "reference_age_months": float(reference_age),
                "difference_months": round(difference, 2),
            },
        )

    def _compare_percentile(
        self,
        latest: Optional[Measurement],
        chart_type: ChartType,
        gender: Optional[Gender],
    ) -> GrowthComparison:
        value = latest.value_for(chart_type) if latest is not None else None
        if value is None or gender is None:
            return GrowthComparison(comparison="percentile", status=NO_DATA)
        result = assess_value(self.store, gender, chart_type, latest.age_days, value)
        return GrowthComparison(
            comparison="percentile",
            status=result.classification.replace("-", "_"),
            details={
                "classification": result.classification,
                "current_percentile": result.percentile,
                "z_score": result.z_score,
            },
        )

    def _compare_velocity(
        self,
        history: List[Measurement],
        latest: Optional[Measurement],
        chart_type: ChartType,
    ) -> GrowthComparison:
        if latest is None:
            return GrowthComparison(comparison="velocity", status=NO_DATA)
        window_days = int(round(self.config.velocity_window_months * DAYS_PER_MONTH))
        start = latest.date - datetime.timedelta(days=window_days)
        velocity = self.calculate_velocity(history, chart_type, start, latest.date)
        if velocity is None:
            return GrowthComparison(comparison="velocity", status=INSUFFICIENT_DATA)

        status = "normal"
        thresholds = self.config.velocity_thresholds.get(chart_type.value)
        if thresholds is not None:
            if velocity.per_month < thresholds.slow:
                status = "slow"
            elif velocity.per_month > thresholds.fast:
                status = "fast"
        return GrowthComparison(
            comparison="velocity",
            status=status,
            details={
                "days_between": velocity.days_between,
                "per_month": velocity.per_month,
                "per_year": velocity.per_year,
                "total_change": velocity.total_change,
            },
        )
