"""
Growth standards engine: the exposed operations of the analytics service.

The engine verifies tenant access, reads histories through the repository,
delegates the numeric work to the scoring and analyzer modules and memoizes
results through an injected cache provider.
"""

from typing import Any, Dict, Iterable, Optional, Tuple
import datetime
import logging
from collections import Counter

import numpy as np

from .analyzer import GrowthAnalyzer
from .cache import CacheProvider, CacheTags, InMemoryCacheProvider
from .config import CACHE_PROFILES, DEFAULT_CONFIG, EngineConfig
from .errors import ForbiddenError, InvalidInputError, PatientNotFoundError
from .models import (
    BatchZScoreResult,
    ChartType,
    ComparisonMode,
    Gender,
    GrowthComparison,
    GrowthProjection,
    GrowthResult,
    GrowthTrends,
    Measurement,
    MeasurementAssessment,
    Patient,
    ReferenceChart,
    TimeRange,
    Velocity,
)
from .reference import ReferenceStore, load_who_reference
from .repository import GrowthRepository
from .scoring import assess_value
from .zscores import round_percentile, round_zscore

_ASSESSMENT_FIELDS = {
    ChartType.WFA: "weight_for_age",
    ChartType.HFA: "height_for_age",
    ChartType.HcFA: "head_circumference_for_age",
}


def _gender(value: Any) -> Gender:
    try:
        return Gender(value)
    except ValueError as e:
        raise InvalidInputError(f"Unknown gender {value!r}") from e


def _chart_type(value: Any) -> ChartType:
    try:
        return ChartType(value)
    except ValueError as e:
        raise InvalidInputError(f"Unknown chart type {value!r}") from e


def _params_token(params: Dict[str, Any]) -> str:
    return ",".join(
        f"{k}={getattr(v, 'value', v)}" for k, v in sorted(params.items())
    )


def calculate_bmi(weight: Optional[float], height: Optional[float]) -> Optional[float]:
    """BMI in kg/m^2 to one decimal, or None without both values."""
    if weight is None or height is None or weight <= 0 or height <= 0:
        return None
    return round(weight / (height / 100.0) ** 2, 1)


class GrowthStandardsEngine:
    """
    Facade over reference data, analytics and caching.

    Usage:
        repo = InMemoryGrowthRepository()
        engine = GrowthStandardsEngine(repository=repo)
        repo.add_listener(engine.notify_measurement_changed)
        result = engine.calculate_zscore("MALE", "WFA", 180, 7.9)
        trends = engine.get_growth_trends("p1", "WFA", tenant_id="clinic-1")

    Attributes:
        store (ReferenceStore): WHO reference data; the packaged table by default.
        repository (GrowthRepository): Patient and measurement storage.
        cache (CacheProvider): Memoization backend; in-memory LRU by default.
        config (EngineConfig): Analytics settings.
    """

    def __init__(
        self,
        reference_store: Optional[ReferenceStore] = None,
        repository: Optional[GrowthRepository] = None,
        cache: Optional[CacheProvider] = None,
        config: EngineConfig = DEFAULT_CONFIG,
    ) -> None:
        self.store = reference_store if reference_store is not None else load_who_reference()
        self.repository = repository
        self.config = config
        self.cache = (
            cache if cache is not None else InMemoryCacheProvider(config.cache_max_entries)
        )
        self.analyzer = GrowthAnalyzer(self.store, config)

    # ------------------------------------------------------------------
    # Reference-only operations
    # ------------------------------------------------------------------

    def calculate_zscore(
        self, gender: Gender, chart_type: ChartType, age_days: float, value: float
    ) -> GrowthResult:
        """
        Z-score, percentile and classification of one measurement value.

        Raises:
            InvalidInputError: Non-positive value, negative age or unknown enum.
            ReferenceDataNotFoundError: No reference rows for gender/chart type.
        """
        gender, chart_type = _gender(gender), _chart_type(chart_type)
        key = CacheTags.key("zscore", gender.value, chart_type.value, repr(age_days), repr(value))
        return self.cache.get_or_compute(
            key,
            CACHE_PROFILES["reference"],
            lambda: assess_value(self.store, gender, chart_type, age_days, value),
        )

    def calculate_multiple_zscores(
        self,
        gender: Gender,
        chart_type: ChartType,
        items: Iterable[Tuple[float, float]],
    ) -> BatchZScoreResult:
        """
        Score a batch of (age_days, value) pairs.

        Statistics are the mean Z (3 decimals), mean percentile (1 decimal)
        and the count of each classification label.
        """
        results = [
            self.calculate_zscore(gender, chart_type, age_days, value)
            for age_days, value in items
        ]
        if not results:
            return BatchZScoreResult(results=[], total=0)
        return BatchZScoreResult(
            results=results,
            total=len(results),
            average_z_score=round_zscore(np.mean([r.z_score for r in results])),
            average_percentile=round_percentile(np.mean([r.percentile for r in results])),
            classifications=dict(Counter(r.classification for r in results)),
        )

    def get_chart_data(self, gender: Gender, chart_type: ChartType) -> ReferenceChart:
        gender, chart_type = _gender(gender), _chart_type(chart_type)
        return self.cache.get_or_compute(
            CacheTags.key("chart", gender.value, chart_type.value),
            CACHE_PROFILES["reference"],
            lambda: self.store.chart(gender, chart_type),
            tags=[CacheTags.reference(gender.value, chart_type.value)],
        )

    # ------------------------------------------------------------------
    # Patient operations
    # ------------------------------------------------------------------

    def _verify_patient_access(self, patient_id: str, tenant_id: str) -> Patient:
        """
        Load the patient and check it belongs to the caller's tenant.

        Raises:
            PatientNotFoundError: If the patient does not exist.
            ForbiddenError: If the patient belongs to another tenant.
        """
        if self.repository is None:
            raise PatientNotFoundError("No repository configured")
        patient = self.repository.fetch_patient(patient_id)
        if patient is None:
            raise PatientNotFoundError(f"Patient {patient_id} not found")
        if patient.tenant_id != tenant_id:
            logging.warning(f"Tenant {tenant_id} denied access to patient {patient_id}")
            raise ForbiddenError(f"Access to patient {patient_id} denied")
        return patient

    def get_growth_trends(
        self,
        patient_id: str,
        chart_type: ChartType,
        tenant_id: str,
        time_range: Optional[TimeRange] = None,
    ) -> GrowthTrends:
        chart_type = _chart_type(chart_type)
        patient = self._verify_patient_access(patient_id, tenant_id)
        token = time_range.cache_token() if time_range is not None else "all"

        def compute() -> GrowthTrends:
            history = self.repository.list_measurements(patient_id, time_range)
            return self.analyzer.get_trends(history, chart_type, patient.gender, time_range)

        return self.cache.get_or_compute(
            CacheTags.key("trends", patient_id, chart_type.value, token),
            CACHE_PROFILES["medical_medium"],
            compute,
            tags=[CacheTags.patient(patient_id)],
        )

    def calculate_velocity(
        self,
        patient_id: str,
        chart_type: ChartType,
        start_date: Optional[datetime.date],
        end_date: Optional[datetime.date],
        tenant_id: str,
    ) -> Optional[Velocity]:
        """
        Velocity over an inclusive date window; None with fewer than two points.
        """
        chart_type = _chart_type(chart_type)
        if start_date is not None and end_date is not None and start_date > end_date:
            raise InvalidInputError("start_date must be <= end_date")
        self._verify_patient_access(patient_id, tenant_id)
        window = TimeRange(start_date=start_date, end_date=end_date)

        def compute() -> Optional[Velocity]:
            history = self.repository.list_measurements(patient_id, window)
            return self.analyzer.calculate_velocity(history, chart_type, start_date, end_date)

        return self.cache.get_or_compute(
            CacheTags.key("velocity", patient_id, chart_type.value, window.cache_token()),
            CACHE_PROFILES["medical_short"],
            compute,
            tags=[CacheTags.patient(patient_id)],
        )

    def get_growth_projection(
        self,
        patient_id: str,
        chart_type: ChartType,
        tenant_id: str,
        horizon_months: int = 12,
    ) -> GrowthProjection:
        chart_type = _chart_type(chart_type)
        if horizon_months is None or horizon_months <= 0:
            raise InvalidInputError(f"horizon_months must be positive, got {horizon_months}")
        self._verify_patient_access(patient_id, tenant_id)

        def compute() -> GrowthProjection:
            history = self.repository.list_measurements(patient_id)
            return self.analyzer.get_growth_projection(history, chart_type, horizon_months)

        return self.cache.get_or_compute(
            CacheTags.key("projection", patient_id, chart_type.value, horizon_months),
            CACHE_PROFILES["medical_short"],
            compute,
            tags=[CacheTags.patient(patient_id)],
        )

    def compare_growth(
        self,
        patient_id: str,
        mode: ComparisonMode,
        params: Optional[Dict[str, Any]],
        tenant_id: str,
    ) -> GrowthComparison:
        try:
            mode = ComparisonMode(mode)
        except ValueError as e:
            raise InvalidInputError(f"Unknown comparison mode {mode!r}") from e
        params = dict(params or {})
        patient = self._verify_patient_access(patient_id, tenant_id)

        def compute() -> GrowthComparison:
            history = self.repository.list_measurements(patient_id)
            return self.analyzer.compare_growth(history, mode, params, patient.gender)

        return self.cache.get_or_compute(
            CacheTags.key("compare", patient_id, mode.value, _params_token(params)),
            CACHE_PROFILES["medical_short"],
            compute,
            tags=[CacheTags.patient(patient_id)],
        )

    def assess_measurement(
        self, patient_id: str, measurement: Measurement, tenant_id: str
    ) -> MeasurementAssessment:
        """
        Score every chart a new measurement can be plotted on and store it.

        BMI is derived from weight and height when the measurement lacks it.
        The patient's cached analytics are invalidated after the write.

        Raises:
            InvalidInputError: If the measurement has no values or belongs to
                a different patient.
        """
        patient = self._verify_patient_access(patient_id, tenant_id)
        if measurement.patient_id != patient_id:
            raise InvalidInputError(
                f"Measurement belongs to patient {measurement.patient_id}, not {patient_id}"
            )
        if all(measurement.value_for(chart) is None for chart in ChartType):
            raise InvalidInputError("At least one measurement value is required")

        results: Dict[str, GrowthResult] = {}
        for chart_type, field_name in _ASSESSMENT_FIELDS.items():
            value = measurement.value_for(chart_type)
            if value is not None:
                results[field_name] = self.calculate_zscore(
                    patient.gender, chart_type, measurement.age_days, value
                )

        bmi = measurement.bmi
        if bmi is None:
            bmi = calculate_bmi(measurement.weight, measurement.height)
            if bmi is not None:
                measurement = measurement.model_copy(update={"bmi": bmi})

        assessment = MeasurementAssessment(bmi=bmi, **results)
        self.repository.persist_growth_result(measurement, assessment)
        self.notify_measurement_changed(patient_id)
        return assessment

    def notify_measurement_changed(self, patient_id: str) -> None:
        """Drop cached analytics for a patient after any measurement write."""
        removed = self.cache.invalidate([CacheTags.patient(patient_id)])
        logging.debug(f"Invalidated {removed} cached results for patient {patient_id}")
