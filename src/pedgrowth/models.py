"""
Domain models for growth measurements, reference data and analytics results.

All models are immutable pydantic models. Measurements and reference points
are engine inputs; everything else is computed output.
"""

import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Gender(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"

    @classmethod
    def _missing_(cls, value: object) -> Optional["Gender"]:
        # Accept 'M'/'F' and lowercase spellings
        if isinstance(value, str):
            normalized = value.strip().upper()
            aliases = {"M": cls.MALE, "F": cls.FEMALE}
            if normalized in aliases:
                return aliases[normalized]
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class ChartType(str, Enum):
    WFA = "WFA"
    HFA = "HFA"
    HcFA = "HcFA"

    @property
    def measurement_field(self) -> str:
        """Name of the Measurement attribute this chart reads."""
        return _CHART_FIELDS[self]

    @property
    def unit(self) -> str:
        return "kg" if self is ChartType.WFA else "cm"


_CHART_FIELDS = {
    ChartType.WFA: "weight",
    ChartType.HFA: "height",
    ChartType.HcFA: "head_circumference",
}


class ComparisonMode(str, Enum):
    AGE = "age"
    PERCENTILE = "percentile"
    VELOCITY = "velocity"


class ReferencePoint(BaseModel):
    """
    One WHO LMS reference row.

    Attributes:
        gender (Gender): Reference population.
        chart_type (ChartType): Indicator the row belongs to.
        age_days (int): Age in days, non-negative.
        age_months (float): Age in months as published.
        L, M, S (float): Box-Cox power, median and coefficient of variation.
        sd4neg..sd4pos (Optional[float]): Measurement values at Z = -4..4.
    """

    model_config = ConfigDict(frozen=True)

    gender: Gender
    chart_type: ChartType
    age_days: int = Field(ge=0)
    age_months: float = Field(ge=0)
    L: float
    M: float
    S: float
    sd4neg: Optional[float] = None
    sd3neg: Optional[float] = None
    sd2neg: Optional[float] = None
    sd1neg: Optional[float] = None
    sd0: Optional[float] = None
    sd1pos: Optional[float] = None
    sd2pos: Optional[float] = None
    sd3pos: Optional[float] = None
    sd4pos: Optional[float] = None


class Patient(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    date_of_birth: datetime.date
    gender: Gender
    tenant_id: str


class Measurement(BaseModel):
    """
    A dated anthropometric snapshot of one patient.

    Values are in kg (weight) and cm (height, head circumference); any of
    them may be missing.
    """

    model_config = ConfigDict(frozen=True)

    patient_id: str
    date: datetime.date
    age_days: int = Field(ge=0)
    age_months: float = Field(ge=0)
    weight: Optional[float] = None
    height: Optional[float] = None
    head_circumference: Optional[float] = None
    bmi: Optional[float] = None

    def value_for(self, chart_type: ChartType) -> Optional[float]:
        """Return the measurement value plotted on the given chart."""
        return getattr(self, ChartType(chart_type).measurement_field)


class TimeRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_date: Optional[datetime.date] = None
    end_date: Optional[datetime.date] = None

    @field_validator("end_date", mode="after")
    @classmethod
    def start_le_end(cls, v: Optional[datetime.date], info: Any) -> Optional[datetime.date]:
        """Validate that start_date <= end_date when both are set."""
        start = info.data.get("start_date")
        if v is not None and start is not None and start > v:
            raise ValueError("start_date must be <= end_date")
        return v

    def cache_token(self) -> str:
        start = self.start_date.isoformat() if self.start_date else "open"
        end = self.end_date.isoformat() if self.end_date else "open"
        return f"{start}:{end}"


class ReferenceValues(BaseModel):
    model_config = ConfigDict(frozen=True)

    median: float
    sd2neg: float
    sd2pos: float


class GrowthResult(BaseModel):
    """Z-score, percentile and classification of one measurement value."""

    model_config = ConfigDict(frozen=True)

    z_score: float
    percentile: float
    classification: str
    reference_values: ReferenceValues
    interpolated: bool = False


class TrendPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: datetime.date
    age_months: float
    value: float
    z_score: float
    percentile: float


class Velocity(BaseModel):
    model_config = ConfigDict(frozen=True)

    per_day: float
    per_week: float
    per_month: float
    per_year: float
    total_change: float
    days_between: int
    age_change_months: float


class TrendSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    first_date: Optional[datetime.date] = None
    last_date: Optional[datetime.date] = None
    current_value: Optional[float] = None
    current_percentile: Optional[float] = None
    total_measurements: int = 0


class GrowthTrends(BaseModel):
    model_config = ConfigDict(frozen=True)

    trends: List[TrendPoint]
    velocity: Optional[Velocity] = None
    summary: TrendSummary


class ProjectionPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    months_ahead: int
    age_months: float
    projected_value: float
    confidence: float


class GrowthProjection(BaseModel):
    """
    Short-horizon linear projection.

    The per-step confidence is a placeholder heuristic that decays with the
    horizon; it is not a validated clinical model.
    """

    model_config = ConfigDict(frozen=True)

    projections: List[ProjectionPoint]
    confidence: str
    average_monthly_growth: Optional[float] = None
    current_age_months: Optional[float] = None
    current_value: Optional[float] = None
    message: Optional[str] = None


class GrowthComparison(BaseModel):
    model_config = ConfigDict(frozen=True)

    comparison: str
    status: str
    details: Optional[Dict[str, Any]] = None


class MeasurementAssessment(BaseModel):
    """Results for every chart a single measurement can be plotted on."""

    model_config = ConfigDict(frozen=True)

    weight_for_age: Optional[GrowthResult] = None
    height_for_age: Optional[GrowthResult] = None
    head_circumference_for_age: Optional[GrowthResult] = None
    bmi: Optional[float] = None


class BatchZScoreResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    results: List[GrowthResult]
    total: int
    average_z_score: Optional[float] = None
    average_percentile: Optional[float] = None
    classifications: Dict[str, int] = Field(default_factory=dict)


class ReferenceChart(BaseModel):
    """Reference curve rows for one gender and chart type, ready for plotting."""

    model_config = ConfigDict(frozen=True)

    gender: Gender
    chart_type: ChartType
    points: List[ReferencePoint]
    min_age_days: int
    max_age_days: int
    min_age_months: float
    max_age_months: float
