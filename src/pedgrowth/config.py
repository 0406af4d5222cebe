"""
Configuration constants and validated engine settings.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

# Time constants
DAYS_PER_MONTH = 30.44
DAYS_PER_YEAR = 365.25
DAYS_PER_WEEK = 7.0
WHO_DAYS_PER_MONTH = 30.4375  # WHO tables index months as 30.4375 days

# LMS constants
L_ZERO_THRESHOLD = 1e-6
PERCENTILE_UPPER_CLAMP = 99.9999
PERCENTILE_LOWER_CLAMP = 0.0001

# Display precision at API boundaries
ZSCORE_DECIMALS = 3
PERCENTILE_DECIMALS = 1
VELOCITY_DECIMALS = 4

# Cache lifetimes in seconds; None never expires
CACHE_PROFILES: Dict[str, Optional[float]] = {
    "reference": None,
    "medical_short": 1800.0,
    "medical_medium": 86400.0,
}

# Reference table columns
REFERENCE_COLUMNS = [
    "gender",
    "chart_type",
    "age_days",
    "age_months",
    "L",
    "M",
    "S",
]

SD_COLUMNS = [
    "sd4neg",
    "sd3neg",
    "sd2neg",
    "sd1neg",
    "sd0",
    "sd1pos",
    "sd2pos",
    "sd3pos",
    "sd4pos",
]

# Z level of each SD curve column
SD_LEVELS = {
    "sd4neg": -4.0,
    "sd3neg": -3.0,
    "sd2neg": -2.0,
    "sd1neg": -1.0,
    "sd0": 0.0,
    "sd1pos": 1.0,
    "sd2pos": 2.0,
    "sd3pos": 3.0,
    "sd4pos": 4.0,
}


class VelocityThresholds(BaseModel):
    """
    Monthly growth-rate limits used by the velocity comparison.

    Attributes:
        slow (float): Rates strictly below this are 'slow'.
        fast (float): Rates strictly above this are 'fast'.
    """

    slow: float
    fast: float

    @field_validator("fast", mode="after")
    @classmethod
    def slow_lt_fast(cls, v: float, info) -> float:
        """Validate that slow < fast."""
        if info.data.get("slow", float("inf")) >= v:
            raise ValueError("slow threshold must be < fast threshold")
        return v


class EngineConfig(BaseModel):
    """
    Tunable settings for the analytics engine.

    Attributes:
        projection_step_months (int): Spacing between projected points.
        projection_intervals (int): Number of most recent intervals averaged for the rate.
        projection_base_confidence (float): Confidence before any decay.
        projection_confidence_decay (float): Confidence lost per projection step.
        projection_confidence_floor (float): Minimum confidence for any step.
        projection_lookback_days (int): History window feeding the projection.
        velocity_window_months (int): Window for the velocity comparison.
        velocity_thresholds (dict): Per chart type slow/fast limits; charts without
            an entry are always 'normal'.
        cache_max_entries (int): Bound for the in-memory cache.
    """

    projection_step_months: int = Field(default=3, gt=0)
    projection_intervals: int = Field(default=3, gt=0)
    projection_base_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    projection_confidence_decay: float = Field(default=0.05, ge=0.0)
    projection_confidence_floor: float = Field(default=0.3, ge=0.0, le=1.0)
    projection_lookback_days: int = Field(default=365, gt=0)
    velocity_window_months: int = Field(default=3, gt=0)
    velocity_thresholds: Dict[str, VelocityThresholds] = Field(
        default_factory=lambda: {
            "WFA": VelocityThresholds(slow=0.1, fast=0.5),
            "HFA": VelocityThresholds(slow=0.3, fast=1.0),
        }
    )
    cache_max_entries: int = Field(default=2048, gt=0)

    @field_validator("projection_confidence_floor", mode="after")
    @classmethod
    def floor_le_base(cls, v: float, info) -> float:
        """Validate that the confidence floor does not exceed the base."""
        if v > info.data.get("projection_base_confidence", 1.0):
            raise ValueError("confidence floor must be <= base confidence")
        return v

    @field_validator("velocity_thresholds", mode="after")
    @classmethod
    def known_chart_types(
        cls, v: Dict[str, VelocityThresholds]
    ) -> Dict[str, VelocityThresholds]:
        """Ensure thresholds are keyed by known chart types."""
        unknown = set(v) - {"WFA", "HFA", "HcFA"}
        if unknown:
            raise ValueError(f"Unknown chart types in velocity thresholds: {sorted(unknown)}")
        return v


DEFAULT_CONFIG = EngineConfig()
