"""
Base classifier for Z-score clinical bands.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional, Sequence
import math

from pydantic import BaseModel, ConfigDict, field_validator

from ..errors import InvalidInputError
from ..models import ChartType


class Severity(str, Enum):
    NORMAL = "normal"
    MODERATE = "moderate"
    SEVERE = "severe"


class Classification(BaseModel):
    """Clinical label for a Z-score and the severity of that label."""

    model_config = ConfigDict(frozen=True)

    label: str
    severity: Severity


class BandThresholds(BaseModel):
    """
    Z cut-points between clinical bands.

    Bands are boundary-inclusive toward the more severe side of normal:
    Z <= moderate_low is already abnormal, and so is Z > moderate_high.
    Charts with no upper bands leave the high thresholds unset.

    Attributes:
        severe_low (float): Below this is the severe low band.
        moderate_low (float): At or below this (and >= severe_low) is moderate low.
        moderate_high (Optional[float]): Above this is moderate high.
        severe_high (Optional[float]): Above this is severe high.
    """

    model_config = ConfigDict(frozen=True, validate_default=True)

    severe_low: float = -3.0
    moderate_low: float = -2.0
    moderate_high: Optional[float] = None
    severe_high: Optional[float] = None

    @field_validator("moderate_low", mode="after")
    @classmethod
    def severe_lt_moderate_low(cls, v: float, info: Any) -> float:
        """Validate that severe_low < moderate_low."""
        if info.data.get("severe_low", float("inf")) >= v:
            raise ValueError("severe_low must be < moderate_low")
        return v

    @field_validator("moderate_high", mode="after")
    @classmethod
    def low_lt_high(cls, v: Optional[float], info: Any) -> Optional[float]:
        """Validate that moderate_low < moderate_high."""
        if v is not None and info.data.get("moderate_low", float("inf")) >= v:
            raise ValueError("moderate_low must be < moderate_high")
        return v

    @field_validator("severe_high", mode="after")
    @classmethod
    def moderate_lt_severe_high(cls, v: Optional[float], info: Any) -> Optional[float]:
        """Validate that moderate_high < severe_high, and that both are set together."""
        moderate_high = info.data.get("moderate_high")
        if (v is None) != (moderate_high is None):
            raise ValueError("moderate_high and severe_high must be set together")
        if v is not None and moderate_high >= v:
            raise ValueError("moderate_high must be < severe_high")
        return v


class BaseClassifier(ABC):
    """
    Abstract base class for chart-specific Z-score classifiers.

    Each subclass handles one ChartType and implements `classify` and
    `validate_config`. Subclasses are discovered by the package registry.

    Example subclass implementation:
        class WeightForAgeClassifier(BaseClassifier):
            chart_type = ChartType.WFA

            def classify(self, z: float) -> Classification:
                return self._banded(z, ("severe-underweight", "underweight", "normal"))
    """

    chart_type: ChartType

    def __init__(self, thresholds: Optional[BandThresholds] = None) -> None:
        self.thresholds = thresholds or self.default_thresholds()
        self.validate_config()

    @classmethod
    def default_thresholds(cls) -> BandThresholds:
        return BandThresholds()

    @abstractmethod
    def classify(self, z: float) -> Classification:
        """
        Classify a Z-score into a clinical band.

        Raises:
            InvalidInputError: If z is NaN or infinite.
        """
        pass

    @abstractmethod
    def validate_config(self) -> None:
        """
        Validate classifier-specific thresholds.

        Raises:
            ValueError: If thresholds are incompatible with this chart.
        """
        pass

    def _validate_zscore(self, z: float) -> float:
        if z is None or not math.isfinite(z):
            raise InvalidInputError(f"Cannot classify non-finite z-score {z!r}")
        return float(z)

    def _banded(self, z: float, labels: Sequence[str]) -> Classification:
        """
        Map z onto labels ordered from most negative to most positive band.

        Three labels cover (severe low, moderate low, normal); five add
        (moderate high, severe high).
        """
        z = self._validate_zscore(z)
        t = self.thresholds
        if z < t.severe_low:
            return Classification(label=labels[0], severity=Severity.SEVERE)
        if z <= t.moderate_low:
            return Classification(label=labels[1], severity=Severity.MODERATE)
        if t.moderate_high is None or z <= t.moderate_high:
            return Classification(label=labels[2], severity=Severity.NORMAL)
        if z <= t.severe_high:
            return Classification(label=labels[3], severity=Severity.MODERATE)
        return Classification(label=labels[4], severity=Severity.SEVERE)
