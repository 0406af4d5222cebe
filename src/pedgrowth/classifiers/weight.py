from ..models import ChartType
from .base import BandThresholds, BaseClassifier, Classification

WEIGHT_LABELS = (
    "severe-underweight",
    "underweight",
    "normal",
    "overweight",
    "obese",
)


class WeightForAgeClassifier(BaseClassifier):
    """
    Weight-for-age bands.

    Z < -3 severe-underweight, -3 <= Z <= -2 underweight, -2 < Z <= 2 normal,
    2 < Z <= 3 overweight, Z > 3 obese.
    """

    chart_type = ChartType.WFA

    @classmethod
    def default_thresholds(cls) -> BandThresholds:
        return BandThresholds(
            severe_low=-3.0, moderate_low=-2.0, moderate_high=2.0, severe_high=3.0
        )

    def validate_config(self) -> None:
        if self.thresholds.moderate_high is None:
            raise ValueError("Weight-for-age classification requires upper thresholds")

    def classify(self, z: float) -> Classification:
        return self._banded(z, WEIGHT_LABELS)
