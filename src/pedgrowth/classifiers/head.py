from ..models import ChartType
from .base import BandThresholds, BaseClassifier, Classification

HEAD_LABELS = (
    "severely-microcephalic",
    "microcephalic",
    "normal",
    "macrocephalic",
    "severely-macrocephalic",
)


class HeadCircumferenceForAgeClassifier(BaseClassifier):
    chart_type = ChartType.HcFA

    @classmethod
    def default_thresholds(cls) -> BandThresholds:
        return BandThresholds(
            severe_low=-3.0, moderate_low=-2.0, moderate_high=2.0, severe_high=3.0
        )

    def validate_config(self) -> None:
        if self.thresholds.moderate_high is None:
            raise ValueError(
                "Head circumference classification requires upper thresholds"
            )

    def classify(self, z: float) -> Classification:
        return self._banded(z, HEAD_LABELS)
