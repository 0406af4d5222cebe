from ..models import ChartType
from .base import BaseClassifier, Classification

HEIGHT_LABELS = ("severely-stunted", "stunted", "normal")


class HeightForAgeClassifier(BaseClassifier):
    """Height-for-age bands: only low stature is graded; any Z > -2 is normal."""

    chart_type = ChartType.HFA

    def validate_config(self) -> None:
        if self.thresholds.moderate_high is not None:
            raise ValueError("Height-for-age classification has no upper bands")

    def classify(self, z: float) -> Classification:
        return self._banded(z, HEIGHT_LABELS)
