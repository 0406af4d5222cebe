"""
Classifier registry keyed by chart type.

Classifiers register by subclassing BaseClassifier; the registry is built
by introspecting those subclasses once at import.
"""

from typing import Dict, Type

from ..errors import InvalidInputError
from ..models import ChartType
from .base import BandThresholds, BaseClassifier, Classification, Severity

# Import classifier modules to register subclasses
from . import head, height, weight


def _build_registry() -> Dict[ChartType, Type[BaseClassifier]]:
    """Build the registry by discovering BaseClassifier subclasses."""
    registry = {}
    for cls in BaseClassifier.__subclasses__():
        registry[cls.chart_type] = cls
    return registry


registry = _build_registry()

_default_instances: Dict[ChartType, BaseClassifier] = {
    chart_type: cls() for chart_type, cls in registry.items()
}


def get_classifier(chart_type: ChartType) -> BaseClassifier:
    """Return the default-threshold classifier for a chart type."""
    try:
        return _default_instances[ChartType(chart_type)]
    except (KeyError, ValueError) as e:
        raise InvalidInputError(f"No classifier for chart type {chart_type!r}") from e


def classify(chart_type: ChartType, z: float) -> Classification:
    return get_classifier(chart_type).classify(z)


__all__ = [
    "BandThresholds",
    "BaseClassifier",
    "Classification",
    "Severity",
    "classify",
    "get_classifier",
    "registry",
]
