"""
WHO growth standards analytics: LMS z-scores, percentiles, clinical
classification and growth trend analysis for pediatric measurements.
"""

from .engine import GrowthStandardsEngine
from .models import ChartType, Gender, Measurement, Patient, TimeRange
from .reference import ReferenceStore, load_who_reference

__version__ = "0.1.0"

__all__ = [
    "ChartType",
    "Gender",
    "GrowthStandardsEngine",
    "Measurement",
    "Patient",
    "ReferenceStore",
    "TimeRange",
    "load_who_reference",
]
