"""
Measurement scoring against the WHO reference.

Combines reference interpolation, the LMS transform, the percentile
conversion and the chart classifier into one result per measurement value.
"""

from typing import Tuple

import numpy as np

from .classifiers import classify
from .models import ChartType, Gender, GrowthResult, ReferenceValues
from .reference import ReferenceStore
from .zscores import (
    calculate_lms_zscore,
    lms_zscore,
    round_percentile,
    round_zscore,
    zscore_to_percentile,
    zscores_to_percentiles,
)


def assess_value(
    store: ReferenceStore,
    gender: Gender,
    chart_type: ChartType,
    age_days: float,
    value: float,
) -> GrowthResult:
    """
    Score a single measurement value.

    Z and percentile are rounded for display (3 and 1 decimals); the
    classification is taken from the rounded Z so the label always agrees
    with the number shown next to it.

    Raises:
        InvalidInputError: Non-positive value, negative age or bad enum.
        ReferenceDataNotFoundError: No reference rows for gender/chart type.
    """
    params = store.interpolate(gender, chart_type, age_days)
    z = calculate_lms_zscore(value, params.L, params.M, params.S)
    z_display = round_zscore(z)
    return GrowthResult(
        z_score=z_display,
        percentile=round_percentile(zscore_to_percentile(z)),
        classification=classify(chart_type, z_display).label,
        reference_values=ReferenceValues(
            median=params.M,
            sd2neg=params.sd_values["sd2neg"],
            sd2pos=params.sd_values["sd2pos"],
        ),
        interpolated=params.interpolated,
    )


def score_series(
    store: ReferenceStore,
    gender: Gender,
    chart_type: ChartType,
    ages_days: np.ndarray,
    values: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Vectorized Z-scores and percentiles for a measurement series.

    Values must already be positive and finite; results are unrounded.

    Returns:
        Tuple of (z_scores, percentiles) arrays.
    """
    L, M, S = store.interpolate_many(gender, chart_type, ages_days)
    z = lms_zscore(np.asarray(values, dtype=np.float64), L, M, S)
    return z, zscores_to_percentiles(z)
