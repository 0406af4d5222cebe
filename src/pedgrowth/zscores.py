"""
LMS Z-score and percentile calculation for anthropometric measurements.

Implements the WHO LMS (Box-Cox) transformation from a raw measurement to a
Z-score, its inverse, and a closed-form standard normal CDF used to convert
Z-scores into percentiles without a statistics library.

Scalar functions validate their inputs and raise InvalidInputError; array
functions return NaN for invalid entries and leave the decision to the caller.
"""

from typing import Union
import math

import numpy as np
from numba import jit

from .config import (
    L_ZERO_THRESHOLD,
    PERCENTILE_DECIMALS,
    PERCENTILE_LOWER_CLAMP,
    PERCENTILE_UPPER_CLAMP,
    ZSCORE_DECIMALS,
)
from .errors import InvalidInputError

# Abramowitz & Stegun 26.2.17 coefficients (|error| < 7.5e-8)
_AS_P = 0.2316419
_AS_B1 = 0.319381530
_AS_B2 = -0.356563782
_AS_B3 = 1.781477937
_AS_B4 = -1.821255978
_AS_B5 = 1.330274429
_INV_SQRT_2PI = 1.0 / math.sqrt(2.0 * math.pi)

ArrayLike = Union[float, np.ndarray]


@jit(nopython=True, cache=True)
def _lms_zscore_kernel(
    X: np.ndarray, L: np.ndarray, M: np.ndarray, S: np.ndarray
) -> np.ndarray:
    n = X.shape[0]
    z = np.empty(n, dtype=np.float64)
    for i in range(n):
        x = X[i]
        l = L[i]
        m = M[i]
        s = S[i]
        if not (
            np.isfinite(x) and np.isfinite(l) and np.isfinite(m) and np.isfinite(s)
        ):
            z[i] = np.nan
        elif x <= 0.0 or m <= 0.0 or s <= 0.0:
            z[i] = np.nan
        elif abs(l) > L_ZERO_THRESHOLD:
            z[i] = ((x / m) ** l - 1.0) / (l * s)
        else:
            z[i] = np.log(x / m) / s
    return z


def lms_zscore(X: ArrayLike, L: ArrayLike, M: ArrayLike, S: ArrayLike) -> np.ndarray:
    """
    Calculate LMS z-scores for arrays of measurements.

    For |L| > 1e-6: z = ((X/M)^L - 1) / (L * S)
    Otherwise:      z = ln(X/M) / S, the Box-Cox limit as L -> 0.

    Inputs are broadcast against each other and the result keeps the
    broadcast shape. Entries with non-positive X, M or S (or non-finite
    inputs) come back as NaN.

    References:
    - Cole, T.J. (1990). "The LMS method for constructing normalized growth standards."
      European Journal of Clinical Nutrition, 44(1), 45-60.
    - WHO Child Growth Standards: Methods and development (2006).

    Args:
        X: Observed values (kg/cm)
        L: Box-Cox power
        M: Median
        S: Coefficient of variation

    Returns:
        Z-scores as float64 array
    """
    X_arr, L_arr, M_arr, S_arr = np.broadcast_arrays(
        np.asarray(X, dtype=np.float64),
        np.asarray(L, dtype=np.float64),
        np.asarray(M, dtype=np.float64),
        np.asarray(S, dtype=np.float64),
    )
    shape = X_arr.shape
    if X_arr.size == 0:
        return np.empty(shape, dtype=np.float64)
    z = _lms_zscore_kernel(
        np.ascontiguousarray(X_arr).ravel(),
        np.ascontiguousarray(L_arr).ravel(),
        np.ascontiguousarray(M_arr).ravel(),
        np.ascontiguousarray(S_arr).ravel(),
    )
    return z.reshape(shape)


def lms_value(Z: ArrayLike, L: ArrayLike, M: ArrayLike, S: ArrayLike) -> np.ndarray:
    """
    Inverse LMS transform: measurement value at a given z-score.

    value = M * (1 + L*S*Z)^(1/L), or M * exp(S*Z) when L is ~0.
    Where 1 + L*S*Z <= 0 the value is undefined and NaN is returned.
    """
    Z_arr, L_arr, M_arr, S_arr = np.broadcast_arrays(
        np.asarray(Z, dtype=np.float64),
        np.asarray(L, dtype=np.float64),
        np.asarray(M, dtype=np.float64),
        np.asarray(S, dtype=np.float64),
    )
    power_mask = np.abs(L_arr) > L_ZERO_THRESHOLD
    base = 1.0 + L_arr * S_arr * Z_arr
    safe_L = np.where(power_mask, L_arr, 1.0)
    with np.errstate(invalid="ignore", divide="ignore", over="ignore"):
        power_value = M_arr * np.power(np.where(base > 0, base, np.nan), 1.0 / safe_L)
        log_value = M_arr * np.exp(S_arr * Z_arr)
    return np.where(power_mask, power_value, log_value)


def _validate_lms_inputs(value: float, L: float, M: float, S: float) -> None:
    """Reject inputs that would make the LMS transform undefined."""
    for name, v in (("value", value), ("L", L), ("M", M), ("S", S)):
        if v is None or not math.isfinite(v):
            raise InvalidInputError(f"{name} must be a finite number, got {v!r}")
    if value <= 0:
        raise InvalidInputError(f"Measurement value must be positive, got {value}")
    if M <= 0 or S <= 0:
        raise InvalidInputError(
            f"Invalid LMS parameters: M and S must be positive (M={M}, S={S})"
        )


def calculate_lms_zscore(value: float, L: float, M: float, S: float) -> float:
    """
    Calculate the z-score of a single measurement.

    Args:
        value: Observed measurement (kg/cm), must be > 0
        L: Box-Cox power
        M: Median, must be > 0
        S: Coefficient of variation, must be > 0

    Returns:
        Z-score at full float precision

    Raises:
        InvalidInputError: If preconditions fail or the transform is not finite.
    """
    _validate_lms_inputs(value, L, M, S)
    try:
        if abs(L) > L_ZERO_THRESHOLD:
            z = ((value / M) ** L - 1.0) / (L * S)
        else:
            z = math.log(value / M) / S
    except (OverflowError, ZeroDivisionError, ValueError) as e:
        raise InvalidInputError(f"LMS transform failed for value={value}: {e}") from e
    if not math.isfinite(z):
        raise InvalidInputError(f"LMS transform produced a non-finite z-score for value={value}")
    return float(z)


def _standard_normal_cdf(z: np.ndarray) -> np.ndarray:
    """Standard normal CDF via Abramowitz & Stegun 26.2.17."""
    x = np.abs(z)
    t = 1.0 / (1.0 + _AS_P * x)
    poly = t * (_AS_B1 + t * (_AS_B2 + t * (_AS_B3 + t * (_AS_B4 + t * _AS_B5))))
    upper = 1.0 - _INV_SQRT_2PI * np.exp(-0.5 * x * x) * poly
    return np.where(z >= 0, upper, 1.0 - upper)


def zscores_to_percentiles(z: ArrayLike) -> np.ndarray:
    """
    Convert z-scores to percentiles (0-100).

    Results are clipped to [0.0001, 99.9999], so Z > 5 maps to 99.9999 and
    Z < -5 to 0.0001 while the output stays non-decreasing in Z.

    Raises:
        InvalidInputError: If any z-score is NaN or infinite.
    """
    z_arr = np.asarray(z, dtype=np.float64)
    if not np.all(np.isfinite(z_arr)):
        raise InvalidInputError("Cannot convert non-finite z-scores to percentiles")
    percentiles = _standard_normal_cdf(z_arr) * 100.0
    return np.clip(percentiles, PERCENTILE_LOWER_CLAMP, PERCENTILE_UPPER_CLAMP)


def zscore_to_percentile(z: float) -> float:
    """Convert a single z-score to a percentile; percentile(0) == 50."""
    return float(zscores_to_percentiles(z))


def round_zscore(z: float) -> float:
    return round(float(z), ZSCORE_DECIMALS)


def round_percentile(p: float) -> float:
    return round(float(p), PERCENTILE_DECIMALS)
