"""
Exception hierarchy for the growth analytics engine.

Every error carries a stable ``code`` that request handlers can map to a
client response, and also subclasses the closest builtin exception so plain
``except ValueError`` / ``except LookupError`` callers keep working.
"""

INSUFFICIENT_DATA = "insufficient_data"


class GrowthAnalyticsError(Exception):
    """Base class for all engine errors."""

    code = "INTERNAL"


class InvalidInputError(GrowthAnalyticsError, ValueError):
    """Non-positive measurement or LMS parameter, negative age, bad enum value."""

    code = "INVALID_INPUT"


class NotFoundError(GrowthAnalyticsError, LookupError):
    """Requested patient, measurement or reference data does not exist."""

    code = "NOT_FOUND"


class PatientNotFoundError(NotFoundError):
    pass


class ReferenceDataNotFoundError(NotFoundError):
    pass


class ForbiddenError(GrowthAnalyticsError, PermissionError):
    """Patient belongs to a different tenant than the caller."""

    code = "FORBIDDEN"
