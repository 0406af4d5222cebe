"""
Storage boundary for patients and measurements.

The engine reads through the GrowthRepository protocol. Numbers arriving
from storage (often Decimal) are normalized to float here, once, so the
numeric core only ever sees floats.
"""

from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, runtime_checkable
import datetime
import logging

from .config import WHO_DAYS_PER_MONTH
from .errors import InvalidInputError, NotFoundError, PatientNotFoundError
from .models import Measurement, MeasurementAssessment, Patient, TimeRange

MEASUREMENT_FIELDS = ("weight", "height", "head_circumference", "bmi")


@runtime_checkable
class GrowthRepository(Protocol):
    """Read and write access to patients, measurements and stored results."""

    def fetch_patient(self, patient_id: str) -> Optional[Patient]:
        """Return the patient, or None if it does not exist."""
        ...

    def list_measurements(
        self, patient_id: str, time_range: Optional[TimeRange] = None
    ) -> List[Measurement]:
        """Return the patient's measurements, optionally limited to a date range."""
        ...

    def persist_growth_result(
        self, measurement: Measurement, assessment: MeasurementAssessment
    ) -> None:
        """Store a measurement together with its computed assessment."""
        ...


def _to_float(value: Any, name: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidInputError(f"{name} must be finite, got {value}")
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"{name} is not numeric: {value!r}") from e


def _to_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value)[:10])
    except ValueError as e:
        raise InvalidInputError(f"Invalid measurement date {value!r}") from e


def measurement_from_record(
    record: Mapping[str, Any], date_of_birth: Optional[datetime.date] = None
) -> Measurement:
    """
    Build a Measurement from a storage row.

    Decimal and string numbers become floats. When the row has no age, it is
    derived from the date of birth (age_months = age_days / 30.4375).

    Raises:
        InvalidInputError: On malformed numbers or dates, or a missing age
            with no date of birth to derive it from.
    """
    measured_on = _to_date(record["date"])
    age_days = record.get("age_days")
    if age_days is None:
        if date_of_birth is None:
            raise InvalidInputError("Measurement has no age and no date of birth")
        age_days = (measured_on - date_of_birth).days
    age_days = int(_to_float(age_days, "age_days"))
    if age_days < 0:
        raise InvalidInputError(f"Measurement predates birth ({age_days} days)")

    age_months = record.get("age_months")
    if age_months is None:
        age_months = round(age_days / WHO_DAYS_PER_MONTH, 2)

    values = {name: _to_float(record.get(name), name) for name in MEASUREMENT_FIELDS}
    return Measurement(
        patient_id=str(record["patient_id"]),
        date=measured_on,
        age_days=age_days,
        age_months=_to_float(age_months, "age_months"),
        **values,
    )


class InMemoryGrowthRepository:
    """
    Dict-backed repository.

    Every write notifies registered listeners with the patient id, so an
    engine can invalidate cached results for that patient.

    Usage:
        repo = InMemoryGrowthRepository()
        repo.add_listener(engine.notify_measurement_changed)
        repo.add_patient(patient)
        repo.add_measurement(measurement)
    """

    def __init__(self) -> None:
        self._patients: Dict[str, Patient] = {}
        self._measurements: Dict[str, List[Measurement]] = {}
        self._assessments: Dict[str, List[MeasurementAssessment]] = {}
        self._listeners: List[Callable[[str], None]] = []

    def add_listener(self, listener: Callable[[str], None]) -> None:
        self._listeners.append(listener)

    def _notify(self, patient_id: str) -> None:
        for listener in self._listeners:
            listener(patient_id)

    def add_patient(self, patient: Patient) -> None:
        self._patients[patient.id] = patient

    def fetch_patient(self, patient_id: str) -> Optional[Patient]:
        return self._patients.get(patient_id)

    def _require_patient(self, patient_id: str) -> Patient:
        patient = self._patients.get(patient_id)
        if patient is None:
            raise PatientNotFoundError(f"Patient {patient_id} not found")
        return patient

    def add_measurement(self, measurement: Measurement) -> None:
        self._require_patient(measurement.patient_id)
        self._measurements.setdefault(measurement.patient_id, []).append(measurement)
        self._notify(measurement.patient_id)

    def add_record(self, record: Mapping[str, Any]) -> Measurement:
        """Normalize a storage-shaped row and add it."""
        patient = self._require_patient(str(record["patient_id"]))
        measurement = measurement_from_record(record, patient.date_of_birth)
        self.add_measurement(measurement)
        return measurement

    def update_measurement(self, old: Measurement, new: Measurement) -> None:
        rows = self._measurements.get(old.patient_id, [])
        try:
            rows[rows.index(old)] = new
        except ValueError as e:
            raise NotFoundError(
                f"No measurement for patient {old.patient_id} on {old.date}"
            ) from e
        self._notify(old.patient_id)

    def delete_measurement(self, measurement: Measurement) -> None:
        rows = self._measurements.get(measurement.patient_id, [])
        if measurement not in rows:
            logging.warning(
                f"Delete of unknown measurement for patient {measurement.patient_id} "
                f"on {measurement.date}"
            )
            return
        rows.remove(measurement)
        self._notify(measurement.patient_id)

    def list_measurements(
        self, patient_id: str, time_range: Optional[TimeRange] = None
    ) -> List[Measurement]:
        rows = sorted(self._measurements.get(patient_id, []), key=lambda m: m.date)
        if time_range is None:
            return rows
        return [
            m
            for m in rows
            if (time_range.start_date is None or m.date >= time_range.start_date)
            and (time_range.end_date is None or m.date <= time_range.end_date)
        ]

    def persist_growth_result(
        self, measurement: Measurement, assessment: MeasurementAssessment
    ) -> None:
        """Store the assessment; a measurement already held for that date is replaced."""
        patient_id = measurement.patient_id
        rows = self._measurements.setdefault(patient_id, [])
        same_visit = [i for i, m in enumerate(rows) if m.date == measurement.date]
        if same_visit:
            rows[same_visit[0]] = measurement
        else:
            rows.append(measurement)
        self._assessments.setdefault(patient_id, []).append(assessment)
        self._notify(patient_id)

    def assessments(self, patient_id: str) -> List[MeasurementAssessment]:
        return list(self._assessments.get(patient_id, []))
