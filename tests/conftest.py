import datetime

import pandas as pd
import pytest

from pedgrowth.cache import InMemoryCacheProvider
from pedgrowth.engine import GrowthStandardsEngine
from pedgrowth.models import Gender, Measurement, Patient
from pedgrowth.reference import ReferenceStore
from pedgrowth.repository import InMemoryGrowthRepository

BIRTH = datetime.date(2024, 1, 1)


@pytest.fixture
def reference_frame() -> pd.DataFrame:
    """Small reference table: flat WFA for boys, rising HFA and HcFA."""
    return pd.DataFrame(
        {
            "gender": ["MALE", "MALE", "MALE", "MALE", "MALE", "MALE", "MALE"],
            "chart_type": ["WFA", "WFA", "HFA", "HFA", "HFA", "HcFA", "HcFA"],
            "age_days": [0, 30, 0, 30, 365, 0, 365],
            "age_months": [0.0, 1.0, 0.0, 1.0, 12.0, 0.0, 12.0],
            "L": [1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0],
            "M": [3.3, 3.3, 50.0, 54.0, 76.0, 34.5, 46.0],
            "S": [0.15, 0.15, 0.04, 0.04, 0.04, 0.035, 0.03],
        }
    )


@pytest.fixture
def store(reference_frame: pd.DataFrame) -> ReferenceStore:
    return ReferenceStore.from_frame(reference_frame)


@pytest.fixture
def patient() -> Patient:
    return Patient(id="p1", date_of_birth=BIRTH, gender=Gender.MALE, tenant_id="clinic-a")


def _make_measurement(
    days: int, weight=None, height=None, head_circumference=None, patient_id: str = "p1"
) -> Measurement:
    """Measurement taken `days` after BIRTH."""
    return Measurement(
        patient_id=patient_id,
        date=BIRTH + datetime.timedelta(days=days),
        age_days=days,
        age_months=round(days / 30.4375, 2),
        weight=weight,
        height=height,
        head_circumference=head_circumference,
    )


@pytest.fixture
def make_measurement():
    return _make_measurement


@pytest.fixture
def history() -> list:
    """Four monthly visits with steady growth."""
    return [
        _make_measurement(0, weight=3.3, height=50.0, head_circumference=34.5),
        _make_measurement(30, weight=4.2, height=54.0, head_circumference=37.0),
        _make_measurement(61, weight=5.1, height=57.5),
        _make_measurement(91, weight=5.9, height=60.5),
    ]


@pytest.fixture
def repository(patient: Patient, history: list) -> InMemoryGrowthRepository:
    repo = InMemoryGrowthRepository()
    repo.add_patient(patient)
    for m in history:
        repo.add_measurement(m)
    return repo


@pytest.fixture
def engine(store: ReferenceStore, repository: InMemoryGrowthRepository) -> GrowthStandardsEngine:
    eng = GrowthStandardsEngine(
        reference_store=store, repository=repository, cache=InMemoryCacheProvider(max_entries=64)
    )
    repository.add_listener(eng.notify_measurement_changed)
    return eng

