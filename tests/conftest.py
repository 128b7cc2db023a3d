"""Shared test fixtures for M90 treatment tracker tests."""

from __future__ import annotations

import sys
from datetime import date, datetime
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("DB_PATH", ":memory:")
    monkeypatch.setenv("CATALOG_PATH", "")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from m90.core.storage.models import Clinic, PackageTemplate  # noqa: E402
from m90.domains.treatment.domain_logic.metrics_models import (  # noqa: E402
    ApplicationRecord,
    ConsultationRecord,
    ConsultationType,
    IndicationPhase,
    PackageTerms,
    PatientSnapshot,
    StockAdjustmentRecord,
)

TODAY = date(2026, 3, 2)


def make_package(
    duration_weeks: int = 12,
    total_medication_mg: float = 90.0,
    endocrino: int = 3,
    nutri: int = 2,
) -> PackageTerms:
    """Package terms with the standard M90 defaults."""
    return PackageTerms(
        duration_weeks=duration_weeks,
        total_medication_mg=total_medication_mg,
        required_consultations={
            ConsultationType.ENDOCRINO: endocrino,
            ConsultationType.NUTRI: nutri,
        },
    )


def make_phase(
    start_date: date,
    dose_mg: float = 2.5,
    frequency_days: int = 7,
    created_at: datetime | None = None,
    duration_weeks: int | None = None,
) -> IndicationPhase:
    return IndicationPhase(
        start_date=start_date,
        dose_mg_per_application=dose_mg,
        frequency_days=frequency_days,
        created_at=created_at or datetime.combine(start_date, datetime.min.time()),
        duration_weeks=duration_weeks,
    )


def make_snapshot(
    start_date: date = date(2026, 2, 2),
    package: PackageTerms | None = None,
    applications: list[tuple[date, float]] | None = None,
    phases: list[IndicationPhase] | None = None,
    consultations: list[tuple[ConsultationType, date, bool]] | None = None,
    adjustments: list[float] | None = None,
) -> PatientSnapshot:
    """Create a test snapshot with sensible defaults."""
    return PatientSnapshot(
        start_date=start_date,
        package=package or make_package(),
        applications=tuple(
            ApplicationRecord(date=d, dose_mg=mg) for d, mg in (applications or [])
        ),
        indication_phases=tuple(phases or []),
        consultations=tuple(
            ConsultationRecord(type=t, date=d, counts_toward_package=counts)
            for t, d, counts in (consultations or [])
        ),
        stock_adjustments=tuple(
            StockAdjustmentRecord(adjustment_mg=mg) for mg in (adjustments or [])
        ),
    )


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def treatment_db():
    """Create an in-memory TreatmentDatabase for testing."""
    from m90.core.storage.database import TreatmentDatabase

    db = TreatmentDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from m90.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def treatment_repository(treatment_db, field_encryptor):
    """Create a TreatmentRepository backed by in-memory SQLite, catalog seeded."""
    from m90.core.storage.repository import TreatmentRepository

    repo = TreatmentRepository(treatment_db, field_encryptor)
    repo.upsert_clinic(Clinic(id="clinic-sp", name="Clinica SP Centro", city="Sao Paulo"))
    repo.upsert_clinic(Clinic(id="clinic-rj", name="Clinica RJ Barra", city="Rio de Janeiro"))
    repo.upsert_package_template(PackageTemplate(
        id="m90",
        name="M90",
        duration_weeks=12,
        medication_total_mg=90.0,
        endocrino_consultations=3,
        nutri_consultations=2,
    ))
    repo.upsert_package_template(PackageTemplate(
        id="legacy",
        name="Legacy",
        duration_weeks=8,
        medication_total_mg=40.0,
        endocrino_consultations=1,
        nutri_consultations=1,
        active=False,
    ))
    return repo


@pytest.fixture
def audit_logger(treatment_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from m90.core.audit.logger import AuditLogger

    return AuditLogger(treatment_db)


@pytest.fixture
def treatment_service(treatment_repository):
    from m90.domains.treatment.domain_logic.treatment_service import TreatmentService

    return TreatmentService(treatment_repository)
