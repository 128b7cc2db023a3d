"""Treatment snapshot and metrics models, plus the alerting thresholds."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class PatientStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"


class ConsultationType(str, Enum):
    ENDOCRINO = "ENDOCRINO"   # endocrinology
    NUTRI = "NUTRI"           # nutrition


class AlertType(str, Enum):
    STOCK_LOW = "STOCK_LOW"
    MEDICATION_ENDING = "MEDICATION_ENDING"
    RETURN_PENDING = "RETURN_PENDING"
    PACKAGE_ENDING = "PACKAGE_ENDING"


class Severity(str, Enum):
    GREEN = "GREEN"  # reserved, no check emits it yet
    YELLOW = "YELLOW"
    RED = "RED"


# ---------------------------------------------------------------------------
# Alert thresholds
# ---------------------------------------------------------------------------

STOCK_RED_MG = 10.0
STOCK_YELLOW_MG = 20.0          # also the "low stock" list filter
MEDICATION_RED_DAYS = 7
MEDICATION_YELLOW_DAYS = 14
RETURN_PENDING_WEEKS = 4
PACKAGE_YELLOW_WEEKS = 2
DEFAULT_FREQUENCY_DAYS = 7

CONSULTATION_LABELS = {
    ConsultationType.ENDOCRINO: "Endocrinology",
    ConsultationType.NUTRI: "Nutrition",
}


# ---------------------------------------------------------------------------
# Snapshot (engine input)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PackageTerms:
    """Terms of the treatment package a patient is enrolled in."""

    duration_weeks: int
    total_medication_mg: float
    required_consultations: dict[ConsultationType, int] = field(default_factory=dict)

    def required(self, consultation_type: ConsultationType) -> int:
        return self.required_consultations.get(consultation_type, 0)


@dataclass(frozen=True)
class ApplicationRecord:
    date: date
    dose_mg: float


@dataclass(frozen=True)
class IndicationPhase:
    """A prescribed dosing regimen effective from ``start_date``."""

    start_date: date
    dose_mg_per_application: float
    frequency_days: int
    created_at: datetime
    duration_weeks: int | None = None


@dataclass(frozen=True)
class ConsultationRecord:
    type: ConsultationType
    date: date
    counts_toward_package: bool = True


@dataclass(frozen=True)
class StockAdjustmentRecord:
    adjustment_mg: float


@dataclass(frozen=True)
class PatientSnapshot:
    """Read-only view of one patient's enrollment data."""

    start_date: date
    package: PackageTerms
    status: PatientStatus = PatientStatus.ACTIVE
    applications: tuple[ApplicationRecord, ...] = ()
    indication_phases: tuple[IndicationPhase, ...] = ()
    consultations: tuple[ConsultationRecord, ...] = ()
    stock_adjustments: tuple[StockAdjustmentRecord, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PatientSnapshot:
        """Build a snapshot from its JSON shape (ISO-8601 date strings).

        Example::

            {
              "start_date": "2026-01-05",
              "status": "ACTIVE",
              "package": {"duration_weeks": 12, "total_medication_mg": 90,
                          "required_consultations": {"ENDOCRINO": 3, "NUTRI": 2}},
              "applications": [{"date": "2026-01-05", "dose_mg": 2.5}],
              "indication_phases": [{"start_date": "2026-01-05",
                                     "dose_mg_per_application": 2.5,
                                     "frequency_days": 7,
                                     "created_at": "2026-01-05T10:00:00"}],
              "consultations": [{"type": "NUTRI", "date": "2026-01-12"}],
              "stock_adjustments": [{"adjustment_mg": -2.5}]
            }

        Raises:
            KeyError / ValueError: on missing fields or malformed values.
            TypeError: on a record list holding something other than objects.
        """
        if not isinstance(data, dict):
            raise ValueError("snapshot must be a JSON object")
        pkg = data["package"]
        if not isinstance(pkg, dict):
            raise ValueError("package must be an object")
        raw_required = pkg.get("required_consultations") or {}
        if not isinstance(raw_required, dict):
            raise ValueError("required_consultations must be an object")
        required = {ConsultationType(k): int(v) for k, v in raw_required.items()}
        return cls(
            start_date=parse_date(data["start_date"]),
            status=PatientStatus(data.get("status", PatientStatus.ACTIVE.value)),
            package=PackageTerms(
                duration_weeks=int(pkg["duration_weeks"]),
                total_medication_mg=float(pkg["total_medication_mg"]),
                required_consultations=required,
            ),
            applications=tuple(
                ApplicationRecord(date=parse_date(a["date"]), dose_mg=float(a["dose_mg"]))
                for a in data.get("applications", [])
            ),
            indication_phases=tuple(
                IndicationPhase(
                    start_date=parse_date(p["start_date"]),
                    dose_mg_per_application=float(p["dose_mg_per_application"]),
                    frequency_days=int(p["frequency_days"]),
                    created_at=parse_timestamp(
                        p.get("created_at") or f"{p['start_date']}T00:00:00"
                    ),
                    duration_weeks=(
                        int(p["duration_weeks"]) if p.get("duration_weeks") else None
                    ),
                )
                for p in data.get("indication_phases", [])
            ),
            consultations=tuple(
                ConsultationRecord(
                    type=ConsultationType(c["type"]),
                    date=parse_date(c["date"]),
                    counts_toward_package=bool(c.get("counts_toward_package", True)),
                )
                for c in data.get("consultations", [])
            ),
            stock_adjustments=tuple(
                StockAdjustmentRecord(adjustment_mg=float(s["adjustment_mg"]))
                for s in data.get("stock_adjustments", [])
            ),
        )


# ---------------------------------------------------------------------------
# Metrics (engine output)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Alert:
    type: AlertType
    severity: Severity
    message: str

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
        }


@dataclass(frozen=True)
class CurrentIndication:
    dose_mg: float
    frequency_days: int


@dataclass(frozen=True)
class ConsultationProgress:
    completed: int
    remaining: int

    @property
    def total(self) -> int:
        return self.completed + self.remaining


@dataclass(frozen=True)
class PatientMetrics:
    """Derived progress metrics and alerts for one patient. Never persisted."""

    weeks_elapsed: int
    weeks_remaining: int
    expected_end_date: date

    consultations: dict[ConsultationType, ConsultationProgress]

    mg_applied_total: float
    mg_adjusted: float
    mg_remaining: float

    current_indication: CurrentIndication | None
    estimated_applications_left: int
    estimated_days_left: int
    estimated_medication_end_date: date | None
    next_application_date: date | None

    alerts: tuple[Alert, ...]

    @property
    def endocrino_completed(self) -> int:
        return self.consultations[ConsultationType.ENDOCRINO].completed

    @property
    def endocrino_remaining(self) -> int:
        return self.consultations[ConsultationType.ENDOCRINO].remaining

    @property
    def nutri_completed(self) -> int:
        return self.consultations[ConsultationType.NUTRI].completed

    @property
    def nutri_remaining(self) -> int:
        return self.consultations[ConsultationType.NUTRI].remaining

    @property
    def is_low_stock(self) -> bool:
        return self.mg_remaining <= STOCK_YELLOW_MG

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation (dates as ISO strings)."""
        indication = self.current_indication
        return {
            "weeks_elapsed": self.weeks_elapsed,
            "weeks_remaining": self.weeks_remaining,
            "expected_end_date": self.expected_end_date.isoformat(),
            "consultations": {
                ctype.value: {
                    "completed": progress.completed,
                    "remaining": progress.remaining,
                }
                for ctype, progress in self.consultations.items()
            },
            "mg_applied_total": self.mg_applied_total,
            "mg_adjusted": self.mg_adjusted,
            "mg_remaining": self.mg_remaining,
            "current_indication": (
                {"dose_mg": indication.dose_mg, "frequency_days": indication.frequency_days}
                if indication is not None
                else None
            ),
            "estimated_applications_left": self.estimated_applications_left,
            "estimated_days_left": self.estimated_days_left,
            "estimated_medication_end_date": _iso_or_none(self.estimated_medication_end_date),
            "next_application_date": _iso_or_none(self.next_application_date),
            "alerts": [a.to_dict() for a in self.alerts],
        }


def parse_date(value: str | date) -> date:
    """Parse an ISO date (``YYYY-MM-DD``, a full timestamp is truncated)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Invalid date: {value!r}")
    return date.fromisoformat(value.strip()[:10])


def _iso_or_none(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO timestamp as a UTC-aware datetime. Naive values are UTC."""
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str):
        raise ValueError(f"Invalid timestamp: {value!r}")
    parsed = datetime.fromisoformat(value.strip())
    return as_utc(parsed)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
