"""Data models for the treatment persistence layer."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Clinic:
    id: str
    name: str
    city: str = ""


@dataclass
class PackageTemplate:
    """A treatment package definition (duration, medication, consultations)."""

    id: str
    name: str
    duration_weeks: int
    medication_total_mg: float
    endocrino_consultations: int
    nutri_consultations: int
    active: bool = True


@dataclass
class PatientRecord:
    """An enrolled patient. ``clinic_name`` is filled by joined reads."""

    id: str
    full_name: str
    clinic_id: str
    package_template_id: str
    start_date: str  # ISO date
    status: str = "ACTIVE"
    notes: str | None = None  # stored encrypted
    clinic_name: str = ""
    created_at: str = ""


@dataclass
class ApplicationEntry:
    id: str
    patient_id: str
    application_date: str
    dose_mg: float
    notes: str | None = None  # stored encrypted
    administered_by: str = ""
    created_at: str = ""


@dataclass
class IndicationEntry:
    id: str
    patient_id: str
    start_date: str
    dose_mg_per_application: float
    frequency_days: int
    duration_weeks: int | None = None
    notes: str | None = None  # stored encrypted
    created_at: str = ""


@dataclass
class ConsultationEntry:
    id: str
    patient_id: str
    type: str  # 'ENDOCRINO' | 'NUTRI'
    consultation_date: str
    professional: str
    counts_in_package: bool = True
    notes: str | None = None  # stored encrypted
    created_at: str = ""


@dataclass
class MeasurementEntry:
    id: str
    patient_id: str
    measurement_date: str
    weight_kg: float
    fat_percentage: float | None = None
    lean_mass_kg: float | None = None
    notes: str | None = None  # stored encrypted
    created_at: str = ""


@dataclass
class StockAdjustmentEntry:
    id: str
    patient_id: str
    adjustment_mg: float
    reason: str = ""  # stored encrypted
    created_at: str = ""


@dataclass
class PatientHistory:
    """A patient with every related record, newest first."""

    patient: PatientRecord
    package: PackageTemplate
    applications: list[ApplicationEntry] = field(default_factory=list)
    indications: list[IndicationEntry] = field(default_factory=list)
    consultations: list[ConsultationEntry] = field(default_factory=list)
    measurements: list[MeasurementEntry] = field(default_factory=list)
    stock_adjustments: list[StockAdjustmentEntry] = field(default_factory=list)
