"""Field validation for submitted treatment records.

Each ``validate_*`` function takes raw tool arguments, checks them in order
and raises :class:`ValidationError` carrying the first failure. On success
it returns the normalized values ready to be persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

from m90.domains.treatment.domain_logic.metrics_models import (
    DEFAULT_FREQUENCY_DAYS,
    ConsultationType,
    PatientStatus,
    parse_date,
)


class TreatmentError(Exception):
    """Base class for caller-facing treatment errors."""


class ValidationError(TreatmentError):
    """Raised when a submitted field fails validation."""


class NotFoundError(TreatmentError):
    """Raised when a referenced patient, clinic or package does not exist."""


@dataclass
class InitialIndication:
    dose_mg: float
    frequency_days: int


def _required_date(value: Any, message: str) -> date:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(message)
    try:
        return parse_date(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid date: {value!r}") from exc


def _number(value: Any, field_name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field_name} must be a number") from exc


def _required_text(value: str | None, message: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(message)
    return value.strip()


def validate_patient(
    full_name: str,
    clinic_id: str,
    package_template_id: str,
    start_date: str,
    initial_dose_mg: float | None = None,
    initial_frequency_days: int | None = None,
) -> tuple[str, date, InitialIndication | None]:
    """Validate a new patient registration.

    Returns:
        ``(full_name, start_date, initial_indication)``; the indication is
        ``None`` unless a positive initial dose was given.
    """
    name = (full_name or "").strip()
    if len(name) < 2:
        raise ValidationError("Name must have at least 2 characters")
    _required_text(clinic_id, "Select a clinic")
    _required_text(package_template_id, "Select a package")
    start = _required_date(start_date, "Start date is required")

    initial = None
    if initial_dose_mg is not None and _number(initial_dose_mg, "Initial dose") > 0:
        frequency = DEFAULT_FREQUENCY_DAYS
        if initial_frequency_days:
            frequency = int(initial_frequency_days)
            if frequency <= 0:
                raise ValidationError("Frequency must be greater than 0")
        initial = InitialIndication(dose_mg=float(initial_dose_mg), frequency_days=frequency)
    return name, start, initial


def validate_patient_update(full_name: str, clinic_id: str, start_date: str) -> tuple[str, date]:
    name = (full_name or "").strip()
    if len(name) < 2:
        raise ValidationError("Name must have at least 2 characters")
    _required_text(clinic_id, "Select a clinic")
    return name, _required_date(start_date, "Start date is required")


def validate_status(status: str) -> PatientStatus:
    try:
        return PatientStatus((status or "").upper())
    except ValueError as exc:
        valid = ", ".join(s.value for s in PatientStatus)
        raise ValidationError(f"Invalid status {status!r}. Valid: {valid}") from exc


def validate_application(
    application_date: str,
    dose_mg: float,
    available_mg: float,
) -> tuple[date, float]:
    """Validate a medication application against the available stock.

    Args:
        application_date: ISO date of the administration.
        dose_mg: Administered dose.
        available_mg: Package total plus adjustments minus applied, unclamped.
    """
    applied_on = _required_date(application_date, "Application date is required")
    dose = _number(dose_mg, "Dose")
    if dose <= 0:
        raise ValidationError("Dose must be greater than 0")
    if dose > available_mg:
        raise ValidationError(
            f"Dose ({dose:.1f}mg) exceeds available stock ({available_mg:.1f}mg)"
        )
    return applied_on, dose


def validate_indication(
    start_date: str,
    dose_mg_per_application: float,
    frequency_days: int,
    duration_weeks: int | None = None,
) -> tuple[date, float, int, int | None]:
    start = _required_date(start_date, "Start date is required")
    dose = _number(dose_mg_per_application, "Dose")
    if dose <= 0:
        raise ValidationError("Dose must be greater than 0")
    frequency = int(_number(frequency_days, "Frequency"))
    if frequency <= 0:
        raise ValidationError("Frequency must be greater than 0")
    if duration_weeks is not None:
        duration_weeks = int(_number(duration_weeks, "Duration"))
        if duration_weeks <= 0:
            raise ValidationError("Duration must be greater than 0")
    return start, dose, frequency, duration_weeks


def validate_consultation(
    consultation_type: str,
    consultation_date: str,
    professional: str,
) -> tuple[ConsultationType, date, str]:
    try:
        ctype = ConsultationType((consultation_type or "").upper())
    except ValueError as exc:
        raise ValidationError(
            f"Invalid consultation type {consultation_type!r}. Valid: ENDOCRINO, NUTRI"
        ) from exc
    held_on = _required_date(consultation_date, "Consultation date is required")
    name = _required_text(professional, "Professional is required")
    return ctype, held_on, name


def validate_measurement(
    measurement_date: str,
    weight_kg: float,
    fat_percentage: float | None = None,
    lean_mass_kg: float | None = None,
) -> tuple[date, float, float | None, float | None]:
    """Validate a body measurement. Non-positive optional values are dropped."""
    measured_on = _required_date(measurement_date, "Measurement date is required")
    weight = _number(weight_kg, "Weight")
    if weight <= 0:
        raise ValidationError("Weight must be greater than 0")
    fat = _number(fat_percentage, "Fat percentage") if fat_percentage is not None else None
    lean = _number(lean_mass_kg, "Lean mass") if lean_mass_kg is not None else None
    return (
        measured_on,
        weight,
        fat if fat is not None and fat > 0 else None,
        lean if lean is not None and lean > 0 else None,
    )


def validate_stock_adjustment(adjustment_mg: float, reason: str) -> tuple[float, str]:
    amount = _number(adjustment_mg, "Adjustment")
    if amount == 0:
        raise ValidationError("Adjustment cannot be zero")
    return amount, _required_text(reason, "Reason is required")
