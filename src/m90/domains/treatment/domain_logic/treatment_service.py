"""Treatment service — the action layer between MCP tools and storage.

Validates submitted records, persists them through the repository and
assembles :class:`PatientSnapshot` objects for the metrics engine.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any

from m90.core.storage.models import PatientHistory, PatientRecord
from m90.core.storage.repository import TreatmentRepository
from m90.domains.treatment.domain_logic.metrics_engine import compute_metrics
from m90.domains.treatment.domain_logic.metrics_models import (
    ApplicationRecord,
    ConsultationRecord,
    ConsultationType,
    IndicationPhase,
    PackageTerms,
    PatientSnapshot,
    PatientStatus,
    StockAdjustmentRecord,
    parse_date,
    parse_timestamp,
)
from m90.domains.treatment.domain_logic.patient_listing import (
    PatientFilters,
    PatientWithMetrics,
    apply_metric_filters,
)
from m90.domains.treatment.domain_logic.validation import (
    NotFoundError,
    ValidationError,
    validate_application,
    validate_consultation,
    validate_indication,
    validate_measurement,
    validate_patient,
    validate_patient_update,
    validate_status,
    validate_stock_adjustment,
)

logger = logging.getLogger(__name__)


def snapshot_from_history(history: PatientHistory) -> PatientSnapshot:
    """Convert stored records into the engine's read-only input."""
    pkg = history.package
    return PatientSnapshot(
        start_date=parse_date(history.patient.start_date),
        status=PatientStatus(history.patient.status),
        package=PackageTerms(
            duration_weeks=pkg.duration_weeks,
            total_medication_mg=pkg.medication_total_mg,
            required_consultations={
                ConsultationType.ENDOCRINO: pkg.endocrino_consultations,
                ConsultationType.NUTRI: pkg.nutri_consultations,
            },
        ),
        applications=tuple(
            ApplicationRecord(date=parse_date(a.application_date), dose_mg=a.dose_mg)
            for a in history.applications
        ),
        indication_phases=tuple(
            IndicationPhase(
                start_date=parse_date(i.start_date),
                dose_mg_per_application=i.dose_mg_per_application,
                frequency_days=i.frequency_days,
                created_at=parse_timestamp(i.created_at),
                duration_weeks=i.duration_weeks,
            )
            for i in history.indications
        ),
        consultations=tuple(
            ConsultationRecord(
                type=ConsultationType(c.type),
                date=parse_date(c.consultation_date),
                counts_toward_package=c.counts_in_package,
            )
            for c in history.consultations
        ),
        stock_adjustments=tuple(
            StockAdjustmentRecord(adjustment_mg=s.adjustment_mg)
            for s in history.stock_adjustments
        ),
    )


def available_stock_mg(history: PatientHistory) -> float:
    """Package total plus adjustments minus applied doses, not clamped."""
    applied = sum((a.dose_mg for a in history.applications), 0.0)
    adjusted = sum((s.adjustment_mg for s in history.stock_adjustments), 0.0)
    return history.package.medication_total_mg + adjusted - applied


class TreatmentService:
    """Record-keeping operations and metric reads for enrolled patients.

    Usage::

        service = TreatmentService(repository)
        patient = service.register_patient("Ana Souza", "clinic-sp", "m90", "2026-01-05",
                                           initial_dose_mg=2.5)
        service.record_application(patient.id, "2026-01-05", 2.5)
        result = service.get_patient_metrics(patient.id)
    """

    def __init__(self, repository: TreatmentRepository) -> None:
        self._repo = repository

    @staticmethod
    def _now(now: datetime | date | None) -> datetime | date:
        return now if now is not None else datetime.now(timezone.utc)

    def _require_history(self, patient_id: str) -> PatientHistory:
        history = self._repo.get_patient_history(patient_id)
        if history is None:
            raise NotFoundError(f"Patient not found: {patient_id}")
        return history

    def _require_patient(self, patient_id: str) -> PatientRecord:
        patient = self._repo.get_patient(patient_id)
        if patient is None:
            raise NotFoundError(f"Patient not found: {patient_id}")
        return patient

    def _require_clinic(self, clinic_id: str) -> None:
        if self._repo.get_clinic(clinic_id) is None:
            raise NotFoundError(f"Clinic not found: {clinic_id}")

    # ------------------------------------------------------------------
    # Patients
    # ------------------------------------------------------------------

    def register_patient(
        self,
        full_name: str,
        clinic_id: str,
        package_template_id: str,
        start_date: str,
        *,
        notes: str | None = None,
        initial_dose_mg: float | None = None,
        initial_frequency_days: int | None = None,
    ) -> PatientRecord:
        """Enroll a patient, optionally with a first indication phase.

        The initial phase starts on the enrollment date.
        """
        name, start, initial = validate_patient(
            full_name, clinic_id, package_template_id, start_date,
            initial_dose_mg, initial_frequency_days,
        )
        self._require_clinic(clinic_id)
        template = self._repo.get_package_template(package_template_id)
        if template is None or not template.active:
            raise NotFoundError(f"Package template not found: {package_template_id}")

        patient = self._repo.create_patient(
            name, clinic_id, package_template_id, start, notes=notes
        )
        if initial is not None:
            self._repo.add_indication(
                patient.id, start, initial.dose_mg, initial.frequency_days
            )
        return patient

    def update_patient(
        self,
        patient_id: str,
        full_name: str,
        clinic_id: str,
        start_date: str,
        *,
        notes: str | None = None,
    ) -> PatientRecord:
        name, start = validate_patient_update(full_name, clinic_id, start_date)
        self._require_patient(patient_id)
        self._require_clinic(clinic_id)
        self._repo.update_patient(
            patient_id, full_name=name, clinic_id=clinic_id, start_date=start, notes=notes
        )
        return self._require_patient(patient_id)

    def update_patient_status(self, patient_id: str, status: str) -> PatientStatus:
        new_status = validate_status(status)
        if not self._repo.update_patient_status(patient_id, new_status.value):
            raise NotFoundError(f"Patient not found: {patient_id}")
        return new_status

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def record_application(
        self,
        patient_id: str,
        application_date: str,
        dose_mg: float,
        *,
        notes: str | None = None,
        administered_by: str = "",
    ) -> str:
        """Log an administration; the dose may not exceed the available stock."""
        history = self._require_history(patient_id)
        applied_on, dose = validate_application(
            application_date, dose_mg, available_stock_mg(history)
        )
        return self._repo.add_application(
            patient_id, applied_on, dose, notes=notes, administered_by=administered_by
        )

    def record_indication(
        self,
        patient_id: str,
        start_date: str,
        dose_mg_per_application: float,
        frequency_days: int,
        *,
        duration_weeks: int | None = None,
        notes: str | None = None,
    ) -> str:
        start, dose, frequency, duration = validate_indication(
            start_date, dose_mg_per_application, frequency_days, duration_weeks
        )
        self._require_patient(patient_id)
        return self._repo.add_indication(
            patient_id, start, dose, frequency, duration_weeks=duration, notes=notes
        )

    def record_consultation(
        self,
        patient_id: str,
        consultation_type: str,
        consultation_date: str,
        professional: str,
        *,
        counts_in_package: bool = True,
        notes: str | None = None,
    ) -> str:
        ctype, held_on, name = validate_consultation(
            consultation_type, consultation_date, professional
        )
        self._require_patient(patient_id)
        return self._repo.add_consultation(
            patient_id, ctype.value, held_on, name,
            counts_in_package=counts_in_package, notes=notes,
        )

    def record_measurement(
        self,
        patient_id: str,
        measurement_date: str,
        weight_kg: float,
        *,
        fat_percentage: float | None = None,
        lean_mass_kg: float | None = None,
        notes: str | None = None,
    ) -> str:
        measured_on, weight, fat, lean = validate_measurement(
            measurement_date, weight_kg, fat_percentage, lean_mass_kg
        )
        self._require_patient(patient_id)
        return self._repo.add_measurement(
            patient_id, measured_on, weight,
            fat_percentage=fat, lean_mass_kg=lean, notes=notes,
        )

    def adjust_stock(self, patient_id: str, adjustment_mg: float, reason: str) -> str:
        amount, why = validate_stock_adjustment(adjustment_mg, reason)
        self._require_patient(patient_id)
        return self._repo.add_stock_adjustment(patient_id, amount, why)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_patient_metrics(
        self,
        patient_id: str,
        *,
        now: datetime | date | None = None,
    ) -> PatientWithMetrics:
        history = self._require_history(patient_id)
        metrics = compute_metrics(snapshot_from_history(history), self._now(now))
        return PatientWithMetrics(patient=history.patient, metrics=metrics)

    def get_patient_detail(
        self,
        patient_id: str,
        *,
        now: datetime | date | None = None,
    ) -> dict[str, Any]:
        """Patient, metrics and the record history for the detail view."""
        history = self._require_history(patient_id)
        metrics = compute_metrics(snapshot_from_history(history), self._now(now))
        detail = PatientWithMetrics(patient=history.patient, metrics=metrics).to_dict()
        detail["package"] = {
            "id": history.package.id,
            "name": history.package.name,
            "duration_weeks": history.package.duration_weeks,
            "medication_total_mg": history.package.medication_total_mg,
        }
        detail["applications"] = [
            {"date": a.application_date, "dose_mg": a.dose_mg, "notes": a.notes,
             "administered_by": a.administered_by}
            for a in history.applications
        ]
        detail["indications"] = [
            {"start_date": i.start_date, "dose_mg_per_application": i.dose_mg_per_application,
             "frequency_days": i.frequency_days, "duration_weeks": i.duration_weeks,
             "notes": i.notes}
            for i in history.indications
        ]
        detail["consultations"] = [
            {"type": c.type, "date": c.consultation_date, "professional": c.professional,
             "counts_in_package": c.counts_in_package, "notes": c.notes}
            for c in history.consultations
        ]
        detail["measurements"] = [
            {"date": m.measurement_date, "weight_kg": round(m.weight_kg, 1),
             "fat_percentage": m.fat_percentage, "lean_mass_kg": m.lean_mass_kg,
             "notes": m.notes}
            for m in history.measurements
        ]
        detail["stock_adjustments"] = [
            {"adjustment_mg": s.adjustment_mg, "reason": s.reason, "created_at": s.created_at}
            for s in history.stock_adjustments
        ]
        return detail

    def list_patients(
        self,
        filters: PatientFilters | None = None,
        *,
        now: datetime | date | None = None,
    ) -> list[PatientWithMetrics]:
        """Filter, compute metrics and sort the patient list."""
        filters = filters or PatientFilters()
        if filters.status:
            filters.status = validate_status(filters.status).value
        if filters.date_from and filters.date_to and filters.date_from > filters.date_to:
            raise ValidationError("date_from must not be after date_to")

        records = self._repo.list_patients(
            clinic_id=filters.clinic_id,
            status=filters.status,
            search=filters.search,
            date_from=filters.date_from,
            date_to=filters.date_to,
            sort_by=filters.sort_by if filters.sorts_in_storage else None,
            sort_order=filters.sort_order,
        )
        evaluated_at = self._now(now)
        results = [
            PatientWithMetrics(
                patient=h.patient,
                metrics=compute_metrics(snapshot_from_history(h), evaluated_at),
            )
            for h in self._repo.get_patient_histories(records)
        ]
        logger.debug("Listed %d patients (filters=%s)", len(results), filters)
        return apply_metric_filters(results, filters)
