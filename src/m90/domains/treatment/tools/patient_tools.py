"""MCP tools for patient enrollment, metrics and the dashboard."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any, Callable

from fastmcp import Context, FastMCP

from m90.domains.treatment.domain_logic.dashboard_summary import summarize
from m90.domains.treatment.domain_logic.metrics_models import parse_date
from m90.domains.treatment.domain_logic.patient_listing import PatientFilters
from m90.domains.treatment.domain_logic.validation import (
    NotFoundError,
    TreatmentError,
    ValidationError,
)

if TYPE_CHECKING:
    from m90.core.audit.logger import AuditLogger
    from m90.domains.treatment.domain_logic.treatment_service import TreatmentService

logger = logging.getLogger(__name__)


def run_audited(
    audit_logger: AuditLogger | None,
    tool_name: str,
    tool_input: dict[str, Any],
    operation: Callable[[], dict[str, Any]],
    *,
    action: str = "tool_invocation",
    patient_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> str:
    """Run ``operation``, audit the outcome and return the JSON response.

    Domain errors become ``{"status": "error" | "not_found"}`` responses;
    anything else propagates after being audited as a failure. ``metadata``
    is read after the operation runs, so the operation may fill it in.
    """
    start_time = time.monotonic()
    status, error_type = "success", None
    try:
        payload = operation()
    except NotFoundError as exc:
        status, error_type = "failure", type(exc).__name__
        payload = {"status": "not_found", "message": str(exc)}
    except TreatmentError as exc:
        status, error_type = "failure", type(exc).__name__
        payload = {"status": "error", "message": str(exc)}
    except Exception as exc:
        if audit_logger is not None:
            audit_logger.log_tool_call(
                tool_name, tool_input, action=action, patient_id=patient_id,
                duration_ms=(time.monotonic() - start_time) * 1000,
                status="failure", error_type=type(exc).__name__, metadata=metadata,
            )
        raise

    if audit_logger is not None:
        audit_logger.log_tool_call(
            tool_name, tool_input, action=action,
            patient_id=patient_id or payload.get("patient_id"),
            duration_ms=(time.monotonic() - start_time) * 1000,
            status=status, error_type=error_type, metadata=metadata,
        )
    return json.dumps(payload)


def _optional_date(value: str, field_name: str):
    if not value:
        return None
    try:
        return parse_date(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid {field_name}: {value!r}") from exc


def register_patient_tools(
    mcp: FastMCP,
    service: TreatmentService,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register patient enrollment and metrics tools on the MCP server."""

    @mcp.tool
    async def register_patient(
        ctx: Context,
        full_name: str,
        clinic_id: str,
        package_template_id: str,
        start_date: str,
        notes: str = "",
        initial_dose_mg: float | None = None,
        initial_frequency_days: int | None = None,
    ) -> str:
        """Enroll a patient in a treatment package.

        Args:
            full_name: Patient's full name (at least 2 characters).
            clinic_id: Clinic the patient is treated at.
            package_template_id: Package template (e.g., 'm90').
            start_date: Treatment start date (ISO 8601, e.g., '2026-01-05').
            notes: Optional notes (stored encrypted).
            initial_dose_mg: Optional first indication dose, starting on start_date.
            initial_frequency_days: Days between applications for the first indication (default 7).
        """
        def _op() -> dict[str, Any]:
            patient = service.register_patient(
                full_name, clinic_id, package_template_id, start_date,
                notes=notes or None,
                initial_dose_mg=initial_dose_mg,
                initial_frequency_days=initial_frequency_days,
            )
            return {"status": "saved", "patient_id": patient.id, "full_name": patient.full_name}

        return run_audited(
            audit_logger, "register_patient",
            {"clinic_id": clinic_id, "package_template_id": package_template_id,
             "start_date": start_date, "full_name": full_name},
            _op, action="record_create",
        )

    @mcp.tool
    async def update_patient(
        ctx: Context,
        patient_id: str,
        full_name: str,
        clinic_id: str,
        start_date: str,
        notes: str = "",
    ) -> str:
        """Update a patient's name, clinic, start date and notes.

        Args:
            patient_id: The patient's UUID.
            full_name: Patient's full name.
            clinic_id: Clinic the patient is treated at.
            start_date: Treatment start date (ISO 8601).
            notes: Optional notes (stored encrypted).
        """
        def _op() -> dict[str, Any]:
            patient = service.update_patient(
                patient_id, full_name, clinic_id, start_date, notes=notes or None
            )
            return {"status": "saved", "patient_id": patient.id}

        return run_audited(
            audit_logger, "update_patient",
            {"patient_id": patient_id, "clinic_id": clinic_id, "start_date": start_date},
            _op, action="record_update", patient_id=patient_id,
        )

    @mcp.tool
    async def update_patient_status(ctx: Context, patient_id: str, status: str) -> str:
        """Change a patient's enrollment status.

        Args:
            patient_id: The patient's UUID.
            status: One of ACTIVE, COMPLETED, PAUSED, CANCELLED.
        """
        def _op() -> dict[str, Any]:
            new_status = service.update_patient_status(patient_id, status)
            return {"status": "saved", "patient_id": patient_id, "enrollment_status": new_status.value}

        return run_audited(
            audit_logger, "update_patient_status",
            {"patient_id": patient_id, "status": status},
            _op, action="record_update", patient_id=patient_id,
        )

    @mcp.tool
    async def get_patient_metrics(ctx: Context, patient_id: str) -> str:
        """Show a patient's progress metrics, alerts and record history.

        Args:
            patient_id: The patient's UUID.
        """
        def _op() -> dict[str, Any]:
            return {"status": "ok", **service.get_patient_detail(patient_id)}

        return run_audited(
            audit_logger, "get_patient_metrics", {"patient_id": patient_id},
            _op, action="data_access", patient_id=patient_id,
        )

    @mcp.tool
    async def list_patients(
        ctx: Context,
        clinic_id: str = "",
        status: str = "",
        search: str = "",
        date_from: str = "",
        date_to: str = "",
        low_stock: bool = False,
        sort_by: str = "",
        sort_order: str = "asc",
    ) -> str:
        """List patients with their computed metrics.

        Args:
            clinic_id: Only patients of this clinic.
            status: Only patients with this enrollment status.
            search: Case-insensitive part of the patient name.
            date_from: Start date lower bound (ISO 8601, inclusive).
            date_to: Start date upper bound (ISO 8601, inclusive).
            low_stock: Only patients with 20mg or less remaining.
            sort_by: full_name, clinic, weeks_elapsed, mg_remaining, next_application_date or status.
            sort_order: 'asc' or 'desc'. Missing dates always sort last.
        """
        tool_input = {
            "clinic_id": clinic_id, "status": status, "search": search,
            "date_from": date_from, "date_to": date_to, "low_stock": low_stock,
            "sort_by": sort_by, "sort_order": sort_order,
        }

        def _op() -> dict[str, Any]:
            filters = PatientFilters(
                clinic_id=clinic_id or None,
                status=status or None,
                search=search or None,
                date_from=_optional_date(date_from, "date_from"),
                date_to=_optional_date(date_to, "date_to"),
                low_stock=low_stock,
                sort_by=sort_by or None,
                sort_order=sort_order or "asc",
            )
            patients = service.list_patients(filters)
            return {
                "status": "ok",
                "count": len(patients),
                "patients": [p.to_dict() for p in patients],
            }

        return run_audited(audit_logger, "list_patients", tool_input, _op, action="data_access")

    @mcp.tool
    async def dashboard_summary(ctx: Context, clinic_id: str = "") -> str:
        """Summarize active patients: alert counts, low stock and pending returns.

        Args:
            clinic_id: Optional clinic to restrict the summary to.
        """
        def _op() -> dict[str, Any]:
            patients = service.list_patients(PatientFilters(clinic_id=clinic_id or None))
            return {"status": "ok", **summarize(patients)}

        return run_audited(
            audit_logger, "dashboard_summary", {"clinic_id": clinic_id}, _op,
            action="data_access",
        )
