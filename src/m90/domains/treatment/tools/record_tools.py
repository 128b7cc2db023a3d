"""MCP tools for logging treatment records.

Applications, indication phases, consultations, body measurements and
stock adjustments. Every tool validates its input, writes one record and
returns its ID.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from m90.domains.treatment.tools.patient_tools import run_audited

if TYPE_CHECKING:
    from m90.core.audit.logger import AuditLogger
    from m90.domains.treatment.domain_logic.treatment_service import TreatmentService

logger = logging.getLogger(__name__)


def register_record_tools(
    mcp: FastMCP,
    service: TreatmentService,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register treatment record tools on the MCP server."""

    @mcp.tool
    async def record_application(
        ctx: Context,
        patient_id: str,
        application_date: str,
        dose_mg: float,
        notes: str = "",
        administered_by: str = "",
    ) -> str:
        """Record a medication application. Refused if the dose exceeds the patient's stock.

        Args:
            patient_id: The patient's UUID.
            application_date: Date of the application (ISO 8601).
            dose_mg: Dose administered in mg (greater than 0).
            notes: Optional notes (stored encrypted).
            administered_by: Name of the professional who applied it.
        """
        def _op() -> dict[str, Any]:
            rid = service.record_application(
                patient_id, application_date, dose_mg,
                notes=notes or None, administered_by=administered_by,
            )
            return {"status": "saved", "record_id": rid, "patient_id": patient_id}

        return run_audited(
            audit_logger, "record_application",
            {"patient_id": patient_id, "application_date": application_date, "dose_mg": dose_mg},
            _op, action="record_create", patient_id=patient_id,
        )

    @mcp.tool
    async def record_indication(
        ctx: Context,
        patient_id: str,
        start_date: str,
        dose_mg_per_application: float,
        frequency_days: int,
        duration_weeks: int | None = None,
        notes: str = "",
    ) -> str:
        """Schedule a dosing phase. The phase with the latest start date not in the future is current.

        Args:
            patient_id: The patient's UUID.
            start_date: Date the phase takes effect (ISO 8601).
            dose_mg_per_application: Dose per application in mg.
            frequency_days: Days between applications.
            duration_weeks: Optional planned length of the phase.
            notes: Optional notes (stored encrypted).
        """
        def _op() -> dict[str, Any]:
            rid = service.record_indication(
                patient_id, start_date, dose_mg_per_application, frequency_days,
                duration_weeks=duration_weeks, notes=notes or None,
            )
            return {"status": "saved", "record_id": rid, "patient_id": patient_id}

        return run_audited(
            audit_logger, "record_indication",
            {"patient_id": patient_id, "start_date": start_date,
             "dose_mg_per_application": dose_mg_per_application,
             "frequency_days": frequency_days, "duration_weeks": duration_weeks},
            _op, action="record_create", patient_id=patient_id,
        )

    @mcp.tool
    async def record_consultation(
        ctx: Context,
        patient_id: str,
        consultation_type: str,
        consultation_date: str,
        professional: str,
        counts_in_package: bool = True,
        notes: str = "",
    ) -> str:
        """Record a specialist consultation.

        Args:
            patient_id: The patient's UUID.
            consultation_type: ENDOCRINO (endocrinology) or NUTRI (nutrition).
            consultation_date: Date of the consultation (ISO 8601).
            professional: Name of the professional.
            counts_in_package: Whether it counts toward the package's required consultations.
            notes: Optional notes (stored encrypted).
        """
        def _op() -> dict[str, Any]:
            rid = service.record_consultation(
                patient_id, consultation_type, consultation_date, professional,
                counts_in_package=counts_in_package, notes=notes or None,
            )
            return {"status": "saved", "record_id": rid, "patient_id": patient_id}

        return run_audited(
            audit_logger, "record_consultation",
            {"patient_id": patient_id, "consultation_type": consultation_type,
             "consultation_date": consultation_date, "counts_in_package": counts_in_package},
            _op, action="record_create", patient_id=patient_id,
        )

    @mcp.tool
    async def record_measurement(
        ctx: Context,
        patient_id: str,
        measurement_date: str,
        weight_kg: float,
        fat_percentage: float | None = None,
        lean_mass_kg: float | None = None,
        notes: str = "",
    ) -> str:
        """Record a body measurement (weigh-in).

        Args:
            patient_id: The patient's UUID.
            measurement_date: Date of the weigh-in (ISO 8601).
            weight_kg: Body weight in kg.
            fat_percentage: Optional body fat percentage.
            lean_mass_kg: Optional lean mass in kg.
            notes: Optional notes (stored encrypted).
        """
        def _op() -> dict[str, Any]:
            rid = service.record_measurement(
                patient_id, measurement_date, weight_kg,
                fat_percentage=fat_percentage, lean_mass_kg=lean_mass_kg,
                notes=notes or None,
            )
            return {"status": "saved", "record_id": rid, "patient_id": patient_id}

        return run_audited(
            audit_logger, "record_measurement",
            {"patient_id": patient_id, "measurement_date": measurement_date},
            _op, action="record_create", patient_id=patient_id,
        )

    @mcp.tool
    async def adjust_stock(
        ctx: Context,
        patient_id: str,
        adjustment_mg: float,
        reason: str,
    ) -> str:
        """Apply a manual correction to a patient's medication stock.

        Args:
            patient_id: The patient's UUID.
            adjustment_mg: Signed amount in mg (positive restock, negative loss). Not zero.
            reason: Why the stock was adjusted (stored encrypted).
        """
        def _op() -> dict[str, Any]:
            rid = service.adjust_stock(patient_id, adjustment_mg, reason)
            return {"status": "saved", "record_id": rid, "patient_id": patient_id}

        return run_audited(
            audit_logger, "adjust_stock",
            {"patient_id": patient_id, "adjustment_mg": adjustment_mg},
            _op, action="record_create", patient_id=patient_id,
        )
