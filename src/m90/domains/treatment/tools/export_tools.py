"""MCP tools for exporting patient data and reviewing the audit trail."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from m90.domains.treatment.domain_logic import csv_export
from m90.domains.treatment.tools.patient_tools import run_audited

if TYPE_CHECKING:
    from m90.core.audit.logger import AuditLogger
    from m90.domains.treatment.domain_logic.treatment_service import TreatmentService

logger = logging.getLogger(__name__)


def register_export_tools(
    mcp: FastMCP,
    service: TreatmentService,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register export and audit review tools on the MCP server."""

    @mcp.tool
    async def export_patients_csv(ctx: Context) -> str:
        """Export every patient with metrics as CSV (UTF-8 with BOM).

        Returns JSON with the suggested file name and the CSV content.
        """
        export_info: dict[str, Any] = {}

        def _op() -> dict[str, Any]:
            patients = service.list_patients()
            content = csv_export.export_patients_csv(patients)
            filename = csv_export.export_filename(datetime.now(timezone.utc).date())
            export_info["rows"] = len(patients)
            logger.info("Exported %d patients to %s", len(patients), filename)
            return {
                "status": "ok",
                "filename": filename,
                "content_type": "text/csv; charset=utf-8",
                "rows": len(patients),
                "content": content,
            }

        return run_audited(
            audit_logger, "export_patients_csv", {}, _op,
            action="export", metadata=export_info,
        )

    if audit_logger is None:
        return

    @mcp.tool
    async def list_audit_events(
        ctx: Context,
        action: str = "",
        patient_id: str = "",
        limit: int = 50,
    ) -> str:
        """List recent audit events (no patient data, inputs are hashed).

        Args:
            action: Filter by action (tool_invocation, record_create, record_update,
                data_access, export).
            patient_id: Filter by patient UUID.
            limit: Maximum events to return.
        """
        events = audit_logger.get_events(
            action=action or None,
            patient_id=patient_id or None,
            limit=limit,
        )
        return json.dumps({"status": "ok", "count": len(events), "events": events})
