"""MCP tool computing metrics for a snapshot supplied by the caller.

Needs no storage: useful for what-if checks ("what happens if the dose
goes to 7.5mg?") and for integrating records kept elsewhere.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from fastmcp import Context, FastMCP

from m90.domains.treatment.domain_logic.metrics_engine import compute_metrics
from m90.domains.treatment.domain_logic.metrics_models import PatientSnapshot, parse_date

logger = logging.getLogger(__name__)


def register_metrics_preview_tools(mcp: FastMCP) -> None:
    """Register the storage-free metrics preview tool."""

    @mcp.tool
    async def preview_patient_metrics(ctx: Context, snapshot_json: str, now: str = "") -> str:
        """Compute progress metrics and alerts for a patient snapshot given as JSON.

        Args:
            snapshot_json: JSON object with start_date, package
                (duration_weeks, total_medication_mg, required_consultations),
                applications, indication_phases, consultations and stock_adjustments.
            now: Optional evaluation date (ISO 8601). Defaults to today.
        """
        try:
            snapshot = PatientSnapshot.from_dict(json.loads(snapshot_json))
            evaluated_at = parse_date(now) if now else datetime.now(timezone.utc)
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.info("Rejected metrics preview input: %s", exc)
            return json.dumps({
                "status": "error",
                "message": f"Invalid snapshot: {exc}",
            })

        metrics = compute_metrics(snapshot, evaluated_at)
        return json.dumps({"status": "ok", "metrics": metrics.to_dict()})
