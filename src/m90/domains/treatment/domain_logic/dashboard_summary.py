"""Clinic-wide dashboard counters and alert feed."""

from __future__ import annotations

from typing import Any

from m90.domains.treatment.domain_logic.metrics_models import (
    AlertType,
    PatientStatus,
    Severity,
)
from m90.domains.treatment.domain_logic.patient_listing import PatientWithMetrics


def summarize(patients: list[PatientWithMetrics]) -> dict[str, Any]:
    """Aggregate counts and alerts across the ACTIVE patients in ``patients``.

    The alert feed lists every RED alert before any YELLOW one; within a
    severity, patient order and per-patient alert order are kept.
    """
    active = [p for p in patients if p.patient.status == PatientStatus.ACTIVE.value]

    feed = [
        {
            "patient_id": p.patient.id,
            "patient_name": p.patient.full_name,
            **alert.to_dict(),
        }
        for p in active
        for alert in p.metrics.alerts
    ]
    red = [a for a in feed if a["severity"] == Severity.RED.value]
    yellow = [a for a in feed if a["severity"] == Severity.YELLOW.value]

    return {
        "active_count": len(active),
        "total_count": len(patients),
        "alert_count": len(feed),
        "red_alert_count": len(red),
        "yellow_alert_count": len(yellow),
        "low_stock_count": sum(1 for p in active if p.metrics.is_low_stock),
        "return_pending_count": sum(
            1 for a in feed if a["type"] == AlertType.RETURN_PENDING.value
        ),
        "alerts": red + yellow,
    }
