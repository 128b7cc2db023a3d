"""CSV export of the patient list with computed metrics.

The file opens cleanly in spreadsheet tools: UTF-8 with BOM, every cell
quoted, dates as ``dd/mm/yyyy`` and milligram values with one decimal.
"""

from __future__ import annotations

import csv
import io
from datetime import date

from m90.domains.treatment.domain_logic.metrics_models import ConsultationType, parse_date
from m90.domains.treatment.domain_logic.patient_listing import PatientWithMetrics

BOM = "\ufeff"

HEADERS = [
    "Name",
    "Clinic",
    "Status",
    "Start Date",
    "Weeks",
    "mg Applied",
    "mg Remaining",
    "Current Indication (mg)",
    "Frequency (days)",
    "Next Application",
    "Endocrinology",
    "Nutrition",
    "Alerts",
]


def format_date(value: date | str) -> str:
    return parse_date(value).strftime("%d/%m/%Y")


def format_decimal(value: float, decimals: int = 1) -> str:
    return f"{value:.{decimals}f}"


def _row(entry: PatientWithMetrics) -> list[str]:
    p, m = entry.patient, entry.metrics
    indication = m.current_indication
    endo = m.consultations[ConsultationType.ENDOCRINO]
    nutri = m.consultations[ConsultationType.NUTRI]
    return [
        p.full_name,
        p.clinic_name,
        p.status,
        format_date(p.start_date),
        f"{m.weeks_elapsed}/{m.weeks_elapsed + m.weeks_remaining}",
        format_decimal(m.mg_applied_total),
        format_decimal(m.mg_remaining),
        f"{indication.dose_mg:g}" if indication else "",
        str(indication.frequency_days) if indication else "",
        format_date(m.next_application_date) if m.next_application_date else "",
        f"{endo.completed}/{endo.total}",
        f"{nutri.completed}/{nutri.total}",
        "; ".join(a.message for a in m.alerts),
    ]


def export_patients_csv(patients: list[PatientWithMetrics]) -> str:
    """Render ``patients`` as CSV text, BOM included."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(HEADERS)
    for entry in patients:
        writer.writerow(_row(entry))
    # No trailing newline after the last row
    return BOM + buffer.getvalue().rstrip("\n")


def export_filename(today: date) -> str:
    return f"patients-m90-{today.isoformat()}.csv"
