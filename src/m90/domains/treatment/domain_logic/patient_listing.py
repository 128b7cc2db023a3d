"""Filtering and sorting of patient lists by computed metrics.

The storage layer filters and sorts by stored columns (name, clinic,
status, start date). Metrics are derived per read, so the low-stock filter
and the three metric sort keys are applied here, after computation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Callable

from m90.core.storage.models import PatientRecord
from m90.domains.treatment.domain_logic.metrics_models import PatientMetrics
from m90.domains.treatment.domain_logic.validation import ValidationError

DB_SORT_FIELDS = {"full_name", "clinic", "status"}
METRIC_SORT_FIELDS = {"weeks_elapsed", "mg_remaining", "next_application_date"}
SORT_ORDERS = {"asc", "desc"}


@dataclass
class PatientFilters:
    """Criteria for the patient list."""

    clinic_id: str | None = None
    status: str | None = None
    search: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    low_stock: bool = False
    sort_by: str | None = None
    sort_order: str = "asc"

    def __post_init__(self) -> None:
        if self.sort_by and self.sort_by not in DB_SORT_FIELDS | METRIC_SORT_FIELDS:
            valid = ", ".join(sorted(DB_SORT_FIELDS | METRIC_SORT_FIELDS))
            raise ValidationError(f"Invalid sort field {self.sort_by!r}. Valid: {valid}")
        if self.sort_order not in SORT_ORDERS:
            raise ValidationError(f"Invalid sort order {self.sort_order!r}. Valid: asc, desc")

    @property
    def sorts_in_storage(self) -> bool:
        return self.sort_by in DB_SORT_FIELDS


@dataclass
class PatientWithMetrics:
    patient: PatientRecord
    metrics: PatientMetrics

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.patient.id,
            "full_name": self.patient.full_name,
            "clinic_id": self.patient.clinic_id,
            "clinic_name": self.patient.clinic_name,
            "package_template_id": self.patient.package_template_id,
            "enrollment_status": self.patient.status,
            "start_date": self.patient.start_date,
            "metrics": self.metrics.to_dict(),
        }


_METRIC_KEYS: dict[str, Callable[[PatientMetrics], Any]] = {
    "weeks_elapsed": lambda m: m.weeks_elapsed,
    "mg_remaining": lambda m: m.mg_remaining,
    "next_application_date": lambda m: m.next_application_date,
}


def apply_metric_filters(
    patients: list[PatientWithMetrics],
    filters: PatientFilters,
) -> list[PatientWithMetrics]:
    """Apply the low-stock filter and metric-based sorting.

    ``None`` values always go last, whichever the direction.
    """
    results = list(patients)
    if filters.low_stock:
        results = [p for p in results if p.metrics.is_low_stock]

    if filters.sort_by in METRIC_SORT_FIELDS:
        key = _METRIC_KEYS[filters.sort_by]
        present = [p for p in results if key(p.metrics) is not None]
        missing = [p for p in results if key(p.metrics) is None]
        present.sort(
            key=lambda p: key(p.metrics),
            reverse=filters.sort_order == "desc",
        )
        results = present + missing

    return results
