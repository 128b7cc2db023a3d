"""Patient metrics and alerting engine.

Given a :class:`PatientSnapshot` and an evaluation instant, computes time
progress, consultation progress, medication stock, the current dosing
indication, a projection of the remaining treatment and a list of risk
alerts. The computation is pure: no I/O, no shared state, and identical
inputs always produce identical output.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from m90.domains.treatment.domain_logic.metrics_models import (
    CONSULTATION_LABELS,
    MEDICATION_RED_DAYS,
    MEDICATION_YELLOW_DAYS,
    PACKAGE_YELLOW_WEEKS,
    RETURN_PENDING_WEEKS,
    STOCK_RED_MG,
    STOCK_YELLOW_MG,
    Alert,
    AlertType,
    ConsultationProgress,
    ConsultationType,
    CurrentIndication,
    IndicationPhase,
    PatientMetrics,
    PatientSnapshot,
    Severity,
    as_utc,
)


def compute_metrics(snapshot: PatientSnapshot, now: datetime | date) -> PatientMetrics:
    """Compute progress metrics and alerts for one patient.

    Args:
        snapshot: The patient's enrollment data.
        now: Evaluation instant. Only its calendar date is used.

    Returns:
        A fresh :class:`PatientMetrics`.
    """
    today = now.date() if isinstance(now, datetime) else now
    pkg = snapshot.package

    # Time progress
    days_elapsed = (today - snapshot.start_date).days
    weeks_elapsed = min(pkg.duration_weeks, max(0, days_elapsed // 7))
    weeks_remaining = max(0, pkg.duration_weeks - weeks_elapsed)
    expected_end_date = snapshot.start_date + timedelta(weeks=pkg.duration_weeks)

    # Consultations
    consultations: dict[ConsultationType, ConsultationProgress] = {}
    for ctype in ConsultationType:
        completed = sum(
            1 for c in snapshot.consultations
            if c.type == ctype and c.counts_toward_package
        )
        consultations[ctype] = ConsultationProgress(
            completed=completed,
            remaining=max(0, pkg.required(ctype) - completed),
        )

    # Medication stock
    mg_applied_total = sum((a.dose_mg for a in snapshot.applications), 0.0)
    mg_adjusted = sum((s.adjustment_mg for s in snapshot.stock_adjustments), 0.0)
    mg_remaining = max(0.0, pkg.total_medication_mg + mg_adjusted - mg_applied_total)

    # Current indication and projection
    phase = select_current_indication(snapshot.indication_phases, today)
    current_indication = (
        CurrentIndication(
            dose_mg=phase.dose_mg_per_application,
            frequency_days=phase.frequency_days,
        )
        if phase is not None
        else None
    )

    estimated_applications_left = 0
    estimated_days_left = 0
    estimated_medication_end_date: date | None = None
    next_application_date: date | None = None

    if current_indication is not None and current_indication.dose_mg > 0:
        estimated_applications_left = int(mg_remaining // current_indication.dose_mg)
        estimated_days_left = estimated_applications_left * current_indication.frequency_days
        if estimated_days_left > 0:
            estimated_medication_end_date = today + timedelta(days=estimated_days_left)

        if snapshot.applications:
            last_applied = max(a.date for a in snapshot.applications)
            next_application_date = last_applied + timedelta(
                days=current_indication.frequency_days
            )
        else:
            next_application_date = max(today, snapshot.start_date)

    alerts = _build_alerts(
        snapshot,
        today=today,
        mg_remaining=mg_remaining,
        has_indication=current_indication is not None,
        estimated_days_left=estimated_days_left,
        consultations=consultations,
        weeks_remaining=weeks_remaining,
    )

    return PatientMetrics(
        weeks_elapsed=weeks_elapsed,
        weeks_remaining=weeks_remaining,
        expected_end_date=expected_end_date,
        consultations=consultations,
        mg_applied_total=mg_applied_total,
        mg_adjusted=mg_adjusted,
        mg_remaining=mg_remaining,
        current_indication=current_indication,
        estimated_applications_left=estimated_applications_left,
        estimated_days_left=estimated_days_left,
        estimated_medication_end_date=estimated_medication_end_date,
        next_application_date=next_application_date,
        alerts=tuple(alerts),
    )


def select_current_indication(
    phases: tuple[IndicationPhase, ...] | list[IndicationPhase],
    today: date,
) -> IndicationPhase | None:
    """Return the phase in effect on ``today``.

    The latest ``start_date`` not after ``today`` wins; ties go to the most
    recently created phase. Input order is irrelevant.
    """
    started = [p for p in phases if p.start_date <= today]
    if not started:
        return None
    return max(started, key=lambda p: (p.start_date, as_utc(p.created_at)))


def _build_alerts(
    snapshot: PatientSnapshot,
    *,
    today: date,
    mg_remaining: float,
    has_indication: bool,
    estimated_days_left: int,
    consultations: dict[ConsultationType, ConsultationProgress],
    weeks_remaining: int,
) -> list[Alert]:
    alerts: list[Alert] = []

    # Stock
    if mg_remaining <= STOCK_RED_MG:
        alerts.append(Alert(
            AlertType.STOCK_LOW, Severity.RED,
            f"Critical stock: {mg_remaining:.1f}mg remaining",
        ))
    elif mg_remaining <= STOCK_YELLOW_MG:
        alerts.append(Alert(
            AlertType.STOCK_LOW, Severity.YELLOW,
            f"Low stock: {mg_remaining:.1f}mg remaining",
        ))

    # Medication projection
    if has_indication and estimated_days_left > 0:
        message = f"Medication runs out in ~{estimated_days_left} days"
        if estimated_days_left <= MEDICATION_RED_DAYS:
            alerts.append(Alert(AlertType.MEDICATION_ENDING, Severity.RED, message))
        elif estimated_days_left <= MEDICATION_YELLOW_DAYS:
            alerts.append(Alert(AlertType.MEDICATION_ENDING, Severity.YELLOW, message))

    # Return visits pending, one check per consultation type
    for ctype in ConsultationType:
        if consultations[ctype].remaining <= 0:
            continue
        dates = [c.date for c in snapshot.consultations if c.type == ctype]
        last_date = max(dates) if dates else snapshot.start_date
        days_since_last = (today - last_date).days
        if days_since_last > RETURN_PENDING_WEEKS * 7:
            alerts.append(Alert(
                AlertType.RETURN_PENDING, Severity.YELLOW,
                f"{CONSULTATION_LABELS[ctype]} return pending "
                f"for {days_since_last // 7} weeks",
            ))

    # Package end
    if weeks_remaining == 0:
        alerts.append(Alert(AlertType.PACKAGE_ENDING, Severity.RED, "Package ended"))
    elif weeks_remaining <= PACKAGE_YELLOW_WEEKS:
        alerts.append(Alert(
            AlertType.PACKAGE_ENDING, Severity.YELLOW,
            f"Package ends in {weeks_remaining} week(s)",
        ))

    return alerts


def severity_variant(severity: Severity) -> str:
    """Map an alert severity to its display variant."""
    return {
        Severity.GREEN: "success",
        Severity.YELLOW: "warning",
        Severity.RED: "danger",
    }[severity]
