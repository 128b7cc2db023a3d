"""Tests for the patient metrics and alerting engine."""

from __future__ import annotations

import json
import random
from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import TODAY, make_package, make_phase, make_snapshot
from m90.domains.treatment.domain_logic.metrics_engine import (
    compute_metrics,
    select_current_indication,
    severity_variant,
)
from m90.domains.treatment.domain_logic.metrics_models import (
    AlertType,
    ConsultationType,
    PatientSnapshot,
    Severity,
)

ENDO = ConsultationType.ENDOCRINO
NUTRI = ConsultationType.NUTRI


def _alerts_of(metrics, alert_type):
    return [a for a in metrics.alerts if a.type == alert_type]


def _days_ago(days: int) -> date:
    return TODAY - timedelta(days=days)


# ---------------------------------------------------------------------------
# Reference scenarios
# ---------------------------------------------------------------------------

class TestScenarios:
    def test_fully_applied_package_without_indication(self):
        snap = make_snapshot(
            start_date=_days_ago(28),
            package=make_package(total_medication_mg=90),
            applications=[(_days_ago(28), 90.0)],
        )
        m = compute_metrics(snap, TODAY)

        assert m.mg_remaining == 0
        assert m.current_indication is None
        assert [(a.type, a.severity) for a in m.alerts] == [(AlertType.STOCK_LOW, Severity.RED)]
        assert m.alerts[0].message == "Critical stock: 0.0mg remaining"
        assert _alerts_of(m, AlertType.MEDICATION_ENDING) == []

    def test_package_past_its_duration_is_capped(self):
        snap = make_snapshot(start_date=_days_ago(13 * 7), package=make_package(duration_weeks=12))
        m = compute_metrics(snap, TODAY)

        assert m.weeks_elapsed == 12
        assert m.weeks_remaining == 0
        ending = _alerts_of(m, AlertType.PACKAGE_ENDING)
        assert len(ending) == 1
        assert ending[0].severity == Severity.RED
        assert ending[0].message == "Package ended"

    def test_projection_with_twelve_mg_left(self):
        snap = make_snapshot(
            start_date=_days_ago(7),
            package=make_package(total_medication_mg=12),
            phases=[make_phase(_days_ago(7), dose_mg=5, frequency_days=7)],
        )
        m = compute_metrics(snap, TODAY)

        assert m.mg_remaining == 12
        assert m.estimated_applications_left == 2
        assert m.estimated_days_left == 14
        assert m.estimated_medication_end_date == TODAY + timedelta(days=14)
        assert _alerts_of(m, AlertType.STOCK_LOW)[0].severity == Severity.YELLOW
        assert _alerts_of(m, AlertType.MEDICATION_ENDING)[0].severity == Severity.YELLOW

    def test_endocrinology_return_pending_after_forty_days(self):
        snap = make_snapshot(
            start_date=_days_ago(40),
            package=make_package(endocrino=3, nutri=2),
            consultations=[
                (NUTRI, _days_ago(30), True),
                (NUTRI, _days_ago(3), True),
            ],
        )
        m = compute_metrics(snap, TODAY)

        pending = _alerts_of(m, AlertType.RETURN_PENDING)
        assert len(pending) == 1
        assert pending[0].severity == Severity.YELLOW
        assert pending[0].message == "Endocrinology return pending for 5 weeks"
        assert m.nutri_remaining == 0

    def test_future_start_without_applications(self):
        start = TODAY + timedelta(days=5)
        snap = make_snapshot(
            start_date=start,
            phases=[make_phase(_days_ago(1), dose_mg=2.5)],
        )
        m = compute_metrics(snap, TODAY)

        assert m.next_application_date == start
        assert m.weeks_elapsed == 0


# ---------------------------------------------------------------------------
# Time progress
# ---------------------------------------------------------------------------

class TestTimeProgress:
    def test_partial_week_is_truncated(self):
        m = compute_metrics(make_snapshot(start_date=_days_ago(20)), TODAY)
        assert m.weeks_elapsed == 2
        assert m.weeks_remaining == 10

    def test_exactly_twelve_weeks_ends_the_package(self):
        m = compute_metrics(make_snapshot(start_date=_days_ago(84)), TODAY)
        assert m.weeks_elapsed == 12
        assert m.weeks_remaining == 0

    def test_expected_end_date(self):
        start = date(2026, 1, 5)
        m = compute_metrics(make_snapshot(start_date=start), TODAY)
        assert m.expected_end_date == date(2026, 3, 30)

    def test_datetime_now_uses_its_calendar_date(self):
        snap = make_snapshot(start_date=_days_ago(20))
        late = datetime(TODAY.year, TODAY.month, TODAY.day, 23, 59)
        assert compute_metrics(snap, late) == compute_metrics(snap, TODAY)

    def test_two_weeks_left_warns(self):
        m = compute_metrics(make_snapshot(start_date=_days_ago(70)), TODAY)
        ending = _alerts_of(m, AlertType.PACKAGE_ENDING)
        assert m.weeks_remaining == 2
        assert ending[0].severity == Severity.YELLOW
        assert ending[0].message == "Package ends in 2 week(s)"

    def test_three_weeks_left_is_quiet(self):
        m = compute_metrics(make_snapshot(start_date=_days_ago(63)), TODAY)
        assert _alerts_of(m, AlertType.PACKAGE_ENDING) == []


# ---------------------------------------------------------------------------
# Consultations
# ---------------------------------------------------------------------------

class TestConsultations:
    def test_only_counting_consultations_complete_the_package(self):
        snap = make_snapshot(consultations=[
            (ENDO, _days_ago(20), True),
            (ENDO, _days_ago(10), False),
            (NUTRI, _days_ago(5), True),
        ])
        m = compute_metrics(snap, TODAY)
        assert m.endocrino_completed == 1
        assert m.endocrino_remaining == 2
        assert m.nutri_completed == 1
        assert m.nutri_remaining == 1

    def test_extra_consultations_do_not_go_negative(self):
        snap = make_snapshot(
            package=make_package(nutri=1),
            consultations=[(NUTRI, _days_ago(d), True) for d in (1, 2, 3)],
        )
        m = compute_metrics(snap, TODAY)
        assert m.nutri_completed == 3
        assert m.nutri_remaining == 0

    def test_non_counting_consultation_resets_return_clock(self):
        snap = make_snapshot(
            start_date=_days_ago(60),
            package=make_package(endocrino=3, nutri=0),
            consultations=[(ENDO, _days_ago(10), False)],
        )
        m = compute_metrics(snap, TODAY)
        assert m.endocrino_remaining == 3
        assert _alerts_of(m, AlertType.RETURN_PENDING) == []

    def test_exactly_four_weeks_is_not_pending(self):
        snap = make_snapshot(
            start_date=_days_ago(28),
            package=make_package(endocrino=1, nutri=0),
        )
        assert _alerts_of(compute_metrics(snap, TODAY), AlertType.RETURN_PENDING) == []

    def test_both_types_pending_endocrinology_first(self):
        snap = make_snapshot(start_date=_days_ago(29))
        pending = _alerts_of(compute_metrics(snap, TODAY), AlertType.RETURN_PENDING)
        assert [a.message for a in pending] == [
            "Endocrinology return pending for 4 weeks",
            "Nutrition return pending for 4 weeks",
        ]


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------

class TestStock:
    def test_remaining_formula_with_mixed_adjustments(self):
        snap = make_snapshot(
            applications=[(_days_ago(14), 2.5), (_days_ago(7), 5.0), (TODAY, 2.5)],
            adjustments=[5.0, -3.0, 2.5],
        )
        m = compute_metrics(snap, TODAY)
        assert m.mg_applied_total == 10.0
        assert m.mg_adjusted == 4.5
        assert m.mg_remaining == 84.5

    def test_negative_only_adjustments_clamp_at_zero(self):
        m = compute_metrics(make_snapshot(adjustments=[-60.0, -40.0]), TODAY)
        assert m.mg_adjusted == -100.0
        assert m.mg_remaining == 0

    def test_over_applied_stock_clamps_at_zero(self):
        snap = make_snapshot(
            package=make_package(total_medication_mg=10),
            applications=[(_days_ago(1), 50.0)],
        )
        assert compute_metrics(snap, TODAY).mg_remaining == 0

    @pytest.mark.parametrize(
        ("total_mg", "expected"),
        [
            (25.0, None),
            (20.1, None),
            (20.0, Severity.YELLOW),
            (15.0, Severity.YELLOW),
            (10.1, Severity.YELLOW),
            (10.0, Severity.RED),
            (5.0, Severity.RED),
        ],
    )
    def test_stock_thresholds(self, total_mg, expected):
        snap = make_snapshot(package=make_package(total_medication_mg=total_mg))
        stock = _alerts_of(compute_metrics(snap, TODAY), AlertType.STOCK_LOW)
        if expected is None:
            assert stock == []
        else:
            assert [a.severity for a in stock] == [expected]

    def test_low_stock_message_has_one_decimal(self):
        snap = make_snapshot(package=make_package(total_medication_mg=17.25))
        stock = _alerts_of(compute_metrics(snap, TODAY), AlertType.STOCK_LOW)
        assert stock[0].message == "Low stock: 17.2mg remaining"


# ---------------------------------------------------------------------------
# Current indication and projection
# ---------------------------------------------------------------------------

class TestCurrentIndication:
    def test_latest_started_phase_wins(self):
        phases = [
            make_phase(_days_ago(28), dose_mg=2.5),
            make_phase(_days_ago(7), dose_mg=5.0),
            make_phase(TODAY + timedelta(days=7), dose_mg=7.5),
        ]
        m = compute_metrics(make_snapshot(phases=phases), TODAY)
        assert m.current_indication.dose_mg == 5.0

    def test_phase_starting_today_is_current(self):
        phases = [make_phase(_days_ago(28), dose_mg=2.5), make_phase(TODAY, dose_mg=5.0)]
        assert select_current_indication(phases, TODAY).dose_mg_per_application == 5.0

    def test_same_start_date_prefers_newest_record(self):
        start = _days_ago(7)
        older = make_phase(start, dose_mg=2.5, created_at=datetime(2026, 2, 20, 9, 0))
        newer = make_phase(start, dose_mg=5.0, created_at=datetime(2026, 2, 20, 9, 5))
        assert select_current_indication([newer, older], TODAY) is newer
        assert select_current_indication([older, newer], TODAY) is newer

    def test_same_start_date_mixed_naive_and_aware_timestamps(self):
        start = _days_ago(7)
        naive = make_phase(start, dose_mg=2.5, created_at=datetime(2026, 2, 20, 9, 0))
        aware = make_phase(
            start, dose_mg=5.0, created_at=datetime(2026, 2, 20, 12, 0, tzinfo=timezone.utc)
        )
        assert select_current_indication([naive, aware], TODAY) is aware
        assert select_current_indication([aware, naive], TODAY) is aware

    def test_selection_ignores_input_order(self):
        phases = [
            make_phase(_days_ago(d), dose_mg=float(d), created_at=datetime(2026, 1, 1, 0, d))
            for d in (1, 8, 15, 22, 29)
        ] + [make_phase(TODAY + timedelta(days=3), dose_mg=99.0)]
        expected = select_current_indication(phases, TODAY)
        rng = random.Random(7)
        for _ in range(10):
            shuffled = list(phases)
            rng.shuffle(shuffled)
            assert select_current_indication(shuffled, TODAY) == expected
        assert expected.dose_mg_per_application == 1.0

    def test_only_future_phases_means_no_indication(self):
        snap = make_snapshot(phases=[make_phase(TODAY + timedelta(days=1))])
        m = compute_metrics(snap, TODAY)
        assert m.current_indication is None
        assert m.estimated_applications_left == 0
        assert m.estimated_days_left == 0
        assert m.estimated_medication_end_date is None
        assert m.next_application_date is None

    def test_next_application_follows_latest_application(self):
        snap = make_snapshot(
            applications=[(_days_ago(7), 2.5), (_days_ago(21), 2.5), (_days_ago(14), 2.5)],
            phases=[make_phase(_days_ago(21), dose_mg=2.5, frequency_days=7)],
        )
        assert compute_metrics(snap, TODAY).next_application_date == TODAY

    def test_next_application_today_when_started_without_applications(self):
        snap = make_snapshot(start_date=_days_ago(3), phases=[make_phase(_days_ago(3))])
        assert compute_metrics(snap, TODAY).next_application_date == TODAY

    def test_zero_dose_phase_skips_projection(self):
        snap = make_snapshot(phases=[make_phase(_days_ago(3), dose_mg=0)])
        m = compute_metrics(snap, TODAY)
        assert m.current_indication is not None
        assert m.estimated_applications_left == 0
        assert m.next_application_date is None
        assert _alerts_of(m, AlertType.MEDICATION_ENDING) == []

    @pytest.mark.parametrize(
        ("total_mg", "dose", "frequency", "expected"),
        [
            (30.0, 2.5, 7, None),             # 84 days
            (25.0, 10.0, 7, Severity.YELLOW),  # 14 days
            (15.0, 10.0, 8, Severity.YELLOW),  # 8 days
            (15.0, 10.0, 7, Severity.RED),     # 7 days
        ],
    )
    def test_medication_ending_thresholds(self, total_mg, dose, frequency, expected):
        snap = make_snapshot(
            package=make_package(total_medication_mg=total_mg),
            phases=[make_phase(_days_ago(1), dose_mg=dose, frequency_days=frequency)],
        )
        ending = _alerts_of(compute_metrics(snap, TODAY), AlertType.MEDICATION_ENDING)
        if expected is None:
            assert ending == []
        else:
            assert [a.severity for a in ending] == [expected]

    def test_no_medication_alert_when_less_than_one_dose_left(self):
        snap = make_snapshot(
            package=make_package(total_medication_mg=5),
            phases=[make_phase(_days_ago(1), dose_mg=10.0)],
        )
        m = compute_metrics(snap, TODAY)
        assert m.estimated_days_left == 0
        assert m.estimated_medication_end_date is None
        assert _alerts_of(m, AlertType.MEDICATION_ENDING) == []


# ---------------------------------------------------------------------------
# Alert list and general properties
# ---------------------------------------------------------------------------

class TestAlerts:
    def test_alerts_follow_fixed_check_order(self):
        snap = make_snapshot(
            start_date=_days_ago(77),
            package=make_package(total_medication_mg=12),
            phases=[make_phase(_days_ago(77), dose_mg=5, frequency_days=7)],
        )
        m = compute_metrics(snap, TODAY)
        assert [a.type for a in m.alerts] == [
            AlertType.STOCK_LOW,
            AlertType.MEDICATION_ENDING,
            AlertType.RETURN_PENDING,
            AlertType.RETURN_PENDING,
            AlertType.PACKAGE_ENDING,
        ]

    def test_empty_history_degrades_gracefully(self):
        m = compute_metrics(make_snapshot(start_date=TODAY), TODAY)
        assert m.mg_applied_total == 0
        assert m.current_indication is None
        assert m.alerts == ()

    def test_status_does_not_change_the_computation(self):
        from dataclasses import replace

        from m90.domains.treatment.domain_logic.metrics_models import PatientStatus

        snap = make_snapshot(start_date=_days_ago(50))
        paused = replace(snap, status=PatientStatus.PAUSED)
        assert compute_metrics(snap, TODAY) == compute_metrics(paused, TODAY)

    def test_idempotent(self):
        snap = make_snapshot(
            start_date=_days_ago(45),
            applications=[(_days_ago(45), 2.5), (_days_ago(38), 2.5)],
            phases=[make_phase(_days_ago(45))],
            consultations=[(ENDO, _days_ago(30), True)],
            adjustments=[-1.0],
        )
        first = compute_metrics(snap, TODAY)
        second = compute_metrics(snap, TODAY)
        assert first == second
        assert json.dumps(first.to_dict()) == json.dumps(second.to_dict())

    @pytest.mark.parametrize("offset_days", [-400, -30, 0, 30, 365])
    def test_remaining_values_never_negative(self, offset_days):
        snap = make_snapshot(
            start_date=TODAY + timedelta(days=offset_days),
            package=make_package(total_medication_mg=5, endocrino=0, nutri=0),
            applications=[(TODAY, 30.0)],
            consultations=[(ENDO, TODAY, True), (NUTRI, TODAY, True)],
        )
        m = compute_metrics(snap, TODAY)
        assert m.weeks_elapsed >= 0
        assert m.weeks_remaining >= 0
        assert m.endocrino_remaining >= 0
        assert m.nutri_remaining >= 0
        assert m.mg_remaining >= 0

    def test_severity_variants(self):
        assert severity_variant(Severity.GREEN) == "success"
        assert severity_variant(Severity.YELLOW) == "warning"
        assert severity_variant(Severity.RED) == "danger"


class TestSnapshotFromDict:
    def test_parses_iso_payload(self):
        snap = PatientSnapshot.from_dict({
            "start_date": "2026-02-02",
            "package": {
                "duration_weeks": 12,
                "total_medication_mg": 90,
                "required_consultations": {"ENDOCRINO": 3, "NUTRI": 2},
            },
            "applications": [{"date": "2026-02-02", "dose_mg": 2.5}],
            "indication_phases": [{
                "start_date": "2026-02-02",
                "dose_mg_per_application": 2.5,
                "frequency_days": 7,
            }],
            "consultations": [{"type": "NUTRI", "date": "2026-02-09T10:30:00"}],
            "stock_adjustments": [{"adjustment_mg": -2.5}],
        })
        assert snap.start_date == date(2026, 2, 2)
        assert snap.package.required(ENDO) == 3
        assert snap.indication_phases[0].created_at == datetime(2026, 2, 2, tzinfo=timezone.utc)
        assert snap.consultations[0].date == date(2026, 2, 9)
        assert snap.consultations[0].counts_toward_package is True

        m = compute_metrics(snap, TODAY)
        assert m.mg_remaining == 85.0

    def test_missing_package_raises(self):
        with pytest.raises(KeyError):
            PatientSnapshot.from_dict({"start_date": "2026-02-02"})

    def test_created_at_is_normalized_to_utc(self):
        snap = PatientSnapshot.from_dict({
            "start_date": "2026-01-05",
            "package": {"duration_weeks": 12, "total_medication_mg": 90},
            "indication_phases": [
                {"start_date": "2026-01-05", "dose_mg_per_application": 2.5,
                 "frequency_days": 7, "created_at": "2026-01-05T10:00:00+00:00"},
                {"start_date": "2026-01-05", "dose_mg_per_application": 5.0,
                 "frequency_days": 7},
                {"start_date": "2026-01-05", "dose_mg_per_application": 7.5,
                 "frequency_days": 7, "created_at": "2026-01-05T09:00:00-03:00"},
            ],
        })
        created = [p.created_at for p in snap.indication_phases]
        assert all(c.tzinfo is not None for c in created)
        assert created[2] == datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

        # 09:00 at -03:00 is 12:00 UTC, the newest of the three
        m = compute_metrics(snap, TODAY)
        assert m.current_indication.dose_mg == 7.5

    @pytest.mark.parametrize(
        "package",
        [
            [1],
            {"duration_weeks": 12, "total_medication_mg": 90, "required_consultations": [1]},
        ],
    )
    def test_non_object_package_raises_value_error(self, package):
        with pytest.raises(ValueError, match="must be an object"):
            PatientSnapshot.from_dict({"start_date": "2026-01-05", "package": package})

    def test_non_string_date_raises_value_error(self):
        with pytest.raises(ValueError, match="Invalid date"):
            PatientSnapshot.from_dict({
                "start_date": 20260105,
                "package": {"duration_weeks": 12, "total_medication_mg": 90},
            })
