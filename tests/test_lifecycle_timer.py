import pytest
from datetime import datetime, timedelta, timezone

from lifecycle_timer import (
    IST_TIMEZONE,
    PHASE_ENDED,
    PHASE_STARTED,
    PHASE_UPCOMING,
    Remaining,
    compute_for_tournament,
    compute_lifecycle,
    decompose_remaining,
    describe_lifecycle,
    format_countdown,
    parse_schedule,
    target_time_millis,
)

ZERO = {'days': 0, 'hours': 0, 'minutes': 0, 'seconds': 0}


def at(*args):
    return datetime(*args, tzinfo=IST_TIMEZONE)


class TestAdminStatusOverride:

    @pytest.mark.parametrize("status", ["completed", "ended", "Completed"])
    def test_completed_is_ended_regardless_of_clock(self, status):
        for now in (at(2024, 12, 31, 0, 0), at(2025, 1, 1, 20, 0), at(2026, 6, 1, 9, 30)):
            view = compute_lifecycle("2025-01-01", "20:00", status, now=now)
            assert view.phase == PHASE_ENDED
            assert view.remaining.to_dict() == ZERO
            assert view.is_expired

    @pytest.mark.parametrize("status", ["active", "started", "ongoing"])
    def test_active_is_started_even_before_schedule(self, status):
        view = compute_lifecycle("2025-01-01", "20:00", status, now=at(2024, 12, 25, 10, 0))
        assert view.phase == PHASE_STARTED
        assert view.remaining.to_dict() == ZERO
        assert view.remaining.total_ms == 0


class TestClockDrivenPhase:

    def test_exact_decomposition(self):
        now = at(2025, 1, 1, 0, 0, 0)
        target = now + timedelta(milliseconds=90061000)
        view = compute_lifecycle(target.strftime('%Y-%m-%d'), target.strftime('%H:%M:%S'), "upcoming", now=now)
        assert view.phase == PHASE_UPCOMING
        assert view.remaining == Remaining(days=1, hours=1, minutes=1, seconds=1, total_ms=90061000)
        assert not view.is_expired

    def test_one_hour_before(self):
        view = compute_lifecycle("2025-01-01", "20:00", "upcoming", now=at(2025, 1, 1, 19, 0, 0))
        assert view.phase == PHASE_UPCOMING
        assert view.remaining.to_dict() == {'days': 0, 'hours': 1, 'minutes': 0, 'seconds': 0}

    def test_one_second_after_is_started(self):
        view = compute_lifecycle("2025-01-01", "20:00", "upcoming", now=at(2025, 1, 1, 20, 0, 1))
        assert view.phase == PHASE_STARTED
        assert view.remaining.to_dict() == ZERO

    def test_exactly_at_schedule_is_started(self):
        view = compute_lifecycle("2025-01-01", "20:00", "upcoming", now=at(2025, 1, 1, 20, 0, 0))
        assert view.phase == PHASE_STARTED

    def test_unknown_status_follows_the_clock(self):
        before = compute_lifecycle("2025-01-01", "20:00", "pending", now=at(2025, 1, 1, 10, 0))
        after = compute_lifecycle("2025-01-01", "20:00", "pending", now=at(2025, 1, 2, 10, 0))
        assert before.phase == PHASE_UPCOMING
        assert after.phase == PHASE_STARTED

    def test_remaining_never_increases_while_upcoming(self):
        start = at(2025, 1, 1, 12, 0, 0)
        previous = None
        for step in range(0, 8 * 3600, 997):
            view = compute_lifecycle("2025-01-01", "20:00", "upcoming", now=start + timedelta(seconds=step))
            assert view.phase == PHASE_UPCOMING
            if previous is not None:
                assert view.remaining.total_ms <= previous.remaining.total_ms
            assert min(view.remaining.to_dict().values()) >= 0
            previous = view

    def test_same_inputs_same_result(self):
        now = at(2025, 1, 1, 18, 15, 42)
        first = compute_lifecycle("2025-01-01", "20:00", "upcoming", now=now)
        second = compute_lifecycle("2025-01-01", "20:00", "upcoming", now=now)
        assert first == second

    def test_clock_callable_is_used(self):
        calls = []

        def clock():
            calls.append(1)
            return at(2025, 1, 1, 19, 59, 30)

        view = compute_lifecycle("2025-01-01", "20:00", "upcoming", now=clock)
        assert calls == [1]
        assert view.remaining.seconds == 30

    def test_naive_now_is_read_in_schedule_timezone(self):
        view = compute_lifecycle("2025-01-01", "20:00", "upcoming", now=datetime(2025, 1, 1, 19, 0))
        assert view.remaining.hours == 1

    def test_aware_now_in_other_timezone(self):
        # 13:30 UTC is 19:00 IST
        now = datetime(2025, 1, 1, 13, 30, tzinfo=timezone.utc)
        view = compute_lifecycle("2025-01-01", "20:00", "upcoming", now=now)
        assert view.remaining.to_dict() == {'days': 0, 'hours': 1, 'minutes': 0, 'seconds': 0}

    def test_compute_for_tournament_reads_document_fields(self):
        tournament = {'scheduled_date': '2025-01-03', 'scheduled_time': '20:00', 'status': 'upcoming'}
        view = compute_for_tournament(tournament, now=at(2025, 1, 1, 20, 0))
        assert view.remaining.days == 2


class TestInvalidSchedule:

    @pytest.mark.parametrize("date_str,time_str", [
        ("", "20:00"),
        (None, None),
        ("2025-13-45", "20:00"),
        ("2025-01-01", "25:99"),
        ("tomorrow", "evening"),
    ])
    def test_bad_schedule_is_treated_as_started(self, date_str, time_str):
        view = compute_lifecycle(date_str, time_str, "upcoming", now=at(2025, 1, 1, 0, 0))
        assert view.phase == PHASE_STARTED
        assert view.remaining.to_dict() == ZERO
        assert view.schedule_valid is False
        assert target_time_millis(view) is None

    def test_bad_schedule_keeps_admin_status(self):
        view = compute_lifecycle("nope", "nope", "completed", now=at(2025, 1, 1, 0, 0))
        assert view.phase == PHASE_ENDED
        assert view.schedule_valid is False


class TestHelpers:

    def test_parse_schedule_accepts_seconds(self):
        assert parse_schedule("2025-01-01", "20:00:30") == at(2025, 1, 1, 20, 0, 30)

    def test_decompose_non_positive(self):
        assert decompose_remaining(0) == Remaining()
        assert decompose_remaining(-5000) == Remaining()

    def test_format_countdown_with_and_without_days(self):
        now = at(2025, 1, 1, 0, 0, 0)
        with_days = compute_lifecycle("2025-01-02", "01:01", "upcoming", now=now)
        without_days = compute_lifecycle("2025-01-01", "01:01", "upcoming", now=now)
        assert format_countdown(with_days) == "1d 01:01:00"
        assert format_countdown(without_days) == "01:01:00"

    def test_describe_lifecycle_labels(self):
        now = at(2025, 1, 1, 19, 0, 0)
        assert describe_lifecycle(compute_lifecycle("2025-01-01", "20:00", "completed", now=now)) == ('Tournament Completed', 'gray')
        assert describe_lifecycle(compute_lifecycle("2025-01-01", "20:00", "active", now=now)) == ('Tournament Live', 'green')
        assert describe_lifecycle(compute_lifecycle("2025-01-01", "18:00", "upcoming", now=now)) == ('Tournament Started', 'red')
        assert describe_lifecycle(compute_lifecycle("2025-01-01", "20:00", "upcoming", now=now)) == ('01:00:00', 'orange')

    def test_to_dict_shape(self):
        view = compute_lifecycle("2025-01-01", "20:00", "upcoming", now=at(2025, 1, 1, 19, 0, 0))
        payload = view.to_dict()
        assert payload['phase'] == 'upcoming'
        assert payload['remaining'] == {'days': 0, 'hours': 1, 'minutes': 0, 'seconds': 0}
        assert payload['totalMs'] == 3600 * 1000
        assert payload['isExpired'] is False
        assert payload['scheduleValid'] is True
        assert payload['targetTimeMillis'] == int(at(2025, 1, 1, 20, 0).timestamp() * 1000)
        assert payload['label'] == '01:00:00'
