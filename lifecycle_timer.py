# lifecycle_timer.py - Tournament countdown / lifecycle computation
# Turns a tournament's scheduled date, scheduled time and status into the phase
# shown on the site (upcoming / started / ended) plus the remaining countdown.

# =====================================================================
# IMPORTS
# =====================================================================
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# =====================================================================
# CONSTANTS
# =====================================================================
# Define IST timezone explicitly for consistency
IST_TIMEZONE = timezone(timedelta(hours=5, minutes=30))

PHASE_UPCOMING = 'upcoming'
PHASE_STARTED = 'started'
PHASE_ENDED = 'ended'

# Statuses written by admins. 'ongoing' comes from the admin panel's Start button.
ACTIVE_STATUSES = frozenset(['active', 'started', 'ongoing', 'live'])
COMPLETED_STATUSES = frozenset(['completed', 'ended'])

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR


@dataclass(frozen=True)
class Remaining:
    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: int = 0
    total_ms: int = 0

    def to_dict(self):
        return {
            'days': self.days,
            'hours': self.hours,
            'minutes': self.minutes,
            'seconds': self.seconds,
        }


ZERO_REMAINING = Remaining()


@dataclass(frozen=True)
class LifecycleView:
    """Snapshot of a tournament's lifecycle at one instant. Never mutated; recompute instead."""
    scheduled_at: datetime
    status: str
    phase: str
    remaining: Remaining
    schedule_valid: bool = True

    @property
    def is_expired(self):
        return self.phase != PHASE_UPCOMING

    def to_dict(self):
        label, badge = describe_lifecycle(self)
        return {
            'phase': self.phase,
            'remaining': self.remaining.to_dict(),
            'totalMs': self.remaining.total_ms,
            'isExpired': self.is_expired,
            'scheduleValid': self.schedule_valid,
            'targetTimeMillis': target_time_millis(self),
            'label': label,
            'badge': badge,
        }


# =====================================================================
# HELPER FUNCTIONS
# =====================================================================

def normalize_status(status):
    if status is None:
        return ''
    return str(status).strip().lower()


def parse_schedule(scheduled_date, scheduled_time, tz=IST_TIMEZONE):
    """
    Combines a 'YYYY-MM-DD' date and a 'HH:MM' (or 'HH:MM:SS') time into an aware
    datetime in `tz`. Returns None if either part is missing or malformed.
    """
    if not scheduled_date or not scheduled_time:
        return None
    time_str = str(scheduled_time).strip()
    time_format = '%H:%M:%S' if time_str.count(':') == 2 else '%H:%M'
    try:
        naive = datetime.strptime(f"{str(scheduled_date).strip()} {time_str}", f"%Y-%m-%d {time_format}")
    except ValueError:
        return None
    return naive.replace(tzinfo=tz)


def resolve_now(now, tz=IST_TIMEZONE):
    """Accepts None (wall clock), a zero-argument clock callable, or a datetime."""
    if now is None:
        value = datetime.now(tz)
    elif callable(now):
        value = now()
    else:
        value = now
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz)
    return value


def decompose_remaining(difference_ms):
    """Splits a positive millisecond difference into days / hours / minutes / seconds."""
    if difference_ms <= 0:
        return ZERO_REMAINING
    return Remaining(
        days=difference_ms // MS_PER_DAY,
        hours=(difference_ms // MS_PER_HOUR) % 24,
        minutes=(difference_ms // MS_PER_MINUTE) % 60,
        seconds=(difference_ms // MS_PER_SECOND) % 60,
        total_ms=difference_ms,
    )


# =====================================================================
# LIFECYCLE ENGINE
# =====================================================================

def compute_lifecycle(scheduled_date, scheduled_time, status, now=None, tz=IST_TIMEZONE):
    """
    Computes the lifecycle phase and remaining countdown of a tournament.

    An admin-set status always wins over the clock: an active status means
    'started' and a completed status means 'ended', whatever the schedule says.
    For any other status the clock decides: 'upcoming' with a countdown while the
    scheduled instant is in the future, 'started' once it has been reached.

    A schedule that cannot be parsed never raises. It is treated as already
    passed (phase 'started' unless the status says otherwise) and flagged with
    schedule_valid=False so callers can surface the data-entry problem.
    """
    status_key = normalize_status(status)
    scheduled_at = parse_schedule(scheduled_date, scheduled_time, tz)
    schedule_valid = scheduled_at is not None

    if status_key in ACTIVE_STATUSES:
        return LifecycleView(scheduled_at, status_key, PHASE_STARTED, ZERO_REMAINING, schedule_valid)

    if status_key in COMPLETED_STATUSES:
        return LifecycleView(scheduled_at, status_key, PHASE_ENDED, ZERO_REMAINING, schedule_valid)

    if not schedule_valid:
        print(f"Warning: Could not parse tournament schedule '{scheduled_date} {scheduled_time}'. Treating as started.")
        return LifecycleView(None, status_key, PHASE_STARTED, ZERO_REMAINING, False)

    difference_ms = (scheduled_at - resolve_now(now, tz)) // timedelta(milliseconds=1)
    if difference_ms > 0:
        return LifecycleView(scheduled_at, status_key, PHASE_UPCOMING, decompose_remaining(difference_ms))

    return LifecycleView(scheduled_at, status_key, PHASE_STARTED, ZERO_REMAINING)


def compute_for_tournament(tournament, now=None, tz=IST_TIMEZONE):
    """Runs compute_lifecycle on a tournament document dict."""
    return compute_lifecycle(
        tournament.get('scheduled_date'),
        tournament.get('scheduled_time'),
        tournament.get('status'),
        now=now,
        tz=tz,
    )


# =====================================================================
# DISPLAY HELPERS
# =====================================================================

def format_countdown(view):
    """'1d 01:01:01' style countdown; the day prefix only appears when days > 0."""
    remaining = view.remaining
    clock = f"{remaining.hours:02d}:{remaining.minutes:02d}:{remaining.seconds:02d}"
    if remaining.days > 0:
        return f"{remaining.days}d {clock}"
    return clock


def describe_lifecycle(view):
    """Returns (label, badge colour) for the tournament timer badge."""
    if view.status in COMPLETED_STATUSES:
        return 'Tournament Completed', 'gray'
    if view.status in ACTIVE_STATUSES:
        return 'Tournament Live', 'green'
    if view.is_expired:
        return 'Tournament Started', 'red'
    return format_countdown(view), 'orange'


def target_time_millis(view):
    # Unix epoch milliseconds, used by the browser countdown
    if view.scheduled_at is None:
        return None
    return int(view.scheduled_at.timestamp() * 1000)
