"""Dashboard statistics derived from the activity log.

Every figure on the dashboard is recomputed from the raw activity events on
each read. The stored progress snapshot acts as an override layer: a field
that holds a value replaces the derived figure, a field that is absent (None)
does not. Zero is a legitimate override and is never treated as absent.

Calendar days are taken in the timezone passed as ``tz``; naive timestamps
are interpreted as UTC. Without ``tz`` timestamps are used as stored. A
daylight-saving change inside the current week can shift which day an event
falls on; that behavior is left as is.
"""
import math
from dataclasses import dataclass, asdict
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Callable, Dict, Iterable, List, Optional, Sequence, TypeVar
from zoneinfo import ZoneInfo
from app.constants import MINUTES_PER_TOPIC, DAYS_PER_WEEK

T = TypeVar("T")

OVERRIDE_FIELDS = ("topics_studied", "quizzes_completed", "streak", "total_study_time")


@dataclass(frozen=True)
class DerivedStats:
    """Figures shown on the dashboard. Never persisted verbatim."""
    topics_studied: int = 0
    quizzes_completed: int = 0
    streak: int = 0
    average_score: int = 0
    total_study_time: int = 0
    weekly_goal_percent: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def resolve_timezone(name: str) -> tzinfo:
    """Timezone for calendar-day boundaries from an IANA name."""
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def round_half_up(value: float) -> int:
    """Round non-negative values with .5 going up (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def resolve_override(override: Optional[T], derive: Callable[[], T]) -> T:
    """Return the stored override when present, otherwise the derived value.

    ``derive`` is only called when there is no override.
    """
    if override is not None:
        return override
    return derive()


def snapshot_overrides(snapshot) -> Dict[str, Optional[int]]:
    """Read the override fields from a snapshot object or mapping.

    Missing snapshots and missing fields are reported as None.
    """
    if snapshot is None:
        return {field: None for field in OVERRIDE_FIELDS}
    if isinstance(snapshot, dict):
        return {field: snapshot.get(field) for field in OVERRIDE_FIELDS}
    return {field: getattr(snapshot, field, None) for field in OVERRIDE_FIELDS}


def _event_type(event) -> str:
    value = event.type
    return getattr(value, "value", value)


def _local_day(moment: datetime, tz: Optional[tzinfo]) -> date:
    if tz is None:
        return moment.date()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz).date()


def _today(now: Optional[datetime], tz: Optional[tzinfo]) -> date:
    if now is None:
        now = datetime.now(tz) if tz is not None else datetime.utcnow()
    return _local_day(now, tz)


def count_events(events: Iterable, event_type: str) -> int:
    return sum(1 for event in events if _event_type(event) == event_type)


def average_quiz_score(events: Iterable) -> int:
    """Rounded mean score over quiz events that carry a score; 0 if none."""
    scores = [
        event.score for event in events
        if _event_type(event) == "quiz" and event.score is not None
    ]
    if not scores:
        return 0
    return round_half_up(sum(scores) / len(scores))


def activity_days(events: Iterable, tz: Optional[tzinfo] = None) -> List[date]:
    """Distinct calendar days with activity, most recent first."""
    return sorted({_local_day(event.timestamp, tz) for event in events}, reverse=True)


def calculate_streak(events: Sequence, today: date, tz: Optional[tzinfo] = None) -> int:
    """
    Count consecutive activity days ending today or yesterday.

    If the most recent activity is older than yesterday the streak is 0.
    Otherwise it is 1 plus one for every following day that is exactly one
    day before the previous one; the first larger gap ends the count.

    Args:
        events: Activity events with a ``timestamp``
        today: The current calendar day
        tz: Timezone for calendar-day boundaries

    Returns:
        Streak length in days
    """
    days = activity_days(events, tz)
    if not days:
        return 0

    if (today - days[0]).days > 1:
        return 0

    streak = 1
    for newer, older in zip(days, days[1:]):
        if (newer - older).days == 1:
            streak += 1
        else:
            break
    return streak


def start_of_week(today: date) -> date:
    """First day (Sunday) of the week containing ``today``."""
    return today - timedelta(days=(today.weekday() + 1) % DAYS_PER_WEEK)


def weekly_goal_percent(events: Iterable, today: date, tz: Optional[tzinfo] = None) -> int:
    """Share of this week's seven days that have at least one activity event."""
    week_start = start_of_week(today)
    active_days = {
        day for day in (_local_day(event.timestamp, tz) for event in events)
        if day >= week_start
    }
    return round_half_up(len(active_days) / DAYS_PER_WEEK * 100)


def derive_stats(
    events: Sequence,
    snapshot=None,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None
) -> DerivedStats:
    """
    Derive dashboard statistics from the activity log and progress snapshot.

    Args:
        events: Activity events (objects with type, score and timestamp)
        snapshot: ProgressSnapshot, mapping of override fields, or None
        now: Current time; defaults to the clock
        tz: Timezone whose midnight separates calendar days

    Returns:
        DerivedStats; all zeros for an empty log and no snapshot
    """
    events = list(events or [])
    overrides = snapshot_overrides(snapshot)
    today = _today(now, tz)

    learning_sessions = count_events(events, "learning")
    topics_studied = resolve_override(overrides["topics_studied"], lambda: learning_sessions)
    quizzes_completed = resolve_override(
        overrides["quizzes_completed"], lambda: count_events(events, "quiz")
    )
    streak = resolve_override(
        overrides["streak"], lambda: calculate_streak(events, today, tz)
    )
    total_study_time = resolve_override(
        overrides["total_study_time"], lambda: learning_sessions * MINUTES_PER_TOPIC
    )

    return DerivedStats(
        topics_studied=topics_studied,
        quizzes_completed=quizzes_completed,
        streak=streak,
        average_score=average_quiz_score(events),
        total_study_time=total_study_time,
        weekly_goal_percent=weekly_goal_percent(events, today, tz),
    )
