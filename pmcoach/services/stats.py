"""
User statistics derived from completed session history.

Everything here is a pure function of the completed SessionRecord set (plus
"today" and the deployment time zone), so stats can be recomputed and
overwritten wholesale after every completion.
"""
import logging
import re
from collections import Counter
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, Optional, Set, Union

from pmcoach.schemas.interview import SessionRecord, UserStats
from pmcoach.services.rubrics import CATEGORIES

logger = logging.getLogger(__name__)

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DateLike = Union[date, datetime, str, None]


def to_activity_date(value: DateLike, tz: Optional[tzinfo]) -> Optional[date]:
    """
    Normalize a date-ish value to a local calendar day.

    - ``date`` / ``YYYY-MM-DD``: already bucketed, taken as-is.
    - aware ``datetime`` / ISO timestamp with offset: converted to ``tz``.
    - naive ``datetime`` / ISO timestamp without offset: read as UTC (what
      the store writes), then converted to ``tz``.
    ``tz=None`` is the host zone, applied with its DST rules for that instant.
    Unparseable strings give None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(tz).date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    if _DATE_ONLY.match(text):
        return date.fromisoformat(text)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"[STATS] unparseable session date {text!r}, skipped")
        return None
    return to_activity_date(parsed, tz)


def activity_date_for(record: SessionRecord, tz: Optional[tzinfo]) -> Optional[date]:
    # explicit activity date wins over creation time
    if record.date is not None:
        return to_activity_date(record.date, tz)
    return to_activity_date(record.created_date, tz)


def current_streak(activity_dates: Set[date], today: date) -> int:
    """Consecutive active days ending today, or yesterday if today is not active yet."""
    check = today if today in activity_dates else today - timedelta(days=1)
    streak = 0
    while check in activity_dates:
        streak += 1
        check -= timedelta(days=1)
    return streak


def longest_streak(activity_dates: Iterable[date]) -> int:
    # distinct days only: several sessions on one day neither break nor extend a run
    ordered: List[date] = sorted(set(activity_dates))
    if not ordered:
        return 0

    longest = run = 1
    for prev, curr in zip(ordered, ordered[1:]):
        if (curr - prev).days == 1:
            run += 1
        else:
            run = 1
        longest = max(longest, run)
    return longest


def category_averages(records: Iterable[SessionRecord]) -> Dict[str, float]:
    totals: Dict[str, List[float]] = {}
    for r in records:
        if r.composite_score is None:
            continue
        totals.setdefault(r.category, []).append(r.composite_score)

    # categories with no sessions are left out, never reported as 0
    return {
        category: sum(totals[category]) / len(totals[category])
        for category in CATEGORIES
        if totals.get(category)
    }


def compute_user_stats(
    records: Iterable[SessionRecord],
    today: date,
    tz: Optional[tzinfo],
) -> UserStats:
    completed = [r for r in records if r.completed]

    day_counts: Counter = Counter()
    for r in completed:
        day = activity_date_for(r, tz)
        if day is not None:
            day_counts[day] += 1

    days = set(day_counts)
    return UserStats(
        current_streak=current_streak(days, today),
        longest_streak=longest_streak(days),
        total_solved=len(completed),
        category_averages=category_averages(completed),
        last_activity_date=max(days) if days else None,
        activity_calendar={d.isoformat(): day_counts[d] for d in sorted(days)},
    )
