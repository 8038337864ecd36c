"""
Feedback statistics.

analyze_feedback() turns a user's feedback history into a FeedbackStats
record; render_learnings() is the only place that turns it into text.
"""

from datetime import datetime, timezone, tzinfo
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from .memory_types import FeedbackEntry, FeedbackStats, Outcome


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _engagement(entry: FeedbackEntry) -> float:
    return entry.metrics.engagement or 0.0


def hour_of(timestamp_ms: int, tz: tzinfo) -> int:
    """Hour of day (0-23) of an epoch-millis timestamp in ``tz``."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).astimezone(tz).hour


def analyze_feedback(
    entries: Sequence[FeedbackEntry],
    tz: Optional[tzinfo] = None,
) -> Optional[FeedbackStats]:
    """
    Summarise feedback. Returns None for an empty history.

    Missing engagement counts as 0. The best hour is the one with the
    highest mean engagement; on a tie the hour seen first wins.
    """
    if not entries:
        return None
    tz = tz or timezone.utc

    successes = [e for e in entries if e.outcome == Outcome.SUCCESS]
    failures = [e for e in entries if e.outcome == Outcome.FAILURE]
    partials = [e for e in entries if e.outcome == Outcome.PARTIAL]

    # dicts keep insertion order, so iteration is first-seen order
    by_hour: dict[int, list[float]] = {}
    for entry in entries:
        by_hour.setdefault(hour_of(entry.timestamp, tz), []).append(_engagement(entry))
    hourly = {hour: _mean(values) for hour, values in by_hour.items()}

    best_hour, best_avg = None, 0.0
    for hour, avg in hourly.items():
        if best_hour is None or avg > best_avg:
            best_hour, best_avg = hour, avg

    return FeedbackStats(
        sample_count=len(entries),
        success_count=len(successes),
        failure_count=len(failures),
        partial_count=len(partials),
        success_rate=len(successes) / len(entries) * 100,
        average_engagement=_mean([_engagement(e) for e in entries]),
        success_engagement=_mean([_engagement(e) for e in successes]) if successes else None,
        best_hour=best_hour,
        best_hour_engagement=best_avg,
        hourly_engagement=hourly,
    )


def render_learnings(stats: Optional[FeedbackStats]) -> list[str]:
    """Human-readable summary lines for a stats record."""
    if stats is None:
        return []

    lines = []
    if stats.success_engagement is not None:
        lines.append(
            f"Average engagement on successful posts: {stats.success_engagement:.2f}%"
        )
    if stats.failure_count:
        lines.append(f"{stats.failure_count} actions failed - analyzing common patterns")
    lines.append(
        f"Best posting time: {stats.best_hour}:00 "
        f"(avg engagement: {stats.best_hour_engagement:.2f}%)"
    )
    return lines


def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)
