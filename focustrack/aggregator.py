"""Time-weighted breakdowns of activity sessions.

Turns the sessions captured during an interval (typically a focus block) into:
- per-application totals with their share of the interval
- per-context segments inside one session (each context lasts until the
  next one was captured, the last until the session ended)
- topic aggregates: segments bucketed by window title, URL and document path
  across all sessions

Shares are relative to the interval length, floored to one second so an
empty interval never divides by zero.

Example output (as used in prompts):
    - Code: 10m (66%)
    - Firefox: 5m (33%)
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from .models import ActivityContext, ActivitySession, FocusSessionRecord, ensure_aware, now_local

# Topic aggregates kept for prompt construction
TOPIC_LIMIT = 8


@dataclass
class AppTotal:
    """Total focus time for one application identity."""
    app_name: str
    bundle_identifier: str
    total_seconds: float
    share: float


@dataclass
class ContextSegment:
    """A context and the span of time it was current."""
    context: ActivityContext
    start: datetime
    end: datetime

    @property
    def seconds(self) -> float:
        return max((self.end - self.start).total_seconds(), 0.0)

    @property
    def key(self) -> str:
        return topic_key(self.context)

    @property
    def description(self) -> str:
        return describe_context(self.context)


@dataclass
class TopicAggregate:
    """Accumulated time for one window/page/document across sessions."""
    key: str
    description: str
    total_seconds: float
    share: float


def interval_seconds(start: datetime, end: Optional[datetime] = None) -> float:
    """Length of an interval in seconds, floored to 1."""
    end = ensure_aware(end) if end else now_local()
    return max((end - start).total_seconds(), 1.0)


def topic_key(context: ActivityContext) -> str:
    return f"{context.window_title}|{context.url or ''}|{context.document_path or ''}"


def describe_context(context: ActivityContext) -> str:
    """One-line description of a context for prompts."""
    if context.url:
        return f"{context.window_title} ({context.url})"
    if context.document_path:
        return f"{context.window_title} ({context.document_path})"
    if context.content_snippet:
        return f"{context.window_title} · {context.content_snippet[:80]}"
    return context.window_title


def app_totals(
    sessions: Iterable[ActivitySession],
    start: datetime,
    end: Optional[datetime] = None,
    as_of: Optional[datetime] = None,
) -> List[AppTotal]:
    """Sum session durations per application, largest first.

    Args:
        sessions: Sessions captured during the interval
        start: Interval start
        end: Interval end (``as_of``/now if None)
        as_of: Reference time for still-open sessions
    """
    as_of = as_of or end or now_local()
    total = interval_seconds(start, end or as_of)

    grouped: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
    for session in sessions:
        name, seconds = grouped.get(session.bundle_identifier, (session.app_name, 0.0))
        grouped[session.bundle_identifier] = (name, seconds + max(session.duration(as_of), 0.0))

    totals = [
        AppTotal(app_name=name, bundle_identifier=key, total_seconds=seconds, share=seconds / total)
        for key, (name, seconds) in grouped.items()
    ]
    totals.sort(key=lambda t: t.total_seconds, reverse=True)
    return totals


def context_segments(session: ActivitySession, as_of: Optional[datetime] = None) -> List[ContextSegment]:
    """Split a session into per-context spans in capture order.

    A session without contexts (only possible for decoded legacy records) gets
    one placeholder context titled with the app name spanning the session.
    """
    session_end = session.end_date or (ensure_aware(as_of) if as_of else now_local())

    if not session.contexts:
        placeholder = ActivityContext(window_title=session.app_name, captured_at=session.start_date)
        return [ContextSegment(placeholder, session.start_date, session_end)]

    ordered = sorted(session.contexts, key=lambda c: c.captured_at)
    segments = []
    for index, context in enumerate(ordered):
        if index + 1 < len(ordered):
            end = ordered[index + 1].captured_at
        else:
            end = session_end
        segments.append(ContextSegment(context, context.captured_at, end))
    return segments


def topic_aggregates(
    sessions: Iterable[ActivitySession],
    start: datetime,
    end: Optional[datetime] = None,
    limit: Optional[int] = TOPIC_LIMIT,
    as_of: Optional[datetime] = None,
) -> List[TopicAggregate]:
    """Bucket context segments of all sessions by topic key, largest first."""
    as_of = as_of or end or now_local()
    total = interval_seconds(start, end or as_of)

    buckets: "OrderedDict[str, TopicAggregate]" = OrderedDict()
    for session in sessions:
        for segment in context_segments(session, as_of):
            bucket = buckets.get(segment.key)
            if bucket is None:
                bucket = TopicAggregate(key=segment.key, description=segment.description,
                                        total_seconds=0.0, share=0.0)
                buckets[segment.key] = bucket
            bucket.total_seconds += segment.seconds

    aggregates = list(buckets.values())
    for aggregate in aggregates:
        aggregate.share = aggregate.total_seconds / total
    aggregates.sort(key=lambda a: a.total_seconds, reverse=True)
    if limit is not None:
        aggregates = aggregates[:limit]
    return aggregates


def record_breakdown(
    record: FocusSessionRecord, as_of: Optional[datetime] = None
) -> Tuple[List[AppTotal], List[TopicAggregate]]:
    """App totals and topic aggregates for a focus block."""
    end = record.end_date or as_of
    return (
        app_totals(record.captured_sessions, record.start_date, end, as_of),
        topic_aggregates(record.captured_sessions, record.start_date, end, as_of=as_of),
    )


# Floor for the daily goal; zero or negative settings use it
MIN_GOAL_HOURS = 0.25


def goal_progress(total_seconds: float, goal_hours: float) -> float:
    """Fraction of a daily goal reached; not capped, 1.5 means 150%."""
    goal_seconds = max(goal_hours or 0.0, MIN_GOAL_HOURS) * 3600
    return max(total_seconds, 0.0) / goal_seconds


def format_duration(seconds: float) -> str:
    """Format seconds as human readable duration."""
    if not seconds or seconds < 0:
        return "0s"
    seconds = float(seconds)
    if seconds < 60:
        return f"{int(seconds)}s"
    elif seconds < 3600:
        mins = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{mins}m {secs}s" if secs else f"{mins}m"
    else:
        hours = int(seconds // 3600)
        mins = int((seconds % 3600) // 60)
        return f"{hours}h {mins}m"


def format_clock(seconds: float) -> str:
    """Format seconds as HH:MM:SS."""
    total = max(int(seconds), 0)
    return f"{total // 3600:02d}:{(total % 3600) // 60:02d}:{total % 60:02d}"
