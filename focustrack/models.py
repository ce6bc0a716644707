"""Activity session data model.

An ``ActivityContext`` is a point-in-time snapshot of what the user was looking
at inside an application (window title, optional URL, document path and a
short content snippet). An ``ActivitySession`` is one continuous block of
foreground focus on a single application, made of one or more contexts in
capture order.

Sessions are serialized as one JSON object per line in the session log:

    {"id": "...", "appName": "Code", "bundleIdentifier": "code",
     "startDate": "2025-01-06T09:00:00+01:00", "endDate": "...",
     "contexts": [{"windowTitle": "daemon.py - focustrack", "capturedAt": "..."}]}

Older records carry a single ``context`` object instead of ``contexts``; both
forms decode.

Example:
    >>> app = AppIdentity("Code", "code")
    >>> ctx = ActivityContext("daemon.py - focustrack", captured_at=now_local())
    >>> session = ActivitySession.begin(app, ctx)
    >>> session.finish()
    >>> line = session.to_json()
"""

import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, tzinfo
from typing import Any, Optional
from urllib.parse import urlparse

from dateutil import parser as dateutil_parser

from .errors import SessionClosedError, SessionDecodeError

# Maximum length of a content snippet kept on a context
SNIPPET_LIMIT = 400


def now_local() -> datetime:
    """Current time as a timezone-aware local datetime."""
    return datetime.now().astimezone()


def ensure_aware(moment: datetime) -> datetime:
    """Interpret naive datetimes as local time."""
    if moment.tzinfo is None:
        return moment.astimezone()
    return moment


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix and fractions accepted)."""
    if isinstance(value, datetime):
        return ensure_aware(value)
    if not isinstance(value, str) or not value:
        raise SessionDecodeError(f"Invalid timestamp: {value!r}")
    try:
        return ensure_aware(dateutil_parser.isoparse(value))
    except (ValueError, OverflowError) as e:
        raise SessionDecodeError(f"Invalid timestamp {value!r}: {e}") from e


def start_of_day(moment: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Midnight of the calendar day containing ``moment`` in ``tz``."""
    moment = ensure_aware(moment)
    local = moment.astimezone(tz) if tz else moment.astimezone()
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class AppIdentity:
    """Stable identity of a foreground application.

    ``bundle_identifier`` is the key sessions are grouped by (the X11 window
    class on Linux). ``pid`` is carried for termination detection only and
    does not take part in equality.
    """
    name: str
    bundle_identifier: str
    pid: Optional[int] = field(default=None, compare=False)

    def matches(self, other: Optional["AppIdentity"]) -> bool:
        return other is not None and self.bundle_identifier == other.bundle_identifier


@dataclass(frozen=True)
class ActivityContext:
    """Snapshot of the focused window at ``captured_at``."""
    window_title: str
    url: Optional[str] = None
    document_path: Optional[str] = None
    content_snippet: Optional[str] = None
    captured_at: datetime = field(default_factory=now_local)

    def __post_init__(self):
        if self.content_snippet is not None and len(self.content_snippet) > SNIPPET_LIMIT:
            object.__setattr__(self, "content_snippet", self.content_snippet[:SNIPPET_LIMIT])
        object.__setattr__(self, "captured_at", ensure_aware(self.captured_at))

    def same_content(self, other: Optional["ActivityContext"]) -> bool:
        """True when everything but the capture time is equal."""
        if other is None:
            return False
        return (
            self.window_title == other.window_title
            and self.url == other.url
            and self.document_path == other.document_path
            and self.content_snippet == other.content_snippet
        )

    @property
    def readable_description(self) -> str:
        if self.content_snippet:
            return f"{self.window_title} · {self.content_snippet}"
        if self.url:
            host = urlparse(self.url).netloc
            return f"{self.window_title} · {host or self.url}"
        if self.document_path:
            return f"{self.window_title} · {self.document_path}"
        return self.window_title

    def to_dict(self) -> dict:
        data = {"windowTitle": self.window_title}
        if self.url is not None:
            data["url"] = self.url
        if self.document_path is not None:
            data["documentPath"] = self.document_path
        if self.content_snippet is not None:
            data["contentSnippet"] = self.content_snippet
        data["capturedAt"] = self.captured_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict, fallback_time: Optional[datetime] = None) -> "ActivityContext":
        if not isinstance(data, dict):
            raise SessionDecodeError(f"Context must be an object, got {type(data).__name__}")
        title = data.get("windowTitle")
        if not isinstance(title, str):
            raise SessionDecodeError("Context is missing windowTitle")
        captured = data.get("capturedAt")
        if captured is None:
            if fallback_time is None:
                raise SessionDecodeError("Context is missing capturedAt")
            captured_at = fallback_time
        else:
            captured_at = parse_timestamp(captured)
        return cls(
            window_title=title,
            url=data.get("url"),
            document_path=data.get("documentPath"),
            content_snippet=data.get("contentSnippet"),
            captured_at=captured_at,
        )


@dataclass
class ActivitySession:
    """One continuous block of focus on a single application.

    The session is open while ``end_date`` is None. ``finish`` closes it once;
    after that it is never mutated again.

    Attributes:
        id: UUID string assigned at creation
        app_name: Display name of the application
        bundle_identifier: Stable identity key (sessions never merge across keys)
        start_date: When focus started
        end_date: When focus ended (None while current)
        contexts: Snapshots in capture order, non-empty for live sessions
    """
    app_name: str
    bundle_identifier: str
    start_date: datetime
    contexts: list[ActivityContext]
    end_date: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def begin(
        cls,
        app: AppIdentity,
        initial_context: ActivityContext,
        start_date: Optional[datetime] = None,
    ) -> "ActivitySession":
        """Open a new session seeded with one context."""
        return cls(
            app_name=app.name,
            bundle_identifier=app.bundle_identifier,
            start_date=ensure_aware(start_date or initial_context.captured_at),
            contexts=[initial_context],
        )

    @property
    def identity(self) -> AppIdentity:
        return AppIdentity(self.app_name, self.bundle_identifier)

    @property
    def is_open(self) -> bool:
        return self.end_date is None

    @property
    def latest_context(self) -> Optional[ActivityContext]:
        return self.contexts[-1] if self.contexts else None

    def duration(self, as_of: Optional[datetime] = None) -> float:
        """Elapsed seconds; open sessions report live time up to ``as_of``."""
        if self.end_date is not None:
            end = self.end_date
        else:
            end = ensure_aware(as_of) if as_of else now_local()
        return (end - self.start_date).total_seconds()

    def append_context(self, context: ActivityContext) -> None:
        """Record a new snapshot.

        Identical content refreshes the last entry in place so repeated samples
        of the same window don't grow the list.
        """
        if not self.is_open:
            raise SessionClosedError(f"Session {self.id} is closed")
        if self.contexts and self.contexts[-1].same_content(context):
            self.contexts[-1] = context
        else:
            self.contexts.append(context)

    def finish(self, at: Optional[datetime] = None) -> None:
        if not self.is_open:
            raise SessionClosedError(f"Session {self.id} already ended at {self.end_date}")
        end = ensure_aware(at) if at else now_local()
        self.end_date = max(end, self.start_date)

    def snapshot(self, end_date: Optional[datetime] = None) -> "ActivitySession":
        """Detached copy, optionally closed at ``end_date``."""
        return replace(self, contexts=list(self.contexts), end_date=end_date or self.end_date)

    def clipped(self, start: datetime) -> "ActivitySession":
        """Detached copy with everything before ``start`` cut off.

        The context current at ``start`` is kept, re-stamped to ``start``.
        Sessions already starting at or after ``start`` are copied unchanged.
        """
        start = ensure_aware(start)
        if self.start_date >= start:
            return self.snapshot()
        clip_start = min(start, self.end_date) if self.end_date else start
        later = [c for c in self.contexts if c.captured_at > clip_start]
        earlier = [c for c in self.contexts if c.captured_at <= clip_start]
        contexts = ([replace(earlier[-1], captured_at=clip_start)] if earlier else []) + later
        return replace(self, start_date=clip_start, contexts=contexts)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "appName": self.app_name,
            "bundleIdentifier": self.bundle_identifier,
            "startDate": self.start_date.isoformat(),
        }
        if self.end_date is not None:
            data["endDate"] = self.end_date.isoformat()
        data["contexts"] = [c.to_dict() for c in self.contexts]
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict) -> "ActivitySession":
        """Decode a persisted record.

        ``contexts`` wins when non-empty, otherwise a legacy ``context`` object
        becomes a one-element list, otherwise the session has no contexts.

        Raises:
            SessionDecodeError: If required fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise SessionDecodeError(f"Session must be an object, got {type(data).__name__}")
        try:
            session_id = str(uuid.UUID(str(data["id"])))
            app_name = data["appName"]
            bundle_identifier = data["bundleIdentifier"]
            start_raw = data["startDate"]
        except KeyError as e:
            raise SessionDecodeError(f"Session is missing field {e}") from e
        except ValueError as e:
            raise SessionDecodeError(f"Invalid session id: {e}") from e
        if not isinstance(app_name, str) or not isinstance(bundle_identifier, str):
            raise SessionDecodeError("appName and bundleIdentifier must be strings")

        start_date = parse_timestamp(start_raw)
        end_raw = data.get("endDate")
        end_date = parse_timestamp(end_raw) if end_raw is not None else None

        raw_contexts = data.get("contexts")
        if isinstance(raw_contexts, list) and raw_contexts:
            contexts = [ActivityContext.from_dict(c, start_date) for c in raw_contexts]
        elif data.get("context") is not None:
            contexts = [ActivityContext.from_dict(data["context"], start_date)]
        else:
            contexts = []

        return cls(
            id=session_id,
            app_name=app_name,
            bundle_identifier=bundle_identifier,
            start_date=start_date,
            end_date=end_date,
            contexts=contexts,
        )

    @classmethod
    def from_json(cls, line: str) -> "ActivitySession":
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise SessionDecodeError(f"Invalid JSON: {e}") from e
        return cls.from_dict(data)


@dataclass
class FocusSessionRecord:
    """A user-started focus block and the sessions captured during it.

    Attributes:
        start_date: When the block started
        target: Planned length of the block
        end_date: When the block was finished (None while running)
        captured_sessions: Finished sessions observed during the block
        summary: Text summary once generated
        goal: Optional free-text goal the block is checked against
    """
    start_date: datetime
    target: timedelta
    end_date: Optional[datetime] = None
    captured_sessions: list[ActivitySession] = field(default_factory=list)
    summary: Optional[str] = None
    goal: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_finished(self) -> bool:
        return self.end_date is not None

    def duration(self, as_of: Optional[datetime] = None) -> float:
        end = self.end_date or (ensure_aware(as_of) if as_of else now_local())
        return (end - self.start_date).total_seconds()

    def remaining(self, as_of: Optional[datetime] = None) -> float:
        """Seconds left until the target, never negative."""
        return max(self.target.total_seconds() - self.duration(as_of), 0.0)

    def progress(self, as_of: Optional[datetime] = None) -> float:
        target = self.target.total_seconds()
        if target <= 0:
            return 1.0
        return min(max(self.duration(as_of) / target, 0.0), 1.0)

    def capture(self, session: ActivitySession) -> None:
        self.captured_sessions.append(session)
