"""Tests for the session data model and its JSON line format."""

import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from focustrack.errors import SessionClosedError, SessionDecodeError
from focustrack.models import (
    SNIPPET_LIMIT,
    ActivityContext,
    ActivitySession,
    AppIdentity,
    FocusSessionRecord,
    parse_timestamp,
    start_of_day,
)

from conftest import CODE, T0


def ctx(title="main.py - focustrack", seconds=0, **kwargs):
    return ActivityContext(window_title=title, captured_at=T0 + timedelta(seconds=seconds), **kwargs)


class TestActivityContext:
    """Snapshot equality, truncation and description"""

    def test_same_content_ignores_capture_time(self):
        """Contexts differing only in capturedAt have the same content"""
        assert ctx(seconds=0).same_content(ctx(seconds=30))
        assert not ctx("a").same_content(ctx("b"))
        assert not ctx(url="https://a.example").same_content(ctx(url="https://b.example"))

    def test_snippet_truncated(self):
        """Snippets longer than the cap are cut"""
        context = ctx(content_snippet="x" * (SNIPPET_LIMIT + 50))
        assert len(context.content_snippet) == SNIPPET_LIMIT

    def test_naive_timestamp_becomes_aware(self):
        """Naive capture times are interpreted as local time"""
        context = ActivityContext("t", captured_at=datetime(2025, 1, 6, 9, 0))
        assert context.captured_at.tzinfo is not None

    def test_readable_description_prefers_snippet_then_host(self):
        assert ctx("Doc", content_snippet="hello").readable_description == "Doc · hello"
        assert ctx("Page", url="https://docs.python.org/3/").readable_description == "Page · docs.python.org"
        assert ctx("Plain").readable_description == "Plain"

    def test_optional_fields_omitted_from_dict(self):
        data = ctx("Plain").to_dict()
        assert set(data) == {"windowTitle", "capturedAt"}


class TestActivitySession:
    """Context append contract, duration and lifecycle"""

    def test_begin_seeds_one_context(self):
        session = ActivitySession.begin(CODE, ctx())
        assert len(session.contexts) == 1
        assert session.start_date == T0
        assert session.is_open
        uuid.UUID(session.id)

    def test_identical_context_replaces_last(self):
        """Identical content never grows the list, but refreshes recency"""
        session = ActivitySession.begin(CODE, ctx(seconds=0))
        session.append_context(ctx(seconds=5))
        assert len(session.contexts) == 1
        assert session.latest_context.captured_at == T0 + timedelta(seconds=5)

    def test_different_context_appends_one(self):
        session = ActivitySession.begin(CODE, ctx("a", seconds=0))
        session.append_context(ctx("b", seconds=5))
        assert [c.window_title for c in session.contexts] == ["a", "b"]

    def test_contexts_non_decreasing(self):
        """Repeated samples keep capture times ordered"""
        session = ActivitySession.begin(CODE, ctx("a", seconds=0))
        for i, title in enumerate(["a", "b", "b", "c", "a"], start=1):
            session.append_context(ctx(title, seconds=i))
        times = [c.captured_at for c in session.contexts]
        assert times == sorted(times)
        assert len(session.contexts) == 4

    def test_open_duration_is_live(self):
        session = ActivitySession.begin(CODE, ctx())
        assert session.duration(T0 + timedelta(seconds=42)) == 42
        assert session.duration(T0 + timedelta(seconds=90)) == 90

    def test_closed_duration_is_constant(self):
        session = ActivitySession.begin(CODE, ctx())
        session.finish(T0 + timedelta(seconds=10))
        assert session.duration(T0 + timedelta(hours=5)) == 10
        assert session.duration() == 10

    def test_finish_twice_raises(self):
        session = ActivitySession.begin(CODE, ctx())
        session.finish(T0 + timedelta(seconds=1))
        with pytest.raises(SessionClosedError):
            session.finish(T0 + timedelta(seconds=2))

    def test_append_after_close_raises(self):
        session = ActivitySession.begin(CODE, ctx())
        session.finish(T0 + timedelta(seconds=1))
        with pytest.raises(SessionClosedError):
            session.append_context(ctx("other"))

    def test_finish_never_before_start(self):
        session = ActivitySession.begin(CODE, ctx())
        session.finish(T0 - timedelta(seconds=30))
        assert session.end_date == T0
        assert session.duration() == 0

    def test_snapshot_is_detached(self):
        session = ActivitySession.begin(CODE, ctx("a"))
        copy = session.snapshot(end_date=T0 + timedelta(seconds=3))
        session.append_context(ctx("b", seconds=2))
        assert len(copy.contexts) == 1
        assert copy.end_date == T0 + timedelta(seconds=3)
        assert session.is_open

    def test_clipped_restamps_context_current_at_start(self):
        session = ActivitySession.begin(CODE, ctx("a"))
        session.append_context(ctx("b", seconds=50))
        session.append_context(ctx("c", seconds=150))
        session.finish(T0 + timedelta(seconds=200))

        clipped = session.clipped(T0 + timedelta(seconds=100))
        assert clipped.start_date == T0 + timedelta(seconds=100)
        assert [c.window_title for c in clipped.contexts] == ["b", "c"]
        assert clipped.contexts[0].captured_at == T0 + timedelta(seconds=100)
        assert clipped.duration() == 100
        assert clipped.id == session.id
        assert session.start_date == T0
        assert len(session.contexts) == 3

    def test_clipped_after_start_is_plain_copy(self):
        session = ActivitySession.begin(CODE, ctx("a", seconds=10))
        session.finish(T0 + timedelta(seconds=20))
        clipped = session.clipped(T0)
        assert clipped.start_date == session.start_date
        assert clipped.contexts == session.contexts
        assert clipped is not session

    def test_clipped_past_end_is_empty(self):
        session = ActivitySession.begin(CODE, ctx("a"))
        session.finish(T0 + timedelta(seconds=20))
        assert session.clipped(T0 + timedelta(seconds=60)).duration() == 0


class TestSessionEncoding:
    """JSON line encoding and legacy decoding"""

    def _finished(self):
        session = ActivitySession.begin(CODE, ctx("a", url="https://example.com/a"))
        session.append_context(ctx("b", seconds=3, document_path="/tmp/b.md", content_snippet="notes"))
        session.finish(T0 + timedelta(seconds=7))
        return session

    def test_round_trip(self):
        session = self._finished()
        decoded = ActivitySession.from_json(session.to_json())
        assert decoded == session

    def test_line_uses_camel_case_keys(self):
        data = json.loads(self._finished().to_json())
        assert {"id", "appName", "bundleIdentifier", "startDate", "endDate", "contexts"} <= set(data)
        assert data["contexts"][1]["documentPath"] == "/tmp/b.md"

    def test_open_session_omits_end_date(self):
        session = ActivitySession.begin(CODE, ctx())
        assert "endDate" not in session.to_dict()

    def test_legacy_single_context(self):
        """A record with only ``context`` decodes to a one-element list"""
        line = json.dumps({
            "id": str(uuid.uuid4()),
            "appName": "Code",
            "bundleIdentifier": "code",
            "startDate": "2025-01-06T10:00:00Z",
            "endDate": "2025-01-06T10:05:00Z",
            "context": {"windowTitle": "legacy.py"},
        })
        session = ActivitySession.from_json(line)
        assert len(session.contexts) == 1
        assert session.contexts[0].window_title == "legacy.py"
        assert session.contexts[0].captured_at == session.start_date
        assert session.duration() == 300

    def test_contexts_win_over_legacy(self):
        data = self._finished().to_dict()
        data["context"] = {"windowTitle": "ignored"}
        session = ActivitySession.from_dict(data)
        assert [c.window_title for c in session.contexts] == ["a", "b"]

    def test_no_contexts_decodes_empty(self):
        data = self._finished().to_dict()
        data["contexts"] = []
        session = ActivitySession.from_dict(data)
        assert session.contexts == []
        assert session.latest_context is None

    def test_fractional_seconds_and_z_suffix(self):
        moment = parse_timestamp("2025-01-06T10:00:00.123456Z")
        assert moment.tzinfo is not None
        assert moment.microsecond == 123456

    @pytest.mark.parametrize("line", [
        "not json",
        "[]",
        json.dumps({"appName": "Code"}),
        json.dumps({"id": "nope", "appName": "Code", "bundleIdentifier": "code",
                    "startDate": "2025-01-06T10:00:00Z"}),
        json.dumps({"id": str(uuid.uuid4()), "appName": "Code", "bundleIdentifier": "code",
                    "startDate": "yesterday"}),
    ])
    def test_bad_lines_raise_decode_error(self, line):
        with pytest.raises(SessionDecodeError):
            ActivitySession.from_json(line)


class TestHelpers:
    def test_start_of_day(self):
        moment = datetime(2025, 1, 6, 23, 30, tzinfo=timezone.utc)
        assert start_of_day(moment, timezone.utc) == datetime(2025, 1, 6, tzinfo=timezone.utc)

    def test_identity_ignores_pid(self):
        assert AppIdentity("Code", "code", pid=1) == AppIdentity("Code", "code", pid=2)
        assert CODE.matches(AppIdentity("Visual Studio Code", "code"))
        assert not CODE.matches(None)


class TestFocusSessionRecord:
    def test_progress_and_remaining(self):
        record = FocusSessionRecord(start_date=T0, target=timedelta(minutes=10))
        halfway = T0 + timedelta(minutes=5)
        assert record.progress(halfway) == pytest.approx(0.5)
        assert record.remaining(halfway) == 300
        assert record.remaining(T0 + timedelta(hours=1)) == 0
        assert not record.is_finished

    def test_zero_target_is_complete(self):
        record = FocusSessionRecord(start_date=T0, target=timedelta(0))
        assert record.progress(T0) == 1.0
