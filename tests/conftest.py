"""Shared fakes for focustrack tests.

Everything here is deterministic: time only moves when a test advances the
clock, timers only fire when the manual scheduler is advanced, and evaluation
work runs synchronously.
"""

from concurrent.futures import Executor, Future
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from focustrack.models import ActivityContext, AppIdentity
from focustrack.scheduler import Scheduler, TimerHandle
from focustrack.storage import SessionStore

T0 = datetime(2025, 1, 6, 10, 0, 0, tzinfo=timezone.utc)

CODE = AppIdentity("Code", "code", pid=101)
FIREFOX = AppIdentity("Firefox", "firefox", pid=202)
SELF = AppIdentity("focustrack", "focustrack", pid=303)
KEEPASS = AppIdentity("KeePassXC", "keepassxc", pid=404)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now

    def at(self, seconds: float) -> datetime:
        """Time ``seconds`` after T0."""
        return T0 + timedelta(seconds=seconds)


class ManualScheduler(Scheduler):
    """Scheduler driven by the test through ``advance`` and ``run_ready``."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.ready: List = []
        self.timers: List[tuple] = []

    def call_soon(self, callback):
        self.ready.append(callback)

    def call_later(self, delay, callback):
        handle = TimerHandle(callback)
        self.timers.append((self.clock() + timedelta(seconds=delay), handle))
        return handle

    def call_every(self, interval, callback):
        handle = TimerHandle(callback, interval=interval)
        self.timers.append((self.clock() + timedelta(seconds=interval), handle))
        return handle

    @property
    def pending_timers(self) -> List[TimerHandle]:
        return [h for _, h in self.timers if not h.cancelled]

    def run_ready(self):
        while self.ready:
            self.ready.pop(0)()

    def advance(self, seconds: float):
        """Move the clock forward, firing due timers at their deadlines."""
        target = self.clock() + timedelta(seconds=seconds)
        while True:
            due = sorted(
                [(deadline, h) for deadline, h in self.timers if deadline <= target and not h.cancelled],
                key=lambda item: item[0],
            )
            if not due:
                break
            deadline, handle = due[0]
            self.timers = [(d, h) for d, h in self.timers if h is not handle]
            self.clock.now = deadline
            if handle.interval is not None:
                self.timers.append((deadline + timedelta(seconds=handle.interval), handle))
            handle.callback()
            self.run_ready()
        self.timers = [(d, h) for d, h in self.timers if not h.cancelled]
        self.clock.now = target
        self.run_ready()


class FakeSampler:
    """Frontmost application chosen by the test."""

    def __init__(self, app: Optional[AppIdentity] = None):
        self.app = app

    def frontmost_application(self) -> Optional[AppIdentity]:
        return self.app


class FakeInspector:
    """Returns a title-only context; titles can be set per app."""

    def __init__(self):
        self.titles: Dict[str, str] = {}
        self.captures = 0

    def capture_context(self, app: AppIdentity, at: Optional[datetime] = None) -> ActivityContext:
        self.captures += 1
        title = self.titles.get(app.bundle_identifier, f"{app.name} window")
        return ActivityContext(window_title=title, captured_at=at or T0)


class FakeNotifier:
    def __init__(self):
        self.sent: List[tuple] = []

    def notify(self, title: str, body: str) -> None:
        self.sent.append((title, body))


class FakeGenerator:
    """Text generator replaying canned replies and recording prompts."""

    def __init__(self, *replies: Optional[str], default: Optional[str] = None):
        self.replies = list(replies)
        self.default = default
        self.prompts: List[str] = []

    def complete(self, messages) -> Optional[str]:
        self.prompts.append(messages[-1].content)
        if self.replies:
            return self.replies.pop(0)
        return self.default


class SyncExecutor(Executor):
    """Runs submitted work immediately and returns a completed Future."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def sampler():
    return FakeSampler()


@pytest.fixture
def inspector():
    return FakeInspector()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def log_path(tmp_path):
    return tmp_path / "data" / "sessions.jsonl"


@pytest.fixture
def store(log_path, scheduler):
    """Store whose cache updates run on the manual scheduler."""
    session_store = SessionStore(log_path, cache_limit=50, dispatch=scheduler.call_soon)
    yield session_store
    session_store.close()
