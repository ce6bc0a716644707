"""Activity tracker state machine.

Folds a stream of foreground-application observations into activity
sessions. The tracker is either idle (no current session) or tracking one
open session, and moves between the two on four events:

- activation of an application (pushed by the window watcher)
- termination of an application
- tick: periodic re-sample of the frontmost application
- tracking enabled/disabled

Rules:
- Our own process is never tracked.
- Same application as the current session: refresh its context in place.
- Different application: close the current session, open a new one.
- No frontmost application (or an excluded one): close the current session.

Closing a session always runs, in order: set end date, append to the store,
append to today's list, trim today's list to the current day, clear the
current session, cancel its break reminder. Listeners registered with
``add_session_listener`` are then told about the finished session.

The close time is always the timestamp of the event that caused it: the
new context's capture time on a switch, the ``at`` of a termination, tick or
toggle, or the clock when the caller gives none.

All methods must run on the scheduler's loop thread.
"""

import logging
from datetime import datetime, timedelta, tzinfo
from typing import Callable, Iterable, List, Optional, Protocol

from .aggregator import goal_progress
from .models import ActivityContext, ActivitySession, AppIdentity, ensure_aware, now_local, start_of_day
from .scheduler import Scheduler, TimerHandle
from .storage import SessionStore

logger = logging.getLogger(__name__)

SessionListener = Callable[[ActivitySession], None]


class FrontmostSampler(Protocol):
    def frontmost_application(self) -> Optional[AppIdentity]: ...


class ContextSource(Protocol):
    def capture_context(self, app: AppIdentity, at: Optional[datetime] = None) -> ActivityContext: ...


class NotificationSink(Protocol):
    def notify(self, title: str, body: str) -> None: ...


class ActivityTracker:
    """Maintains the current session and today's finished sessions.

    Attributes:
        store: Where finished sessions are persisted
        tick_interval: Seconds between re-samples once started
        break_reminder_after: Continuous focus before a break reminder (None disables)
    """

    def __init__(
        self,
        store: SessionStore,
        sampler: FrontmostSampler,
        inspector: ContextSource,
        scheduler: Scheduler,
        notifier: Optional[NotificationSink] = None,
        clock: Callable[[], datetime] = now_local,
        own_identifiers: Iterable[str] = (),
        excluded_identifiers: Iterable[str] = (),
        tick_interval: float = 1.0,
        break_reminder_after: Optional[timedelta] = timedelta(minutes=50),
        tz: Optional[tzinfo] = None,
    ):
        self.store = store
        self.sampler = sampler
        self.inspector = inspector
        self.scheduler = scheduler
        self.notifier = notifier
        self.clock = clock
        self.own_identifiers = {i.lower() for i in own_identifiers}
        self.excluded_identifiers = {i.lower() for i in excluded_identifiers}
        self.tick_interval = tick_interval
        self.break_reminder_after = break_reminder_after
        self.tz = tz

        self._current: Optional[ActivitySession] = None
        self._today: List[ActivitySession] = store.sessions_for_today(self.clock(), tz)
        self._enabled = True
        self._tick_handle: Optional[TimerHandle] = None
        self._reminder: Optional[TimerHandle] = None
        self._listeners: List[SessionListener] = []

        store.on_cache_update(self._on_store_update)

    # ------------------------------------------------------------------
    # Public state
    # ------------------------------------------------------------------

    @property
    def current_session(self) -> Optional[ActivitySession]:
        return self._current

    @property
    def today_sessions(self) -> List[ActivitySession]:
        return list(self._today)

    @property
    def tracking_enabled(self) -> bool:
        return self._enabled

    def total_focused_time(self, as_of: Optional[datetime] = None) -> float:
        """Seconds of focus today, including the live current session."""
        as_of = as_of or self.clock()
        finished = sum(s.duration(as_of) for s in self._today)
        current = self._current.duration(as_of) if self._current else 0.0
        return finished + current

    def daily_goal_progress(self, goal_hours: float = 4.0, as_of: Optional[datetime] = None) -> float:
        """Today's focused time as a fraction of ``goal_hours``, not capped at 1."""
        return goal_progress(self.total_focused_time(as_of), goal_hours)

    def latest_highlights(self, max_count: int = 3) -> List[ActivitySession]:
        """Current session first, then today's most recently started sessions."""
        result = []
        if self._current:
            result.append(self._current)
        remaining = max(0, max_count - len(result))
        if remaining:
            finished = sorted(self._today, key=lambda s: s.start_date, reverse=True)
            result.extend(finished[:remaining])
        return result[:max_count] if max_count >= 0 else []

    def add_session_listener(self, listener: SessionListener) -> None:
        """Call ``listener`` with every session after it is closed."""
        self._listeners.append(listener)

    def remove_session_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Begin periodic sampling and take an initial sample."""
        if self._tick_handle is None:
            self._tick_handle = self.scheduler.call_every(self.tick_interval, self.tick)
        logger.info(f"Tracker started (tick every {self.tick_interval}s)")
        self.tick()

    def stop(self, at: Optional[datetime] = None):
        """Stop sampling and close the current session."""
        if self._tick_handle:
            self._tick_handle.cancel()
            self._tick_handle = None
        self._finish_current(self._event_time(at))
        logger.info("Tracker stopped")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def handle_activation(
        self,
        app: AppIdentity,
        context: Optional[ActivityContext] = None,
        at: Optional[datetime] = None,
    ) -> None:
        """An application became (or still is) frontmost."""
        if self._is_own(app) or not self._enabled:
            return

        timestamp = self._event_time(at or (context.captured_at if context else None))

        if self._is_excluded(app):
            logger.debug(f"Excluded app {app.bundle_identifier} in front, closing current session")
            self._finish_current(timestamp)
            return

        current = self._current
        if current is not None and current.identity.matches(app):
            current.append_context(context or self._capture(app, timestamp))
            return

        if current is not None:
            self._finish_current(timestamp)
        self._open_session(app, context or self._capture(app, timestamp), timestamp)

    def handle_termination(self, app: AppIdentity, at: Optional[datetime] = None) -> None:
        """An application quit; closes the current session if it was that app."""
        if self._current is not None and self._current.identity.matches(app):
            logger.debug(f"{app.name} terminated")
            self._finish_current(self._event_time(at))

    def tick(self, at: Optional[datetime] = None) -> None:
        """Re-sample the frontmost application."""
        if not self._enabled:
            return
        timestamp = self._event_time(at)
        try:
            app = self.sampler.frontmost_application()
        except Exception as e:
            logger.warning(f"Frontmost application lookup failed: {e}")
            app = None

        if app is None:
            self._finish_current(timestamp)
            return
        self.handle_activation(app, at=timestamp)

    def set_tracking_enabled(self, enabled: bool, at: Optional[datetime] = None) -> None:
        """Pause or resume tracking.

        Disabling closes the current session immediately; enabling re-samples
        right away, so a still-frontmost app gets a fresh session.
        """
        if enabled == self._enabled:
            return
        timestamp = self._event_time(at)
        if not enabled:
            self._finish_current(timestamp)
            self._enabled = False
            logger.info("Tracking disabled")
        else:
            self._enabled = True
            logger.info("Tracking enabled")
            self.tick(timestamp)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _event_time(self, at: Optional[datetime]) -> datetime:
        return ensure_aware(at) if at else self.clock()

    def _is_own(self, app: AppIdentity) -> bool:
        return app.bundle_identifier.lower() in self.own_identifiers

    def _is_excluded(self, app: AppIdentity) -> bool:
        return app.bundle_identifier.lower() in self.excluded_identifiers

    def _capture(self, app: AppIdentity, at: datetime) -> ActivityContext:
        try:
            return self.inspector.capture_context(app, at=at)
        except Exception as e:
            logger.warning(f"Context capture failed for {app.name}: {e}")
            return ActivityContext(window_title=app.name, captured_at=at)

    def _open_session(self, app: AppIdentity, context: ActivityContext, at: datetime):
        session = ActivitySession.begin(app, context, start_date=at)
        self._current = session
        logger.info(f"Started session {session.id[:8]} for {app.name}")
        self._schedule_break_reminder(session)

    def _finish_current(self, at: datetime):
        session = self._current
        if session is None:
            return
        session.finish(at)
        self.store.append(session)
        self._today.append(session)
        self._trim_today()
        self._current = None
        self._cancel_break_reminder()
        logger.info(
            f"Closed session {session.id[:8]} for {session.app_name} "
            f"({session.duration():.0f}s, {len(session.contexts)} contexts)"
        )

        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception as e:
                logger.error(f"Session listener error: {e}")

    def _trim_today(self):
        midnight = start_of_day(self.clock(), self.tz)
        self._today = [s for s in self._today if s.start_date >= midnight]

    def _on_store_update(self, sessions: List[ActivitySession]):
        midnight = start_of_day(self.clock(), self.tz)
        cached = [s for s in sessions if s.start_date >= midnight]
        cached_ids = {s.id for s in cached}
        # Keep sessions closed locally whose write hasn't reached the cache yet
        pending = [s for s in self._today if s.id not in cached_ids and s.start_date >= midnight]
        self._today = cached + pending

    def _schedule_break_reminder(self, session: ActivitySession):
        self._cancel_break_reminder()
        if not self.break_reminder_after or self.break_reminder_after.total_seconds() <= 0:
            return
        session_id = session.id
        self._reminder = self.scheduler.call_later(
            self.break_reminder_after.total_seconds(),
            lambda: self._fire_break_reminder(session_id),
        )

    def _cancel_break_reminder(self):
        if self._reminder:
            self._reminder.cancel()
        self._reminder = None

    def _fire_break_reminder(self, session_id: str):
        current = self._current
        if current is None or current.id != session_id or not self._enabled:
            logger.debug(f"Ignoring stale break reminder for session {session_id[:8]}")
            return
        self._reminder = None
        minutes = int(current.duration(self.clock()) // 60)
        logger.info(f"Break reminder for {current.app_name} after {minutes}m")
        if self.notifier:
            self.notifier.notify(
                "Time for a break",
                f"You've been focused on {current.app_name} for {minutes} minutes.",
            )
