"""Focus blocks: user-started intervals checked against a goal.

While a block is running, every session the tracker closes is captured into
the block's ``FocusSessionRecord``, cut off at the block start. Sessions long
enough to matter are sent to the evaluator once each:

- goal relevance, when the block has a goal
- consistency with the sessions captured before it, when there are any

Evaluations run on a thread pool so ticks never wait on the network; results
come back through ``dispatch`` (the tracker loop in the daemon). A definite
``False`` raises an alert; an unknown verdict is ignored. Results that arrive
after their block ended are dropped.

Finishing a block closes the record and requests a summary in the background.
"""

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .errors import FocusSessionError
from .evaluator import SUMMARY_FALLBACK, FocusEvaluator
from .models import ActivitySession, FocusSessionRecord, ensure_aware, now_local
from .tracker import ActivityTracker, NotificationSink

logger = logging.getLogger(__name__)

DEFAULT_TARGET = timedelta(minutes=25)


@dataclass
class FocusAlert:
    """A session judged off-track during a focus block."""
    kind: str  # "goal" or "consistency"
    record_id: str
    session: ActivitySession
    message: str


class FocusSessionController:
    """Runs focus blocks on top of an ``ActivityTracker``.

    Attributes:
        min_evaluation_seconds: Sessions no longer than this are never evaluated
        history_limit: Finished records kept in ``history``
    """

    def __init__(
        self,
        tracker: ActivityTracker,
        evaluator: FocusEvaluator,
        notifier: Optional[NotificationSink] = None,
        dispatch: Optional[Callable[[Callable[[], None]], None]] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], datetime] = now_local,
        min_evaluation_seconds: float = 60.0,
        history_limit: int = 20,
        max_workers: int = 2,
        on_alert: Optional[Callable[[FocusAlert], None]] = None,
        on_summary: Optional[Callable[[FocusSessionRecord], None]] = None,
    ):
        self.tracker = tracker
        self.evaluator = evaluator
        self.notifier = notifier
        self.clock = clock
        self.min_evaluation_seconds = min_evaluation_seconds
        self.history_limit = history_limit
        self.on_alert = on_alert
        self.on_summary = on_summary
        self._dispatch = dispatch or (lambda callback: callback())
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers,
                                                        thread_name_prefix="focustrack-eval")
        self._active: Optional[FocusSessionRecord] = None
        self._evaluated: set = set()
        self._history: List[FocusSessionRecord] = []
        self._summary_delivered = threading.Event()
        self._summary_delivered.set()

        tracker.add_session_listener(self._on_session_closed)

    @property
    def active_record(self) -> Optional[FocusSessionRecord]:
        return self._active

    @property
    def history(self) -> List[FocusSessionRecord]:
        return list(self._history)

    def start(
        self,
        goal: Optional[str] = None,
        target: timedelta = DEFAULT_TARGET,
        at: Optional[datetime] = None,
    ) -> FocusSessionRecord:
        """Begin a focus block.

        Raises:
            FocusSessionError: If a block is already running
        """
        if self._active is not None:
            raise FocusSessionError("A focus block is already running")
        goal = goal.strip() if goal else None
        record = FocusSessionRecord(
            start_date=ensure_aware(at) if at else self.clock(),
            target=target,
            goal=goal or None,
        )
        self._active = record
        self._evaluated = set()
        logger.info(f"Focus block started ({int(target.total_seconds() // 60)}m, goal={goal!r})")
        return record

    def finish(self, at: Optional[datetime] = None) -> FocusSessionRecord:
        """End the running block and request its summary.

        The tracker's open session is included as a snapshot ending at ``at``.

        Raises:
            FocusSessionError: If no block is running
        """
        record = self._end_block(at)
        self._summary_delivered.clear()
        future = self._executor.submit(self.evaluator.summarize, record)
        future.add_done_callback(
            lambda f: self._dispatch(lambda: self._deliver_summary(record, f))
        )
        return record

    def cancel(self, at: Optional[datetime] = None) -> Optional[FocusSessionRecord]:
        """End the running block without a summary."""
        if self._active is None:
            return None
        return self._end_block(at)

    def wait_for_summary(self, timeout: Optional[float] = None) -> bool:
        """Block until the last requested summary has been delivered.

        Must not be called from the dispatch thread, which delivers it.
        """
        return self._summary_delivered.wait(timeout)

    def shutdown(self):
        self._executor.shutdown(wait=False)

    def _end_block(self, at: Optional[datetime]) -> FocusSessionRecord:
        record = self._active
        if record is None:
            raise FocusSessionError("No focus block is running")
        end = ensure_aware(at) if at else self.clock()
        current = self.tracker.current_session
        if current is not None:
            snapshot = current.snapshot(end_date=max(end, current.start_date))
            record.capture(snapshot.clipped(record.start_date))
        record.end_date = max(end, record.start_date)
        self._active = None
        self._evaluated = set()
        self._history.append(record)
        del self._history[:-self.history_limit]
        logger.info(
            f"Focus block ended after {record.duration():.0f}s "
            f"with {len(record.captured_sessions)} sessions"
        )
        return record

    def _on_session_closed(self, session: ActivitySession):
        record = self._active
        if record is None:
            return
        # Only the part of the session inside the block counts
        session = session.clipped(record.start_date)
        record.capture(session)

        if session.duration() <= self.min_evaluation_seconds:
            return
        if session.id in self._evaluated:
            return
        self._evaluated.add(session.id)

        prior = [s for s in record.captured_sessions if s.id != session.id]
        if record.goal:
            self._submit("goal", record, session,
                         lambda: self.evaluator.evaluate_goal(record.goal, session))
        if prior:
            self._submit("consistency", record, session,
                         lambda: self.evaluator.evaluate_consistency(session, prior))

    def _submit(self, kind: str, record: FocusSessionRecord, session: ActivitySession,
                call: Callable[[], Optional[bool]]):
        future = self._executor.submit(call)
        future.add_done_callback(
            lambda f: self._dispatch(lambda: self._deliver_verdict(kind, record, session, f))
        )

    def _deliver_verdict(self, kind: str, record: FocusSessionRecord,
                         session: ActivitySession, future: Future):
        if self._active is None or self._active.id != record.id:
            logger.debug(f"Dropping {kind} verdict for finished focus block {record.id[:8]}")
            return
        try:
            verdict = future.result()
        except Exception as e:
            logger.error(f"{kind} evaluation failed: {e}")
            verdict = None

        if verdict is None:
            logger.debug(f"{kind} verdict unknown for session {session.id[:8]}")
            return
        logger.info(f"{kind} verdict for {session.app_name}: {verdict}")
        if verdict is False:
            self._raise_alert(kind, record, session)

    def _raise_alert(self, kind: str, record: FocusSessionRecord, session: ActivitySession):
        if kind == "goal":
            message = f"{session.app_name} doesn't look related to your goal: {record.goal}"
        else:
            message = f"{session.app_name} is drifting from what you were working on."
        alert = FocusAlert(kind=kind, record_id=record.id, session=session, message=message)
        if self.notifier:
            self.notifier.notify("Stay on track", message)
        if self.on_alert:
            try:
                self.on_alert(alert)
            except Exception as e:
                logger.error(f"Alert callback error: {e}")

    def _deliver_summary(self, record: FocusSessionRecord, future: Future):
        try:
            record.summary = future.result()
        except Exception as e:
            logger.error(f"Focus block summary failed: {e}")
            record.summary = SUMMARY_FALLBACK
        logger.info(f"Focus block summary: {record.summary}")
        if self.on_summary:
            try:
                self.on_summary(record)
            except Exception as e:
                logger.error(f"Summary callback error: {e}")
        self._summary_delivered.set()
