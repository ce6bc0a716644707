"""Append-only session log with a bounded in-memory cache.

Finished sessions are written as one JSON object per line to
``~/focustrack-data/sessions.jsonl`` (newest last). Writes and the initial
load run on a single background writer thread so callers never block on disk
I/O and two appends never interleave in the file.

After each write attempt the cache update is handed to ``dispatch``. By
default it runs right away on the writer thread; the daemon passes the
tracker loop's ``call_soon`` so the cache is only ever mutated on the
state-machine thread, in append order.

Failure handling:
- A failed write is logged and the cache is still updated, so the cache can
  drift from disk while I/O keeps failing.
- Lines that fail to decode on load are skipped.

Example:
    >>> store = SessionStore(Path("/tmp/sessions.jsonl"))
    >>> store.on_cache_update(lambda sessions: print(len(sessions)))
    >>> store.append(finished_session)
    >>> store.flush()
"""

import logging
import queue
import threading
from collections import deque
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Callable, List, Optional

from .errors import SessionDecodeError
from .models import ActivitySession, now_local, start_of_day

logger = logging.getLogger(__name__)

DEFAULT_CACHE_LIMIT = 500
DEFAULT_LOG_PATH = Path.home() / "focustrack-data" / "sessions.jsonl"

CacheHandler = Callable[[List[ActivitySession]], None]

_STOP = object()


class SessionStore:
    """Durable session log plus a most-recent-N cache.

    Attributes:
        path: Location of the JSON-lines log
        cache_limit: Maximum number of cached sessions (oldest evicted first)
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        cache_limit: int = DEFAULT_CACHE_LIMIT,
        dispatch: Optional[Callable[[Callable[[], None]], None]] = None,
    ):
        """Open the log and queue the initial cache load.

        Args:
            path: Log file path (uses DEFAULT_LOG_PATH if None)
            cache_limit: Number of recent sessions kept in memory
            dispatch: Runs cache mutations on the caller's thread of choice
        """
        if cache_limit < 1:
            raise ValueError("cache_limit must be at least 1")
        self.path = Path(path).expanduser() if path else DEFAULT_LOG_PATH
        self.cache_limit = cache_limit
        self._dispatch = dispatch or self._run_inline
        self._lock = threading.RLock()
        self._cache: deque = deque(maxlen=cache_limit)
        self._handler: Optional[CacheHandler] = None
        self._subscribers: List[CacheHandler] = []
        self._queue: queue.Queue = queue.Queue()
        self._closed = False

        self._thread = threading.Thread(target=self._writer_loop, name="focustrack-store", daemon=True)
        self._thread.start()
        self._queue.put(self._load_initial_cache)

    @property
    def cached_sessions(self) -> List[ActivitySession]:
        """Snapshot of the cache, oldest first."""
        with self._lock:
            return list(self._cache)

    def append(self, session: ActivitySession) -> None:
        """Queue a finished session for writing; returns immediately."""
        if session.is_open:
            raise ValueError(f"Cannot persist open session {session.id}")
        if self._closed:
            logger.warning(f"Store closed, dropping session {session.id}")
            return
        self._queue.put(lambda: self._append_job(session))

    def sessions_for_today(
        self, now: Optional[datetime] = None, tz: Optional[tzinfo] = None
    ) -> List[ActivitySession]:
        """Cached sessions that started on or after today's midnight.

        Best-effort view over the bounded cache, not a historical query.
        """
        midnight = start_of_day(now or now_local(), tz)
        return [s for s in self.cached_sessions if s.start_date >= midnight]

    def on_cache_update(self, handler: CacheHandler) -> None:
        """Set the single cache observer and call it with the current cache.

        Setting a new handler replaces the previous one. Use ``subscribe`` for
        additional observers.
        """
        with self._lock:
            self._handler = handler
            snapshot = list(self._cache)
        self._call(handler, snapshot)

    def subscribe(self, handler: CacheHandler) -> None:
        """Add an observer called on every cache mutation."""
        with self._lock:
            self._subscribers.append(handler)

    def unsubscribe(self, handler: CacheHandler) -> None:
        with self._lock:
            if handler in self._subscribers:
                self._subscribers.remove(handler)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued job has run.

        Returns:
            True if the queue drained within ``timeout``
        """
        if not self._thread.is_alive():
            return True
        done = threading.Event()
        self._queue.put(done.set)
        return done.wait(timeout)

    def close(self, timeout: float = 5.0) -> None:
        """Drain pending writes and stop the writer thread."""
        if self._closed:
            return
        self._closed = True
        self._queue.put(_STOP)
        self._thread.join(timeout=timeout)
        logger.info("Session store closed")

    def read_all(self) -> List[ActivitySession]:
        """Decode the entire log (skipping bad lines). Blocking."""
        return self._read_sessions(limit=None)

    def _writer_loop(self):
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    break
                job()
            except Exception as e:
                logger.error(f"Session store job failed: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    def _append_job(self, session: ActivitySession):
        self._write_line(session)
        self._dispatch(lambda: self._apply_append(session))

    def _write_line(self, session: ActivitySession):
        try:
            line = session.to_json()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.error(f"Failed to write session {session.id} to {self.path}: {e}")

    def _load_initial_cache(self):
        sessions = self._read_sessions(limit=self.cache_limit)
        logger.info(f"Loaded {len(sessions)} cached sessions from {self.path}")
        self._dispatch(lambda: self._apply_load(sessions))

    def _read_sessions(self, limit: Optional[int]) -> List[ActivitySession]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, encoding="utf-8", errors="replace") as f:
                lines = [line for line in f.read().splitlines() if line.strip()]
        except OSError as e:
            logger.error(f"Failed to read session log {self.path}: {e}")
            return []

        if limit is not None:
            lines = lines[-limit:]

        sessions = []
        skipped = 0
        for line in lines:
            try:
                sessions.append(ActivitySession.from_json(line))
            except (SessionDecodeError, TypeError) as e:
                skipped += 1
                logger.debug(f"Skipping undecodable session line: {e}")
        if skipped:
            logger.warning(f"Skipped {skipped} undecodable lines in {self.path}")
        return sessions

    @staticmethod
    def _run_inline(callback: Callable[[], None]):
        callback()

    def _apply_append(self, session: ActivitySession):
        with self._lock:
            self._cache.append(session)
        self._notify()

    def _apply_load(self, sessions: List[ActivitySession]):
        with self._lock:
            self._cache.clear()
            self._cache.extend(sessions)
        self._notify()

    def _notify(self):
        with self._lock:
            snapshot = list(self._cache)
            handlers = ([self._handler] if self._handler else []) + list(self._subscribers)
        for handler in handlers:
            self._call(handler, snapshot)

    @staticmethod
    def _call(handler: CacheHandler, snapshot: List[ActivitySession]):
        try:
            handler(snapshot)
        except Exception as e:
            logger.error(f"Cache update handler error: {e}")
