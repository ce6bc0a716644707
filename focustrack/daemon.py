"""Focus tracking daemon.

Wires the session tracker together and runs it until interrupted:

- ``ThreadedScheduler``: the single loop thread every tracker transition,
  store cache update and evaluation result runs on
- ``WindowWatcher``: pushes app switches and exits onto the loop
- ``ActivityTracker``: folds samples into sessions, persisted by ``SessionStore``
- ``FocusSessionController``: optional focus block checked against a goal by
  ``FocusEvaluator`` through the text-generation API

Signal handlers (SIGTERM, SIGINT) trigger a graceful shutdown: stop the
watcher, stop the tracker (closing the current session), finish any focus
block, then flush and close the session log.

Example:
    $ python -m focustrack.daemon
    $ python -m focustrack.daemon --focus-goal "write the storage tests" --focus-minutes 50
    $ python -m focustrack.daemon --today
"""

import argparse
import logging
import logging.handlers
import signal
import sys
import threading
from datetime import timedelta
from pathlib import Path
from typing import Optional

from .aggregator import format_clock, format_duration, goal_progress
from .config import Config, ConfigManager
from .evaluator import FocusEvaluator
from .focus import FocusAlert, FocusSessionController
from .inspector import ContextInspector
from .llm import ChatCompletionClient
from .models import FocusSessionRecord, now_local, start_of_day
from .notifications import Notifier
from .reasoning import ReasoningLevel
from .scheduler import ThreadedScheduler
from .storage import SessionStore
from .tracker import ActivityTracker
from .window_watcher import WindowWatcher, XdotoolSampler

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
LOG_FILENAME = "focustrack.log"


def setup_logging(config: Config, debug: bool = False) -> None:
    """Configure root logging to stderr plus an optional rotating file."""
    level = logging.DEBUG if debug else getattr(logging, config.logging.level.upper(), logging.INFO)
    handlers = [logging.StreamHandler(sys.stderr)]
    if config.logging.log_to_file:
        log_dir = config.storage.data_path
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.handlers.RotatingFileHandler(
                log_dir / LOG_FILENAME, maxBytes=1_000_000, backupCount=3
            ))
        except OSError as e:
            print(f"Cannot write log file in {log_dir}: {e}", file=sys.stderr)
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S",
                        handlers=handlers, force=True)


def build_client(config: Config) -> ChatCompletionClient:
    return ChatCompletionClient(
        endpoint=config.textgen.endpoint,
        model=config.textgen.model,
        api_key_env=config.textgen.api_key_env,
        timeout=config.textgen.timeout_seconds,
    )


class FocusTrackDaemon:
    """Owns every long-lived component and their shutdown order.

    Attributes:
        config: Loaded configuration
        loop: Tracker loop thread
        store: Session log
        tracker: Session state machine
        focus: Focus block controller
    """

    def __init__(self, config: Config):
        self.config = config
        self._stop_event = threading.Event()

        self.loop = ThreadedScheduler()
        self.store = SessionStore(
            config.storage.session_log_path,
            cache_limit=config.storage.cache_limit,
            dispatch=self.loop.call_soon,
        )
        self.notifier = Notifier(
            enabled=config.notifications.enabled,
            app_name=config.notifications.app_name,
        )
        self.sampler = XdotoolSampler()
        self.inspector = ContextInspector(
            snippet_limit=config.inspector.snippet_limit,
            devtools_port=config.inspector.devtools_port,
            browser_apps=config.inspector.browser_apps,
            editor_apps=config.inspector.editor_apps,
        )
        self.tracker = ActivityTracker(
            store=self.store,
            sampler=self.sampler,
            inspector=self.inspector,
            scheduler=self.loop,
            notifier=self.notifier,
            own_identifiers=config.tracking.own_identifiers,
            excluded_identifiers=config.tracking.excluded_apps,
            tick_interval=config.tracking.tick_interval_seconds,
            break_reminder_after=config.tracking.break_reminder_after,
        )
        self.evaluator = FocusEvaluator(
            build_client(config),
            reasoning=ReasoningLevel.parse(config.textgen.reasoning_level),
        )
        self.focus = FocusSessionController(
            self.tracker,
            self.evaluator,
            notifier=self.notifier,
            dispatch=self.loop.call_soon,
            min_evaluation_seconds=config.focus.min_evaluation_seconds,
            history_limit=config.focus.history_limit,
            max_workers=config.focus.max_workers,
            on_alert=self._on_alert,
            on_summary=self._on_summary,
        )
        self.watcher = WindowWatcher(
            self.sampler,
            on_activate=lambda app: self.loop.call_soon(lambda: self.tracker.handle_activation(app)),
            on_terminate=lambda app: self.loop.call_soon(lambda: self.tracker.handle_termination(app)),
            poll_interval=config.tracking.watcher_poll_seconds,
        )
        self._focus_timer = None

    def start_focus_block(self, goal: Optional[str], minutes: Optional[float]) -> FocusSessionRecord:
        """Start a focus block on the loop and finish it when the target elapses."""
        target = timedelta(minutes=minutes or self.config.focus.default_target_minutes)
        record = self.loop.run_sync(lambda: self.focus.start(goal=goal, target=target), timeout=5)
        self._focus_timer = self.loop.call_later(target.total_seconds(), self._complete_focus_block)
        return record

    def _complete_focus_block(self):
        self._focus_timer = None
        if self.focus.active_record is None:
            return
        self.focus.finish()
        self.notifier.notify("Focus block complete", "Nice work. Generating your summary...")

    def _on_alert(self, alert: FocusAlert):
        logger.info(f"Focus alert ({alert.kind}): {alert.message}")

    def _on_summary(self, record: FocusSessionRecord):
        self.notifier.notify("Focus summary", record.summary or "")

    def _signal_handler(self, signum, frame):
        """Handle termination signals for graceful shutdown."""
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self._stop_event.set()

    def install_signal_handlers(self):
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

    def request_stop(self):
        self._stop_event.set()

    def run(self, focus_goal: Optional[str] = None, focus_minutes: Optional[float] = None):
        """Run until a signal arrives. Blocks."""
        logger.info("focustrack daemon starting...")
        self.loop.start()
        self.loop.call_soon(self.tracker.start)
        if focus_goal or focus_minutes:
            record = self.start_focus_block(focus_goal, focus_minutes)
            logger.info(f"Focus block {record.id[:8]} running")
        self.watcher.start()

        while not self._stop_event.wait(1.0):
            pass

        self.shutdown()

    def shutdown(self):
        logger.info("Shutting down...")
        self.watcher.stop()
        if self._focus_timer:
            self._focus_timer.cancel()

        def stop_tracking():
            self.tracker.stop()
            if self.focus.active_record is not None:
                self.focus.finish()

        try:
            self.loop.run_sync(stop_tracking, timeout=5)
        except TimeoutError as e:
            logger.error(f"Tracker did not stop cleanly: {e}")

        # The summary is delivered on the loop, so wait before stopping it
        if not self.focus.wait_for_summary(timeout=self.config.textgen.timeout_seconds + 1):
            logger.warning("Focus block summary not delivered before shutdown")

        if not self.store.flush(timeout=5):
            logger.warning("Session log flush timed out")
        self.store.close()
        self.focus.shutdown()
        self.loop.stop()
        logger.info("focustrack daemon stopped")


def print_today(config: Config) -> int:
    """Print today's finished sessions and the total focused time."""
    store = SessionStore(config.storage.session_log_path, cache_limit=config.storage.cache_limit)
    try:
        midnight = start_of_day(now_local())
        sessions = [s for s in store.read_all() if s.start_date >= midnight]
    finally:
        store.close()

    total = 0.0
    for session in sessions:
        seconds = session.duration()
        total += seconds
        title = session.latest_context.window_title if session.latest_context else ""
        print(f"{session.start_date:%H:%M}  {session.app_name:<20} {format_duration(seconds):>8}  {title[:60]}")
    print(f"Total focused time today: {format_clock(total)} ({len(sessions)} sessions)")
    goal_hours = config.tracking.daily_goal_hours
    progress = goal_progress(total, goal_hours)
    print(f"Daily goal: {min(progress, 1.0):.0%} of {goal_hours:g}h")
    return 0


def check_llm(config: Config) -> int:
    """Send the hello prompt and print the reply with the configured reasoning level."""
    level = ReasoningLevel.parse(config.textgen.reasoning_level)
    print(f"Reasoning: {level.display_name} ({level.description}), "
          f"~{level.estimated_energy_kwh:g} kWh and {level.estimated_co2_kg:g} kg CO2 per request")
    reply = build_client(config).send_hello()
    if reply is None:
        print(f"No reply from {config.textgen.endpoint}", file=sys.stderr)
        return 1
    print(reply)
    return 0


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Foreground activity session tracker")
    parser.add_argument("--config", type=Path, default=None,
                        help=f"Config file (default: {ConfigManager.DEFAULT_PATH})")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--focus-goal", default=None,
                        help="Start a focus block checked against this goal")
    parser.add_argument("--focus-minutes", type=float, default=None,
                        help="Length of the focus block in minutes (default from config)")
    parser.add_argument("--today", action="store_true",
                        help="Print today's sessions and total, then exit")
    parser.add_argument("--check-llm", action="store_true",
                        help="Send a test prompt to the text-generation API and exit")

    args = parser.parse_args(argv)

    config = ConfigManager(args.config).config
    setup_logging(config, debug=args.debug)

    if args.today:
        return print_today(config)
    if args.check_llm:
        return check_llm(config)

    daemon = FocusTrackDaemon(config)
    daemon.install_signal_handlers()
    daemon.run(focus_goal=args.focus_goal, focus_minutes=args.focus_minutes)
    return 0


if __name__ == "__main__":
    sys.exit(main())
