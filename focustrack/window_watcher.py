"""
Foreground application sampling for X11.

Uses xdotool/xprop to find the focused window's application. Provides:
- ``XdotoolSampler.frontmost_application()``: pull interface used on every tick
- ``WindowWatcher``: background poller that pushes activation events when the
  frontmost application changes, and termination events when a previously
  seen application's process exits
"""

import logging
import subprocess
import threading
from pathlib import Path
from typing import Callable, Dict, Optional

from .models import AppIdentity

logger = logging.getLogger(__name__)


def _xdotool(*args: str) -> Optional[str]:
    try:
        return subprocess.check_output(
            ['xdotool', *args],
            stderr=subprocess.DEVNULL,
            timeout=1
        ).decode(errors='replace').strip()
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError):
        return None


def parse_wm_class(xprop_output: str) -> tuple[str, str]:
    """Parse ``WM_CLASS(STRING) = "instance", "Class"`` into (instance, class)."""
    if 'WM_CLASS' not in xprop_output or '=' not in xprop_output:
        return "", ""
    parts = xprop_output.split('=', 1)[1].strip()
    classes = [c.strip().strip('"') for c in parts.split(',')]
    if len(classes) >= 2:
        return classes[0], classes[1]
    if classes and classes[0]:
        return classes[0], classes[0]
    return "", ""


class XdotoolSampler:
    """Reads the focused window's application via xdotool and xprop."""

    def active_window_id(self) -> Optional[str]:
        return _xdotool('getactivewindow') or None

    def frontmost_application(self) -> Optional[AppIdentity]:
        """Identity of the focused window's application, or None."""
        window_id = self.active_window_id()
        if not window_id:
            return None

        window_pid = None
        pid_output = _xdotool('getwindowpid', window_id)
        if pid_output:
            try:
                window_pid = int(pid_output)
            except ValueError:
                pass  # Some windows don't have PIDs

        try:
            xprop_output = subprocess.check_output(
                ['xprop', '-id', window_id, 'WM_CLASS'],
                stderr=subprocess.DEVNULL,
                timeout=1
            ).decode(errors='replace').strip()
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError):
            return None
        except Exception as e:
            logger.debug(f"Failed to get active window: {e}")
            return None

        instance, app_class = parse_wm_class(xprop_output)
        if not app_class:
            return None
        return AppIdentity(name=app_class, bundle_identifier=(instance or app_class).lower(),
                           pid=window_pid)


class WindowWatcher:
    """
    Push frontmost-application changes and application exits.

    Usage:
        watcher = WindowWatcher(
            sampler,
            on_activate=lambda app: loop.call_soon(lambda: tracker.handle_activation(app)),
            on_terminate=lambda app: loop.call_soon(lambda: tracker.handle_termination(app)),
        )
        watcher.start()
    """

    def __init__(
        self,
        sampler: XdotoolSampler,
        on_activate: Callable[[AppIdentity], None],
        on_terminate: Optional[Callable[[AppIdentity], None]] = None,
        poll_interval: float = 0.5,
        proc_root: Path = Path('/proc'),
    ):
        """
        Args:
            sampler: Source of the frontmost application
            on_activate: Called when a different application comes to front
            on_terminate: Called when a seen application's process is gone
            poll_interval: How often to check for focus changes (seconds)
            proc_root: procfs mount used for process liveness
        """
        self.sampler = sampler
        self.on_activate = on_activate
        self.on_terminate = on_terminate
        self.poll_interval = poll_interval
        self.proc_root = proc_root

        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_app: Optional[AppIdentity] = None
        self._seen: Dict[int, AppIdentity] = {}

    def start(self):
        """Start watching for focus changes"""
        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._watch_loop, name="focustrack-watcher", daemon=True)
        self._thread.start()
        logger.info("Window watcher started")

    def stop(self):
        """Stop watching"""
        self._running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2)
            self._thread = None
        logger.info("Window watcher stopped")

    def poll_once(self):
        """Check the frontmost application and process liveness once."""
        app = self.sampler.frontmost_application()
        if app is not None:
            if app.pid:
                self._seen[app.pid] = app
            if not app.matches(self._last_app):
                self._last_app = app
                self._emit(self.on_activate, app)
        else:
            self._last_app = None

        dead = [pid for pid in self._seen if not (self.proc_root / str(pid)).exists()]
        gone = [self._seen.pop(pid) for pid in dead]
        # An app with several processes has only terminated once none is left
        alive = {a.bundle_identifier for a in self._seen.values()}
        reported = set()
        for seen_app in gone:
            key = seen_app.bundle_identifier
            if key in alive or key in reported:
                continue
            reported.add(key)
            if seen_app.matches(self._last_app):
                self._last_app = None
            if self.on_terminate:
                self._emit(self.on_terminate, seen_app)

    def _watch_loop(self):
        while self._running:
            try:
                self.poll_once()
            except Exception as e:
                logger.debug(f"Window watch error: {e}")
            self._stop_event.wait(self.poll_interval)

    @staticmethod
    def _emit(callback: Callable[[AppIdentity], None], app: AppIdentity):
        try:
            callback(app)
        except Exception as e:
            logger.error(f"Window watcher callback error: {e}")
