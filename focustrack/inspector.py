"""Best-effort context capture for the focused application.

Every capture yields at least a window title. When richer introspection is
unavailable (no xdotool, no DevTools endpoint, unreadable /proc) the context
degrades to fewer fields instead of failing.

Enrichment for known applications:
- Chromium-based browsers: active tab title and URL from the DevTools JSON
  endpoint (browser started with ``--remote-debugging-port``)
- Editors (VS Code, Obsidian): document path resolved from the window title
  against the editor process's working directory, plus a content snippet
  from the file's first characters
"""

import logging
import os
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import requests

from .models import SNIPPET_LIMIT, ActivityContext, AppIdentity, ensure_aware, now_local

logger = logging.getLogger(__name__)

BROWSER_APPS = {'google-chrome', 'chromium', 'chromium-browser', 'brave-browser'}
EDITOR_APPS = {'code', 'code-insiders', 'obsidian'}

# Separators editors put between file name, project and app name in titles
_TITLE_SEPARATORS = (' - ', ' — ', ' – ')


def snippet_from_file(path: Path, limit: int = SNIPPET_LIMIT) -> Optional[str]:
    """First ``limit`` characters of a text file, whitespace-trimmed."""
    try:
        with open(path, encoding='utf-8') as f:
            text = f.read(limit * 4)
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Unable to read file at {path}: {e}")
        return None
    text = text.strip()
    if not text:
        return None
    return text[:limit]


def title_file_name(title: str) -> Optional[str]:
    """File name an editor shows first in its window title."""
    if not title:
        return None
    head = title
    for separator in _TITLE_SEPARATORS:
        if separator in head:
            head = head.split(separator, 1)[0]
    # VS Code marks unsaved files with a leading dot
    head = head.lstrip('●• ').strip()
    return head or None


class ContextInspector:
    """Captures an ``ActivityContext`` for an application.

    Attributes:
        snippet_limit: Maximum characters of file content kept
        devtools_port: Chromium remote debugging port
    """

    def __init__(
        self,
        snippet_limit: int = SNIPPET_LIMIT,
        devtools_port: int = 9222,
        browser_apps: Iterable[str] = BROWSER_APPS,
        editor_apps: Iterable[str] = EDITOR_APPS,
        proc_root: Path = Path('/proc'),
    ):
        self.snippet_limit = min(snippet_limit, SNIPPET_LIMIT)
        self.devtools_port = devtools_port
        self.browser_apps = {a.lower() for a in browser_apps}
        self.editor_apps = {a.lower() for a in editor_apps}
        self.proc_root = proc_root

    def capture_context(self, app: AppIdentity, at: Optional[datetime] = None) -> ActivityContext:
        """Snapshot of what ``app`` shows right now. Never raises."""
        timestamp = ensure_aware(at) if at else now_local()
        title = self.window_title() or app.name

        try:
            key = app.bundle_identifier.lower()
            if key in self.browser_apps:
                context = self._browser_context(title, timestamp)
                if context:
                    return context
            elif key in self.editor_apps:
                context = self._editor_context(app, title, timestamp)
                if context:
                    return context
        except Exception as e:
            logger.debug(f"Context enrichment failed for {app.name}: {e}")

        return ActivityContext(window_title=title, captured_at=timestamp)

    def window_title(self) -> Optional[str]:
        try:
            window_id = subprocess.check_output(
                ['xdotool', 'getactivewindow'],
                stderr=subprocess.DEVNULL,
                timeout=1
            ).decode(errors='replace').strip()
            if not window_id:
                return None
            title = subprocess.check_output(
                ['xdotool', 'getwindowname', window_id],
                stderr=subprocess.DEVNULL,
                timeout=1
            ).decode(errors='replace').strip()
            return title or None
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError):
            return None

    def _browser_context(self, default_title: str, at: datetime) -> Optional[ActivityContext]:
        try:
            response = requests.get(f"http://127.0.0.1:{self.devtools_port}/json", timeout=0.5)
            response.raise_for_status()
            targets = response.json()
        except (requests.exceptions.RequestException, ValueError):
            return None

        for target in targets if isinstance(targets, list) else []:
            if isinstance(target, dict) and target.get('type') == 'page' and target.get('url'):
                return ActivityContext(
                    window_title=target.get('title') or default_title,
                    url=target['url'],
                    captured_at=at,
                )
        return None

    def _editor_context(self, app: AppIdentity, title: str, at: datetime) -> Optional[ActivityContext]:
        path = self._resolve_document(app, title)
        if path is None:
            return None
        return ActivityContext(
            window_title=title,
            url=path.as_uri(),
            document_path=str(path),
            content_snippet=snippet_from_file(path, self.snippet_limit),
            captured_at=at,
        )

    def _resolve_document(self, app: AppIdentity, title: str) -> Optional[Path]:
        name = title_file_name(title)
        if not name:
            return None
        if name.startswith('file://'):
            name = name[len('file://'):]

        candidate = Path(name).expanduser()
        if candidate.is_absolute():
            return candidate if candidate.is_file() else None

        cwd = self._process_cwd(app.pid)
        if cwd is None:
            return None
        for option in (cwd / name, cwd / f"{name}.md"):
            if option.is_file():
                return option.resolve()
        return None

    def _process_cwd(self, pid: Optional[int]) -> Optional[Path]:
        if not pid:
            return None
        try:
            return Path(os.readlink(self.proc_root / str(pid) / 'cwd'))
        except OSError:
            return None
