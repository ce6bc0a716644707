"""Tests for best-effort context capture."""

import os

import pytest
import requests

from focustrack.inspector import ContextInspector, snippet_from_file, title_file_name
from focustrack.models import AppIdentity

from conftest import T0

EDITOR = AppIdentity("Code", "code", pid=777)
BROWSER = AppIdentity("Google-chrome", "google-chrome", pid=888)
TERMINAL = AppIdentity("kitty", "kitty", pid=999)


class FakeResponse:
    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self.payload


@pytest.fixture
def proc_root(tmp_path):
    root = tmp_path / "proc"
    root.mkdir()
    return root


def make_inspector(monkeypatch, proc_root, title):
    inspector = ContextInspector(proc_root=proc_root)
    monkeypatch.setattr(inspector, "window_title", lambda: title)
    return inspector


class TestHelpers:
    @pytest.mark.parametrize("title,expected", [
        ("notes.md - project - Visual Studio Code", "notes.md"),
        ("● storage.py - focustrack - Visual Studio Code", "storage.py"),
        ("Daily Note - Vault - Obsidian", "Daily Note"),
        ("", None),
    ])
    def test_title_file_name(self, title, expected):
        assert title_file_name(title) == expected

    def test_snippet_trimmed_and_bounded(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("\n\n   " + "a" * 1000)
        snippet = snippet_from_file(path, limit=400)
        assert snippet == "a" * 400

    def test_empty_or_missing_file_gives_none(self, tmp_path):
        empty = tmp_path / "empty.txt"
        empty.write_text("   \n")
        assert snippet_from_file(empty) is None
        assert snippet_from_file(tmp_path / "missing.txt") is None


class TestCaptureContext:
    """Enrichment per application kind"""

    def test_title_only_for_unknown_apps(self, monkeypatch, proc_root):
        inspector = make_inspector(monkeypatch, proc_root, "~/src: vim")
        context = inspector.capture_context(TERMINAL, at=T0)
        assert context.window_title == "~/src: vim"
        assert context.url is None
        assert context.captured_at == T0

    def test_falls_back_to_app_name_without_title(self, monkeypatch, proc_root):
        inspector = make_inspector(monkeypatch, proc_root, None)
        assert inspector.capture_context(TERMINAL, at=T0).window_title == "kitty"

    def test_editor_document_resolved_from_cwd(self, monkeypatch, proc_root, tmp_path):
        project = tmp_path / "project"
        project.mkdir()
        (project / "notes.md").write_text("# Plan\nShip the store.")
        (proc_root / str(EDITOR.pid)).mkdir()
        os.symlink(project, proc_root / str(EDITOR.pid) / "cwd")

        inspector = make_inspector(monkeypatch, proc_root, "notes.md - project - Visual Studio Code")
        context = inspector.capture_context(EDITOR, at=T0)
        assert context.document_path == str((project / "notes.md").resolve())
        assert context.url.startswith("file://")
        assert context.content_snippet == "# Plan\nShip the store."

    def test_editor_without_file_is_title_only(self, monkeypatch, proc_root):
        inspector = make_inspector(monkeypatch, proc_root, "Welcome - Visual Studio Code")
        context = inspector.capture_context(EDITOR, at=T0)
        assert context.document_path is None
        assert context.window_title == "Welcome - Visual Studio Code"

    def test_browser_tab_from_devtools(self, monkeypatch, proc_root):
        targets = [
            {"type": "service_worker", "url": "chrome://sw"},
            {"type": "page", "title": "Python docs", "url": "https://docs.python.org/3/"},
        ]
        monkeypatch.setattr(requests, "get", lambda url, timeout: FakeResponse(targets))
        inspector = make_inspector(monkeypatch, proc_root, "Python docs - Google Chrome")
        context = inspector.capture_context(BROWSER, at=T0)
        assert context.url == "https://docs.python.org/3/"
        assert context.window_title == "Python docs"

    def test_browser_without_devtools_is_title_only(self, monkeypatch, proc_root):
        def refused(url, timeout):
            raise requests.exceptions.ConnectionError("refused")

        monkeypatch.setattr(requests, "get", refused)
        inspector = make_inspector(monkeypatch, proc_root, "Inbox - Google Chrome")
        context = inspector.capture_context(BROWSER, at=T0)
        assert context.url is None
        assert context.window_title == "Inbox - Google Chrome"
