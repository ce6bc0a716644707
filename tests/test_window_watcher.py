"""Tests for X11 application sampling and the focus-change watcher."""

import subprocess

from focustrack import window_watcher
from focustrack.window_watcher import WindowWatcher, XdotoolSampler, parse_wm_class

from focustrack.models import AppIdentity

from conftest import CODE, FIREFOX, FakeSampler


class TestParseWmClass:
    def test_instance_and_class(self):
        assert parse_wm_class('WM_CLASS(STRING) = "code", "Code"') == ("code", "Code")

    def test_single_value(self):
        assert parse_wm_class('WM_CLASS(STRING) = "kitty"') == ("kitty", "kitty")

    def test_missing_property(self):
        assert parse_wm_class("WM_CLASS:  not found.") == ("", "")


class TestXdotoolSampler:
    """Identity from xdotool and xprop output"""

    def test_frontmost_application(self, monkeypatch):
        outputs = {
            ("xdotool", "getactivewindow"): b"12345\n",
            ("xdotool", "getwindowpid", "12345"): b"4242\n",
            ("xprop", "-id", "12345", "WM_CLASS"): b'WM_CLASS(STRING) = "Navigator", "firefox"\n',
        }
        monkeypatch.setattr(subprocess, "check_output", lambda args, **kwargs: outputs[tuple(args)])

        app = XdotoolSampler().frontmost_application()
        assert app.name == "firefox"
        assert app.bundle_identifier == "navigator"
        assert app.pid == 4242

    def test_no_xdotool(self, monkeypatch):
        def missing(args, **kwargs):
            raise FileNotFoundError(args[0])

        monkeypatch.setattr(subprocess, "check_output", missing)
        assert XdotoolSampler().frontmost_application() is None
        assert window_watcher._xdotool("getactivewindow") is None


class TestWindowWatcher:
    """Activation and termination events from polling"""

    def _watcher(self, sampler, proc_root):
        activated, terminated = [], []
        watcher = WindowWatcher(sampler, on_activate=activated.append,
                                on_terminate=terminated.append, proc_root=proc_root)
        return watcher, activated, terminated

    def test_activation_only_on_change(self, tmp_path):
        for pid in (CODE.pid, FIREFOX.pid):
            (tmp_path / str(pid)).mkdir()
        sampler = FakeSampler(CODE)
        watcher, activated, _ = self._watcher(sampler, tmp_path)

        watcher.poll_once()
        watcher.poll_once()
        sampler.app = FIREFOX
        watcher.poll_once()
        assert activated == [CODE, FIREFOX]

    def test_refocus_after_nothing_focused(self, tmp_path):
        (tmp_path / str(CODE.pid)).mkdir()
        sampler = FakeSampler(CODE)
        watcher, activated, _ = self._watcher(sampler, tmp_path)

        watcher.poll_once()
        sampler.app = None
        watcher.poll_once()
        sampler.app = CODE
        watcher.poll_once()
        assert activated == [CODE, CODE]

    def test_termination_when_process_gone(self, tmp_path):
        proc_dir = tmp_path / str(CODE.pid)
        proc_dir.mkdir()
        sampler = FakeSampler(CODE)
        watcher, _, terminated = self._watcher(sampler, tmp_path)

        watcher.poll_once()
        sampler.app = None
        proc_dir.rmdir()
        watcher.poll_once()
        watcher.poll_once()
        assert terminated == [CODE]

    def test_multi_process_app_terminates_with_last_process(self, tmp_path):
        helper = AppIdentity("Code", "code", pid=102)
        for pid in (CODE.pid, helper.pid):
            (tmp_path / str(pid)).mkdir()
        sampler = FakeSampler(CODE)
        watcher, _, terminated = self._watcher(sampler, tmp_path)

        watcher.poll_once()
        sampler.app = helper
        watcher.poll_once()
        sampler.app = None
        (tmp_path / str(CODE.pid)).rmdir()
        watcher.poll_once()
        assert terminated == []

        (tmp_path / str(helper.pid)).rmdir()
        watcher.poll_once()
        watcher.poll_once()
        assert terminated == [helper]

    def test_processes_exiting_together_terminate_once(self, tmp_path):
        helper = AppIdentity("Code", "code", pid=102)
        for pid in (CODE.pid, helper.pid):
            (tmp_path / str(pid)).mkdir()
        sampler = FakeSampler(CODE)
        watcher, _, terminated = self._watcher(sampler, tmp_path)

        watcher.poll_once()
        sampler.app = helper
        watcher.poll_once()
        sampler.app = None
        for pid in (CODE.pid, helper.pid):
            (tmp_path / str(pid)).rmdir()
        watcher.poll_once()
        assert len(terminated) == 1
        assert terminated[0].matches(CODE)

    def test_callback_errors_contained(self, tmp_path):
        (tmp_path / str(CODE.pid)).mkdir()

        def broken(app):
            raise RuntimeError("loop gone")

        watcher = WindowWatcher(FakeSampler(CODE), on_activate=broken, proc_root=tmp_path)
        watcher.poll_once()
