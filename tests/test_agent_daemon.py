"""
Tests for agent.daemon - PID guard, supervisor start/stop and the ingestion loop.
"""

from __future__ import annotations

import os
import signal
import subprocess
import sys
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import psutil
import pytest

from agent import daemon
from agent.daemon import DaemonError, DaemonSupervisor, PidGuard, UsageWatcher


def _dead_pid() -> int:
    """PID of a process that has already exited and been reaped."""
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


class TestPidGuard:
    """Tests for PidGuard"""

    def test_missing_file_not_running(self, tmp_path):
        """Test that no PID file means stopped"""
        guard = PidGuard(str(tmp_path / "watch.pid"))
        assert guard.read_pid() is None
        assert guard.is_running() is False

    def test_live_pid_is_running(self, tmp_path):
        """Test that our own PID counts as running"""
        guard = PidGuard(str(tmp_path / "watch.pid"))
        guard.acquire(os.getpid())
        assert (tmp_path / "watch.pid").read_text(encoding="utf-8") == f"{os.getpid()}\n"
        assert guard.is_running() is True

    def test_stale_pid_file_is_removed(self, tmp_path):
        """Test that a PID file for a dead process is deleted"""
        pid_file = tmp_path / "watch.pid"
        pid_file.write_text(f"{_dead_pid()}\n", encoding="utf-8")
        guard = PidGuard(str(pid_file))
        assert guard.is_running() is False
        assert not pid_file.exists()

    @pytest.mark.parametrize("raw", ["", "garbage", "-3", "0"])
    def test_unparsable_pid_file_is_removed(self, tmp_path, raw):
        """Test that a garbled PID file is treated as stopped and deleted"""
        pid_file = tmp_path / "watch.pid"
        pid_file.write_text(raw, encoding="utf-8")
        assert PidGuard(str(pid_file)).is_running() is False
        assert not pid_file.exists()

    def test_release_only_own_pid(self, tmp_path):
        """Test that release(pid) leaves a file owned by another PID alone"""
        guard = PidGuard(str(tmp_path / "watch.pid"))
        guard.acquire(12345)
        guard.release(999)
        assert guard.read_pid() == 12345
        guard.release(12345)
        assert guard.read_pid() is None


class TestDaemonSupervisor:
    """Tests for DaemonSupervisor"""

    def test_start_is_idempotent(self, tmp_path):
        """Test that start() returns the live PID instead of spawning again"""
        guard = PidGuard(str(tmp_path / "watch.pid"))
        guard.acquire(os.getpid())
        sup = DaemonSupervisor(guard, str(tmp_path / "watch.log"), ["never-run"])
        with patch.object(daemon.subprocess, "Popen") as popen:
            assert sup.start() == (os.getpid(), False)
        popen.assert_not_called()

    def test_start_spawns_detached_child(self, tmp_path):
        """Test that start() spawns in a new session and records the PID"""
        guard = PidGuard(str(tmp_path / "watch.pid"))
        log_file = tmp_path / "logs" / "watch.log"
        sup = DaemonSupervisor(guard, str(log_file), ["prunewatch", "watch", "--daemon-child"])
        fake = MagicMock(pid=4242)
        with patch.object(daemon.subprocess, "Popen", return_value=fake) as popen:
            assert sup.start() == (4242, True)
        kwargs = popen.call_args.kwargs
        assert popen.call_args.args[0] == ["prunewatch", "watch", "--daemon-child"]
        assert kwargs["start_new_session"] is True
        assert kwargs["stderr"] == subprocess.STDOUT
        assert guard.read_pid() == 4242
        assert log_file.exists()

    def test_start_failure_raises(self, tmp_path):
        """Test that a spawn error becomes DaemonError"""
        sup = DaemonSupervisor(PidGuard(str(tmp_path / "watch.pid")), str(tmp_path / "watch.log"), ["x"])
        with patch.object(daemon.subprocess, "Popen", side_effect=OSError("no such file")):
            with pytest.raises(DaemonError):
                sup.start()

    def test_stop_when_not_running(self, tmp_path):
        """Test that stop() on a stopped daemon reports False"""
        sup = DaemonSupervisor(PidGuard(str(tmp_path / "watch.pid")), str(tmp_path / "watch.log"), ["x"])
        assert sup.stop() is False

    def test_stop_terminates_and_cleans_up(self, tmp_path):
        """Test that stop() SIGTERMs a real process, waits, and removes the PID file"""
        proc = subprocess.Popen(["sleep", "30"])
        guard = PidGuard(str(tmp_path / "watch.pid"))
        guard.acquire(proc.pid)
        sup = DaemonSupervisor(guard, str(tmp_path / "watch.log"), ["x"], stop_timeout_sec=5)
        try:
            assert sup.stop() is True
            assert not psutil.pid_exists(proc.pid)  # reaped by psutil's wait
            assert not (tmp_path / "watch.pid").exists()
            assert "daemon stopped" in (tmp_path / "watch.log").read_text(encoding="utf-8")
        finally:
            if proc.poll() is None:
                proc.kill()

    def test_stop_timeout_raises(self, tmp_path):
        """Test that a daemon ignoring SIGTERM surfaces as DaemonError"""
        guard = PidGuard(str(tmp_path / "watch.pid"))
        guard.acquire(os.getpid())
        sup = DaemonSupervisor(guard, str(tmp_path / "watch.log"), ["x"], stop_timeout_sec=0.1)
        fake = MagicMock()
        fake.wait.side_effect = psutil.TimeoutExpired(0.1, os.getpid())
        with patch.object(daemon.psutil, "Process", return_value=fake):
            with pytest.raises(DaemonError):
                sup.stop()
        fake.terminate.assert_called_once()


class TestUsageWatcher:
    """Tests for UsageWatcher"""

    def test_ticks_immediately_and_once_more_on_stop(self, tmp_path):
        """Test the first tick, the final flush and PID file cleanup"""
        guard = PidGuard(str(tmp_path / "watch.pid"))
        calls = []
        watcher = UsageWatcher(lambda: calls.append(guard.read_pid()), interval_sec=60, guard=guard)
        watcher.request_stop()  # stop already requested: run = first tick + final flush
        watcher.run()
        assert calls == [os.getpid(), os.getpid()]
        assert watcher.state == daemon.STOPPED
        assert not (tmp_path / "watch.pid").exists()

    def test_tick_errors_do_not_stop_the_loop(self):
        """Test that a failing tick is logged and the loop carries on"""
        attempts = []

        def tick():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("store busy")

        watcher = UsageWatcher(tick, interval_sec=60)
        watcher.request_stop()
        watcher.run()
        assert len(attempts) == 2
        assert watcher.ticks == 2

    def test_stop_from_another_thread(self):
        """Test that request_stop wakes the loop and lets the current tick finish"""
        started = threading.Event()
        finished = []

        def tick():
            started.set()
            finished.append(True)

        watcher = UsageWatcher(tick, interval_sec=30)
        t = threading.Thread(target=watcher.run)
        t.start()
        assert started.wait(5)
        watcher.request_stop(signal.SIGTERM)
        t.join(5)
        assert not t.is_alive()
        assert len(finished) >= 2

    def test_install_signal_handlers(self):
        """Test that SIGTERM and SIGINT are routed to request_stop"""
        watcher = UsageWatcher(lambda: None)
        with patch.object(daemon.signal, "signal") as sig:
            watcher.install_signal_handlers()
        sig.assert_any_call(signal.SIGTERM, watcher.request_stop)
        sig.assert_any_call(signal.SIGINT, watcher.request_stop)


SLOW_WATCHER = """
import sys, time
from agent.daemon import PidGuard, UsageWatcher

ticks_file, pid_file = sys.argv[1], sys.argv[2]

def tick():
    with open(ticks_file, "a") as f:
        f.write("start\\n")
    time.sleep(1.0)
    with open(ticks_file, "a") as f:
        f.write("end\\n")

watcher = UsageWatcher(tick, interval_sec=60, guard=PidGuard(pid_file))
watcher.install_signal_handlers()
watcher.run()
sys.exit(0 if watcher.ticks == 2 else 3)
"""


@pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX signals")
def test_sigterm_mid_tick_finishes_tick_then_flushes(tmp_path):
    """Test that SIGTERM during a tick lets it finish, runs one final tick and removes the PID file"""
    ticks_file = tmp_path / "ticks"
    pid_file = tmp_path / "watch.pid"
    root = Path(__file__).resolve().parents[1]
    env = dict(os.environ, PYTHONPATH=str(root))
    proc = subprocess.Popen(
        [sys.executable, "-c", SLOW_WATCHER, str(ticks_file), str(pid_file)], cwd=str(root), env=env
    )
    try:
        deadline = time.monotonic() + 10
        while not (ticks_file.exists() and "start" in ticks_file.read_text()):
            assert time.monotonic() < deadline, "first tick never started"
            time.sleep(0.02)
        assert PidGuard(str(pid_file)).read_pid() == proc.pid

        proc.send_signal(signal.SIGTERM)  # lands while the first tick is sleeping
        assert proc.wait(timeout=15) == 0
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()

    assert ticks_file.read_text().splitlines() == ["start", "end", "start", "end"]
    assert not pid_file.exists()
