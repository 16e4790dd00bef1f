# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: keep the usage log flowing into the store in the background. three pieces:

- PidGuard wraps the PID file. it is the only thing that stops two ingestion loops from running against
  the same log and checkpoint: a live PID means "running", a dead or garbled one is deleted and treated
  as stopped.
- DaemonSupervisor starts a detached child process (new session, output to the daemon log) and stops it
  with SIGTERM, waiting for it to exit. starting an already running daemon is a no-op.
- UsageWatcher is the loop that runs inside that child (or in the foreground). it ticks right away, then
  every interval, and on SIGTERM/SIGINT finishes the tick in progress, runs one final tick, and removes
  the PID file.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import logging  # diagnostics end up in the daemon log file
import os  # for getpid, pid file writes, and atomic replace
import signal  # for graceful stop on SIGTERM / SIGINT
import subprocess  # for spawning the detached daemon child
import threading  # Event gives us an interruptible "sleep until next tick or stop"
import time  # for timestamps in the daemon log
from collections.abc import Callable, Sequence  # type hints for the tick callback and argv
from typing import Any  # tick results are not inspected

import psutil  # zero-signal liveness probe and waiting for the daemon to exit

log = logging.getLogger(__name__)

# loop states
STOPPED = "stopped"
STARTING = "starting"
RUNNING = "running"
STOPPING = "stopping"

TickFn = Callable[[], Any]


class DaemonError(Exception):
    """daemon state could not be established or changed"""


class PidGuard:
    """liveness-checked PID file; a stale file heals itself by being deleted."""

    def __init__(self, pid_file: str) -> None:
        self.pid_file = pid_file  # decimal PID plus newline

    def read_pid(self) -> int | None:
        try:
            with open(self.pid_file, encoding="utf-8") as f:
                raw = f.read().strip()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise DaemonError(f"cannot read PID file {self.pid_file}: {exc}") from exc
        try:
            pid = int(raw)
        except ValueError:
            return None
        return pid if pid > 0 else None

    def is_running(self) -> bool:
        if not os.path.exists(self.pid_file):  # never started, or cleanly stopped
            return False
        pid = self.read_pid()
        if pid is None:
            log.warning("PID file %s is unreadable, removing it", self.pid_file)
            self._remove()
            return False
        if psutil.pid_exists(pid):  # signal 0 probe on POSIX
            return True
        log.warning("PID file %s points at dead process %d, removing it", self.pid_file, pid)
        self._remove()
        return False

    def acquire(self, pid: int) -> None:
        parent = os.path.dirname(os.path.abspath(self.pid_file))
        tmp_path = os.path.join(parent, f".{os.path.basename(self.pid_file)}.tmp")
        try:
            os.makedirs(parent, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(f"{pid}\n")
            os.replace(tmp_path, self.pid_file)
        except OSError as exc:
            raise DaemonError(f"cannot write PID file {self.pid_file}: {exc}") from exc

    def release(self, pid: int | None = None) -> None:
        # only remove the file if it still belongs to `pid` (when given)
        if pid is not None:
            try:
                current = self.read_pid()
            except DaemonError:
                current = None
            if current is not None and current != pid:
                return
        self._remove()

    def _remove(self) -> None:
        try:
            os.remove(self.pid_file)
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise DaemonError(f"cannot remove PID file {self.pid_file}: {exc}") from exc


def _append_daemon_log(log_file: str, message: str) -> None:
    # one-line lifecycle notes in the daemon log, best-effort
    try:
        with open(log_file, "a", encoding="utf-8") as f:
            f.write(f"{time.strftime('%Y-%m-%dT%H:%M:%S%z')} prunewatch-watch: {message}\n")
    except OSError:
        pass


class DaemonSupervisor:
    """starts and stops the background ingestion process"""

    def __init__(
        self,
        guard: PidGuard,
        log_file: str,
        child_argv: Sequence[str],
        stop_timeout_sec: float = 10.0,
    ) -> None:
        self.guard = guard  # injected singleton guard (shared with the child)
        self.log_file = log_file  # child stdout/stderr go here
        self.child_argv = list(child_argv)  # command that runs UsageWatcher in the child
        self.stop_timeout = stop_timeout_sec  # how long stop() waits for the final flush

    def running_pid(self) -> int | None:
        return self.guard.read_pid() if self.guard.is_running() else None

    def start(self) -> tuple[int, bool]:
        """return (pid, started); started is False when a live daemon was already there."""
        pid = self.running_pid()
        if pid is not None:
            return pid, False

        try:
            os.makedirs(os.path.dirname(os.path.abspath(self.log_file)), exist_ok=True)
            with open(self.log_file, "a", encoding="utf-8") as log_f:
                proc = subprocess.Popen(
                    self.child_argv,
                    stdin=subprocess.DEVNULL,
                    stdout=log_f,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,  # detach from the terminal's process group
                    close_fds=True,
                )
        except OSError as exc:
            raise DaemonError(f"failed to start daemon {self.child_argv[0]}: {exc}") from exc

        try:
            self.guard.acquire(proc.pid)
        except DaemonError:
            proc.kill()  # never leave an unguarded loop behind
            raise
        log.info("daemon started (PID %d)", proc.pid)
        return proc.pid, True

    def stop(self) -> bool:
        """SIGTERM the daemon and wait for it to finish its final flush; False when it was not running."""
        pid = self.running_pid()
        if pid is None:
            return False
        try:
            proc = psutil.Process(pid)
            proc.terminate()  # SIGTERM, handled by UsageWatcher.request_stop
            proc.wait(timeout=self.stop_timeout)
        except psutil.NoSuchProcess:  # exited between the probe and the signal
            pass
        except psutil.AccessDenied as exc:
            raise DaemonError(f"not allowed to signal daemon process {pid}: {exc}") from exc
        except psutil.TimeoutExpired as exc:
            raise DaemonError(
                f"daemon process {pid} did not exit within {self.stop_timeout:.0f}s"
            ) from exc
        self.guard.release(pid)  # normally already removed by the child
        _append_daemon_log(self.log_file, f"daemon stopped (PID {pid})")
        return True


class UsageWatcher:
    """runs `tick` now, then every `interval_sec`, and once more on the way out"""

    def __init__(
        self, tick: TickFn, interval_sec: float = 30.0, guard: PidGuard | None = None
    ) -> None:
        self.tick = tick  # one ingestion pass, e.g. process_usage_log bound to a store
        self.interval = interval_sec  # seconds between ticks
        self.guard = guard  # PID file owned while the loop runs
        self.state = STOPPED
        self.ticks = 0  # completed (or failed) ticks, handy for status and tests
        self._stop = threading.Event()  # set by signal handlers or request_stop()

    def request_stop(self, signum: int | None = None, frame: Any = None) -> None:
        # only flags the loop, so a tick that is running finishes untouched
        if signum is not None:
            log.info("received signal %d, stopping after current tick", signum)
        self._stop.set()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self.request_stop)
        signal.signal(signal.SIGINT, self.request_stop)

    def _safe_tick(self) -> None:
        try:
            self.tick()
        except Exception:  # retry is the next tick; nothing retries inside a tick
            log.exception("ingestion tick failed, will retry in %.0fs", self.interval)
        finally:
            self.ticks += 1

    def run(self) -> None:
        self.state = STARTING
        if self.guard is not None:
            self.guard.acquire(os.getpid())
        try:
            self.state = RUNNING
            self._safe_tick()  # flush right away instead of waiting a full period
            while not self._stop.wait(self.interval):  # True as soon as a stop is requested
                self._safe_tick()
            self.state = STOPPING
            self._safe_tick()  # final flush before the PID file goes away
        finally:
            if self.guard is not None:
                self.guard.release(os.getpid())
            self.state = STOPPED
