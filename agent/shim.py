# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: execution interceptor installed under a symlink named after every tracked binary (for example
~/.prunewatch/bin/git -> prunewatch-shim). when the user runs a shimmed command it appends one
"<unix_nano>,<argv0>" line to ~/.prunewatch/usage.log, then replaces itself with the real binary
under a known package-manager prefix via os.execv, so no extra process is left behind.
a link named after a user alias (see load_aliases) runs the aliased package's command instead.

this module is deployed as its own entry point and must only import the standard library.
logging and the version check are best-effort: nothing here may stop the user's command from running.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import os  # for O_APPEND writes, execv, and path checks
import sys  # for argv and stderr
import time  # for nanosecond timestamps and the warning rate limit

SHIM_NAME = "prunewatch-shim"  # our own entry point name, never exec'd (exec loop guard)
SHIM_VERSION = "0.1.0"  # compared against <base>/shim.version written by `prunewatch scan`
PREFIXES = ("/opt/homebrew", "/usr/local", "/home/linuxbrew/.linuxbrew")  # where real binaries live
WARN_INTERVAL_SEC = 86400  # stale-shim warning at most once per day


def base_dir() -> str:
    # state directory shared with the daemon, overridable for tests and custom installs
    return os.environ.get("PRUNEWATCH_BASE_DIR") or os.path.join(
        os.path.expanduser("~"), ".prunewatch"
    )


def load_aliases(path: str | None = None) -> dict[str, str]:
    """
    alias -> package from "<alias>=<package>" lines in <base>/aliases. blank lines, "#" comments and
    lines without a name on both sides of "=" are skipped. a missing or unreadable file means no aliases.
    """
    aliases: dict[str, str] = {}
    try:
        with open(path or os.path.join(base_dir(), "aliases"), encoding="utf-8") as f:
            for raw in f:
                line = raw.strip()
                if not line or line.startswith("#"):
                    continue
                alias, sep, pkg = line.partition("=")
                alias, pkg = alias.strip(), pkg.strip()
                if not sep or not alias or not pkg or "/" in alias:  # "/" would escape the shim dir
                    continue
                aliases[alias] = pkg
    except (OSError, ValueError):  # no file, or not text
        pass
    return aliases


def log_execution(argv0: str, log_path: str | None = None) -> None:
    """append one usage record; every failure is swallowed."""
    try:
        if not argv0 or "\n" in argv0:  # a newline would break the one-record-per-line format
            return
        path = log_path or os.path.join(base_dir(), "usage.log")  # default log location
        line = f"{time.time_ns()},{argv0}\n".encode()  # "<unix_nano>,<argv0>\n"
        fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)  # append-only, created on demand
        try:
            os.write(fd, line)  # single write with O_APPEND, so concurrent shims never interleave
        finally:
            os.close(fd)
    except Exception:  # missing directory, permissions, disk full, anything
        pass  # the user's command must still run


def check_shim_version(state_dir: str | None = None) -> None:
    """warn on stderr when `prunewatch scan` expects a different shim version, at most once a day."""
    try:
        root = state_dir or base_dir()
        with open(os.path.join(root, "shim.version"), encoding="utf-8") as f:
            expected = f.read().strip()  # version written by the last scan
        if not expected or expected == SHIM_VERSION:  # nothing to warn about
            return
        warn_path = os.path.join(root, "shim.warn")  # last warning timestamp (epoch seconds)
        try:
            with open(warn_path, encoding="utf-8") as f:
                last = int(f.read().strip())
            if int(time.time()) - last < WARN_INTERVAL_SEC:  # warned recently
                return
        except (OSError, ValueError):  # no previous warning, or an unreadable one
            pass
        sys.stderr.write(
            "prunewatch upgraded; run 'prunewatch scan' to refresh shims.\n"
        )
        with open(warn_path, "w", encoding="utf-8") as f:
            f.write(f"{int(time.time())}\n")  # start the next rate-limit window
    except Exception:  # version file missing or unreadable
        pass


def find_real_binary(name: str, argv0: str = "", prefixes: tuple[str, ...] = PREFIXES) -> str | None:
    """locate the real executable for `name`; None when missing or when it would run the shim again."""
    if not name or name == SHIM_NAME:  # invoked under our own name, refuse to exec ourselves
        return None
    own = os.path.realpath(argv0) if argv0 else ""  # where the invoking symlink points
    for prefix in prefixes:  # try each known installation prefix in order
        candidate = os.path.join(prefix, "bin", name)
        if not os.path.isfile(candidate) or not os.access(candidate, os.X_OK):
            continue
        if own and os.path.realpath(candidate) == own:  # the "real" binary is our own shim
            continue
        return candidate
    return None


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv if argv is None else argv)  # argv passes through to the real binary unchanged
    if not args:
        sys.stderr.write(f"{SHIM_NAME}: empty argv\n")
        return 1
    name = os.path.basename(args[0])  # which symlink was used

    check_shim_version()  # best-effort
    log_execution(args[0])  # best-effort

    real = find_real_binary(name, args[0])
    if real is None:
        target = load_aliases().get(name)  # user alias: run the aliased package's command instead
        if target:
            real = find_real_binary(target, args[0])
    if real is None:
        sys.stderr.write(
            f"{SHIM_NAME}: cannot find real binary for {name!r} under {', '.join(PREFIXES)}\n"
        )
        return 1

    try:
        os.execv(real, args)  # replace this process image, the environment is inherited as-is
    except OSError as exc:
        sys.stderr.write(f"{SHIM_NAME}: exec {real} failed: {exc}\n")
        return 1
    return 0  # not reached after a successful execv


if __name__ == "__main__":
    sys.exit(main())
