# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: configuration loader for prunewatch. every value comes from an environment variable
      (PRUNEWATCH_<KEY>), then <base>/config.json, then a built-in default. paths are relative to the
      state directory (~/.prunewatch unless PRUNEWATCH_BASE_DIR says otherwise); absolute paths are
      used as given. returns a frozen Config dataclass shared by the console, the daemon, and tests.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)

ENV_PREFIX = "PRUNEWATCH_"


# the state directory shared with the shim (agent/shim.py resolves it the same way)
def _resolve_base_dir() -> Path:
    override = os.getenv(f"{ENV_PREFIX}BASE_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".prunewatch"


# frozen dataclass to hold all config values (immutable once created)
@dataclass(frozen=True)
class Config:
    base_dir: Path  # state directory
    db_path: Path  # SQLite database
    usage_log_path: Path  # append-only log written by the shims
    offset_path: Path  # ingestion checkpoint (byte offset into the usage log)
    pid_file: Path  # daemon PID file
    watch_log_file: Path  # daemon stdout/stderr
    shim_dir: Path  # symlink farm that goes on PATH
    aliases_path: Path  # "alias=package" lines; always <base>/aliases since the shim reads it too
    tick_interval_sec: float  # seconds between ingestion ticks
    max_lines_per_tick: int  # upper bound of log lines handled per tick
    stop_timeout_sec: float  # how long `watch --stop` waits for the daemon to exit


# get a config value with priority: environment variable > JSON file > default
def _get(obj: dict, key: str, default):
    env = os.getenv(f"{ENV_PREFIX}{key.upper()}")
    if env is not None:
        # coerce to the default's type; a bad number falls back to the default
        if isinstance(default, int):
            try:
                return int(env)
            except ValueError:
                log.warning("ignoring %s%s=%r (not an integer)", ENV_PREFIX, key.upper(), env)
                return default
        if isinstance(default, float):
            try:
                return float(env)
            except ValueError:
                log.warning("ignoring %s%s=%r (not a number)", ENV_PREFIX, key.upper(), env)
                return default
        return env
    return obj.get(key, default)


# numeric settings that must be > 0; anything else falls back to the default with a warning
def _positive(obj: dict, key: str, default):
    raw = _get(obj, key, default)
    try:
        value = type(default)(raw)
    except (TypeError, ValueError):
        log.warning("ignoring %s=%r (not a number), using %s", key, raw, default)
        return default
    if value <= 0:
        log.warning("ignoring %s=%r (must be greater than 0), using %s", key, raw, default)
        return default
    return value


def load_config() -> Config:
    base = _resolve_base_dir()
    cfg_file = base / "config.json"
    obj = {}
    if cfg_file.exists():
        try:
            obj = json.loads(cfg_file.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            # broken config file -> defaults, but say so
            log.warning("ignoring unreadable %s: %s", cfg_file, exc)
            obj = {}
        if not isinstance(obj, dict):
            obj = {}

    return Config(
        base_dir=base,
        db_path=base / _get(obj, "db_path", "prunewatch.db"),
        usage_log_path=base / _get(obj, "usage_log_path", "usage.log"),
        offset_path=base / _get(obj, "offset_path", "usage.offset"),
        pid_file=base / _get(obj, "pid_file", "watch.pid"),
        watch_log_file=base / _get(obj, "watch_log_file", "watch.log"),
        shim_dir=base / _get(obj, "shim_dir", "bin"),
        aliases_path=base / "aliases",
        tick_interval_sec=_positive(obj, "tick_interval_sec", 30.0),
        max_lines_per_tick=_positive(obj, "max_lines_per_tick", 10_000),
        stop_timeout_sec=_positive(obj, "stop_timeout_sec", 10.0),
    )
