# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: plain records shared by the store, the ingestion pipeline, and the scorer. packages and dependency
edges come from an inventory scan; usage events come from the shim log.
"""

from __future__ import annotations

from dataclasses import dataclass, field

EVENT_EXEC = "exec"  # a real user invocation
EVENT_PROBE = "probe"  # a build-system configuration query (pkg-config, foo-config)

INSTALL_EXPLICIT = "explicit"
INSTALL_DEPENDENCY = "dependency"


@dataclass
class Package:
    name: str  # unique key, stable across rescans
    installed_at: float = 0.0  # epoch seconds
    install_type: str = INSTALL_EXPLICIT  # "explicit" or "dependency"
    version: str = ""
    tap: str = ""
    is_cask: bool = False
    size_bytes: int = 0
    has_binary: bool = False
    binary_paths: list[str] = field(default_factory=list)  # absolute paths, e.g. /opt/homebrew/bin/git


@dataclass(frozen=True)
class UsageEvent:
    package: str
    event_type: str  # EVENT_EXEC or EVENT_PROBE
    binary_path: str  # argv0 as written by the shim
    timestamp_ns: int  # unix nanoseconds from the shim log

    @property
    def timestamp(self) -> float:
        # epoch seconds, the unit the rest of the code works in
        return self.timestamp_ns / 1e9
