# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: refresh the stored inventory from the package manager. the package list and dependency edges are
read first and then swapped into the store in one transaction, so a failed `brew` call leaves the
previous inventory untouched. usage history survives for every package that is still installed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pkgmgr.brew import Homebrew
from store.db import Store

log = logging.getLogger(__name__)


@dataclass
class ScanResult:
    packages: int = 0
    dependencies: int = 0
    with_binaries: int = 0
    removed: list[str] = field(default_factory=list)  # tracked before, gone now
    binary_paths: list[str] = field(default_factory=list)  # every command to shim


def scan_inventory(store: Store, brew: Homebrew) -> ScanResult:
    packages = brew.list_installed()  # BrewError propagates before anything is written
    edges = brew.dependency_tree()

    names = {p.name for p in packages}
    previous = {p.name for p in store.list_packages()}
    store.replace_inventory(packages, edges)

    kept_edges = [(a, b) for a, b in edges if a in names and b in names]
    result = ScanResult(
        packages=len(packages),
        dependencies=len(kept_edges),
        with_binaries=sum(1 for p in packages if p.has_binary),
        removed=sorted(previous - names),
        binary_paths=sorted({b for p in packages for b in p.binary_paths}),
    )
    log.info(
        "scanned %d packages (%d with binaries), %d dependency edges, %d removed",
        result.packages,
        result.with_binaries,
        result.dependencies,
        len(result.removed),
    )
    return result
