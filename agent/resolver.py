# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: map binaries seen in the usage log back to the package that ships them. two lookups are built from
the stored inventory: full install path -> package (preferred, tells apart two packages that ship the
same basename) and basename -> package (fallback). a package's own name maps to itself so inventories
without binary paths still resolve their main command. user aliases ("ll=eza") map the alias name to
its package, but never shadow a real binary of the same name.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping

from agent.shim import PREFIXES
from store.models import Package

log = logging.getLogger(__name__)


def build_maps(
    packages: Iterable[Package], aliases: Mapping[str, str] | None = None
) -> tuple[dict[str, str], dict[str, str]]:
    """return ({full_path: package}, {basename: package})"""
    path_map: dict[str, str] = {}
    base_map: dict[str, str] = {}
    names: set[str] = set()
    for pkg in packages:
        names.add(pkg.name)
        for bin_path in pkg.binary_paths:
            path_map[bin_path] = pkg.name
            base_map[os.path.basename(bin_path)] = pkg.name
        # fallback for packages whose binary paths were never populated
        base_map.setdefault(pkg.name, pkg.name)
    for alias, target in (aliases or {}).items():
        if target not in names:
            log.debug("alias %s points at %s, which is not installed", alias, target)
            continue
        base_map.setdefault(alias, target)
    return path_map, base_map


class BinaryResolver:
    def __init__(
        self,
        packages: Iterable[Package],
        prefixes: tuple[str, ...] = PREFIXES,
        aliases: Mapping[str, str] | None = None,
    ) -> None:
        self.path_map, self.base_map = build_maps(packages, aliases)
        self.prefixes = prefixes

    def resolve(self, argv0: str) -> str | None:
        """package name for a logged invocation path, or None if it is not a tracked binary"""
        basename = os.path.basename(argv0)
        if not basename:
            return None
        for prefix in self.prefixes:
            pkg = self.path_map.get(os.path.join(prefix, "bin", basename))
            if pkg is not None:
                return pkg
        return self.base_map.get(basename)
