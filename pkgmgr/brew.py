# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: thin wrapper around the `brew` command. reads the installed inventory and the dependency edges
from `brew info --json=v2 --installed`, finds each formula's commands by looking at what its keg ships
in bin/, and passes install/uninstall through unchanged. nothing in the ingestion or scoring path calls
the mutating pair.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import json  # brew's v2 JSON output
import os  # for walking kegs and listing bin/ directories
import subprocess  # for running brew
import time  # fallback install time when brew does not report one
from typing import Any  # type hint for parsed JSON

from store.models import INSTALL_DEPENDENCY, INSTALL_EXPLICIT, Package  # inventory records

BREW_TIMEOUT_SEC = 300  # brew can be slow on big installs, but must not hang forever


class BrewError(Exception):
    """a brew invocation failed or printed something we could not parse"""


def _keg_size(path: str) -> int:
    # total bytes of regular files under a keg, symlinks not followed
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                st = os.lstat(os.path.join(root, name))
            except OSError:
                continue
            total += st.st_size
    return total


class Homebrew:
    def __init__(self, brew: str = "brew") -> None:
        self.brew = brew  # executable name or absolute path
        self._prefix: str | None = None  # cached `brew --prefix`

    def _run(self, *args: str) -> str:
        cmd = [self.brew, *args]
        try:
            proc = subprocess.run(
                cmd, capture_output=True, text=True, timeout=BREW_TIMEOUT_SEC
            )  # never inherits a TTY, output captured for error messages
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise BrewError(f"{' '.join(cmd)} failed: {exc}") from exc
        if proc.returncode != 0:
            raise BrewError(
                f"{' '.join(cmd)} failed with exit code {proc.returncode}: {proc.stderr.strip()}"
            )
        return proc.stdout

    def prefix(self) -> str:
        if self._prefix is None:
            self._prefix = self._run("--prefix").strip()
        return self._prefix

    def _info(self) -> dict[str, Any]:
        out = self._run("info", "--json=v2", "--installed")
        try:
            data = json.loads(out or "{}")
        except ValueError as exc:
            raise BrewError(f"cannot parse brew info output: {exc}") from exc
        if not isinstance(data, dict):
            raise BrewError("unexpected brew info output (not a JSON object)")
        return data

    def _binaries(self, name: str, version: str) -> list[str]:
        # commands a keg ships, as the linked paths under <prefix>/bin
        prefix = self.prefix()
        keg_bin = os.path.join(prefix, "Cellar", name, version, "bin")
        try:
            entries = sorted(os.listdir(keg_bin))
        except OSError:  # keg without bin/ (libraries) or not linked the usual way
            return []
        return [os.path.join(prefix, "bin", e) for e in entries]

    def _formula(self, f: dict[str, Any]) -> Package:
        installed = (f.get("installed") or [{}])[0]  # first entry is the active version
        version = str(installed.get("version") or (f.get("versions") or {}).get("stable") or "")
        on_request = bool(installed.get("installed_on_request", True))
        bins = self._binaries(f["name"], version) if version else []
        keg = os.path.join(self.prefix(), "Cellar", f["name"], version)
        return Package(
            name=f["name"],
            installed_at=float(installed.get("time") or time.time()),
            install_type=INSTALL_EXPLICIT if on_request else INSTALL_DEPENDENCY,
            version=version,
            tap=str(f.get("tap") or ""),
            is_cask=False,
            size_bytes=_keg_size(keg) if version else 0,
            has_binary=bool(bins),
            binary_paths=bins,
        )

    @staticmethod
    def _cask(c: dict[str, Any]) -> Package:
        return Package(
            name=c["token"],
            installed_at=float(c.get("installed_time") or time.time()),
            install_type=INSTALL_EXPLICIT,  # casks are always asked for
            version=str(c.get("installed") or c.get("version") or ""),
            tap=str(c.get("tap") or ""),
            is_cask=True,
            size_bytes=0,
            has_binary=False,  # GUI apps, nothing linked into bin/
            binary_paths=[],
        )

    def list_installed(self) -> list[Package]:
        """every installed formula and cask, sorted by name"""
        data = self._info()
        try:
            pkgs = [self._formula(f) for f in data.get("formulae") or []]
            pkgs += [self._cask(c) for c in data.get("casks") or []]
        except (KeyError, TypeError, ValueError) as exc:
            raise BrewError(f"unexpected brew info record: {exc}") from exc
        return sorted(pkgs, key=lambda p: p.name)

    def dependency_tree(self) -> list[tuple[str, str]]:
        """(package, depends_on) edges from each installed formula's direct dependencies"""
        edges: set[tuple[str, str]] = set()
        for f in self._info().get("formulae") or []:
            name = f.get("name")
            if not name:
                continue
            for dep in f.get("dependencies") or []:
                dep = str(dep).rsplit("/", 1)[-1]  # tap-qualified names ("user/tap/foo") -> "foo"
                if dep and dep != name:
                    edges.add((name, dep))
        return sorted(edges)

    def install(self, name: str, version: str = "") -> None:
        full = name if not version or "@" in name else f"{name}@{version}"
        self._run("install", full)

    def uninstall(self, name: str) -> None:
        self._run("uninstall", name)
