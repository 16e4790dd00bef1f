# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: lay out the shim directory. every tracked command gets a symlink named after it that points at
the prunewatch-shim entry point; links for commands that are no longer tracked are removed. the
expected shim version is written next to the usage log so an outdated shim can warn about itself.
also answers "is the shim directory on PATH ahead of the package manager's bin?", since shims only see
commands the shell resolves through them.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import logging  # for reporting links we could not create
import os  # for symlinks, PATH splitting, and directory listing
import shutil  # for locating the shim entry point on PATH
from collections.abc import Iterable  # type hint for binary path lists
from dataclasses import dataclass, field  # for the sync summary

from agent.shim import PREFIXES, SHIM_NAME, SHIM_VERSION  # names and version shared with the shim

log = logging.getLogger(__name__)


class ShimSetupError(Exception):
    """the shim directory could not be prepared"""


@dataclass
class ShimSync:
    created: list[str] = field(default_factory=list)  # command names linked this run
    removed: list[str] = field(default_factory=list)  # stale command names unlinked
    kept: int = 0  # links that were already correct


def find_shim_executable() -> str:
    path = shutil.which(SHIM_NAME)  # installed as a console script next to `prunewatch`
    if path is None:
        raise ShimSetupError(f"{SHIM_NAME} not found on PATH; reinstall prunewatch")
    return os.path.abspath(path)


def _points_at(link: str, target: str) -> bool:
    try:
        return os.path.islink(link) and os.path.realpath(link) == os.path.realpath(target)
    except OSError:
        return False


def sync_shims(
    shim_dir: str, binary_paths: Iterable[str], shim_exe: str, aliases: Iterable[str] = ()
) -> ShimSync:
    """
    Make `shim_dir` hold exactly one symlink per command basename in `binary_paths` and per alias name
    in `aliases`, each pointing at `shim_exe`. Regular files and links to anything else are never
    touched.
    """
    try:
        os.makedirs(shim_dir, exist_ok=True)
    except OSError as exc:
        raise ShimSetupError(f"cannot create shim directory {shim_dir}: {exc}") from exc

    wanted = {os.path.basename(p) for p in binary_paths}
    wanted.update(os.path.basename(a) for a in aliases)
    wanted.discard("")
    wanted.discard(SHIM_NAME)  # a link named after the shim would exec-loop
    result = ShimSync()

    for name in sorted(wanted):
        link = os.path.join(shim_dir, name)
        if _points_at(link, shim_exe):
            result.kept += 1
            continue
        if os.path.lexists(link) and not os.path.islink(link):  # user's own file, leave it
            log.warning("not replacing %s: it is not a symlink", link)
            continue
        try:
            if os.path.lexists(link):
                os.remove(link)
            os.symlink(shim_exe, link)
        except OSError as exc:
            raise ShimSetupError(f"cannot link {link} -> {shim_exe}: {exc}") from exc
        result.created.append(name)

    for name in sorted(os.listdir(shim_dir)):
        if name in wanted:
            continue
        link = os.path.join(shim_dir, name)
        if _points_at(link, shim_exe):
            try:
                os.remove(link)
            except OSError as exc:
                raise ShimSetupError(f"cannot remove stale shim {link}: {exc}") from exc
            result.removed.append(name)
    return result


def write_shim_version(base: str) -> None:
    # read back by every shim invocation (agent.shim.check_shim_version)
    try:
        os.makedirs(base, exist_ok=True)
        with open(os.path.join(base, "shim.version"), "w", encoding="utf-8") as f:
            f.write(SHIM_VERSION + "\n")
    except OSError as exc:
        raise ShimSetupError(f"cannot write shim version under {base}: {exc}") from exc


def path_status(shim_dir: str, path_env: str | None = None) -> tuple[bool, str]:
    """(ok, hint); ok only when shim_dir is on PATH before any package-manager bin directory"""
    dirs = (os.environ.get("PATH", "") if path_env is None else path_env).split(os.pathsep)
    shim_dir = os.path.normpath(shim_dir)
    brew_bins = {os.path.join(p, "bin") for p in PREFIXES}

    shim_idx = brew_idx = -1
    for i, d in enumerate(dirs):
        d = os.path.normpath(d) if d else d
        if d == shim_dir and shim_idx == -1:
            shim_idx = i
        if brew_idx == -1 and d in brew_bins:
            brew_idx = i

    if shim_idx == -1:
        return False, f'add the shim directory to PATH before Homebrew:\n  export PATH="{shim_dir}:$PATH"'
    if brew_idx != -1 and shim_idx > brew_idx:
        return False, (
            f"shim directory must appear before {dirs[brew_idx]} in PATH\n"
            f'  export PATH="{shim_dir}:$PATH"'
        )
    return True, ""
