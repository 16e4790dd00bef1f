# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: read-only queries over the stored dependency graph. which packages are core system dependencies
(libraries that half the system links against), what a package pulls in transitively, which packages
nothing depends on, and which of those are worth pruning.

edges come from the package manager and are not trusted to be acyclic, so every traversal carries a
visited set.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

from store.db import PackageNotFoundError, Store  # graph and package metadata live in the store
from store.models import INSTALL_DEPENDENCY  # install classification for prune candidates

# packages many others link against; never scored as removable however unused they look
CORE_DEPENDENCIES = frozenset(
    {
        # cryptography and certificates
        "openssl",
        "openssl@1.1",
        "openssl@3",
        "ca-certificates",
        # core libraries
        "icu4c",
        "readline",
        "gettext",
        "libffi",
        "gmp",
        "pcre",
        "pcre2",
        "zlib",
        "xz",
        "sqlite",
        "ncurses",
        # interpreters
        "python@3.12",
        "python@3.11",
        # core utilities
        "coreutils",
        "git",
        "curl",
        "wget",
        # build tooling
        "pkg-config",
        "pkgconf",
        "cmake",
        "autoconf",
        "automake",
        "libtool",
        # compilers
        "gcc",
        "llvm",
        # database libraries
        "gdbm",
        "berkeley-db",
        # parsers
        "libxml2",
        "libxslt",
        "libyaml",
        "json-c",
    }
)


def is_core_dependency(name: str) -> bool:
    if name in CORE_DEPENDENCIES:
        return True
    # any versioned python 3 or openssl counts too
    return name.startswith("python@3.") or name.startswith("openssl@")


def dependency_chain(store: Store, name: str) -> list[str]:
    """
    Everything `name` depends on, directly or indirectly, in depth-first order. A package reachable
    along several paths is listed once; a cycle (A -> B -> C -> A) ends the walk instead of looping.
    """
    visited: set[str] = {name}  # the root itself is never part of its own chain
    chain: list[str] = []
    stack = list(reversed(store.get_dependencies(name)))  # reversed so we pop in sorted order
    while stack:
        dep = stack.pop()
        if dep in visited:
            continue
        visited.add(dep)
        chain.append(dep)
        stack.extend(reversed(store.get_dependencies(dep)))
    return chain


def dependency_graph(store: Store) -> dict[str, list[str]]:
    # {package: direct dependencies} for every installed package
    return {pkg.name: store.get_dependencies(pkg.name) for pkg in store.list_packages()}


def leaf_packages(store: Store) -> list[str]:
    # installed packages nothing else depends on
    return [pkg.name for pkg in store.list_packages() if not store.get_dependents(pkg.name)]


def prune_candidates(store: Store) -> list[str]:
    """leaves that are not core and were only pulled in as someone else's dependency"""
    out: list[str] = []
    for name in leaf_packages(store):
        if is_core_dependency(name):
            continue
        try:
            pkg = store.get_package(name)
        except PackageNotFoundError:  # removed between the two queries
            continue
        if pkg.install_type == INSTALL_DEPENDENCY:
            out.append(name)
    return out
