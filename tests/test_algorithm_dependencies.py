"""
Tests for algorithm.dependencies - graph queries over stored dependency edges.
"""

from __future__ import annotations

from conftest import make_package

from algorithm.dependencies import (
    dependency_chain,
    dependency_graph,
    is_core_dependency,
    leaf_packages,
    prune_candidates,
)
from store.models import INSTALL_DEPENDENCY


def add(store, *names, install_type="explicit"):
    for n in names:
        store.insert_package(make_package(n, install_type=install_type))


class TestDependencyChain:
    """Tests for dependency_chain"""

    def test_transitive_chain(self, store):
        """Test that indirect dependencies are included once"""
        add(store, "app", "liba", "libb", "libc")
        store.insert_dependency("app", "liba")
        store.insert_dependency("app", "libb")
        store.insert_dependency("liba", "libc")
        store.insert_dependency("libb", "libc")
        assert dependency_chain(store, "app") == ["liba", "libc", "libb"]

    def test_cycle_terminates(self, store):
        """Test that A -> B -> C -> A ends instead of looping"""
        add(store, "a", "b", "c")
        store.insert_dependency("a", "b")
        store.insert_dependency("b", "c")
        store.insert_dependency("c", "a")
        assert dependency_chain(store, "a") == ["b", "c"]

    def test_no_dependencies(self, store):
        """Test that a package without dependencies has an empty chain"""
        add(store, "solo")
        assert dependency_chain(store, "solo") == []


class TestGraphQueries:
    """Tests for leaves, prune candidates and the full graph"""

    def test_leaf_packages(self, store):
        """Test that leaves are packages nothing depends on"""
        add(store, "app", "lib")
        store.insert_dependency("app", "lib")
        assert leaf_packages(store) == ["app"]

    def test_prune_candidates(self, store):
        """Test that only non-core leaves installed as dependencies qualify"""
        add(store, "leftover", "cmake", install_type=INSTALL_DEPENDENCY)
        add(store, "wanted")
        assert prune_candidates(store) == ["leftover"]

    def test_dependency_graph(self, store):
        """Test that every package appears with its direct dependencies"""
        add(store, "app", "lib")
        store.insert_dependency("app", "lib")
        assert dependency_graph(store) == {"app": ["lib"], "lib": []}


def test_core_dependency_set():
    """Test the core-dependency predicate"""
    assert is_core_dependency("openssl@3")
    assert is_core_dependency("ca-certificates")
    assert is_core_dependency("python@3.12")
    assert not is_core_dependency("cowsay")
