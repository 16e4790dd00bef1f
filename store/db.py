# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: SQLite-backed store for the package inventory, the dependency graph, and recorded usage events.
one connection, one writer. every ingestion tick lands in a single transaction so readers never see a
partial batch. probe events are kept for audit but every usage query skips them.
"""

from __future__ import annotations

import json
import os
import sqlite3
from collections.abc import Iterable, Sequence

from store.models import EVENT_PROBE, Package, UsageEvent

SCHEMA = """
CREATE TABLE IF NOT EXISTS packages (
    name TEXT PRIMARY KEY,
    installed_at REAL NOT NULL DEFAULT 0,
    install_type TEXT NOT NULL DEFAULT 'explicit',
    version TEXT NOT NULL DEFAULT '',
    tap TEXT NOT NULL DEFAULT '',
    is_cask INTEGER NOT NULL DEFAULT 0,
    size_bytes INTEGER NOT NULL DEFAULT 0,
    has_binary INTEGER NOT NULL DEFAULT 0,
    binary_paths TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS dependencies (
    package TEXT NOT NULL,
    depends_on TEXT NOT NULL,
    PRIMARY KEY (package, depends_on),
    FOREIGN KEY (package) REFERENCES packages(name) ON DELETE CASCADE,
    FOREIGN KEY (depends_on) REFERENCES packages(name) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS usage_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    package TEXT NOT NULL,
    event_type TEXT NOT NULL,
    binary_path TEXT NOT NULL,
    timestamp_ns INTEGER NOT NULL,
    UNIQUE (package, binary_path, timestamp_ns),
    FOREIGN KEY (package) REFERENCES packages(name) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_usage_package ON usage_events(package);
CREATE INDEX IF NOT EXISTS idx_usage_timestamp ON usage_events(timestamp_ns);
CREATE INDEX IF NOT EXISTS idx_deps_package ON dependencies(package);
CREATE INDEX IF NOT EXISTS idx_deps_depends ON dependencies(depends_on);
"""

_UPSERT_PACKAGE = """
INSERT INTO packages
    (name, installed_at, install_type, version, tap, is_cask, size_bytes, has_binary, binary_paths)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(name) DO UPDATE SET
    installed_at = excluded.installed_at,
    install_type = excluded.install_type,
    version = excluded.version,
    tap = excluded.tap,
    is_cask = excluded.is_cask,
    size_bytes = excluded.size_bytes,
    has_binary = excluded.has_binary,
    binary_paths = excluded.binary_paths
"""


class StoreError(Exception):
    """a read or write against the database failed"""


class PackageNotFoundError(StoreError):
    def __init__(self, name: str) -> None:
        super().__init__(f"package not found: {name}")
        self.name = name


def _ns(ts: float) -> int:
    return int(ts * 1_000_000_000)


def _package_row(pkg: Package) -> tuple:
    return (
        pkg.name,
        float(pkg.installed_at),
        pkg.install_type,
        pkg.version,
        pkg.tap,
        int(pkg.is_cask),
        int(pkg.size_bytes),
        int(pkg.has_binary),
        json.dumps(list(pkg.binary_paths)),
    )


def _row_package(row: sqlite3.Row) -> Package:
    try:
        paths = json.loads(row["binary_paths"] or "[]")
    except ValueError as exc:
        raise StoreError(f"corrupt binary_paths for {row['name']}: {exc}") from exc
    return Package(
        name=row["name"],
        installed_at=float(row["installed_at"]),
        install_type=row["install_type"],
        version=row["version"],
        tap=row["tap"],
        is_cask=bool(row["is_cask"]),
        size_bytes=int(row["size_bytes"]),
        has_binary=bool(row["has_binary"]),
        binary_paths=[str(p) for p in paths],
    )


class Store:
    """SQLite persistence for packages, dependency edges, and usage events."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        try:
            self.conn = sqlite3.connect(db_path)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")
            if db_path != ":memory:":
                self.conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.Error as exc:
            raise StoreError(f"failed to open database {db_path}: {exc}") from exc

    def close(self) -> None:
        self.conn.close()

    def create_schema(self) -> None:
        try:
            self.conn.executescript(SCHEMA)
        except sqlite3.Error as exc:
            raise StoreError(f"failed to create schema: {exc}") from exc

    def _read(self, what: str, sql: str, params: Sequence = ()) -> list[sqlite3.Row]:
        # every read goes through here so callers only ever see StoreError
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"failed to read {what}: {exc}") from exc

    # packages

    def insert_package(self, pkg: Package) -> None:
        try:
            with self.conn:
                self.conn.execute(_UPSERT_PACKAGE, _package_row(pkg))
        except sqlite3.Error as exc:
            raise StoreError(f"failed to insert package {pkg.name}: {exc}") from exc

    def get_package(self, name: str) -> Package:
        rows = self._read(f"package {name}", "SELECT * FROM packages WHERE name = ?", (name,))
        if not rows:
            raise PackageNotFoundError(name)
        return _row_package(rows[0])

    def list_packages(self) -> list[Package]:
        return [_row_package(r) for r in self._read("packages", "SELECT * FROM packages ORDER BY name")]

    def delete_package(self, name: str) -> None:
        try:
            with self.conn:
                cur = self.conn.execute("DELETE FROM packages WHERE name = ?", (name,))
        except sqlite3.Error as exc:
            raise StoreError(f"failed to delete package {name}: {exc}") from exc
        if cur.rowcount == 0:
            raise PackageNotFoundError(name)

    def replace_inventory(
        self, packages: Sequence[Package], edges: Iterable[tuple[str, str]]
    ) -> None:
        """
        Swap in a freshly scanned inventory in one transaction. Packages that disappeared are deleted
        (their usage events go with them); surviving packages keep their history. Edges whose ends are
        not both installed are dropped.
        """
        names = {p.name for p in packages}
        try:
            with self.conn:
                for pkg in packages:
                    self.conn.execute(_UPSERT_PACKAGE, _package_row(pkg))
                stored = [r["name"] for r in self.conn.execute("SELECT name FROM packages")]
                for gone in stored:
                    if gone not in names:
                        self.conn.execute("DELETE FROM packages WHERE name = ?", (gone,))
                self.conn.execute("DELETE FROM dependencies")
                self.conn.executemany(
                    "INSERT OR IGNORE INTO dependencies (package, depends_on) VALUES (?, ?)",
                    [(a, b) for a, b in edges if a in names and b in names],
                )
        except sqlite3.Error as exc:
            raise StoreError(f"failed to replace inventory: {exc}") from exc

    # dependency edges

    def insert_dependency(self, pkg: str, depends_on: str) -> None:
        try:
            with self.conn:
                self.conn.execute(
                    "INSERT OR IGNORE INTO dependencies (package, depends_on) VALUES (?, ?)",
                    (pkg, depends_on),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"failed to insert dependency {pkg} -> {depends_on}: {exc}") from exc

    def get_dependencies(self, pkg: str) -> list[str]:
        rows = self._read(
            f"dependencies of {pkg}",
            "SELECT depends_on FROM dependencies WHERE package = ? ORDER BY depends_on",
            (pkg,),
        )
        return [r["depends_on"] for r in rows]

    def get_dependents(self, pkg: str) -> list[str]:
        rows = self._read(
            f"dependents of {pkg}",
            "SELECT package FROM dependencies WHERE depends_on = ? ORDER BY package",
            (pkg,),
        )
        return [r["package"] for r in rows]

    # usage events

    def insert_usage_events_batch(self, events: Sequence[UsageEvent]) -> int:
        """
        Insert every event in one transaction and return how many rows were new. Duplicates of
        (package, binary_path, timestamp) are ignored, so replaying an uncheckpointed log region is
        harmless. Any failure rolls the whole batch back.
        """
        if not events:
            return 0
        try:
            with self.conn:
                cur = self.conn.executemany(
                    "INSERT OR IGNORE INTO usage_events (package, event_type, binary_path, timestamp_ns) "
                    "VALUES (?, ?, ?, ?)",
                    [(e.package, e.event_type, e.binary_path, e.timestamp_ns) for e in events],
                )
                return max(cur.rowcount, 0)
        except sqlite3.Error as exc:
            raise StoreError(f"failed to insert {len(events)} usage events: {exc}") from exc

    def get_usage_events(
        self, pkg: str, since: float = 0.0, include_probes: bool = False
    ) -> list[UsageEvent]:
        query = (
            "SELECT package, event_type, binary_path, timestamp_ns FROM usage_events "
            "WHERE package = ? AND timestamp_ns >= ?"
        )
        params: list = [pkg, _ns(since)]
        if not include_probes:
            query += " AND event_type != ?"
            params.append(EVENT_PROBE)
        query += " ORDER BY timestamp_ns DESC"
        return [
            UsageEvent(r["package"], r["event_type"], r["binary_path"], int(r["timestamp_ns"]))
            for r in self._read(f"usage events of {pkg}", query, params)
        ]

    def get_last_usage(self, pkg: str) -> float | None:
        # newest non-probe event in epoch seconds, None when never used
        rows = self._read(
            f"last usage of {pkg}",
            "SELECT MAX(timestamp_ns) AS ts FROM usage_events WHERE package = ? AND event_type != ?",
            (pkg, EVENT_PROBE),
        )
        if not rows or rows[0]["ts"] is None:
            return None
        return int(rows[0]["ts"]) / 1e9

    def get_usage_event_count_since(self, pkg: str, since: float) -> int:
        rows = self._read(
            f"usage count of {pkg}",
            "SELECT COUNT(*) AS n FROM usage_events "
            "WHERE package = ? AND event_type != ? AND timestamp_ns >= ?",
            (pkg, EVENT_PROBE, _ns(since)),
        )
        return int(rows[0]["n"])

    def get_event_count(self) -> int:
        return int(self._read("event count", "SELECT COUNT(*) FROM usage_events")[0][0])

    def get_first_event_time(self) -> float | None:
        rows = self._read("first event time", "SELECT MIN(timestamp_ns) FROM usage_events")
        if not rows or rows[0][0] is None:
            return None
        return int(rows[0][0]) / 1e9
