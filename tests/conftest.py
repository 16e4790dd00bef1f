from __future__ import annotations

import time

import pytest

from store.db import Store
from store.models import EVENT_EXEC, INSTALL_EXPLICIT, Package, UsageEvent

NOW = 1_700_000_000.0  # frozen "now" for scoring and stats tests
DAY = 86400.0


@pytest.fixture
def store():
    """In-memory store with the schema applied."""
    s = Store(":memory:")
    s.create_schema()
    yield s
    s.close()


@pytest.fixture
def frozen_time(monkeypatch):
    """Freeze time.time() at NOW."""
    monkeypatch.setattr(time, "time", lambda: NOW)
    return NOW


def make_package(
    name: str,
    installed_days_ago: float = 0.0,
    has_binary: bool = True,
    install_type: str = INSTALL_EXPLICIT,
    size_bytes: int = 0,
    binaries: list[str] | None = None,
) -> Package:
    if binaries is None:
        binaries = [f"/opt/homebrew/bin/{name}"] if has_binary else []
    return Package(
        name=name,
        installed_at=NOW - installed_days_ago * DAY,
        install_type=install_type,
        version="1.0",
        size_bytes=size_bytes,
        has_binary=has_binary,
        binary_paths=binaries,
    )


def use(store: Store, name: str, days_ago: float, binary: str | None = None, kind: str = EVENT_EXEC) -> None:
    """Record one usage event `days_ago` days before NOW."""
    ts_ns = int((NOW - days_ago * DAY) * 1_000_000_000)
    store.insert_usage_events_batch(
        [UsageEvent(name, kind, binary or f"/opt/homebrew/bin/{name}", ts_ns)]
    )
