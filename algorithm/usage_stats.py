# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: usage numbers and removal recommendations built on top of the store and the confidence scorer.

- usage_stats: total real uses, last use, days since, and a rough frequency class
- usage_trends: the same for every package, limited to a recent window for packages gone quiet
- recommendations: the safe tier, biggest packages first, with the space it would free
- validate_removal: human-readable warnings before anything gets uninstalled
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from algorithm.confidence import TIER_RISKY, TIER_SAFE, ConfidenceScorer, days_between
from store.db import PackageNotFoundError, Store
from store.models import INSTALL_EXPLICIT, UsageEvent

FREQ_DAILY = "daily"
FREQ_WEEKLY = "weekly"
FREQ_MONTHLY = "monthly"
FREQ_NEVER = "never"


@dataclass
class UsageStats:
    package: str
    total_uses: int = 0
    last_used: float | None = None  # epoch seconds of the newest real use
    first_seen: float = 0.0  # install time
    days_since: int = -1  # -1 when never used
    frequency: str = FREQ_NEVER


@dataclass
class Recommendation:
    packages: list[str] = field(default_factory=list)  # largest first
    total_size: int = 0
    tier: str = TIER_SAFE
    expected_savings: int = 0


def frequency_class(last_used: float | None, total_uses: int, installed_at: float, now: float) -> str:
    """
    Rough usage class. Recency decides first (within 7 days and busy -> daily, 30 -> weekly,
    90 -> monthly); a package not used lately falls back to its average uses per day since install.
    """
    if last_used is None:
        return FREQ_NEVER
    days_installed = max(days_between(installed_at, now), 1)
    per_day = total_uses / days_installed
    days_idle = days_between(last_used, now)

    if days_idle <= 7 and per_day >= 0.5:
        return FREQ_DAILY
    if days_idle <= 30:
        return FREQ_WEEKLY
    if days_idle <= 90:
        return FREQ_MONTHLY
    if per_day >= 0.5:
        return FREQ_DAILY
    if per_day >= 0.1:
        return FREQ_WEEKLY
    if per_day > 0:
        return FREQ_MONTHLY
    return FREQ_NEVER


def _stats_from_events(name: str, installed_at: float, events: list[UsageEvent], now: float) -> UsageStats:
    stats = UsageStats(package=name, total_uses=len(events), first_seen=installed_at)
    if events:
        stats.last_used = events[0].timestamp  # store returns newest first
        stats.days_since = days_between(stats.last_used, now)
    stats.frequency = frequency_class(stats.last_used, stats.total_uses, installed_at, now)
    return stats


def usage_stats(store: Store, name: str, since: float = 0.0) -> UsageStats:
    """Raises PackageNotFoundError for an unknown package."""
    pkg = store.get_package(name)
    events = store.get_usage_events(name, since=since)
    return _stats_from_events(name, pkg.installed_at, events, time.time())


def usage_trends(store: Store, days: int) -> dict[str, UsageStats]:
    """{package: stats}; packages idle for longer than `days` only count uses inside the window."""
    now = time.time()
    window_start = now - days * 86400
    trends: dict[str, UsageStats] = {}
    for pkg in store.list_packages():
        stats = _stats_from_events(
            pkg.name, pkg.installed_at, store.get_usage_events(pkg.name), now
        )
        if stats.last_used is not None and stats.days_since > days:
            stats = _stats_from_events(
                pkg.name,
                pkg.installed_at,
                store.get_usage_events(pkg.name, since=window_start),
                now,
            )
        trends[pkg.name] = stats
    return trends


def recommendations(scorer: ConfidenceScorer) -> Recommendation:
    safe = scorer.packages_by_tier(TIER_SAFE)
    ranked = sorted(safe, key=lambda s: (-s.size_bytes, s.package))
    total = sum(s.size_bytes for s in ranked)
    return Recommendation(
        packages=[s.package for s in ranked],
        total_size=total,
        tier=TIER_SAFE,
        expected_savings=total,
    )


def validate_removal(scorer: ConfidenceScorer, names: list[str]) -> list[str]:
    """warnings for removing `names` together; an empty list means nothing stood out"""
    store = scorer.store
    removing = set(names)
    warnings: list[str] = []
    for name in names:
        try:
            pkg = store.get_package(name)
        except PackageNotFoundError:
            warnings.append(f"{name}: package not found in database")
            continue

        remaining = [d for d in store.get_dependents(name) if d not in removing]
        if remaining:
            warnings.append(
                f"{name}: has {len(remaining)} dependents that will remain: {', '.join(remaining)}"
            )

        score = scorer.score(name)
        if score.tier == TIER_RISKY:
            warnings.append(f"{name}: risky to remove (score: {score.score}, reason: {score.reason})")

        if score.usage_score <= 10:  # used within the last 30 days
            last = store.get_last_usage(name)
            if last is not None:
                warnings.append(
                    f"{name}: used recently ({time.strftime('%Y-%m-%d', time.localtime(last))})"
                )

        if pkg.install_type == INSTALL_EXPLICIT:
            warnings.append(f"{name}: explicitly installed (not a dependency)")
    return warnings
