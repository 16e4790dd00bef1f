# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: turn what we know about an installed package (last real use, reverse dependencies, install age,
whether it ships commands) into a removal-confidence score between 0 and 100, a tier, and a breakdown
a person can check by hand.

how the score is built
four independent sub-scores are added up. higher always means "safer to remove":

1. usage (0-40): how long since the last real execution. probes (pkg-config style calls made by
   build systems) do not count.
       used within 7 days -> 0, 30 days -> 10, 90 days -> 20, a year -> 30, never -> 40
2. dependents (0-30): how many installed packages need this one.
       none -> 30, 1-3 and none of them used in the last 30 days -> 20, 1-3 with any used -> 10, 4+ -> 0
3. age (0-20): time since install. a fresh install is not evidence of anything yet.
       over 180 days -> 20, over 90 -> 15, over 30 -> 10, otherwise 0
4. type (0-10): core dependency -> 0, leaf with commands -> 10, library with no commands -> 5, else 0

then a second stage: when the package is a core system dependency the total is capped at 70 and the
package is flagged critical. the cap is kept separate from the type sub-score so the explanation can
show it as its own "criticality penalty" line.

tiers: >= 80 safe, >= 50 medium, anything lower risky.

all day counts are whole days (elapsed hours / 24, truncated). given the same store contents and the
same clock the result is identical, field for field.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import time  # for "now" when measuring days since use / install
from dataclasses import dataclass, field  # for the score and explanation records

from algorithm.dependencies import is_core_dependency  # core packages are capped and typed as 0
from store.db import PackageNotFoundError, Store  # package metadata, dependents, usage history

TIER_SAFE = "safe"
TIER_MEDIUM = "medium"
TIER_RISKY = "risky"
TIERS = (TIER_SAFE, TIER_MEDIUM, TIER_RISKY)

SAFE_THRESHOLD = 80  # total >= this -> safe
MEDIUM_THRESHOLD = 50  # total >= this -> medium
CRITICAL_CAP = 70  # ceiling for core dependencies
DEPENDENT_RECENT_DAYS = 30  # a dependent used within this window keeps its dependency alive

USAGE_MAX = 40
DEPS_MAX = 30
AGE_MAX = 20
TYPE_MAX = 10


class InvalidTierError(ValueError):
    """tier name is not one of TIERS"""


@dataclass
class ScoreExplanation:
    usage_detail: str = ""  # "never observed execution" / "last used 45 days ago"
    deps_detail: str = ""  # "no dependents" / "2 dependents, 1 used recently"
    age_detail: str = ""  # "installed 240 days ago"
    type_detail: str = ""  # "leaf package with binaries" / "library-only" / "core dependency"


@dataclass
class ConfidenceScore:
    package: str
    score: int = 0  # 0..100 after the critical cap
    tier: str = TIER_RISKY
    usage_score: int = 0  # 0..40
    deps_score: int = 0  # 0..30
    age_score: int = 0  # 0..20
    type_score: int = 0  # 0..10
    criticality_penalty: int = 0  # points removed by the cap, 0 unless critical and raw > 70
    is_critical: bool = False
    is_cask: bool = False
    size_bytes: int = 0  # for sorting recommendations
    installed_at: float = 0.0  # epoch seconds, for sorting
    dependents: list[str] = field(default_factory=list)
    reason: str = ""
    explanation: ScoreExplanation = field(default_factory=ScoreExplanation)

    @property
    def raw_score(self) -> int:
        return self.usage_score + self.deps_score + self.age_score + self.type_score


def days_between(then: float, now: float) -> int:
    # whole days, truncated toward zero like hours / 24 would be
    return int((now - then) / 3600 / 24)


def tier_for(score: int) -> str:
    if score >= SAFE_THRESHOLD:
        return TIER_SAFE
    if score >= MEDIUM_THRESHOLD:
        return TIER_MEDIUM
    return TIER_RISKY


def usage_points(days_since_use: int | None) -> int:
    if days_since_use is None:  # never observed
        return 40
    if days_since_use <= 7:
        return 0
    if days_since_use <= 30:
        return 10
    if days_since_use <= 90:
        return 20
    if days_since_use <= 365:
        return 30
    return 40


def deps_points(num_dependents: int, used_dependents: int) -> int:
    if num_dependents == 0:
        return 30
    if num_dependents <= 3:
        return 20 if used_dependents == 0 else 10
    return 0


def age_points(days_since_install: int) -> int:
    if days_since_install > 180:
        return 20
    if days_since_install > 90:
        return 15
    if days_since_install > 30:
        return 10
    return 0


def type_points(name: str, has_binary: bool, num_dependents: int) -> int:
    if is_core_dependency(name):
        return 0
    if num_dependents == 0 and has_binary:  # leaf with commands
        return 10
    if not has_binary:  # library
        return 5
    return 0


def _reason(s: ConfidenceScore, has_binary: bool) -> str:
    n = len(s.dependents)
    if s.tier == TIER_SAFE:
        if s.usage_score == USAGE_MAX:
            return "never used, no dependents" if n == 0 else "never used, only unused dependents"
        return "rarely used, safe to remove"
    if s.tier == TIER_MEDIUM:
        if s.is_critical and s.criticality_penalty > 0:
            return "core system dependency, capped at medium"
        if 0 < n <= 3:
            return "has few dependents, check before removing"
        if not has_binary:
            return "library with no binaries, check dependencies"
        return "medium confidence, review usage"
    if s.usage_score <= 10:  # used within the last 30 days
        return "recently used, keep"
    if n >= 4:
        return f"has {n} dependents, keep"
    if s.is_critical:
        return "core system dependency, keep"
    return "low confidence for removal"


class ConfidenceScorer:
    """scores packages against whatever the store currently holds"""

    def __init__(self, store: Store) -> None:
        self.store = store

    def _days_since_last_use(self, name: str, now: float) -> int | None:
        last = self.store.get_last_usage(name)  # probes excluded by the store
        return None if last is None else days_between(last, now)

    def score(self, name: str) -> ConfidenceScore:
        """Raises PackageNotFoundError for a package the store does not know."""
        pkg = self.store.get_package(name)
        now = time.time()
        dependents = self.store.get_dependents(name)

        s = ConfidenceScore(
            package=name,
            is_cask=pkg.is_cask,
            size_bytes=pkg.size_bytes,
            installed_at=pkg.installed_at,
            dependents=dependents,
        )

        # 1. usage
        days_used = self._days_since_last_use(name, now)
        s.usage_score = usage_points(days_used)
        s.explanation.usage_detail = (
            "never observed execution" if days_used is None else f"last used {days_used} days ago"
        )

        # 2. dependents
        used = 0
        if 0 < len(dependents) <= 3:
            for dep in dependents:
                d = self._days_since_last_use(dep, now)
                if d is not None and d <= DEPENDENT_RECENT_DAYS:
                    used += 1
        s.deps_score = deps_points(len(dependents), used)
        if not dependents:
            s.explanation.deps_detail = "no dependents"
        elif len(dependents) <= 3:
            s.explanation.deps_detail = f"{len(dependents)} dependents, {used} used in the last 30 days"
        else:
            s.explanation.deps_detail = f"{len(dependents)} dependents"

        # 3. age
        days_installed = days_between(pkg.installed_at, now)
        s.age_score = age_points(days_installed)
        s.explanation.age_detail = f"installed {days_installed} days ago"

        # 4. type
        s.is_critical = is_core_dependency(name)
        s.type_score = type_points(name, pkg.has_binary, len(dependents))
        if s.is_critical:
            s.explanation.type_detail = "core dependency"
        elif pkg.has_binary and not dependents:
            s.explanation.type_detail = "leaf package with binaries"
        elif not pkg.has_binary:
            s.explanation.type_detail = "library-only"
        else:
            s.explanation.type_detail = "has binaries and dependents"

        # sum, then cap
        total = s.raw_score
        if s.is_critical and total > CRITICAL_CAP:
            s.criticality_penalty = total - CRITICAL_CAP
            total = CRITICAL_CAP
        s.score = total
        s.tier = tier_for(total)
        s.reason = _reason(s, pkg.has_binary)
        return s

    def score_all(self) -> list[ConfidenceScore]:
        # one score per installed package, in name order
        out = []
        for pkg in self.store.list_packages():
            try:
                out.append(self.score(pkg.name))
            except PackageNotFoundError:  # removed by a concurrent scan
                continue
        return out

    def packages_by_tier(self, tier: str) -> list[ConfidenceScore]:
        if tier not in TIERS:
            raise InvalidTierError(f"invalid tier: {tier} (must be safe, medium, or risky)")
        return [s for s in self.score_all() if s.tier == tier]
