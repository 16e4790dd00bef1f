# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: command line front end for prunewatch. wires the config, the store, the package manager and the
agents together behind a handful of subcommands:

    prunewatch scan                    refresh the inventory and the shim symlinks
    prunewatch watch [--daemon|--stop] run ingestion in the foreground, or start/stop the daemon
    prunewatch status                  daemon state, tracking stats, PATH check
    prunewatch explain <pkg>           score breakdown for one package
    prunewatch unused [--tier T]       packages ranked by removal confidence
    prunewatch stats [--package P]     usage numbers

every known failure is reported as a single "Error: ..." line with exit code 1.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import argparse  # for parsing command line arguments
import logging  # for daemon and diagnostic output
import os  # for file sizes
import sys  # for argv, stdout/stderr, and the interpreter path
import time  # for formatting timestamps
from typing import Any  # type hint for the colour table

from colorama import Fore, Style  # tier colours
from colorama import init as _colorama_init  # ANSI support on every terminal
from dotenv import load_dotenv  # PRUNEWATCH_* settings from a .env file

from agent.daemon import DaemonError, DaemonSupervisor, PidGuard, UsageWatcher
from agent.inventory import scan_inventory
from agent.shim import load_aliases
from agent.shim_setup import (
    ShimSetupError,
    find_shim_executable,
    path_status,
    sync_shims,
    write_shim_version,
)
from agent.usage_log import UsageLogError, process_usage_log, read_offset
from algorithm.confidence import TIERS, ConfidenceScorer, InvalidTierError
from algorithm.usage_stats import recommendations, usage_stats, usage_trends
from app.config import Config, load_config
from pkgmgr.brew import BrewError, Homebrew
from store.db import Store, StoreError

log = logging.getLogger("prunewatch")

DAEMON_LOG_FORMAT = "%(asctime)s prunewatch-watch: %(message)s"
RECENT_USE_DAYS = 7  # window for the use-count column of `unused`

KNOWN_ERRORS = (StoreError, UsageLogError, DaemonError, BrewError, ShimSetupError, InvalidTierError)


# --- output helpers ---
def _colors(enabled: bool) -> dict[str, Any]:
    # empty strings when colour is off so format strings stay the same
    if not enabled:
        return {k: "" for k in ("safe", "medium", "risky", "bold", "dim", "ok", "bad", "reset")}
    return {
        "safe": Fore.GREEN,
        "medium": Fore.YELLOW,
        "risky": Fore.RED,
        "bold": Style.BRIGHT,
        "dim": Style.DIM,
        "ok": Fore.GREEN,
        "bad": Fore.RED,
        "reset": Style.RESET_ALL,
    }


def _fmt_size(n: int) -> str:
    size = float(n)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def _fmt_time(ts: float | None) -> str:
    if ts is None:
        return "never"
    return time.strftime("%Y-%m-%d %H:%M", time.localtime(ts))


def _open_store(cfg: Config) -> Store:
    store = Store(str(cfg.db_path))
    store.create_schema()
    return store


def _guard(cfg: Config) -> PidGuard:
    return PidGuard(str(cfg.pid_file))


def _supervisor(cfg: Config) -> DaemonSupervisor:
    child = [sys.executable, "-m", "app.console", "watch", "--daemon-child"]
    return DaemonSupervisor(
        _guard(cfg), str(cfg.watch_log_file), child, stop_timeout_sec=cfg.stop_timeout_sec
    )


# --- commands ---
def cmd_scan(cfg: Config, args: argparse.Namespace, c: dict[str, Any]) -> int:
    store = _open_store(cfg)
    try:
        result = scan_inventory(store, Homebrew())
        installed = {p.name for p in store.list_packages()}
    finally:
        store.close()

    print(
        f"{c['bold']}Scanned {result.packages} packages{c['reset']} "
        f"({result.with_binaries} with binaries, {result.dependencies} dependency edges)"
    )
    if result.removed:
        print(f"No longer installed: {', '.join(result.removed)}")

    if args.no_shims:
        return 0
    aliases = load_aliases(str(cfg.aliases_path))
    linked = sorted(a for a, pkg in aliases.items() if pkg in installed)
    for alias in sorted(set(aliases) - set(linked)):
        print(f"{c['medium']}Alias {alias} skipped: {aliases[alias]} is not installed{c['reset']}")
    sync = sync_shims(str(cfg.shim_dir), result.binary_paths, find_shim_executable(), aliases=linked)
    write_shim_version(str(cfg.base_dir))
    print(
        f"Shims: {len(sync.created)} created, {len(sync.removed)} removed, {sync.kept} unchanged "
        f"in {cfg.shim_dir}"
    )
    if linked:
        print(f"Aliases: {', '.join(f'{a} -> {aliases[a]}' for a in linked)}")
    ok, hint = path_status(str(cfg.shim_dir))
    if not ok:
        print(f"{c['medium']}{hint}{c['reset']}")
    return 0


def _run_watcher(cfg: Config) -> None:
    store = _open_store(cfg)
    try:
        watcher = UsageWatcher(
            lambda: process_usage_log(
                store,
                str(cfg.usage_log_path),
                str(cfg.offset_path),
                cfg.max_lines_per_tick,
                aliases=load_aliases(str(cfg.aliases_path)),  # re-read so edits apply without a restart
            ),
            interval_sec=cfg.tick_interval_sec,
            guard=_guard(cfg),
        )
        watcher.install_signal_handlers()
        log.info("watching %s every %.0fs (PID %d)", cfg.usage_log_path, cfg.tick_interval_sec, os.getpid())
        watcher.run()
        log.info("stopped after %d ticks", watcher.ticks)
    finally:
        store.close()


def cmd_watch(cfg: Config, args: argparse.Namespace, c: dict[str, Any]) -> int:
    if args.daemon_child:
        # stderr is the daemon log here (redirected by DaemonSupervisor.start)
        logging.basicConfig(
            level=logging.INFO, format=DAEMON_LOG_FORMAT, stream=sys.stderr, force=True
        )
        _run_watcher(cfg)
        return 0

    sup = _supervisor(cfg)
    if args.stop:
        pid = sup.running_pid()
        if not sup.stop():
            print("Daemon is not running.")
            return 0
        print(f"{c['ok']}Daemon stopped{c['reset']} (PID {pid})")
        return 0

    if args.daemon:
        pid, started = sup.start()
        if started:
            print(f"{c['ok']}Daemon started{c['reset']} (PID {pid}), logging to {cfg.watch_log_file}")
        else:
            print(f"Daemon already running (PID {pid})")
        return 0

    # foreground: only one ingestion loop per log/checkpoint pair
    pid = sup.running_pid()
    if pid is not None:
        raise DaemonError(f"daemon already running (PID {pid}); stop it with 'prunewatch watch --stop'")
    logging.getLogger().setLevel(logging.INFO)
    print(f"Watching {cfg.usage_log_path}, press Ctrl+C to stop.")
    _run_watcher(cfg)
    return 0


def cmd_status(cfg: Config, args: argparse.Namespace, c: dict[str, Any]) -> int:
    pid = _supervisor(cfg).running_pid()
    if pid is not None:
        print(f"Daemon:     {c['ok']}running{c['reset']} (PID {pid})")
    else:
        print(f"Daemon:     {c['bad']}stopped{c['reset']}")

    store = _open_store(cfg)
    try:
        packages = len(store.list_packages())
        events = store.get_event_count()
        since = store.get_first_event_time()
    finally:
        store.close()
    print(f"Packages:   {packages}")
    print(f"Events:     {events}")
    print(f"Tracking:   since {_fmt_time(since)}")

    log_path = str(cfg.usage_log_path)
    size = os.path.getsize(log_path) if os.path.exists(log_path) else 0
    offset = read_offset(str(cfg.offset_path))
    print(f"Usage log:  {_fmt_size(size)}, {_fmt_size(max(size - offset, 0))} pending")

    ok, hint = path_status(str(cfg.shim_dir))
    if ok:
        print(f"Shims:      {c['ok']}on PATH{c['reset']} ({cfg.shim_dir})")
    else:
        print(f"Shims:      {c['bad']}not active{c['reset']}\n{hint}")
    return 0


def cmd_explain(cfg: Config, args: argparse.Namespace, c: dict[str, Any]) -> int:
    store = _open_store(cfg)
    try:
        s = ConfidenceScorer(store).score(args.package)
    finally:
        store.close()
    e = s.explanation
    tier_c = c[s.tier]
    print(f"{c['bold']}{s.package}{c['reset']}: {tier_c}{s.score}/100 ({s.tier}){c['reset']}")
    print(f"  usage      {s.usage_score:>3}/40  {e.usage_detail}")
    print(f"  dependents {s.deps_score:>3}/30  {e.deps_detail}")
    print(f"  age        {s.age_score:>3}/20  {e.age_detail}")
    print(f"  type       {s.type_score:>3}/10  {e.type_detail}")
    if s.criticality_penalty:
        print(f"  critical   {-s.criticality_penalty:>3}     core dependency (capped at 70)")
    if s.dependents:
        print(f"  needed by: {', '.join(s.dependents)}")
    print(f"Reason: {s.reason}")
    return 0


def cmd_unused(cfg: Config, args: argparse.Namespace, c: dict[str, Any]) -> int:
    store = _open_store(cfg)
    try:
        scorer = ConfidenceScorer(store)
        scores = scorer.packages_by_tier(args.tier) if args.tier else scorer.score_all()
        rec = recommendations(scorer)
        week_ago = time.time() - RECENT_USE_DAYS * 86400
        recent = {s.package: store.get_usage_event_count_since(s.package, week_ago) for s in scores}
    finally:
        store.close()

    scores.sort(key=lambda s: (-s.score, -s.size_bytes, s.package))
    if not scores:
        print("No packages to show. Run 'prunewatch scan' first.")
        return 0
    width = max(len(s.package) for s in scores)
    for s in scores:
        print(
            f"{s.package:<{width}}  {c[s.tier]}{s.score:>3} {s.tier:<6}{c['reset']}  "
            f"{_fmt_size(s.size_bytes):>9}  {recent[s.package]:>4} uses/{RECENT_USE_DAYS}d  {s.reason}"
        )
    if rec.packages:
        print(
            f"\n{c['safe']}{len(rec.packages)} packages safe to remove{c['reset']}, "
            f"about {_fmt_size(rec.expected_savings)} reclaimable"
        )
    return 0


def cmd_stats(cfg: Config, args: argparse.Namespace, c: dict[str, Any]) -> int:
    store = _open_store(cfg)
    try:
        if args.package:
            st = usage_stats(store, args.package)
            print(f"{c['bold']}{st.package}{c['reset']}")
            print(f"  uses:       {st.total_uses}")
            print(f"  last used:  {_fmt_time(st.last_used)}")
            print(f"  installed:  {_fmt_time(st.first_seen)}")
            print(f"  frequency:  {st.frequency}")
            return 0
        trends = usage_trends(store, args.days)
    finally:
        store.close()

    used = sorted((s for s in trends.values() if s.total_uses), key=lambda s: (-s.total_uses, s.package))
    print(f"Usage over the last {args.days} days:")
    for st in used:
        print(f"  {st.package:<24} {st.total_uses:>6} uses  {st.frequency:<8} last {_fmt_time(st.last_used)}")
    print(f"{len(used)} used, {len(trends) - len(used)} never seen")
    return 0


COMMANDS = {
    "scan": cmd_scan,
    "watch": cmd_watch,
    "status": cmd_status,
    "explain": cmd_explain,
    "unused": cmd_unused,
    "stats": cmd_stats,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prunewatch", description="track which Homebrew packages you actually use"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="show informational logs")
    parser.add_argument("--no-color", action="store_true", help="plain output without ANSI colours")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("scan", help="refresh the package inventory and shims")
    p.add_argument("--no-shims", action="store_true", help="only update the inventory")

    p = sub.add_parser("watch", help="ingest usage in the foreground or control the daemon")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--daemon", action="store_true", help="start the background daemon")
    mode.add_argument("--stop", action="store_true", help="stop the background daemon")
    mode.add_argument("--daemon-child", action="store_true", help=argparse.SUPPRESS)

    sub.add_parser("status", help="daemon and tracking status")

    p = sub.add_parser("explain", help="score breakdown for one package")
    p.add_argument("package")

    p = sub.add_parser("unused", help="packages ranked by removal confidence")
    p.add_argument("--tier", choices=TIERS, help="only show one tier")

    p = sub.add_parser("stats", help="usage statistics")
    p.add_argument("--package", help="stats for a single package")
    p.add_argument("--days", type=int, default=30, help="window for the overview (default 30)")
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()  # load .env file if it exists
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )
    use_color = not args.no_color and sys.stdout.isatty()
    if use_color:
        _colorama_init()  # ANSI on Windows terminals too
    c = _colors(use_color)

    try:
        cfg = load_config()
        return COMMANDS[args.command](cfg, args, c)
    except KNOWN_ERRORS as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
