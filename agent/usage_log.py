# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: ingest the shim usage log into the store. each call (a "tick") reads the bytes appended since the
last checkpoint, resolves every "<unix_nano>,<argv0>" line to a package, commits the resulting events in
one transaction, and only then moves the checkpoint forward.

the checkpoint is a byte offset in its own file, replaced atomically (temp file + rename). a crash after
the commit but before the rename means the next tick replays the same region; the store ignores the
duplicates, so nothing is lost and nothing is counted twice.

log format (one entry per line, written by agent/shim.py):
    1709012345678901234,/Users/alice/.prunewatch/bin/git
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from agent.resolver import BinaryResolver
from store.db import Store, StoreError
from store.models import EVENT_EXEC, EVENT_PROBE, UsageEvent

log = logging.getLogger(__name__)

MAX_LINES_PER_TICK = 10_000  # bounds a tick even when the log is flooded; the rest waits for the next one


class UsageLogError(Exception):
    """a tick could not be completed; the checkpoint was left where it was"""


@dataclass
class TickResult:
    old_offset: int = 0
    new_offset: int = 0
    lines_scanned: int = 0
    events_resolved: int = 0
    events_inserted: int = 0
    malformed: int = 0
    unresolved: int = 0


def parse_line(line: str) -> tuple[int, str] | None:
    """split "<unix_nano>,<argv0>"; None for anything malformed"""
    idx = line.find(",")
    if idx <= 0 or idx >= len(line) - 1:  # missing separator, empty timestamp, or empty path
        return None
    ts_str, argv0 = line[:idx], line[idx + 1 :]
    if not (ts_str.isascii() and ts_str.isdigit()):
        return None
    ts = int(ts_str)
    if ts <= 0:
        return None
    return ts, argv0


def is_config_probe(name: str) -> bool:
    # build systems call pkg-config / foo-config on their own; those calls say nothing about the user
    return name == "pkg-config" or name.endswith("-config")


def read_offset(offset_path: str) -> int:
    """checkpoint offset, 0 when missing, empty, or unreadable"""
    try:
        with open(offset_path, encoding="utf-8") as f:
            raw = f.read().strip()
    except FileNotFoundError:
        return 0
    except OSError as exc:
        log.warning("cannot read checkpoint %s, rescanning from start: %s", offset_path, exc)
        return 0
    if not raw:
        return 0
    try:
        offset = int(raw)
    except ValueError:
        log.warning("checkpoint %s holds %r, rescanning from start", offset_path, raw)
        return 0
    if offset < 0:
        log.warning("checkpoint %s is negative (%d), rescanning from start", offset_path, offset)
        return 0
    return offset


def write_offset_atomic(offset_path: str, offset: int) -> None:
    tmp_path = os.path.join(os.path.dirname(os.path.abspath(offset_path)), ".offset.tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(str(offset))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, offset_path)
    except OSError as exc:
        raise UsageLogError(f"failed to write checkpoint {offset_path} (offset={offset}): {exc}") from exc


def process_usage_log(
    store: Store,
    log_path: str,
    offset_path: str,
    max_lines: int = MAX_LINES_PER_TICK,
    aliases: Mapping[str, str] | None = None,
) -> TickResult:
    """
    Run one ingestion tick. A missing log is a no-op. Malformed and unresolvable lines are skipped
    but still consumed. `aliases` maps user alias names to packages (see agent.shim.load_aliases).
    Raises UsageLogError when the batch cannot be committed or the checkpoint cannot be written; in
    both cases the stored checkpoint still points at uncommitted bytes.
    """
    if not os.path.exists(log_path):  # shims not set up yet
        return TickResult()

    offset = read_offset(offset_path)
    result = TickResult(old_offset=offset)

    try:
        resolver = BinaryResolver(store.list_packages(), aliases=aliases)
    except StoreError as exc:
        raise UsageLogError(f"cannot load package inventory: {exc}") from exc

    events: list[UsageEvent] = []
    try:
        with open(log_path, "rb") as f:
            size = os.fstat(f.fileno()).st_size
            start = offset
            if offset > size:  # log was truncated or rotated under us
                log.warning(
                    "checkpoint %d is past end of %s (%d bytes), rescanning from start",
                    offset,
                    log_path,
                    size,
                )
                start = 0
            f.seek(start)
            pos = start

            while result.lines_scanned < max_lines:
                raw = f.readline()
                if not raw:
                    break
                if not raw.endswith(b"\n"):  # a shim is mid-write; leave it for the next tick
                    break
                pos += len(raw)
                result.lines_scanned += 1

                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if not line:
                    continue
                parsed = parse_line(line)
                if parsed is None:
                    log.warning("skipping malformed line at byte %d: %r", pos - len(raw), line)
                    result.malformed += 1
                    continue
                ts_ns, argv0 = parsed

                pkg = resolver.resolve(argv0)
                if pkg is None:  # not a tracked binary (uninstalled but still shimmed, etc.)
                    result.unresolved += 1
                    continue

                kind = EVENT_PROBE if is_config_probe(os.path.basename(argv0)) else EVENT_EXEC
                events.append(UsageEvent(pkg, kind, argv0, ts_ns))
    except OSError as exc:
        raise UsageLogError(f"failed to read {log_path} from offset {offset}: {exc}") from exc

    result.events_resolved = len(events)
    result.new_offset = pos

    if events:
        try:
            result.events_inserted = store.insert_usage_events_batch(events)
        except StoreError as exc:
            raise UsageLogError(
                f"commit failed for {len(events)} events "
                f"(packages {sorted({e.package for e in events})[:5]}, bytes {start}-{pos}): {exc}"
            ) from exc

    # advance even when nothing resolved, so unknown binaries are not rescanned forever
    if pos != offset:
        write_offset_atomic(offset_path, pos)

    if result.lines_scanned:
        log.info(
            "ingested %d/%d lines (%d events, %d new), offset %d -> %d",
            result.lines_scanned,
            max_lines,
            result.events_resolved,
            result.events_inserted,
            offset,
            pos,
        )
    return result
