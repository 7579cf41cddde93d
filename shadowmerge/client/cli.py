"""cli.py: command line for shadowmerge

Commands:
  snapshot FILE...                     capture FILE's disk content as its shadow base
  show FILE                            print the shadow base of FILE
  merge FILE --buffer BUF [--silent]   3-way merge BUF (your edits) + FILE (disk) + shadow
  merge-file ANCESTOR LOCAL EXTERNAL   stateless 3-way merge of three files
  diff FILE --buffer BUF               write LOCAL/BASE/EXTERNAL copies for a 3-pane viewer
  list                                 list tracked paths
  forget FILE                          drop the shadow of FILE

For `merge`, BUF plays the editor buffer: the merge result is written into
BUF and, when clean, saved into FILE (and the shadow refreshed).

Exit codes:
  0 = clean merge / OK
  1 = merged with conflicts (or silent merge aborted on conflicts)
  2 = cannot merge (no shadow base, binary content, I/O error, bad usage)
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional, Sequence

from ..core.config import ShadowMergeConfig, load_config
from ..core.errors import ConfigError, MalformedInputError, ShadowMergeError, StoreIOError
from ..core.merge3 import merge3_lines
from ..core.snapshot_store import SnapshotStore
from ..core.text import join_lines, read_text_lines
from ..core.tracker import (
    ChangeTracker,
    DiffViewPaths,
    ExternalAction,
    Level,
    MergeStatus,
)

EXIT_OK = 0
EXIT_CONFLICTS = 1
EXIT_CANNOT_MERGE = 2


def _write_lines(path: str, lines: Sequence[str]) -> None:
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        f.write(join_lines(lines))


class FileBufferHost:
    """Editor host backed by a plain file standing in for the buffer of FILE."""

    def __init__(self, buffer_path: str, store: SnapshotStore) -> None:
        self.buffer_path = os.path.abspath(buffer_path)
        self.store = store

    def buffer_lines(self, path: str) -> List[str]:
        return read_text_lines(self.buffer_path)

    def disk_lines(self, path: str) -> List[str]:
        return read_text_lines(path)

    def is_modified(self, path: str) -> bool:
        base = self.store.get(path)
        if base is None:
            return True
        return tuple(self.buffer_lines(path)) != base.lines

    def apply_merged_lines(self, path: str, lines: List[str]) -> None:
        _write_lines(self.buffer_path, lines)

    def save(self, path: str) -> None:
        _write_lines(path, self.buffer_lines(path))

    def reload(self, path: str) -> None:
        _write_lines(self.buffer_path, self.disk_lines(path))

    def notify(self, message: str, level: Level) -> None:
        print(f"[{level.value}] {message}", file=sys.stderr)

    def notify_conflicts(self, path: str, count: int, first_line: Optional[int]) -> None:
        where = f" (first at line {first_line + 1})" if first_line is not None else ""
        print(f"[warn] Merged with {count} conflict(s){where} - search for <<<<<<< in {self.buffer_path}", file=sys.stderr)

    def notify_clean_merge(self, path: str) -> None:
        print(f"[info] Merged cleanly and saved {path}", file=sys.stderr)

    def choose_external_action(self, path: str) -> ExternalAction:
        return ExternalAction.IGNORE

    def open_diff_view(self, paths: DiffViewPaths) -> None:
        print(paths.local)
        print(paths.base)
        print(paths.external)


def run_snapshot(store: SnapshotStore, files: List[str]) -> int:
    rc = EXIT_OK
    for fn in files:
        try:
            snap = store.update_from_disk(fn)
        except (StoreIOError, MalformedInputError) as e:
            print(f"{fn}: {e}", file=sys.stderr)
            rc = EXIT_CANNOT_MERGE
            continue
        if snap is None:
            print(f"{fn}: not a readable file", file=sys.stderr)
            rc = EXIT_CANNOT_MERGE
            continue
        print(f"captured {snap.path} (#{snap.captured_at}, {len(snap.lines)} lines)")
    return rc


def run_show(store: SnapshotStore, fn: str) -> int:
    snap = store.get(fn)
    if snap is None:
        print(f"{fn}: no shadow base", file=sys.stderr)
        return EXIT_CANNOT_MERGE
    sys.stdout.write(snap.text())
    return EXIT_OK


def run_merge(store: SnapshotStore, cfg: ShadowMergeConfig, fn: str, buffer_path: str, silent: bool) -> int:
    tracker = ChangeTracker(FileBufferHost(buffer_path, store), store, cfg)
    outcome = tracker.merge(fn, silent=silent)
    if outcome.status in (MergeStatus.MERGED, MergeStatus.RELOADED):
        return EXIT_OK
    if outcome.status in (MergeStatus.CONFLICTS, MergeStatus.ABORTED):
        return EXIT_CONFLICTS
    return EXIT_CANNOT_MERGE


def run_merge_file(ancestor: str, local: str, external: str, out: Optional[str]) -> int:
    result = merge3_lines(read_text_lines(ancestor), read_text_lines(local), read_text_lines(external))
    if out:
        _write_lines(out, result.lines)
    else:
        sys.stdout.write(result.text())
    if not result.clean:
        print(f"{result.conflict_count} conflict(s)", file=sys.stderr)
        return EXIT_CONFLICTS
    return EXIT_OK


def run_diff(store: SnapshotStore, cfg: ShadowMergeConfig, fn: str, buffer_path: str, out_dir: Optional[str]) -> int:
    tracker = ChangeTracker(FileBufferHost(buffer_path, store), store, cfg)
    tracker.prepare_diff(fn, out_dir)
    return EXIT_OK


def run_list(store: SnapshotStore) -> int:
    for p in store.tracked_paths():
        print(p)
    return EXIT_OK


def run_forget(store: SnapshotStore, fn: str) -> int:
    if not store.forget(fn):
        print(f"{fn}: no shadow base", file=sys.stderr)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="shadowmerge", description="Shadow-snapshot 3-way merge for edited files.")
    ap.add_argument("--shadow-dir", default=None, help="Shadow store directory (default: ~/.cache/shadowmerge/shadows).")
    ap.add_argument("--config", default=None, help="JSON config file (default: ~/.config/shadowmerge/shadowmerge.json if present).")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr.")
    sub = ap.add_subparsers(dest="cmd")

    snap = sub.add_parser("snapshot", help="Capture files' current disk content as their shadow base.")
    snap.add_argument("files", nargs="+")

    show = sub.add_parser("show", help="Print the shadow base of a file.")
    show.add_argument("file")

    merge = sub.add_parser("merge", help="3-way merge a buffer file against disk using the shadow base.")
    merge.add_argument("file")
    merge.add_argument("--buffer", required=True, help="File holding the edited (unsaved) content.")
    merge.add_argument("--silent", action="store_true", help="Abort without writing anything if conflicts appear.")

    mf = sub.add_parser("merge-file", help="Stateless 3-way merge of ANCESTOR, LOCAL and EXTERNAL files.")
    mf.add_argument("ancestor")
    mf.add_argument("local")
    mf.add_argument("external")
    mf.add_argument("-o", "--output", default=None, help="Write the result here instead of stdout.")

    diff = sub.add_parser("diff", help="Write LOCAL/BASE/EXTERNAL copies for a 3-pane diff viewer.")
    diff.add_argument("file")
    diff.add_argument("--buffer", required=True)
    diff.add_argument("--out-dir", default=None)

    sub.add_parser("list", help="List tracked paths.")

    forget = sub.add_parser("forget", help="Drop the shadow base of a file.")
    forget.add_argument("file")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.cmd:
        ap.print_usage(sys.stderr)
        return EXIT_CANNOT_MERGE

    try:
        if args.cmd == "merge-file":
            return run_merge_file(args.ancestor, args.local, args.external, args.output)

        cfg = load_config(args.config, overrides={"shadow_dir": args.shadow_dir})
        store = SnapshotStore(cfg.shadow_dir, ledger=cfg.ledger)

        if args.cmd == "snapshot":
            return run_snapshot(store, list(args.files))
        if args.cmd == "show":
            return run_show(store, args.file)
        if args.cmd == "merge":
            return run_merge(store, cfg, args.file, args.buffer, bool(args.silent))
        if args.cmd == "diff":
            return run_diff(store, cfg, args.file, args.buffer, args.out_dir)
        if args.cmd == "list":
            return run_list(store)
        if args.cmd == "forget":
            return run_forget(store, args.file)
    except ConfigError as e:
        print(f"config error: {e}", file=sys.stderr)
        for msg in e.errors:
            print(f"  - {msg}", file=sys.stderr)
        return EXIT_CANNOT_MERGE
    except ShadowMergeError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_CANNOT_MERGE
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_CANNOT_MERGE

    ap.print_usage(sys.stderr)
    return EXIT_CANNOT_MERGE
