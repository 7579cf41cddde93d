"""tracker.py

Host-boundary orchestration: decides *when* to capture shadows and when to
merge, in response to explicit editor lifecycle calls.

Lifecycle:
  - on_open / on_save          capture the file's disk content as the new shadow
  - on_external_change         the file changed on disk while the buffer is open
      * buffer unmodified      reload and re-capture (no merge needed)
      * auto_merge             silent merge; aborts without touching the buffer on conflicts
      * auto_prompt            ask the host: merge / diff / reload / ignore
  - merge                      3-way merge buffer (LOCAL) + disk (EXTERNAL) + shadow (ANCESTOR)
  - prepare_diff               materialize LOCAL / BASE / EXTERNAL copies for a 3-pane viewer

Design notes:
  - The tracker never reads ambient editor state: every call names its path
    and the host hands over buffer/disk lines explicitly.
  - get + merge + re-capture for one path run under the store's per-path lock.
  - Failures are reported through the host; the buffer is only written with
    a complete merge result.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol, Sequence

from .config import ShadowMergeConfig
from .conflict import first_conflict_line
from .errors import MalformedInputError, StoreIOError
from .merge3 import merge3_lines
from .snapshot_store import Snapshot, SnapshotStore, normalize_path
from .text import join_lines

logger = logging.getLogger(__name__)


class Level(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ExternalAction(str, Enum):
    MERGE = "merge"
    DIFF = "diff"
    RELOAD = "reload"
    IGNORE = "ignore"


class MergeStatus(str, Enum):
    MERGED = "merged"            # clean merge applied and saved
    CONFLICTS = "conflicts"      # conflict-annotated result applied
    ABORTED = "aborted"          # silent merge hit conflicts; nothing applied
    RELOADED = "reloaded"        # buffer had no local edits; reloaded from disk
    NO_BASELINE = "no_baseline"  # no shadow captured for this path
    FAILED = "failed"            # unreadable disk/shadow, binary content, save error


@dataclass(frozen=True)
class MergeOutcome:
    path: str
    status: MergeStatus
    conflict_count: int = 0
    first_conflict_line: Optional[int] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status in (MergeStatus.MERGED, MergeStatus.RELOADED)


@dataclass(frozen=True)
class DiffViewPaths:
    local: str
    base: str
    external: str


class EditorHost(Protocol):
    """What the tracker needs from the editing environment."""

    def buffer_lines(self, path: str) -> Sequence[str]: ...

    def disk_lines(self, path: str) -> Sequence[str]: ...

    def is_modified(self, path: str) -> bool: ...

    def apply_merged_lines(self, path: str, lines: List[str]) -> None: ...

    def save(self, path: str) -> None: ...

    def reload(self, path: str) -> None: ...

    def notify(self, message: str, level: Level) -> None: ...

    def notify_conflicts(self, path: str, count: int, first_line: Optional[int]) -> None: ...

    def notify_clean_merge(self, path: str) -> None: ...

    def choose_external_action(self, path: str) -> ExternalAction: ...

    def open_diff_view(self, paths: DiffViewPaths) -> None: ...


class ChangeTracker:
    def __init__(self, host: EditorHost, store: SnapshotStore, config: ShadowMergeConfig) -> None:
        self.host = host
        self.store = store
        self.config = config

    # -----------------------------
    # Shadow capture
    # -----------------------------

    def on_open(self, path: str) -> Optional[Snapshot]:
        return self._capture(normalize_path(path))

    def on_save(self, path: str) -> Optional[Snapshot]:
        return self._capture(normalize_path(path))

    def _capture(self, canon: str) -> Optional[Snapshot]:
        try:
            return self.store.update_from_disk(canon)
        except StoreIOError as e:
            self.host.notify(f"Shadow base not updated: {e}", Level.WARN)
        except MalformedInputError as e:
            logger.debug("not tracking %s: %s", canon, e)
        return None

    # -----------------------------
    # Merge
    # -----------------------------

    def merge(self, path: str, *, silent: bool = False) -> MergeOutcome:
        """3-way merge buffer + disk + shadow for path."""
        canon = normalize_path(path)
        with self.store.lock_for(canon):
            outcome = self._merge_locked(canon, silent)
        self.store.append_event(
            "merge/complete",
            {
                "path": canon,
                "status": outcome.status.value,
                "conflict_count": outcome.conflict_count,
                "silent": silent,
            },
        )
        logger.info("merge %s: %s (%d conflict(s))", canon, outcome.status.value, outcome.conflict_count)
        return outcome

    def _fail(self, canon: str, message: str) -> MergeOutcome:
        self.host.notify(message, Level.ERROR)
        return MergeOutcome(path=canon, status=MergeStatus.FAILED, message=message)

    def _merge_locked(self, canon: str, silent: bool) -> MergeOutcome:
        host = self.host

        if not host.is_modified(canon):
            host.reload(canon)
            self._capture(canon)
            msg = "Reloaded (no local changes)"
            if not silent:
                host.notify(msg, Level.INFO)
            return MergeOutcome(path=canon, status=MergeStatus.RELOADED, message=msg)

        try:
            base = self.store.get(canon)
        except (StoreIOError, MalformedInputError) as e:
            return self._fail(canon, f"Cannot read shadow base: {e}")

        if base is None:
            msg = "No shadow base found, cannot merge. Reload to discard local changes."
            if not silent:
                host.notify(msg, Level.WARN)
            return MergeOutcome(path=canon, status=MergeStatus.NO_BASELINE, message=msg)

        try:
            external = list(host.disk_lines(canon))
        except OSError as e:
            return self._fail(canon, f"Merge failed: cannot read {canon}: {e}")
        except MalformedInputError as e:
            return self._fail(canon, f"Cannot merge this file type: {e}")

        local = list(host.buffer_lines(canon))
        try:
            result = merge3_lines(base.lines, local, external)
        except MalformedInputError as e:
            return self._fail(canon, f"Cannot merge this file type: {e}")

        merged = list(result.lines)
        if not result.clean:
            n = result.conflict_count
            if silent:
                msg = f"Auto-merge aborted: {n} conflict(s) detected. Merge manually to resolve."
                host.notify(msg, Level.WARN)
                return MergeOutcome(path=canon, status=MergeStatus.ABORTED, conflict_count=n, message=msg)
            first = first_conflict_line(merged)
            host.apply_merged_lines(canon, merged)
            host.notify_conflicts(canon, n, first)
            return MergeOutcome(
                path=canon,
                status=MergeStatus.CONFLICTS,
                conflict_count=n,
                first_conflict_line=first,
                message=f"Merged with {n} conflict(s) - search for <<<<<<<",
            )

        host.apply_merged_lines(canon, merged)
        try:
            host.save(canon)
        except OSError as e:
            return self._fail(canon, f"Merged, but saving {canon} failed: {e}")
        try:
            self.store.update(canon, merged)
        except (StoreIOError, MalformedInputError) as e:
            host.notify(f"Shadow base not updated: {e}", Level.WARN)
        host.notify_clean_merge(canon)
        return MergeOutcome(path=canon, status=MergeStatus.MERGED, message="Merged cleanly and saved")

    # -----------------------------
    # Diff view
    # -----------------------------

    def prepare_diff(self, path: str, out_dir: Optional[str] = None) -> DiffViewPaths:
        """Write LOCAL / BASE / EXTERNAL copies and hand them to the host's viewer.

        BASE is empty when no shadow exists; EXTERNAL is empty if the file is unreadable.
        """
        canon = normalize_path(path)
        target = out_dir or tempfile.mkdtemp(prefix="shadowmerge-")
        os.makedirs(target, exist_ok=True)
        name = os.path.basename(canon)

        with self.store.lock_for(canon):
            local = list(self.host.buffer_lines(canon))
            try:
                base = self.store.get(canon)
            except (StoreIOError, MalformedInputError) as e:
                logger.warning("diff view without base for %s: %s", canon, e)
                base = None
            try:
                external = list(self.host.disk_lines(canon))
            except (OSError, MalformedInputError) as e:
                logger.warning("diff view without disk content for %s: %s", canon, e)
                external = []

        paths = DiffViewPaths(
            local=os.path.join(target, f"{name}.LOCAL"),
            base=os.path.join(target, f"{name}.BASE"),
            external=os.path.join(target, f"{name}.EXTERNAL"),
        )
        for fn, lines in (
            (paths.local, local),
            (paths.base, list(base.lines) if base is not None else []),
            (paths.external, external),
        ):
            with open(fn, "w", encoding="utf-8", newline="\n") as f:
                f.write(join_lines(lines))

        self.host.open_diff_view(paths)
        self.host.notify("Left: local | Middle: base (last save) | Right: external (disk)", Level.INFO)
        return paths

    # -----------------------------
    # External change
    # -----------------------------

    def on_external_change(self, path: str, buffer_is_modified: bool) -> Optional[MergeOutcome]:
        canon = normalize_path(path)
        if not buffer_is_modified:
            self.host.reload(canon)
            self._capture(canon)
            return None

        if self.config.auto_merge:
            return self.merge(canon, silent=True)
        if not self.config.auto_prompt:
            return None

        action = self.host.choose_external_action(canon)
        if action is ExternalAction.MERGE:
            return self.merge(canon)
        if action is ExternalAction.DIFF:
            self.prepare_diff(canon)
        elif action is ExternalAction.RELOAD:
            self.host.reload(canon)
            self._capture(canon)
        return None
