"""test_tracker.py

Change tracker against an in-memory editor host with real files on disk.

Run:
  python -m tools.test_tracker
"""

from __future__ import annotations

import os
import tempfile
from typing import Dict, List, Optional, Sequence, Set, Tuple

from shadowmerge.core.config import ShadowMergeConfig
from shadowmerge.core.snapshot_store import SnapshotStore, normalize_path
from shadowmerge.core.text import join_lines, read_text_lines
from shadowmerge.core.tracker import (
    ChangeTracker,
    DiffViewPaths,
    ExternalAction,
    Level,
    MergeStatus,
)


class FakeHost:
    def __init__(self) -> None:
        self.buffers: Dict[str, List[str]] = {}
        self.modified: Set[str] = set()
        self.notes: List[Tuple[Level, str]] = []
        self.conflicts: List[Tuple[str, int, Optional[int]]] = []
        self.clean: List[str] = []
        self.diff_views: List[DiffViewPaths] = []
        self.action = ExternalAction.IGNORE
        self.fail_save = False

    # helpers used by the tests
    def open(self, path: str) -> str:
        canon = normalize_path(path)
        self.buffers[canon] = read_text_lines(canon)
        self.modified.discard(canon)
        return canon

    def edit(self, canon: str, lines: List[str]) -> None:
        self.buffers[canon] = list(lines)
        self.modified.add(canon)

    # EditorHost
    def buffer_lines(self, path: str) -> Sequence[str]:
        return list(self.buffers[path])

    def disk_lines(self, path: str) -> Sequence[str]:
        return read_text_lines(path)

    def is_modified(self, path: str) -> bool:
        return path in self.modified

    def apply_merged_lines(self, path: str, lines: List[str]) -> None:
        self.buffers[path] = list(lines)
        self.modified.add(path)

    def save(self, path: str) -> None:
        if self.fail_save:
            raise PermissionError("read-only file system")
        _write(path, self.buffers[path])
        self.modified.discard(path)

    def reload(self, path: str) -> None:
        self.buffers[path] = read_text_lines(path)
        self.modified.discard(path)

    def notify(self, message: str, level: Level) -> None:
        self.notes.append((level, message))

    def notify_conflicts(self, path: str, count: int, first_line: Optional[int]) -> None:
        self.conflicts.append((path, count, first_line))

    def notify_clean_merge(self, path: str) -> None:
        self.clean.append(path)

    def choose_external_action(self, path: str) -> ExternalAction:
        return self.action

    def open_diff_view(self, paths: DiffViewPaths) -> None:
        self.diff_views.append(paths)


def _write(path: str, lines: Sequence[str]) -> None:
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        f.write(join_lines(lines))


def _read(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _setup(tmp: str, **cfg) -> Tuple[FakeHost, SnapshotStore, ChangeTracker, str]:
    root = os.path.join(tmp, "store")
    path = os.path.join(tmp, "doc.txt")
    _write(path, ["1", "2", "3"])
    host = FakeHost()
    store = SnapshotStore(root)
    tracker = ChangeTracker(host, store, ShadowMergeConfig(shadow_dir=root, **cfg))
    canon = host.open(path)
    tracker.on_open(canon)
    return host, store, tracker, canon


def test_clean_merge_applies_saves_and_refreshes_shadow() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        host, store, tracker, canon = _setup(tmp)
        host.edit(canon, ["1", "2-edited", "3"])
        _write(canon, ["1", "2", "3-edited"])

        outcome = tracker.merge(canon)
        assert outcome.status is MergeStatus.MERGED and outcome.ok
        assert host.buffers[canon] == ["1", "2-edited", "3-edited"]
        assert _read(canon) == "1\n2-edited\n3-edited\n"
        assert host.clean == [canon]

        snap = store.get(canon)
        assert snap is not None
        assert snap.lines == ("1", "2-edited", "3-edited")
        assert snap.captured_at == 2

        merges = [ev for ev in store.iter_events() if ev["type"] == "merge/complete"]
        assert len(merges) == 1
        assert merges[0]["payload"]["status"] == "merged"


def test_conflicting_merge_marks_buffer_and_keeps_shadow() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        host, store, tracker, canon = _setup(tmp)
        host.edit(canon, ["1", "L", "3"])
        _write(canon, ["1", "E", "3"])

        outcome = tracker.merge(canon)
        assert outcome.status is MergeStatus.CONFLICTS
        assert outcome.conflict_count == 1
        assert outcome.first_conflict_line == 1
        assert host.buffers[canon] == ["1", "<<<<<<< LOCAL", "L", "=======", "E", ">>>>>>> EXTERNAL", "3"]
        assert host.conflicts == [(canon, 1, 1)]
        assert _read(canon) == "1\nE\n3\n"

        snap = store.get(canon)
        assert snap is not None and snap.lines == ("1", "2", "3") and snap.captured_at == 1


def test_silent_merge_aborts_on_conflicts() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        host, store, tracker, canon = _setup(tmp)
        host.edit(canon, ["1", "L", "3"])
        _write(canon, ["1", "E", "3"])

        outcome = tracker.merge(canon, silent=True)
        assert outcome.status is MergeStatus.ABORTED
        assert outcome.conflict_count == 1
        assert host.buffers[canon] == ["1", "L", "3"]
        assert host.conflicts == []
        assert any(level is Level.WARN and "aborted" in msg for level, msg in host.notes)


def test_unmodified_buffer_is_reloaded() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        host, store, tracker, canon = _setup(tmp)
        _write(canon, ["1", "2", "3", "4"])

        outcome = tracker.merge(canon)
        assert outcome.status is MergeStatus.RELOADED
        assert host.buffers[canon] == ["1", "2", "3", "4"]
        snap = store.get(canon)
        assert snap is not None and snap.lines == ("1", "2", "3", "4")


def test_missing_shadow_refuses_to_merge() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        host, store, tracker, canon = _setup(tmp)
        store.forget(canon)
        host.edit(canon, ["1", "x", "3"])

        outcome = tracker.merge(canon)
        assert outcome.status is MergeStatus.NO_BASELINE
        assert outcome.message == "No shadow base found, cannot merge. Reload to discard local changes."
        assert host.buffers[canon] == ["1", "x", "3"]
        assert (Level.WARN, outcome.message) in host.notes


def test_binary_disk_content_fails_without_touching_buffer() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        host, store, tracker, canon = _setup(tmp)
        host.edit(canon, ["1", "x", "3"])
        with open(canon, "wb") as f:
            f.write(b"\x00\x01\x02")

        outcome = tracker.merge(canon)
        assert outcome.status is MergeStatus.FAILED
        assert host.buffers[canon] == ["1", "x", "3"]
        assert host.notes and host.notes[-1][0] is Level.ERROR


def test_undecodable_buffer_line_fails_without_writing() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        host, store, tracker, canon = _setup(tmp)
        host.edit(canon, ["1", "bad \udcff byte", "3"])
        _write(canon, ["1", "2", "3-edited"])

        outcome = tracker.merge(canon)
        assert outcome.status is MergeStatus.FAILED
        assert host.buffers[canon] == ["1", "bad \udcff byte", "3"]
        assert _read(canon) == "1\n2\n3-edited\n"
        snap = store.get(canon)
        assert snap is not None and snap.lines == ("1", "2", "3")
        done = [ev["payload"] for ev in store.iter_events() if ev["type"] == "merge/complete"]
        assert done[-1]["status"] == "failed"


def test_save_failure_is_reported() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        host, store, tracker, canon = _setup(tmp)
        host.edit(canon, ["1", "2-edited", "3"])
        _write(canon, ["1", "2", "3-edited"])
        host.fail_save = True

        outcome = tracker.merge(canon)
        assert outcome.status is MergeStatus.FAILED
        assert host.clean == []
        snap = store.get(canon)
        assert snap is not None and snap.captured_at == 1


def test_prepare_diff_writes_three_views() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        host, store, tracker, canon = _setup(tmp)
        host.edit(canon, ["1", "L", "3"])
        _write(canon, ["1", "E", "3"])

        out_dir = os.path.join(tmp, "views")
        paths = tracker.prepare_diff(canon, out_dir)
        assert paths.local == os.path.join(out_dir, "doc.txt.LOCAL")
        assert _read(paths.local) == "1\nL\n3\n"
        assert _read(paths.base) == "1\n2\n3\n"
        assert _read(paths.external) == "1\nE\n3\n"
        assert host.diff_views == [paths]


def test_external_change_on_clean_buffer_reloads() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        host, store, tracker, canon = _setup(tmp)
        _write(canon, ["new"])
        assert tracker.on_external_change(canon, buffer_is_modified=False) is None
        assert host.buffers[canon] == ["new"]
        snap = store.get(canon)
        assert snap is not None and snap.lines == ("new",)


def test_external_change_auto_merge() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        host, store, tracker, canon = _setup(tmp, auto_merge=True)
        host.edit(canon, ["1", "2-edited", "3"])
        _write(canon, ["1", "2", "3-edited"])

        outcome = tracker.on_external_change(canon, buffer_is_modified=True)
        assert outcome is not None and outcome.status is MergeStatus.MERGED
        assert _read(canon) == "1\n2-edited\n3-edited\n"


def test_external_change_prompt_actions() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        host, store, tracker, canon = _setup(tmp)
        host.edit(canon, ["1", "mine", "3"])
        _write(canon, ["1", "2", "3", "theirs"])

        host.action = ExternalAction.IGNORE
        assert tracker.on_external_change(canon, buffer_is_modified=True) is None
        assert host.buffers[canon] == ["1", "mine", "3"]

        host.action = ExternalAction.DIFF
        assert tracker.on_external_change(canon, buffer_is_modified=True) is None
        assert len(host.diff_views) == 1

        host.action = ExternalAction.MERGE
        outcome = tracker.on_external_change(canon, buffer_is_modified=True)
        assert outcome is not None and outcome.status is MergeStatus.MERGED
        assert host.buffers[canon] == ["1", "mine", "3", "theirs"]

        host.edit(canon, ["discard me"])
        _write(canon, ["from disk"])
        host.action = ExternalAction.RELOAD
        assert tracker.on_external_change(canon, buffer_is_modified=True) is None
        assert host.buffers[canon] == ["from disk"]
        snap = store.get(canon)
        assert snap is not None and snap.lines == ("from disk",)


def test_prompt_disabled_leaves_buffer_alone() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        host, store, tracker, canon = _setup(tmp, auto_prompt=False)
        host.edit(canon, ["1", "mine", "3"])
        _write(canon, ["other"])
        host.action = ExternalAction.RELOAD
        assert tracker.on_external_change(canon, buffer_is_modified=True) is None
        assert host.buffers[canon] == ["1", "mine", "3"]


def main() -> None:
    test_clean_merge_applies_saves_and_refreshes_shadow()
    test_conflicting_merge_marks_buffer_and_keeps_shadow()
    test_silent_merge_aborts_on_conflicts()
    test_unmodified_buffer_is_reloaded()
    test_missing_shadow_refuses_to_merge()
    test_binary_disk_content_fails_without_touching_buffer()
    test_undecodable_buffer_line_fails_without_writing()
    test_save_failure_is_reported()
    test_prepare_diff_writes_three_views()
    test_external_change_on_clean_buffer_reloads()
    test_external_change_auto_merge()
    test_external_change_prompt_actions()
    test_prompt_disabled_leaves_buffer_alone()
    print("OK")


if __name__ == "__main__":
    main()
