"""snapshot_store.py

Filesystem-backed shadow snapshot store.

Every tracked file has one shadow: a copy of its content at the last
open/save. The shadow is the ANCESTOR of the next 3-way merge for that path.

- One blob per path, keyed by the SHA-256 of the canonical absolute path
- Blob content is the newline-normalized, newline-terminated file text
- A JSON sidecar carries bookkeeping (path, capture counter, blob sha256);
  it is not needed for correctness
- Every update/forget is appended to an events.jsonl ledger

Important:
- Writes go to a temp file in the same directory and are moved into place
  with os.replace, so readers see the previous blob or the new one, never a
  partial one.
- The in-memory cache only ever holds values that reached disk. If
  persistence fails the previous snapshot stays current.
- root=None gives a memory-only store with the same contract.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
import time
import weakref
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import MalformedInputError, StoreIOError
from .schemas import schema_errors
from .text import check_lines, decode_text, join_lines, read_text_lines, split_lines

logger = logging.getLogger(__name__)

SIDECAR_VERSION = "1"


def _utc_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _sha256_hex(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()


def normalize_path(path: str) -> str:
    """Canonical absolute form used as snapshot identity."""
    if not path:
        raise MalformedInputError("Missing path")
    if "\x00" in path:
        raise MalformedInputError("NUL byte in path")
    return os.path.normcase(os.path.realpath(os.path.abspath(os.path.expanduser(path))))


def snapshot_key(canonical_path: str) -> str:
    return _sha256_hex(canonical_path.encode("utf-8", "surrogateescape"))


def _atomic_write(dest: str, data: bytes) -> None:
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=os.path.dirname(dest))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, dest)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


@dataclass(frozen=True)
class Snapshot:
    path: str
    lines: Tuple[str, ...]
    captured_at: int  # per-path logical counter; 0 when neither sidecar nor ledger records it

    def text(self) -> str:
        return join_lines(self.lines)


@dataclass(frozen=True)
class StorePaths:
    root: str
    shadows_dir: str
    events_jsonl: str

    def blob(self, key: str) -> str:
        return os.path.join(self.shadows_dir, f"{key}.txt")

    def sidecar(self, key: str) -> str:
        return os.path.join(self.shadows_dir, f"{key}.json")


class SnapshotStore:
    """Shadow snapshot store.

    Layout:
        {root}/
            shadows/{key}.txt     raw text of the file at capture time
            shadows/{key}.json    sidecar (path, captured_at, sha256, line_count)
            events.jsonl          ledger

    key = sha256(canonical absolute path)
    """

    def __init__(self, root: Optional[str] = None, *, ledger: bool = True) -> None:
        self.paths: Optional[StorePaths] = None
        if root is not None:
            r = os.path.abspath(os.path.expanduser(root))
            self.paths = StorePaths(
                root=r,
                shadows_dir=os.path.join(r, "shadows"),
                events_jsonl=os.path.join(r, "events.jsonl"),
            )
        self.ledger = ledger and self.paths is not None
        self._cache: Dict[str, Snapshot] = {}
        # entries vanish once no caller holds the lock
        self._locks: weakref.WeakValueDictionary[str, threading.RLock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()
        self._ledger_lock = threading.Lock()

    @property
    def persistent(self) -> bool:
        return self.paths is not None

    # -----------------------------
    # Locking
    # -----------------------------

    def lock_for(self, path: str) -> threading.RLock:
        """Per-path lock serializing snapshot updates and merges for that path."""
        key = snapshot_key(normalize_path(path))
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    # -----------------------------
    # Snapshots
    # -----------------------------

    def update(self, path: str, lines: Sequence[str]) -> Snapshot:
        """Replace the snapshot for path. Raises StoreIOError if it could not be persisted."""
        canon = normalize_path(path)
        # NUL bytes are storable; the merge refuses them later.
        check_lines(lines, canon, allow_nul=True)
        key = snapshot_key(canon)
        with self.lock_for(canon):
            prev = self._peek(key, canon)
            snap = Snapshot(path=canon, lines=tuple(lines), captured_at=(prev + 1) if prev else 1)
            if self.paths is not None:
                self._persist(key, snap)
            self._cache[key] = snap
        logger.debug("shadow updated: %s (#%d, %d lines)", canon, snap.captured_at, len(snap.lines))
        return snap

    def update_from_disk(self, path: str) -> Optional[Snapshot]:
        """Capture the file's current disk content. Returns None if it cannot be read."""
        canon = normalize_path(path)
        if not os.path.isfile(canon):
            return None
        try:
            lines = read_text_lines(canon)
        except OSError as e:
            logger.debug("not capturing unreadable file %s: %s", canon, e)
            return None
        return self.update(canon, lines)

    def get(self, path: str) -> Optional[Snapshot]:
        """Most recent snapshot for path, or None if none was ever captured."""
        canon = normalize_path(path)
        key = snapshot_key(canon)
        with self.lock_for(canon):
            if self.paths is None:
                return self._cache.get(key)

            cached = self._cache.get(key)
            try:
                with open(self.paths.blob(key), "rb") as f:
                    data = f.read()
            except FileNotFoundError:
                self._cache.pop(key, None)
                return None
            except OSError as e:
                if cached is not None:
                    logger.warning("cannot read shadow for %s (%s); using in-memory copy", canon, e)
                    return cached
                raise StoreIOError(f"cannot read shadow for {canon}: {e}", path=canon) from e

            lines = tuple(split_lines(decode_text(data, f"shadow of {canon}", allow_nul=True)))
            meta = self._read_sidecar(key)
            if meta is not None and meta.get("sha256") == _sha256_hex(data):
                captured = int(meta["captured_at"])
            elif cached is not None and cached.lines == lines:
                captured = cached.captured_at
            else:
                captured = self._ledger_counter(canon)
                logger.warning(
                    "shadow sidecar for %s is missing or stale; counter #%d taken from the ledger", canon, captured
                )
            snap = Snapshot(path=canon, lines=lines, captured_at=captured)
            self._cache[key] = snap
            return snap

    def forget(self, path: str) -> bool:
        """Drop the snapshot for path. Returns True if one existed."""
        canon = normalize_path(path)
        key = snapshot_key(canon)
        with self.lock_for(canon):
            existed = self._cache.pop(key, None) is not None
            if self.paths is not None:
                for fn in (self.paths.blob(key), self.paths.sidecar(key)):
                    try:
                        os.remove(fn)
                        existed = True
                    except FileNotFoundError:
                        continue
                    except OSError as e:
                        raise StoreIOError(f"cannot remove shadow for {canon}: {e}", path=canon) from e
        if existed:
            self.append_event("snapshot/forget", {"path": canon, "key": key})
        return existed

    def tracked_paths(self) -> List[str]:
        """Paths with a readable sidecar (persistent store) or a cached snapshot."""
        if self.paths is None:
            return sorted(s.path for s in self._cache.values())
        try:
            names = os.listdir(self.paths.shadows_dir)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StoreIOError(f"cannot list shadows: {e}") from e
        out: List[str] = []
        for name in names:
            if not name.endswith(".json") or name.startswith("."):
                continue
            meta = self._read_sidecar(name[: -len(".json")])
            if meta is not None:
                out.append(meta["path"])
        return sorted(out)

    # -----------------------------
    # Persistence internals
    # -----------------------------

    def _peek(self, key: str, canon: str) -> int:
        """Last capture counter for key (0 if unknown)."""
        cached = self._cache.get(key)
        if cached is not None and cached.captured_at:
            return cached.captured_at
        if self.paths is None:
            return 0
        meta = self._read_sidecar(key)
        recorded = int(meta["captured_at"]) if meta is not None else 0
        try:
            with open(self.paths.blob(key), "rb") as f:
                data = f.read()
        except FileNotFoundError:
            return recorded
        except OSError:
            data = None
        if meta is not None and data is not None and meta["sha256"] == _sha256_hex(data):
            return recorded
        # the blob is newer than its sidecar
        return max(recorded, self._ledger_counter(canon))

    def _ledger_counter(self, canon: str) -> int:
        """Last snapshot/update counter the ledger holds for canon (0 if none, or forgotten since)."""
        if not self.ledger:
            return 0
        last = 0
        for ev in self.iter_events():
            payload = ev.get("payload") or {}
            if payload.get("path") != canon:
                continue
            if ev.get("type") == "snapshot/update" and isinstance(payload.get("captured_at"), int):
                last = payload["captured_at"]
            elif ev.get("type") == "snapshot/forget":
                last = 0
        return last

    def _persist(self, key: str, snap: Snapshot) -> None:
        assert self.paths is not None
        data = snap.text().encode("utf-8")
        try:
            os.makedirs(self.paths.shadows_dir, exist_ok=True)
            _atomic_write(self.paths.blob(key), data)
        except OSError as e:
            logger.warning("cannot persist shadow for %s: %s", snap.path, e)
            self.append_event("snapshot/error", {"path": snap.path, "key": key, "error": str(e)})
            raise StoreIOError(f"cannot persist shadow for {snap.path}: {e}", path=snap.path) from e

        meta = {
            "version": SIDECAR_VERSION,
            "path": snap.path,
            "key": key,
            "captured_at": snap.captured_at,
            "sha256": _sha256_hex(data),
            "line_count": len(snap.lines),
            "updated_at": _utc_now(),
        }
        try:
            _atomic_write(self.paths.sidecar(key), json.dumps(meta, indent=2).encode("utf-8"))
        except OSError as e:
            # Blob is already in place; only the counter bookkeeping is lost.
            logger.warning("cannot write shadow sidecar for %s: %s", snap.path, e)

        self.append_event(
            "snapshot/update",
            {"path": snap.path, "key": key, "captured_at": snap.captured_at, "line_count": len(snap.lines)},
        )

    def _read_sidecar(self, key: str) -> Optional[Dict[str, Any]]:
        assert self.paths is not None
        fn = self.paths.sidecar(key)
        try:
            with open(fn, "r", encoding="utf-8") as f:
                meta = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("unreadable shadow sidecar %s: %s", fn, e)
            return None
        errors = schema_errors("snapshot_meta", meta)
        if errors:
            logger.warning("invalid shadow sidecar %s: %s", fn, "; ".join(errors))
            return None
        return meta

    # -----------------------------
    # Ledger
    # -----------------------------

    def append_event(self, event_type: str, payload: Dict[str, Any]) -> None:
        """Append an event to events.jsonl. Failures are logged, never raised."""
        if not self.ledger or self.paths is None:
            return
        event = {"timestamp": _utc_now(), "type": event_type, "payload": payload}
        line = json.dumps(event, ensure_ascii=False)
        with self._ledger_lock:
            try:
                os.makedirs(self.paths.root, exist_ok=True)
                with open(self.paths.events_jsonl, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                logger.warning("cannot append %s to ledger: %s", event_type, e)

    def iter_events(self) -> Iterable[Dict[str, Any]]:
        if self.paths is None or not os.path.exists(self.paths.events_jsonl):
            return
        with open(self.paths.events_jsonl, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except ValueError:
                    logger.warning("skipping malformed ledger line in %s", self.paths.events_jsonl)
                    continue
