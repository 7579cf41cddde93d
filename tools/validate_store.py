"""validate_store.py

Validate a shadow store: sidecars, blobs and ledger invariants.

Checks:
  S1: every sidecar matches the snapshot sidecar schema
  S2: every sidecar's key is the sha256 of its path and names its own file
  S3: every sidecar's sha256 matches its blob; every blob has a sidecar
  L1: every ledger line is a valid event
  L2: snapshot/update counters strictly increase per path
  L3: a sidecar's captured_at is the last snapshot/update counter for its path
      (only checked when the ledger has updates for that path)

Usage:
  python -m tools.validate_store                       # default shadow dir
  python -m tools.validate_store --shadow-dir <dir>

Exit codes:
  0 = OK
  2 = violations found
  1 = runtime error (validator itself)
"""

from __future__ import annotations

import argparse
import hashlib
import json
from pathlib import Path
from typing import Any, Dict, List, Tuple

from shadowmerge.core.config import load_config
from shadowmerge.core.schemas import schema_errors
from shadowmerge.core.snapshot_store import snapshot_key


class Violations:
    def __init__(self) -> None:
        self.errors: List[str] = []

    def add(self, msg: str) -> None:
        self.errors.append(msg)

    def ok(self) -> bool:
        return not self.errors


def _read_events(path: Path, v: Violations) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    if not path.exists():
        return out
    for i, ln in enumerate(path.read_text(encoding="utf-8").splitlines()):
        ln = ln.strip()
        if not ln:
            continue
        try:
            ev = json.loads(ln)
        except ValueError:
            v.add(f"L1: unparsable ledger line {i+1}")
            continue
        for msg in schema_errors("event", ev):
            v.add(f"L1: ledger line {i+1}: {msg}")
        out.append(ev)
    return out


def validate_store(root: Path) -> Tuple[bool, List[str]]:
    v = Violations()
    shadows = root / "shadows"

    sidecars: Dict[str, Dict[str, Any]] = {}
    if shadows.is_dir():
        for meta_path in sorted(shadows.glob("*.json")):
            if meta_path.name.startswith("."):
                continue
            try:
                meta = json.loads(meta_path.read_text(encoding="utf-8"))
            except ValueError:
                v.add(f"S1: unparsable sidecar {meta_path.name}")
                continue
            errors = schema_errors("snapshot_meta", meta)
            if errors:
                for msg in errors:
                    v.add(f"S1: {meta_path.name}: {msg}")
                continue
            key = meta_path.stem
            if meta["key"] != key or snapshot_key(meta["path"]) != key:
                v.add(f"S2: {meta_path.name}: key does not match path {meta['path']!r}")
            blob = shadows / f"{key}.txt"
            if not blob.exists():
                v.add(f"S3: {meta_path.name}: blob missing")
            elif hashlib.sha256(blob.read_bytes()).hexdigest() != meta["sha256"]:
                v.add(f"S3: {meta_path.name}: sha256 does not match blob")
            sidecars[meta["path"]] = meta

        for blob in sorted(shadows.glob("*.txt")):
            if blob.name.startswith("."):
                continue
            if not (shadows / f"{blob.stem}.json").exists():
                v.add(f"S3: {blob.name}: blob without sidecar")

    last_counter: Dict[str, int] = {}
    for i, ev in enumerate(_read_events(root / "events.jsonl", v)):
        et = ev.get("type")
        pl = ev.get("payload") or {}
        if et == "snapshot/update":
            path = pl.get("path")
            counter = pl.get("captured_at")
            if not isinstance(path, str) or not isinstance(counter, int):
                v.add(f"L2: snapshot/update missing path/captured_at (line {i+1})")
                continue
            prev = last_counter.get(path)
            if prev is not None and counter <= prev:
                v.add(f"L2: counter for {path} went from {prev} to {counter} (line {i+1})")
            last_counter[path] = counter
        elif et == "snapshot/forget":
            path = pl.get("path")
            if isinstance(path, str):
                last_counter.pop(path, None)

    for path, meta in sidecars.items():
        if path in last_counter and meta["captured_at"] != last_counter[path]:
            v.add(
                f"L3: sidecar for {path} says #{meta['captured_at']}, ledger last says #{last_counter[path]}"
            )

    return v.ok(), v.errors


def main() -> int:
    ap = argparse.ArgumentParser(description="Validate a shadowmerge store.")
    ap.add_argument("--shadow-dir", default=None, help="Store directory (default: configured shadow dir)")
    args = ap.parse_args()

    try:
        root = Path(args.shadow_dir) if args.shadow_dir else Path(load_config().shadow_dir)
        ok, errors = validate_store(root)
    except Exception as e:
        print("validator error:", e)
        return 1

    if ok:
        print("Store validation OK for:", root)
        return 0
    print("Store validation FAILED for:", root)
    for e in errors[:200]:
        print(" -", e)
    if len(errors) > 200:
        print(f"... and {len(errors)-200} more")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
