"""schemas.py

JSON Schemas for the documents shadowmerge persists or reads:

- SNAPSHOT_META_SCHEMA: the bookkeeping sidecar written next to each shadow blob
- CONFIG_SCHEMA: the optional shadowmerge.json configuration file
- EVENT_SCHEMA: one line of the events.jsonl ledger

Validation uses jsonschema's Draft 2020-12 validator.
"""

from __future__ import annotations

from typing import Any, Dict, List

from jsonschema import Draft202012Validator

SNAPSHOT_META_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "shadowmerge snapshot sidecar",
    "type": "object",
    "required": ["version", "path", "key", "captured_at", "sha256", "line_count"],
    "properties": {
        "version": {"const": "1"},
        "path": {"type": "string", "minLength": 1},
        "key": {"type": "string", "pattern": "^[0-9a-f]{64}$"},
        "captured_at": {"type": "integer", "minimum": 1},
        "sha256": {"type": "string", "pattern": "^[0-9a-f]{64}$"},
        "line_count": {"type": "integer", "minimum": 0},
        "updated_at": {"type": "string"},
    },
    "additionalProperties": False,
}

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "shadowmerge configuration",
    "type": "object",
    "properties": {
        "shadow_dir": {"type": "string", "minLength": 1},
        "auto_prompt": {"type": "boolean"},
        "auto_merge": {"type": "boolean"},
        "ledger": {"type": "boolean"},
    },
    "additionalProperties": False,
}

EVENT_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "shadowmerge ledger event",
    "type": "object",
    "required": ["timestamp", "type", "payload"],
    "properties": {
        "timestamp": {"type": "string"},
        "type": {"type": "string", "pattern": "^[a-z_]+/[a-z_]+$"},
        "payload": {"type": "object"},
    },
}

_VALIDATORS: Dict[str, Draft202012Validator] = {
    "snapshot_meta": Draft202012Validator(SNAPSHOT_META_SCHEMA),
    "config": Draft202012Validator(CONFIG_SCHEMA),
    "event": Draft202012Validator(EVENT_SCHEMA),
}


def schema_errors(kind: str, doc: Any) -> List[str]:
    """Return human-readable validation errors for doc (empty list when valid)."""
    validator = _VALIDATORS[kind]
    errors: List[str] = []
    for err in sorted(validator.iter_errors(doc), key=lambda e: list(e.path)):
        loc = "/".join(str(p) for p in err.path) or "<root>"
        errors.append(f"{loc}: {err.message}")
    return errors
