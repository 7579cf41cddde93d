"""config.py

Configuration layer.

Precedence (lowest to highest):
  1. built-in defaults (shadow dir under the user cache directory)
  2. SHADOWMERGE_DIR environment variable (shadow dir only)
  3. JSON config file (validated against CONFIG_SCHEMA)
  4. explicit overrides (CLI flags)
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigError
from .schemas import schema_errors

ENV_SHADOW_DIR = "SHADOWMERGE_DIR"
CONFIG_FILENAME = "shadowmerge.json"


def default_shadow_dir() -> str:
    cache = os.environ.get("XDG_CACHE_HOME") or os.path.join(os.path.expanduser("~"), ".cache")
    return os.path.join(cache, "shadowmerge", "shadows")


@dataclass(frozen=True)
class ShadowMergeConfig:
    shadow_dir: str
    # Ask the host what to do when a modified buffer's file changes on disk.
    auto_prompt: bool = True
    # Merge silently instead; aborts (applies nothing) when conflicts appear.
    auto_merge: bool = False
    # Keep the events.jsonl ledger in the shadow dir.
    ledger: bool = True


def default_config_path() -> str:
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
    return os.path.join(base, "shadowmerge", CONFIG_FILENAME)


def _read_config_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path}: invalid JSON ({e.msg} at line {e.lineno})") from e
    except OSError as e:
        raise ConfigError(f"{path}: cannot read config ({e})") from e
    errors = schema_errors("config", doc)
    if errors:
        raise ConfigError(f"{path}: invalid configuration", errors=errors)
    return doc


def load_config(
    path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ShadowMergeConfig:
    """Build the effective configuration.

    An explicit `path` must exist; the default location is optional.
    Overrides with value None are ignored.
    """
    cfg = ShadowMergeConfig(shadow_dir=os.environ.get(ENV_SHADOW_DIR) or default_shadow_dir())

    if path is not None:
        doc = _read_config_file(path)
    else:
        default_path = default_config_path()
        doc = _read_config_file(default_path) if os.path.exists(default_path) else {}
    if doc:
        cfg = replace(cfg, **doc)

    if overrides:
        clean = {k: v for k, v in overrides.items() if v is not None}
        errors = schema_errors("config", clean)
        if errors:
            raise ConfigError("invalid configuration overrides", errors=errors)
        cfg = replace(cfg, **clean)

    return replace(cfg, shadow_dir=os.path.abspath(os.path.expanduser(cfg.shadow_dir)))
