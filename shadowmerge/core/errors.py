"""errors.py: error taxonomy for shadowmerge

- StoreIOError: snapshot persistence failed (permissions, disk full, unreadable).
- MalformedInputError: a revision is not line-oriented text (NUL bytes, bad UTF-8).
- ConfigError: configuration file or overrides are invalid.

A missing snapshot is not an error: SnapshotStore.get returns None.
Conflicts are not errors either: they are part of a successful MergeResult.
"""

from __future__ import annotations

from typing import List, Optional


class ShadowMergeError(Exception):
    """Base class for shadowmerge errors."""


class StoreIOError(ShadowMergeError):
    def __init__(self, message: str, *, path: str = "") -> None:
        super().__init__(message)
        self.path = path


class MalformedInputError(ShadowMergeError):
    def __init__(self, message: str, *, label: str = "") -> None:
        super().__init__(message)
        self.label = label


class ConfigError(ShadowMergeError):
    def __init__(self, message: str, *, errors: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])
