"""conflict.py

Conflict marker formatting and scanning.

A conflicting region is rendered as:

<<<<<<< LOCAL
...local version...
=======
...external version...
>>>>>>> EXTERNAL

The marker strings are fixed so that editors and scripts can search for
unresolved regions (e.g. jump to the first "<<<<<<<").
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from .diff3 import Region

LABEL_LOCAL = "LOCAL"
LABEL_EXTERNAL = "EXTERNAL"

MARKER_START = "<<<<<<< " + LABEL_LOCAL
MARKER_SEP = "======="
MARKER_END = ">>>>>>> " + LABEL_EXTERNAL


@dataclass(frozen=True)
class ConflictSpan:
    start: int  # index of the "<<<<<<<" line
    sep: int    # index of the "=======" line
    end: int    # index of the ">>>>>>>" line

    @property
    def local_range(self) -> range:
        return range(self.start + 1, self.sep)

    @property
    def external_range(self) -> range:
        return range(self.sep + 1, self.end)


def conflict_block(local_lines: Sequence[str], external_lines: Sequence[str]) -> List[str]:
    out: List[str] = [MARKER_START]
    out.extend(local_lines)
    out.append(MARKER_SEP)
    out.extend(external_lines)
    out.append(MARKER_END)
    return out


def format_conflict(region: Region) -> List[str]:
    """Render a conflict region as marker-delimited lines."""
    return conflict_block(region.local_lines, region.external_lines)


def find_conflicts(lines: Sequence[str]) -> List[ConflictSpan]:
    """Locate complete conflict blocks in merged output.

    Only well-formed blocks (start, separator, end in that order) are reported;
    stray marker lines are ignored.
    """
    spans: List[ConflictSpan] = []
    start: Optional[int] = None
    sep: Optional[int] = None
    for idx, ln in enumerate(lines):
        if ln == MARKER_START:
            start, sep = idx, None
        elif ln == MARKER_SEP and start is not None and sep is None:
            sep = idx
        elif ln == MARKER_END and start is not None and sep is not None:
            spans.append(ConflictSpan(start=start, sep=sep, end=idx))
            start, sep = None, None
    return spans


def has_conflict_markers(lines: Sequence[str]) -> bool:
    return bool(find_conflicts(lines))


def first_conflict_line(lines: Sequence[str]) -> Optional[int]:
    """0-based index of the first conflict start marker, or None."""
    spans = find_conflicts(lines)
    return spans[0].start if spans else None
