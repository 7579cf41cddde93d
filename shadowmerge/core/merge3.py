"""merge3.py

3-way merge with conflict markers.

Goal:
  When a buffer has unsaved edits and its file was rewritten by another
  process, reconcile the two using:
    - ANCESTOR: the shadow snapshot captured at the last open/save
    - LOCAL:    the buffer content (possibly unsaved)
    - EXTERNAL: the current file content on disk

Non-overlapping changes from both sides are combined. If LOCAL and EXTERNAL
changed the same ancestor lines differently, the region is emitted between
conflict markers (see conflict.py) and counted.

Notes:
- Line-based diff3 over difflib.SequenceMatcher alignments (diff3.py).
- Deterministic: same inputs, same output. No clock, no subprocess.
- Inputs are never mutated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from .conflict import format_conflict
from .diff3 import Region, RegionKind, align3
from .text import check_lines, join_lines, split_lines

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeResult:
    lines: Tuple[str, ...]
    conflict_count: int
    regions: Tuple[Region, ...] = field(default=(), compare=False, repr=False)

    @property
    def clean(self) -> bool:
        return self.conflict_count == 0

    def text(self) -> str:
        return join_lines(self.lines)


def _resolve(region: Region) -> Sequence[str]:
    kind = region.kind
    if kind is RegionKind.UNCHANGED:
        return region.ancestor_lines
    if kind is RegionKind.LOCAL_ONLY or kind is RegionKind.BOTH_SAME:
        return region.local_lines
    if kind is RegionKind.EXTERNAL_ONLY:
        return region.external_lines
    return format_conflict(region)


def merge3_lines(
    ancestor: Sequence[str],
    local: Sequence[str],
    external: Sequence[str],
) -> MergeResult:
    """3-way merge of line sequences. Returns MergeResult(lines, conflict_count)."""
    check_lines(ancestor, "ancestor")
    check_lines(local, "local")
    check_lines(external, "external")

    anc = tuple(ancestor)
    loc = tuple(local)
    ext = tuple(external)

    # Fast paths; the full alignment yields the same lines for each.
    if loc == anc or loc == ext:
        return MergeResult(lines=ext, conflict_count=0)
    if ext == anc:
        return MergeResult(lines=loc, conflict_count=0)

    regions = align3(anc, loc, ext)
    out: List[str] = []
    conflicts = 0
    for region in regions:
        if region.is_conflict:
            conflicts += 1
        out.extend(_resolve(region))

    logger.debug(
        "merged %d/%d/%d lines into %d regions, %d conflict(s)",
        len(anc), len(loc), len(ext), len(regions), conflicts,
    )
    return MergeResult(lines=tuple(out), conflict_count=conflicts, regions=tuple(regions))


def merge3_text(ancestor_text: str, local_text: str, external_text: str) -> MergeResult:
    """3-way merge of whole texts (newline-normalized)."""
    return merge3_lines(split_lines(ancestor_text), split_lines(local_text), split_lines(external_text))


class MergeEngine:
    """Stateless facade over merge3_lines for callers that prefer an object."""

    def merge(
        self,
        ancestor: Sequence[str],
        local: Sequence[str],
        external: Sequence[str],
    ) -> MergeResult:
        return merge3_lines(ancestor, local, external)

    def regions(
        self,
        ancestor: Sequence[str],
        local: Sequence[str],
        external: Sequence[str],
    ) -> List[Region]:
        check_lines(ancestor, "ancestor")
        check_lines(local, "local")
        check_lines(external, "external")
        return align3(ancestor, local, external)
