"""diff3.py

Three-way line alignment.

Given ANCESTOR, LOCAL and EXTERNAL line sequences, produce an ordered list of
Regions. Each region covers a contiguous slice of all three sequences and is
classified as:

  UNCHANGED      LOCAL and EXTERNAL both equal ANCESTOR
  LOCAL_ONLY     only LOCAL changed the slice
  EXTERNAL_ONLY  only EXTERNAL changed the slice
  BOTH_SAME      both changed it identically
  CONFLICT       both changed it differently

Approach:
- Each side is aligned against ANCESTOR at exact line equality (match_lines):
  shared head and tail lines first, then lines unique to both ranges as
  anchors, then difflib.SequenceMatcher for whatever is left between anchors.
  The alignment is reduced to hunks expressed in ANCESTOR coordinates.
  Same-length replacements are cut into one-line hunks that remember their
  block.
- Hunks of the two sides that touch the same ancestor lines are grouped into
  clusters. Hunks that are merely adjacent stay independent, so edits on
  neighbouring lines merge cleanly.
- Insertions by both sides at the same anchor always form a cluster: the
  result is CONFLICT unless the inserted lines are identical. An insertion
  inside a block the other side rewrote joins that block's cluster.

Concatenating every region's ancestor slice reproduces ANCESTOR exactly, and
likewise for LOCAL and EXTERNAL.
"""

from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass
from difflib import SequenceMatcher
from enum import Enum
from typing import Dict, List, Sequence, Tuple


class RegionKind(str, Enum):
    UNCHANGED = "unchanged"
    LOCAL_ONLY = "local_only"
    EXTERNAL_ONLY = "external_only"
    BOTH_SAME = "both_same"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class Region:
    kind: RegionKind
    ancestor_lines: Tuple[str, ...]
    local_lines: Tuple[str, ...]
    external_lines: Tuple[str, ...]

    @property
    def is_conflict(self) -> bool:
        return self.kind is RegionKind.CONFLICT


@dataclass(frozen=True)
class Hunk:
    start: int  # ancestor index
    end: int    # ancestor index (exclusive); start == end for an insertion
    lines: Tuple[str, ...]  # replacement/insert lines
    # ancestor range of the opcode this hunk was cut from
    block_start: int = -1
    block_end: int = -1

    @property
    def is_insert(self) -> bool:
        return self.start == self.end

    @property
    def delta(self) -> int:
        return len(self.lines) - (self.end - self.start)

    @property
    def block(self) -> Tuple[int, int]:
        if self.block_start < 0:
            return self.start, self.end
        return self.block_start, self.block_end


# Largest gap (len(a) * len(b)) aligned by SequenceMatcher without its
# popular-line heuristic. Bigger gaps only occur when no line is unique on
# both sides; those keep difflib's default autojunk.
EXACT_GAP_LIMIT = 250_000


def _unique_anchors(
    a: Sequence[str], alo: int, ahi: int, b: Sequence[str], blo: int, bhi: int
) -> List[Tuple[int, int]]:
    """Pairs (i, j) of lines occurring exactly once in a[alo:ahi] and once in b[blo:bhi],
    reduced to the longest chain increasing on both sides."""
    count_a: Dict[str, int] = {}
    pos_a: Dict[str, int] = {}
    for i in range(alo, ahi):
        ln = a[i]
        count_a[ln] = count_a.get(ln, 0) + 1
        pos_a[ln] = i
    count_b: Dict[str, int] = {}
    pos_b: Dict[str, int] = {}
    for j in range(blo, bhi):
        ln = b[j]
        count_b[ln] = count_b.get(ln, 0) + 1
        pos_b[ln] = j

    pairs = sorted(
        (pos_a[ln], pos_b[ln]) for ln, n in count_a.items() if n == 1 and count_b.get(ln) == 1
    )
    if not pairs:
        return []

    # patience sorting: longest subsequence of pairs increasing in j
    tails: List[int] = []
    tail_idx: List[int] = []
    prev = [-1] * len(pairs)
    for n, (_, j) in enumerate(pairs):
        k = bisect_left(tails, j)
        if k == len(tails):
            tails.append(j)
            tail_idx.append(n)
        else:
            tails[k] = j
            tail_idx[k] = n
        prev[n] = tail_idx[k - 1] if k else -1
    chain: List[Tuple[int, int]] = []
    n = tail_idx[-1]
    while n >= 0:
        chain.append(pairs[n])
        n = prev[n]
    chain.reverse()
    return chain


def match_lines(a: Sequence[str], b: Sequence[str]) -> List[Tuple[int, int]]:
    """Matched index pairs (i, j) with a[i] == b[j], increasing on both sides.

    Common head and tail lines are matched first. The rest is split on lines
    that are unique in both ranges, recursively; a range without such lines
    goes to difflib.SequenceMatcher.
    """
    pairs: List[Tuple[int, int]] = []
    todo = [(0, len(a), 0, len(b))]
    while todo:
        alo, ahi, blo, bhi = todo.pop()
        while alo < ahi and blo < bhi and a[alo] == b[blo]:
            pairs.append((alo, blo))
            alo += 1
            blo += 1
        while alo < ahi and blo < bhi and a[ahi - 1] == b[bhi - 1]:
            ahi -= 1
            bhi -= 1
            pairs.append((ahi, bhi))
        if alo == ahi or blo == bhi:
            continue

        anchors = _unique_anchors(a, alo, ahi, b, blo, bhi)
        if anchors:
            i0, j0 = alo, blo
            for i, j in anchors:
                todo.append((i0, i, j0, j))
                pairs.append((i, j))
                i0, j0 = i + 1, j + 1
            todo.append((i0, ahi, j0, bhi))
            continue

        exact = (ahi - alo) * (bhi - blo) <= EXACT_GAP_LIMIT
        sm = SequenceMatcher(None, a[alo:ahi], b[blo:bhi], autojunk=not exact)
        for i, j, size in sm.get_matching_blocks():
            for k in range(size):
                pairs.append((alo + i + k, blo + j + k))
    pairs.sort()
    return pairs


def compute_hunks(ancestor: Sequence[str], other: Sequence[str]) -> List[Hunk]:
    """Return the non-equal stretches that transform ancestor -> other.

    A replace of n lines by n lines is cut into n one-line hunks, so that a
    line the other side changed identically can still merge as BOTH_SAME.
    """
    hunks: List[Hunk] = []
    i0 = j0 = 0
    for i, j in match_lines(ancestor, other) + [(len(ancestor), len(other))]:
        if i > i0 or j > j0:
            if i - i0 == j - j0 and i - i0 > 1:
                for k in range(i - i0):
                    hunks.append(
                        Hunk(start=i0 + k, end=i0 + k + 1, lines=(other[j0 + k],), block_start=i0, block_end=i)
                    )
            else:
                hunks.append(Hunk(start=i0, end=i, lines=tuple(other[j0:j])))
        i0, j0 = i + 1, j + 1
    return hunks


def _inside_block(ins: Hunk, rng: Hunk) -> bool:
    lo, hi = rng.block
    return lo < ins.start < hi


def _interacts(a: Hunk, b: Hunk) -> bool:
    """True if hunks from opposite sides touch the same ancestor lines."""
    if a.is_insert and b.is_insert:
        return a.start == b.start
    if a.is_insert:
        return _inside_block(a, b)
    if b.is_insert:
        return _inside_block(b, a)
    return a.start < b.end and b.start < a.end


def _seed_side(local: List[Hunk], il: int, external: List[Hunk], ie: int) -> str:
    """Pick which side's next hunk opens the next cluster."""
    if il >= len(local):
        return "external"
    if ie >= len(external):
        return "local"
    hl, he = local[il], external[ie]
    if hl.start != he.start:
        return "local" if hl.start < he.start else "external"
    # same anchor: an insertion precedes a range starting at that line
    if he.is_insert and not hl.is_insert:
        return "external"
    return "local"


def _collect_cluster(
    local: List[Hunk], il: int, external: List[Hunk], ie: int
) -> Tuple[List[Hunk], List[Hunk]]:
    """Grow a cluster from the next hunk until neither side adds a touching hunk."""
    seed = _seed_side(local, il, external, ie)
    c_local: List[Hunk] = []
    c_ext: List[Hunk] = []
    if seed == "local":
        c_local.append(local[il])
        il += 1
    else:
        c_ext.append(external[ie])
        ie += 1

    grew = True
    while grew:
        grew = False
        if il < len(local) and any(_interacts(local[il], h) for h in c_ext):
            c_local.append(local[il])
            il += 1
            grew = True
        if ie < len(external) and any(_interacts(external[ie], h) for h in c_local):
            c_ext.append(external[ie])
            ie += 1
            grew = True
    return c_local, c_ext


def _classify(anc: Tuple[str, ...], loc: Tuple[str, ...], ext: Tuple[str, ...]) -> RegionKind:
    if loc == anc and ext == anc:
        return RegionKind.UNCHANGED
    if ext == anc:
        return RegionKind.LOCAL_ONLY
    if loc == anc:
        return RegionKind.EXTERNAL_ONLY
    if loc == ext:
        return RegionKind.BOTH_SAME
    return RegionKind.CONFLICT


def align3(ancestor: Sequence[str], local: Sequence[str], external: Sequence[str]) -> List[Region]:
    """Align three revisions into contiguous, classified regions."""
    anc = tuple(ancestor)
    loc = tuple(local)
    ext = tuple(external)
    hunks_local = compute_hunks(anc, loc)
    hunks_ext = compute_hunks(anc, ext)

    regions: List[Region] = []
    il = ie = 0
    pos = 0     # ancestor cursor
    lpos = 0    # local cursor
    epos = 0    # external cursor

    def emit_unchanged(upto: int) -> None:
        nonlocal pos, lpos, epos
        n = upto - pos
        if n <= 0:
            return
        regions.append(
            Region(
                kind=RegionKind.UNCHANGED,
                ancestor_lines=anc[pos:upto],
                local_lines=loc[lpos:lpos + n],
                external_lines=ext[epos:epos + n],
            )
        )
        pos, lpos, epos = upto, lpos + n, epos + n

    while il < len(hunks_local) or ie < len(hunks_ext):
        c_local, c_ext = _collect_cluster(hunks_local, il, hunks_ext, ie)
        il += len(c_local)
        ie += len(c_ext)

        members = c_local + c_ext
        c_start = min(h.start for h in members)
        c_end = max(h.end for h in members)
        emit_unchanged(c_start)

        span = c_end - c_start
        n_local = span + sum(h.delta for h in c_local)
        n_ext = span + sum(h.delta for h in c_ext)
        a_slice = anc[c_start:c_end]
        l_slice = loc[lpos:lpos + n_local]
        e_slice = ext[epos:epos + n_ext]
        regions.append(
            Region(
                kind=_classify(a_slice, l_slice, e_slice),
                ancestor_lines=a_slice,
                local_lines=l_slice,
                external_lines=e_slice,
            )
        )
        pos, lpos, epos = c_end, lpos + n_local, epos + n_ext

    emit_unchanged(len(anc))
    return regions
