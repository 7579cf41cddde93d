"""text.py

Line handling shared by the merge engine and the snapshot store.

Revisions are sequences of lines *without* their terminators. Files are
newline-normalized on the way in (CRLF and lone CR become LF) and written back
newline-terminated.

Anything that cannot be treated as line-oriented text raises
MalformedInputError instead of being merged.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence

from .errors import MalformedInputError


def split_lines(text: str) -> List[str]:
    """Split text into lines, dropping the empty tail left by a final newline."""
    if not text:
        return []
    norm = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = norm.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def join_lines(lines: Iterable[str]) -> str:
    out = "".join(f"{ln}\n" for ln in lines)
    return out


def check_lines(lines: Sequence[str], label: str, *, allow_nul: bool = False) -> None:
    """Raise MalformedInputError unless every line is a newline-free, UTF-8 encodable str without NUL."""
    for idx, ln in enumerate(lines):
        if not isinstance(ln, str):
            raise MalformedInputError(
                f"{label}: line {idx + 1} is {type(ln).__name__}, not text", label=label
            )
        if not allow_nul and "\x00" in ln:
            raise MalformedInputError(f"{label}: NUL byte at line {idx + 1} (binary content?)", label=label)
        if "\n" in ln or "\r" in ln:
            raise MalformedInputError(f"{label}: embedded newline at line {idx + 1}", label=label)
        try:
            ln.encode("utf-8")
        except UnicodeEncodeError as e:
            # lone surrogates, e.g. from a buffer decoded with surrogateescape
            raise MalformedInputError(
                f"{label}: line {idx + 1} is not encodable as UTF-8 ({e.reason})", label=label
            ) from e


def decode_text(data: bytes, label: str, *, allow_nul: bool = False) -> str:
    """Decode file bytes as UTF-8 text, refusing binary-looking content."""
    if not allow_nul and b"\x00" in data:
        raise MalformedInputError(f"{label}: contains NUL bytes, cannot merge this file type", label=label)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedInputError(f"{label}: not valid UTF-8 ({e.reason} at byte {e.start})", label=label) from e


def read_text_lines(path: str, label: str = "") -> List[str]:
    """Read a file as normalized lines. OSError propagates to the caller."""
    with open(path, "rb") as f:
        data = f.read()
    return split_lines(decode_text(data, label or path))
