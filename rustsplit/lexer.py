"""Low-level scanning helpers for Rust source text.

Every pattern match in the parser runs on *masked* text: comments and
string/char literals are replaced by spaces (newlines are kept), so offsets
line up with the original and braces inside literals never confuse the
block matcher.
"""

from __future__ import annotations

import re
from typing import List, Optional

_RAW_STRING = re.compile(r'b?r(#*)"')
_IDENT_CHAR = re.compile(r"[A-Za-z0-9_]")

_OPENERS = {"(": ")", "[": "]", "{": "}", "<": ">"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}


def _is_ident_char(char: str) -> bool:
    return bool(char) and bool(_IDENT_CHAR.match(char))


def literal_end(text: str, index: int) -> Optional[int]:
    """Return the end offset of a comment or literal starting at ``index``.

    ``None`` means no comment/literal starts there. Lifetimes (``'a``) are
    not literals.
    """
    n = len(text)
    char = text[index]

    if text.startswith("//", index):
        newline = text.find("\n", index)
        return n if newline == -1 else newline

    if text.startswith("/*", index):
        depth = 0
        i = index
        while i < n:
            if text.startswith("/*", i):
                depth += 1
                i += 2
            elif text.startswith("*/", i):
                depth -= 1
                i += 2
                if depth == 0:
                    return i
            else:
                i += 1
        return n

    if char in "rb" and (index == 0 or not _is_ident_char(text[index - 1])):
        match = _RAW_STRING.match(text, index)
        if match:
            closing = '"' + match.group(1)
            found = text.find(closing, match.end())
            return n if found == -1 else found + len(closing)

    if char == '"':
        i = index + 1
        while i < n:
            if text[i] == "\\":
                i += 2
                continue
            if text[i] == '"':
                return i + 1
            i += 1
        return n

    if char == "'":
        if index + 1 < n and text[index + 1] == "\\":
            found = text.find("'", index + 3)
            return n if found == -1 else found + 1
        if index + 2 < n and text[index + 2] == "'" and text[index + 1] != "'":
            return index + 3
        return None

    return None


def mask_literals(text: str) -> str:
    """Blank out comments and literals, preserving length and newlines."""
    out = list(text)
    i = 0
    n = len(text)
    while i < n:
        char = text[i]
        if char not in "/rb\"'":
            i += 1
            continue
        end = literal_end(text, i)
        if end is None:
            i += 1
            continue
        for j in range(i, end):
            if out[j] != "\n":
                out[j] = " "
        i = end
    return "".join(out)


def find_matching(masked: str, open_index: int) -> int:
    """Index of the bracket closing the one at ``open_index``.

    Works for ``()``, ``[]``, ``{}`` and ``<>``. Angle brackets skip the
    arrows ``->`` and ``=>``. Returns ``len(masked)`` when unbalanced.
    """
    opener = masked[open_index]
    closer = _OPENERS[opener]
    depth = 0
    for i in range(open_index, len(masked)):
        char = masked[i]
        if char == opener:
            depth += 1
        elif char == closer:
            if closer == ">" and i > 0 and masked[i - 1] in "-=":
                continue
            depth -= 1
            if depth == 0:
                return i
    return len(masked)


def find_block_end(masked: str, start: int) -> int:
    """Index of the ``}`` matching the first ``{`` at or after ``start``."""
    brace = masked.find("{", start)
    if brace == -1:
        return len(masked)
    return find_matching(masked, brace)


def brace_depths(masked: str, offsets: List[int]) -> List[int]:
    """Brace nesting depth at each of the (sorted) ``offsets``."""
    depths: List[int] = []
    depth = 0
    cursor = 0
    for offset in offsets:
        for char in masked[cursor:offset]:
            if char == "{":
                depth += 1
            elif char == "}":
                depth = max(depth - 1, 0)
        cursor = max(cursor, offset)
        depths.append(depth)
    return depths


def split_top_level(text: str, sep: str = ",") -> List[str]:
    """Split on ``sep`` outside any bracket pair. Empty parts are dropped."""
    masked = mask_literals(text)
    parts: List[str] = []
    depth = 0
    last = 0
    for i, char in enumerate(masked):
        if char in "([{<":
            depth += 1
        elif char in ")]}":
            depth = max(depth - 1, 0)
        elif char == ">":
            if i > 0 and masked[i - 1] in "-=":
                continue
            depth = max(depth - 1, 0)
        elif char == sep and depth == 0:
            parts.append(text[last:i])
            last = i + 1
    parts.append(text[last:])
    return [part.strip() for part in parts if part.strip()]


def split_path(path: str) -> List[str]:
    """Split a path on ``::`` outside braces: ``a::{b, c::d}`` -> ``[a, {b, c::d}]``."""
    segments: List[str] = []
    depth = 0
    last = 0
    i = 0
    while i < len(path):
        char = path[i]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
        elif depth == 0 and path.startswith("::", i):
            segments.append(path[last:i])
            i += 2
            last = i
            continue
        i += 1
    segments.append(path[last:])
    return [segment.strip() for segment in segments if segment.strip()]


def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def strip_attributes(item: str) -> str:
    """Remove leading ``#[...]`` attributes from a field or variant."""
    item = item.strip()
    while item.startswith("#"):
        bracket = item.find("[")
        if bracket == -1:
            break
        close = find_matching(mask_literals(item), bracket)
        item = item[close + 1:].strip()
    return item


def previous_token_char(masked: str, index: int) -> str:
    """Last non-whitespace character before ``index`` ('' at start of text)."""
    i = index - 1
    while i >= 0 and masked[i].isspace():
        i -= 1
    return masked[i] if i >= 0 else ""
