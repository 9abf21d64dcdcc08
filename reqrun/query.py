"""reqrun query - path queries over parsed response bodies.

A JSONPath subset used by ``extract:`` rules and ``--json-path``.

Segment types produced by compile_query:
    str              → dict key (exact match)
    int              → list index (supports negative)
    None             → wildcard: every dict value / list element
    (start, stop)    → Python-style slice  e.g. [2:], [:-1], [1:3]
    Descend(seg)     → apply seg to the node and all its descendants

Syntax:
    $                      → root
    $.a.b / a.b            → key, key   (leading "$." and "body." optional)
    $.a[0] / $.a[-1]       → key, index
    $.a[*] / $.a.* / a[]   → key, wildcard
    $.a[1:3]               → key, slice
    $['a b'] / $["a"]      → quoted key
    headers[Content-Type]  → bare bracket key
    $..id / $..*           → recursive descent
"""

from __future__ import annotations

import functools
import json
import re
from typing import Any, NamedTuple

from reqrun.bodies import json_default
from reqrun.errors import ExtractionMiss, InvalidQuery

_INT_RE = re.compile(r"^-?\d+$")
_SLICE_RE = re.compile(r"^(-?\d+)?:(-?\d+)?$")
_SLICE_LIKE_RE = re.compile(r"^[-\d:\s]+$")
_NAME_STOP = ".[]"


class Descend(NamedTuple):
    selector: Any


class Query:
    """A compiled path query."""

    def __init__(self, path: str, segments: list[Any]):
        self.path = path
        self.segments = segments

    def __repr__(self) -> str:
        return f"Query({self.path!r})"

    def find(self, data: Any) -> list[Any]:
        """Return every match, in document order."""
        nodes = [data]
        for seg in self.segments:
            matched: list[Any] = []
            for node in nodes:
                matched.extend(_select(node, seg))
            nodes = matched
            if not nodes:
                break
        return nodes

    def first(self, data: Any) -> Any:
        """Return the first match in document order; raise ExtractionMiss if none."""
        matches = self.find(data)
        if not matches:
            raise ExtractionMiss(self.path)
        return matches[0]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=256)
def compile_query(path: str) -> Query:
    """Parse a path query, raising InvalidQuery on malformed syntax."""
    if not isinstance(path, str) or not path.strip():
        raise InvalidQuery(str(path), "empty query")

    text = path.strip()
    if text.startswith("$"):
        rest = text[1:]
    else:
        # Relative form: "data.id", "body.data.id", "items[0]"
        if text.lower().startswith("body."):
            text = text[5:]
        rest = text if text.startswith("[") else "." + text

    return Query(path, _parse_segments(path, rest))


def _parse_segments(path: str, rest: str) -> list[Any]:
    segments: list[Any] = []
    i = 0
    n = len(rest)
    while i < n:
        ch = rest[i]
        if rest.startswith("..", i):
            i += 2
            if i >= n:
                raise InvalidQuery(path, "recursive descent without a selector")
            if rest[i] == "[":
                seg, i = _parse_bracket(path, rest, i)
            else:
                seg, i = _parse_name(path, rest, i)
            segments.append(Descend(seg))
        elif ch == ".":
            i += 1
            if i >= n:
                raise InvalidQuery(path, "trailing '.'")
            if rest[i] == "[":
                raise InvalidQuery(path, "unexpected '[' after '.'")
            seg, i = _parse_name(path, rest, i)
            segments.append(seg)
        elif ch == "[":
            seg, i = _parse_bracket(path, rest, i)
            segments.append(seg)
        else:
            raise InvalidQuery(path, f"unexpected character {ch!r} at {i}")
    return segments


def _parse_name(path: str, rest: str, i: int) -> tuple[Any, int]:
    """Parse a dotted member name starting at i."""
    start = i
    while i < len(rest) and rest[i] not in _NAME_STOP:
        i += 1
    name = rest[start:i].strip()
    if not name:
        raise InvalidQuery(path, f"empty member name at {start}")
    if rest[start:i] != name:
        raise InvalidQuery(path, f"whitespace around member name {name!r}")
    if name == "*":
        return None, i
    return name, i


def _parse_bracket(path: str, rest: str, i: int) -> tuple[Any, int]:
    """Parse a [...] selector starting at i (which points at '[')."""
    i += 1
    if i < len(rest) and rest[i] in "'\"":
        quote = rest[i]
        end = rest.find(quote, i + 1)
        if end == -1:
            raise InvalidQuery(path, "unterminated quoted key")
        key = rest[i + 1 : end]
        if end + 1 >= len(rest) or rest[end + 1] != "]":
            raise InvalidQuery(path, "expected ']' after quoted key")
        return key, end + 2

    end = rest.find("]", i)
    if end == -1:
        raise InvalidQuery(path, "unterminated '['")
    content = rest[i:end].strip()
    if "[" in content:
        raise InvalidQuery(path, "nested '['")
    return _classify_bracket(path, content), end + 1


def _classify_bracket(path: str, content: str) -> Any:
    """Classify the contents of a single [...] bracket."""
    if content in ("", "*"):
        return None
    if content.startswith("?") or content.startswith("("):
        raise InvalidQuery(path, "filter and script expressions are not supported")
    if "," in content:
        raise InvalidQuery(path, "union selectors are not supported")

    sm = _SLICE_RE.match(content)
    if sm:
        start = int(sm.group(1)) if sm.group(1) else None
        stop = int(sm.group(2)) if sm.group(2) else None
        return (start, stop)
    if ":" in content and _SLICE_LIKE_RE.match(content):
        raise InvalidQuery(path, f"unsupported slice {content!r}")

    if _INT_RE.match(content):
        return int(content)

    # Non-numeric → dict key
    return content


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _children(node: Any) -> list[Any]:
    if isinstance(node, dict):
        return list(node.values())
    if isinstance(node, list):
        return list(node)
    return []


def _walk(node: Any):
    """Pre-order traversal: the node, then each descendant."""
    yield node
    for child in _children(node):
        yield from _walk(child)


def _select(node: Any, seg: Any) -> list[Any]:
    if isinstance(seg, Descend):
        out: list[Any] = []
        for sub in _walk(node):
            out.extend(_select(sub, seg.selector))
        return out
    if seg is None:
        return _children(node)
    if isinstance(seg, str):
        if isinstance(node, dict) and seg in node:
            return [node[seg]]
        return []
    if isinstance(seg, int):
        if isinstance(node, list):
            try:
                return [node[seg]]
            except IndexError:
                return []
        return []
    if isinstance(seg, tuple):
        if isinstance(node, list):
            return node[slice(*seg)]
        return []
    return []


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def render_value(value: Any) -> str:
    """Canonical text form of a matched node.

    Strings verbatim, JSON literals for true/false/null and numbers,
    compact JSON for objects and arrays. YAML dates render as ISO text.
    """
    if value is None or isinstance(value, bool | int | float):
        return json.dumps(value)
    if not isinstance(value, str | dict | list):
        value = json_default(value)
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=json_default)


def extract(data: Any, path: str) -> str:
    """Bind the first match of path in data, rendered as text."""
    return render_value(compile_query(path).first(data))


def find_all(data: Any, path: str) -> list[Any]:
    return compile_query(path).find(data)
