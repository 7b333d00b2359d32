"""
Path resolver for raw vendor payloads.

A payload is a tree of ``Mapping`` / ``Sequence`` / scalar values (JSON,
parsed XML, or DB rows).  A path is a dot-separated list of segments; each
segment is an optional key followed by any number of selectors:

    Transactions[*].Items[*].SKU     wildcard: fan out over every element
    Response.Rows[0].Id              numeric index (negative counts from end)
    Rows.0.Id                        bare numeric key indexes a sequence

Resolution uses an explicit stack, never recursion, so deep payloads cannot
exhaust the interpreter stack.  "Not found" is the ``ABSENT`` sentinel, never
an exception; a stored ``None`` resolves to ``None``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any


class _Absent:
    """Sentinel for a path that resolved to nothing."""

    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "ABSENT"


ABSENT: Any = _Absent()


def is_absent(value: Any) -> bool:
    return value is ABSENT


def is_sequence(value: Any) -> bool:
    """True for list-like payload nodes (strings and bytes are scalars)."""
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class StepKind(str, Enum):
    KEY = "key"
    INDEX = "index"
    WILDCARD = "wildcard"


@dataclass(frozen=True)
class PathStep:
    kind: StepKind
    key: str | None = None
    index: int | None = None


_SELECTOR_RE = re.compile(r"\[(\*|-?\d+)\]")
_SELECTORS_ONLY_RE = re.compile(r"^(?:\[(?:\*|-?\d+)\])*$")


@lru_cache(maxsize=2048)
def parse_path(path: str) -> tuple[PathStep, ...]:
    """Parse a path expression into steps.

    Raises:
        ValueError: empty path or malformed selector.  This is a configuration
            bug, not a data condition.
    """
    text = (path or "").strip()
    if not text:
        raise ValueError("Empty path expression")

    steps: list[PathStep] = []
    for raw in text.split("."):
        bracket = raw.find("[")
        key = raw if bracket < 0 else raw[:bracket]
        selectors = "" if bracket < 0 else raw[bracket:]
        if not _SELECTORS_ONLY_RE.match(selectors):
            raise ValueError(f"Invalid segment {raw!r} in path {path!r}")
        if not key and not selectors:
            raise ValueError(f"Empty segment in path {path!r}")
        if key:
            steps.append(PathStep(StepKind.KEY, key=key))
        for sel in _SELECTOR_RE.findall(selectors):
            if sel == "*":
                steps.append(PathStep(StepKind.WILDCARD))
            else:
                steps.append(PathStep(StepKind.INDEX, index=int(sel)))
    return tuple(steps)


def has_wildcard(path: str) -> bool:
    return any(step.kind is StepKind.WILDCARD for step in parse_path(path))


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def _child(node: Any, key: str) -> Any:
    if isinstance(node, Mapping):
        return node[key] if key in node else ABSENT
    if is_sequence(node) and key.lstrip("-").isdigit():
        return _element(node, int(key))
    return ABSENT


def _element(node: Any, index: int) -> Any:
    if not is_sequence(node):
        return ABSENT
    if -len(node) <= index < len(node):
        return node[index]
    return ABSENT


def resolve_all(tree: Any, path: str) -> list[Any]:
    """Every value reached by ``path``, in source order."""
    steps = parse_path(path)
    depth_limit = len(steps)
    results: list[Any] = []
    stack: list[tuple[Any, int]] = [(tree, 0)]

    while stack:
        node, depth = stack.pop()
        if depth == depth_limit:
            results.append(node)
            continue

        step = steps[depth]
        if step.kind is StepKind.WILDCARD:
            if is_sequence(node):
                # Reversed so that pops come out in source order
                for element in reversed(node):
                    stack.append((element, depth + 1))
            continue

        if step.kind is StepKind.INDEX:
            child = _element(node, step.index)
        else:
            child = _child(node, step.key)
        if child is not ABSENT:
            stack.append((child, depth + 1))

    return results


def resolve(tree: Any, path: str) -> Any:
    """
    Resolve ``path`` against ``tree``.

    Returns:
        The single value when exactly one is found, a list when several are
        found (wildcards flatten, they never nest), or ``ABSENT`` when the
        path reaches nothing.
    """
    results = resolve_all(tree, path)
    if not results:
        return ABSENT
    if len(results) == 1:
        return results[0]
    return results
