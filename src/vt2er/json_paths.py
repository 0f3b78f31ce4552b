"""Search and traversal helpers for nested H5P parameter documents.

Paths use dot separated keys with ``[index]`` suffixes for list positions, for
example ``threeImage.scenes[2].interactions[0]``. The empty string addresses the
document root.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping, Pattern, Sequence, Tuple

Predicate = Tuple[str, str]

_SEGMENT_PATTERN = re.compile(r"^(?P<name>[^\[\]]*)(?P<indices>(?:\[\d+\])*)$")
_INDEX_PATTERN = re.compile(r"\[(\d+)\]")

LIBRARY_KEY = "library"


class _MissingType:
    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - trivial representation
        return "_MISSING"


_MISSING = _MissingType()


@dataclass(frozen=True)
class PathMatch:
    """A node found by :func:`find` together with its location."""

    path: str
    node: Any


@dataclass(frozen=True)
class TypedComponent:
    """A subtree carrying a ``library`` key, i.e. an embedded H5P component."""

    path: str
    node: Mapping[str, Any]

    @property
    def library(self) -> str:
        return str(self.node.get(LIBRARY_KEY, ""))


def find(tree: Any, predicates: Iterable[Predicate]) -> Iterator[PathMatch]:
    """Yield every descendant container matching at least one predicate.

    Each predicate is an ``(attribute, pattern)`` pair. A mapping matches when it
    holds ``attribute`` and the value matches ``pattern`` (``re.search``
    semantics). Traversal is depth first in document order and a matching node is
    reported before its own descendants.
    """

    compiled = [(attribute, re.compile(pattern)) for attribute, pattern in predicates]
    return _walk(tree, compiled, "")


def resolve(tree: Any, path: str, default: Any = None) -> Any:
    """Return the node at ``path`` or ``default`` when any segment is absent."""

    segments = _parse_path(path)
    if segments is None:
        return default

    current = tree
    for name, indices in segments:
        if name:
            if not isinstance(current, Mapping) or name not in current:
                return default
            current = current[name]
        for index in indices:
            if not _is_sequence(current) or index >= len(current):
                return default
            current = current[index]
    return current


def parent_path(path: str) -> str:
    """Drop the last dot separated segment; paths without a dot are unchanged."""

    head, separator, _ = path.rpartition(".")
    return head if separator else path


def closest_typed_component(tree: Any, path: str) -> TypedComponent | None:
    """Walk up from ``path`` until a node with a ``library`` key is found."""

    current = path
    while True:
        node = resolve(tree, current, _MISSING)
        if node is _MISSING:
            return None
        if isinstance(node, Mapping) and LIBRARY_KEY in node:
            return TypedComponent(path=current, node=node)
        if not current:
            return None
        current = parent_path(current) if "." in current else ""


def prune_subcomponents(node: Any) -> Any:
    """Return a copy of ``node`` without nested typed components.

    Nested mappings that carry a ``library`` key are dropped entirely, as is the
    ``library`` key itself at every level. Containers left empty after pruning
    are omitted from their parent.
    """

    if isinstance(node, Mapping):
        pruned: dict[str, Any] = {}
        for key, value in node.items():
            if _is_container(value):
                if isinstance(value, Mapping) and LIBRARY_KEY in value:
                    continue
                pruned_value = prune_subcomponents(value)
                if pruned_value:
                    pruned[key] = pruned_value
            elif key != LIBRARY_KEY:
                pruned[key] = value
        return pruned

    if _is_sequence(node):
        items: list[Any] = []
        for value in node:
            if _is_container(value):
                if isinstance(value, Mapping) and LIBRARY_KEY in value:
                    continue
                pruned_value = prune_subcomponents(value)
                if pruned_value:
                    items.append(pruned_value)
            else:
                items.append(value)
        return items

    return node


def _walk(
    node: Any, predicates: Sequence[tuple[str, Pattern[str]]], path: str
) -> Iterator[PathMatch]:
    for child_path, child in _children(node, path):
        if not _is_container(child):
            continue
        if isinstance(child, Mapping) and _matches(child, predicates):
            yield PathMatch(path=child_path, node=child)
        yield from _walk(child, predicates, child_path)


def _children(node: Any, path: str) -> Iterator[tuple[str, Any]]:
    if isinstance(node, Mapping):
        for key, value in node.items():
            yield (f"{path}.{key}" if path else str(key)), value
    elif _is_sequence(node):
        for index, value in enumerate(node):
            yield f"{path}[{index}]", value


def _matches(
    node: Mapping[str, Any], predicates: Sequence[tuple[str, Pattern[str]]]
) -> bool:
    for attribute, pattern in predicates:
        if attribute not in node:
            continue
        text = _as_text(node[attribute])
        if text is not None and pattern.search(text):
            return True
    return False


def _as_text(value: Any) -> str | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (str, int, float)):
        return str(value)
    return None


def _parse_path(path: str) -> list[tuple[str, list[int]]] | None:
    if not isinstance(path, str):
        return None
    if path == "":
        return []

    segments: list[tuple[str, list[int]]] = []
    for segment in path.split("."):
        match = _SEGMENT_PATTERN.match(segment)
        if match is None:
            return None
        name = match.group("name")
        indices = [int(value) for value in _INDEX_PATTERN.findall(match.group("indices"))]
        if not name and not indices:
            return None
        segments.append((name, indices))
    return segments


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _is_container(value: Any) -> bool:
    return isinstance(value, Mapping) or _is_sequence(value)


__all__ = [
    "LIBRARY_KEY",
    "PathMatch",
    "Predicate",
    "TypedComponent",
    "closest_typed_component",
    "find",
    "parent_path",
    "prune_subcomponents",
    "resolve",
]
