"""
Reference resolver — expands ``{"$ref": "#/json/pointer"}`` objects.

Runs on the raw YAML tree before validation. Every reference is
replaced by a copy of its target (value semantics, never a live link),
so shared fragments under ``dependencies.platforms._shared`` can be
reused by several platforms without aliasing.

The input tree is never mutated: a new tree is built, and an error
raised midway leaves the caller with the untouched original.
"""

from __future__ import annotations

import logging
from typing import Any

from offsetup.core.errors import CyclicReferenceError, UnresolvedReferenceError

logger = logging.getLogger(__name__)

REF_KEY = "$ref"

# Deepest chain of references-inside-references we follow
DEFAULT_MAX_DEPTH = 32


def is_reference(node: Any) -> bool:
    """A reference is a mapping whose only key is ``$ref`` with a string value."""
    return (
        isinstance(node, dict)
        and len(node) == 1
        and isinstance(node.get(REF_KEY), str)
    )


def parse_pointer(pointer: str) -> list[str]:
    """Split ``#/a/b~1c`` into ``["a", "b/c"]``.

    Only document-local pointers are supported.
    """
    if not pointer.startswith("#"):
        raise UnresolvedReferenceError(pointer, "only '#/...' pointers are supported")
    path = pointer[1:]
    if path in ("", "/"):
        return []
    if not path.startswith("/"):
        raise UnresolvedReferenceError(pointer, "pointer must start with '#/'")
    return [
        part.replace("~1", "/").replace("~0", "~")
        for part in path[1:].split("/")
    ]


def lookup(document: Any, pointer: str) -> Any:
    """Return the node at ``pointer`` in ``document`` (no expansion)."""
    node = document
    for part in parse_pointer(pointer):
        if isinstance(node, dict):
            if part not in node:
                raise UnresolvedReferenceError(pointer, f"no key {part!r}")
            node = node[part]
        elif isinstance(node, list):
            try:
                index = int(part)
            except ValueError:
                raise UnresolvedReferenceError(pointer, f"{part!r} is not a list index") from None
            if not 0 <= index < len(node):
                raise UnresolvedReferenceError(pointer, f"index {index} out of range")
            node = node[index]
        else:
            raise UnresolvedReferenceError(pointer, f"cannot descend into {type(node).__name__}")
    return node


def find_references(document: Any) -> list[str]:
    """List every pointer string in the tree, in document order."""
    found: list[str] = []

    def walk(node: Any) -> None:
        if is_reference(node):
            found.append(node[REF_KEY])
        elif isinstance(node, dict):
            for value in node.values():
                walk(value)
        elif isinstance(node, list):
            for value in node:
                walk(value)

    walk(document)
    return found


def resolve_references(document: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> Any:
    """Return a fully-expanded copy of ``document``.

    Raises:
        CyclicReferenceError: a pointer is reached again while it is
            still being expanded, or the chain exceeds ``max_depth``.
        UnresolvedReferenceError: a pointer names a missing path.
    """
    resolved = _expand(document, document, [], max_depth)
    count = len(find_references(document))
    if count:
        logger.debug("Resolved %d reference(s)", count)
    return resolved


def _expand(node: Any, root: Any, stack: list[str], max_depth: int) -> Any:
    if is_reference(node):
        pointer = node[REF_KEY]
        if pointer in stack:
            raise CyclicReferenceError(pointer, stack)
        if len(stack) >= max_depth:
            raise CyclicReferenceError(pointer, stack)
        target = lookup(root, pointer)
        return _expand(target, root, [*stack, pointer], max_depth)
    if isinstance(node, dict):
        return {key: _expand(value, root, stack, max_depth) for key, value in node.items()}
    if isinstance(node, list):
        return [_expand(value, root, stack, max_depth) for value in node]
    return node
