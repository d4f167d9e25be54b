"""JSON Patch (RFC 6902) application for shared-state deltas."""

from __future__ import annotations

import copy
from typing import Any

from ._exceptions import InvalidPatchError

_MISSING = object()
_OPERATIONS = ("add", "remove", "replace", "move", "copy", "test")


def _parse_pointer(path: Any) -> list[str]:
    """Split an RFC 6901 pointer into unescaped tokens."""
    if not isinstance(path, str):
        raise InvalidPatchError(f"Patch path must be a string, got {path!r}")
    if path == "":
        return []
    if not path.startswith("/"):
        raise InvalidPatchError(f"Patch path must start with '/': {path!r}")
    return [token.replace("~1", "/").replace("~0", "~") for token in path[1:].split("/")]


def _array_index(container: list, token: str, path: str, *, allow_end: bool) -> int:
    if token == "-" and allow_end:
        return len(container)
    if not token.isdigit() or (token != "0" and token.startswith("0")):
        raise InvalidPatchError(f"Invalid array index {token!r} in {path!r}")
    index = int(token)
    limit = len(container) if allow_end else len(container) - 1
    if index > limit:
        raise InvalidPatchError(f"Array index {index} out of range in {path!r}")
    return index


def _resolve_parent(doc: Any, tokens: list[str], path: str) -> Any:
    """Walk to the container holding the last token. Every segment must exist."""
    current = doc
    for token in tokens[:-1]:
        if isinstance(current, dict):
            if token not in current:
                raise InvalidPatchError(f"Unknown path segment {token!r} in {path!r}")
            current = current[token]
        elif isinstance(current, list):
            current = current[_array_index(current, token, path, allow_end=False)]
        else:
            raise InvalidPatchError(f"Path {path!r} traverses a scalar value")
    return current


def _get(doc: Any, path: str) -> Any:
    tokens = _parse_pointer(path)
    if not tokens:
        return doc
    parent = _resolve_parent(doc, tokens, path)
    last = tokens[-1]
    if isinstance(parent, dict):
        if last not in parent:
            raise InvalidPatchError(f"Unknown path segment {last!r} in {path!r}")
        return parent[last]
    if isinstance(parent, list):
        return parent[_array_index(parent, last, path, allow_end=False)]
    raise InvalidPatchError(f"Path {path!r} traverses a scalar value")


def _add(doc: Any, path: str, value: Any) -> Any:
    tokens = _parse_pointer(path)
    if not tokens:
        return value
    parent = _resolve_parent(doc, tokens, path)
    last = tokens[-1]
    if isinstance(parent, dict):
        parent[last] = value
    elif isinstance(parent, list):
        parent.insert(_array_index(parent, last, path, allow_end=True), value)
    else:
        raise InvalidPatchError(f"Cannot add into scalar at {path!r}")
    return doc


def _remove(doc: Any, path: str) -> tuple[Any, Any]:
    """Remove the value at path, returning (doc, removed_value)."""
    tokens = _parse_pointer(path)
    if not tokens:
        raise InvalidPatchError("Cannot remove the document root")
    parent = _resolve_parent(doc, tokens, path)
    last = tokens[-1]
    if isinstance(parent, dict):
        if last not in parent:
            raise InvalidPatchError(f"Unknown path segment {last!r} in {path!r}")
        return doc, parent.pop(last)
    if isinstance(parent, list):
        return doc, parent.pop(_array_index(parent, last, path, allow_end=False))
    raise InvalidPatchError(f"Cannot remove from scalar at {path!r}")


def _replace(doc: Any, path: str, value: Any) -> Any:
    tokens = _parse_pointer(path)
    if not tokens:
        return value
    parent = _resolve_parent(doc, tokens, path)
    last = tokens[-1]
    if isinstance(parent, dict):
        if last not in parent:
            raise InvalidPatchError(f"Unknown path segment {last!r} in {path!r}")
        parent[last] = value
    elif isinstance(parent, list):
        parent[_array_index(parent, last, path, allow_end=False)] = value
    else:
        raise InvalidPatchError(f"Cannot replace inside scalar at {path!r}")
    return doc


def _check_operation(operation: Any) -> tuple[str, str]:
    """Validate the shape of one operation and return its (op, path)."""
    if not isinstance(operation, dict):
        raise InvalidPatchError(f"Patch operation must be an object, got {operation!r}")
    op = operation.get("op")
    if op not in _OPERATIONS:
        raise InvalidPatchError(f"Unsupported patch operation {op!r}")
    path = operation.get("path", _MISSING)
    if path is _MISSING:
        raise InvalidPatchError(f"Patch operation {op!r} is missing 'path'")
    if not isinstance(path, str):
        raise InvalidPatchError(f"Patch path must be a string, got {path!r}")
    if op in ("move", "copy") and not isinstance(operation.get("from"), str):
        raise InvalidPatchError(f"Patch operation {op!r} needs a string 'from'")
    if op in ("add", "replace", "test") and "value" not in operation:
        raise InvalidPatchError(f"Patch operation {op!r} is missing 'value'")
    return op, path


def apply_patch(document: Any, operations: list[dict[str, Any]]) -> Any:
    """
    Apply JSON Patch operations to a copy of ``document``.

    Supports add, remove, replace, move, copy and test. The input document is
    never mutated; a failing operation leaves no partial result behind.

    Raises:
        InvalidPatchError: malformed or unknown op, malformed path, missing
            path segment, or failed test operation.
    """
    if not isinstance(operations, list):
        raise InvalidPatchError(f"Patch must be a list of operations, got {operations!r}")
    doc = copy.deepcopy(document)
    for operation in operations:
        op, path = _check_operation(operation)

        if op == "add":
            doc = _add(doc, path, copy.deepcopy(operation["value"]))
        elif op == "remove":
            doc, _ = _remove(doc, path)
        elif op == "replace":
            doc = _replace(doc, path, copy.deepcopy(operation["value"]))
        elif op == "move":
            source = operation["from"]
            if (path + "/").startswith(source + "/") and path != source:
                raise InvalidPatchError(f"Cannot move {source!r} into its own child {path!r}")
            doc, value = _remove(doc, source)
            doc = _add(doc, path, value)
        elif op == "copy":
            value = copy.deepcopy(_get(doc, operation["from"]))
            doc = _add(doc, path, value)
        else:
            if _get(doc, path) != operation["value"]:
                raise InvalidPatchError(f"Test operation failed at {path!r}")
    return doc
