"""Deterministic document canonicalization.

A raw document is an arbitrary JSON-like tree:
- objects: ``dict`` with ``str`` keys
- arrays: ``list`` (``tuple`` is accepted and emitted as a list)
- primitives: ``str``, ``int``, ``float``, ``decimal.Decimal``, ``bool``, ``None``

Canonicalization rebuilds the tree with object keys in ascending
lexicographic order at every level. Array order is preserved: it is
meaningful for arrays and irrelevant for objects.

Anything else (bytes, sets, callables, NaN/Infinity, non-string keys) is
rejected with MalformedDocument before any salting happens.
"""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Any, Iterator, Tuple

from tradedoc.errors import MalformedDocument


def is_object(node: Any) -> bool:
    return isinstance(node, dict)


def is_array(node: Any) -> bool:
    return isinstance(node, (list, tuple))


def is_primitive(node: Any) -> bool:
    """Check if node is a committable primitive value."""
    if node is None or isinstance(node, (str, bool, int)):
        return True
    if isinstance(node, float):
        return math.isfinite(node)
    if isinstance(node, Decimal):
        return node.is_finite()
    return False


def _child_path(path: str, key: Any) -> str:
    if isinstance(key, int):
        return f"{path}[{key}]"
    return f"{path}.{key}"


def canonicalize(document: Any, path: str = "$") -> Any:
    """Return a copy of ``document`` with object keys sorted at every level.

    Raises MalformedDocument for unsupported nodes.
    """
    if is_object(document):
        out = {}
        for key in document:
            if not isinstance(key, str):
                raise MalformedDocument(path, f"object key must be a string, got {type(key).__name__}")
        for key in sorted(document):
            out[key] = canonicalize(document[key], _child_path(path, key))
        return out

    if is_array(document):
        return [canonicalize(item, _child_path(path, i)) for i, item in enumerate(document)]

    if is_primitive(document):
        return document

    if isinstance(document, (float, Decimal)):
        raise MalformedDocument(path, f"non-finite number not allowed: {document!r}")
    raise MalformedDocument(path, f"unsupported node type: {type(document).__name__}")


def walk_primitives(document: Any, path: str = "$") -> Iterator[Tuple[str, Any]]:
    """Depth-first traversal yielding ``(path, value)`` for every primitive.

    Arrays are visited in index order and objects in sorted key order, so
    the traversal is the same whether or not the input was canonicalized.
    Structure (keys, indices) is reported in ``path`` for diagnostics only.
    """
    if is_object(document):
        for key in sorted(document):
            yield from walk_primitives(document[key], _child_path(path, key))
    elif is_array(document):
        for i, item in enumerate(document):
            yield from walk_primitives(item, _child_path(path, i))
    elif is_primitive(document):
        yield path, document
    else:
        raise MalformedDocument(path, f"unsupported node type: {type(document).__name__}")
