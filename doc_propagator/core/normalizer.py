"""Content normalization and change detection.

Every document written by the join resolver or the propagation engine goes
through :func:`normalize`, and every no-op check goes through
:func:`is_changed`. Both return fresh trees and never mutate their input.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from doc_propagator.core.types import DocumentRef, SupportsToDatetime

DEPENDENCIES_KEY = "dependencies"
BATCH_ID_KEY = "propagationBatchID"
CORRELATION_ID_KEY = "correlationID"
CREATED_AT_KEY = "createdAt"
UPDATED_AT_KEY = "updatedAt"

# Bookkeeping keys that never leave the document they were written on
INTERNAL_KEYS: frozenset[str] = frozenset({DEPENDENCIES_KEY, BATCH_ID_KEY, CORRELATION_ID_KEY})

TIMESTAMP_KEYS: frozenset[str] = frozenset({CREATED_AT_KEY, UPDATED_AT_KEY})

RESERVED_KEYS: frozenset[str] = INTERNAL_KEYS | TIMESTAMP_KEYS


def _is_opaque(value: Any) -> bool:
    return isinstance(value, DocumentRef) or callable(value)


def _walk(value: Any, drop: frozenset[str], convert: bool) -> Any:
    if _is_opaque(value):
        return value
    if convert and isinstance(value, SupportsToDatetime):
        return value.to_datetime()
    if isinstance(value, Mapping):
        return {
            key: _walk(item, drop, convert) for key, item in value.items() if key not in drop
        }
    if isinstance(value, (list, tuple)):
        # Two-element timestamp ranges fall out of the element-wise conversion
        return [_walk(item, drop, convert) for item in value]
    return value


def normalize(document: Any, drop: frozenset[str] = INTERNAL_KEYS) -> Any:
    """Return a comparison-safe deep copy of *document*.

    Keys in *drop* are removed at every depth, store-native timestamps become
    ``datetime`` values and tuples become lists. Document references and
    callables are kept as-is.
    """
    return _walk(document, drop, convert=True)


def strip_internal(document: Any) -> Any:
    """Remove bookkeeping keys without converting any values."""
    return _walk(document, INTERNAL_KEYS, convert=False)


def is_changed(before: Any, after: Any) -> bool:
    """Return True if *before* and *after* differ once normalized.

    ``createdAt``/``updatedAt`` never count as a change, at any depth.
    """
    return normalize(before, RESERVED_KEYS) != normalize(after, RESERVED_KEYS)
