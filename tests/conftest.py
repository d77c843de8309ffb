"""Shared test fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from doc_propagator.adapters.memory import MemoryDocumentStore
from doc_propagator.core.config import PropagatorConfig
from doc_propagator.core.paths import match
from doc_propagator.core.types import Change, DocumentSnapshot


@pytest.fixture
def store() -> MemoryDocumentStore:
    """Empty in-memory document store."""
    return MemoryDocumentStore()


@pytest.fixture
def config() -> PropagatorConfig:
    """Config with retry delays disabled so retry tests run instantly."""
    return PropagatorConfig(retry_base_delay=0, retry_max_delay=0)


@pytest.fixture
def make_change():
    """Helper to build a Change from plain dicts.

    Usage:
        make_change("places/p1", before=None, after={"name": "A"}, template="places/{placeID}")
    """

    def _make(
        path: str,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        template: str | None = None,
    ) -> Change:
        def _snapshot(data: dict[str, Any] | None) -> DocumentSnapshot:
            if data is None:
                return DocumentSnapshot.missing(path)
            return DocumentSnapshot(path=path, exists=True, _data=data)

        params = match(path, template) if template is not None else {}
        return Change(before=_snapshot(before), after=_snapshot(after), params=params)

    return _make
