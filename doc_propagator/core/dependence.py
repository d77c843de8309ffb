"""Dependency tracking for a single join resolution.

A Dependence owns the store handle for the duration of one resolution and
records every concrete foreign document path it reads. The recorded set
becomes the ``dependencies`` field of the materialized document, which is the
key the propagation engine later searches on.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from doc_propagator.adapters.protocol import AsyncDocumentStore
from doc_propagator.core.normalizer import strip_internal
from doc_propagator.core.paths import join_path
from doc_propagator.core.types import DocumentSnapshot, JoinContext

logger = logging.getLogger(__name__)

Projector = Callable[[JoinContext, DocumentSnapshot], Any]


class Dependence:
    """Accumulates the foreign paths consulted while resolving one document."""

    def __init__(self, store: AsyncDocumentStore) -> None:
        self.store = store
        self._paths: dict[str, None] = {}

    @property
    def dependencies(self) -> list[str]:
        """Sorted, de-duplicated concrete paths recorded so far."""
        return sorted(self._paths)

    def _record(self, path: str) -> None:
        self._paths[path] = None

    async def resolve_one(
        self,
        collection: str,
        document_id: str | None,
        context: JoinContext,
        projector: Projector,
    ) -> Any:
        """Fetch and project one referenced document.

        Returns None without reading when *document_id* is empty, and None
        when the referenced document does not exist. The path is recorded in
        both read cases.
        """
        if not document_id:
            return None
        path = join_path(collection, document_id)
        snapshot = await self.store.get(path)
        self._record(path)
        if not snapshot.exists:
            logger.debug("Referenced document %s does not exist", path)
            return None
        return strip_internal(projector(context, snapshot))

    async def resolve_many(
        self,
        collection: str,
        document_ids: list[str],
        context: JoinContext,
        projector: Projector,
    ) -> list[Any]:
        """Fetch and project several referenced documents concurrently.

        Missing documents are filtered out, but every attempted path is still
        recorded since the reference itself was established.
        """
        if not document_ids:
            return []
        paths = [join_path(collection, document_id) for document_id in document_ids]
        snapshots = await self.store.get_many(paths)
        for path in paths:
            self._record(path)

        results = []
        for snapshot in snapshots:
            if not snapshot.exists:
                continue
            value = projector(context, snapshot)
            if value is not None:
                results.append(strip_internal(value))
        return results
