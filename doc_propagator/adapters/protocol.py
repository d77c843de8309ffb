"""Document store adapter protocols.

Every adapter module MUST implement these protocols. The join resolver and
the propagation engine only ever talk to a store through them.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar, runtime_checkable

from doc_propagator.core.types import DocumentSnapshot

T = TypeVar("T")


@runtime_checkable
class StoreTransaction(Protocol):
    """Read-then-write unit scoped to a single run_transaction call.

    Reads must happen before writes; writes are buffered until commit.
    """

    async def get(self, path: str) -> DocumentSnapshot:
        """Read a document inside the transaction."""
        ...

    def set(self, path: str, data: dict[str, Any], merge: bool | list[str] = True) -> None:
        """Buffer a set (merge by default)."""
        ...

    def update(self, path: str, data: dict[str, Any]) -> None:
        """Buffer a partial update of top-level fields."""
        ...

    def delete(self, path: str) -> None:
        """Buffer a delete."""
        ...


@runtime_checkable
class AsyncDocumentStore(Protocol):
    """Asynchronous document store protocol."""

    async def get(self, path: str) -> DocumentSnapshot:
        """Read one document. Missing documents yield ``exists=False``."""
        ...

    async def get_many(self, paths: list[str]) -> list[DocumentSnapshot]:
        """Read several documents in parallel, preserving order."""
        ...

    async def query(self, collection: str, field: str, contains: Any) -> list[DocumentSnapshot]:
        """Return documents of *collection* whose array *field* contains *contains*."""
        ...

    async def set(
        self, path: str, data: dict[str, Any], merge: bool | list[str] = True
    ) -> None:
        """Write a document; with merge, unspecified fields are kept.

        ``merge=True`` merges nested maps. A list of top-level field names
        replaces exactly those fields wholesale and keeps every other field.
        """
        ...

    async def update(self, path: str, data: dict[str, Any]) -> None:
        """Partially update an existing document."""
        ...

    async def delete(self, path: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""
        ...

    async def run_transaction(self, fn: Callable[[StoreTransaction], Awaitable[T]]) -> T:
        """Run *fn* atomically; the store may re-run it on contention."""
        ...
