"""Google Cloud Firestore adapter using google-cloud-firestore's AsyncClient."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime
from typing import Any, TypeVar

from doc_propagator.core.config import PropagatorConfig
from doc_propagator.core.exceptions import (
    DocumentNotFoundError,
    StoreError,
    StorePermissionError,
    TransientStoreError,
)
from doc_propagator.core.paths import normalize_path
from doc_propagator.core.types import DocumentRef, DocumentSnapshot, Timestamp

T = TypeVar("T")


@contextmanager
def _translate_errors(path: str) -> Iterator[None]:
    """Re-raise google.api_core errors as StoreError subclasses."""
    from google.api_core import exceptions as api_exceptions

    try:
        yield
    except (
        api_exceptions.ServiceUnavailable,
        api_exceptions.DeadlineExceeded,
        api_exceptions.InternalServerError,
        api_exceptions.TooManyRequests,
    ) as e:
        raise TransientStoreError(path, str(e)) from e
    except api_exceptions.NotFound as e:
        raise DocumentNotFoundError(path) from e
    except (api_exceptions.PermissionDenied, api_exceptions.Unauthenticated) as e:
        raise StorePermissionError(path, str(e)) from e
    except api_exceptions.GoogleAPICallError as e:
        raise StoreError(path, str(e)) from e


def _to_timestamp(value: datetime | None) -> Timestamp | None:
    if value is None:
        return None
    timestamp = Timestamp.from_datetime(value)
    nanosecond = getattr(value, "nanosecond", None)
    if nanosecond:
        return Timestamp(seconds=timestamp.seconds, nanos=nanosecond)
    return timestamp


def _from_native(value: Any) -> Any:
    """Replace Firestore document references with DocumentRef values."""
    from google.cloud.firestore import AsyncDocumentReference, DocumentReference

    if isinstance(value, (AsyncDocumentReference, DocumentReference)):
        return DocumentRef(value.path)
    if isinstance(value, Mapping):
        return {key: _from_native(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_from_native(item) for item in value]
    return value


class FirestoreDocumentStore:
    """AsyncDocumentStore backed by a Firestore database.

    Args:
        client: A ``google.cloud.firestore.AsyncClient``.
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_config(cls, config: PropagatorConfig) -> FirestoreDocumentStore:
        from google.cloud import firestore

        kwargs: dict[str, Any] = dict(config.extra)
        if config.project is not None:
            kwargs["project"] = config.project
        if config.database is not None:
            kwargs["database"] = config.database
        return cls(firestore.AsyncClient(**kwargs))

    @property
    def client(self) -> Any:
        return self._client

    def _to_native(self, value: Any) -> Any:
        if isinstance(value, DocumentRef):
            return self._client.document(value.path)
        if isinstance(value, Timestamp):
            return value.to_datetime()
        if isinstance(value, Mapping):
            return {key: self._to_native(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._to_native(item) for item in value]
        return value

    def _snapshot(self, path: str, native: Any) -> DocumentSnapshot:
        if not native.exists:
            return DocumentSnapshot.missing(path)
        return DocumentSnapshot(
            path=normalize_path(native.reference.path),
            exists=True,
            _data=_from_native(native.to_dict() or {}),
            create_time=_to_timestamp(native.create_time),
            update_time=_to_timestamp(native.update_time),
        )

    async def get(self, path: str) -> DocumentSnapshot:
        path = normalize_path(path)
        with _translate_errors(path):
            native = await self._client.document(path).get()
        return self._snapshot(path, native)

    async def get_many(self, paths: list[str]) -> list[DocumentSnapshot]:
        return list(await asyncio.gather(*(self.get(path) for path in paths)))

    async def query(self, collection: str, field: str, contains: Any) -> list[DocumentSnapshot]:
        from google.cloud.firestore_v1.base_query import FieldFilter

        collection = normalize_path(collection)
        query = self._client.collection(collection).where(
            filter=FieldFilter(field, "array_contains", self._to_native(contains))
        )
        snapshots = []
        with _translate_errors(collection):
            async for native in query.stream():
                snapshots.append(self._snapshot(normalize_path(native.reference.path), native))
        return snapshots

    async def set(
        self, path: str, data: dict[str, Any], merge: bool | list[str] = True
    ) -> None:
        path = normalize_path(path)
        with _translate_errors(path):
            await self._client.document(path).set(self._to_native(data), merge=merge)

    async def update(self, path: str, data: dict[str, Any]) -> None:
        path = normalize_path(path)
        with _translate_errors(path):
            await self._client.document(path).update(self._to_native(data))

    async def delete(self, path: str) -> None:
        path = normalize_path(path)
        with _translate_errors(path):
            await self._client.document(path).delete()

    async def run_transaction(self, fn: Callable[[FirestoreTransaction], Awaitable[T]]) -> T:
        from google.cloud import firestore

        @firestore.async_transactional
        async def _run(transaction: Any) -> T:
            return await fn(FirestoreTransaction(self, transaction))

        with _translate_errors(""):
            return await _run(self._client.transaction())


class FirestoreTransaction:
    """StoreTransaction over a native AsyncTransaction."""

    def __init__(self, store: FirestoreDocumentStore, transaction: Any) -> None:
        self._store = store
        self._transaction = transaction

    async def get(self, path: str) -> DocumentSnapshot:
        path = normalize_path(path)
        with _translate_errors(path):
            native = await self._store.client.document(path).get(transaction=self._transaction)
        return self._store._snapshot(path, native)

    def set(self, path: str, data: dict[str, Any], merge: bool | list[str] = True) -> None:
        reference = self._store.client.document(normalize_path(path))
        self._transaction.set(reference, self._store._to_native(data), merge=merge)

    def update(self, path: str, data: dict[str, Any]) -> None:
        reference = self._store.client.document(normalize_path(path))
        self._transaction.update(reference, self._store._to_native(data))

    def delete(self, path: str) -> None:
        self._transaction.delete(self._store.client.document(normalize_path(path)))
