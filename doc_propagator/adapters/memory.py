"""In-process document store.

Implements the AsyncDocumentStore protocol on top of plain dicts, with
optimistic transactions, change-event delivery to watchers and write-failure
injection. Used for tests and local runs.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from doc_propagator.core.config import PropagatorConfig
from doc_propagator.core.exceptions import (
    DocumentNotFoundError,
    TransactionConflictError,
    TransactionStateError,
)
from doc_propagator.core.paths import match, matches, normalize_path, parent_collection
from doc_propagator.core.types import Change, DocumentSnapshot, Timestamp

logger = logging.getLogger(__name__)

T = TypeVar("T")

ChangeHandler = Callable[[Change], Awaitable[Any]]


class _TxState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class _Record:
    data: dict[str, Any]
    create_time: Timestamp
    update_time: Timestamp
    version: int


def _deep_merge(base: dict[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Merge *patch* into a copy of *base*, recursing into nested maps."""
    result = dict(base)
    for key, value in patch.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


class MemoryTransaction:
    """Optimistic transaction: reads are version-stamped, writes are buffered."""

    def __init__(self, store: MemoryDocumentStore) -> None:
        self._store = store
        self._reads: dict[str, int | None] = {}
        self._writes: list[tuple[str, str, dict[str, Any] | None, bool | list[str]]] = []
        self._state = _TxState.IDLE

    def _begin(self) -> None:
        self._state = _TxState.ACTIVE

    async def get(self, path: str) -> DocumentSnapshot:
        self._check_active("read")
        if self._writes:
            raise TransactionStateError("writing", "read")
        path = normalize_path(path)
        await asyncio.sleep(0)
        record = self._store._records.get(path)
        self._reads[path] = record.version if record is not None else None
        return self._store._snapshot(path)

    def set(self, path: str, data: dict[str, Any], merge: bool | list[str] = True) -> None:
        self._check_active("set")
        self._writes.append(("set", normalize_path(path), copy.deepcopy(data), merge))

    def update(self, path: str, data: dict[str, Any]) -> None:
        self._check_active("update")
        self._writes.append(("update", normalize_path(path), copy.deepcopy(data), False))

    def delete(self, path: str) -> None:
        self._check_active("delete")
        self._writes.append(("delete", normalize_path(path), None, False))

    def _is_stale(self) -> bool:
        for path, version in self._reads.items():
            record = self._store._records.get(path)
            current = record.version if record is not None else None
            if current != version:
                return True
        return False

    def _commit(self) -> list[Change]:
        """Apply buffered writes. Runs without suspending, so it is atomic."""
        for kind, path, _, _ in self._writes:
            self._store._raise_injected(path)
            if kind == "update" and path not in self._store._records:
                raise DocumentNotFoundError(path)
        changes = [
            self._store._apply(kind, path, data, merge) for kind, path, data, merge in self._writes
        ]
        self._state = _TxState.COMMITTED
        return changes

    def _rollback(self) -> None:
        if self._state == _TxState.COMMITTED:
            raise TransactionStateError("committed", "rollback")
        self._writes.clear()
        self._state = _TxState.ROLLED_BACK

    def _check_active(self, action: str) -> None:
        if self._state != _TxState.ACTIVE:
            raise TransactionStateError(self._state.value, action)


class MemoryDocumentStore:
    """Dict-backed AsyncDocumentStore with change events.

    Args:
        max_transaction_attempts: How many times a conflicting transaction is
            re-run before TransactionConflictError is raised.
    """

    def __init__(self, max_transaction_attempts: int = 5) -> None:
        self._records: dict[str, _Record] = {}
        self._watchers: list[tuple[str, ChangeHandler]] = []
        self._pending: set[asyncio.Task[Any]] = set()
        self._failures: dict[str, list[BaseException]] = {}
        self._last_ns = 0
        self._max_transaction_attempts = max_transaction_attempts
        self.write_log: list[tuple[str, str]] = []
        self.handler_errors: list[BaseException] = []

    @classmethod
    def from_config(cls, config: PropagatorConfig) -> MemoryDocumentStore:
        return cls(**config.extra)

    # --- reads ---

    async def get(self, path: str) -> DocumentSnapshot:
        await asyncio.sleep(0)
        return self._snapshot(normalize_path(path))

    async def get_many(self, paths: list[str]) -> list[DocumentSnapshot]:
        return list(await asyncio.gather(*(self.get(path) for path in paths)))

    async def query(self, collection: str, field: str, contains: Any) -> list[DocumentSnapshot]:
        await asyncio.sleep(0)
        collection = normalize_path(collection)
        results = []
        for path in sorted(self._records):
            if parent_collection(path) != collection:
                continue
            value = self._records[path].data.get(field)
            if isinstance(value, list) and contains in value:
                results.append(self._snapshot(path))
        return results

    # --- writes ---

    async def set(
        self, path: str, data: dict[str, Any], merge: bool | list[str] = True
    ) -> None:
        await asyncio.sleep(0)
        path = normalize_path(path)
        self._raise_injected(path)
        self._emit(self._apply("set", path, data, merge))

    async def update(self, path: str, data: dict[str, Any]) -> None:
        await asyncio.sleep(0)
        path = normalize_path(path)
        self._raise_injected(path)
        self._emit(self._apply("update", path, data, False))

    async def delete(self, path: str) -> None:
        await asyncio.sleep(0)
        path = normalize_path(path)
        self._raise_injected(path)
        self._emit(self._apply("delete", path, None, False))

    async def run_transaction(self, fn: Callable[[MemoryTransaction], Awaitable[T]]) -> T:
        for attempt in range(1, self._max_transaction_attempts + 1):
            transaction = MemoryTransaction(self)
            transaction._begin()
            try:
                result = await fn(transaction)
            except BaseException:
                transaction._rollback()
                raise
            if transaction._is_stale():
                logger.debug("Transaction conflict, retrying (attempt %d)", attempt)
                transaction._rollback()
                continue
            try:
                changes = transaction._commit()
            except BaseException:
                transaction._rollback()
                raise
            for change in changes:
                self._emit(change)
            return result
        raise TransactionConflictError(self._max_transaction_attempts)

    # --- change events ---

    def watch(self, template: str, handler: ChangeHandler) -> None:
        """Deliver a Change to *handler* for every write matching *template*."""
        self._watchers.append((normalize_path(template), handler))

    async def drain(self) -> None:
        """Wait until every triggered handler, including cascades, has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # --- test hooks ---

    def inject_failure(self, path: str, error: BaseException, times: int = 1) -> None:
        """Make the next *times* writes to *path* raise *error*."""
        self._failures.setdefault(normalize_path(path), []).extend([error] * times)

    def seed(self, path: str, data: dict[str, Any]) -> None:
        """Write a document without emitting a change event."""
        self._apply("set", normalize_path(path), data, False, log=False)

    # --- internals ---

    def _now(self) -> Timestamp:
        self._last_ns = max(time.time_ns(), self._last_ns + 1000)
        return Timestamp.from_nanoseconds(self._last_ns)

    def _snapshot(self, path: str) -> DocumentSnapshot:
        record = self._records.get(path)
        if record is None:
            return DocumentSnapshot.missing(path)
        return DocumentSnapshot(
            path=path,
            exists=True,
            _data=copy.deepcopy(record.data),
            create_time=record.create_time,
            update_time=record.update_time,
        )

    def _raise_injected(self, path: str) -> None:
        queued = self._failures.get(path)
        if queued:
            raise queued.pop(0)

    def _apply(
        self,
        kind: str,
        path: str,
        data: dict[str, Any] | None,
        merge: bool | list[str],
        log: bool = True,
    ) -> Change:
        before = self._snapshot(path)
        record = self._records.get(path)
        if kind == "update" and record is None:
            raise DocumentNotFoundError(path)
        if log:
            self.write_log.append((kind, path))

        if kind == "delete":
            self._records.pop(path, None)
            return Change(before=before, after=self._snapshot(path))

        assert data is not None
        now = self._now()
        if kind == "update":
            assert record is not None
            fields = dict(record.data)
            fields.update(copy.deepcopy(data))
        elif isinstance(merge, list):
            # Listed top-level fields are replaced wholesale
            fields = dict(record.data) if record is not None else {}
            fields.update({key: copy.deepcopy(data[key]) for key in merge if key in data})
        elif merge and record is not None:
            fields = _deep_merge(record.data, data)
        else:
            fields = copy.deepcopy(data)

        if record is None:
            self._records[path] = _Record(fields, now, now, 1)
        else:
            self._records[path] = _Record(fields, record.create_time, now, record.version + 1)
        return Change(before=before, after=self._snapshot(path))

    def _emit(self, change: Change) -> None:
        if not change.before.exists and not change.after.exists:
            return
        path = change.path
        for template, handler in self._watchers:
            if not matches(path, template):
                continue
            event = Change(before=change.before, after=change.after, params=match(path, template))
            task = asyncio.ensure_future(self._deliver(handler, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, handler: ChangeHandler, event: Change) -> None:
        try:
            await handler(event)
        except Exception as e:
            logger.exception("Change handler failed for %s", event.path)
            self.handler_errors.append(e)
