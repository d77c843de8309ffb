"""Propagation engine.

When a referenced document changes, every materialized copy whose
``dependencies`` contains its path is patched in place: list fields have the
entry with the matching ``id`` replaced, scalar fields are replaced
wholesale. Writes whose normalized content would not change are skipped,
which is what stops join and propagation writes from feeding each other
forever.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from doc_propagator.adapters.protocol import AsyncDocumentStore, StoreTransaction
from doc_propagator.core.config import PropagatorConfig
from doc_propagator.core.exceptions import QueryCompilationError
from doc_propagator.core.normalizer import BATCH_ID_KEY, DEPENDENCIES_KEY, is_changed, normalize
from doc_propagator.core.paths import (
    document_id,
    has_placeholders,
    match,
    normalize_path,
    resolve,
)
from doc_propagator.core.types import Change, DocumentSnapshot
from doc_propagator.core.writer import BatchedWriter, WriteOperation, WriteReport
from doc_propagator.query.plan import TRIGGER_ID_PLACEHOLDER, PropagationTarget

logger = logging.getLogger(__name__)

PropagateShouldRun = Callable[[DocumentSnapshot, DocumentSnapshot], bool]
Embedder = Callable[[DocumentSnapshot, DocumentSnapshot], dict[str, Any] | None]


def always_propagate(before: DocumentSnapshot, after: DocumentSnapshot) -> bool:
    return True


def embed_after_with_id(before: DocumentSnapshot, after: DocumentSnapshot) -> dict[str, Any]:
    """Default embedder: the changed document plus its id."""
    return {**(after.data() or {}), "id": after.id}


def _holds(entry: Any, source_id: str) -> bool:
    """Return True if a list entry embeds (or is) the given document id."""
    if isinstance(entry, Mapping):
        return entry.get("id") == source_id
    return entry == source_id


def _embeds_other(value: Any, source_id: str) -> bool:
    """Return True if a scalar field visibly embeds a different document."""
    return isinstance(value, Mapping) and "id" in value and value["id"] != source_id


@dataclass(frozen=True)
class ResolvedTarget:
    """A propagation target bound to one concrete target collection."""

    target: PropagationTarget
    collection: str


class PropagationEngine:
    """Patches materialized copies when a document of one collection changes.

    Args:
        store: Document store handle.
        targets: Propagation targets sharing a single trigger template.
        should_run: Gate evaluated once per change before any query.
        callback: Builds the embeddable projection of the changed document.
        config: Runtime settings; defaults apply when omitted.
        writer: Writer for dependent patches; built from config when omitted.

    Raises:
        QueryCompilationError: If *targets* is empty or mixes trigger templates.
    """

    def __init__(
        self,
        store: AsyncDocumentStore,
        targets: Iterable[PropagationTarget],
        *,
        should_run: PropagateShouldRun | None = None,
        callback: Embedder | None = None,
        config: PropagatorConfig | None = None,
        writer: BatchedWriter | None = None,
    ) -> None:
        self._targets = list(targets)
        if not self._targets:
            raise QueryCompilationError("PropagationEngine needs at least one target")
        templates = {target.trigger_template for target in self._targets}
        if len(templates) > 1:
            raise QueryCompilationError(
                f"Targets of one PropagationEngine must share a trigger, got {sorted(templates)}"
            )
        self._template = templates.pop()
        self._store = store
        self._should_run = should_run or always_propagate
        self._callback = callback or embed_after_with_id
        config = config or PropagatorConfig()
        self._writer = writer or BatchedWriter.from_config(config)

    @property
    def template(self) -> str:
        return self._template

    @property
    def targets(self) -> list[PropagationTarget]:
        return list(self._targets)

    def resolve_targets(self, params: dict[str, str]) -> list[ResolvedTarget]:
        """Bind every target collection with the trigger params and group values.

        Targets that resolve to the same concrete collection with the same
        field, templates and id field are scanned once.
        """
        # The changed document id is not a target collection parameter
        binding = {key: value for key, value in params.items() if key != TRIGGER_ID_PLACEHOLDER}
        seen: set[tuple[str, ...]] = set()
        resolved: list[ResolvedTarget] = []
        for target in self._targets:
            base = resolve(target.target_collection, binding)
            group = target.group
            if group is None:
                collections = [base]
            else:
                collections = [resolve(base, {group.parameter: value}) for value in group.values]
            for collection in collections:
                if has_placeholders(collection):
                    logger.warning(
                        "[Propagate] target collection %s is not concrete, skipping", collection
                    )
                    continue
                key = (*target.identity, collection)
                if key in seen:
                    continue
                seen.add(key)
                resolved.append(ResolvedTarget(target=target, collection=collection))
        return resolved

    async def handle(self, change: Change) -> WriteReport:
        """Process one change event on a referenced document."""
        before, after = change.before, change.after
        if not before.exists:
            return WriteReport()
        if not self._should_run(before, after):
            logger.debug("[Propagate] skipped by should_run: %s", change.path)
            return WriteReport()

        source_path = normalize_path(change.path)
        resolved = self.resolve_targets(change.params)
        found = await asyncio.gather(
            *(self._find_dependents(target, source_path) for target in resolved),
            return_exceptions=True,
        )

        dependents: list[tuple[ResolvedTarget, DocumentSnapshot]] = []
        for target, result in zip(resolved, found, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "[Propagate] dependency lookup in %s for %s failed: %r",
                    target.collection,
                    source_path,
                    result,
                    exc_info=result,
                )
                continue
            dependents.extend((target, snapshot) for snapshot in result)

        if after.exists:
            operations = self._update_operations(before, after, source_path, dependents)
        else:
            operations = self._delete_operations(before, source_path, dependents)
        return await self._writer.apply(operations)

    async def _find_dependents(
        self, target: ResolvedTarget, source_path: str
    ) -> list[DocumentSnapshot]:
        return await self._store.query(target.collection, DEPENDENCIES_KEY, source_path)

    # --- update ---

    def _update_operations(
        self,
        before: DocumentSnapshot,
        after: DocumentSnapshot,
        source_path: str,
        dependents: list[tuple[ResolvedTarget, DocumentSnapshot]],
    ) -> list[WriteOperation]:
        projection = self._callback(before, after)
        if projection is None:
            return []
        source_id = document_id(source_path)
        payload = normalize({**projection, "id": source_id})
        batch_id = after.get(BATCH_ID_KEY) or uuid4().hex

        operations = []
        for target, snapshot in dependents:
            logger.info("[Propagate][onUpdate] from:%s to:%s", source_path, snapshot.path)
            operations.append(
                WriteOperation(
                    source_path,
                    snapshot.path,
                    self._bind_update(
                        snapshot.path, target.target.field, source_id, payload, batch_id
                    ),
                )
            )
        return operations

    def _bind_update(
        self, path: str, field: str, source_id: str, payload: dict[str, Any], batch_id: str
    ) -> Callable[[], Awaitable[bool]]:
        async def _patch(transaction: StoreTransaction) -> bool:
            snapshot = await transaction.get(path)
            if not snapshot.exists:
                return False
            current = snapshot.get(field)
            if isinstance(current, list):
                index = next(
                    (i for i, entry in enumerate(current) if _holds(entry, source_id)), None
                )
                if index is None or not is_changed(current[index], payload):
                    return False
                updated = list(current)
                updated[index] = payload
                transaction.update(path, {field: updated, BATCH_ID_KEY: batch_id})
                return True
            if _embeds_other(current, source_id) or not is_changed(current, payload):
                return False
            transaction.update(path, {field: payload, BATCH_ID_KEY: batch_id})
            return True

        return lambda: self._store.run_transaction(_patch)

    # --- delete ---

    def _delete_operations(
        self,
        before: DocumentSnapshot,
        source_path: str,
        dependents: list[tuple[ResolvedTarget, DocumentSnapshot]],
    ) -> list[WriteOperation]:
        source_id = document_id(source_path)
        batch_id = before.get(BATCH_ID_KEY) or uuid4().hex

        operations = []
        sources: set[tuple[str, str]] = set()
        for target, snapshot in dependents:
            logger.info("[Propagate][onDelete] from:%s to:%s", source_path, snapshot.path)
            operations.append(
                WriteOperation(
                    source_path,
                    snapshot.path,
                    self._bind_delete(
                        snapshot.path, target.target.field, source_path, source_id, batch_id
                    ),
                )
            )
            declaring = self._declaring_source(snapshot.path, target.target)
            if declaring is not None:
                sources.add((declaring, target.target.document_id_field))

        for path, id_field in sorted(sources):
            operations.append(
                WriteOperation(source_path, path, self._bind_prune(path, id_field, source_id))
            )
        return operations

    def _declaring_source(self, dependent_path: str, target: PropagationTarget) -> str | None:
        """Map a dependent copy back to the source document that declared the reference."""
        params = match(dependent_path, target.to_template)
        if not params:
            logger.warning(
                "[Propagate] %s does not match %s, cannot locate its source",
                dependent_path,
                target.to_template,
            )
            return None
        path = resolve(target.from_template, params)
        if has_placeholders(path):
            logger.warning("[Propagate] source path %s is not concrete, skipping", path)
            return None
        return path

    def _bind_delete(
        self, path: str, field: str, source_path: str, source_id: str, batch_id: str
    ) -> Callable[[], Awaitable[bool]]:
        async def _patch(transaction: StoreTransaction) -> bool:
            snapshot = await transaction.get(path)
            if not snapshot.exists:
                return False
            updates: dict[str, Any] = {}
            current = snapshot.get(field)
            if isinstance(current, list):
                remaining = [entry for entry in current if not _holds(entry, source_id)]
                if len(remaining) != len(current):
                    updates[field] = remaining
            elif current is not None and not _embeds_other(current, source_id):
                updates[field] = None

            dependencies = snapshot.get(DEPENDENCIES_KEY) or []
            if source_path in dependencies:
                updates[DEPENDENCIES_KEY] = [dep for dep in dependencies if dep != source_path]

            if not updates:
                return False
            updates[BATCH_ID_KEY] = batch_id
            transaction.update(path, updates)
            return True

        return lambda: self._store.run_transaction(_patch)

    def _bind_prune(
        self, path: str, id_field: str, source_id: str
    ) -> Callable[[], Awaitable[bool]]:
        async def _patch(transaction: StoreTransaction) -> bool:
            snapshot = await transaction.get(path)
            if not snapshot.exists:
                return False
            value = snapshot.get(id_field)
            if isinstance(value, list):
                if source_id not in value:
                    return False
                transaction.update(path, {id_field: [item for item in value if item != source_id]})
                return True
            if value != source_id:
                return False
            transaction.update(path, {id_field: None})
            return True

        return lambda: self._store.run_transaction(_patch)
