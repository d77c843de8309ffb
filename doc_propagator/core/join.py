"""Join resolver.

Turns a change on a source document into an up-to-date materialized copy:
every declared reference is resolved and embedded, bookkeeping fields are
stamped, and each top-level field of the result replaces its counterpart in
the target document. With a parameter group the work fans out into one
independent branch per group value.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any
from uuid import uuid4

from doc_propagator.adapters.protocol import AsyncDocumentStore
from doc_propagator.core.config import PropagatorConfig
from doc_propagator.core.dependence import Dependence, Projector
from doc_propagator.core.normalizer import (
    BATCH_ID_KEY,
    CREATED_AT_KEY,
    DEPENDENCIES_KEY,
    UPDATED_AT_KEY,
    is_changed,
    normalize,
)
from doc_propagator.core.paths import resolve
from doc_propagator.core.types import Change, DocumentSnapshot, JoinContext
from doc_propagator.core.writer import BatchedWriter, WriteOperation, WriteReport
from doc_propagator.query.plan import JoinQuery, ReferenceBinding

logger = logging.getLogger(__name__)

JoinShouldRun = Callable[[JoinContext, DocumentSnapshot], bool]
DataHandler = Callable[[JoinContext, DocumentSnapshot], dict[str, Any] | None]


def always_run(context: JoinContext, snapshot: DocumentSnapshot) -> bool:
    return True


def source_data(context: JoinContext, snapshot: DocumentSnapshot) -> dict[str, Any] | None:
    """Default data handler: the source document as stored."""
    return snapshot.data()


def embed_with_id(context: JoinContext, snapshot: DocumentSnapshot) -> dict[str, Any]:
    """Default projector: the referenced document plus its id."""
    return {**(snapshot.data() or {}), "id": snapshot.id}


def _is_id_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


class JoinResolver:
    """Maintains the materialized copies declared by one JoinQuery.

    Args:
        store: Document store handle, shared read-only across branches.
        query: The join declaration.
        should_run: Gate evaluated per branch before any read or write.
        data_handler: Produces the base fields of the materialized document.
        projector: Shapes each referenced document before it is embedded.
        config: Runtime settings; defaults apply when omitted.
        writer: Writer used for target writes; built from config when omitted.
    """

    def __init__(
        self,
        store: AsyncDocumentStore,
        query: JoinQuery,
        *,
        should_run: JoinShouldRun | None = None,
        data_handler: DataHandler | None = None,
        projector: Projector | None = None,
        config: PropagatorConfig | None = None,
        writer: BatchedWriter | None = None,
    ) -> None:
        self._store = store
        self._query = query
        self._should_run = should_run or always_run
        self._data_handler = data_handler or source_data
        self._projector = projector or embed_with_id
        self._config = config or PropagatorConfig()
        self._writer = writer or BatchedWriter.from_config(self._config)

    @property
    def query(self) -> JoinQuery:
        return self._query

    def branches(self, params: dict[str, str]) -> list[tuple[JoinContext, dict[str, str]]]:
        """Return one (context, binding) pair per target the change maps to."""
        group = self._query.group
        if group is None:
            binding = dict(params)
            context = JoinContext(
                params=binding, target_path=resolve(self._query.to_template, binding)
            )
            return [(context, binding)]

        result = []
        for value in group.values:
            binding = {**params, group.parameter: value}
            context = JoinContext(
                params=binding,
                target_path=resolve(self._query.to_template, binding),
                group_value=value,
            )
            result.append((context, binding))
        return result

    async def handle(self, change: Change) -> WriteReport:
        """Process one change event on the source document."""
        report = WriteReport()
        if not change.before.exists and not change.after.exists:
            return report

        branches = self.branches(change.params)
        results = await asyncio.gather(
            *(self._run_branch(change, context, binding) for context, binding in branches),
            return_exceptions=True,
        )
        for (context, _), result in zip(branches, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "[Join] from:%s to:%s failed: %r",
                    change.path,
                    context.target_path,
                    result,
                    exc_info=result,
                )
                report.failed[context.target_path] = result
            else:
                report.merge(result)
        return report

    async def _run_branch(
        self, change: Change, context: JoinContext, binding: dict[str, str]
    ) -> WriteReport:
        snapshot = change.after if change.after.exists else change.before
        if not self._should_run(context, snapshot):
            logger.debug("[Join] skipped by should_run: %s", context.target_path)
            return WriteReport()

        target = context.target_path
        if not change.after.exists:
            logger.info("[Join][onDelete] from:%s to:%s", change.path, target)
            return await self._writer.write(
                WriteOperation(change.path, target, lambda: self._delete(target))
            )

        kind = "onCreate" if not change.before.exists else "onUpdate"
        logger.info("[Join][%s] from:%s to:%s", kind, change.path, target)
        document = await self.materialize(change, context, binding)
        return await self._writer.write(
            WriteOperation(
                change.path,
                target,
                lambda: self._upsert(target, document, change.after.create_time),
            )
        )

    async def materialize(
        self, change: Change, context: JoinContext, binding: dict[str, str]
    ) -> dict[str, Any]:
        """Build the materialized document for one branch without writing it."""
        after = change.after
        raw = after.data() or {}
        base = self._data_handler(context, after) or {}

        dependence = Dependence(self._store)
        references = self._query.references
        values = await asyncio.gather(
            *(self._resolve_reference(dependence, ref, raw, context, binding) for ref in references)
        )
        resolved = {ref.target_field: value for ref, value in zip(references, values, strict=True)}

        document: dict[str, Any] = normalize({**base, **resolved})
        # Top-level timestamps describe the materialized copy, never the source
        document.pop(CREATED_AT_KEY, None)
        document.pop(UPDATED_AT_KEY, None)
        if not change.before.exists and after.create_time is not None:
            document[CREATED_AT_KEY] = normalize(after.create_time)
        if after.update_time is not None:
            document[UPDATED_AT_KEY] = normalize(after.update_time)
        document[DEPENDENCIES_KEY] = dependence.dependencies
        document[BATCH_ID_KEY] = uuid4().hex
        return document

    async def _resolve_reference(
        self,
        dependence: Dependence,
        ref: ReferenceBinding,
        data: dict[str, Any],
        context: JoinContext,
        binding: dict[str, str],
    ) -> Any:
        value = data.get(ref.source_field)
        collection = resolve(ref.collection, binding)
        if isinstance(value, str):
            return await dependence.resolve_one(collection, value, context, self._projector)
        if _is_id_list(value):
            ids = [item for item in value if item]
            return await dependence.resolve_many(collection, ids, context, self._projector)
        if value is not None:
            logger.debug(
                "[Join] field '%s' is neither an id nor a list of ids, embedding None",
                ref.source_field,
            )
        return None

    async def _upsert(self, target: str, document: dict[str, Any], create_time: Any) -> bool:
        if self._config.skip_unchanged_joins:
            existing = await self._store.get(target)
            if existing.exists:
                current = existing.data() or {}
                overlap = {key: current.get(key) for key in document}
                same_dependencies = sorted(current.get(DEPENDENCIES_KEY) or []) == (
                    document[DEPENDENCIES_KEY]
                )
                if same_dependencies and not is_changed(overlap, document):
                    logger.debug("[Join] %s unchanged, skipping write", target)
                    return False
            elif create_time is not None:
                document = {**document, CREATED_AT_KEY: normalize(create_time)}
        await self._store.set(target, document, merge=list(document))
        return True

    async def _delete(self, target: str) -> bool:
        if self._config.skip_unchanged_joins:
            existing = await self._store.get(target)
            if not existing.exists:
                return False
        await self._store.delete(target)
        return True
