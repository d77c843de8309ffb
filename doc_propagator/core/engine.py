"""Trigger factories.

Wires JoinQuery declarations to the resolver and propagation engine and
returns trigger objects: a watched document template plus an async handler
taking one Change. Binding triggers to a change feed is left to the caller,
or done directly with Propagator.attach() for stores that can watch.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Protocol

from doc_propagator.adapters.protocol import AsyncDocumentStore
from doc_propagator.core.config import PropagatorConfig
from doc_propagator.core.dependence import Projector
from doc_propagator.core.join import DataHandler, JoinResolver, JoinShouldRun
from doc_propagator.core.paths import collection_segments
from doc_propagator.core.propagate import Embedder, PropagateShouldRun, PropagationEngine
from doc_propagator.core.types import Change
from doc_propagator.core.writer import BatchedWriter, WriteReport
from doc_propagator.query.plan import JoinQuery
from doc_propagator.query.targets import group_by_trigger, propagation_targets

logger = logging.getLogger(__name__)


def _trigger_name(kind: str, template: str) -> str:
    return "_".join([kind, *collection_segments(template)])


class Trigger(Protocol):
    """Something a change feed can call for writes under ``template``."""

    @property
    def template(self) -> str: ...

    @property
    def name(self) -> str: ...

    async def __call__(self, change: Change) -> WriteReport: ...


class JoinTrigger:
    """Refreshes the materialized copies of one JoinQuery's source documents."""

    def __init__(self, resolver: JoinResolver) -> None:
        self._resolver = resolver
        self._template = resolver.query.from_template
        self._name = _trigger_name("join", self._template)

    @property
    def template(self) -> str:
        return self._template

    @property
    def name(self) -> str:
        return self._name

    @property
    def resolver(self) -> JoinResolver:
        return self._resolver

    async def __call__(self, change: Change) -> WriteReport:
        return await self._resolver.handle(change)

    def __repr__(self) -> str:
        return f"JoinTrigger(name={self._name!r}, template={self._template!r})"


class PropagateTrigger:
    """Patches dependents when a document of one referenced collection changes."""

    def __init__(self, engine: PropagationEngine) -> None:
        self._engine = engine
        self._template = engine.template
        self._name = _trigger_name("propagate", self._template)

    @property
    def template(self) -> str:
        return self._template

    @property
    def name(self) -> str:
        return self._name

    @property
    def engine(self) -> PropagationEngine:
        return self._engine

    async def __call__(self, change: Change) -> WriteReport:
        return await self._engine.handle(change)

    def __repr__(self) -> str:
        return f"PropagateTrigger(name={self._name!r}, template={self._template!r})"


def join(
    store: AsyncDocumentStore,
    query: JoinQuery,
    should_run: JoinShouldRun | None = None,
    data_handler: DataHandler | None = None,
    callback: Projector | None = None,
    config: PropagatorConfig | None = None,
) -> JoinTrigger:
    """Build the trigger that materializes *query* on every source write.

    Args:
        store: Document store the resolver reads from and writes to.
        query: Compiled join declaration.
        should_run: Per-branch gate; defaults to always true.
        data_handler: Base fields of the materialized document; defaults to
            the source document's data.
        callback: Shapes each referenced document before embedding; defaults
            to the document's data plus its ``id``.
        config: Runtime settings.
    """
    config = config or PropagatorConfig()
    resolver = JoinResolver(
        store,
        query,
        should_run=should_run,
        data_handler=data_handler,
        projector=callback,
        config=config,
        writer=BatchedWriter.from_config(config),
    )
    return JoinTrigger(resolver)


def propagate(
    store: AsyncDocumentStore,
    queries: Iterable[JoinQuery],
    should_run: PropagateShouldRun | None = None,
    callback: Embedder | None = None,
    config: PropagatorConfig | None = None,
) -> list[PropagateTrigger]:
    """Build one propagation trigger per referenced collection.

    References declared by several queries are deduplicated first, so a
    collection shared between joins is watched by a single trigger.
    """
    config = config or PropagatorConfig()
    triggers = []
    for template, targets in group_by_trigger(propagation_targets(queries)).items():
        engine = PropagationEngine(
            store,
            targets,
            should_run=should_run,
            callback=callback,
            config=config,
            writer=BatchedWriter.from_config(config),
        )
        triggers.append(PropagateTrigger(engine))
        logger.debug("[Propagate] %s watches %d target(s)", template, len(targets))
    return triggers


class Propagator:
    """Join and propagation triggers for a full set of queries."""

    def __init__(
        self, joins: Iterable[JoinTrigger], propagations: Iterable[PropagateTrigger]
    ) -> None:
        self._joins = list(joins)
        self._propagations = list(propagations)

    @property
    def joins(self) -> list[JoinTrigger]:
        return list(self._joins)

    @property
    def propagations(self) -> list[PropagateTrigger]:
        return list(self._propagations)

    def triggers(self) -> list[JoinTrigger | PropagateTrigger]:
        return [*self._joins, *self._propagations]

    def attach(self, store: Any) -> None:
        """Register every trigger with a store exposing ``watch(template, handler)``."""
        for trigger in self.triggers():
            store.watch(trigger.template, trigger)
            logger.info("Attached %s to %s", trigger.name, trigger.template)


def resolve(
    store: AsyncDocumentStore,
    queries: Iterable[JoinQuery],
    join_should_run: JoinShouldRun | None = None,
    join_callback: Projector | None = None,
    propagate_should_run: PropagateShouldRun | None = None,
    propagate_callback: Embedder | None = None,
    *,
    data_handler: DataHandler | None = None,
    config: PropagatorConfig | None = None,
) -> Propagator:
    """Build the join triggers and the propagation triggers for *queries*."""
    queries = list(queries)
    config = config or PropagatorConfig()
    joins = [
        join(store, query, join_should_run, data_handler, join_callback, config)
        for query in queries
    ]
    propagations = propagate(store, queries, propagate_should_run, propagate_callback, config)
    return Propagator(joins, propagations)
