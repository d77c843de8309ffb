"""Propagation target derivation.

Turns the full set of join queries into the reverse view used by the
propagation engine: for each referenced collection, where the materialized
copies live and which field mirrors it.
"""

from __future__ import annotations

from collections.abc import Iterable

from doc_propagator.query.plan import JoinQuery, PropagationTarget


def propagation_targets(queries: Iterable[JoinQuery]) -> list[PropagationTarget]:
    """Derive de-duplicated propagation targets, preserving declaration order.

    Two references with the same field, source template, target template,
    id field and target collection produce a single target, so a collection
    referenced by several joins is scanned once.
    """
    seen: set[tuple[str, str, str, str, str]] = set()
    targets: list[PropagationTarget] = []
    for query in queries:
        for ref in query.references:
            target = PropagationTarget(
                from_template=query.from_template,
                to_template=query.to_template,
                field=ref.target_field,
                document_id_field=ref.source_field,
                collection=ref.collection,
                group=query.group,
            )
            if target.identity in seen:
                continue
            seen.add(target.identity)
            targets.append(target)
    return targets


def group_by_trigger(targets: Iterable[PropagationTarget]) -> dict[str, list[PropagationTarget]]:
    """Group targets by the document template that triggers them."""
    grouped: dict[str, list[PropagationTarget]] = {}
    for target in targets:
        grouped.setdefault(target.trigger_template, []).append(target)
    return grouped
