"""Join query DSL builder.

Provides a fluent builder for declaring join queries and validates them when
build() is called.
"""

from __future__ import annotations

from collections.abc import Iterable

from doc_propagator.core.exceptions import QueryCompilationError
from doc_propagator.core.paths import (
    extract_placeholders,
    is_collection_path,
    is_document_path,
    normalize_path,
)
from doc_propagator.query.plan import JoinQuery, ParameterGroup, ReferenceBinding


def reference(source_field: str, target_field: str, collection: str) -> ReferenceBinding:
    """Declare that *source_field* references documents of *collection*."""
    return ReferenceBinding(
        source_field=source_field,
        target_field=target_field,
        collection=normalize_path(collection),
    )


def join_query(from_template: str, to_template: str) -> JoinQueryBuilder:
    """Entry point for the join query DSL.

    Args:
        from_template: Document template of the source, e.g. ``companies/{companyID}``.
        to_template: Document template of the materialized copy.

    Returns:
        A builder for chaining reference and group declarations.
    """
    return JoinQueryBuilder(from_template, to_template)


class JoinQueryBuilder:
    """Fluent builder for join query definitions."""

    def __init__(self, from_template: str, to_template: str) -> None:
        self._from = normalize_path(from_template)
        self._to = normalize_path(to_template)
        self._references: list[ReferenceBinding] = []
        self._group: ParameterGroup | None = None

    def reference(
        self, source_field: str, target_field: str, collection: str
    ) -> JoinQueryBuilder:
        """Embed the documents referenced by *source_field* under *target_field*."""
        self._references.append(reference(source_field, target_field, collection))
        return self

    def group(self, parameter: str, values: Iterable[str]) -> JoinQueryBuilder:
        """Fan out into one materialized document per value of *parameter*."""
        self._group = ParameterGroup(parameter=parameter, values=tuple(values))
        return self

    def build(self) -> JoinQuery:
        """Compile and validate the declaration into a JoinQuery."""
        if not is_document_path(self._from):
            raise QueryCompilationError(f"Source template '{self._from}' is not a document path")
        if not is_document_path(self._to):
            raise QueryCompilationError(f"Target template '{self._to}' is not a document path")
        if self._from == self._to:
            raise QueryCompilationError(
                f"Source and target templates must differ, got '{self._from}' for both"
            )

        bound = set(extract_placeholders(self._from))
        if self._group is not None:
            if not self._group.values:
                raise QueryCompilationError(
                    f"Group '{self._group.parameter}' must declare at least one value"
                )
            if len(set(self._group.values)) != len(self._group.values):
                raise QueryCompilationError(
                    f"Group '{self._group.parameter}' has duplicate values"
                )
            if self._group.parameter not in extract_placeholders(self._to):
                raise QueryCompilationError(
                    f"Group parameter '{self._group.parameter}' does not appear in "
                    f"target template '{self._to}'"
                )
            bound.add(self._group.parameter)

        unbound = [name for name in extract_placeholders(self._to) if name not in bound]
        if unbound:
            raise QueryCompilationError(
                f"Target template '{self._to}' uses unbound placeholders {unbound}"
            )

        target_fields: set[str] = set()
        for ref in self._references:
            if not is_collection_path(ref.collection):
                raise QueryCompilationError(
                    f"Reference '{ref.source_field}' collection '{ref.collection}' "
                    "is not a collection path"
                )
            if ref.target_field in target_fields:
                raise QueryCompilationError(
                    f"Duplicate target field '{ref.target_field}': each reference must "
                    "embed into its own field"
                )
            target_fields.add(ref.target_field)
            unbound = [name for name in extract_placeholders(ref.collection) if name not in bound]
            if unbound:
                raise QueryCompilationError(
                    f"Reference collection '{ref.collection}' uses unbound placeholders {unbound}"
                )

        return JoinQuery(
            from_template=self._from,
            to_template=self._to,
            references=tuple(self._references),
            group=self._group,
        )
