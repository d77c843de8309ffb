"""Join query declarations.

Frozen dataclasses built once from static configuration and shared, read-only,
by every trigger for the life of the process.
"""

from __future__ import annotations

from dataclasses import dataclass

from doc_propagator.core.paths import join_path, parent_collection

# Placeholder naming the changed document in propagation trigger templates
TRIGGER_ID_PLACEHOLDER = "documentID"


@dataclass(frozen=True)
class ParameterGroup:
    """Fan-out of one source document into one target per value."""

    parameter: str
    values: tuple[str, ...]


@dataclass(frozen=True)
class ReferenceBinding:
    """``source_field`` holds one id or a list of ids into ``collection``.

    The resolved documents are embedded under ``target_field``.
    """

    source_field: str
    target_field: str
    collection: str


@dataclass(frozen=True)
class JoinQuery:
    """Compiled, validated join declaration."""

    from_template: str
    to_template: str
    references: tuple[ReferenceBinding, ...] = ()
    group: ParameterGroup | None = None

    @property
    def target_collection(self) -> str:
        return parent_collection(self.to_template)


@dataclass(frozen=True)
class PropagationTarget:
    """Where materialized copies embedding ``collection`` documents live."""

    from_template: str
    to_template: str
    field: str
    document_id_field: str
    collection: str
    group: ParameterGroup | None = None

    @property
    def target_collection(self) -> str:
        return parent_collection(self.to_template)

    @property
    def trigger_template(self) -> str:
        """Document template whose changes feed this target."""
        return join_path(self.collection, "{" + TRIGGER_ID_PLACEHOLDER + "}")

    @property
    def identity(self) -> tuple[str, str, str, str, str]:
        return (
            self.field,
            self.from_template,
            self.to_template,
            self.document_id_field,
            self.target_collection,
        )
