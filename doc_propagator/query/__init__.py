"""Query layer - join declarations and the propagation targets derived from them."""

from __future__ import annotations

from doc_propagator.query.builder import JoinQueryBuilder, join_query, reference
from doc_propagator.query.plan import (
    JoinQuery,
    ParameterGroup,
    PropagationTarget,
    ReferenceBinding,
)
from doc_propagator.query.targets import group_by_trigger, propagation_targets

__all__ = [
    "join_query",
    "reference",
    "JoinQueryBuilder",
    "JoinQuery",
    "ParameterGroup",
    "ReferenceBinding",
    "PropagationTarget",
    "propagation_targets",
    "group_by_trigger",
]
