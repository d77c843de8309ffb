"""doc_propagator - materialized joins and change propagation for document stores."""

from __future__ import annotations

from doc_propagator.adapters.memory import MemoryDocumentStore
from doc_propagator.adapters.protocol import AsyncDocumentStore, StoreTransaction
from doc_propagator.core.config import PropagatorConfig, connect
from doc_propagator.core.dependence import Dependence
from doc_propagator.core.engine import (
    JoinTrigger,
    PropagateTrigger,
    Propagator,
    join,
    propagate,
    resolve,
)
from doc_propagator.core.enums import ChangeType, StoreDriver
from doc_propagator.core.exceptions import (
    AdapterError,
    DocumentNotFoundError,
    PathTemplateError,
    PropagatorError,
    QueryCompilationError,
    StoreError,
    StorePermissionError,
    TransactionConflictError,
    TransactionError,
    TransactionStateError,
    TransientStoreError,
)
from doc_propagator.core.join import JoinResolver
from doc_propagator.core.normalizer import is_changed, normalize
from doc_propagator.core.propagate import PropagationEngine
from doc_propagator.core.types import (
    Change,
    DocumentRef,
    DocumentSnapshot,
    JoinContext,
    Timestamp,
)
from doc_propagator.core.writer import BatchedWriter, WriteOperation, WriteReport
from doc_propagator.query import (
    JoinQuery,
    ParameterGroup,
    PropagationTarget,
    ReferenceBinding,
    join_query,
    reference,
)

__all__ = [
    # Configuration
    "PropagatorConfig",
    "connect",
    # Triggers
    "join",
    "propagate",
    "resolve",
    "JoinTrigger",
    "PropagateTrigger",
    "Propagator",
    # Query DSL
    "join_query",
    "reference",
    "JoinQuery",
    "ParameterGroup",
    "ReferenceBinding",
    "PropagationTarget",
    # Engine
    "JoinResolver",
    "PropagationEngine",
    "Dependence",
    "BatchedWriter",
    "WriteOperation",
    "WriteReport",
    # Normalization
    "normalize",
    "is_changed",
    # Store
    "AsyncDocumentStore",
    "StoreTransaction",
    "MemoryDocumentStore",
    # Types
    "Change",
    "DocumentRef",
    "DocumentSnapshot",
    "JoinContext",
    "Timestamp",
    # Enums
    "ChangeType",
    "StoreDriver",
    # Exceptions
    "PropagatorError",
    "PathTemplateError",
    "QueryCompilationError",
    "StoreError",
    "TransientStoreError",
    "DocumentNotFoundError",
    "StorePermissionError",
    "TransactionError",
    "TransactionStateError",
    "TransactionConflictError",
    "AdapterError",
]
