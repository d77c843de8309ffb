"""doc_propagator exception hierarchy.

All exceptions are doc_propagator-specific. Raw store client exceptions are
translated by the adapters and never reach the join or propagation code.
"""

from __future__ import annotations


class PropagatorError(Exception):
    """Base exception for all doc_propagator errors."""


# --- Templates ---


class PathTemplateError(PropagatorError):
    """Raised when a path template is malformed."""

    def __init__(self, template: str, detail: str) -> None:
        self.template = template
        super().__init__(f"Invalid path template '{template}': {detail}")


# --- Queries ---


class QueryCompilationError(PropagatorError):
    """Raised when a JoinQuery declaration fails validation during build()."""


# --- Store ---


class StoreError(PropagatorError):
    """Base for document store errors."""

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        super().__init__(f"{detail} (path: '{path}')")


class TransientStoreError(StoreError):
    """Raised when the store is temporarily unavailable. Safe to retry."""


class DocumentNotFoundError(StoreError):
    """Raised when a document required by a write does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(path, "Document not found")


class StorePermissionError(StoreError):
    """Raised when the store rejects an operation for lack of permission."""


# --- Transaction ---


class TransactionError(PropagatorError):
    """Base for transaction errors."""


class TransactionStateError(TransactionError):
    """Raised on invalid transaction state transitions."""

    def __init__(self, current_state: str, attempted_action: str) -> None:
        self.current_state = current_state
        self.attempted_action = attempted_action
        super().__init__(f"Cannot {attempted_action} transaction in state '{current_state}'")


class TransactionConflictError(TransactionError):
    """Raised when a transaction keeps losing to concurrent writers."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Transaction aborted after {attempts} conflicting attempts")


# --- Adapter ---


class AdapterError(PropagatorError):
    """Raised when a store adapter cannot be loaded or configured."""
