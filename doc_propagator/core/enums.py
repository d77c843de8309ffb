"""Change and store driver enumerations."""

from __future__ import annotations

from enum import Enum


class ChangeType(Enum):
    """Kind of write carried by a change event."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class StoreDriver(Enum):
    """Supported document store backends."""

    MEMORY = "memory"
    FIRESTORE = "firestore"
