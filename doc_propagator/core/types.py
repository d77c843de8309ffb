"""Store-facing value types.

Frozen dataclasses shared by the adapters, the join resolver and the
propagation engine. Snapshots hand out deep copies of their data so that
concurrent branches working from the same event never alias each other.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from doc_propagator.core.enums import ChangeType


@runtime_checkable
class SupportsToDatetime(Protocol):
    """Any store-native timestamp value."""

    def to_datetime(self) -> datetime: ...


@dataclass(frozen=True, order=True)
class Timestamp:
    """Store-native timestamp with nanosecond precision."""

    seconds: int
    nanos: int = 0

    @classmethod
    def from_datetime(cls, value: datetime) -> Timestamp:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        seconds = int(value.timestamp())
        return cls(seconds=seconds, nanos=value.microsecond * 1000)

    @classmethod
    def from_nanoseconds(cls, value: int) -> Timestamp:
        seconds, nanos = divmod(value, 1_000_000_000)
        return cls(seconds=seconds, nanos=nanos)

    def to_datetime(self) -> datetime:
        """Convert to an aware UTC datetime (microsecond precision)."""
        base = datetime.fromtimestamp(self.seconds, tz=timezone.utc)
        return base.replace(microsecond=self.nanos // 1000)


@dataclass(frozen=True)
class DocumentRef:
    """Opaque reference to another document, stored as a value."""

    path: str

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class DocumentSnapshot:
    """Point-in-time read of a single document."""

    path: str
    exists: bool
    _data: dict[str, Any] | None = field(default=None, repr=False)
    create_time: Any = None
    update_time: Any = None

    @classmethod
    def missing(cls, path: str) -> DocumentSnapshot:
        return cls(path=path, exists=False)

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def data(self) -> dict[str, Any] | None:
        """Return a deep copy of the document fields, or None if absent."""
        if not self.exists or self._data is None:
            return None
        return copy.deepcopy(self._data)

    def get(self, field_name: str, default: Any = None) -> Any:
        if not self.exists or self._data is None:
            return default
        return copy.deepcopy(self._data.get(field_name, default))


@dataclass(frozen=True)
class Change:
    """A write observed on a watched document path."""

    before: DocumentSnapshot
    after: DocumentSnapshot
    params: dict[str, str] = field(default_factory=dict)

    @property
    def type(self) -> ChangeType:
        if not self.before.exists:
            return ChangeType.CREATE
        if self.after.exists:
            return ChangeType.UPDATE
        return ChangeType.DELETE

    @property
    def path(self) -> str:
        return self.after.path if self.after.exists else self.before.path


@dataclass(frozen=True)
class JoinContext:
    """Per-branch context handed to join callbacks."""

    params: dict[str, str]
    target_path: str
    group_value: str | None = None
