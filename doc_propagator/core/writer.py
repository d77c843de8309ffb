"""Bounded-concurrency writer with transient-failure retries.

Each WriteOperation is an independent unit (usually one transactional
read-modify-write on one document). Operations in the same wave never affect
each other: a failure is logged and recorded, and the wave carries on.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from doc_propagator.core.config import PropagatorConfig
from doc_propagator.core.exceptions import TransientStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WriteOperation:
    """One patch to apply.

    ``action`` returns True when it wrote something and False when it found
    nothing to change.
    """

    source: str
    target: str
    action: Callable[[], Awaitable[bool]]


@dataclass
class WriteReport:
    """Outcome of a wave of write operations, by target path."""

    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, BaseException] = field(default_factory=dict)

    def merge(self, other: WriteReport) -> WriteReport:
        self.written.extend(other.written)
        self.skipped.extend(other.skipped)
        self.failed.update(other.failed)
        return self

    @property
    def ok(self) -> bool:
        return not self.failed


class BatchedWriter:
    """Apply write operations with bounded concurrency and bounded retries.

    Args:
        max_concurrency: Maximum number of operations in flight.
        max_attempts: Attempts per operation, counting the first one.
        retry_base_delay: Delay before the first retry, doubled each time.
        retry_max_delay: Upper bound for a single retry delay.
    """

    def __init__(
        self,
        max_concurrency: int = 16,
        max_attempts: int = 3,
        retry_base_delay: float = 0.1,
        retry_max_delay: float = 2.0,
    ) -> None:
        self._max_concurrency = max_concurrency
        self._max_attempts = max_attempts
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay

    @classmethod
    def from_config(cls, config: PropagatorConfig) -> BatchedWriter:
        return cls(
            max_concurrency=config.max_concurrency,
            max_attempts=config.max_attempts,
            retry_base_delay=config.retry_base_delay,
            retry_max_delay=config.retry_max_delay,
        )

    async def apply(self, operations: Iterable[WriteOperation]) -> WriteReport:
        """Run every operation; never raises for a single operation's failure."""
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(operation: WriteOperation) -> WriteReport:
            async with semaphore:
                return await self.write(operation)

        report = WriteReport()
        for result in await asyncio.gather(*(_bounded(op) for op in operations)):
            report.merge(result)
        return report

    async def write(self, operation: WriteOperation) -> WriteReport:
        """Run one operation, retrying only transient store failures."""
        report = WriteReport()
        for attempt in range(1, self._max_attempts + 1):
            try:
                wrote = await operation.action()
            except TransientStoreError as e:
                if attempt == self._max_attempts:
                    logger.error(
                        "Abandoning write from %s to %s after %d attempts: %s",
                        operation.source,
                        operation.target,
                        attempt,
                        e,
                    )
                    report.failed[operation.target] = e
                    return report
                delay = min(self._retry_base_delay * (2 ** (attempt - 1)), self._retry_max_delay)
                logger.warning(
                    "Transient failure writing %s (attempt %d/%d), retrying in %.2fs: %s",
                    operation.target,
                    attempt,
                    self._max_attempts,
                    delay,
                    e,
                )
                await asyncio.sleep(delay)
            except Exception as e:
                logger.exception(
                    "Write from %s to %s failed, abandoning", operation.source, operation.target
                )
                report.failed[operation.target] = e
                return report
            else:
                if wrote:
                    report.written.append(operation.target)
                else:
                    report.skipped.append(operation.target)
                return report
        return report
