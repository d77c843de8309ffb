"""Propagator configuration and store loading.

PropagatorConfig is a Pydantic model for type-safe runtime settings.
connect() resolves the configured driver to a store adapter, importing the
adapter module lazily so optional client libraries stay optional.
"""

from __future__ import annotations

import importlib
from typing import Any

from pydantic import BaseModel, Field

from doc_propagator.core.enums import StoreDriver
from doc_propagator.core.exceptions import AdapterError


class PropagatorConfig(BaseModel):
    """Configuration for the join resolver, propagation engine and store."""

    driver: str = "memory"
    project: str | None = None
    database: str | None = None
    max_concurrency: int = Field(default=16, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=0.1, ge=0)
    retry_max_delay: float = Field(default=2.0, ge=0)
    skip_unchanged_joins: bool = True
    extra: dict[str, Any] = {}


# Adapter module mapping: driver name -> (module_path, store_class)
_ADAPTER_MAP: dict[str, tuple[str, str]] = {
    StoreDriver.MEMORY.value: ("doc_propagator.adapters.memory", "MemoryDocumentStore"),
    StoreDriver.FIRESTORE.value: ("doc_propagator.adapters.firestore", "FirestoreDocumentStore"),
}


def _load_adapter(driver: str) -> Any:
    """Load a store adapter class by driver name."""
    driver_lower = driver.lower()
    if driver_lower not in _ADAPTER_MAP:
        raise AdapterError(f"Unsupported document store driver: {driver}")

    module_path, cls_name = _ADAPTER_MAP[driver_lower]
    try:
        module = importlib.import_module(module_path)
        return getattr(module, cls_name)
    except (ImportError, AttributeError) as e:
        raise AdapterError(f"Failed to load store adapter for '{driver}': {e}") from e


def connect(config: PropagatorConfig) -> Any:
    """Create the document store described by *config*."""
    return _load_adapter(config.driver).from_config(config)
