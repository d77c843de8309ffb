"""Contract tests for document store protocol compliance."""

from __future__ import annotations

from doc_propagator.adapters.memory import MemoryDocumentStore, MemoryTransaction
from doc_propagator.adapters.protocol import AsyncDocumentStore, StoreTransaction


class TestMemoryStoreProtocol:
    def test_implements_store_protocol(self) -> None:
        assert isinstance(MemoryDocumentStore(), AsyncDocumentStore)

    async def test_transaction_implements_protocol(self) -> None:
        store = MemoryDocumentStore()
        seen = []

        async def fn(transaction) -> None:
            seen.append(isinstance(transaction, StoreTransaction))

        await store.run_transaction(fn)
        assert seen == [True]

    def test_transaction_class_shape(self) -> None:
        for name in ("get", "set", "update", "delete"):
            assert callable(getattr(MemoryTransaction, name))

    async def test_lifecycle(self) -> None:
        store = MemoryDocumentStore()

        await store.set("places/p1", {"name": "A", "dependencies": []})
        assert (await store.get("places/p1")).exists

        await store.update("places/p1", {"dependencies": ["tags/t1"]})
        found = await store.query("places", "dependencies", "tags/t1")
        assert [snapshot.id for snapshot in found] == ["p1"]

        await store.delete("places/p1")
        assert not (await store.get("places/p1")).exists
        assert store.write_log == [
            ("set", "places/p1"),
            ("update", "places/p1"),
            ("delete", "places/p1"),
        ]
