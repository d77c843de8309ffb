"""Unit tests for the per-resolution dependency tracker."""

from __future__ import annotations

from doc_propagator.adapters.memory import MemoryDocumentStore
from doc_propagator.core.dependence import Dependence
from doc_propagator.core.join import embed_with_id
from doc_propagator.core.types import JoinContext

CONTEXT = JoinContext(params={}, target_path="companies/c1")


class CountingStore(MemoryDocumentStore):
    def __init__(self) -> None:
        super().__init__()
        self.reads: list[str] = []

    async def get(self, path: str):
        self.reads.append(path)
        return await super().get(path)


class TestResolveOne:
    async def test_embeds_and_records(self, store: MemoryDocumentStore) -> None:
        store.seed("places/p1", {"name": "A", "dependencies": ["x/y"]})
        dependence = Dependence(store)

        value = await dependence.resolve_one("places", "p1", CONTEXT, embed_with_id)

        assert value == {"name": "A", "id": "p1"}
        assert dependence.dependencies == ["places/p1"]

    async def test_empty_id_reads_nothing(self) -> None:
        store = CountingStore()
        dependence = Dependence(store)

        assert await dependence.resolve_one("places", "", CONTEXT, embed_with_id) is None
        assert await dependence.resolve_one("places", None, CONTEXT, embed_with_id) is None
        assert store.reads == []
        assert dependence.dependencies == []

    async def test_missing_document_recorded(self, store: MemoryDocumentStore) -> None:
        dependence = Dependence(store)

        assert await dependence.resolve_one("places", "nope", CONTEXT, embed_with_id) is None
        assert dependence.dependencies == ["places/nope"]

    async def test_projector_receives_context(self, store: MemoryDocumentStore) -> None:
        store.seed("places/p1", {"name": "A"})
        seen = []

        def projector(context, snapshot):
            seen.append(context)
            return {"label": snapshot.get("name")}

        dependence = Dependence(store)
        value = await dependence.resolve_one("places", "p1", CONTEXT, projector)

        assert value == {"label": "A"}
        assert seen == [CONTEXT]


class TestResolveMany:
    async def test_filters_missing_records_all(self, store: MemoryDocumentStore) -> None:
        store.seed("tags/t1", {"label": "one"})
        store.seed("tags/t3", {"label": "three"})
        dependence = Dependence(store)

        values = await dependence.resolve_many(
            "tags", ["t1", "t2", "t3"], CONTEXT, embed_with_id
        )

        assert values == [{"label": "one", "id": "t1"}, {"label": "three", "id": "t3"}]
        assert dependence.dependencies == ["tags/t1", "tags/t2", "tags/t3"]

    async def test_empty_list(self, store: MemoryDocumentStore) -> None:
        dependence = Dependence(store)
        assert await dependence.resolve_many("tags", [], CONTEXT, embed_with_id) == []
        assert dependence.dependencies == []

    async def test_dependencies_deduplicated_across_calls(
        self, store: MemoryDocumentStore
    ) -> None:
        store.seed("tags/t1", {"label": "one"})
        dependence = Dependence(store)

        await dependence.resolve_one("tags", "t1", CONTEXT, embed_with_id)
        await dependence.resolve_many("tags", ["t1"], CONTEXT, embed_with_id)

        assert dependence.dependencies == ["tags/t1"]
