"""End-to-end join and propagation cascades on the in-memory store.

Every trigger is attached to the store, so each write fans out through real
change events until the cascade settles.
"""

from __future__ import annotations

import pytest

from doc_propagator.adapters.memory import MemoryDocumentStore
from doc_propagator.core.config import PropagatorConfig
from doc_propagator.core.engine import resolve
from doc_propagator.core.exceptions import StorePermissionError
from doc_propagator.query.builder import join_query


@pytest.fixture
def config() -> PropagatorConfig:
    return PropagatorConfig(retry_base_delay=0, retry_max_delay=0)


@pytest.fixture
def queries():
    return [
        join_query("company_sources/{companyID}", "companies/{companyID}")
        .reference("placeID", "place", "places")
        .reference("employeeIDs", "employees", "employees")
        .build(),
        join_query("office_sources/{officeID}", "offices/{officeID}")
        .reference("companyID", "company", "companies")
        .build(),
    ]


@pytest.fixture
def wired(config: PropagatorConfig, queries) -> MemoryDocumentStore:
    store = MemoryDocumentStore()
    resolve(store, queries, config=config).attach(store)
    return store


async def _put(store: MemoryDocumentStore, path: str, data: dict | None) -> None:
    if data is None:
        await store.delete(path)
    else:
        await store.set(path, data)
    await store.drain()


async def _data(store: MemoryDocumentStore, path: str) -> dict | None:
    return (await store.get(path)).data()


def _writes_to(store: MemoryDocumentStore, prefix: str) -> list[tuple[str, str]]:
    return [entry for entry in store.write_log if entry[1].startswith(prefix)]


@pytest.mark.integration
class TestPlaceCompanyScenario:
    async def test_create_update_delete(self, wired: MemoryDocumentStore) -> None:
        await _put(wired, "places/place1", {"name": "A"})
        await _put(wired, "company_sources/company1", {"name": "Acme", "placeID": "place1"})

        company = await _data(wired, "companies/company1")
        assert company["place"] == {"name": "A", "id": "place1"}
        assert company["dependencies"] == ["places/place1"]

        await wired.update("companies/company1", {"rating": 5})
        await _put(wired, "places/place1", {"name": "B"})

        company = await _data(wired, "companies/company1")
        assert company["place"] == {"name": "B", "id": "place1"}
        assert company["rating"] == 5
        assert company["name"] == "Acme"

        await _put(wired, "places/place1", None)

        company = await _data(wired, "companies/company1")
        assert company["place"] is None
        assert company["dependencies"] == []
        assert (await _data(wired, "company_sources/company1"))["placeID"] is None
        assert wired.handler_errors == []

    async def test_rewriting_same_source_is_idempotent(self, wired: MemoryDocumentStore) -> None:
        await _put(wired, "places/place1", {"name": "A"})
        await _put(wired, "company_sources/company1", {"name": "Acme", "placeID": "place1"})
        before = await _data(wired, "companies/company1")
        writes = len(_writes_to(wired, "companies/"))

        await _put(wired, "company_sources/company1", {"name": "Acme", "placeID": "place1"})

        assert len(_writes_to(wired, "companies/")) == writes
        assert await _data(wired, "companies/company1") == before

    async def test_dependency_set_matches_references(self, wired: MemoryDocumentStore) -> None:
        await _put(wired, "places/place1", {"name": "A"})
        await _put(wired, "employees/e1", {"name": "Ann"})
        await _put(wired, "employees/e2", {"name": "Bob"})
        await _put(
            wired,
            "company_sources/company1",
            {"placeID": "place1", "employeeIDs": ["e1", "e2"]},
        )
        await _put(wired, "company_sources/company2", {"name": "Empty"})

        assert (await _data(wired, "companies/company1"))["dependencies"] == [
            "employees/e1",
            "employees/e2",
            "places/place1",
        ]
        assert (await _data(wired, "companies/company2"))["dependencies"] == []

    async def test_switching_reference_replaces_embedded_copy(
        self, wired: MemoryDocumentStore
    ) -> None:
        await _put(wired, "places/p1", {"name": "A", "phone": "111"})
        await _put(wired, "places/p2", {"name": "B"})
        await _put(wired, "company_sources/c1", {"placeID": "p1"})

        await _put(wired, "company_sources/c1", {"placeID": "p2"})

        company = await _data(wired, "companies/c1")
        assert company["place"] == {"name": "B", "id": "p2"}
        assert company["dependencies"] == ["places/p2"]

        await _put(wired, "places/p1", {"name": "A2"})

        assert (await _data(wired, "companies/c1"))["place"] == {"name": "B", "id": "p2"}


@pytest.mark.integration
class TestPropagation:
    async def test_reaches_all_and_only_dependents(self, wired: MemoryDocumentStore) -> None:
        await _put(wired, "places/place1", {"name": "A"})
        await _put(wired, "places/place2", {"name": "Z"})
        await _put(wired, "company_sources/company1", {"placeID": "place1"})
        await _put(wired, "company_sources/company2", {"placeID": "place1"})
        await _put(wired, "company_sources/company3", {"placeID": "place2"})
        untouched = await _data(wired, "companies/company3")

        await _put(wired, "places/place1", {"name": "B"})

        assert (await _data(wired, "companies/company1"))["place"]["name"] == "B"
        assert (await _data(wired, "companies/company2"))["place"]["name"] == "B"
        assert await _data(wired, "companies/company3") == untouched

    async def test_identical_content_writes_nothing(self, wired: MemoryDocumentStore) -> None:
        await _put(wired, "places/place1", {"name": "A"})
        await _put(wired, "company_sources/company1", {"placeID": "place1"})
        writes = len(wired.write_log)

        await _put(wired, "places/place1", {"name": "A"})

        assert wired.write_log[writes:] == [("set", "places/place1")]

    async def test_list_entry_matched_by_id(self, wired: MemoryDocumentStore) -> None:
        for employee_id, name in [("e1", "Ann"), ("e2", "Bob"), ("e3", "Cid")]:
            await _put(wired, f"employees/{employee_id}", {"name": name})
        await _put(wired, "company_sources/company1", {"employeeIDs": ["e1", "e2", "e3"]})

        await _put(wired, "employees/e2", {"name": "Bobby"})

        assert (await _data(wired, "companies/company1"))["employees"] == [
            {"name": "Ann", "id": "e1"},
            {"name": "Bobby", "id": "e2"},
            {"name": "Cid", "id": "e3"},
        ]

    async def test_delete_removes_list_entry(self, wired: MemoryDocumentStore) -> None:
        await _put(wired, "employees/e1", {"name": "Ann"})
        await _put(wired, "employees/e2", {"name": "Bob"})
        await _put(wired, "company_sources/company1", {"employeeIDs": ["e1", "e2"]})

        await _put(wired, "employees/e1", None)

        company = await _data(wired, "companies/company1")
        assert company["employees"] == [{"name": "Bob", "id": "e2"}]
        assert company["dependencies"] == ["employees/e2"]
        assert (await _data(wired, "company_sources/company1"))["employeeIDs"] == ["e2"]

    async def test_cascade_through_two_levels(self, wired: MemoryDocumentStore) -> None:
        await _put(wired, "places/place1", {"name": "A"})
        await _put(wired, "company_sources/company1", {"name": "Acme", "placeID": "place1"})
        await _put(wired, "office_sources/office1", {"companyID": "company1"})
        assert (await _data(wired, "offices/office1"))["company"]["place"]["name"] == "A"

        await _put(wired, "places/place1", {"name": "B"})

        office = await _data(wired, "offices/office1")
        company = await _data(wired, "companies/company1")
        assert office["company"]["place"] == {"name": "B", "id": "place1"}
        assert office["propagationBatchID"] == company["propagationBatchID"]
        assert "dependencies" not in office["company"]
        assert wired.handler_errors == []

    async def test_source_delete_cascades(self, wired: MemoryDocumentStore) -> None:
        await _put(wired, "company_sources/company1", {"name": "Acme"})
        await _put(wired, "office_sources/office1", {"companyID": "company1"})

        await _put(wired, "company_sources/company1", None)

        assert await _data(wired, "companies/company1") is None
        assert (await _data(wired, "offices/office1"))["company"] is None
        assert (await _data(wired, "office_sources/office1"))["companyID"] is None


@pytest.mark.integration
class TestGroupFanOut:
    @pytest.fixture
    def grouped(self, config: PropagatorConfig) -> MemoryDocumentStore:
        query = (
            join_query("company_sources/{companyID}", "lang/{lang}/companies/{companyID}")
            .reference("placeID", "place", "lang/{lang}/places")
            .group("lang", ["ja", "en"])
            .build()
        )
        store = MemoryDocumentStore()
        resolve(store, [query], config=config).attach(store)
        return store

    async def test_one_copy_per_value(self, grouped: MemoryDocumentStore) -> None:
        await _put(grouped, "lang/ja/places/place1", {"name": "渋谷"})
        await _put(grouped, "lang/en/places/place1", {"name": "Shibuya"})
        await _put(grouped, "company_sources/company1", {"placeID": "place1"})

        ja = await _data(grouped, "lang/ja/companies/company1")
        en = await _data(grouped, "lang/en/companies/company1")
        assert ja["place"] == {"name": "渋谷", "id": "place1"}
        assert en["place"] == {"name": "Shibuya", "id": "place1"}

        await _put(grouped, "lang/en/places/place1", {"name": "Shibuya Ward"})

        assert (await _data(grouped, "lang/en/companies/company1"))["place"]["name"] == (
            "Shibuya Ward"
        )
        assert (await _data(grouped, "lang/ja/companies/company1"))["place"]["name"] == "渋谷"

    async def test_failed_branch_does_not_block_sibling(
        self, grouped: MemoryDocumentStore
    ) -> None:
        target = "lang/ja/companies/company1"
        grouped.inject_failure(target, StorePermissionError(target, "denied"))

        await _put(grouped, "company_sources/company1", {"name": "Acme"})

        assert await _data(grouped, "lang/ja/companies/company1") is None
        assert (await _data(grouped, "lang/en/companies/company1"))["name"] == "Acme"
