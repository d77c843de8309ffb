"""Unit tests for document path templating."""

from __future__ import annotations

import pytest

from doc_propagator.core.exceptions import PathTemplateError
from doc_propagator.core.paths import (
    collection_segments,
    document_id,
    extract_placeholders,
    has_placeholders,
    is_collection_path,
    is_document_path,
    join_path,
    match,
    matches,
    normalize_path,
    parent_collection,
    resolve,
)


class TestNormalizePath:
    def test_strips_separators(self) -> None:
        assert normalize_path("/places/{placeID}/") == "places/{placeID}"

    def test_collapses_empty_segments(self) -> None:
        assert normalize_path("lang//ja/places") == "lang/ja/places"

    def test_join_path(self) -> None:
        assert join_path("/lang/ja/places", "p1") == "lang/ja/places/p1"


class TestPathKinds:
    def test_document_path(self) -> None:
        assert is_document_path("places/p1")
        assert not is_document_path("places")
        assert not is_document_path("")

    def test_collection_path(self) -> None:
        assert is_collection_path("lang/{lang}/places")
        assert not is_collection_path("lang/{lang}")

    def test_parent_collection(self) -> None:
        assert parent_collection("lang/ja/places/p1") == "lang/ja/places"

    def test_parent_collection_rejects_collection(self) -> None:
        with pytest.raises(PathTemplateError, match="not a document path"):
            parent_collection("places")

    def test_document_id(self) -> None:
        assert document_id("/companies/c1/") == "c1"

    def test_document_id_rejects_empty(self) -> None:
        with pytest.raises(PathTemplateError):
            document_id("/")


class TestExtractPlaceholders:
    def test_in_order(self) -> None:
        assert extract_placeholders("lang/{lang}/places/{placeID}") == ["lang", "placeID"]

    def test_ignores_empty_braces(self) -> None:
        assert extract_placeholders("a/{}/b/{id}") == ["id"]

    def test_no_placeholders(self) -> None:
        assert extract_placeholders("places/p1") == []
        assert not has_placeholders("places/p1")
        assert has_placeholders("places/{placeID}")


class TestResolve:
    def test_substitutes_every_occurrence(self) -> None:
        assert resolve("lang/{lang}/places/{placeID}", {"lang": "ja", "placeID": "p1"}) == (
            "lang/ja/places/p1"
        )

    def test_unbound_names_left_literal(self) -> None:
        assert resolve("lang/{lang}/places/{placeID}", {"placeID": "p1"}) == (
            "lang/{lang}/places/p1"
        )

    def test_extra_bindings_ignored(self) -> None:
        assert resolve("places/{placeID}", {"placeID": "p1", "lang": "ja"}) == "places/p1"


class TestMatch:
    def test_extracts_binding(self) -> None:
        assert match("lang/ja/places/p1", "lang/{lang}/places/{placeID}") == {
            "lang": "ja",
            "placeID": "p1",
        }

    def test_no_match_returns_empty(self) -> None:
        assert match("lang/ja/companies/c1", "lang/{lang}/places/{placeID}") == {}
        assert not matches("lang/ja/companies/c1", "lang/{lang}/places/{placeID}")

    def test_placeholder_does_not_cross_separator(self) -> None:
        assert match("places/a/b", "places/{placeID}") == {}

    def test_literal_segments_must_match_exactly(self) -> None:
        assert matches("places/p1", "/places/{placeID}")
        assert not matches("placesX/p1", "places/{placeID}")

    def test_inverse_of_resolve(self) -> None:
        template = "lang/{lang}/companies/{companyID}"
        binding = {"lang": "en", "companyID": "c9"}
        assert match(resolve(template, binding), template) == binding


class TestCollectionSegments:
    def test_even_segments(self) -> None:
        assert collection_segments("lang/{lang}/places/{placeID}") == ["lang", "places"]

    def test_collection_path(self) -> None:
        assert collection_segments("companies") == ["companies"]
