"""Tests for cratewarden.facts.model: frozen fact index and per-unit extraction."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from cratewarden.facts.model import (
    FactModel,
    Location,
    SourceFact,
    SourceUnit,
    base_name,
    build_fact_model,
)
from cratewarden.facts.source import InMemoryFactSource

if TYPE_CHECKING:
    from collections.abc import Callable


# ---------------------------------------------------------------------------
# base_name
# ---------------------------------------------------------------------------


class TestBaseName:
    """Tests for type path normalisation."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("u64", "u64"),
            ("std::collections::HashMap<K, V>", "HashMap"),
            ("&'a mut Vec<u8>", "Vec"),
            ("dyn std::error::Error", "Error"),
            ("impl Iterator<Item = u8>", "Iterator"),
        ],
    )
    def test_base_name(self, text: str, expected: str) -> None:
        assert base_name(text) == expected


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


class TestSourceFact:
    """Tests for SourceFact immutability and identity."""

    def test_attrs_are_frozen(self, make_fact: Callable[..., SourceFact]) -> None:
        fact = make_fact("type_decl", "a.rs", 1, name="T", fields=[{"name": "x", "type": "u8"}])
        with pytest.raises(TypeError):
            fact.attrs["name"] = "U"  # type: ignore[index]
        assert isinstance(fact.get("fields"), tuple)
        with pytest.raises(TypeError):
            fact.get("fields")[0]["name"] = "y"

    def test_key_combines_kind_and_location(self, make_fact: Callable[..., SourceFact]) -> None:
        fact = make_fact("macro_call", "a.rs", 4, 9, name="println")
        assert fact.key == ("macro_call", ("a.rs", 4, 9))
        assert fact.name == "println"

    def test_location_ordering_ignores_end_line(self) -> None:
        assert Location("a.rs", 3, 1, 9) == Location("a.rs", 3, 1)
        assert Location("a.rs", 2, 5) < Location("a.rs", 3, 1) < Location("b.rs", 1, 1)
        assert str(Location("a.rs", 3, 7)) == "a.rs:3:7"


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@pytest.fixture()
def model(make_fact: Callable[..., SourceFact]) -> FactModel:
    units = [
        SourceUnit("src/b.rs", "billing"),
        SourceUnit("src/a.rs", "billing"),
    ]
    facts = {
        "src/a.rs": [
            make_fact("type_decl", "src/a.rs", 1, name="Money", shape="tuple_struct"),
            make_fact("fn_decl", "src/a.rs", 5, name="new", owner="Money", returns="Self"),
            make_fact("fn_decl", "src/a.rs", 9, name="amount", owner="Money", returns="u64"),
            make_fact("trait_decl", "src/a.rs", 12, name="Store"),
        ],
        "src/b.rs": [
            make_fact("trait_impl", "src/b.rs", 1, trait="Store", type="PgStore"),
            make_fact("type_decl", "src/b.rs", 3, name="BillingError", shape="enum"),
            make_fact(
                "trait_impl", "src/b.rs", 8, trait="std::error::Error", type="BillingError"
            ),
            make_fact("type_decl", "src/b.rs", 10, name="Money", shape="struct"),
        ],
    }
    return build_fact_model(InMemoryFactSource(units, facts))


class TestFactModelQueries:
    """Tests for FactModel lookups."""

    def test_units_sorted_by_path(self, model: FactModel) -> None:
        assert [u.path for u in model.units] == ["src/a.rs", "src/b.rs"]

    def test_facts_of_kind_in_declaration_order(self, model: FactModel) -> None:
        decls = model.facts_of_kind("type_decl")
        assert [(f.location.path, f.location.line) for f in decls] == [
            ("src/a.rs", 1),
            ("src/b.rs", 3),
            ("src/b.rs", 10),
        ]
        assert model.facts_of_kind("lock_decl") == ()

    def test_fact_at(self, model: FactModel) -> None:
        fact = model.fact_at(Location("src/a.rs", 5, 1))
        assert fact is not None
        assert fact.name == "new"
        assert model.fact_at(Location("src/a.rs", 6, 1)) is None

    def test_type_named_returns_first_declaration(self, model: FactModel) -> None:
        decl = model.type_named("crate::Money")
        assert decl is not None
        assert decl.location.path == "src/a.rs"

    def test_constructors_of(self, model: FactModel) -> None:
        assert [f.name for f in model.constructors_of("Money")] == ["new"]

    def test_impls_of(self, model: FactModel) -> None:
        assert len(model.impls_of("Store")) == 1
        assert model.impls_of("Missing") == ()

    def test_is_error_type(self, model: FactModel) -> None:
        assert model.is_error_type("BillingError")
        assert not model.is_error_type("Money")

    def test_len_and_iter(self, model: FactModel) -> None:
        assert len(model) == 8
        assert list(model)[0].location.path == "src/a.rs"


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestBuildFactModel:
    """Tests for partial-failure isolation while extracting units."""

    def test_failed_unit_is_isolated(self, make_fact: Callable[..., SourceFact]) -> None:
        units = [SourceUnit("src/ok.rs", "billing"), SourceUnit("src/bad.rs", "billing")]
        source = InMemoryFactSource(
            units,
            {"src/ok.rs": [make_fact("macro_call", "src/ok.rs", 1, name="dbg")]},
            errors={"src/bad.rs": "parse error at 3:4"},
        )

        model = build_fact_model(source)

        assert [u.path for u in model.units] == ["src/ok.rs"]
        assert len(model) == 1
        assert len(model.failures) == 1
        assert model.failures[0].unit_path == "src/bad.rs"
        assert "parse error" in model.failures[0].message

    def test_fact_from_foreign_unit_fails_that_unit(
        self, make_fact: Callable[..., SourceFact]
    ) -> None:
        units = [SourceUnit("src/a.rs", "billing")]
        source = InMemoryFactSource(
            units, {"src/a.rs": [make_fact("macro_call", "src/other.rs", 1, name="dbg")]}
        )

        model = build_fact_model(source)

        assert model.units == ()
        assert model.failures[0].unit_path == "src/a.rs"

    def test_duplicate_unit_path_recorded(self) -> None:
        units = [SourceUnit("src/a.rs", "billing"), SourceUnit("src/a.rs", "billing")]
        model = build_fact_model(InMemoryFactSource(units))
        assert model.units == ()
        assert [f.message for f in model.failures] == ["duplicate source unit path"]

    def test_unknown_visibility_fails_only_that_unit(
        self, make_fact: Callable[..., SourceFact]
    ) -> None:
        units = [SourceUnit("src/a.rs", "billing"), SourceUnit("src/b.rs", "billing")]
        source = InMemoryFactSource(
            units,
            {
                "src/a.rs": [make_fact("macro_call", "src/a.rs", 1, name="panic")],
                "src/b.rs": [make_fact("type_decl", "src/b.rs", 1, name="T", visibility="public")],
            },
        )

        model = build_fact_model(source)

        assert [u.path for u in model.units] == ["src/a.rs"]
        assert model.failures[0].unit_path == "src/b.rs"
        assert "unknown visibility 'public'" in model.failures[0].message

    def test_unknown_field_visibility(self, make_fact: Callable[..., SourceFact]) -> None:
        fact = make_fact(
            "type_decl", "src/a.rs", 1, name="T", fields=[{"name": "x", "visibility": "open"}]
        )
        source = InMemoryFactSource([SourceUnit("src/a.rs", "billing")], {"src/a.rs": [fact]})

        model = build_fact_model(source)

        assert model.units == ()
        assert "unknown visibility 'open'" in model.failures[0].message

    def test_should_stop_marks_incomplete(self) -> None:
        units = [SourceUnit("src/a.rs", "billing"), SourceUnit("src/b.rs", "billing")]
        calls: list[int] = []

        def should_stop() -> bool:
            calls.append(1)
            return len(calls) > 1

        model = build_fact_model(InMemoryFactSource(units), should_stop=should_stop)

        assert model.incomplete is True
        assert [u.path for u in model.units] == ["src/a.rs"]
