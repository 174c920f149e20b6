"""Shared test fixtures for cratewarden."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
import yaml

from cratewarden.facts.model import Location, SourceFact, SourceUnit
from cratewarden.rules.catalogue import Catalogue, load_catalogue
from cratewarden.scope import CrateKind, ScopeConfig

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


@pytest.fixture(scope="session")
def catalogue() -> Catalogue:
    """The packaged built-in catalogue."""
    return load_catalogue()


@pytest.fixture()
def scope_config() -> ScopeConfig:
    """Crate kinds for the two crates used throughout the tests."""
    return ScopeConfig(
        crate_kinds={"billing": CrateKind.LIBRARY, "billing_cli": CrateKind.BINARY},
    )


@pytest.fixture()
def make_fact() -> Callable[..., SourceFact]:
    """Factory: ``make_fact(kind, path, line, column=1, end_line=None, **attrs)``."""

    def _make(
        kind: str,
        path: str,
        line: int,
        column: int = 1,
        end_line: int | None = None,
        **attrs: Any,
    ) -> SourceFact:
        return SourceFact(kind, Location(path, line, column, end_line), attrs)

    return _make


@pytest.fixture()
def lib_unit() -> SourceUnit:
    return SourceUnit(path="src/billing/money.rs", crate="billing", module="billing::money")


@pytest.fixture()
def write_dump(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing one fact dump under ``<tmp_path>/.cratewarden/facts``."""

    def _write(
        name: str,
        unit: dict[str, Any],
        facts: list[dict[str, Any]] | None = None,
        **extra: Any,
    ) -> Path:
        facts_dir = tmp_path / ".cratewarden" / "facts"
        facts_dir.mkdir(parents=True, exist_ok=True)
        dump = facts_dir / name
        data: dict[str, Any] = {"unit": unit, "facts": facts or []}
        data.update(extra)
        dump.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        return dump

    return _write
