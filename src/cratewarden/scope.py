"""Scope resolution: attach exactly one applicability context to every fact."""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

from cratewarden.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from cratewarden.facts.model import FactModel, SourceFact, SourceUnit

logger = logging.getLogger(__name__)


class CrateKind(str, Enum):
    LIBRARY = "library"
    BINARY = "binary"


class VisibilityTier(str, Enum):
    PUBLIC = "public"
    CRATE_INTERNAL = "crate_internal"
    PRIVATE = "private"


class ModuleRole(str, Enum):
    DOMAIN = "domain"
    ADAPTER = "adapter"
    UTIL = "util"
    TEST = "test"


@dataclass(frozen=True)
class Scope:
    """Applicability context of one fact."""

    crate_kind: CrateKind
    visibility: VisibilityTier
    role: ModuleRole

    def __str__(self) -> str:
        return f"{self.crate_kind.value}/{self.visibility.value}/{self.role.value}"


# Order matters: the first role whose patterns match a module path wins.
ROLE_MATCH_ORDER: tuple[ModuleRole, ...] = (
    ModuleRole.TEST,
    ModuleRole.ADAPTER,
    ModuleRole.UTIL,
    ModuleRole.DOMAIN,
)

DEFAULT_ROLE_PATTERNS: Mapping[ModuleRole, tuple[str, ...]] = MappingProxyType(
    {
        ModuleRole.TEST: ("tests", "tests::*", "*::tests", "*::tests::*"),
        ModuleRole.ADAPTER: (
            "*::adapters",
            "*::adapters::*",
            "*::storage",
            "*::storage::*",
            "*::net",
            "*::net::*",
            "*::fs",
            "*::fs::*",
        ),
        ModuleRole.UTIL: ("*::util", "*::util::*", "*::utils", "*::utils::*"),
        ModuleRole.DOMAIN: (),
    }
)

_TEST_PATH_PREFIXES: tuple[str, ...] = ("tests/", "benches/")


@dataclass(frozen=True)
class ScopeConfig:
    """Declared context the resolver classifies facts with.

    *ambiguous_crates* lists crates whose manifest declares both library and
    binary targets; they must be named in *crate_kinds* explicitly.
    """

    crate_kinds: Mapping[str, CrateKind] = field(default_factory=dict)
    ambiguous_crates: frozenset[str] = frozenset()
    role_patterns: Mapping[ModuleRole, tuple[str, ...]] = field(
        default_factory=lambda: DEFAULT_ROLE_PATTERNS
    )
    default_role: ModuleRole = ModuleRole.DOMAIN


def visibility_tier(visibility: str | None) -> VisibilityTier:
    """Map a declared Rust visibility keyword to a :class:`VisibilityTier`."""
    if visibility is None:
        return VisibilityTier.PRIVATE
    text = " ".join(visibility.split())
    if text == "pub":
        return VisibilityTier.PUBLIC
    if text in ("private", "pub(self)"):
        return VisibilityTier.PRIVATE
    if text in ("pub(crate)", "pub(super)") or text.startswith("pub(in "):
        return VisibilityTier.CRATE_INTERNAL
    msg = f"unknown visibility keyword {visibility!r}"
    raise ConfigError(msg)


class ScopeMap:
    """Read-only mapping from fact identity to its resolved :class:`Scope`."""

    def __init__(self, scopes: Mapping[tuple[str, tuple[str, int, int]], Scope]) -> None:
        self._scopes = MappingProxyType(dict(scopes))

    def __len__(self) -> int:
        return len(self._scopes)

    def __iter__(self) -> Iterator[tuple[str, tuple[str, int, int]]]:
        return iter(self._scopes)

    def __contains__(self, fact: object) -> bool:
        return getattr(fact, "key", None) in self._scopes

    def scope_of(self, fact: SourceFact) -> Scope:
        return self._scopes[fact.key]


class ScopeResolver:
    """Classify facts by crate kind, visibility tier, and module role.

    Every scope is computed once and memoised by fact identity, so a fact
    can never be classified twice differently within a run.
    """

    def __init__(self, config: ScopeConfig) -> None:
        self.config = config
        self._crate_kinds: dict[str, CrateKind] = {}
        self._scopes: dict[tuple[str, tuple[str, int, int]], Scope] = {}

    def crate_kind_of(self, unit: SourceUnit) -> CrateKind:
        """Return the crate kind of *unit*.

        Raises ``ConfigError`` when the kind is undeclared, ambiguous, or
        declared inconsistently; it is never guessed.
        """
        cached = self._crate_kinds.get(unit.crate)
        configured = self.config.crate_kinds.get(unit.crate)
        declared = CrateKind(unit.crate_kind) if unit.crate_kind else None

        if declared is not None and configured is not None and declared != configured:
            msg = (
                f"crate '{unit.crate}' is declared {declared.value} by unit {unit.path} "
                f"but configured as {configured.value}"
            )
            raise ConfigError(msg)

        kind = declared or configured
        if kind is None:
            if unit.crate in self.config.ambiguous_crates:
                msg = (
                    f"crate '{unit.crate}' has both library and binary targets; "
                    f"declare its kind under 'crates:'"
                )
            else:
                msg = f"cannot determine crate kind for crate '{unit.crate}' (unit {unit.path})"
            raise ConfigError(msg)

        if cached is not None and cached != kind:
            msg = f"crate '{unit.crate}' resolved as both {cached.value} and {kind.value}"
            raise ConfigError(msg)
        self._crate_kinds[unit.crate] = kind
        return kind

    def role_of(self, unit: SourceUnit, fact: SourceFact) -> ModuleRole:
        if unit.test_only or fact.get("in_test"):
            return ModuleRole.TEST
        if unit.path.startswith(_TEST_PATH_PREFIXES):
            return ModuleRole.TEST

        module = unit.module
        for role in ROLE_MATCH_ORDER:
            for pattern in self.config.role_patterns.get(role, ()):
                if fnmatch.fnmatchcase(module, pattern):
                    return role
        return self.config.default_role

    def resolve_fact(self, fact: SourceFact, unit: SourceUnit) -> Scope:
        cached = self._scopes.get(fact.key)
        if cached is not None:
            return cached
        try:
            tier = visibility_tier(fact.get("visibility"))
        except ConfigError as exc:
            msg = f"{fact.location}: {exc}"
            raise ConfigError(msg) from exc
        scope = Scope(
            crate_kind=self.crate_kind_of(unit),
            visibility=tier,
            role=self.role_of(unit, fact),
        )
        self._scopes[fact.key] = scope
        return scope

    def resolve(self, model: FactModel) -> ScopeMap:
        """Resolve a scope for every fact of *model*."""
        for unit in model.units:
            for fact in model.facts_in_unit(unit.path):
                self.resolve_fact(fact, unit)
        logger.debug("Resolved scopes for %d facts", len(self._scopes))
        return ScopeMap(self._scopes)
