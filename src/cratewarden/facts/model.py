"""Fact model: the frozen, queryable set of structural facts for one run."""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Protocol

from cratewarden.errors import ExtractionError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence

    from cratewarden.engine.suppression import SuppressionDirective

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FACT_KINDS: frozenset[str] = frozenset(
    {
        "type_decl",
        "enum_variant",
        "fn_decl",
        "method_call",
        "macro_call",
        "dyn_use",
        "trait_decl",
        "trait_impl",
        "lock_decl",
    }
)

VISIBILITY_RE = re.compile(r"^(?:private|pub|pub\((?:crate|super|self|in\s+[\w:]+)\))$")
# Attributes holding nested declarations (struct fields, fn parameters).
NESTED_DECL_ATTRS: frozenset[str] = frozenset({"fields", "params"})

_GENERIC_RE = re.compile(r"<.*>$")
_REF_PREFIX_RE = re.compile(r"^(?:&(?:'\w+\s+)?(?:mut\s+)?)+")


def base_name(type_path: str) -> str:
    """Reduce a type or trait path to its bare last segment.

    ``&'a mut std::collections::HashMap<K, V>`` becomes ``HashMap`` and
    ``dyn std::error::Error`` becomes ``Error``.
    """
    text = type_path.strip()
    text = _REF_PREFIX_RE.sub("", text)
    for prefix in ("dyn ", "impl "):
        if text.startswith(prefix):
            text = text[len(prefix) :]
    text = _GENERIC_RE.sub("", text.strip())
    return text.rsplit("::", 1)[-1].strip()


def freeze(value: Any) -> Any:
    """Recursively turn dicts into read-only mappings and lists into tuples."""
    if isinstance(value, dict | MappingProxyType):
        return MappingProxyType({str(k): freeze(v) for k, v in value.items()})
    if isinstance(value, list | tuple):
        return tuple(freeze(item) for item in value)
    return value


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, order=True)
class Location:
    """A position inside one source unit (1-based line and column)."""

    path: str
    line: int
    column: int = 1
    end_line: int | None = field(default=None, compare=False)

    @property
    def key(self) -> tuple[str, int, int]:
        return (self.path, self.line, self.column)

    @property
    def last_line(self) -> int:
        return self.end_line if self.end_line is not None else self.line

    def __str__(self) -> str:
        return f"{self.path}:{self.line}:{self.column}"


@dataclass(frozen=True)
class SourceUnit:
    """One analyzable source file as reported by the front-end."""

    path: str
    crate: str
    module: str = ""
    test_only: bool = False
    crate_kind: str | None = None  # "library" | "binary" when the front-end knows
    source_path: str | None = None  # file holding the source text, defaults to path


@dataclass(frozen=True)
class SourceFact:
    """One structural observation.  ``attrs`` is frozen on construction."""

    kind: str
    location: Location
    attrs: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "attrs", freeze(self.attrs))

    @property
    def key(self) -> tuple[str, tuple[str, int, int]]:
        return (self.kind, self.location.key)

    @property
    def name(self) -> str | None:
        value = self.attrs.get("name")
        return str(value) if value is not None else None

    def get(self, attr: str, default: Any = None) -> Any:
        return self.attrs.get(attr, default)


@dataclass(frozen=True)
class UnitFailure:
    """A source unit the front-end could not analyze."""

    unit_path: str
    message: str


class FactSource(Protocol):
    """Query interface consumed from the external front-end."""

    def units_of(self) -> Sequence[SourceUnit]: ...

    def facts_of(self, unit: SourceUnit) -> Sequence[SourceFact]: ...

    def directives_of(
        self, unit: SourceUnit, facts: Sequence[SourceFact]
    ) -> Sequence[SuppressionDirective]: ...


def check_visibilities(fact: SourceFact) -> None:
    """Raise ``ExtractionError`` if *fact* or a nested declaration has an unknown visibility."""
    declared = [fact.get("visibility")]
    for attr in sorted(NESTED_DECL_ATTRS):
        for entry in fact.get(attr) or ():
            if isinstance(entry, Mapping):
                declared.append(entry.get("visibility"))
    for visibility in declared:
        if visibility is not None and not VISIBILITY_RE.match(str(visibility)):
            raise ExtractionError(
                fact.location.path, f"{fact.location}: unknown visibility {visibility!r}"
            )


# ---------------------------------------------------------------------------
# Fact model
# ---------------------------------------------------------------------------


def _mentions(returns: str, owner: str) -> bool:
    return re.search(rf"\b(?:Self|{re.escape(owner)})\b", returns) is not None


class FactModel:
    """Read-only index over every fact extracted in one run.

    Facts are ordered by unit path, then by declaration order inside the
    unit.  All lookup tables are built once in ``__init__``; nothing mutates
    the model afterwards.
    """

    def __init__(
        self,
        units: Sequence[SourceUnit],
        facts_by_unit: Mapping[str, Sequence[SourceFact]],
        *,
        failures: Sequence[UnitFailure] = (),
        directives: Sequence[SuppressionDirective] = (),
        incomplete: bool = False,
    ) -> None:
        self._units = tuple(sorted(units, key=lambda u: u.path))
        self._units_by_path = {u.path: u for u in self._units}
        self._failures = tuple(failures)
        self._directives = tuple(directives)
        self.incomplete = incomplete

        ordered: list[SourceFact] = []
        by_unit: dict[str, tuple[SourceFact, ...]] = {}
        for unit in self._units:
            unit_facts = tuple(facts_by_unit.get(unit.path, ()))
            by_unit[unit.path] = unit_facts
            ordered.extend(unit_facts)
        self._facts = tuple(ordered)
        self._by_unit = MappingProxyType(by_unit)

        by_kind: dict[str, list[SourceFact]] = {}
        by_location: dict[tuple[str, int, int], SourceFact] = {}
        types: dict[str, SourceFact] = {}
        traits: dict[str, SourceFact] = {}
        impls: dict[str, list[SourceFact]] = {}
        methods: dict[str, list[SourceFact]] = {}
        for fact in self._facts:
            by_kind.setdefault(fact.kind, []).append(fact)
            by_location.setdefault(fact.location.key, fact)
            if fact.kind == "type_decl" and fact.name:
                types.setdefault(fact.name, fact)
            elif fact.kind == "trait_decl" and fact.name:
                traits.setdefault(fact.name, fact)
            elif fact.kind == "trait_impl":
                impls.setdefault(base_name(str(fact.get("trait", ""))), []).append(fact)
            elif fact.kind == "fn_decl" and fact.get("owner"):
                methods.setdefault(base_name(str(fact.get("owner"))), []).append(fact)

        self._by_kind = {k: tuple(v) for k, v in by_kind.items()}
        self._by_location = by_location
        self._types = types
        self._traits = traits
        self._impls = {k: tuple(v) for k, v in impls.items()}
        self._methods = {k: tuple(v) for k, v in methods.items()}

    # -- collection protocol ------------------------------------------------

    def __len__(self) -> int:
        return len(self._facts)

    def __iter__(self) -> Iterator[SourceFact]:
        return iter(self._facts)

    @property
    def units(self) -> tuple[SourceUnit, ...]:
        return self._units

    @property
    def failures(self) -> tuple[UnitFailure, ...]:
        return self._failures

    @property
    def directives(self) -> tuple[SuppressionDirective, ...]:
        return self._directives

    # -- queries --------------------------------------------------------------

    def facts_of_kind(self, kind: str) -> tuple[SourceFact, ...]:
        """Return every fact of *kind* in source declaration order."""
        return self._by_kind.get(kind, ())

    def fact_at(self, location: Location) -> SourceFact | None:
        """Return the first fact declared exactly at *location*, if any."""
        return self._by_location.get(location.key)

    def facts_in_unit(self, path: str) -> tuple[SourceFact, ...]:
        return self._by_unit.get(path, ())

    def unit_of(self, fact: SourceFact) -> SourceUnit:
        return self._units_by_path[fact.location.path]

    def type_named(self, name: str) -> SourceFact | None:
        return self._types.get(base_name(name))

    def trait_named(self, name: str) -> SourceFact | None:
        return self._traits.get(base_name(name))

    def impls_of(self, trait: str) -> tuple[SourceFact, ...]:
        """Return every ``trait_impl`` fact for *trait* (matched by bare name)."""
        return self._impls.get(base_name(trait), ())

    def constructors_of(self, type_name: str) -> tuple[SourceFact, ...]:
        """Return associated functions of *type_name* that produce the type."""
        owner = base_name(type_name)
        return tuple(
            fn
            for fn in self._methods.get(owner, ())
            if _mentions(str(fn.get("returns") or ""), owner)
        )

    def is_error_type(self, name: str) -> bool:
        """Return True if *name* is declared as an error type or implements ``Error``."""
        decl = self.type_named(name)
        if decl is not None and decl.get("is_error"):
            return True
        bare = base_name(name)
        return any(base_name(str(impl.get("type", ""))) == bare for impl in self.impls_of("Error"))


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def build_fact_model(
    source: FactSource,
    *,
    should_stop: Callable[[], bool] | None = None,
) -> FactModel:
    """Extract facts for every unit of *source* into a frozen :class:`FactModel`.

    A unit whose extraction raises :class:`ExtractionError` is recorded as a
    :class:`UnitFailure`; the remaining units are still extracted.  When
    *should_stop* returns True the remaining units are skipped and the model
    is flagged incomplete.
    """
    units: list[SourceUnit] = []
    facts_by_unit: dict[str, tuple[SourceFact, ...]] = {}
    failures: list[UnitFailure] = []
    directives: list[SuppressionDirective] = []
    incomplete = False

    all_units = sorted(source.units_of(), key=lambda u: u.path)
    path_counts = Counter(u.path for u in all_units)
    for unit in all_units:
        if should_stop is not None and should_stop():
            logger.warning("Deadline reached, remaining units not extracted")
            incomplete = True
            break
        if path_counts[unit.path] > 1:
            # Every copy is left unanalyzed; the failure is recorded once.
            if not any(f.unit_path == unit.path for f in failures):
                logger.warning("Unit %s not analyzed: duplicate source unit path", unit.path)
                failures.append(UnitFailure(unit.path, "duplicate source unit path"))
            continue
        try:
            unit_facts = tuple(source.facts_of(unit))
            for fact in unit_facts:
                if fact.location.path != unit.path:
                    raise ExtractionError(
                        unit.path,
                        f"fact at {fact.location} belongs to another unit",
                    )
                check_visibilities(fact)
            unit_directives = tuple(source.directives_of(unit, unit_facts))
        except ExtractionError as exc:
            logger.warning("Unit %s not analyzed: %s", unit.path, exc.reason)
            failures.append(UnitFailure(unit.path, exc.reason))
            continue
        units.append(unit)
        facts_by_unit[unit.path] = unit_facts
        directives.extend(unit_directives)

    logger.debug(
        "Extracted %d facts from %d units (%d failed)",
        sum(len(f) for f in facts_by_unit.values()),
        len(units),
        len(failures),
    )
    return FactModel(
        units,
        facts_by_unit,
        failures=failures,
        directives=directives,
        incomplete=incomplete,
    )
