"""Rule catalogue: parse a versioned catalogue file into frozen Rule definitions."""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from importlib import resources
from typing import TYPE_CHECKING, Any

import yaml

from cratewarden.errors import ConfigError
from cratewarden.facts.model import FACT_KINDS, freeze
from cratewarden.scope import CrateKind, ModuleRole, VisibilityTier

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping
    from pathlib import Path

    from cratewarden.facts.model import FactModel, SourceFact
    from cratewarden.scope import Scope

    Predicate = Callable[[SourceFact, Scope, FactModel, Mapping[str, Any]], "Violation | None"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BUILTIN_CATALOGUE = "catalogue.yml"
WILDCARD = "*"

_SCOPE_AXES: dict[str, type[Enum]] = {
    "crate": CrateKind,
    "visibility": VisibilityTier,
    "role": ModuleRole,
}

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    ADVISORY = "advisory"


@dataclass(frozen=True)
class Violation:
    """A positive predicate result; *detail* fills the rule's message template."""

    detail: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "detail", freeze(self.detail))


@dataclass(frozen=True)
class ScopeSelector:
    """The set of scopes a rule applies to, one allow-set per axis."""

    crate_kinds: frozenset[CrateKind] = frozenset(CrateKind)
    visibilities: frozenset[VisibilityTier] = frozenset(VisibilityTier)
    roles: frozenset[ModuleRole] = frozenset(ModuleRole)

    def contains(self, scope: Scope) -> bool:
        return (
            scope.crate_kind in self.crate_kinds
            and scope.visibility in self.visibilities
            and scope.role in self.roles
        )


class _TemplateValues(dict):  # type: ignore[type-arg]
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


@dataclass(frozen=True)
class Rule:
    """A catalogued rule: metadata plus a pure predicate over one fact.

    Built-in and externally supplied rules are the same type; only the
    predicate differs.
    """

    id: str
    title: str
    severity: Severity
    fact_kinds: frozenset[str]
    predicate: Predicate = field(compare=False, repr=False)
    applies_to: ScopeSelector = field(default_factory=ScopeSelector)
    suppressible: bool = True
    requires_justification: bool = True
    message: str = ""
    fix: str | None = None
    params: Mapping[str, Any] = field(default_factory=dict, compare=False)
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", freeze(self.params))

    def applies(self, fact: SourceFact, scope: Scope) -> bool:
        """Return True if this rule inspects *fact* under *scope*."""
        return fact.kind in self.fact_kinds and self.applies_to.contains(scope)

    def evaluate(self, fact: SourceFact, scope: Scope, model: FactModel) -> Violation | None:
        return self.predicate(fact, scope, model, self.params)

    def render(self, fact: SourceFact, violation: Violation) -> str:
        """Render the message template with fact attributes and violation detail."""
        values = _TemplateValues(
            {k: v for k, v in fact.attrs.items() if isinstance(v, str | int | float | bool)}
        )
        values.update(kind=fact.kind, location=str(fact.location), rule=self.id)
        values.update(violation.detail)
        template = self.message or self.title
        return template.format_map(values)


@dataclass(frozen=True)
class Catalogue:
    """A versioned, ordered, immutable collection of rules."""

    version: str
    rules: tuple[Rule, ...]
    source: str = "<builtin>"

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for rule in self.rules:
            if rule.id in seen:
                msg = f"catalogue {self.source}: duplicate rule id '{rule.id}'"
                raise ConfigError(msg)
            seen.add(rule.id)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def __contains__(self, rule_id: object) -> bool:
        return self.get(str(rule_id)) is not None

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(rule.id for rule in self.rules)

    def get(self, rule_id: str) -> Rule | None:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None


# ---------------------------------------------------------------------------
# YAML parsing
# ---------------------------------------------------------------------------


def _parse_axis_values(rule_id: str, block: str, axis: str, raw: object) -> frozenset[Any]:
    enum_type = _SCOPE_AXES[axis]
    values = raw if isinstance(raw, list) else [raw]
    parsed: set[Any] = set()
    for value in values:
        try:
            parsed.add(enum_type(str(value)))
        except ValueError:
            allowed = sorted(member.value for member in enum_type)  # type: ignore[attr-defined]
            msg = (
                f"Rule '{rule_id}': invalid {block}.{axis} value '{value}', "
                f"must be one of {allowed}"
            )
            raise ConfigError(msg) from None
    return frozenset(parsed)


def _parse_selector(rule_id: str, rule_data: dict[str, Any]) -> ScopeSelector:
    """Build a ScopeSelector from the optional ``scope`` and ``exclude`` blocks."""
    allowed: dict[str, frozenset[Any]] = {
        axis: frozenset(enum_type) for axis, enum_type in _SCOPE_AXES.items()
    }

    for block in ("scope", "exclude"):
        block_data = rule_data.get(block)
        if block_data is None:
            continue
        if not isinstance(block_data, dict):
            msg = f"Rule '{rule_id}': '{block}' must be a mapping"
            raise ConfigError(msg)
        unknown = set(block_data) - set(_SCOPE_AXES)
        if unknown:
            msg = (
                f"Rule '{rule_id}': unknown {block} axis {sorted(unknown)}, "
                f"must be among {sorted(_SCOPE_AXES)}"
            )
            raise ConfigError(msg)
        for axis, raw in block_data.items():
            values = _parse_axis_values(rule_id, block, axis, raw)
            if block == "scope":
                allowed[axis] = values
            else:
                allowed[axis] = allowed[axis] - values

    for axis, values in allowed.items():
        if not values:
            msg = f"Rule '{rule_id}': scope excludes every {axis} value"
            raise ConfigError(msg)

    return ScopeSelector(
        crate_kinds=allowed["crate"],
        visibilities=allowed["visibility"],
        roles=allowed["role"],
    )


def _resolve_predicate(rule_id: str, target: object) -> Predicate:
    """Bind a rule to its predicate: a built-in by id, or ``module:function``."""
    if target is None:
        # Lazy import: builtin predicates import Violation from this module.
        from cratewarden.rules.builtin import BUILTIN_PREDICATES

        predicate = BUILTIN_PREDICATES.get(rule_id)
        if predicate is None:
            msg = f"Rule '{rule_id}': no built-in predicate, set 'predicate: module:function'"
            raise ConfigError(msg)
        return predicate

    if not isinstance(target, str) or ":" not in target:
        msg = f"Rule '{rule_id}': predicate must be a 'module:function' string"
        raise ConfigError(msg)

    module_name, _, attr = target.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        msg = f"Rule '{rule_id}': cannot import predicate module '{module_name}': {exc}"
        raise ConfigError(msg) from exc
    predicate = getattr(module, attr, None)
    if not callable(predicate):
        msg = f"Rule '{rule_id}': '{target}' is not a callable predicate"
        raise ConfigError(msg)
    return predicate  # type: ignore[no-any-return]


def _parse_rule(idx: int, rule_data: object, context: str) -> Rule:
    if not isinstance(rule_data, dict):
        msg = f"{context}: rule at index {idx} must be a mapping"
        raise ConfigError(msg)

    rule_id = rule_data.get("id")
    if not isinstance(rule_id, str) or not rule_id.strip() or rule_id == WILDCARD:
        msg = f"{context}: rule at index {idx} missing required 'id' field"
        raise ConfigError(msg)

    title = str(rule_data.get("title", "")).strip()
    if not title:
        msg = f"Rule '{rule_id}': 'title' is required"
        raise ConfigError(msg)

    severity_raw = str(rule_data.get("severity", "warning"))
    try:
        severity = Severity(severity_raw)
    except ValueError:
        msg = (
            f"Rule '{rule_id}': invalid severity '{severity_raw}', "
            f"must be one of {sorted(s.value for s in Severity)}"
        )
        raise ConfigError(msg) from None

    facts_raw = rule_data.get("facts")
    if not isinstance(facts_raw, list) or not facts_raw:
        msg = f"Rule '{rule_id}': 'facts' must be a non-empty list of fact kinds"
        raise ConfigError(msg)
    fact_kinds = frozenset(str(k) for k in facts_raw)
    unknown_kinds = fact_kinds - FACT_KINDS
    if unknown_kinds:
        msg = (
            f"Rule '{rule_id}': unknown fact kinds {sorted(unknown_kinds)}, "
            f"must be among {sorted(FACT_KINDS)}"
        )
        raise ConfigError(msg)

    params = rule_data.get("params", {})
    if not isinstance(params, dict):
        msg = f"Rule '{rule_id}': 'params' must be a mapping"
        raise ConfigError(msg)

    fix_raw = rule_data.get("fix")
    return Rule(
        id=rule_id,
        title=title,
        severity=severity,
        fact_kinds=fact_kinds,
        predicate=_resolve_predicate(rule_id, rule_data.get("predicate")),
        applies_to=_parse_selector(rule_id, rule_data),
        suppressible=bool(rule_data.get("suppressible", True)),
        requires_justification=bool(rule_data.get("requires_justification", True)),
        message=str(rule_data.get("message", "")),
        fix=str(fix_raw).strip() if fix_raw else None,
        params=params,
        description=str(rule_data.get("description", "")).strip(),
    )


def parse_catalogue(data: object, *, source: str = "<builtin>") -> Catalogue:
    """Validate parsed catalogue data and build a :class:`Catalogue`.

    Raises ``ConfigError`` on schema errors (missing version, duplicate ids,
    unknown severities, scopes, fact kinds, or predicates).
    """
    if not isinstance(data, dict):
        msg = f"{source}: catalogue must be a YAML mapping"
        raise ConfigError(msg)

    version = data.get("version")
    if version is None or isinstance(version, bool) or not str(version).strip():
        msg = f"{source}: missing required 'version' field"
        raise ConfigError(msg)

    rules_data = data.get("rules", [])
    if not isinstance(rules_data, list):
        msg = f"{source}: 'rules' must be a list"
        raise ConfigError(msg)

    rules = tuple(_parse_rule(idx, item, source) for idx, item in enumerate(rules_data))
    return Catalogue(version=str(version).strip(), rules=rules, source=source)


def load_catalogue(path: Path | None = None) -> Catalogue:
    """Load a catalogue file, or the packaged built-in catalogue when *path* is None."""
    if path is None:
        text = resources.files("cratewarden.rules").joinpath(BUILTIN_CATALOGUE).read_text(
            encoding="utf-8"
        )
        source = BUILTIN_CATALOGUE
    else:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            msg = f"cannot read catalogue {path}: {exc}"
            raise ConfigError(msg) from exc
        source = str(path)

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        msg = f"{source}: invalid YAML: {exc}"
        raise ConfigError(msg) from exc

    catalogue = parse_catalogue(data, source=source)
    logger.debug(
        "Loaded catalogue %s version %s (%d rules)", source, catalogue.version, len(catalogue)
    )
    return catalogue
