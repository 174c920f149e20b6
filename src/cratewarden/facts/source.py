"""Fact sources: adapters implementing the front-end query interface.

A front-end writes one YAML *fact dump* per source unit::

    unit:
      path: src/billing/money.rs
      crate: billing
      module: "billing::money"
      test_only: false
    facts:
      - { kind: type_decl, line: 3, column: 1, end_line: 5, name: Money,
          shape: tuple_struct, visibility: pub,
          fields: [{ name: "0", type: u64, visibility: private }] }
    directives:
      - { rule: CLONE-001, line: 9, end_line: 9, justification: "snapshot" }

A dump with a top-level ``error`` key records a front-end failure for that
unit.  Suppression comments in the unit's source file are picked up too when
the file exists under the source root.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import yaml

from cratewarden.engine.suppression import SuppressionDirective, parse_directives
from cratewarden.errors import ExtractionError
from cratewarden.facts.model import (
    FACT_KINDS,
    NESTED_DECL_ATTRS,
    Location,
    SourceFact,
    SourceUnit,
    check_visibilities,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

VALID_CRATE_KINDS: frozenset[str] = frozenset({"library", "binary"})


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _positive_int(value: object, what: str, unit_path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ExtractionError(unit_path, f"{what} must be a positive integer, got {value!r}")
    return value


def parse_fact(unit_path: str, data: object, index: int = 0) -> SourceFact:
    """Validate one raw fact mapping and build a :class:`SourceFact`.

    Raises ``ExtractionError`` on unknown kinds, bad positions, or malformed
    attribute values.
    """
    if not isinstance(data, dict):
        raise ExtractionError(unit_path, f"fact at index {index} must be a mapping")

    kind = data.get("kind")
    if kind not in FACT_KINDS:
        raise ExtractionError(
            unit_path,
            f"fact at index {index} has unknown kind {kind!r}, must be one of {sorted(FACT_KINDS)}",
        )

    line = _positive_int(data.get("line"), f"fact at index {index}: line", unit_path)
    column = _positive_int(data.get("column", 1), f"fact at index {index}: column", unit_path)
    end_line_raw = data.get("end_line")
    end_line: int | None = None
    if end_line_raw is not None:
        end_line = _positive_int(end_line_raw, f"fact at index {index}: end_line", unit_path)
        if end_line < line:
            raise ExtractionError(unit_path, f"fact at index {index}: end_line before line")

    attrs = {k: v for k, v in data.items() if k not in ("kind", "line", "column", "end_line")}

    for list_attr in NESTED_DECL_ATTRS & attrs.keys():
        entries = attrs[list_attr]
        if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
            raise ExtractionError(
                unit_path, f"fact at index {index}: '{list_attr}' must be a list of mappings"
            )

    fact = SourceFact(
        kind=str(kind),
        location=Location(unit_path, line, column, end_line),
        attrs=attrs,
    )
    check_visibilities(fact)
    return fact


def parse_unit(data: object, context: str) -> SourceUnit:
    """Parse the ``unit`` header of a fact dump."""
    if not isinstance(data, dict):
        raise ExtractionError(context, "'unit' must be a mapping")

    path = data.get("path")
    if not isinstance(path, str) or not path.strip():
        raise ExtractionError(context, "unit.path must be a non-empty string")
    crate = data.get("crate")
    if not isinstance(crate, str) or not crate.strip():
        raise ExtractionError(path, "unit.crate must be a non-empty string")

    crate_kind = data.get("crate_kind")
    if crate_kind is not None and crate_kind not in VALID_CRATE_KINDS:
        raise ExtractionError(
            path,
            f"unit.crate_kind {crate_kind!r} must be one of {sorted(VALID_CRATE_KINDS)}",
        )

    source_path = data.get("source_path")
    return SourceUnit(
        path=path.replace("\\", "/"),
        crate=crate,
        module=str(data.get("module", "")),
        test_only=bool(data.get("test_only", False)),
        crate_kind=crate_kind,
        source_path=str(source_path) if source_path is not None else None,
    )


def parse_declared_directive(unit_path: str, data: object, index: int) -> SuppressionDirective:
    """Parse a directive the front-end reported explicitly in the dump."""
    if not isinstance(data, dict):
        raise ExtractionError(unit_path, f"directive at index {index} must be a mapping")
    rule_id = data.get("rule")
    if not isinstance(rule_id, str) or not rule_id.strip():
        raise ExtractionError(unit_path, f"directive at index {index}: 'rule' is required")
    line = _positive_int(data.get("line"), f"directive at index {index}: line", unit_path)
    end_line = _positive_int(
        data.get("end_line", line), f"directive at index {index}: end_line", unit_path
    )
    justification = data.get("justification")
    return SuppressionDirective(
        rule_id=rule_id.strip(),
        unit_path=unit_path,
        start_line=line,
        end_line=end_line,
        justification=str(justification).strip() if justification else None,
        location=Location(unit_path, max(line - 1, 1), 1),
    )


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class InMemoryFactSource:
    """A :class:`~cratewarden.facts.model.FactSource` over prebuilt values.

    *errors* maps unit paths to front-end failure messages; those units raise
    ``ExtractionError`` from :meth:`facts_of`.
    """

    def __init__(
        self,
        units: Iterable[SourceUnit],
        facts: Mapping[str, Sequence[SourceFact]] | None = None,
        *,
        directives: Mapping[str, Sequence[SuppressionDirective]] | None = None,
        errors: Mapping[str, str] | None = None,
    ) -> None:
        self._units = tuple(units)
        self._facts = dict(facts or {})
        self._directives = dict(directives or {})
        self._errors = dict(errors or {})

    def units_of(self) -> Sequence[SourceUnit]:
        return self._units

    def facts_of(self, unit: SourceUnit) -> Sequence[SourceFact]:
        if unit.path in self._errors:
            raise ExtractionError(unit.path, self._errors[unit.path])
        return tuple(self._facts.get(unit.path, ()))

    def directives_of(
        self, unit: SourceUnit, facts: Sequence[SourceFact]
    ) -> Sequence[SuppressionDirective]:
        return tuple(self._directives.get(unit.path, ()))


class YamlFactSource:
    """Read fact dumps (``*.yml`` / ``*.yaml``) from *facts_dir*.

    Dumps are parsed lazily by :meth:`units_of`; a dump that cannot be read
    still yields a unit (named after the dump file) so that its failure is
    reported by :meth:`facts_of` instead of aborting the run.
    """

    def __init__(self, facts_dir: Path, *, source_root: Path | None = None) -> None:
        self.facts_dir = facts_dir
        self.source_root = source_root
        self._dumps: dict[str, dict[str, Any]] = {}
        self._broken: dict[str, str] = {}

    def _dump_files(self) -> list[Path]:
        if not self.facts_dir.is_dir():
            return []
        files = [
            p
            for p in self.facts_dir.rglob("*")
            if p.is_file() and p.suffix in (".yml", ".yaml")
        ]
        return sorted(files)

    def units_of(self) -> Sequence[SourceUnit]:
        units: list[SourceUnit] = []
        self._dumps.clear()
        self._broken.clear()
        dumps_by_path: dict[str, list[str]] = {}

        for dump_path in self._dump_files():
            rel = dump_path.relative_to(self.facts_dir).as_posix()
            try:
                data = yaml.safe_load(dump_path.read_text(encoding="utf-8"))
                if not isinstance(data, dict):
                    raise ExtractionError(rel, "fact dump must be a YAML mapping")
                unit = parse_unit(data.get("unit"), rel)
            except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
                logger.warning("Cannot read fact dump %s: %s", rel, exc)
                self._broken[rel] = f"unreadable fact dump: {exc}"
                units.append(SourceUnit(path=rel, crate=""))
                continue
            except ExtractionError as exc:
                self._broken[rel] = exc.reason
                units.append(SourceUnit(path=rel, crate=""))
                continue
            declared_by = dumps_by_path.setdefault(unit.path, [])
            declared_by.append(rel)
            if len(declared_by) > 1:
                reason = f"unit declared by more than one fact dump: {', '.join(declared_by)}"
                logger.warning("Unit %s: %s", unit.path, reason)
                self._broken[unit.path] = reason
                self._dumps.pop(unit.path, None)
                continue
            self._dumps[unit.path] = data
            units.append(unit)

        return units

    def facts_of(self, unit: SourceUnit) -> Sequence[SourceFact]:
        if unit.path in self._broken:
            raise ExtractionError(unit.path, self._broken[unit.path])
        data = self._dumps.get(unit.path)
        if data is None:
            raise ExtractionError(unit.path, "no fact dump for unit")

        error = data.get("error")
        if error:
            raise ExtractionError(unit.path, f"front-end failed: {error}")

        raw_facts = data.get("facts", [])
        if not isinstance(raw_facts, list):
            raise ExtractionError(unit.path, "'facts' must be a list")
        return tuple(parse_fact(unit.path, item, idx) for idx, item in enumerate(raw_facts))

    def directives_of(
        self, unit: SourceUnit, facts: Sequence[SourceFact]
    ) -> Sequence[SuppressionDirective]:
        data = self._dumps.get(unit.path, {})
        raw = data.get("directives", [])
        if not isinstance(raw, list):
            raise ExtractionError(unit.path, "'directives' must be a list")
        directives = [
            parse_declared_directive(unit.path, item, idx) for idx, item in enumerate(raw)
        ]

        if self.source_root is not None:
            text_path = self.source_root / (unit.source_path or unit.path)
            if text_path.is_file():
                try:
                    text = text_path.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as exc:
                    raise ExtractionError(unit.path, f"cannot read source text: {exc}") from exc
                directives.extend(parse_directives(text, unit.path, facts))

        return directives
