"""Suppression directives: parse them from source and mark covered diagnostics justified.

Directive syntax (a Rust line comment)::

    // cratewarden: allow(CLONE-001) -- snapshot must outlive the request
    // cratewarden: allow(STR-001, DYN-001) -- wire format owned by partner API
    // cratewarden: allow(*) -- generated code

A directive on its own line covers the construct immediately following it
(the line span of the next fact).  A trailing directive covers its own line.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from cratewarden.facts.model import Location
from cratewarden.rules.catalogue import WILDCARD

if TYPE_CHECKING:
    from collections.abc import Sequence

    from cratewarden.engine.evaluator import Diagnostic
    from cratewarden.facts.model import SourceFact
    from cratewarden.rules.catalogue import Catalogue

logger = logging.getLogger(__name__)

DIRECTIVE_RE = re.compile(
    r"//+!?\s*cratewarden:\s*allow\(\s*(?P<rules>[^)]*)\)\s*(?:--\s*(?P<reason>.*?))?\s*$"
)

CONFLICT_UNKNOWN_RULE = "unknown-rule"
CONFLICT_NON_SUPPRESSIBLE = "non-suppressible"
CONFLICT_MISSING_JUSTIFICATION = "missing-justification"
CONFLICT_EMPTY = "empty-directive"

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SuppressionDirective:
    """An explicit request to accept diagnostics of one rule over a line range."""

    rule_id: str
    unit_path: str
    start_line: int
    end_line: int
    justification: str | None = None
    location: Location | None = None
    unknown_rule: bool = False

    @property
    def is_wildcard(self) -> bool:
        return self.rule_id == WILDCARD

    @property
    def origin(self) -> Location:
        return self.location or Location(self.unit_path, self.start_line, 1)

    def covers(self, location: Location) -> bool:
        return (
            location.path == self.unit_path
            and self.start_line <= location.line <= self.end_line
        )

    def matches(self, rule_id: str) -> bool:
        return self.is_wildcard or self.rule_id == rule_id


@dataclass(frozen=True)
class SuppressionConflict:
    """A directive that could not be honoured; reported as a warning."""

    rule_id: str
    location: Location
    reason: str
    message: str


@dataclass
class SuppressionResult:
    """Diagnostics after suppression, plus the directives and conflicts seen."""

    diagnostics: list[Diagnostic] = field(default_factory=list)
    directives: list[SuppressionDirective] = field(default_factory=list)
    conflicts: list[SuppressionConflict] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _following_span(line_no: int, facts: Sequence[SourceFact]) -> tuple[int, int]:
    following = [f for f in facts if f.location.line > line_no]
    if not following:
        return (line_no + 1, line_no + 1)
    target = min(following, key=lambda f: (f.location.line, f.location.column))
    return (target.location.line, target.location.last_line)


def parse_directives(
    text: str, unit_path: str, facts: Sequence[SourceFact]
) -> list[SuppressionDirective]:
    """Return every directive in *text*, in file order."""
    directives: list[SuppressionDirective] = []
    for line_no, line in enumerate(text.splitlines(), start=1):
        match = DIRECTIVE_RE.search(line)
        if match is None:
            continue

        if line[: match.start()].strip():
            start, end = line_no, line_no
        else:
            start, end = _following_span(line_no, facts)

        reason = (match.group("reason") or "").strip() or None
        location = Location(unit_path, line_no, match.start() + 1)
        # An empty allow() yields one rule-less directive, reported as a conflict.
        rule_ids = [r.strip() for r in match.group("rules").split(",") if r.strip()] or [""]
        for rule_id in rule_ids:
            directives.append(
                SuppressionDirective(
                    rule_id=rule_id,
                    unit_path=unit_path,
                    start_line=start,
                    end_line=end,
                    justification=reason,
                    location=location,
                )
            )
    return directives


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def _validate(
    directive: SuppressionDirective, catalogue: Catalogue
) -> tuple[SuppressionDirective, SuppressionConflict | None]:
    """Flag directives that can never apply; wildcards are checked per diagnostic."""
    if directive.is_wildcard:
        return directive, None
    if not directive.rule_id:
        return directive, SuppressionConflict(
            "",
            directive.origin,
            CONFLICT_EMPTY,
            "suppression directive names no rule",
        )

    rule = catalogue.get(directive.rule_id)
    if rule is None:
        flagged = replace(directive, unknown_rule=True)
        return flagged, SuppressionConflict(
            directive.rule_id,
            directive.origin,
            CONFLICT_UNKNOWN_RULE,
            f"suppression references unknown rule '{directive.rule_id}'",
        )
    if not rule.suppressible:
        return directive, SuppressionConflict(
            rule.id,
            directive.origin,
            CONFLICT_NON_SUPPRESSIBLE,
            f"rule '{rule.id}' cannot be suppressed",
        )
    if rule.requires_justification and not directive.justification:
        return directive, SuppressionConflict(
            rule.id,
            directive.origin,
            CONFLICT_MISSING_JUSTIFICATION,
            f"suppression of '{rule.id}' requires justification text",
        )
    return directive, None


def resolve_suppressions(
    diagnostics: Sequence[Diagnostic],
    directives: Sequence[SuppressionDirective],
    catalogue: Catalogue,
) -> SuppressionResult:
    """Mark diagnostics covered by a valid directive as justified.

    Justified diagnostics are kept, never dropped.  Diagnostics of
    non-suppressible rules are never justified, whatever directives exist.
    Invalid directives yield :class:`SuppressionConflict` warnings and do not
    prevent other directives from applying.
    """
    result = SuppressionResult()
    active: list[SuppressionDirective] = []
    for directive in directives:
        checked, conflict = _validate(directive, catalogue)
        result.directives.append(checked)
        if conflict is None:
            active.append(checked)
        else:
            result.conflicts.append(conflict)

    wildcard_conflicts: set[tuple[str, int, int]] = set()
    for diagnostic in diagnostics:
        rule = catalogue.get(diagnostic.rule_id)
        if not diagnostic.suppressible or (rule is not None and not rule.suppressible):
            result.diagnostics.append(diagnostic)
            continue

        needs_reason = rule.requires_justification if rule is not None else True
        applied = None
        for directive in active:
            if not directive.matches(diagnostic.rule_id):
                continue
            if not directive.covers(diagnostic.location):
                continue
            if needs_reason and not directive.justification:
                key = directive.origin.key
                if key not in wildcard_conflicts:
                    wildcard_conflicts.add(key)
                    result.conflicts.append(
                        SuppressionConflict(
                            WILDCARD,
                            directive.origin,
                            CONFLICT_MISSING_JUSTIFICATION,
                            f"wildcard suppression cannot cover '{diagnostic.rule_id}' "
                            f"without justification text",
                        )
                    )
                continue
            applied = directive
            break

        if applied is None:
            result.diagnostics.append(diagnostic)
        else:
            result.diagnostics.append(
                replace(diagnostic, justified=True, justification=applied.justification)
            )

    result.conflicts.sort(key=lambda c: (c.location.key, c.rule_id, c.reason))
    for conflict in result.conflicts:
        logger.warning("Suppression conflict at %s: %s", conflict.location, conflict.message)
    return result
