"""Diagnostic aggregation: deduplicate, order, summarize, and derive run status."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from cratewarden.rules.catalogue import Severity

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from cratewarden.engine.evaluator import Diagnostic, EvaluationFailure
    from cratewarden.engine.suppression import SuppressionConflict
    from cratewarden.facts.model import UnitFailure

logger = logging.getLogger(__name__)

EXIT_PASS = 0
EXIT_FAIL = 1
EXIT_INTERNAL_ERROR = 2


class Status(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class Summary:
    """Run-level counts and status."""

    catalogue_version: str
    status: Status
    errors: int = 0
    warnings: int = 0
    advisories: int = 0
    justified: int = 0
    unjustified: int = 0
    unjustified_errors: int = 0
    units_analyzed: int = 0
    unanalyzed_units: tuple[str, ...] = ()
    evaluation_failures: int = 0
    suppression_conflicts: int = 0
    incomplete: bool = False
    elapsed_ms: float = 0.0


@dataclass(frozen=True)
class Report:
    """The final, ordered result of one run."""

    diagnostics: tuple[Diagnostic, ...]
    summary: Summary
    unit_failures: tuple[UnitFailure, ...] = ()
    evaluation_failures: tuple[EvaluationFailure, ...] = ()
    conflicts: tuple[SuppressionConflict, ...] = ()

    @property
    def status(self) -> Status:
        return self.summary.status

    @property
    def exit_code(self) -> int:
        """Process exit code: 0 pass, 1 fail, 2 when no verdict could be reached."""
        if self.summary.unjustified_errors:
            return EXIT_FAIL
        if self.summary.status is Status.INCOMPLETE:
            return EXIT_INTERNAL_ERROR
        return EXIT_PASS


def deduplicate(diagnostics: Iterable[Diagnostic]) -> list[Diagnostic]:
    """Keep one diagnostic per ``(rule_id, location)``; a justified copy wins."""
    kept: dict[tuple[str, tuple[str, int, int]], Diagnostic] = {}
    for diagnostic in diagnostics:
        existing = kept.get(diagnostic.identity)
        if existing is None or (diagnostic.justified and not existing.justified):
            kept[diagnostic.identity] = diagnostic
    return list(kept.values())


def aggregate(
    diagnostics: Iterable[Diagnostic],
    *,
    catalogue_version: str,
    units_analyzed: int = 0,
    unit_failures: Sequence[UnitFailure] = (),
    evaluation_failures: Sequence[EvaluationFailure] = (),
    conflicts: Sequence[SuppressionConflict] = (),
    incomplete: bool = False,
    elapsed_ms: float = 0.0,
) -> Report:
    """Build the final :class:`Report` from suppressed diagnostics.

    The run fails when any unjustified diagnostic has severity ``error``.
    Warnings and advisories are reported but never fail a run.  A run cut
    short by its deadline is ``incomplete`` rather than pass or fail.
    """
    ordered = sorted(deduplicate(diagnostics), key=lambda d: d.sort_key)

    by_severity = dict.fromkeys(Severity, 0)
    justified = 0
    unjustified_errors = 0
    for diagnostic in ordered:
        by_severity[diagnostic.severity] += 1
        if diagnostic.justified:
            justified += 1
        elif diagnostic.severity is Severity.ERROR:
            unjustified_errors += 1

    if incomplete:
        status = Status.INCOMPLETE
    elif unjustified_errors:
        status = Status.FAIL
    else:
        status = Status.PASS

    summary = Summary(
        catalogue_version=catalogue_version,
        status=status,
        errors=by_severity[Severity.ERROR],
        warnings=by_severity[Severity.WARNING],
        advisories=by_severity[Severity.ADVISORY],
        justified=justified,
        unjustified=len(ordered) - justified,
        unjustified_errors=unjustified_errors,
        units_analyzed=units_analyzed,
        unanalyzed_units=tuple(sorted(f.unit_path for f in unit_failures)),
        evaluation_failures=len(evaluation_failures),
        suppression_conflicts=len(conflicts),
        incomplete=incomplete,
        elapsed_ms=elapsed_ms,
    )
    logger.info(
        "Run %s: %d diagnostics (%d justified), %d unanalyzed units",
        status.value,
        len(ordered),
        justified,
        len(unit_failures),
    )
    return Report(
        diagnostics=tuple(ordered),
        summary=summary,
        unit_failures=tuple(sorted(unit_failures, key=lambda f: f.unit_path)),
        evaluation_failures=tuple(evaluation_failures),
        conflicts=tuple(conflicts),
    )
