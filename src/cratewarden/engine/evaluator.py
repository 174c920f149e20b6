"""Evaluator: run every applicable rule against every fact."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cratewarden.errors import EvaluationError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from cratewarden.facts.model import FactModel, Location, SourceFact
    from cratewarden.rules.catalogue import Catalogue, Rule, Severity
    from cratewarden.scope import ScopeMap

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Diagnostic:
    """One rule violation at one location.

    ``(rule_id, location)`` is the identity used for deduplication.
    """

    rule_id: str
    location: Location
    severity: Severity
    message: str
    title: str = ""
    fix: str | None = None
    suppressible: bool = True
    justified: bool = False
    justification: str | None = None

    @property
    def identity(self) -> tuple[str, tuple[str, int, int]]:
        return (self.rule_id, self.location.key)

    @property
    def sort_key(self) -> tuple[str, int, int, str]:
        return (self.location.path, self.location.line, self.location.column, self.rule_id)


@dataclass(frozen=True)
class EvaluationFailure:
    """A rule predicate that failed on one fact."""

    rule_id: str
    location: Location
    message: str


@dataclass
class EvaluationResult:
    """Raw output of one evaluation pass, before suppression."""

    diagnostics: list[Diagnostic] = field(default_factory=list)
    failures: list[EvaluationFailure] = field(default_factory=list)
    facts_evaluated: int = 0
    incomplete: bool = False


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _rules_by_kind(catalogue: Catalogue) -> dict[str, tuple[Rule, ...]]:
    grouped: dict[str, list[Rule]] = {}
    for rule in catalogue:
        for kind in sorted(rule.fact_kinds):
            grouped.setdefault(kind, []).append(rule)
    return {kind: tuple(rules) for kind, rules in grouped.items()}


def evaluate_fact(
    fact: SourceFact,
    scopes: ScopeMap,
    model: FactModel,
    rules: Sequence[Rule],
    result: EvaluationResult,
) -> None:
    """Run *rules* against one fact, appending diagnostics and failures to *result*.

    At most one diagnostic is produced per (rule, fact) pair.  A rule that
    raises is recorded as an :class:`EvaluationFailure` and the remaining
    rules still run.
    """
    scope = scopes.scope_of(fact)
    for rule in rules:
        if not rule.applies(fact, scope):
            continue
        try:
            violation = rule.evaluate(fact, scope, model)
            if violation is None:
                continue
            message = rule.render(fact, violation)
        except Exception as exc:  # noqa: BLE001
            error = EvaluationError(rule.id, fact.location, exc)
            logger.warning("Rule evaluation failed: %s", error)
            result.failures.append(EvaluationFailure(rule.id, fact.location, str(error)))
            continue
        result.diagnostics.append(
            Diagnostic(
                rule_id=rule.id,
                location=fact.location,
                severity=rule.severity,
                message=message,
                title=rule.title,
                fix=rule.fix,
                suppressible=rule.suppressible,
            )
        )


def _evaluate_unit(
    unit_path: str,
    model: FactModel,
    scopes: ScopeMap,
    rules_by_kind: Mapping[str, Sequence[Rule]],
) -> EvaluationResult:
    result = EvaluationResult()
    for fact in model.facts_in_unit(unit_path):
        rules = rules_by_kind.get(fact.kind)
        if rules:
            evaluate_fact(fact, scopes, model, rules, result)
        result.facts_evaluated += 1
    return result


def evaluate(
    model: FactModel,
    scopes: ScopeMap,
    catalogue: Catalogue,
    *,
    jobs: int = 1,
    should_stop: Callable[[], bool] | None = None,
) -> EvaluationResult:
    """Evaluate *catalogue* against every fact of *model*.

    Units are independent, so with ``jobs > 1`` they are evaluated on a
    thread pool.  Partial results are merged on the deterministic sort key,
    which makes the output identical to a sequential run.  *should_stop* is
    polled before each unit; once it fires, remaining units are skipped and
    the result is flagged incomplete.
    """
    rules_by_kind = _rules_by_kind(catalogue)
    unit_paths = [unit.path for unit in model.units]

    def run_unit(unit_path: str) -> EvaluationResult | None:
        if should_stop is not None and should_stop():
            return None
        return _evaluate_unit(unit_path, model, scopes, rules_by_kind)

    if jobs > 1 and len(unit_paths) > 1:
        with ThreadPoolExecutor(max_workers=jobs) as executor:
            partials = list(executor.map(run_unit, unit_paths))
    else:
        partials = []
        for unit_path in unit_paths:
            partial = run_unit(unit_path)
            partials.append(partial)
            if partial is None:
                break

    merged = EvaluationResult()
    for partial in partials:
        if partial is None:
            merged.incomplete = True
            continue
        merged.diagnostics.extend(partial.diagnostics)
        merged.failures.extend(partial.failures)
        merged.facts_evaluated += partial.facts_evaluated

    if merged.incomplete:
        logger.warning("Deadline reached, evaluation stopped early")

    merged.diagnostics.sort(key=lambda d: d.sort_key)
    merged.failures.sort(key=lambda f: (f.location.key, f.rule_id))
    logger.debug(
        "Evaluated %d facts: %d raw diagnostics, %d rule failures",
        merged.facts_evaluated,
        len(merged.diagnostics),
        len(merged.failures),
    )
    return merged
