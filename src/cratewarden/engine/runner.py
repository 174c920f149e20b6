"""Run orchestrator: extract facts, resolve scopes, evaluate, suppress, aggregate."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from cratewarden.config import load_config
from cratewarden.engine.aggregator import aggregate
from cratewarden.engine.evaluator import evaluate
from cratewarden.engine.suppression import resolve_suppressions
from cratewarden.errors import CheckError
from cratewarden.facts.model import build_fact_model
from cratewarden.facts.source import YamlFactSource
from cratewarden.rules.catalogue import load_catalogue
from cratewarden.scope import ScopeResolver

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from cratewarden.engine.aggregator import Report
    from cratewarden.facts.model import FactSource
    from cratewarden.rules.catalogue import Catalogue
    from cratewarden.scope import ScopeConfig

logger = logging.getLogger(__name__)


def _deadline(start: float, timeout: float | None) -> Callable[[], bool] | None:
    if timeout is None:
        return None
    limit = start + timeout

    def should_stop() -> bool:
        return time.monotonic() >= limit

    return should_stop


def run_check(
    source: FactSource,
    catalogue: Catalogue,
    config: ScopeConfig,
    *,
    jobs: int = 1,
    timeout: float | None = None,
) -> Report:
    """Run the full conformance pipeline over *source*.

    Parameters
    ----------
    source:
        The fact query interface the front-end is reached through.
    catalogue:
        Rules to evaluate; its version is recorded in the report.
    config:
        Declared crate kinds and module role patterns.
    jobs:
        Number of worker threads for evaluation.
    timeout:
        Optional run deadline in seconds.  When it passes, remaining units
        are skipped and the report status is ``incomplete``.

    Raises
    ------
    ConfigError
        When scopes cannot be resolved (undeclared or ambiguous crate kind,
        unknown visibility).
    CheckError
        When the source has units but none could be analyzed, or has no units.
    """
    start = time.monotonic()
    should_stop = _deadline(start, timeout)

    model = build_fact_model(source, should_stop=should_stop)
    if not model.units and not model.incomplete:
        if model.failures:
            msg = f"no source unit could be analyzed ({len(model.failures)} failed)"
        else:
            msg = "no source units to check"
        raise CheckError(msg)

    scopes = ScopeResolver(config).resolve(model)
    evaluated = evaluate(model, scopes, catalogue, jobs=jobs, should_stop=should_stop)
    suppressed = resolve_suppressions(evaluated.diagnostics, model.directives, catalogue)

    elapsed = (time.monotonic() - start) * 1000
    return aggregate(
        suppressed.diagnostics,
        catalogue_version=catalogue.version,
        units_analyzed=len(model.units),
        unit_failures=model.failures,
        evaluation_failures=evaluated.failures,
        conflicts=suppressed.conflicts,
        incomplete=model.incomplete or evaluated.incomplete,
        elapsed_ms=elapsed,
    )


def check(
    project_root: Path,
    *,
    facts_dir: Path | None = None,
    catalogue_path: Path | None = None,
    jobs: int | None = None,
    timeout: float | None = None,
) -> Report:
    """Check a project: load its configuration and catalogue, then run.

    Explicit arguments override ``.cratewarden/config.yml``.  Source text
    for suppression comments is read relative to *project_root*.
    """
    config = load_config(project_root)
    catalogue = load_catalogue(catalogue_path or config.catalogue)
    dumps_dir = facts_dir or config.facts_dir
    if not dumps_dir.is_dir():
        msg = f"facts directory not found: {dumps_dir}"
        raise CheckError(msg)
    source = YamlFactSource(dumps_dir, source_root=project_root)
    logger.debug(
        "Checking %s with catalogue %s (facts from %s)",
        project_root,
        catalogue.version,
        source.facts_dir,
    )
    return run_check(
        source,
        catalogue,
        config.scope,
        jobs=jobs or config.jobs,
        timeout=timeout if timeout is not None else config.timeout,
    )
