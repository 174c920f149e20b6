"""Engine: evaluation, suppression, aggregation, and report formatting.

``cratewarden.engine.runner`` (the run orchestrator) is not re-exported here
to avoid a circular import: runner -> facts.source -> engine.suppression.
Import it directly::

    from cratewarden.engine.runner import check
"""

from cratewarden.engine.aggregator import (
    EXIT_FAIL,
    EXIT_INTERNAL_ERROR,
    EXIT_PASS,
    Report,
    Status,
    Summary,
    aggregate,
    deduplicate,
)
from cratewarden.engine.evaluator import (
    Diagnostic,
    EvaluationFailure,
    EvaluationResult,
    evaluate,
    evaluate_fact,
)
from cratewarden.engine.formatters import format_json, format_porcelain, format_text
from cratewarden.engine.suppression import (
    SuppressionConflict,
    SuppressionDirective,
    SuppressionResult,
    parse_directives,
    resolve_suppressions,
)

__all__ = [
    "EXIT_FAIL",
    "EXIT_INTERNAL_ERROR",
    "EXIT_PASS",
    "Diagnostic",
    "EvaluationFailure",
    "EvaluationResult",
    "Report",
    "Status",
    "Summary",
    "SuppressionConflict",
    "SuppressionDirective",
    "SuppressionResult",
    "aggregate",
    "deduplicate",
    "evaluate",
    "evaluate_fact",
    "format_json",
    "format_porcelain",
    "format_text",
    "parse_directives",
    "resolve_suppressions",
]
