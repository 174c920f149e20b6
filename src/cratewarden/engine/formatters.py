"""Report formatters: human-readable text, structured JSON, and porcelain lines."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cratewarden.engine.aggregator import Report
    from cratewarden.engine.evaluator import Diagnostic


def _severity_mark(diagnostic: Diagnostic) -> str:
    if diagnostic.justified:
        return "~"
    return {"error": "✗", "warning": "!", "advisory": "i"}[diagnostic.severity.value]


def format_text(report: Report) -> str:
    """Format a Report as human-readable text.

    Example output with diagnostics::

        Catalogue: 2026.1
        Units: 12 analyzed, 1 unanalyzed

        x TYPE-001 [error] src/billing/money.rs:3:1
          'Money' wraps a bare u64 and is exposed outside its module ...
          fix: Keep the field private and add a constructor ...

        ~ CLONE-001 [warning] src/billing/ledger.rs:40:9 (justified: snapshot)
          clone of Vec<Entry> without a justification annotation

        FAIL: 2 diagnostics (1 error, 1 warning, 0 advisory; 1 justified) in 0.1s

    Justified diagnostics are listed with ``~`` and never count as failures.
    """
    summary = report.summary
    lines: list[str] = []

    lines.append(f"Catalogue: {summary.catalogue_version}")
    lines.append(
        f"Units: {summary.units_analyzed} analyzed, "
        f"{len(summary.unanalyzed_units)} unanalyzed"
    )
    lines.append("")

    for d in report.diagnostics:
        header = f"{_severity_mark(d)} {d.rule_id} [{d.severity.value}] {d.location}"
        if d.justified:
            header += f" (justified: {d.justification or 'no text'})"
        lines.append(header)
        lines.append(f"  {d.message}")
        if d.fix and not d.justified:
            lines.append(f"  fix: {d.fix}")
        lines.append("")

    if report.unit_failures:
        lines.append("Unanalyzed units:")
        for failure in report.unit_failures:
            lines.append(f"  {failure.unit_path}: {failure.message}")
        lines.append("")

    if report.evaluation_failures:
        lines.append("Rule evaluation failures:")
        for failure in report.evaluation_failures:
            lines.append(f"  {failure.rule_id} at {failure.location}: {failure.message}")
        lines.append("")

    if report.conflicts:
        lines.append("Suppression conflicts:")
        for conflict in report.conflicts:
            lines.append(f"  {conflict.location} [{conflict.reason}] {conflict.message}")
        lines.append("")

    elapsed_str = f"{summary.elapsed_ms / 1000:.1f}s"
    total = len(report.diagnostics)
    if total:
        lines.append(
            f"{summary.status.value.upper()}: {total} diagnostics "
            f"({summary.errors} error, {summary.warnings} warning, "
            f"{summary.advisories} advisory; {summary.justified} justified) in {elapsed_str}"
        )
    else:
        lines.append(f"{summary.status.value.upper()}: no diagnostics in {elapsed_str}")

    return "\n".join(lines)


def format_json(report: Report) -> str:
    """Format a Report as structured JSON.

    Returns a JSON string with ``diagnostics`` array, ``summary`` object, and
    the non-fatal failure lists.
    """
    summary = report.summary
    diagnostics_list: list[dict[str, object]] = []
    for d in report.diagnostics:
        diagnostics_list.append(
            {
                "rule_id": d.rule_id,
                "severity": d.severity.value,
                "path": d.location.path,
                "line": d.location.line,
                "column": d.location.column,
                "end_line": d.location.end_line,
                "message": d.message,
                "fix": d.fix,
                "suppressible": d.suppressible,
                "justified": d.justified,
                "justification": d.justification,
            }
        )

    output: dict[str, object] = {
        "diagnostics": diagnostics_list,
        "summary": {
            "catalogue_version": summary.catalogue_version,
            "status": summary.status.value,
            "errors": summary.errors,
            "warnings": summary.warnings,
            "advisories": summary.advisories,
            "justified": summary.justified,
            "unjustified": summary.unjustified,
            "units_analyzed": summary.units_analyzed,
            "unanalyzed_units": list(summary.unanalyzed_units),
            "evaluation_failures": summary.evaluation_failures,
            "suppression_conflicts": summary.suppression_conflicts,
            "incomplete": summary.incomplete,
            "elapsed_ms": summary.elapsed_ms,
        },
        "unit_failures": [
            {"path": f.unit_path, "message": f.message} for f in report.unit_failures
        ],
        "evaluation_failures": [
            {
                "rule_id": f.rule_id,
                "path": f.location.path,
                "line": f.location.line,
                "column": f.location.column,
                "message": f.message,
            }
            for f in report.evaluation_failures
        ],
        "conflicts": [
            {
                "rule_id": c.rule_id,
                "path": c.location.path,
                "line": c.location.line,
                "column": c.location.column,
                "reason": c.reason,
                "message": c.message,
            }
            for c in report.conflicts
        ],
    }

    return json.dumps(output, indent=2)


def format_porcelain(report: Report) -> str:
    """Format a Report as machine-readable one-line-per-diagnostic output.

    Format: ``rule_id:severity:path:line:column:justified`` where *justified*
    is ``0`` or ``1``.  Returns empty string when there are no diagnostics.
    """
    if not report.diagnostics:
        return ""

    lines: list[str] = []
    for d in report.diagnostics:
        loc = d.location
        lines.append(
            f"{d.rule_id}:{d.severity.value}:{loc.path}:{loc.line}:{loc.column}:"
            f"{int(d.justified)}"
        )

    return "\n".join(lines)
