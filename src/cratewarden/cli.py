"""Cratewarden CLI entry point."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from cratewarden import __version__

if TYPE_CHECKING:
    from cratewarden.rules.catalogue import Catalogue, Rule, ScopeSelector


@click.group()
@click.version_option(version=__version__, prog_name="cratewarden")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
def main(*, verbose: bool, quiet: bool) -> None:
    """Cratewarden - conformance engine for a Rust coding rulebook."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
        force=True,
    )


def _load_catalogue_or_exit(path: Path | None) -> Catalogue:
    from cratewarden.errors import ConfigError
    from cratewarden.rules.catalogue import load_catalogue

    try:
        return load_catalogue(path)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)


def _selector_text(selector: ScopeSelector) -> str:
    from cratewarden.scope import CrateKind, ModuleRole, VisibilityTier

    parts: list[str] = []
    for label, chosen, universe in (
        ("crate", selector.crate_kinds, frozenset(CrateKind)),
        ("visibility", selector.visibilities, frozenset(VisibilityTier)),
        ("role", selector.roles, frozenset(ModuleRole)),
    ):
        if chosen != universe:
            parts.append(f"{label}={','.join(sorted(v.value for v in chosen))}")
    return " ".join(parts) or "any"


def _rule_dict(rule: Rule) -> dict[str, object]:
    return {
        "id": rule.id,
        "title": rule.title,
        "severity": rule.severity.value,
        "facts": sorted(rule.fact_kinds),
        "scope": _selector_text(rule.applies_to),
        "suppressible": rule.suppressible,
        "requires_justification": rule.requires_justification,
        "fix": rule.fix,
        "description": rule.description,
    }


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------


@main.command()
@click.option(
    "--project",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Project root (default: current directory).",
)
@click.option(
    "--facts-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory of fact dumps (default: from config.yml or '.cratewarden/facts').",
)
@click.option(
    "--catalogue",
    "catalogue_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Rule catalogue file (default: from config.yml or the built-in catalogue).",
)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["text", "json", "porcelain"]),
    default=None,
    help="Output format (default: text if TTY, porcelain if piped).",
)
@click.option("--jobs", "-j", type=click.IntRange(min=1), default=None, help="Worker threads.")
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Run deadline in seconds; a run cut short is reported incomplete.",
)
def check(
    *,
    project: Path | None,
    facts_dir: Path | None,
    catalogue_path: Path | None,
    fmt: str | None,
    jobs: int | None,
    timeout: float | None,
) -> None:
    """Check a project's extracted facts against the rule catalogue.

    Exit codes: 0 = pass, 1 = unjustified error-severity diagnostics,
    2 = configuration error or no verdict (incomplete run).
    """
    from cratewarden.engine.formatters import format_json, format_porcelain, format_text
    from cratewarden.engine.runner import check as run_check
    from cratewarden.errors import CheckError, ConfigError

    project_root = project or Path.cwd()

    # Resolve output format: explicit flag > TTY detection.
    if fmt is None:
        fmt = "text" if sys.stdout.isatty() else "porcelain"

    try:
        report = run_check(
            project_root,
            facts_dir=facts_dir,
            catalogue_path=catalogue_path,
            jobs=jobs,
            timeout=timeout,
        )
    except (ConfigError, CheckError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)

    formatters = {
        "text": format_text,
        "json": format_json,
        "porcelain": format_porcelain,
    }
    output = formatters[fmt](report)
    if output:
        click.echo(output)

    sys.exit(report.exit_code)


# ---------------------------------------------------------------------------
# rules / explain
# ---------------------------------------------------------------------------


@main.command("rules")
@click.option(
    "--catalogue",
    "catalogue_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Rule catalogue file (default: the built-in catalogue).",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def rules_cmd(*, catalogue_path: Path | None, as_json: bool) -> None:
    """List the rules of the catalogue."""
    catalogue = _load_catalogue_or_exit(catalogue_path)

    if as_json:
        data = {
            "version": catalogue.version,
            "rules": [_rule_dict(rule) for rule in catalogue],
        }
        click.echo(json.dumps(data, indent=2))
        return

    from rich.console import Console
    from rich.table import Table

    console = Console()
    table = Table(title=f"Catalogue {catalogue.version}", box=None, padding=(0, 1))
    table.add_column("id", style="cyan", no_wrap=True)
    table.add_column("severity", no_wrap=True)
    table.add_column("scope")
    table.add_column("title")
    for rule in catalogue:
        severity = rule.severity.value
        if not rule.suppressible:
            severity += "*"
        table.add_row(rule.id, severity, _selector_text(rule.applies_to), rule.title)
    console.print(table)
    console.print("  * not suppressible", style="dim")


@main.command()
@click.argument("rule_id")
@click.option(
    "--catalogue",
    "catalogue_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Rule catalogue file (default: the built-in catalogue).",
)
def explain(rule_id: str, *, catalogue_path: Path | None) -> None:
    """Show the full definition of RULE_ID."""
    catalogue = _load_catalogue_or_exit(catalogue_path)

    rule = catalogue.get(rule_id)
    if rule is None:
        click.echo(f"Error: unknown rule '{rule_id}'", err=True)
        sys.exit(2)

    info = _rule_dict(rule)
    click.echo(f"{rule.id}: {rule.title}")
    click.echo(f"  severity:     {info['severity']}")
    click.echo(f"  facts:        {', '.join(sorted(rule.fact_kinds))}")
    click.echo(f"  scope:        {info['scope']}")
    if rule.suppressible:
        note = "yes, with justification" if rule.requires_justification else "yes"
    else:
        note = "no"
    click.echo(f"  suppressible: {note}")
    if rule.params:
        click.echo(f"  params:       {json.dumps(_plain(rule.params), sort_keys=True)}")
    if rule.description:
        click.echo("")
        click.echo(rule.description)
    if rule.fix:
        click.echo("")
        click.echo(f"Fix: {rule.fix}")


def _plain(value: object) -> object:
    """Thaw frozen rule parameters back to JSON-serialisable values."""
    from collections.abc import Mapping

    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, tuple | list | frozenset):
        return [_plain(v) for v in value]
    return value
