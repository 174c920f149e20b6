"""Tests for the cratewarden CLI (check, rules, explain)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from click.testing import CliRunner

from cratewarden import __version__
from cratewarden.cli import main

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _project(tmp_path: Path, write_dump: Callable[..., Path], *facts: dict[str, object]) -> Path:
    """Create a one-crate library project with one fact dump."""
    (tmp_path / "src").mkdir(exist_ok=True)
    (tmp_path / "src" / "lib.rs").write_text("", encoding="utf-8")
    (tmp_path / "Cargo.toml").write_text('[package]\nname = "billing"\n', encoding="utf-8")
    write_dump(
        "lib.yml",
        {"path": "src/lib.rs", "crate": "billing", "module": "billing"},
        list(facts),
    )
    return tmp_path


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestMain:
    """Tests for the command group."""

    def test_version(self) -> None:
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self) -> None:
        result = CliRunner().invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("check", "rules", "explain"):
            assert command in result.output

    def test_verbose_enables_debug_logging(self) -> None:
        result = CliRunner().invoke(main, ["-v", "explain", "LOG-001"])
        assert result.exit_code == 0
        assert "DEBUG cratewarden.rules.catalogue: Loaded catalogue" in result.output

    def test_quiet_keeps_output_clean(self) -> None:
        result = CliRunner().invoke(main, ["-q", "rules", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["version"] == "2026.1"


class TestCheckCommand:
    """Tests for `cratewarden check`."""

    def test_clean_project_exits_zero(
        self, tmp_path: Path, write_dump: Callable[..., Path]
    ) -> None:
        project = _project(tmp_path, write_dump, {"kind": "macro_call", "line": 1, "name": "vec"})
        result = CliRunner().invoke(main, ["check", "--project", str(project)])
        assert result.exit_code == 0, result.output
        assert result.output == ""

    def test_warning_only_exits_zero(
        self, tmp_path: Path, write_dump: Callable[..., Path]
    ) -> None:
        project = _project(
            tmp_path, write_dump, {"kind": "macro_call", "line": 4, "column": 5, "name": "dbg"}
        )
        result = CliRunner().invoke(main, ["check", "--project", str(project)])
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "LOG-001:warning:src/lib.rs:4:5:0"

    def test_error_exits_one(self, tmp_path: Path, write_dump: Callable[..., Path]) -> None:
        project = _project(
            tmp_path, write_dump, {"kind": "method_call", "line": 7, "method": "unwrap"}
        )
        result = CliRunner().invoke(main, ["check", "--project", str(project)])
        assert result.exit_code == 1
        assert "PANIC-001:error:src/lib.rs:7:1:0" in result.output

    def test_json_format(self, tmp_path: Path, write_dump: Callable[..., Path]) -> None:
        project = _project(
            tmp_path, write_dump, {"kind": "method_call", "line": 7, "method": "unwrap"}
        )
        result = CliRunner().invoke(
            main, ["check", "--project", str(project), "--format", "json"]
        )
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["summary"]["status"] == "fail"
        assert data["summary"]["catalogue_version"] == "2026.1"
        assert data["diagnostics"][0]["rule_id"] == "PANIC-001"

    def test_text_format(self, tmp_path: Path, write_dump: Callable[..., Path]) -> None:
        project = _project(
            tmp_path, write_dump, {"kind": "method_call", "line": 7, "method": "unwrap"}
        )
        result = CliRunner().invoke(
            main, ["check", "--project", str(project), "--format", "text"]
        )
        assert result.exit_code == 1
        assert "PANIC-001 [error] src/lib.rs:7:1" in result.output
        assert ".unwrap() may panic outside test code" in result.output

    def test_config_error_exits_two(
        self, tmp_path: Path, write_dump: Callable[..., Path]
    ) -> None:
        write_dump(
            "lib.yml",
            {"path": "src/lib.rs", "crate": "unknown_crate"},
            [{"kind": "macro_call", "line": 1, "name": "dbg"}],
        )
        result = CliRunner().invoke(main, ["check", "--project", str(tmp_path)])
        assert result.exit_code == 2
        assert "Error:" in result.output
        assert "unknown_crate" in result.output

    def test_all_units_failed_exits_two(
        self, tmp_path: Path, write_dump: Callable[..., Path]
    ) -> None:
        write_dump("lib.yml", {"path": "src/lib.rs", "crate": "billing"}, error="parse failure")
        result = CliRunner().invoke(main, ["check", "--project", str(tmp_path)])
        assert result.exit_code == 2
        assert "no source unit could be analyzed" in result.output

    def test_facts_dir_option(self, tmp_path: Path) -> None:
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "lib.rs").write_text("", encoding="utf-8")
        (tmp_path / "Cargo.toml").write_text('[package]\nname = "billing"\n', encoding="utf-8")
        dumps = tmp_path / "out"
        dumps.mkdir()
        (dumps / "lib.yml").write_text(
            "unit: { path: src/lib.rs, crate: billing }\n"
            "facts:\n"
            "  - { kind: macro_call, line: 2, name: todo }\n",
            encoding="utf-8",
        )
        result = CliRunner().invoke(
            main, ["check", "--project", str(tmp_path), "--facts-dir", str(dumps)]
        )
        assert result.exit_code == 1
        assert "PANIC-001:error:src/lib.rs:2:1:0" in result.output

    def test_missing_facts_dir_exits_two(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(
            main, ["check", "--project", str(tmp_path), "--facts-dir", str(tmp_path / "nope")]
        )
        assert result.exit_code == 2
        assert "does not exist" in result.output

    def test_no_dumps_exits_two(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(main, ["check", "--project", str(tmp_path)])
        assert result.exit_code == 2
        assert "facts directory not found" in result.output


class TestRulesCommand:
    """Tests for `cratewarden rules`."""

    def test_table(self) -> None:
        result = CliRunner().invoke(main, ["rules"])
        assert result.exit_code == 0, result.output
        assert "2026.1" in result.output
        assert "PANIC-001" in result.output
        assert "not suppressible" in result.output

    def test_json(self) -> None:
        result = CliRunner().invoke(main, ["rules", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["version"] == "2026.1"
        panic = next(r for r in data["rules"] if r["id"] == "PANIC-001")
        assert panic["suppressible"] is False
        assert panic["scope"] == "role=adapter,domain,util"
        err = next(r for r in data["rules"] if r["id"] == "ERR-001")
        assert err["scope"] == "crate=library role=adapter,domain,util"

    def test_bad_catalogue_exits_two(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.yml"
        path.write_text("rules: []\n", encoding="utf-8")
        result = CliRunner().invoke(main, ["rules", "--catalogue", str(path)])
        assert result.exit_code == 2
        assert "missing required 'version'" in result.output


class TestExplainCommand:
    """Tests for `cratewarden explain`."""

    def test_known_rule(self) -> None:
        result = CliRunner().invoke(main, ["explain", "TYPE-001"])
        assert result.exit_code == 0, result.output
        assert result.output.startswith(
            "TYPE-001: Primitive wrapper without validating constructor"
        )
        assert "suppressible: yes, with justification" in result.output
        assert "Fix: Keep the field private" in result.output

    def test_params_shown(self) -> None:
        result = CliRunner().invoke(main, ["explain", "CONC-001"])
        assert result.exit_code == 0
        assert '"read_heavy": "RwLock"' in result.output

    def test_unknown_rule(self) -> None:
        result = CliRunner().invoke(main, ["explain", "NOPE-001"])
        assert result.exit_code == 2
        assert "unknown rule 'NOPE-001'" in result.output
