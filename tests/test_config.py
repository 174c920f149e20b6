"""Tests for cratewarden.config: config.yml loading and Cargo manifest inference."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from cratewarden.config import DEFAULT_FACTS_DIR, load_config, read_manifest
from cratewarden.errors import ConfigError
from cratewarden.scope import CrateKind, ModuleRole

if TYPE_CHECKING:
    from pathlib import Path


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _crate(root: Path, name: str, *, lib: bool = False, main: bool = False) -> Path:
    """Create ``crates/<name>`` with a manifest and the given target files."""
    crate_dir = root / "crates" / name
    (crate_dir / "src").mkdir(parents=True)
    manifest = crate_dir / "Cargo.toml"
    manifest.write_text(f'[package]\nname = "{name}"\nversion = "0.1.0"\n', encoding="utf-8")
    if lib:
        (crate_dir / "src" / "lib.rs").write_text("", encoding="utf-8")
    if main:
        (crate_dir / "src" / "main.rs").write_text("fn main() {}\n", encoding="utf-8")
    return manifest


def _write_config(root: Path, text: str) -> None:
    config_dir = root / ".cratewarden"
    config_dir.mkdir(exist_ok=True)
    (config_dir / "config.yml").write_text(text, encoding="utf-8")


# ---------------------------------------------------------------------------
# read_manifest
# ---------------------------------------------------------------------------


class TestReadManifest:
    """Tests for classifying a Cargo package."""

    def test_library(self, tmp_path: Path) -> None:
        assert read_manifest(_crate(tmp_path, "billing", lib=True)) == (
            "billing",
            CrateKind.LIBRARY,
        )

    def test_binary(self, tmp_path: Path) -> None:
        assert read_manifest(_crate(tmp_path, "cli", main=True)) == ("cli", CrateKind.BINARY)

    def test_both_targets_is_ambiguous(self, tmp_path: Path) -> None:
        assert read_manifest(_crate(tmp_path, "both", lib=True, main=True)) == ("both", None)

    def test_explicit_bin_table(self, tmp_path: Path) -> None:
        manifest = tmp_path / "Cargo.toml"
        manifest.write_text(
            '[package]\nname = "tool"\n\n[[bin]]\nname = "tool"\npath = "bin/tool.rs"\n',
            encoding="utf-8",
        )
        assert read_manifest(manifest) == ("tool", CrateKind.BINARY)

    def test_virtual_workspace(self, tmp_path: Path) -> None:
        manifest = tmp_path / "Cargo.toml"
        manifest.write_text('[workspace]\nmembers = ["crates/*"]\n', encoding="utf-8")
        assert read_manifest(manifest) is None

    def test_no_targets(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="neither a library nor a binary"):
            read_manifest(_crate(tmp_path, "empty"))

    def test_malformed_toml(self, tmp_path: Path) -> None:
        manifest = tmp_path / "Cargo.toml"
        manifest.write_text("[package\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="cannot read Cargo manifest"):
            read_manifest(manifest)


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for project configuration."""

    def test_defaults_without_config(self, tmp_path: Path) -> None:
        config = load_config(tmp_path)
        assert config.facts_dir == tmp_path / DEFAULT_FACTS_DIR
        assert config.catalogue is None
        assert config.jobs == 1
        assert config.timeout is None
        assert dict(config.scope.crate_kinds) == {}
        assert config.scope.default_role is ModuleRole.DOMAIN

    def test_infers_crate_kinds(self, tmp_path: Path) -> None:
        _crate(tmp_path, "billing-core", lib=True)
        _crate(tmp_path, "billing-cli", main=True)

        kinds = load_config(tmp_path).scope.crate_kinds

        assert kinds["billing-core"] is CrateKind.LIBRARY
        assert kinds["billing_core"] is CrateKind.LIBRARY
        assert kinds["billing_cli"] is CrateKind.BINARY

    def test_ambiguous_until_declared(self, tmp_path: Path) -> None:
        _crate(tmp_path, "both", lib=True, main=True)
        assert "both" in load_config(tmp_path).scope.ambiguous_crates

        _write_config(tmp_path, "crates:\n  both: binary\n")
        scope = load_config(tmp_path).scope
        assert "both" not in scope.ambiguous_crates
        assert scope.crate_kinds["both"] is CrateKind.BINARY

    def test_explicit_kind_wins(self, tmp_path: Path) -> None:
        _crate(tmp_path, "billing", lib=True)
        _write_config(tmp_path, "crates:\n  billing: binary\n")
        assert load_config(tmp_path).scope.crate_kinds["billing"] is CrateKind.BINARY

    def test_full_config(self, tmp_path: Path) -> None:
        _write_config(
            tmp_path,
            "facts_dir: build/facts\n"
            "catalogue: rules.yml\n"
            "jobs: 4\n"
            "timeout: 30\n"
            "manifests: []\n"
            "roles:\n"
            "  adapter: ['*::infra', '*::infra::*']\n"
            "default_role: util\n",
        )

        config = load_config(tmp_path)

        assert config.facts_dir == tmp_path / "build" / "facts"
        assert config.catalogue == tmp_path / "rules.yml"
        assert config.jobs == 4
        assert config.timeout == 30.0
        assert config.scope.role_patterns[ModuleRole.ADAPTER] == ("*::infra", "*::infra::*")
        assert config.scope.role_patterns[ModuleRole.TEST]
        assert config.scope.default_role is ModuleRole.UTIL

    @pytest.mark.parametrize(
        ("text", "match"),
        [
            ("- just\n- a list\n", "must be a YAML mapping"),
            ("facts_dir: [oops\n", "cannot read"),
            ("crates:\n  billing: dylib\n", "invalid kind 'dylib'"),
            ("crates: [billing]\n", "'crates' must be a mapping"),
            ("roles:\n  core: ['*']\n", "unknown role 'core'"),
            ("roles:\n  util: '*::util'\n", "must be a list of patterns"),
            ("default_role: core\n", "invalid default_role"),
            ("jobs: 0\n", "'jobs' must be a positive integer"),
            ("timeout: -1\n", "'timeout' must be positive"),
            ("timeout: soon\n", "'timeout' must be a number"),
            ("manifests: Cargo.toml\n", "'manifests' must be a list"),
            ("facts_dir: ''\n", "'facts_dir' must be a non-empty string"),
        ],
    )
    def test_invalid(self, tmp_path: Path, text: str, match: str) -> None:
        _write_config(tmp_path, text)
        with pytest.raises(ConfigError, match=match):
            load_config(tmp_path)

    def test_explicit_config_path_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="config file not found"):
            load_config(tmp_path, tmp_path / "nope.yml")
