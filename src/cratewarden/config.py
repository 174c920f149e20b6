"""Project configuration: ``.cratewarden/config.yml`` and Cargo manifest inference."""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from cratewarden.errors import ConfigError
from cratewarden.scope import DEFAULT_ROLE_PATTERNS, CrateKind, ModuleRole, ScopeConfig

logger = logging.getLogger(__name__)

CONFIG_DIR = ".cratewarden"
CONFIG_FILE = "config.yml"
DEFAULT_FACTS_DIR = f"{CONFIG_DIR}/facts"
DEFAULT_MANIFESTS: tuple[str, ...] = ("Cargo.toml", "crates/*/Cargo.toml")


@dataclass(frozen=True)
class ProjectConfig:
    """Resolved settings for one project."""

    root: Path
    facts_dir: Path
    catalogue: Path | None = None
    jobs: int = 1
    timeout: float | None = None
    scope: ScopeConfig = field(default_factory=ScopeConfig)


# ---------------------------------------------------------------------------
# Cargo manifests
# ---------------------------------------------------------------------------


def read_manifest(path: Path) -> tuple[str, CrateKind | None] | None:
    """Read a Cargo manifest and classify its package.

    Returns ``(package_name, kind)`` where *kind* is ``None`` when the
    package has both library and binary targets.  Returns ``None`` for a
    virtual workspace manifest without a ``[package]`` table.
    """
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        msg = f"cannot read Cargo manifest {path}: {exc}"
        raise ConfigError(msg) from exc

    package = data.get("package")
    if not isinstance(package, dict):
        return None
    name = package.get("name")
    if not isinstance(name, str) or not name:
        msg = f"{path}: [package] has no name"
        raise ConfigError(msg)

    crate_dir = path.parent
    has_lib = isinstance(data.get("lib"), dict) or (crate_dir / "src" / "lib.rs").is_file()
    bins = data.get("bin")
    has_bin = (isinstance(bins, list) and bool(bins)) or (crate_dir / "src" / "main.rs").is_file()

    if has_lib and has_bin:
        return name, None
    if has_lib:
        return name, CrateKind.LIBRARY
    if has_bin:
        return name, CrateKind.BINARY
    msg = f"{path}: package '{name}' declares neither a library nor a binary target"
    raise ConfigError(msg)


def _infer_crate_kinds(
    root: Path, patterns: list[str]
) -> tuple[dict[str, CrateKind], set[str]]:
    kinds: dict[str, CrateKind] = {}
    ambiguous: set[str] = set()
    seen: set[Path] = set()
    for pattern in patterns:
        for manifest in sorted(root.glob(pattern)):
            if manifest in seen or not manifest.is_file():
                continue
            seen.add(manifest)
            result = read_manifest(manifest)
            if result is None:
                continue
            name, kind = result
            # Source units may name the crate as written in Cargo.toml or as
            # the identifier rustc uses.
            for alias in {name, name.replace("-", "_")}:
                if kind is None:
                    ambiguous.add(alias)
                else:
                    kinds[alias] = kind
            logger.debug("Manifest %s: crate %s is %s", manifest, name, kind or "ambiguous")
    return kinds, ambiguous


# ---------------------------------------------------------------------------
# Config file
# ---------------------------------------------------------------------------


def _parse_crates(raw: object) -> dict[str, CrateKind]:
    if not isinstance(raw, dict):
        msg = "config.yml: 'crates' must be a mapping of crate name to kind"
        raise ConfigError(msg)
    kinds: dict[str, CrateKind] = {}
    for name, kind in raw.items():
        try:
            kinds[str(name)] = CrateKind(str(kind))
        except ValueError:
            msg = (
                f"config.yml: crate '{name}' has invalid kind '{kind}', "
                f"must be one of {sorted(k.value for k in CrateKind)}"
            )
            raise ConfigError(msg) from None
    return kinds


def _parse_roles(raw: object) -> dict[ModuleRole, tuple[str, ...]]:
    if not isinstance(raw, dict):
        msg = "config.yml: 'roles' must be a mapping of role to module patterns"
        raise ConfigError(msg)
    patterns = dict(DEFAULT_ROLE_PATTERNS)
    for role_name, role_patterns in raw.items():
        try:
            role = ModuleRole(str(role_name))
        except ValueError:
            msg = (
                f"config.yml: unknown role '{role_name}', "
                f"must be one of {sorted(r.value for r in ModuleRole)}"
            )
            raise ConfigError(msg) from None
        if not isinstance(role_patterns, list):
            msg = f"config.yml: roles.{role_name} must be a list of patterns"
            raise ConfigError(msg)
        patterns[role] = tuple(str(p) for p in role_patterns)
    return patterns


def _parse_optional_path(root: Path, raw: object, key: str) -> Path | None:
    if raw is None:
        return None
    if not isinstance(raw, str) or not raw.strip():
        msg = f"config.yml: '{key}' must be a non-empty string"
        raise ConfigError(msg)
    return root / raw


def load_config(project_root: Path, config_path: Path | None = None) -> ProjectConfig:
    """Load project configuration, falling back to defaults when the file is absent.

    Crate kinds declared under ``crates:`` override kinds inferred from Cargo
    manifests.  Raises ``ConfigError`` on malformed configuration.
    """
    path = config_path or project_root / CONFIG_DIR / CONFIG_FILE
    data: dict[str, Any] = {}
    if path.is_file():
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            msg = f"cannot read {path}: {exc}"
            raise ConfigError(msg) from exc
        if loaded is not None and not isinstance(loaded, dict):
            msg = f"{path}: config must be a YAML mapping"
            raise ConfigError(msg)
        data = loaded or {}
    elif config_path is not None:
        msg = f"config file not found: {config_path}"
        raise ConfigError(msg)

    manifests_raw = data.get("manifests", list(DEFAULT_MANIFESTS))
    if not isinstance(manifests_raw, list):
        msg = "config.yml: 'manifests' must be a list of glob patterns"
        raise ConfigError(msg)
    inferred, ambiguous = _infer_crate_kinds(project_root, [str(m) for m in manifests_raw])

    explicit = _parse_crates(data.get("crates", {}))
    crate_kinds = {**inferred, **explicit}

    role_patterns = (
        _parse_roles(data["roles"]) if "roles" in data else dict(DEFAULT_ROLE_PATTERNS)
    )
    default_role_raw = data.get("default_role", ModuleRole.DOMAIN.value)
    try:
        default_role = ModuleRole(str(default_role_raw))
    except ValueError:
        msg = f"config.yml: invalid default_role '{default_role_raw}'"
        raise ConfigError(msg) from None

    jobs_raw = data.get("jobs", 1)
    if isinstance(jobs_raw, bool) or not isinstance(jobs_raw, int) or jobs_raw < 1:
        msg = "config.yml: 'jobs' must be a positive integer"
        raise ConfigError(msg)

    timeout_raw = data.get("timeout")
    timeout: float | None = None
    if timeout_raw is not None:
        if isinstance(timeout_raw, bool) or not isinstance(timeout_raw, int | float):
            msg = "config.yml: 'timeout' must be a number of seconds"
            raise ConfigError(msg)
        timeout = float(timeout_raw)
        if timeout <= 0:
            msg = "config.yml: 'timeout' must be positive"
            raise ConfigError(msg)

    facts_dir = _parse_optional_path(project_root, data.get("facts_dir"), "facts_dir")
    return ProjectConfig(
        root=project_root,
        facts_dir=facts_dir or project_root / DEFAULT_FACTS_DIR,
        catalogue=_parse_optional_path(project_root, data.get("catalogue"), "catalogue"),
        jobs=jobs_raw,
        timeout=timeout,
        scope=ScopeConfig(
            crate_kinds=crate_kinds,
            ambiguous_crates=frozenset(ambiguous - explicit.keys()),
            role_patterns=role_patterns,
            default_role=default_role,
        ),
    )
