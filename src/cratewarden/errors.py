"""Error taxonomy shared by every stage of a conformance run.

Only :class:`ConfigError` and :class:`CheckError` abort a run.  Extraction and
evaluation errors are raised at unit / rule granularity, caught by the stage
that owns them, and recorded in the report.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cratewarden.facts.model import Location


class CratewardenError(Exception):
    """Base class for all cratewarden errors."""


class ConfigError(CratewardenError):
    """Raised for malformed or ambiguous catalogue, scope, or project configuration."""


class CheckError(CratewardenError):
    """Raised when a run cannot produce a usable report."""


class ExtractionError(CratewardenError):
    """Raised when facts cannot be produced for a single source unit."""

    def __init__(self, unit_path: str, message: str) -> None:
        super().__init__(f"{unit_path}: {message}")
        self.unit_path = unit_path
        self.reason = message


class EvaluationError(CratewardenError):
    """Raised when a rule predicate fails on a fact (a defect in the rule)."""

    def __init__(self, rule_id: str, location: Location, cause: BaseException) -> None:
        super().__init__(f"{rule_id} failed at {location}: {cause!r}")
        self.rule_id = rule_id
        self.location = location
        self.cause = cause
