"""Rule registry: versioned catalogue, rule definitions, built-in predicates."""

from cratewarden.rules.builtin import BUILTIN_PREDICATES
from cratewarden.rules.catalogue import (
    WILDCARD,
    Catalogue,
    Rule,
    ScopeSelector,
    Severity,
    Violation,
    load_catalogue,
    parse_catalogue,
)

__all__ = [
    "BUILTIN_PREDICATES",
    "WILDCARD",
    "Catalogue",
    "Rule",
    "ScopeSelector",
    "Severity",
    "Violation",
    "load_catalogue",
    "parse_catalogue",
]
