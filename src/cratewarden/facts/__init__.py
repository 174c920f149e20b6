"""Fact model: source units, structural facts, and the frozen per-run index.

``cratewarden.facts.source`` (the fact-dump adapters) is not re-exported here
because it depends on the suppression parser in ``cratewarden.engine``.
Import it directly::

    from cratewarden.facts.source import YamlFactSource
"""

from cratewarden.facts.model import (
    FACT_KINDS,
    FactModel,
    FactSource,
    Location,
    SourceFact,
    SourceUnit,
    UnitFailure,
    base_name,
    build_fact_model,
)

__all__ = [
    "FACT_KINDS",
    "FactModel",
    "FactSource",
    "Location",
    "SourceFact",
    "SourceUnit",
    "UnitFailure",
    "base_name",
    "build_fact_model",
]
