"""Built-in rule predicates, bound to catalogue entries by rule id.

Every predicate has the signature ``(fact, scope, model, params)`` and
returns a :class:`Violation` or ``None``.  Predicates read the fact model
but never change it, and never consult anything outside their arguments.
"""

from __future__ import annotations

import fnmatch
from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from cratewarden.facts.model import base_name
from cratewarden.rules.catalogue import Violation

if TYPE_CHECKING:
    from collections.abc import Iterable

    from cratewarden.facts.model import FactModel, SourceFact
    from cratewarden.rules.catalogue import Predicate
    from cratewarden.scope import Scope

# ---------------------------------------------------------------------------
# Type vocabulary
# ---------------------------------------------------------------------------

PRIMITIVE_TYPES: frozenset[str] = frozenset(
    {
        "i8", "i16", "i32", "i64", "i128", "isize",
        "u8", "u16", "u32", "u64", "u128", "usize",
        "f32", "f64", "bool", "char", "str", "String",
    }
)  # fmt: skip
TEXT_TYPES: frozenset[str] = frozenset({"String", "str", "Cow<str>", "Box<str>", "Arc<str>"})
STRUCT_SHAPES: frozenset[str] = frozenset({"struct", "tuple_struct"})


def _strip_refs(type_text: str) -> str:
    text = type_text.strip()
    while text.startswith("&"):
        text = text[1:].lstrip()
        if text.startswith("'"):
            text = text.split(None, 1)[1] if " " in text else ""
        if text.startswith("mut "):
            text = text[4:]
    return text.replace("'static ", "").replace(" ", "")


def is_primitive(type_text: str) -> bool:
    return base_name(_strip_refs(type_text)) in PRIMITIVE_TYPES


def is_text(type_text: str) -> bool:
    stripped = _strip_refs(type_text)
    if stripped.rsplit("::", 1)[-1] in TEXT_TYPES:
        return True
    # Cow<'a, str> and friends
    return base_name(stripped) in {"Cow", "Box", "Arc", "Rc"} and stripped.endswith("str>")


def _entries(fact: SourceFact, attr: str) -> tuple[Mapping[str, Any], ...]:
    value = fact.get(attr) or ()
    return tuple(entry for entry in value if isinstance(entry, Mapping))


def _matches_any(name: str, patterns: Iterable[str]) -> bool:
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns)


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def primitive_wrapper_without_constructor(
    fact: SourceFact, scope: Scope, model: FactModel, params: Mapping[str, Any]
) -> Violation | None:
    """TYPE-001: newtype around one primitive with no validating constructor."""
    if fact.get("shape") not in STRUCT_SHAPES:
        return None
    fields = _entries(fact, "fields")
    if len(fields) != 1:
        return None
    field_type = str(fields[0].get("type", ""))
    if not is_primitive(field_type):
        return None

    type_name = fact.name or ""
    for ctor in model.constructors_of(type_name):
        if ctor.get("visibility", "private") in ("private", "pub(self)"):
            continue
        returns = base_name(str(ctor.get("returns") or ""))
        if ctor.get("validates") or returns in ("Result", "Option"):
            return None
    return Violation({"type": type_name, "field_type": field_type})


def public_mutable_field(
    fact: SourceFact, scope: Scope, model: FactModel, params: Mapping[str, Any]
) -> Violation | None:
    """VIS-001: public aggregate exposing a publicly writable field."""
    if fact.get("shape") not in STRUCT_SHAPES:
        return None
    exposed = [
        str(entry.get("name", idx))
        for idx, entry in enumerate(_entries(fact, "fields"))
        if entry.get("visibility") == "pub"
    ]
    if not exposed:
        return None
    return Violation({"type": fact.name or "", "fields": ", ".join(exposed)})


def stringly_error_variant(
    fact: SourceFact, scope: Scope, model: FactModel, params: Mapping[str, Any]
) -> Violation | None:
    """ERR-001: error variant (or error struct) carrying only free text."""
    if fact.kind == "enum_variant":
        owner = str(fact.get("owner") or "")
        if not owner or not model.is_error_type(owner):
            return None
        subject = f"{base_name(owner)}::{fact.name}"
    else:
        if fact.get("shape") not in STRUCT_SHAPES or not model.is_error_type(fact.name or ""):
            return None
        subject = fact.name or ""

    fields = _entries(fact, "fields")
    if not fields:
        return None
    if all(is_text(str(entry.get("type", ""))) for entry in fields):
        return Violation({"subject": subject})
    return None


def panic_outside_tests(
    fact: SourceFact, scope: Scope, model: FactModel, params: Mapping[str, Any]
) -> Violation | None:
    """PANIC-001: value-unwrapping or failure-asserting operation."""
    if fact.kind == "method_call":
        method = str(fact.get("method", ""))
        if method in params.get("methods", ()):
            return Violation({"operation": f".{method}()"})
        return None
    name = str(fact.get("name", "")).rstrip("!")
    if name in params.get("macros", ()):
        return Violation({"operation": f"{name}!"})
    return None


def stringly_identifier(
    fact: SourceFact, scope: Scope, model: FactModel, params: Mapping[str, Any]
) -> Violation | None:
    """STR-001: identifier of domain significance held as bare text."""
    patterns = tuple(params.get("identifier_patterns", ()))
    attr = "fields" if fact.kind == "type_decl" else "params"
    offenders = [
        str(entry.get("name"))
        for entry in _entries(fact, attr)
        if entry.get("name") is not None
        and _matches_any(str(entry.get("name")), patterns)
        and is_text(str(entry.get("type", "")))
    ]
    if not offenders:
        return None
    return Violation({"owner": fact.name or "", "identifiers": ", ".join(offenders)})


def single_impl_dyn(
    fact: SourceFact, scope: Scope, model: FactModel, params: Mapping[str, Any]
) -> Violation | None:
    """DYN-001: dynamic dispatch over a trait with a single implementation."""
    trait = base_name(str(fact.get("trait", "")))
    if not trait or trait in params.get("ignore_traits", ()):
        return None
    decl = model.trait_named(trait)
    if decl is None or decl.get("extension_point"):
        return None
    impls = model.impls_of(trait)
    if len(impls) != 1:
        return None
    return Violation({"trait": trait, "impl_count": 1})


def unjustified_buffer_clone(
    fact: SourceFact, scope: Scope, model: FactModel, params: Mapping[str, Any]
) -> Violation | None:
    """CLONE-001: clone of a large owned buffer without justification."""
    if fact.get("method") != "clone" or fact.get("justification"):
        return None
    receiver = str(fact.get("receiver_type") or "")
    buffer = base_name(_strip_refs(receiver)) if receiver else ""
    if buffer not in params.get("buffer_types", ()):
        return None
    return Violation({"receiver_type": receiver})


def lock_policy_mismatch(
    fact: SourceFact, scope: Scope, model: FactModel, params: Mapping[str, Any]
) -> Violation | None:
    """CONC-001: lock primitive inconsistent with its declared contention profile."""
    profile = fact.get("access_profile")
    if profile is None:
        return None
    expected = fact.get("policy") or params.get("policy", {}).get(str(profile))
    if expected is None:
        return None
    lock = base_name(str(fact.get("lock", "")))
    if lock == base_name(str(expected)):
        return None
    return Violation({"lock": lock, "expected": base_name(str(expected)), "profile": profile})


def async_in_domain(
    fact: SourceFact, scope: Scope, model: FactModel, params: Mapping[str, Any]
) -> Violation | None:
    """ASYNC-001: suspension boundary inside domain logic."""
    if not fact.get("is_async"):
        return None
    boundary = fact.get("boundary")
    if boundary is not None and boundary in params.get("boundaries", ()):
        return None
    return Violation({"function": fact.name or ""})


def console_output(
    fact: SourceFact, scope: Scope, model: FactModel, params: Mapping[str, Any]
) -> Violation | None:
    """LOG-001: direct console output instead of structured logging."""
    name = str(fact.get("name", "")).rstrip("!")
    if name in params.get("macros", ()):
        return Violation({"macro": f"{name}!"})
    return None


BUILTIN_PREDICATES: Mapping[str, Predicate] = MappingProxyType(
    {
        "TYPE-001": primitive_wrapper_without_constructor,
        "VIS-001": public_mutable_field,
        "ERR-001": stringly_error_variant,
        "PANIC-001": panic_outside_tests,
        "STR-001": stringly_identifier,
        "DYN-001": single_impl_dyn,
        "CLONE-001": unjustified_buffer_clone,
        "CONC-001": lock_policy_mismatch,
        "ASYNC-001": async_in_domain,
        "LOG-001": console_output,
    }
)
