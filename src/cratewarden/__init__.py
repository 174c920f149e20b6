"""Cratewarden - conformance engine for a codified Rust rulebook."""

__version__ = "0.1.0"
