"""tracegraph — investigation graph engine for skip-trace style people and property searches."""

__version__ = "0.1.0"
