"""Day-stepped crop growth simulation engine."""

__version__ = "0.1.0"
