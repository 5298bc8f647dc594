"""Curtailment mining backend."""

__version__ = "0.1.0"
