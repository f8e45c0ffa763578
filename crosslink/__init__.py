"""Crosslink - cross-module record linking and link suggestion engine."""

__version__ = "0.1.0"
