"""Mindsight metrics agent."""

__version__ = "0.3.0"
