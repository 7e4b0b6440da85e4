"""Presence session tracking and streaming compliance reporting."""

__version__ = "0.1.0"
