"""Trackwise - visitor session tracking and exit analytics backend."""

__version__ = "0.1.0"
