"""Bulk recipe import pipeline: CSV/JSON files -> validated recipes -> persistence sink."""

__version__ = "0.1.0"
