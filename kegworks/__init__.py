# kegworks/__init__.py
"""kegworks - formula build engine for a source-based package manager."""

__version__ = "0.1.0"
