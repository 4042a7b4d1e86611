"""Resumable, rate-limit aware wiki crawler that persists pages and links to SQLite."""

__version__ = "0.1.0"
