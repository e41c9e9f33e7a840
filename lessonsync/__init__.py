"""Lesson scheduling and calendar reconciliation core."""

__version__ = "0.1.0"
