"""Metrics for the scheduling core."""
