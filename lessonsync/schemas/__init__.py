"""Boundary schemas."""
