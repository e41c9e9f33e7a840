"""Celery tasks for the lesson scheduler."""
