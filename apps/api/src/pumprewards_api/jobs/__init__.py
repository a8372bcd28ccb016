"""Recurring job entrypoints for the points engine."""

__all__ = [
    "points",
]
