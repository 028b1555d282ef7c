"""Collectors module for gathering host metrics."""

from .local_collector import LocalCollector

__all__ = [
    "LocalCollector",
]
