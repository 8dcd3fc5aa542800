"""Concurrency-bounded video generation queue."""

__version__ = "0.1.0"
