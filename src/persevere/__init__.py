"""Persevere: goal-to-pull-request job orchestration."""

__version__ = "0.1.0"
