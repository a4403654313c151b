"""Shared bill ledger with optimistic concurrency and conflict resolution."""

__version__ = "0.1.0"
