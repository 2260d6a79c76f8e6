"""Persisted shell state."""

from site_shell.store.records import RecordStore

__all__ = ["RecordStore"]
