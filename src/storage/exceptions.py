"""Exception hierarchy for persistence adapters."""

from __future__ import annotations


class StoreError(Exception):
    """Base exception for all store errors."""


class SnapshotWriteError(StoreError):
    """A metric snapshot could not be persisted."""


class AlertWriteError(StoreError):
    """An alert row could not be inserted or updated."""
