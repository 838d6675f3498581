"""Exception hierarchy for metric probes."""

from __future__ import annotations


class ProbeError(Exception):
    """Base exception for all probe errors."""


class ProbeUnavailableError(ProbeError):
    """The subsystem behind a probe is not wired into this process."""


class ProbeTimeoutError(ProbeError):
    """A probe exceeded its time budget."""
