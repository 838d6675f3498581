"""Exception hierarchy for alert lifecycle and notification."""

from __future__ import annotations


class AlertError(Exception):
    """Base exception for all alert errors."""


class AlertNotFoundError(AlertError):
    """No alert exists with the given id."""


class AlertTransitionError(AlertError):
    """The requested operator action is not valid from the alert's status."""


class NotificationError(AlertError):
    """An alert notification could not be delivered."""
