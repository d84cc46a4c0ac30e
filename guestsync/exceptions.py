"""
Exception hierarchy for guestsync runs.

Input rejections, ambiguous identities and shared-email conflicts are
ordinary outcomes and never raise; they surface as counters and review
items. Only collaborator failures and broken internal invariants raise.
"""

from __future__ import annotations


class GuestSyncError(Exception):
    """Base class for every guestsync error."""


class ConfigurationError(GuestSyncError):
    """Raised when runtime settings are unusable."""


class CollaboratorError(GuestSyncError):
    """
    An external collaborator call failed.

    The run is recorded as failed and the checkpoint is left untouched so the
    next run re-extracts the same window.
    """

    stage = "collaborator"

    def __init__(self, message: str, *, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class ExtractionError(CollaboratorError):
    stage = "extract"


class CRMReadError(CollaboratorError):
    stage = "crm-read"


class ApplyError(CollaboratorError):
    stage = "apply"


class InvariantViolation(GuestSyncError):
    """A logic invariant was broken; the run must stop."""


class StayKeyCollision(InvariantViolation):
    """The CRM stay map returned a stay under a key that does not address it."""

    def __init__(self, key, stay_key):
        super().__init__(f"Stay returned under key {key!r} is addressed by {stay_key!r}.")
        self.key = key
        self.stay_key = stay_key


__all__ = [
    "ApplyError",
    "CRMReadError",
    "CollaboratorError",
    "ConfigurationError",
    "ExtractionError",
    "GuestSyncError",
    "InvariantViolation",
    "StayKeyCollision",
]
