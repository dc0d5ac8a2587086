"""Exceptions raised by the engagement tracker."""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for all engagement tracker errors."""


class CampaignNotFound(TrackerError, LookupError):
    """Raised when an operation names a campaign that does not exist."""

    def __init__(self, campaign_id: str) -> None:
        super().__init__(f"Campaign not found: {campaign_id}")
        self.campaign_id = campaign_id


class ReconcileReadError(TrackerError):
    """Raised when source rows could not be read completely.

    No counters are written when this is raised; the previous values stay in
    place and the operation can be retried.
    """


__all__ = ["TrackerError", "CampaignNotFound", "ReconcileReadError"]
