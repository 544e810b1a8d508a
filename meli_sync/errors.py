"""Error taxonomy for notification processing.

Every failure that can abort a notification maps onto one of these types so
that workers can log the aborting stage and move on; the marketplace redelivers
notifications, so nothing here is retried internally.
"""

from __future__ import annotations


class MeliSyncError(Exception):
    """Base class for all service errors."""


class AuthError(MeliSyncError):
    """Credential refresh failed. The current notification must not proceed."""

    def __init__(self, body: str):
        self.body = body
        super().__init__(f"Token refresh failed: {body[:200]}")


class UpstreamError(MeliSyncError):
    """Non-2xx response (or timeout) from an outbound HTTP call.

    ``status_code`` is None when no response was received at all.
    """

    def __init__(self, resource: str, status_code: int | None, body: str = ""):
        self.resource = resource
        self.status_code = status_code
        self.body = body
        status = status_code if status_code is not None else "no-response"
        super().__init__(f"{resource} failed ({status}): {body[:200]}")

    @property
    def is_timeout(self) -> bool:
        return self.status_code is None


class ValidationError(MeliSyncError):
    """Malformed or unsupported notification. Dropped, never retried."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class RetryCancelled(MeliSyncError):
    """A cancellable wait was interrupted by shutdown."""
