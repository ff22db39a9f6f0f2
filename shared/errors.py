"""
Error types shared by the devlog services.

Storage failures are not wrapped: SQLAlchemy exceptions propagate as-is and
are handled by the sync orchestrator as per-repository failures.
"""

from typing import Optional


class DevlogError(Exception):
    """Base class for devlog bot errors."""


class SetupError(DevlogError):
    """A required credential is missing or a client cannot be constructed."""


class FetchError(DevlogError):
    """The commit history provider failed or returned an unusable payload."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SummaryError(DevlogError):
    """The language model request failed."""


class LockTimeoutError(DevlogError):
    """A sync guard could not be acquired in time."""


__all__ = ["DevlogError", "SetupError", "FetchError", "SummaryError", "LockTimeoutError"]
