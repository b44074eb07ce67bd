"""Exceptions raised by the core and its adapters."""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class SensusError(Exception):
    """Base class for all sensus errors."""


class RateLimitExceeded(SensusError):
    def __init__(self, origin: str, retry_after: float) -> None:
        super().__init__(f"Too many requests from {origin}; retry in {retry_after:.0f}s")
        self.origin = origin
        self.retry_after = retry_after


class SessionThrottled(SensusError):
    """The session already submitted within the cooldown window."""

    def __init__(self, last_submission_id: str, last_submission_time: datetime) -> None:
        super().__init__("You can only submit once every 24 hours.")
        self.last_submission_id = last_submission_id
        self.last_submission_time = last_submission_time


class InvalidSubmission(SensusError):
    pass


class SubmissionNotFound(SensusError):
    def __init__(self, submission_id: str) -> None:
        super().__init__(f"Submission not found: {submission_id}")
        self.submission_id = submission_id


class PairingStoreError(SensusError):
    """The backing store could not complete an operation; nothing was written."""


class ClassifierError(SensusError):
    """Non-retryable failure of the external classifier."""


class ClassifierOverloaded(ClassifierError):
    """Transient overload signal; the only retryable classifier failure."""

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or "The model is overloaded")
