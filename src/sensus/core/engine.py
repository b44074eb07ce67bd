"""Core submit-and-match pipeline.

This module is integration-agnostic. It only relies on ports for admission,
classification and storage, so HTTP or CLI front ends can drive it unchanged.

Submit enforces a strict order:
1) Per-origin rate limit
2) Per-session cooldown
3) Input validation
4) Classification (always finished before any pairing attempt)
5) Atomic claim of a waiting counterpart, or enqueue as waiting
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from sensus.core.config import SessionThrottleConfig
from sensus.core.errors import (
    InvalidSubmission,
    RateLimitExceeded,
    SessionThrottled,
    SubmissionNotFound,
)
from sensus.core.fingerprint import shared_keywords
from sensus.core.models import (
    Counterpart,
    MatchedResult,
    Submission,
    SubmissionStatus,
    SubmitRequest,
    SubmitResult,
    WaitingResult,
    utcnow,
)
from sensus.core.ports import ClassifierPort, PairingStorePort, RateLimiterPort

LOGGER = logging.getLogger(__name__)


def new_session_token() -> str:
    return secrets.token_hex(16)


class PairingEngine:
    """Orchestrates admission, classification and pairing of submissions."""

    def __init__(
        self,
        rate_limiter: RateLimiterPort,
        classifier: ClassifierPort,
        store: PairingStorePort,
        throttle: SessionThrottleConfig = SessionThrottleConfig(),
        clock: Callable[[], datetime] = utcnow,
        token_factory: Callable[[], str] = new_session_token,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._classifier = classifier
        self._store = store
        self._throttle = throttle
        self._clock = clock
        self._token_factory = token_factory

    async def submit(self, request: SubmitRequest) -> SubmitResult:
        """Classify a new submission and pair it, or leave it waiting."""

        if not self._rate_limiter.admit(request.origin):
            raise RateLimitExceeded(request.origin, self._rate_limiter.retry_after(request.origin))

        if request.session_token:
            self._check_session(request.session_token)

        if request.content_type is None or not request.content:
            raise InvalidSubmission("No content submitted.")

        session_token = request.session_token or self._token_factory()
        submission = Submission(
            content_type=request.content_type,
            content=request.content,
            session_token=session_token,
            created_at=self._clock(),
        )

        vector = await self._classifier.classify(submission)
        submission = submission.with_vector(vector)

        stored, counterpart = self._store.pair_or_enqueue(submission)
        if counterpart is not None:
            LOGGER.info(
                "Submission %s paired with %s on %s",
                stored.id,
                counterpart.id,
                ", ".join(shared_keywords(stored.emotional_vector, counterpart.emotional_vector)),
            )
            return MatchedResult(
                submission_id=stored.id,
                counterpart=Counterpart.of(counterpart),
                session_token=session_token,
                submitted_at=stored.created_at,
            )

        LOGGER.info("Submission %s is waiting (%s)", stored.id, ", ".join(stored.emotional_vector))
        return WaitingResult(
            submission_id=stored.id,
            session_token=session_token,
            submitted_at=stored.created_at,
        )

    def check_status(self, submission_id: str) -> SubmitResult:
        """Report whether a submission has been paired. Read-only, safe to poll."""

        submission = self._store.get(submission_id)
        if submission is None:
            raise SubmissionNotFound(submission_id)

        if submission.status is SubmissionStatus.MATCHED and submission.matched_with:
            counterpart = self._store.get(submission.matched_with)
            # A counterpart claimed by find_and_pair may not be saved yet.
            if counterpart is not None:
                return MatchedResult(submission_id=submission.id, counterpart=Counterpart.of(counterpart))

        return WaitingResult(submission_id=submission.id)

    def _check_session(self, session_token: str) -> None:
        cooldown = self._throttle.cooldown_seconds
        if cooldown <= 0:
            return
        last: Optional[Submission] = self._store.latest_for_session(session_token)
        if last is None:
            return
        if last.created_at > self._clock() - timedelta(seconds=cooldown):
            raise SessionThrottled(last.id, last.created_at)
