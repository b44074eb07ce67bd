"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any storage- or transport-specific types.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

# Sentinel vectors produced when no real classification is available. They are
# ordinary vectors as far as matching is concerned.
NEUTRAL_VECTOR = ("neutral",)
OVERLOADED_VECTOR = ("overloaded",)
ERROR_KEYWORD = "error"


def error_vector(detail: str) -> tuple[str, ...]:
    """Return the sentinel pair used for hard classification failures."""

    return (ERROR_KEYWORD, detail)


class ContentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"


class SubmissionStatus(str, Enum):
    UNMATCHED = "unmatched"
    MATCHED = "matched"


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Submission:
    """A single anonymous submission and its pairing state.

    ``content`` is raw text or a reference to stored media. The core never
    interprets it beyond deriving a cache key (and loading image bytes for
    the classifier request).
    """

    content_type: ContentType
    content: str
    session_token: Optional[str] = None
    emotional_vector: tuple[str, ...] = ()
    status: SubmissionStatus = SubmissionStatus.UNMATCHED
    matched_with: Optional[str] = None
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=utcnow)

    def with_vector(self, vector: tuple[str, ...] | list[str]) -> "Submission":
        """Return a copy carrying the classification result.

        The vector is assigned exactly once, before the submission is offered
        for matching.
        """

        if self.emotional_vector:
            raise ValueError(f"Submission {self.id} already has an emotional vector")
        vector = tuple(vector)
        if not vector:
            raise ValueError("Emotional vector must not be empty")
        return replace(self, emotional_vector=vector)

    def paired_with(self, other_id: str) -> "Submission":
        if other_id == self.id:
            raise ValueError("A submission cannot be matched with itself")
        if self.status is SubmissionStatus.MATCHED:
            raise ValueError(f"Submission {self.id} is already matched")
        return replace(self, status=SubmissionStatus.MATCHED, matched_with=other_id)


@dataclass(frozen=True)
class Counterpart:
    """What a submitter gets to see of the submission they were paired with."""

    content_type: ContentType
    content: str

    @classmethod
    def of(cls, submission: Submission) -> "Counterpart":
        return cls(content_type=submission.content_type, content=submission.content)


@dataclass(frozen=True)
class MatchedResult:
    submission_id: str
    counterpart: Counterpart
    session_token: Optional[str] = None
    submitted_at: Optional[datetime] = None
    status: str = field(default=SubmissionStatus.MATCHED.value, init=False)


@dataclass(frozen=True)
class WaitingResult:
    submission_id: str
    session_token: Optional[str] = None
    submitted_at: Optional[datetime] = None
    status: str = field(default="waiting", init=False)


SubmitResult = Union[MatchedResult, WaitingResult]


@dataclass(frozen=True)
class SubmitRequest:
    """Input handed to the engine by the upload collaborator.

    ``content`` is raw text for text submissions, or the storage URL/path for
    uploaded media.
    """

    content_type: Optional[ContentType]
    content: Optional[str]
    session_token: Optional[str] = None
    origin: str = "unknown"
