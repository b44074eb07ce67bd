"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, caching, audit and classifier
adapters so that the core can be reused with different backends.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from sensus.core.models import ContentType, Submission


@dataclass(frozen=True)
class ClassifierRequest:
    """One content-type specific request to the external classifier."""

    content_type: ContentType
    model: str
    parts: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class ClassifierReply:
    """Raw classifier output plus sizing metadata for the audit log."""

    text: str
    response_bytes: int = 0


class FeatureCachePort(Protocol):
    """Content-addressed store of previously computed emotional vectors."""

    def get(self, digest: str) -> Optional[tuple[str, ...]]:
        ...

    def put(self, digest: str, vector: tuple[str, ...]) -> None:
        ...


class AuditLogPort(Protocol):
    """Append-only record of classifier traffic. ``record`` never raises."""

    def record(self, event: str, **fields: Any) -> None:
        ...


class ClassifierClientPort(Protocol):
    """Transport to the external emotion classifier."""

    def endpoint(self, model: str) -> str:
        ...

    async def generate(self, request: ClassifierRequest) -> ClassifierReply:
        ...


class MediaLoaderPort(Protocol):
    """Fetch the bytes behind a stored media reference."""

    async def load(self, reference: str) -> bytes:
        ...


class PairingStorePort(Protocol):
    """Durable submission collection with an atomic claim primitive."""

    def find_and_pair(self, submission: Submission) -> Optional[Submission]:
        ...

    def pair_or_enqueue(self, submission: Submission) -> tuple[Submission, Optional[Submission]]:
        ...

    def save(self, submission: Submission) -> None:
        ...

    def get(self, submission_id: str) -> Optional[Submission]:
        ...

    def latest_for_session(self, session_token: str) -> Optional[Submission]:
        ...


class RateLimiterPort(Protocol):
    def admit(self, origin: str) -> bool:
        ...

    def retry_after(self, origin: str) -> float:
        ...


class ClassifierPort(Protocol):
    async def classify(self, submission: Submission) -> tuple[str, ...]:
        ...
