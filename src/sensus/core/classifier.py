"""Classifier gateway (core domain).

Turns a submission into an emotional vector with a strict order of checks:
1) Kill switch: cached vector or the neutral sentinel, no external traffic
2) Feature cache lookup by content digest
3) Dispatch by content type to a request builder (audio is a stub)
4) External call with bounded retry on overload, audited before and after
5) Normalize the reply into keywords and cache it

Classification failures never raise; they come back as sentinel vectors that
take part in matching like any other vector.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Awaitable, Callable, Optional

from sensus.core.config import ClassifierConfig, RetryPolicy
from sensus.core.errors import ClassifierError, ClassifierOverloaded
from sensus.core.fingerprint import content_digest, normalize_keywords
from sensus.core.models import (
    NEUTRAL_VECTOR,
    OVERLOADED_VECTOR,
    ContentType,
    Submission,
    error_vector,
)
from sensus.core.ports import (
    AuditLogPort,
    ClassifierClientPort,
    ClassifierReply,
    ClassifierRequest,
    FeatureCachePort,
    MediaLoaderPort,
)
from sensus.core.retry import call_with_retry

LOGGER = logging.getLogger(__name__)

KEYWORD_INSTRUCTION = (
    "provide a concise emotional summary as a comma-separated list of 5-10 keywords "
    "(e.g., hopeful, melancholic, serene, chaotic, joyful)"
)


def request_size(request: ClassifierRequest) -> int:
    return len(json.dumps({"contents": [{"parts": request.parts}]}).encode("utf-8"))


class TextRequestBuilder:
    async def build(self, submission: Submission, config: ClassifierConfig) -> ClassifierRequest:
        prompt = f'Analyze the following text and {KEYWORD_INSTRUCTION}: "{submission.content}"'
        return ClassifierRequest(
            content_type=ContentType.TEXT,
            model=config.text_model,
            parts=[{"text": prompt}],
        )


class ImageRequestBuilder:
    """Sends the instruction plus the image inline, base64 encoded."""

    def __init__(self, media_loader: MediaLoaderPort, mime_type: str = "image/jpeg") -> None:
        self._media_loader = media_loader
        self._mime_type = mime_type

    async def build(self, submission: Submission, config: ClassifierConfig) -> ClassifierRequest:
        image_bytes = await self._media_loader.load(submission.content)
        return ClassifierRequest(
            content_type=ContentType.IMAGE,
            model=config.vision_model,
            parts=[
                {"text": f"Analyze the following image and {KEYWORD_INSTRUCTION}."},
                {
                    "inline_data": {
                        "mime_type": self._mime_type,
                        "data": base64.b64encode(image_bytes).decode("ascii"),
                    }
                },
            ],
        )


class AudioRequestBuilder:
    """Audio analysis is not implemented yet; callers get the neutral vector."""

    async def build(self, submission: Submission, config: ClassifierConfig) -> Optional[ClassifierRequest]:
        return None


def _is_overloaded(exc: BaseException) -> bool:
    return isinstance(exc, ClassifierOverloaded)


class ClassifierGateway:
    """Wraps the external classifier with kill switch, cache, retry and audit."""

    def __init__(
        self,
        client: ClassifierClientPort,
        cache: FeatureCachePort,
        audit_log: AuditLogPort,
        media_loader: MediaLoaderPort,
        retry_policy: RetryPolicy,
        config_provider: Callable[[], ClassifierConfig],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._cache = cache
        self._audit = audit_log
        self._retry_policy = retry_policy
        self._config_provider = config_provider
        self._sleep = sleep
        self._builders = {
            ContentType.TEXT: TextRequestBuilder(),
            ContentType.IMAGE: ImageRequestBuilder(media_loader),
            ContentType.AUDIO: AudioRequestBuilder(),
        }

    async def classify(self, submission: Submission) -> tuple[str, ...]:
        """Return the emotional vector for ``submission`` without mutating it."""

        # Flags are read per call so the kill switch and models can change live.
        config = self._config_provider()
        digest = content_digest(submission.content)

        if config.disabled:
            cached = self._cache.get(digest)
            LOGGER.info("Classifier disabled; returning %s vector", "cached" if cached else "neutral")
            return cached or NEUTRAL_VECTOR

        cached = self._cache.get(digest)
        if cached:
            return cached

        builder = self._builders[submission.content_type]
        try:
            request = await builder.build(submission, config)
        except ClassifierError as exc:
            LOGGER.error("Could not build %s request: %s", submission.content_type.value, exc)
            self._audit.record("error", contentType=submission.content_type.value, message=str(exc), attempt=0)
            return error_vector(str(exc))

        if request is None:
            LOGGER.info("%s analysis not implemented; returning neutral vector", submission.content_type.value)
            return NEUTRAL_VECTOR

        try:
            reply = await call_with_retry(
                lambda attempt: self._attempt(request, attempt),
                self._retry_policy,
                is_retryable=_is_overloaded,
                sleep=self._sleep,
            )
        except ClassifierOverloaded:
            return OVERLOADED_VECTOR
        except ClassifierError as exc:
            return error_vector(str(exc))

        vector = normalize_keywords(reply.text)
        if not vector:
            return error_vector("Classifier returned no keywords")
        self._cache.put(digest, vector)
        return vector

    async def _attempt(self, request: ClassifierRequest, attempt: int) -> ClassifierReply:
        url = self._client.endpoint(request.model)
        content_type = request.content_type.value
        self._audit.record(
            "request",
            url=url,
            contentType=content_type,
            payloadBytes=request_size(request),
            attempt=attempt,
        )
        try:
            reply = await self._client.generate(request)
        except ClassifierError as exc:
            LOGGER.error("Classifier error on attempt %s: %s", attempt + 1, exc)
            self._audit.record("error", url=url, contentType=content_type, message=str(exc), attempt=attempt)
            raise
        self._audit.record(
            "response",
            url=url,
            contentType=content_type,
            responseBytes=reply.response_bytes,
            attempt=attempt,
        )
        return reply

