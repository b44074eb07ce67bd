from __future__ import annotations

import asyncio
import base64
from typing import Any, Optional, Union

from sensus.adapters.media_loader import MediaLoader
from sensus.core.classifier import ClassifierGateway
from sensus.core.config import ClassifierConfig, RetryPolicy
from sensus.core.errors import ClassifierError, ClassifierOverloaded
from sensus.core.fingerprint import content_digest
from sensus.core.models import ContentType, Submission
from sensus.core.ports import ClassifierReply, ClassifierRequest, MediaLoaderPort


class FakeCache:
    def __init__(self, entries: Optional[dict[str, tuple[str, ...]]] = None) -> None:
        self.entries = dict(entries or {})
        self.puts: list[tuple[str, tuple[str, ...]]] = []

    def get(self, digest: str) -> Optional[tuple[str, ...]]:
        return self.entries.get(digest)

    def put(self, digest: str, vector: tuple[str, ...]) -> None:
        self.puts.append((digest, vector))
        self.entries[digest] = vector


class FakeAuditLog:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def record(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    @property
    def kinds(self) -> list[str]:
        return [event for event, _ in self.events]


class FakeClient:
    def __init__(self, replies: list[Union[str, Exception]]) -> None:
        self._replies = list(replies)
        self.requests: list[ClassifierRequest] = []

    def endpoint(self, model: str) -> str:
        return f"https://gemini.test/models/{model}:generateContent"

    async def generate(self, request: ClassifierRequest) -> ClassifierReply:
        self.requests.append(request)
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ClassifierReply(text=reply, response_bytes=len(reply))


class FakeMediaLoader:
    def __init__(self, data: bytes = b"\xff\xd8jpeg-bytes", error: Optional[Exception] = None) -> None:
        self._data = data
        self._error = error
        self.loaded: list[str] = []

    async def load(self, reference: str) -> bytes:
        self.loaded.append(reference)
        if self._error:
            raise self._error
        return self._data


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _gateway(
    client: FakeClient,
    *,
    cache: Optional[FakeCache] = None,
    audit: Optional[FakeAuditLog] = None,
    media: Optional[MediaLoaderPort] = None,
    retry: RetryPolicy = RetryPolicy(max_retries=0),
    config: ClassifierConfig = ClassifierConfig(text_model="text-model", vision_model="vision-model"),
    sleep: Optional[RecordingSleep] = None,
) -> ClassifierGateway:
    return ClassifierGateway(
        client=client,
        cache=cache if cache is not None else FakeCache(),
        audit_log=audit if audit is not None else FakeAuditLog(),
        media_loader=media or FakeMediaLoader(),
        retry_policy=retry,
        config_provider=lambda: config,
        sleep=sleep or RecordingSleep(),
    )


def _text(content: str = "I feel hopeful today") -> Submission:
    return Submission(content_type=ContentType.TEXT, content=content)


def test_text_success_is_normalized_cached_and_audited() -> None:
    client = FakeClient(["Hopeful, Optimistic , bright"])
    cache = FakeCache()
    audit = FakeAuditLog()
    gateway = _gateway(client, cache=cache, audit=audit)

    vector = asyncio.run(gateway.classify(_text()))

    assert vector == ("hopeful", "optimistic", "bright")
    assert cache.puts == [(content_digest("I feel hopeful today"), vector)]
    assert audit.kinds == ["request", "response"]
    request_fields = audit.events[0][1]
    assert request_fields["url"] == "https://gemini.test/models/text-model:generateContent"
    assert request_fields["contentType"] == "text"
    assert request_fields["payloadBytes"] > 0
    assert request_fields["attempt"] == 0

    request = client.requests[0]
    assert request.model == "text-model"
    assert '"I feel hopeful today"' in request.parts[0]["text"]
    assert "comma-separated" in request.parts[0]["text"]


def test_cache_hit_skips_external_call() -> None:
    submission = _text()
    cache = FakeCache({content_digest(submission.content): ("hopeful",)})
    client = FakeClient([])
    audit = FakeAuditLog()

    vector = asyncio.run(_gateway(client, cache=cache, audit=audit).classify(submission))

    assert vector == ("hopeful",)
    assert client.requests == []
    assert audit.events == []
    assert cache.puts == []


def test_kill_switch_returns_neutral_without_side_effects() -> None:
    client = FakeClient(["hopeful"])
    cache = FakeCache()
    audit = FakeAuditLog()
    gateway = _gateway(client, cache=cache, audit=audit, config=ClassifierConfig(disabled=True))

    vector = asyncio.run(gateway.classify(_text()))

    assert vector == ("neutral",)
    assert client.requests == []
    assert audit.events == []
    assert cache.puts == []


def test_kill_switch_serves_cached_vector_identically_every_time() -> None:
    submission = _text()
    cache = FakeCache({content_digest(submission.content): ("hopeful", "calm")})
    client = FakeClient([])
    gateway = _gateway(client, cache=cache, config=ClassifierConfig(disabled=True))

    first = asyncio.run(gateway.classify(submission))
    second = asyncio.run(gateway.classify(_text()))

    assert first == second == ("hopeful", "calm")
    assert client.requests == []


def test_flags_are_read_on_every_call() -> None:
    flags = {"disabled": True}
    client = FakeClient(["hopeful"])
    gateway = ClassifierGateway(
        client=client,
        cache=FakeCache(),
        audit_log=FakeAuditLog(),
        media_loader=FakeMediaLoader(),
        retry_policy=RetryPolicy(),
        config_provider=lambda: ClassifierConfig(disabled=flags["disabled"]),
        sleep=RecordingSleep(),
    )

    assert asyncio.run(gateway.classify(_text())) == ("neutral",)
    flags["disabled"] = False
    assert asyncio.run(gateway.classify(_text())) == ("hopeful",)
    assert len(client.requests) == 1


def test_audio_is_a_neutral_stub() -> None:
    client = FakeClient([])
    audit = FakeAuditLog()
    submission = Submission(content_type=ContentType.AUDIO, content="https://storage.test/voice.m4a")

    vector = asyncio.run(_gateway(client, audit=audit).classify(submission))

    assert vector == ("neutral",)
    assert client.requests == []
    assert audit.events == []


def test_image_is_sent_inline_to_vision_model() -> None:
    client = FakeClient(["serene, calm"])
    media = FakeMediaLoader(data=b"jpeg!")
    submission = Submission(content_type=ContentType.IMAGE, content="https://storage.test/sea.jpg")

    vector = asyncio.run(_gateway(client, media=media).classify(submission))

    assert vector == ("serene", "calm")
    assert media.loaded == ["https://storage.test/sea.jpg"]
    request = client.requests[0]
    assert request.model == "vision-model"
    assert request.content_type is ContentType.IMAGE
    assert "image" in request.parts[0]["text"]
    inline = request.parts[1]["inline_data"]
    assert inline["mime_type"] == "image/jpeg"
    assert base64.b64decode(inline["data"]) == b"jpeg!"


def test_unloadable_image_returns_error_sentinel() -> None:
    client = FakeClient([])
    audit = FakeAuditLog()
    media = FakeMediaLoader(error=ClassifierError("Could not read media /tmp/missing.jpg"))
    submission = Submission(content_type=ContentType.IMAGE, content="/tmp/missing.jpg")

    vector = asyncio.run(_gateway(client, audit=audit, media=media).classify(submission))

    assert vector == ("error", "Could not read media /tmp/missing.jpg")
    assert client.requests == []
    assert audit.kinds == ["error"]


def test_unreadable_local_image_returns_error_sentinel() -> None:
    client = FakeClient([])
    audit = FakeAuditLog()
    submission = Submission(content_type=ContentType.IMAGE, content="uploads/a\x00b.jpg")

    async def run() -> tuple[str, ...]:
        loader = MediaLoader()
        try:
            return await _gateway(client, audit=audit, media=loader).classify(submission)
        finally:
            await loader.aclose()

    vector = asyncio.run(run())

    assert vector[0] == "error"
    assert vector[1].startswith("Could not read media")
    assert client.requests == []
    assert audit.kinds == ["error"]


def test_overload_is_retried_with_growing_delays_then_sentinel() -> None:
    client = FakeClient([ClassifierOverloaded()] * 3)
    sleep = RecordingSleep()
    audit = FakeAuditLog()
    cache = FakeCache()
    gateway = _gateway(
        client,
        cache=cache,
        audit=audit,
        retry=RetryPolicy(max_retries=2, base_delay=5, multiplier=3),
        sleep=sleep,
    )

    vector = asyncio.run(gateway.classify(_text()))

    assert vector == ("overloaded",)
    assert len(client.requests) == 3
    assert sleep.delays == [5, 15]
    assert audit.kinds == ["request", "error"] * 3
    assert [fields["attempt"] for _, fields in audit.events] == [0, 0, 1, 1, 2, 2]
    assert cache.puts == []


def test_zero_retry_budget_returns_overloaded_immediately() -> None:
    client = FakeClient([ClassifierOverloaded()])
    sleep = RecordingSleep()

    vector = asyncio.run(_gateway(client, retry=RetryPolicy(max_retries=0), sleep=sleep).classify(_text()))

    assert vector == ("overloaded",)
    assert len(client.requests) == 1
    assert sleep.delays == []


def test_overload_then_success() -> None:
    client = FakeClient([ClassifierOverloaded(), "joyful"])
    sleep = RecordingSleep()

    vector = asyncio.run(_gateway(client, retry=RetryPolicy(max_retries=1), sleep=sleep).classify(_text()))

    assert vector == ("joyful",)
    assert sleep.delays == [5]


def test_hard_errors_are_not_retried() -> None:
    client = FakeClient([ClassifierError("API key not valid")])
    sleep = RecordingSleep()
    audit = FakeAuditLog()
    cache = FakeCache()

    vector = asyncio.run(
        _gateway(client, cache=cache, audit=audit, retry=RetryPolicy(max_retries=3), sleep=sleep).classify(_text())
    )

    assert vector == ("error", "API key not valid")
    assert len(client.requests) == 1
    assert sleep.delays == []
    assert audit.kinds == ["request", "error"]
    assert audit.events[1][1]["message"] == "API key not valid"
    assert cache.puts == []


def test_empty_reply_is_an_error_and_not_cached() -> None:
    client = FakeClient([" , "])
    cache = FakeCache()

    vector = asyncio.run(_gateway(client, cache=cache).classify(_text()))

    assert vector[0] == "error"
    assert cache.puts == []


def test_gateway_does_not_mutate_submission() -> None:
    submission = _text()

    asyncio.run(_gateway(FakeClient(["hopeful"])).classify(submission))

    assert submission.emotional_vector == ()
