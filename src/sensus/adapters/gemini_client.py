"""Gemini generateContent adapter.

Uses httpx's async client so a slow classifier only suspends the calling
task. The API key travels in a header, never in the URL, so endpoints can be
written to the audit log as-is.
"""

from __future__ import annotations

from typing import Optional

import httpx

from sensus.core.errors import ClassifierError, ClassifierOverloaded
from sensus.core.ports import ClassifierReply, ClassifierRequest

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("message") or f"HTTP {response.status_code}")
    return str(body)


class GeminiClient:
    """ClassifierClientPort implementation for the Gemini REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = GEMINI_BASE_URL,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http_client is None

    def endpoint(self, model: str) -> str:
        return f"{self._base_url}/models/{model}:generateContent"

    async def generate(self, request: ClassifierRequest) -> ClassifierReply:
        """Send one request and return the first candidate's text.

        Raises ClassifierOverloaded for 503s and "overloaded" messages, and
        ClassifierError for everything else (timeouts included).
        """

        body = {"contents": [{"parts": request.parts}]}
        try:
            response = await self._http.post(
                self.endpoint(request.model),
                json=body,
                headers={"x-goog-api-key": self._api_key},
            )
        except httpx.TimeoutException as exc:
            raise ClassifierError(f"Classifier request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ClassifierError(f"Classifier request failed: {exc}") from exc

        if response.is_error:
            message = _error_message(response)
            if response.status_code == 503 or "overloaded" in message.lower():
                raise ClassifierOverloaded(message)
            raise ClassifierError(message)

        try:
            data = response.json()
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ClassifierError(f"Unexpected classifier response: {exc!r}") from exc

        return ClassifierReply(text=str(text), response_bytes=len(response.content))

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
