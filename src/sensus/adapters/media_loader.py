"""Load the bytes of stored media for image classification.

Uploads normally live in object storage and are referenced by their public
HTTPS URL; older uploads may still be local file paths.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import httpx

from sensus.core.errors import ClassifierError


class MediaLoader:
    """MediaLoaderPort that downloads URLs and reads local paths."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0) -> None:
        self._http = http_client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._owns_http = http_client is None

    async def load(self, reference: str) -> bytes:
        if reference.startswith(("https://", "http://")):
            try:
                response = await self._http.get(reference)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise ClassifierError(f"Could not download media {reference}: {exc}") from exc
            return response.content

        try:
            return await asyncio.to_thread(Path(reference).read_bytes)
        except (OSError, ValueError) as exc:
            raise ClassifierError(f"Could not read media {reference}: {exc}") from exc

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
