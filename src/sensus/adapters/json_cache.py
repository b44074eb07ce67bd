"""On-disk feature cache adapter.

Keeps the digest -> emotional vector mapping in memory and rewrites the whole
JSON file after every put, so a crash loses at most the write in flight.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from typing import Optional

LOGGER = logging.getLogger(__name__)


class JsonFeatureCache:
    """FeatureCachePort backed by a single JSON file. Entries never expire."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[str, ...]] = self._load()

    def _load(self) -> dict[str, tuple[str, ...]]:
        """Read the cache file, degrading to an empty cache on any problem."""

        if not os.path.exists(self._path):
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as handle:
                raw = handle.read()
            data = json.loads(raw) if raw.strip() else {}
            if not isinstance(data, dict):
                raise ValueError("cache root is not an object")
            return {
                str(digest): tuple(str(keyword) for keyword in vector)
                for digest, vector in data.items()
                if isinstance(vector, list) and vector
            }
        except (OSError, ValueError) as exc:
            LOGGER.error("Error loading vector cache %s: %s", self._path, exc)
            return {}

    def _flush(self) -> None:
        directory = os.path.dirname(self._path) or "."
        os.makedirs(directory, exist_ok=True)
        payload = {digest: list(vector) for digest, vector in self._entries.items()}
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".vectors-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self._path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, digest: str) -> Optional[tuple[str, ...]]:
        with self._lock:
            return self._entries.get(digest)

    def put(self, digest: str, vector: tuple[str, ...]) -> None:
        """Store ``vector`` and persist the mapping. Last write wins."""

        with self._lock:
            self._entries[digest] = tuple(vector)
            try:
                self._flush()
            except OSError as exc:
                # The in-memory entry still serves this process.
                LOGGER.error("Error writing vector cache %s: %s", self._path, exc)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
