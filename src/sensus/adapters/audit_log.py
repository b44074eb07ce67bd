"""Append-only JSONL log of classifier traffic, used to reconcile billing."""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any

LOGGER = logging.getLogger(__name__)


class JsonlAuditLog:
    """AuditLogPort writing one JSON object per line.

    Writers are serialized by a lock so concurrent records never interleave.
    Failures are reported through logging and never reach the caller.
    """

    def __init__(self, path: str) -> None:
        self._path = path
        self._lock = threading.Lock()
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
        except OSError as exc:
            LOGGER.error("Failed to ensure audit log dir for %s: %s", path, exc)

    def record(self, event: str, **fields: Any) -> None:
        try:
            entry = {"ts": datetime.now(timezone.utc).isoformat(), "event": event, **fields}
            line = json.dumps(entry, default=str) + "\n"
            with self._lock:
                with open(self._path, "a", encoding="utf-8") as handle:
                    handle.write(line)
        except Exception as exc:
            LOGGER.error("Failed to write audit log entry (%s): %s", event, exc)
