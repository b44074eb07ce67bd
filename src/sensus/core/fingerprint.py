"""Content digests and keyword normalization helpers (core domain)."""

from __future__ import annotations

import hashlib


def content_digest(content: str) -> str:
    """Return the cache key for a submission's content.

    The digest covers the raw content bytes with no normalization, so two
    submissions share a key only when their content is byte-identical.
    """

    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def normalize_keywords(summary: str) -> tuple[str, ...]:
    """Split a comma-separated classifier summary into lowercase keywords.

    Order is preserved. Empty items (trailing commas, blank lines) are
    dropped so the result can be matched safely.
    """

    keywords = (part.strip().lower() for part in summary.split(","))
    return tuple(keyword for keyword in keywords if keyword)


def shared_keywords(left: tuple[str, ...] | list[str], right: tuple[str, ...] | list[str]) -> list[str]:
    """Keywords present in both vectors. Order-independent and case-sensitive."""

    return sorted(set(left) & set(right))
