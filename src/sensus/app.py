"""Application entry point: wiring, logging and the sensus CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from art import text2art

from sensus import settings
from sensus.adapters.audit_log import JsonlAuditLog
from sensus.adapters.gemini_client import GeminiClient
from sensus.adapters.json_cache import JsonFeatureCache
from sensus.adapters.media_loader import MediaLoader
from sensus.adapters.sqlite_store import SQLitePairingStore
from sensus.core.classifier import ClassifierGateway
from sensus.core.engine import PairingEngine
from sensus.core.errors import (
    InvalidSubmission,
    PairingStoreError,
    RateLimitExceeded,
    SessionThrottled,
    SubmissionNotFound,
)
from sensus.core.models import ContentType, SubmitRequest
from sensus.core.rate_limiter import SlidingWindowRateLimiter

NAME = "SENSUS"
FONT = "tarty-1"

EXIT_STORE_ERROR = 1
EXIT_INVALID = 2
EXIT_THROTTLED = 3
EXIT_NOT_FOUND = 4


def _print_banner() -> None:
    # Banner goes to stderr so stdout stays machine-readable.
    print(text2art(NAME, font=FONT, space=1), file=sys.stderr)


REDACTED_ENV = ("GEMINI_API_KEY",)
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class _RedactingFormatter(logging.Formatter):
    """Mask secret values in every formatted line, the traceback included."""

    def __init__(self, secrets: list[str], fmt: str = LOG_FORMAT) -> None:
        super().__init__(fmt=fmt, datefmt="%Y-%m-%d %H:%M:%S")
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _redaction_values() -> list[str]:
    return [os.getenv(name, "") for name in REDACTED_ENV]


def configure_logging(config: Optional[dict] = None) -> None:
    """Log to stderr, and to a rotating file when ``logging.file`` is set."""

    config = settings.LOGGING if config is None else config
    level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)
    formatter = _RedactingFormatter(_redaction_values())

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file = config.get("file")
    if log_file:
        path = settings.resolve_path(log_file)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        handlers.append(RotatingFileHandler(path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items() if item is not None}
    return value


def result_to_dict(result: Any) -> dict:
    """Flatten a submit/check result into JSON-friendly primitives."""

    return _jsonable(asdict(result))


class Runtime:
    """One process-wide set of components, explicitly owned and closed."""

    def __init__(self, store: SQLitePairingStore) -> None:
        self.store = store
        self.client = GeminiClient(
            api_key=settings.gemini_api_key(),
            base_url=settings.GEMINI_BASE_URL,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
        )
        self.media_loader = MediaLoader(timeout=settings.REQUEST_TIMEOUT_SECONDS)
        gateway = ClassifierGateway(
            client=self.client,
            cache=JsonFeatureCache(settings.CACHE_PATH),
            audit_log=JsonlAuditLog(settings.AUDIT_LOG_PATH),
            media_loader=self.media_loader,
            retry_policy=settings.RETRY_POLICY,
            config_provider=settings.classifier_config,
        )
        self.engine = PairingEngine(
            rate_limiter=SlidingWindowRateLimiter(settings.RATE_LIMIT),
            classifier=gateway,
            store=store,
            throttle=settings.SESSION_THROTTLE,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
        await self.media_loader.aclose()


def _open_store() -> SQLitePairingStore:
    os.makedirs(os.path.dirname(settings.DB_PATH) or ".", exist_ok=True)
    store = SQLitePairingStore(settings.DB_PATH)
    store.init_db()
    return store


def _emit(payload: dict) -> None:
    print(json.dumps(payload, indent=2))


def _init_db() -> int:
    _print_banner()
    logger = logging.getLogger(__name__)
    store = _open_store()
    logger.info("Pairing store ready at %s: %s", settings.DB_PATH, store.count_by_status() or "empty")
    if not settings.gemini_api_key():
        logger.warning("GEMINI_API_KEY is not set; only cached or sentinel vectors will be produced")
    return 0


def _build_request(args: argparse.Namespace) -> SubmitRequest:
    if args.text:
        content_type, content = ContentType.TEXT, args.text
    elif args.image:
        content_type, content = ContentType.IMAGE, args.image
    elif args.audio:
        content_type, content = ContentType.AUDIO, args.audio
    else:
        content_type, content = None, None
    return SubmitRequest(
        content_type=content_type,
        content=content,
        session_token=args.session,
        origin=args.origin,
    )


async def _submit(args: argparse.Namespace) -> int:
    runtime = Runtime(_open_store())
    try:
        result = await runtime.engine.submit(_build_request(args))
    except RateLimitExceeded as exc:
        _emit({"status": "rejected", "msg": str(exc), "retryAfter": round(exc.retry_after, 1)})
        return EXIT_THROTTLED
    except SessionThrottled as exc:
        _emit(
            {
                "status": "rejected",
                "msg": str(exc),
                "lastSubmissionId": exc.last_submission_id,
                "lastSubmissionTime": exc.last_submission_time.isoformat(),
            }
        )
        return EXIT_THROTTLED
    except InvalidSubmission as exc:
        _emit({"status": "rejected", "msg": str(exc)})
        return EXIT_INVALID
    finally:
        await runtime.aclose()
    _emit(result_to_dict(result))
    return 0


async def _check(args: argparse.Namespace) -> int:
    runtime = Runtime(_open_store())
    try:
        result = runtime.engine.check_status(args.submission_id)
    except SubmissionNotFound as exc:
        _emit({"status": "not-found", "msg": str(exc)})
        return EXIT_NOT_FOUND
    finally:
        await runtime.aclose()
    _emit(result_to_dict(result))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="sensus")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the pairing store and report its state")

    submit = subparsers.add_parser("submit", help="Submit content and try to pair it")
    content = submit.add_mutually_exclusive_group()
    content.add_argument("--text", help="Raw text to submit")
    content.add_argument("--image", help="Stored image URL or local path")
    content.add_argument("--audio", help="Stored audio URL or local path")
    submit.add_argument("--session", help="Session token from a previous submission")
    submit.add_argument("--origin", default="cli", help="Caller key used by the rate limiter")

    check = subparsers.add_parser("check", help="Check whether a submission was paired")
    check.add_argument("submission_id")

    args = parser.parse_args(argv)
    configure_logging()

    try:
        if args.command == "init-db":
            return _init_db()
        if args.command == "submit":
            return asyncio.run(_submit(args))
        return asyncio.run(_check(args))
    except PairingStoreError:
        logging.getLogger(__name__).exception("Pairing store failure")
        return EXIT_STORE_ERROR


if __name__ == "__main__":
    sys.exit(main())
