"""Structured log helpers.

Lifecycle events are emitted as one JSON object per line so they can be
grepped and parsed without a log shipper. Secrets are masked before emission.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

ROOT_LOGGER = "launchgate"


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Install a plain message formatter if the process has no handlers yet."""
    if not logging.getLogger().handlers:
        logging.basicConfig(level=level, format="%(message)s")
    # Reduce noise from transport libraries.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    return root


def mask_token(token: Optional[str], keep: int = 6) -> Optional[str]:
    if token is None:
        return None
    if len(token) <= keep:
        return "***"
    return token[:keep] + "***"


def redact_url(url: Optional[str]) -> Optional[str]:
    """Drop the query string and fragment (they routinely carry keys/ids)."""
    if not url:
        return url
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    payload = {"event": event}
    payload.update(fields)
    logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))
