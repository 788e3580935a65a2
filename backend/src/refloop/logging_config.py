"""structlog setup for refloop.

Referral events carry visitor fingerprints. Only salted hashes may reach the
log stream, so ``redact_fingerprints`` drops raw address fields and shortens
hashes before rendering.
"""

import logging
import sys
from typing import Any

import structlog

from refloop.settings import settings

RAW_FINGERPRINT_KEYS = frozenset({"ip", "client_ip", "user_agent", "ua", "forwarded_for"})
HASH_KEYS = frozenset({"ip_hash", "ua_hash"})
HASH_PREFIX_LENGTH = 12


def redact_fingerprints(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor: remove raw IP/UA values and truncate their hashes."""
    for key in RAW_FINGERPRINT_KEYS & event_dict.keys():
        event_dict[key] = "[redacted]"
    for key in HASH_KEYS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, str):
            event_dict[key] = value[:HASH_PREFIX_LENGTH]
    return event_dict


def configure_logging() -> None:
    """Configure structlog and the stdlib root logger from settings."""
    level = logging.getLevelName(settings.log_level.upper())

    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        redact_fingerprints,
    ]
    if settings.log_format == "json":
        processors = shared + [
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared + [
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    # SQLAlchemy, slowapi and uvicorn log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
