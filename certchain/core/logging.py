"""
Structured logging configuration using structlog.
Provides JSON-formatted logs for production and human-readable logs for development.

Every event carries the service and ledger context, and credentials are
redacted before rendering: the operator API key, the Pinata key/secret/JWT
and the ledger operator private key never reach the log stream.
"""

import logging
import re
import sys
from collections.abc import Iterable
from typing import Any, cast

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from certchain.core.config import Settings, get_settings

REDACTED = "[REDACTED]"

# Event keys whose values are always secret, matched as substrings of the key.
_SECRET_KEY_PARTS = ("api_key", "secret", "jwt", "private_key", "password", "authorization")

_PEM_BODY_RE = re.compile(r"(-----BEGIN [A-Z0-9 ]+-----)([\s\S]*?)(-----END [A-Z0-9 ]+-----)")

# Shorter values would redact unrelated text.
_MIN_SECRET_LENGTH = 8


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in _SECRET_KEY_PARTS)


class SecretRedactor:
    """structlog processor that strips credentials from event dicts.

    Values under secret-looking keys are replaced outright. Configured secret
    values embedded in any other string (an exception message quoting a
    header, say) are masked, as are PEM bodies.
    """

    def __init__(self, secrets: Iterable[str]) -> None:
        self._secrets = sorted(
            {value for value in secrets if value and len(value) >= _MIN_SECRET_LENGTH},
            key=len,
            reverse=True,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SecretRedactor":
        return cls(
            [
                settings.operator_api_key,
                settings.pinata_api_key,
                settings.pinata_secret_api_key,
                settings.pinata_jwt,
                settings.ledger_operator_private_key,
            ]
        )

    def _scrub(self, value: Any) -> Any:
        if isinstance(value, str):
            for secret in self._secrets:
                if secret in value:
                    value = value.replace(secret, REDACTED)
            if "-----BEGIN " in value:
                value = _PEM_BODY_RE.sub(lambda m: f"{m.group(1)}{REDACTED}{m.group(3)}", value)
            return value
        if isinstance(value, dict):
            return {
                key: REDACTED if _is_secret_key(str(key)) else self._scrub(item)
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [self._scrub(item) for item in value]
        if type(value) is tuple:
            return tuple(self._scrub(item) for item in value)
        return value

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        return cast(EventDict, self._scrub(event_dict))


def service_context(settings: Settings) -> Processor:
    """Processor adding the service name, ledger network and anchor strategy."""
    context = {
        "service": "certchain",
        "ledger_network": settings.ledger_network,
        "anchor_strategy": settings.anchor_strategy,
    }

    def add_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in context.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_context


def configure_logging() -> None:
    """
    Configure structured logging for the application.

    In development mode, logs are formatted for human readability.
    In production mode, logs are JSON-formatted for log aggregation systems.
    """
    settings = get_settings()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        service_context(settings),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.environment == "development":
        processors = shared_processors + [
            SecretRedactor.from_settings(settings),
            structlog.dev.ConsoleRenderer(colors=True),
        ]
    else:
        # Tracebacks are rendered to text first so the redactor sees them.
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            SecretRedactor.from_settings(settings),
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )

    # httpx logs every request URL at INFO, which would include gateway paths.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance with the given name."""
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))
