"""
Structured logging.

structlog поверх stdlib logging: события snake_case + kwargs,
рендер JSON в проде и консольный в DEBUG.
Перед рендером все чувствительные ключи маскируются (redact_processor),
поэтому ни одна учётка/карта/счёт не доходит до sink'а.
"""
from __future__ import annotations

import logging
from typing import Any

import structlog

REDACTED = "***"

# подстроки имён ключей, которые никогда не логируем как есть
SENSITIVE_KEY_PARTS = (
    "password",
    "pwd",
    "secret",
    "token",
    "authorization",
    "auth",
    "credential",
    "api_key",
    "apikey",
    "key",
    "card",
    "cvc",
    "cvv",
    "number",
    "expiry",
    "exp_",
    "expiration",
    "iban",
    "account",
    "signature",
    "sig",
)

# ключи, которые содержат подстроки выше, но безопасны и нужны для дебага
SAFE_KEYS = frozenset(
    {
        "event",
        "idempotency_key",
        "masked_account_ref",
        "card_enabled",
        "logger",
        "level",
        "timestamp",
    }
)


def is_sensitive_key(key: Any) -> bool:
    if not isinstance(key, str):
        return False
    lowered = key.lower()
    if lowered in SAFE_KEYS:
        return False
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def redact_payload(data: Any) -> Any:
    """Рекурсивная копия data с замаскированными чувствительными полями."""
    if isinstance(data, dict):
        return {
            k: (REDACTED if is_sensitive_key(k) and v not in (None, "") else redact_payload(v))
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_payload(v) for v in data]
    return data


def redact_processor(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    return redact_payload(event_dict)


SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    redact_processor,
]


def build_logging_config(*, level: str = "INFO", renderer: str = "json") -> dict[str, Any]:
    """dictConfig для settings.LOGGING: stdlib записи проходят тот же pipeline, что и structlog."""
    final = (
        structlog.dev.ConsoleRenderer()
        if renderer == "console"
        else structlog.processors.JSONRenderer()
    )
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structlog": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.format_exc_info,
                    final,
                ],
                "foreign_pre_chain": SHARED_PROCESSORS,
            },
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "structlog"},
        },
        "root": {"handlers": ["console"], "level": level},
        "loggers": {
            "urllib3": {"level": "WARNING"},
            "stripe": {"level": "WARNING"},
        },
    }


def configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # capture_logs() в тестах подменяет процессоры, кэш этому мешает
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)
