from __future__ import annotations

import json
import logging
import re
from logging import LogRecord
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace

from giftbridge_api.core.settings import settings


_RESERVED_LOG_RECORD_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
}

# Redeemable gift code values never reach the log sink in clear text.
_SECRET_FIELDS = {"code", "codes", "gift_code"}
_GIFT_CODE_PATTERN = re.compile(re.escape(settings.gift_code_prefix) + r"[A-Z0-9]+")


def mask_gift_code(value: str) -> str:
    """Keep the namespace prefix and the last two characters of a code."""

    prefix = settings.gift_code_prefix
    if value.startswith(prefix):
        suffix = value[len(prefix):]
        return f"{prefix}{'*' * max(len(suffix) - 2, 0)}{suffix[-2:]}"
    if len(value) <= 4:
        return "*" * len(value)
    return "*" * (len(value) - 2) + value[-2:]


def _redact(key: str, value: Any) -> Any:
    if key in _SECRET_FIELDS:
        if isinstance(value, str):
            return mask_gift_code(value)
        if isinstance(value, (list, tuple)):
            return [mask_gift_code(item) if isinstance(item, str) else item for item in value]
    return value


def _redact_message(message: str) -> str:
    return _GIFT_CODE_PATTERN.sub(lambda match: mask_gift_code(match.group(0)), message)


class InterceptHandler(logging.Handler):
    """Route stdlib logging (uvicorn, sqlalchemy, alembic) through Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        try:
            message = record.getMessage()
        except Exception:  # pragma: no cover - malformed format strings
            message = record.msg if isinstance(record.msg, str) else str(record.msg)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_ATTRS
        }

        safe_message = message.replace("{", "{{").replace("}", "}}")

        bound_logger = logger.bind(**extra) if extra else logger
        bound_logger.opt(depth=6, exception=record.exc_info).log(level, safe_message)


def _serialize_log(message: "logger.Message", metadata: Dict[str, Any]) -> None:
    record = message.record
    span = trace.get_current_span()
    span_context = span.get_span_context() if span else None

    payload: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": _redact_message(record["message"]),
        "logger": record["name"],
        "service": metadata.get("service_name", "unknown"),
        "environment": metadata.get("environment", "unknown"),
        "version": metadata.get("version", "unknown"),
    }

    if span_context and span_context.is_valid:
        payload["trace_id"] = f"{span_context.trace_id:032x}"
        payload["span_id"] = f"{span_context.span_id:016x}"

    for key, value in record["extra"].items():
        payload[key] = _redact(key, value)

    if record["exception"] is not None:
        payload["exception"] = repr(record["exception"].value)

    print(json.dumps(payload, default=str))


def configure_logging(*, service_name: str, environment: str, version: str, level: str = "INFO") -> None:
    """Configure Loguru + stdlib logging with structured, redacted JSON output."""

    logger.remove()
    metadata = {"service_name": service_name, "environment": environment, "version": version}
    logger.add(
        lambda message: _serialize_log(message, metadata),
        level=level.upper(),
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


__all__ = ["configure_logging", "mask_gift_code"]
