from __future__ import annotations

import json
import logging
import sys
from enum import Enum
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace


# Fields that carry wallet or pinning credentials never reach the log stream.
_REDACTED_KEYS = ("jwt", "secret", "api_key", "authorization", "private_key")

_STDLIB_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime", "taskName"}

_NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}


class InterceptHandler(logging.Handler):
    """Forward uvicorn, SQLAlchemy and httpx records into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        extra = {key: value for key, value in vars(record).items() if key not in _STDLIB_RECORD_ATTRS}
        logger.bind(stdlib_logger=record.name, **extra).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage().replace("{", "{{").replace("}", "}}")
        )


def _scrub(key: str, value: Any) -> Any:
    if any(marker in key.lower() for marker in _REDACTED_KEYS):
        return "***"
    if isinstance(value, Enum):
        return value.value
    return value


class _JsonSink:
    """One JSON object per line, tagged with service metadata and the active trace."""

    def __init__(self, *, service_name: str, environment: str, version: str) -> None:
        self._static = {"service": service_name, "environment": environment, "version": version}

    def __call__(self, message: "logger.Message") -> None:
        record = message.record
        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": record["name"],
            **self._static,
        }

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            payload["trace_id"] = f"{span_context.trace_id:032x}"
            payload["span_id"] = f"{span_context.span_id:016x}"

        for key, value in record["extra"].items():
            payload[key] = _scrub(key, value)

        if record["exception"] is not None:
            payload["exception"] = repr(record["exception"].value)

        sys.stdout.write(json.dumps(payload, default=str) + "\n")


def configure_logging(*, service_name: str, environment: str, version: str, level: str = "INFO") -> None:
    """Send Loguru and stdlib logging to stdout as structured JSON lines."""

    logger.remove()
    logger.add(
        _JsonSink(service_name=service_name, environment=environment, version=version),
        level=level.upper(),
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)
