"""
Structured logging utilities for the build engine.

Every stage, the placement pass and the CLI emit records through these helpers
so console output stays readable while JSON output carries the identifier,
stage and decision fields needed to reconstruct a run.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

__all__ = [
    "JSONFormatter",
    "StructuredLogger",
    "get_logger",
    "log_event",
    "setup_logging",
]

_ROOT_LOGGER = "EOBuild"


class JSONFormatter(logging.Formatter):
    """Formatter emitting one JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        """Serialize ``record`` into a JSON line including structured fields."""

        now = datetime.now(timezone.utc)
        log_obj: Dict[str, Any] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "stage": getattr(record, "stage", None),
            "identifier": getattr(record, "identifier", None),
        }
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_obj.update(extra_fields)
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_obj, default=str)


class _ConsoleFormatter(logging.Formatter):
    """Human readable formatter appending structured fields as ``key=value``."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extra_fields = getattr(record, "extra_fields", None)
        if not isinstance(extra_fields, dict) or not extra_fields:
            return base
        rendered = " ".join(f"{key}={value}" for key, value in extra_fields.items())
        return f"{base} [{rendered}]"


class StructuredLogger(logging.LoggerAdapter):
    """Logger adapter that enriches records with shared context."""

    def __init__(
        self, logger: logging.Logger, base_fields: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(logger, {})
        self.base_fields: Dict[str, Any] = dict(base_fields or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple[str, Dict[str, Any]]:
        """Merge adapter context into ``extra`` metadata for structured output."""

        extra = kwargs.setdefault("extra", {})
        fields = dict(self.base_fields)
        extra_fields = extra.get("extra_fields")
        if isinstance(extra_fields, dict):
            fields.update(extra_fields)
        extra["extra_fields"] = fields
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str, *, base_fields: Optional[Dict[str, Any]] = None) -> StructuredLogger:
    """Return a structured adapter for ``name``.

    Handlers are owned by :func:`setup_logging`; modules only ever ask for an
    adapter so library use never installs handlers behind the caller's back.
    """

    return StructuredLogger(logging.getLogger(name), base_fields)


def log_event(logger: logging.LoggerAdapter | logging.Logger, level: str, message: str, **fields: object) -> None:
    """Emit a structured log record using the ``extra_fields`` convention."""

    normalised_level = str(level).lower()
    if "stage" not in fields:
        base_stage = getattr(logger, "base_fields", {}).get("stage")
        if base_stage is not None:
            fields["stage"] = base_stage
    if normalised_level in {"warning", "error"} and "identifier" not in fields:
        fields["identifier"] = "unknown"
    emitter = getattr(logger, normalised_level, None)
    if not callable(emitter):
        raise AttributeError(f"Logger has no level '{level}'")
    emitter(message, extra={"extra_fields": fields})


def setup_logging(level: str = "INFO", fmt: str = "console") -> logging.Logger:
    """Configure handlers on the ``EOBuild`` logger.

    Args:
        level: Logging level name (``DEBUG``, ``INFO``...).
        fmt: ``console`` for human readable lines, ``json`` for JSON lines.

    Returns:
        The configured package logger.
    """

    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for handler in list(logger.handlers):
        if getattr(handler, "_eobuild_managed", False):
            logger.removeHandler(handler)
            handler.close()

    handler = logging.StreamHandler(sys.stderr)
    if str(fmt).lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(_ConsoleFormatter("%(levelname)s: %(message)s"))
    handler._eobuild_managed = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.propagate = True
    return logger
