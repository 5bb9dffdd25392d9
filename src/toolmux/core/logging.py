"""Logging setup for toolmux.

Modules log through ``logging.getLogger(__name__)``. Diagnostic events
attach their fields via ``extra=`` (``event``, ``provider``, ``reason``,
``tool``...), which the structured formatter emits as JSON keys.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from toolmux.config.schema import LoggingConfig

ROOT_LOGGER = "toolmux"

DIAGNOSTIC_FIELDS: tuple[str, ...] = (
    "event",
    "provider",
    "reason",
    "tool",
    "replaced_provider",
    "pid",
    "returncode",
)

_TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in DIAGNOSTIC_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(
    config: LoggingConfig,
    *,
    verbose: bool = False,
) -> logging.Logger:
    """Install a single handler on the ``toolmux`` logger.

    Repeated calls replace the previously installed handler.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    level = logging.DEBUG if verbose else logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, "_toolmux", False):
            logger.removeHandler(handler)
            handler.close()

    handler: logging.Handler
    if config.file:
        path = Path(config.file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(
        JsonFormatter() if config.structured else logging.Formatter(_TEXT_FORMAT)
    )
    handler._toolmux = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger
