"""Structured logging for the concierge backend.

One ``logger`` instance is shared by every module. Keyword arguments become
fields of the JSON record, and the identifiers of the current request (see
``request_context``) are merged in automatically.

Handlers:

* stderr, coloured, human readable
* ``logs/conversations.jsonl``: INFO and above, one record per turn or tool call
* ``logs/errors.jsonl``: ERROR and above

Message content is only previewed in logs when ``enable_content_logging`` is
on, and previews are scrubbed of emails, card numbers and credentials.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys

from pathlib import Path
from typing import Any

from pythonjsonlogger import json as jsonlogger

from concierge.api.middleware.request_context import get_request_context
from concierge.core.constants import (
    LOG_BACKUP_COUNT_CONVERSATIONS,
    LOG_BACKUP_COUNT_ERRORS,
    LOG_MAX_SIZE,
    LOG_PREVIEW_LENGTH,
    PROJECT_ROOT,
    get_settings,
)

#: (pattern, replacement) pairs applied to every content preview.
REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b[\w.%+-]+@[\w.-]+\.[A-Za-z]{2,}\b"), "[EMAIL]"),
    (re.compile(r"\b(?:\d{4}[- ]?){3}\d{4}\b"), "[CARD]"),
    (re.compile(r"\b(?:sk-|pk-|api[-_]?key[-_]?)\w{20,}\b"), "[API_KEY]"),
    (re.compile(r"\b(?:password|secret|token)\s*[:=]\s*\S+", re.IGNORECASE), "[REDACTED]"),
)


def redact(text: str) -> str:
    for pattern, replacement in REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


# =============================================================================
# Formatting
# =============================================================================


class ConsoleFormatter(logging.Formatter):
    """``HH:MM:SS [LEVEL] name - message`` with the level in colour."""

    RESET = "\x1b[0m"
    COLOURS = {
        logging.DEBUG: "\x1b[38;20m",
        logging.INFO: "\x1b[32;20m",
        logging.WARNING: "\x1b[33;20m",
        logging.ERROR: "\x1b[31;20m",
        logging.CRITICAL: "\x1b[31;1m",
    }

    def _paint(self, text: str, level: int) -> str:
        colour = self.COLOURS.get(level)
        return f"{colour}{text}{self.RESET}" if colour else text

    def _access_line(self, record: logging.LogRecord) -> str | None:
        # uvicorn.access passes (client, method, path, http_version, status)
        if record.name != "uvicorn.access" or not isinstance(record.args, tuple) or len(record.args) != 5:
            return None
        client, method, path, version, status = record.args
        code = int(str(status))
        level = logging.INFO if code < 400 else logging.WARNING if code < 500 else logging.ERROR
        return f'{client} - "{method} {path} HTTP/{version}" {self._paint(str(status), level)}'

    def format(self, record: logging.LogRecord) -> str:
        message = self._access_line(record)
        if message is None:
            message = record.getMessage()
            if record.exc_info:
                message += "\n" + self.formatException(record.exc_info)
        stamp = self.formatTime(record, "%H:%M:%S")
        level = self._paint(f"[{record.levelname}]", record.levelno)
        return f"{stamp} {level} {record.name} - {message}"


def _json_file_handler(path: Path, level: int, backups: int, fmt: str) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(path, maxBytes=LOG_MAX_SIZE, backupCount=backups, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(jsonlogger.JsonFormatter(fmt, timestamp=True))
    return handler


def configure_uvicorn_logging() -> None:
    """Route uvicorn's access and error logs through ``ConsoleFormatter``."""
    logging.getLogger("uvicorn").handlers = []
    for name in ("uvicorn.access", "uvicorn.error"):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ConsoleFormatter())
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = [handler]
        uv_logger.setLevel(logging.INFO)
        uv_logger.propagate = False


def setup_logging(name: str = "concierge", debug: bool | None = None) -> logging.Logger:
    if debug is None:
        debug = os.getenv("DEBUG", "false").lower() in ("1", "true", "yes")

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if debug else logging.INFO)
    console.setFormatter(ConsoleFormatter())

    log_dir = PROJECT_ROOT / "logs"
    log_dir.mkdir(exist_ok=True)

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)
    base.handlers = [
        console,
        _json_file_handler(
            log_dir / "conversations.jsonl",
            logging.INFO,
            LOG_BACKUP_COUNT_CONVERSATIONS,
            "%(timestamp)s %(levelname)s %(message)s %(request_id)s %(chat_id)s %(tool)s",
        ),
        _json_file_handler(
            log_dir / "errors.jsonl",
            logging.ERROR,
            LOG_BACKUP_COUNT_ERRORS,
            "%(timestamp)s %(levelname)s %(name)s %(message)s",
        ),
    ]
    return base


# =============================================================================
# Logger facade
# =============================================================================


class ChatLogger:
    """``logging.Logger`` wrapper taking structured fields as keyword arguments."""

    def __init__(self, name: str = "concierge"):
        self.logger = setup_logging(name)

    @staticmethod
    def _fields(values: dict[str, Any]) -> dict[str, Any]:
        ctx = get_request_context()
        if ctx is None:
            return values
        return {**ctx.to_log_context(), **values}

    def debug(self, message: str, **fields: Any) -> None:
        self.logger.debug(message, extra=self._fields(fields))

    def info(self, message: str, **fields: Any) -> None:
        self.logger.info(message, extra=self._fields(fields))

    def warning(self, message: str, **fields: Any) -> None:
        self.logger.warning(message, extra=self._fields(fields))

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self.logger.error(message, exc_info=exc_info, extra=self._fields(fields))

    @staticmethod
    def _content_logging() -> bool:
        try:
            return bool(get_settings().enable_content_logging)
        except ValueError:
            return False

    @staticmethod
    def _preview(text: str) -> str:
        flat = text.replace("\n", " ")
        if len(flat) <= LOG_PREVIEW_LENGTH:
            return redact(flat)
        return redact(flat[:LOG_PREVIEW_LENGTH]) + "..."

    def log_turn(
        self,
        chat_id: str,
        user_input: str,
        response: str,
        tool_names: list[str] | None = None,
        duration_ms: float | None = None,
    ) -> None:
        """One record per completed model turn.

        Sizes and tool names are always logged; the text itself only as a
        redacted preview when content logging is enabled.
        """
        with_content = self._content_logging()
        if with_content:
            summary = f"Turn: {self._preview(user_input)!r} -> {self._preview(response)!r}"
        else:
            summary = "Turn completed"
        if tool_names:
            summary += f" tools={','.join(tool_names)}"

        fields: dict[str, Any] = {
            "chat_turn": True,
            "chat_id": chat_id,
            "chars_input": len(user_input),
            "chars_response": len(response),
            "content_logging": with_content,
        }
        if tool_names:
            fields["tool_names"] = tool_names
        if duration_ms is not None:
            fields["ms"] = int(duration_ms)
        self.info(summary, **fields)

    def log_tool_call(self, tool_name: str, args: dict[str, Any], result: Any) -> None:
        if self._content_logging():
            self.info(
                f"Tool {tool_name} returned",
                tool=tool_name,
                tool_args=redact(str(args)),
                result_preview=self._preview(str(result)),
            )
        else:
            self.info(f"Tool {tool_name} returned", tool=tool_name)


logger = ChatLogger()
