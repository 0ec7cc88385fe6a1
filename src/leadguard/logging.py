"""Structured logging for LeadGuard.

structlog renders through stdlib handlers:

* console: colored in development, JSON otherwise
* ``<prefix>.log``: every record as JSON (file logging only)
* ``<prefix>-security.log``: WARNING and above as JSON (file logging only).
  This is where forensic ``security_event`` records and alerts end up.

Lead message text must not reach the logs in full. :func:`cap_message_fields`
truncates the known message-bearing keys on every record.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from leadguard.config import Settings, get_settings

if TYPE_CHECKING:
    from structlog.typing import EventDict, Processor

MESSAGE_FIELDS = frozenset({"content", "content_preview", "message_text", "sanitized_input"})
MAX_MESSAGE_CHARS = 200

_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "google_genai", "asyncpg")


def cap_message_fields(_logger: Any, _method_name: str, event_dict: EventDict) -> EventDict:
    """Truncate message-bearing fields to :data:`MAX_MESSAGE_CHARS`."""
    for key in MESSAGE_FIELDS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str) and len(value) > MAX_MESSAGE_CHARS:
            event_dict[key] = value[:MAX_MESSAGE_CHARS] + "..."
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        cap_message_fields,
    ]


def _json_formatter() -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
    )


def _rotating_handler(settings: Settings, path: str, level: int) -> RotatingFileHandler | None:
    try:
        handler = RotatingFileHandler(
            filename=path,
            maxBytes=settings.log_file_max_bytes,
            backupCount=settings.log_file_backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        print(f"Warning: Could not open log file {path}: {e}", file=sys.stderr)
        return None
    handler.setLevel(level)
    handler.setFormatter(_json_formatter())
    return handler


def setup_logging(settings: Settings | None = None) -> list[logging.Handler]:
    """Configure structlog and the root logger's handlers.

    Safe to call more than once: existing root handlers are replaced.

    Args:
        settings: Settings to use; defaults to :func:`get_settings`.

    Returns:
        The handlers attached to the root logger.
    """
    settings = settings or get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                (
                    structlog.dev.ConsoleRenderer(colors=True)  # type: ignore[list-item]
                    if settings.is_development
                    else structlog.processors.JSONRenderer()
                ),
            ],
        )
    )
    handlers: list[logging.Handler] = [console_handler]

    if settings.log_to_file:
        try:
            Path(settings.log_directory).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            # Console-only logging
            print(f"Warning: Could not create log directory: {e}", file=sys.stderr)
        else:
            for path, level in (
                (settings.log_file_path, log_level),
                (settings.security_log_file_path, max(log_level, logging.WARNING)),
            ):
                handler = _rotating_handler(settings, path, level)
                if handler is not None:
                    handlers.append(handler)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(log_level)

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handlers


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
