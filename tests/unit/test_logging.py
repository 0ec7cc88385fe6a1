"""Tests for structured logging setup."""

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from unittest.mock import patch

import pytest
import structlog

from leadguard.config import Settings
from leadguard.logging import (
    MAX_MESSAGE_CHARS,
    cap_message_fields,
    get_logger,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_logging():
    """Put the root logger and structlog back the way they were."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()


class TestCapMessageFields:
    """Tests for the message-truncating processor."""

    def test_long_content_truncated(self) -> None:
        event = cap_message_fields(None, "warning", {"content_preview": "x" * 500})
        assert event["content_preview"] == "x" * MAX_MESSAGE_CHARS + "..."

    def test_short_and_other_fields_untouched(self) -> None:
        event = cap_message_fields(
            None, "info", {"content": "hello", "description": "y" * 500, "lead_id": 42}
        )
        assert event == {"content": "hello", "description": "y" * 500, "lead_id": 42}

    def test_non_string_values_untouched(self) -> None:
        event = cap_message_fields(None, "info", {"message_text": ["a"] * 300})
        assert event["message_text"] == ["a"] * 300


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_console_only_by_default(self) -> None:
        handlers = setup_logging(Settings(_env_file=None, log_level="debug"))

        assert len(handlers) == 1
        assert logging.getLogger().handlers == handlers
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_repeated_setup_replaces_handlers(self) -> None:
        settings = Settings(_env_file=None)
        setup_logging(settings)
        setup_logging(settings)
        assert len(logging.getLogger().handlers) == 1

    def test_file_logging_writes_json(self, tmp_path) -> None:
        settings = Settings(_env_file=None, log_to_file=True, log_directory=str(tmp_path))

        handlers = setup_logging(settings)
        files = [h for h in handlers if isinstance(h, RotatingFileHandler)]
        assert [h.level for h in files] == [logging.INFO, logging.WARNING]

        log = get_logger("leadguard.tests")
        log.info("pipeline_ready", stages=5)
        log.warning("security_event", lead_id=42, content_preview="z" * 400)
        for handler in handlers:
            handler.flush()

        main = (tmp_path / "leadguard.log").read_text().splitlines()
        security = (tmp_path / "leadguard-security.log").read_text().splitlines()

        assert [json.loads(line)["event"] for line in main] == ["pipeline_ready", "security_event"]
        record = json.loads(security[0])
        assert len(security) == 1
        assert record["lead_id"] == 42
        assert record["level"] == "warning"
        assert len(record["content_preview"]) == MAX_MESSAGE_CHARS + 3

    def test_unwritable_directory_falls_back_to_console(self, tmp_path) -> None:
        settings = Settings(_env_file=None, log_to_file=True, log_directory=str(tmp_path))
        with patch("leadguard.logging.Path.mkdir", side_effect=PermissionError("read-only")):
            handlers = setup_logging(settings)
        assert len(handlers) == 1
