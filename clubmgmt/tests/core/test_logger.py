"""Unit tests for core.logger module.

- configure_logging() installs a single root handler
- JSON rendering when LOG_FORMAT=json
- Noisy third-party loggers are quieted
"""

import json
import logging

import pytest
import structlog

from core.logger import configure_logging, get_logger


@pytest.fixture(autouse=True)
def _clean_root_logger():
    """Save and restore root logger state around each test."""
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    yield
    root.handlers = original_handlers
    root.setLevel(original_level)
    structlog.reset_defaults()


@pytest.mark.unit
class TestConfigureLogging:
    def test_installs_single_root_handler(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        configure_logging()
        configure_logging()

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "chatty")
        configure_logging()
        assert logging.getLogger().level == logging.INFO

    def test_quiets_third_party_loggers(self):
        configure_logging()
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
        assert logging.getLogger("aiosqlite").level == logging.WARNING

    def test_json_format_renders_event_and_fields(self, monkeypatch, capsys):
        monkeypatch.setenv("LOG_FORMAT", "json")
        monkeypatch.setenv("LOG_LEVEL", "INFO")
        configure_logging()

        get_logger("tests.logger").info("backup.created", path="/tmp/b.zip", clubs=3)

        line = capsys.readouterr().out.strip().splitlines()[-1]
        parsed = json.loads(line)
        assert parsed["event"] == "backup.created"
        assert parsed["clubs"] == 3
        assert parsed["level"] == "info"
        assert parsed["logger"] == "tests.logger"
