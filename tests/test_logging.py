"""Tests for the structured logging configuration."""

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest
import structlog

from deltasync.logging import setup_logging


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset logging state between tests."""
    yield
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    structlog.reset_defaults()


# -- File creation ----------------------------------------------------------


def test_setup_creates_log_dir_and_files(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("deltasync.test").info("hello")

    assert log_dir.exists()
    assert (log_dir / "deltasync.log").exists()


# -- deltasync.log format ---------------------------------------------------


def test_main_log_human_readable(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("deltasync.cli").info("test_event", key="value")

    content = (log_dir / "deltasync.log").read_text()
    assert "test_event" in content
    assert "key=value" in content


def test_main_log_not_json(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("deltasync.cli").info("check_format")

    content = (log_dir / "deltasync.log").read_text().strip()
    with pytest.raises(json.JSONDecodeError):
        json.loads(content)


# -- sync.log format -------------------------------------------------------


def test_sync_log_json(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("deltasync.sync.client").info("sync_pull_complete", pages_fetched=3)

    data = json.loads((log_dir / "sync.log").read_text().strip())
    assert data["event"] == "sync_pull_complete"
    assert data["pages_fetched"] == 3
    assert data["level"] == "info"
    assert "timestamp" in data


def test_sync_log_excludes_other_events(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("deltasync.registry").info("registry_event")
    structlog.get_logger("deltasync.sync.retry").info("retry_event")

    sync_content = (log_dir / "sync.log").read_text()
    assert "retry_event" in sync_content
    assert "registry_event" not in sync_content

    main_content = (log_dir / "deltasync.log").read_text()
    assert "retry_event" in main_content
    assert "registry_event" in main_content


# -- Log level filtering ----------------------------------------------------


def test_level_filtering_suppresses_lower(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="warning", log_dir=log_dir)

    log = structlog.get_logger("deltasync.test")
    log.info("should_not_appear")
    log.warning("should_appear")

    content = (log_dir / "deltasync.log").read_text()
    assert "should_not_appear" not in content
    assert "should_appear" in content


def test_unknown_level_falls_back_to_info(tmp_path: Path):
    setup_logging(log_level="chatty", log_dir=tmp_path / "logs")
    assert logging.getLogger().level == logging.INFO


def test_http_libraries_quieted(tmp_path: Path):
    setup_logging(log_level="debug", log_dir=tmp_path / "logs")
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING


# -- Handlers ---------------------------------------------------------------


def test_rotation_parameters(tmp_path: Path):
    setup_logging(log_level="info", log_dir=tmp_path / "logs")

    rotating = [h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)]
    assert len(rotating) == 2
    for handler in rotating:
        assert handler.maxBytes == 10 * 1024 * 1024
        assert handler.backupCount == 5


def test_no_log_dir_no_handlers():
    setup_logging(log_level="info", log_dir=None)
    assert logging.getLogger().handlers == []


def test_console_handler_writes_to_stderr(capsys: pytest.CaptureFixture[str]):
    setup_logging(log_level="info", console=True)

    structlog.get_logger("deltasync.test").info("to_console")

    assert "to_console" in capsys.readouterr().err


# -- Context variables -----------------------------------------------------


def test_context_variables_in_sync_log(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(client="blog", run_id=7)

    structlog.get_logger("deltasync.sync.client").info("with_context")

    structlog.contextvars.clear_contextvars()

    data = json.loads((log_dir / "sync.log").read_text().strip())
    assert data["client"] == "blog"
    assert data["run_id"] == 7
