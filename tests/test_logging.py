"""Tests for logging setup."""

import json
import logging
import logging.handlers
from pathlib import Path

import pytest
import structlog

from engine.logging import get_logger, setup_logging


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_console_only_by_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOG_DIR", raising=False)
    setup_logging("WARNING")
    root = logging.getLogger()
    assert root.level == logging.WARNING
    assert len(root.handlers) == 1


def test_log_dir_adds_rotating_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("LOG_RETENTION_DAYS", "7")
    setup_logging("INFO")

    file_handlers = [
        h for h in logging.getLogger().handlers
        if isinstance(h, logging.handlers.TimedRotatingFileHandler)
    ]
    assert len(file_handlers) == 1
    assert file_handlers[0].backupCount == 7

    get_logger("engine.test").info("order_placed", order_id="1")
    file_handlers[0].flush()
    assert "order_placed" in (tmp_path / "logs" / "engine.log").read_text()


def test_bound_intent_context_reaches_audit_file(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    setup_logging("INFO")
    handler = next(
        h for h in logging.getLogger().handlers
        if isinstance(h, logging.handlers.TimedRotatingFileHandler)
    )

    with structlog.contextvars.bound_contextvars(batch_id="b-1", symbol="BTCUSDT"):
        get_logger("engine.test").warning("order_attempt_failed", attempt="1/3")
    handler.flush()

    line = json.loads((tmp_path / "engine.log").read_text().splitlines()[-1])
    assert line["event"] == "order_attempt_failed"
    assert line["batch_id"] == "b-1"
    assert line["symbol"] == "BTCUSDT"
