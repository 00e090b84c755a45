# tests/test_logging_setup.py
import logging
import logging.handlers

import pytest
from config import settings

import utils.logging as logging_utils


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging_writes_to_rotating_file(tmp_path, monkeypatch, restore_root_logger):
    log_file = tmp_path / "logs" / "run.log"
    monkeypatch.setattr(settings, "LOG_FILE", str(log_file))
    monkeypatch.setattr(settings, "ENABLE_RICH_PROGRESS", False)

    logging_utils.setup_logging("debug")

    root = restore_root_logger
    assert root.level == logging.DEBUG
    assert any(isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers)
    assert logging.getLogger("httpx").level == logging.WARNING
    assert log_file.exists()


def test_setup_logging_survives_unwritable_log_dir(tmp_path, monkeypatch, restore_root_logger):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x", encoding="utf-8")
    monkeypatch.setattr(settings, "LOG_FILE", str(blocker / "run.log"))
    monkeypatch.setattr(settings, "ENABLE_RICH_PROGRESS", True)

    logging_utils.setup_logging()

    root = restore_root_logger
    assert not any(
        isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers
    )
    assert root.handlers
