import logging

import pytest

from logger import (
    APP_LOGGER_NAME, configure_logger, error_log_path, get_logger, reset_logger,
    setup_logger,
)


@pytest.fixture(autouse=True)
def clean_logger():
    reset_logger()
    yield
    reset_logger()


def test_error_log_path():
    assert error_log_path("logs/inventory.log") == "logs/inventory_errors.log"
    assert error_log_path("inventory") == "inventory_errors.log"


def test_child_loggers_share_the_application_logger():
    assert get_logger().name == APP_LOGGER_NAME
    assert get_logger("database").parent is get_logger()


def test_empty_file_setting_logs_to_console_only():
    app_logger = setup_logger({"logging": {"file": "", "level": "debug"}})
    assert app_logger.level == logging.DEBUG
    assert len(app_logger.handlers) == 1


def test_unknown_level_falls_back_to_info():
    assert setup_logger({"logging": {"file": "", "level": "chatty"}}).level == logging.INFO


def test_errors_also_go_to_the_error_file(tmp_path):
    log_file = tmp_path / "logs" / "inventory.log"
    configure_logger({"logging": {"file": str(log_file)}})

    get_logger("inventory").info("sale recorded")
    get_logger("inventory").error("stock went negative")
    for handler in get_logger().handlers:
        handler.flush()

    assert "sale recorded" in log_file.read_text(encoding="utf-8")
    errors = (tmp_path / "logs" / "inventory_errors.log").read_text(encoding="utf-8")
    assert "stock went negative" in errors
    assert "sale recorded" not in errors


def test_configure_logger_replaces_handlers(tmp_path):
    configure_logger({"logging": {"file": str(tmp_path / "a.log")}})
    app_logger = configure_logger({"logging": {"file": ""}})
    assert len(app_logger.handlers) == 1
