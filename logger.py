# logger.py
import os
import sys
import logging
from logging.handlers import RotatingFileHandler

APP_LOGGER_NAME = "inventory_app"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# "logging" section of the configuration file
LOGGING_DEFAULTS = {
    "level": "INFO",
    "file": "logs/inventory.log",
    "max_size": 1048576,  # 1MB
    "backup_count": 3,
}


def _level(name) -> int:
    """Numeric level for a name such as "debug"; unknown names mean INFO."""
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO


def error_log_path(log_file: str) -> str:
    """logs/inventory.log -> logs/inventory_errors.log"""
    stem, ext = os.path.splitext(log_file)
    return f"{stem}_errors{ext or '.log'}"


def _rotating(path, log_config, level, formatter):
    handler = RotatingFileHandler(
        path,
        maxBytes=log_config["max_size"],
        backupCount=log_config["backup_count"],
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def reset_logger():
    """Detach and close every handler of the application logger."""
    app_logger = logging.getLogger(APP_LOGGER_NAME)
    for handler in app_logger.handlers[:]:
        app_logger.removeHandler(handler)
        handler.close()
    return app_logger


def setup_logger(config=None):
    """
    Attach handlers to the application logger from the "logging" section of
    config: a console handler on stderr and, unless "file" is empty, a
    rotating log file plus a second rotating file that only takes errors.
    """
    log_config = {**LOGGING_DEFAULTS, **(config or {}).get("logging", {})}
    level = _level(log_config["level"])
    formatter = logging.Formatter(LOG_FORMAT)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.setLevel(level)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    app_logger.addHandler(console)

    log_file = log_config.get("file")
    if not log_file:
        return app_logger

    try:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        app_logger.addHandler(_rotating(log_file, log_config, level, formatter))
        app_logger.addHandler(_rotating(error_log_path(log_file), log_config,
                                        logging.ERROR, formatter))
    except OSError as e:
        app_logger.error(f"Failed to set up file logging: {e}")

    return app_logger


def get_logger(name=None):
    """Child logger of the application logger, e.g. get_logger('database')."""
    if not name:
        return logging.getLogger(APP_LOGGER_NAME)
    return logging.getLogger(f"{APP_LOGGER_NAME}.{name}")


def configure_logger(config):
    """Replace the current handlers with ones built from config."""
    reset_logger()
    return setup_logger(config)
