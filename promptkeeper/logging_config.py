import copy
import json  # For custom JSON formatter
import logging
import logging.config
import os
import sys
from datetime import datetime  # For custom JSON formatter

from promptkeeper.config import (
    HISTORY_LOG_FILE_NAME,
    LOG_DIR,
    LOG_FILE_NAME,
    LOG_FORMAT,
    LOG_LEVEL,
    LOGGING_CONFIG,
    ensure_directories_exist,
)

# Get a logger for this module itself
logger = logging.getLogger(__name__)

HISTORY_LOGGER_NAME = "promptkeeper.history"


# Custom JSON Formatter
class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": datetime.utcfromtimestamp(record.created).isoformat() + "Z",
            "level": record.levelname,
            "name": record.name,
        }
        if isinstance(record.msg, dict):
            log_record.update(record.msg)
        else:
            log_record["message"] = record.getMessage()

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_record, ensure_ascii=False, default=str)


def build_logging_config(log_dir: str = LOG_DIR, log_level: str = LOG_LEVEL) -> dict:
    """
    Builds the dictConfig mapping used by setup_logging().

    Console logging is always on. When ``log_dir`` is set, a rotating text log
    and a rotating JSONL audit log for the ``promptkeeper.history`` logger are
    added.
    """
    config_to_use = copy.deepcopy(LOGGING_CONFIG)

    config_to_use["root"]["level"] = log_level
    config_to_use["handlers"]["console"]["level"] = log_level
    config_to_use["formatters"]["standard"]["format"] = LOG_FORMAT
    config_to_use["formatters"]["json"] = {
        "()": JSONFormatter,
    }

    if log_dir and LOG_FILE_NAME:
        config_to_use["handlers"]["file"] = {
            "level": log_level,
            "formatter": "standard",
            "class": "logging.handlers.RotatingFileHandler",
            "filename": os.path.join(log_dir, LOG_FILE_NAME),
            "maxBytes": 1024 * 1024 * 5,  # 5 MB
            "backupCount": 2,
            "encoding": "utf-8",
        }
        config_to_use["root"]["handlers"].append("file")

    if log_dir:
        config_to_use["handlers"]["history_file"] = {
            "level": "INFO",
            "formatter": "json",
            "class": "logging.handlers.RotatingFileHandler",
            "filename": os.path.join(log_dir, HISTORY_LOG_FILE_NAME),
            "maxBytes": 1024 * 1024 * 10,  # 10 MB
            "backupCount": 5,
            "encoding": "utf-8",
        }
        # Audit records stay out of the console stream.
        config_to_use["loggers"][HISTORY_LOGGER_NAME] = {
            "handlers": ["history_file"],
            "level": "INFO",
            "propagate": False,
        }

    return config_to_use


def setup_logging():
    """
    Configures logging for the application.
    Uses settings from promptkeeper.config.
    """
    ensure_directories_exist()
    config_to_use = build_logging_config()

    try:
        logging.config.dictConfig(config_to_use)
    except (ValueError, TypeError, AttributeError, ImportError) as e:
        # dictConfig failed; keep console logging alive.
        print(f"Error setting up logging with dictConfig: {e}", file=sys.stderr)
        logging.basicConfig(
            level=LOG_LEVEL,
            format=LOG_FORMAT,
            handlers=[logging.StreamHandler(sys.stdout)],
        )
        logging.getLogger(__name__).error(
            "Fell back to basicConfig due to dictConfig error.", exc_info=True
        )
        return

    logger.info("Logging setup complete using dictConfig.")
    if LOG_DIR:
        logger.info(f"Logging to console and directory: {os.path.abspath(LOG_DIR)}")
    else:
        logger.info("Logging to console only.")
