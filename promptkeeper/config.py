"""
Configuration management for the PromptKeeper application.

Settings come from three layers, later layers winning:

1. built-in defaults,
2. an optional YAML file named by ``PROMPTKEEPER_CONFIG_FILE`` (or a
   ``config.yaml`` in the working directory) with ``server``, ``database``,
   ``logging``, ``versioning``, ``import`` and ``llm`` sections,
3. environment variables, including those loaded from a local ``.env``.
"""
import os
import logging
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from promptkeeper.enums import ExistingPromptPolicy

logger = logging.getLogger(__name__)

# Automatically load variables from a .env file in the project root.
load_dotenv(override=False)

DEFAULT_CONFIG_FILE = "config.yaml"

# Maps attribute name -> (yaml section, yaml key, env var)
_FIELD_SOURCES = {
    "HOST": ("server", "host", "PROMPTKEEPER_HOST"),
    "PORT": ("server", "port", "PROMPTKEEPER_PORT"),
    "DATABASE_URL": ("database", "url", "DATABASE_URL"),
    "DEBUG": ("logging", "debug", "PROMPTKEEPER_DEBUG"),
    "VERSION_MINT_MAX_RETRIES": ("versioning", "max_retries", "VERSION_MINT_MAX_RETRIES"),
    "DIFF_TIMEOUT": ("versioning", "diff_timeout", "PROMPTKEEPER_DIFF_TIMEOUT"),
    "IMPORT_JSON_EXISTING_PROMPTS": ("import", "json_existing_prompts", "IMPORT_JSON_EXISTING_PROMPTS"),
    "IMPORT_CSV_EXISTING_PROMPTS": ("import", "csv_existing_prompts", "IMPORT_CSV_EXISTING_PROMPTS"),
    "LLM_TIMEOUT": ("llm", "timeout", "PROMPTKEEPER_LLM_TIMEOUT"),
    "PROMETHEUS_METRICS_ENABLED": ("metrics", "enabled", "PROMETHEUS_METRICS_ENABLED"),
}

_DEFAULTS = {
    "HOST": "0.0.0.0",
    "PORT": 7788,
    "DATABASE_URL": "sqlite:///./promptkeeper.db",
    "DEBUG": False,
    "VERSION_MINT_MAX_RETRIES": 3,
    "DIFF_TIMEOUT": 0.0,
    "IMPORT_JSON_EXISTING_PROMPTS": ExistingPromptPolicy.UPDATE.value,
    "IMPORT_CSV_EXISTING_PROMPTS": ExistingPromptPolicy.SKIP.value,
    "LLM_TIMEOUT": 60.0,
    "PROMETHEUS_METRICS_ENABLED": True,
}


def _coerce(raw: Any, default: Any) -> Any:
    if isinstance(default, bool):
        if isinstance(raw, bool):
            return raw
        return str(raw).lower() in {"1", "true", "yes"}
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return str(raw)


def load_config_file(path: Optional[str] = None) -> dict:
    """
    Read the YAML configuration file, if any.

    An explicitly named file that does not exist is an error; the implicit
    ``config.yaml`` lookup is silently skipped when absent.
    """
    explicit = path or os.getenv("PROMPTKEEPER_CONFIG_FILE")
    candidate = explicit or os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
    if not os.path.exists(candidate):
        if explicit:
            raise FileNotFoundError(f"Config file not found: {candidate}")
        return {}
    with open(candidate, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {candidate} must contain a mapping at the top level")
    logger.info(f"Loaded configuration file: {candidate}")
    return data


class Settings:
    """
    Application settings.

    Instantiate with ``config_data`` to bypass file lookup (tests do this);
    environment variables always take precedence.
    """

    def __init__(self, config_data: Optional[dict] = None):
        data = load_config_file() if config_data is None else config_data
        for attr, (section, key, env_var) in _FIELD_SOURCES.items():
            default = _DEFAULTS[attr]
            value = default
            section_data = data.get(section) or {}
            if key in section_data and section_data[key] is not None:
                value = _coerce(section_data[key], default)
            if env_var in os.environ:
                value = _coerce(os.environ[env_var], default)
            setattr(self, attr, value)

        for attr in ("IMPORT_JSON_EXISTING_PROMPTS", "IMPORT_CSV_EXISTING_PROMPTS"):
            try:
                ExistingPromptPolicy(getattr(self, attr))
            except ValueError:
                raise ValueError(
                    f"{attr} must be one of {[p.value for p in ExistingPromptPolicy]}, got {getattr(self, attr)!r}"
                )

    def existing_prompt_policy(self, fmt: str) -> ExistingPromptPolicy:
        if fmt == "csv":
            return ExistingPromptPolicy(self.IMPORT_CSV_EXISTING_PROMPTS)
        return ExistingPromptPolicy(self.IMPORT_JSON_EXISTING_PROMPTS)


# Instantiate the settings
settings = Settings()

logger.info(f"Database URL: {settings.DATABASE_URL}")
logger.info(f"Debug logging enabled: {settings.DEBUG}")

# --- Logging Configuration ---
LOG_DIR = os.getenv("PROMPTKEEPER_LOG_DIR", "")  # Empty disables file logging
LOG_LEVEL = os.getenv("PROMPTKEEPER_LOG_LEVEL", "DEBUG" if settings.DEBUG else "INFO").upper()
LOG_FILE_NAME = os.getenv("PROMPTKEEPER_LOG_FILE", "promptkeeper.log")
HISTORY_LOG_FILE_NAME = os.getenv("PROMPTKEEPER_HISTORY_LOG_FILE", "history.jsonl")
LOG_FORMAT = os.getenv(
    "PROMPTKEEPER_LOG_FORMAT",
    "%(asctime)s - %(name)s - %(levelname)s - [%(module)s:%(funcName)s:%(lineno)d] - %(message)s"
)

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,  # Important to not disable loggers from libraries
    "formatters": {
        "standard": {
            "format": LOG_FORMAT,
        },
    },
    "handlers": {
        "console": {
            "level": LOG_LEVEL,
            "formatter": "standard",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,
    },
    "loggers": {
        "httpx": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
        "sqlalchemy.engine": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
}


def ensure_directories_exist():
    """Creates LOG_DIR when file logging is configured."""
    if LOG_DIR and not os.path.exists(LOG_DIR):
        os.makedirs(LOG_DIR, exist_ok=True)
        logger.info(f"Created log directory: {os.path.abspath(LOG_DIR)}")
