from __future__ import annotations

import logging
import os
from typing import Optional

from .config_loader import EngineConfig

LOG_LEVEL_ENV = "CONTACT_IMPORT_LOG_LEVEL"
PACKAGE_LOGGER = "contact_import"


def _resolve_level(level_name: str) -> int:
    """Level name (any case) or number to a logging level; unknown names give INFO."""
    normalized = (level_name or "INFO").upper()
    if normalized.isdigit():
        return int(normalized)
    level = logging.getLevelName(normalized)
    return level if isinstance(level, int) else logging.INFO


def effective_level_name(config: EngineConfig, level_override: Optional[str] = None) -> str:
    """
    Pick the engine's log level. The first of these that is set wins:

    1. ``CONTACT_IMPORT_LOG_LEVEL`` environment variable
    2. ``level_override`` from the caller (the ``--log-level`` flag)
    3. ``config.logging.level`` from the YAML config
    4. ``WARNING``
    """
    return os.getenv(LOG_LEVEL_ENV) or level_override or config.logging.level or "WARNING"


def configure_logging(config: EngineConfig, level_override: Optional[str] = None) -> int:
    """Apply the engine's log level and return it.

    The ``contact_import`` loggers always follow the resolved level. The root
    logger is only set up when nothing else has configured it, so a host
    application embedding the engine keeps its own handlers and level.
    """
    level_value = _resolve_level(effective_level_name(config, level_override))
    logging.getLogger(PACKAGE_LOGGER).setLevel(level_value)

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(level=level_value, format=config.logging.format)
    return level_value
