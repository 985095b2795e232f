from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class Level(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"
    WARNING = "warning"


class Notifier(Protocol):
    """Port toward the presentation layer (toasts and undo prompts)."""

    def notify(self, level: Level, message: str) -> None:
        ...

    def offer_undo(self, message: str, undo: Callable[[], bool], duration: float) -> None:
        ...


_LOG_LEVELS = {
    Level.SUCCESS: logging.INFO,
    Level.INFO: logging.INFO,
    Level.WARNING: logging.WARNING,
    Level.ERROR: logging.ERROR,
}


class LoggingNotifier:
    """Notifier that writes every event to the module logger."""

    def notify(self, level: Level, message: str) -> None:
        logger.log(_LOG_LEVELS.get(level, logging.INFO), "[%s] %s", level.value, message)

    def offer_undo(self, message: str, undo: Callable[[], bool], duration: float) -> None:
        logger.info("[undo %.1fs] %s", duration, message)
