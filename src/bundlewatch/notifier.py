"""Pluggable notification protocol for bundlewatch.

Decouples the watch session from the logging implementation. Can be replaced
with custom handlers for testing, embedding, or UI integration.
"""

import logging
from typing import Protocol

logger = logging.getLogger("bundlewatch")


class WatchNotifier(Protocol):
    """Protocol for user-facing messages - host can provide custom implementation."""

    def info(self, message: str) -> None:
        """Informational message."""
        ...

    def warning(self, message: str) -> None:
        """Warning message."""
        ...

    def error(self, message: str) -> None:
        """Error message."""
        ...


class NoOpNotifier:
    """Silent no-op notifier - default for embedded use."""

    def info(self, msg: str) -> None:
        pass

    def warning(self, msg: str) -> None:
        pass

    def error(self, msg: str) -> None:
        pass


class LoggingNotifier:
    """Implementation using stdlib logging."""

    def info(self, msg: str) -> None:
        logger.info(msg)

    def warning(self, msg: str) -> None:
        logger.warning(msg)

    def error(self, msg: str) -> None:
        logger.error(msg)


class RecordingNotifier:
    """Keeps every message, for tests and embedding hosts that render their own log."""

    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def info(self, msg: str) -> None:
        self.messages.append(("info", msg))

    def warning(self, msg: str) -> None:
        self.messages.append(("warning", msg))

    def error(self, msg: str) -> None:
        self.messages.append(("error", msg))
