"""Recording logger used in place of the injected console/error loggers."""

from __future__ import annotations

import logging
from typing import Any


class MockLogger(logging.Logger):
    """Mock logger for testing with full logging.Logger compatibility."""

    def __init__(self, name: str = "mock") -> None:
        """Initialize mock logger."""
        super().__init__(name)
        self.info_messages: list[str] = []
        self.warning_messages: list[str] = []
        self.error_messages: list[str] = []
        self.debug_messages: list[str] = []
        self.critical_messages: list[str] = []
        self.exception_messages: list[str] = []

    @staticmethod
    def _format_message(message: str, *args: object) -> str:
        """Format message with args."""
        if args:
            try:
                return message % args
            except (TypeError, ValueError):
                return f"{message} {args}"
        return message

    def info(self, msg: object, *args: object, **kwargs: Any) -> None:
        self.info_messages.append(self._format_message(str(msg), *args))

    def warning(self, msg: object, *args: object, **kwargs: Any) -> None:
        self.warning_messages.append(self._format_message(str(msg), *args))

    def error(self, msg: object, *args: object, **kwargs: Any) -> None:
        self.error_messages.append(self._format_message(str(msg), *args))

    def debug(self, msg: object, *args: object, **kwargs: Any) -> None:
        self.debug_messages.append(self._format_message(str(msg), *args))

    def critical(self, msg: object, *args: object, **kwargs: Any) -> None:
        self.critical_messages.append(self._format_message(str(msg), *args))

    def exception(self, msg: object, *args: object, **kwargs: Any) -> None:
        """Mock exception logging (also recorded as an error)."""
        formatted = self._format_message(str(msg), *args)
        self.exception_messages.append(formatted)
        self.error_messages.append(formatted)
