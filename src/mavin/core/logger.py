"""Logger module: RichHandler console output plus non-blocking queue-based file logging.

Features:

1.  **Rich Console Output:** ``rich.logging.RichHandler`` with a shared ``Console`` for colorized output.
2.  **Non-Blocking File Logging:** ``QueueHandler`` + ``QueueListener`` keep file I/O off the event loop thread.
3.  **Two Injected Loggers:** every component receives a ``console_logger`` (progress/info) and an
    ``error_logger`` (warnings/errors) instead of reaching for module globals.
4.  **Compact File Format:** ``CompactFormatter`` abbreviates levels for dense log files.
5.  **Fallback:** ``get_loggers`` never raises; on setup failure it returns basic stream loggers.
"""

from __future__ import annotations

import logging
import queue
import sys
import traceback
from logging.handlers import QueueHandler, QueueListener
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from mavin.core.models.settings import AppConfig

__all__ = [
    "LEVEL_ABBREV",
    "CompactFormatter",
    "LogFormat",
    "Loggable",
    "LoggerFilter",
    "SafeQueueListener",
    "create_console_logger",
    "create_fallback_loggers",
    "ensure_directory",
    "get_full_log_path",
    "get_log_levels_from_config",
    "get_loggers",
    "get_shared_console",
    "setup_queue_logging",
]

# Module-level shared console container (avoids global statement)
_console_holder: dict[str, Console] = {}

LEVEL_ABBREV = {
    "DEBUG": "D",
    "INFO": "I",
    "WARNING": "W",
    "ERROR": "E",
    "CRITICAL": "C",
}

CONSOLE_LOGGER_NAME = "mavin.console"
ERROR_LOGGER_NAME = "mavin.error"
MAIN_LOGGER_NAME = "mavin.main"


def get_shared_console() -> Console:
    """Get or create the shared Rich console instance.

    All Rich output (logging, CLI tables) should use this single Console
    instance to prevent output interleaving issues.

    Returns:
        The shared Console instance.

    """
    if "console" not in _console_holder:
        _console_holder["console"] = Console()
    return _console_holder["console"]


class SafeQueueListener(QueueListener):
    """A QueueListener wrapper that safely handles repeated stop() calls."""

    def stop(self) -> None:
        """Stop the listener thread, tolerating an already-stopped listener."""
        try:
            if getattr(self, "_thread", None) is not None:
                super().stop()
        except (AttributeError, RuntimeError, TypeError) as e:
            print(f"Warning: Error stopping QueueListener: {e}", file=sys.stderr)


class LogFormat:
    """Rich markup helpers for consistent log formatting.

    Example:
        from mavin.core.logger import LogFormat as LF
        logger.info("Initializing %s...", LF.entity("DeviceCache"))
        logger.info("Loaded %s entries", LF.number(100))
    """

    @staticmethod
    def entity(name: str) -> str:
        """Format entity/class name with yellow highlighting."""
        return f"[yellow]{name}[/yellow]"

    @staticmethod
    def file(name: str) -> str:
        """Format filename with cyan highlighting."""
        return f"[cyan]{name}[/cyan]"

    @staticmethod
    def number(value: float) -> str:
        """Format numbers with bright white highlighting."""
        return f"[bright_white]{value}[/bright_white]"

    @staticmethod
    def success(text: str) -> str:
        return f"[green]{text}[/green]"

    @staticmethod
    def error(text: str) -> str:
        return f"[red]{text}[/red]"

    @staticmethod
    def duration(seconds: float) -> str:
        """Format duration with dim styling."""
        return f"[dim]{seconds:.1f}s[/dim]"

    @staticmethod
    def label(text: str) -> str:
        return f"[bold]{text}[/bold]"


class LoggerFilter:
    """Filter that only allows records from specific logger names."""

    def __init__(self, allowed_loggers: list[str]) -> None:
        """Initialize filter with allowed logger names.

        Args:
            allowed_loggers: Logger names that should pass the filter.
                Child loggers (e.g., "mavin.main.child") also pass if the parent is allowed.

        """
        self.allowed_loggers = set(allowed_loggers)

    def filter(self, record: logging.LogRecord) -> bool:
        """Return True when the record comes from an allowed logger or one of its children."""
        if record.name in self.allowed_loggers:
            return True
        return any(record.name.startswith(f"{name}.") for name in self.allowed_loggers)


class CompactFormatter(logging.Formatter):
    """Compact file formatter: abbreviated level names and short timestamps.

    Rich markup used by console messages is stripped so file logs stay plain.
    """

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str = "%H:%M:%S",
        style: Literal["%", "{", "$"] = "%",
    ) -> None:
        """Initialize the CompactFormatter."""
        default_fmt = "%(asctime)s %(levelname)s [%(name)s] %(module)s:%(lineno)d - %(message)s"
        super().__init__(fmt if fmt is not None else default_fmt, datefmt, style)

    def format(self, record: logging.LogRecord) -> str:
        """Format the record with an abbreviated level name, restoring the record afterwards."""
        original_levelname = record.levelname
        record.levelname = LEVEL_ABBREV.get(original_levelname, original_levelname[:1])
        try:
            formatted = super().format(record)
        finally:
            record.levelname = original_levelname
        return _strip_markup(formatted)


def _strip_markup(text: str) -> str:
    """Remove the Rich markup tags produced by ``LogFormat``."""
    for tag in ("yellow", "cyan", "bright_white", "green", "red", "dim", "bold"):
        text = text.replace(f"[{tag}]", "").replace(f"[/{tag}]", "")
    return text


class Loggable:
    """Mixin providing ``console_logger`` and ``error_logger`` attributes.

    When no logger is injected the component logs to its module logger,
    which stays silent under the package ``NullHandler`` until the
    application configures logging.
    """

    def __init__(
        self,
        console_logger: logging.Logger | None = None,
        error_logger: logging.Logger | None = None,
    ) -> None:
        """Store the provided loggers, defaulting to the module logger."""
        module_logger = logging.getLogger(type(self).__module__)
        self.console_logger = console_logger or module_logger
        self.error_logger = error_logger or module_logger


def ensure_directory(path: str, error_logger: logging.Logger | None = None) -> None:
    """Ensure that the given directory path exists, creating it if necessary."""
    try:
        if path and not Path(path).exists():
            Path(path).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        if error_logger:
            error_logger.exception("Error creating directory %s", path)
        else:
            print(f"ERROR: Error creating directory {path}: {e}", file=sys.stderr)


def get_full_log_path(config: AppConfig, relative_path: str) -> str:
    """Resolve a log file path under ``logging.logs_base_dir`` and create its directory."""
    full_path = Path(config.logging.logs_base_dir).expanduser() / relative_path
    ensure_directory(str(full_path.parent))
    return str(full_path)


def get_log_levels_from_config(config: AppConfig) -> dict[str, int]:
    """Map the ``logging.levels`` section to ``logging`` level constants.

    Returns:
        Dictionary with ``"console"`` and ``"main_file"`` keys.

    """
    levels = config.logging.levels
    return {
        "console": logging.getLevelNamesMapping().get(str(levels.console), logging.INFO),
        "main_file": logging.getLevelNamesMapping().get(str(levels.main_file), logging.INFO),
    }


def create_console_logger(level: int) -> logging.Logger:
    """Create and configure the console logger with RichHandler.

    Only adds a handler if the logger has none yet, so repeated calls are safe.

    Returns:
        Configured console logger instance with RichHandler attached.

    """
    console_logger = logging.getLogger(CONSOLE_LOGGER_NAME)
    if not console_logger.handlers:
        handler = RichHandler(
            level=level,
            console=get_shared_console(),
            show_path=False,
            enable_link_path=False,
            log_time_format="%H:%M:%S",
            markup=True,
        )
        console_logger.addHandler(handler)
        console_logger.setLevel(level)
        console_logger.propagate = False
    return console_logger


def setup_queue_logging(
    levels: dict[str, int],
    main_log_path: str,
) -> tuple[logging.Logger, logging.Logger, SafeQueueListener]:
    """Set up queue-based file logging and return ``(main_logger, error_logger, listener)``."""
    file_formatter = CompactFormatter(datefmt="%Y-%m-%d %H:%M:%S")

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(-1)

    main_handler = logging.FileHandler(main_log_path, encoding="utf-8")
    main_handler.setFormatter(file_formatter)
    main_handler.setLevel(levels["main_file"])
    main_handler.addFilter(LoggerFilter([MAIN_LOGGER_NAME, ERROR_LOGGER_NAME, CONSOLE_LOGGER_NAME, "config"]))

    listener = SafeQueueListener(log_queue, main_handler, respect_handler_level=True)
    listener.start()

    queue_handler = QueueHandler(log_queue)

    def setup_logger(logger_name: str, log_level: int) -> logging.Logger:
        logger = logging.getLogger(logger_name)
        if queue_handler not in logger.handlers:
            logger.addHandler(queue_handler)
        if logger.level == logging.NOTSET or logger.level > log_level:
            logger.setLevel(log_level)
        logger.propagate = False
        return logger

    main_logger = setup_logger(MAIN_LOGGER_NAME, levels["main_file"])
    error_logger = setup_logger(ERROR_LOGGER_NAME, levels["main_file"])
    setup_logger("config", levels["main_file"])

    # Console messages also land in the main log file
    console_logger = logging.getLogger(CONSOLE_LOGGER_NAME)
    if queue_handler not in console_logger.handlers:
        console_logger.addHandler(queue_handler)

    return main_logger, error_logger, listener


def get_loggers(config: AppConfig) -> tuple[logging.Logger, logging.Logger, SafeQueueListener | None]:
    """Create the console and error loggers with non-blocking file output.

    Note:
        This function never raises. On setup failure it returns fallback
        loggers with basic StreamHandler configuration.

    Returns:
        Tuple of (console_logger, error_logger, listener). Listener is ``None`` on failure.

    """
    try:
        levels = get_log_levels_from_config(config)
        console_logger = create_console_logger(levels["console"])
        main_log_path = get_full_log_path(config, config.logging.main_log_file)
        _, error_logger, listener = setup_queue_logging(levels, main_log_path)
        # Errors are shown on the console as well as written to file
        for handler in console_logger.handlers:
            if isinstance(handler, RichHandler) and handler not in error_logger.handlers:
                error_logger.addHandler(handler)
    except (OSError, ValueError, AttributeError, TypeError) as e:
        return create_fallback_loggers(e)

    console_logger.debug("Logging setup with QueueListener and RichHandler complete.")
    return console_logger, error_logger, listener


def create_fallback_loggers(e: Exception) -> tuple[logging.Logger, logging.Logger, None]:
    """Create basic stream loggers when the main logger setup fails.

    Args:
        e: The exception that caused the main setup to fail.

    Returns:
        Tuple of (console_logger, error_logger, None).

    """
    print(f"FATAL ERROR: Failed to configure logging with QueueListener and RichHandler: {e}", file=sys.stderr)
    traceback.print_exc(file=sys.stderr)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    logging.critical("Fallback basic logging configured due to error: %s", e)

    console_fallback = logging.getLogger("mavin.console_fallback")
    error_fallback = logging.getLogger("mavin.error_fallback")
    if not console_fallback.handlers:
        console_fallback.addHandler(logging.StreamHandler(sys.stdout))
    if not error_fallback.handlers:
        error_fallback.addHandler(logging.StreamHandler(sys.stderr))
    return console_fallback, error_fallback, None
