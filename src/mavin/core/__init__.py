"""Core module - configuration, logging, records and key utilities."""

from mavin.core.config import load_config
from mavin.core.exceptions import ConfigurationError
from mavin.core.logger import get_loggers

__all__ = [
    "ConfigurationError",
    "get_loggers",
    "load_config",
]
