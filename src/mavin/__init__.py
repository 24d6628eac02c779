"""Mavin metadata resolution and caching subsystem."""

import logging

# Library default: stay silent until the application configures handlers.
logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "1.0.0"
