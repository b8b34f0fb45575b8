"""
Infrastructure module - logging setup shared by the API and the CLI.
"""

from .logging_config import DailyRotatingFileHandler, setup_logging

__all__ = [
    "DailyRotatingFileHandler",
    "setup_logging",
]
