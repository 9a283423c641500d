"""Utility modules for visc.

Provides:
- Structured logging configuration
"""

from .logging import configure_from_settings, configure_logging, get_logger, log_operation

__all__ = [
    "configure_from_settings",
    "configure_logging",
    "get_logger",
    "log_operation",
]
