"""Core utilities for the club management services.

This module exports commonly used utilities for easy importing:
    from core import get_logger, ServiceContext
"""

from core.context import ServiceContext
from core.logger import configure_logging, get_logger

__all__ = [
    "ServiceContext",
    "configure_logging",
    "get_logger",
]
