"""
Utility modules for the Vocalis backend.

This package contains shared utilities used across the application:
- clock: Naive UTC timestamps
- logging_config: Named structured loggers
- websocket: Realtime hub for live client connections
"""

from backend.src.utils.clock import utcnow

__all__ = [
    "utcnow",
]
