"""
Configuration module for the Vocalis backend.

Provides centralized configuration for:
- SMTP transport used by the email channel
- Notification delivery worker tuning
- Queue administration access
"""

from backend.src.config.settings import AppSettings, get_settings

__all__ = [
    "AppSettings",
    "get_settings",
]
