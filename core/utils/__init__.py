"""
Core Utilities Package

This package contains utility functions and helpers used throughout the application.

Modules:
    - time: Timestamp conversion and date-string helpers
"""

from core.utils.time import to_utc_datetime, current_utc_datetime, date_string

__all__ = ["to_utc_datetime", "current_utc_datetime", "date_string"]
