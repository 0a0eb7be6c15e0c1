"""
Core Utilities Package

This package contains utility functions and helpers used throughout the application.

Modules:
    - time: UTC datetime helpers and monotonic duration measurement
"""

from core.utils.time import current_utc_datetime, ensure_utc, monotonic_ms, elapsed_ms

__all__ = ["current_utc_datetime", "ensure_utc", "monotonic_ms", "elapsed_ms"]
