"""Utility modules for Emporium."""

from emporium.utils.exceptions import (
    ConfigurationError,
    EmporiumError,
)

__all__ = [
    "ConfigurationError",
    "EmporiumError",
]
