"""Custom exceptions for Emporium."""


class EmporiumError(Exception):
    """Base exception for all Emporium errors."""

    pass


class ConfigurationError(EmporiumError):
    """Error in configuration or settings."""

    pass
