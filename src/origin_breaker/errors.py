"""Shared error types for origin_breaker."""


class ConfigurationError(ValueError):
    """Raised at construction time for malformed breaker configuration."""
