"""Configuration and security exceptions: settings, webhook signatures."""

from typing import Any

from .base import CodeFamilyError


class ConfigurationError(CodeFamilyError):
    """Base class for configuration-related errors."""

    pass


class InvalidConfigError(ConfigurationError):
    """Raised when configuration values are invalid."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            f"Invalid configuration for {key}: {value}",
            details={"key": key, "value": str(value), "reason": reason},
        )
        self.key = key
        self.value = value
        self.reason = reason


class SignatureError(ConfigurationError):
    """Raised when a webhook payload fails origin signature validation."""

    def __init__(self, reason: str):
        super().__init__(f"Webhook signature rejected: {reason}", details={"reason": reason})
        self.reason = reason
