"""Configuration-related exceptions."""

from core.secrets.exceptions import SecretSyncError


class ConfigError(SecretSyncError):
    """Base exception for config errors.

    Not retryable until the referenced configuration changes.
    """

    reason = "ConfigError"


class ConfigNotFoundError(ConfigError):
    """Raised when a config or manifest file doesn't exist."""

    pass


class ConfigParseError(ConfigError):
    """Raised when a config or manifest file has invalid YAML."""

    pass


class ConfigValidationError(ConfigError):
    """Raised when a store or request fails validation."""

    pass


class StoreNotFoundError(ConfigError):
    """Raised when the store referenced by an ExternalSecret is missing."""

    reason = "StoreNotFound"
