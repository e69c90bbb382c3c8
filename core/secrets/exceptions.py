"""Error taxonomy for secret synchronisation.

Every error aborts the current sync cycle. The ``reason`` attribute is what
ends up in the status condition of the ExternalSecret.
"""


class SecretSyncError(Exception):
    """Base class for all errors raised during a sync cycle."""

    reason = "SyncFailed"


class AuthError(SecretSyncError):
    """Raised when credentials cannot be looked up or exchanged."""

    reason = "AuthError"


class BackendError(SecretSyncError):
    """Raised when a secret backend call fails or returns unusable data."""

    reason = "BackendError"


class SecretNotFoundError(BackendError):
    """Raised when a secret, or a property inside it, does not exist."""

    reason = "SecretNotFound"


class MergeError(SecretSyncError):
    """Raised when a template cannot be parsed or overlaid."""

    reason = "MergeError"


class UpsertError(SecretSyncError):
    """Raised when the target secret cannot be written."""

    reason = "UpsertError"
