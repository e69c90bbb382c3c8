"""Abstract base class for secret backend clients."""

import json
from abc import ABC, abstractmethod
from typing import Dict

from core.schema.sync_request import RemoteRef
from core.secrets.exceptions import BackendError, SecretNotFoundError


class SecretBackend(ABC):
    """
    Abstract base class that all backend clients must implement.

    This ensures a consistent interface across:
    - HashiCorp Vault KV (v1 and v2)
    - AWS Secrets Manager
    - AWS Systems Manager Parameter Store

    Concrete clients are registered against a store provider type with
    ``@register_backend`` and built through ``from_store``.
    """

    #: Short name used in logs and metrics labels
    name = "base"

    @classmethod
    @abstractmethod
    def from_store(cls, provider, context) -> "SecretBackend":
        """
        Build an authenticated client for a store provider block.

        Args:
            provider: The provider dataclass this backend is registered for
            context: ``core.secrets.resolver.ResolveContext`` with credential
                lookup and session factories

        Raises:
            AuthError: If credentials cannot be resolved or exchanged
        """
        pass

    @abstractmethod
    def get_secret(self, ref: RemoteRef) -> bytes:
        """
        Retrieve a single secret value.

        Raises:
            SecretNotFoundError: If the secret or property doesn't exist
            BackendError: If the backend fails or returns unusable data
        """
        pass

    @abstractmethod
    def get_secret_map(self, ref: RemoteRef) -> Dict[str, bytes]:
        """
        Retrieve a secret that holds a flat JSON object, key by key.

        Raises:
            SecretNotFoundError: If the secret doesn't exist
            BackendError: If the value is not a JSON object
        """
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """
        Check if backend is accessible.

        Returns:
            True if healthy, False otherwise
        """
        pass


def to_bytes(value) -> bytes:
    """Encode a decoded JSON value as secret bytes.

    Strings are taken verbatim, anything else is re-serialised as JSON.
    """
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode()
    return json.dumps(value, separators=(",", ":")).encode()


def decode_json_map(raw: str, where: str) -> dict:
    """
    Parse a fetched string as a flat JSON object.

    Raises:
        BackendError: If the value is not valid JSON or not an object
    """
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise BackendError(f"could not unmarshal json from {where}: {e}") from e
    if not isinstance(decoded, dict):
        raise BackendError(
            f"could not unmarshal json from {where}: expected an object, "
            f"got {type(decoded).__name__}"
        )
    return decoded


def extract_property(values: dict, prop: str, where: str) -> bytes:
    """Pick ``prop`` out of a decoded secret map."""
    if prop not in values:
        raise SecretNotFoundError(f"property {prop} in {where} does not exist")
    return to_bytes(values[prop])


def to_byte_map(values: dict) -> Dict[str, bytes]:
    return {key: to_bytes(value) for key, value in values.items()}
