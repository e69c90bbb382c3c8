"""Everything a backend needs to authenticate while being built."""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from core.schema.store import SecretKeySelector, SecretRef
from core.secrets.exceptions import AuthError

logger = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "secret-manager"


@dataclass
class ResolveContext:
    """
    Credential lookup plus the factories backends use to open sessions.

    Attributes:
        credentials: Anything with ``get_secret_data(namespace, name)``
            returning a ``{key: bytes}`` mapping or ``None``
        namespace: Namespace used for references that don't name one
        session_factory: Builds an AWS session provider
            (see ``core.secrets.aws_session.SessionProvider``)
        vault_client_factory: Builds an ``hvac.Client``
        session_name: STS role session name
    """

    credentials: object
    namespace: Optional[str] = None
    session_factory: Optional[Callable] = None
    vault_client_factory: Optional[Callable] = None
    session_name: str = DEFAULT_SESSION_NAME

    def read_secret(self, ref: SecretRef) -> Dict[str, bytes]:
        """Fetch a whole credential secret."""
        namespace = ref.namespace or self.namespace
        try:
            data = self.credentials.get_secret_data(namespace, ref.name)
        except AuthError:
            raise
        except Exception as e:
            raise AuthError(f"unable to fetch secret '{namespace}/{ref.name}': {e}") from e
        if data is None:
            raise AuthError(f"unable to fetch secret '{namespace}/{ref.name}': not found")
        return data

    def read_key(self, selector: SecretKeySelector) -> str:
        """Fetch one key of a credential secret as text."""
        data = self.read_secret(SecretRef(name=selector.name, namespace=selector.namespace))
        if selector.key not in data:
            namespace = selector.namespace or self.namespace
            raise AuthError(
                f"no data for {selector.key!r} in secret '{namespace}/{selector.name}'"
            )
        value = data[selector.key]
        if isinstance(value, bytes):
            value = value.decode()
        logger.debug(f"Resolved credential key '{selector.key}' from secret '{selector.name}'")
        return value.strip()
