"""Store resolver - turns a store config into an authenticated backend client."""

import logging
from typing import Callable, Optional

# Import backends to trigger registration
from core.secrets import (  # noqa: F401
    parameterstore_backend,
    secretsmanager_backend,
    vault_backend,
)
from core.config.exceptions import ConfigValidationError
from core.schema.store import StoreConfig
from core.secrets.base import SecretBackend
from core.secrets.context import DEFAULT_SESSION_NAME, ResolveContext
from core.secrets.registry import get_backend

logger = logging.getLogger(__name__)


class StoreResolver:
    """
    Builds the backend client matching the provider a store configures.

    Usage:
        resolver = StoreResolver(credentials=object_store)
        client = resolver.resolve(store, namespace="team-a")
        value = client.get_secret(RemoteRef(path="app/db", property="password"))
    """

    def __init__(
        self,
        credentials,
        session_factory: Optional[Callable] = None,
        vault_client_factory: Optional[Callable] = None,
        session_name: str = DEFAULT_SESSION_NAME,
    ):
        """
        Args:
            credentials: Source of credential secrets
                (anything with ``get_secret_data(namespace, name)``)
            session_factory: Override for the AWS session provider
            vault_client_factory: Override for ``hvac.Client``
            session_name: STS role session name
        """
        self.credentials = credentials
        self.session_factory = session_factory
        self.vault_client_factory = vault_client_factory
        self.session_name = session_name

    def resolve(self, store: StoreConfig, namespace: Optional[str] = None) -> SecretBackend:
        """
        Resolve a backend client for ``store``.

        Args:
            store: Parsed store config
            namespace: Namespace of the requesting ExternalSecret, used for
                credential references that don't name one

        Raises:
            ConfigValidationError: If the store has no usable provider
            AuthError: If the backend cannot authenticate
        """
        provider = store.provider
        if provider is None:
            raise ConfigValidationError(
                f"{store.kind} {store.name!r} does not have a valid client"
            )

        try:
            backend_cls = get_backend(type(provider))
        except KeyError as e:
            raise ConfigValidationError(
                f"{store.kind} {store.name!r} does not have a valid client: {e}"
            ) from e

        context = ResolveContext(
            credentials=self.credentials,
            namespace=store.namespace or namespace,
            session_factory=self.session_factory,
            vault_client_factory=self.vault_client_factory,
            session_name=self.session_name,
        )
        client = backend_cls.from_store(provider, context)
        logger.debug(f"Resolved {backend_cls.name} client for {store.kind} '{store.name}'")
        return client
