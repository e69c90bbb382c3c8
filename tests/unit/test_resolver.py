"""Tests for store resolution."""

from unittest.mock import MagicMock

import pytest

from core.config.exceptions import ConfigValidationError
from core.schema.store import (
    AWSParameterStoreProvider,
    AWSSecretsManagerProvider,
    SecretKeySelector,
    StoreConfig,
    TokenAuth,
    VaultProvider,
)
from core.secrets.parameterstore_backend import ParameterStoreBackend
from core.secrets.registry import BACKENDS, get_backend, register_backend
from core.secrets.resolver import StoreResolver
from core.secrets.secretsmanager_backend import SecretsManagerBackend
from core.secrets.vault_backend import VaultBackend

VAULT = VaultProvider(
    server="http://vault:8200",
    path="secret",
    auth=TokenAuth(secret_ref=SecretKeySelector(name="vault-token", key="token")),
)


def make_credentials():
    credentials = MagicMock()
    credentials.get_secret_data.return_value = {"token": b"s.root"}
    return credentials


class TestStoreResolver:
    """Tests for StoreResolver.resolve."""

    def test_resolves_vault(self):
        # Arrange
        factory = MagicMock()
        resolver = StoreResolver(make_credentials(), vault_client_factory=factory)
        store = StoreConfig(name="vault", provider=VAULT, namespace="default")

        # Act
        client = resolver.resolve(store)

        # Assert
        assert isinstance(client, VaultBackend)
        assert client.name == "vault"
        factory.assert_called_once()

    def test_store_namespace_used_for_credentials(self):
        credentials = make_credentials()
        resolver = StoreResolver(credentials, vault_client_factory=MagicMock())
        store = StoreConfig(name="vault", provider=VAULT, namespace="team-a")

        resolver.resolve(store, namespace="other")

        credentials.get_secret_data.assert_called_once_with("team-a", "vault-token")

    def test_cluster_store_uses_request_namespace(self):
        credentials = make_credentials()
        resolver = StoreResolver(credentials, vault_client_factory=MagicMock())
        store = StoreConfig(name="vault", provider=VAULT, kind="ClusterSecretStore")

        resolver.resolve(store, namespace="team-b")

        credentials.get_secret_data.assert_called_once_with("team-b", "vault-token")

    @pytest.mark.parametrize(
        "provider,backend",
        [
            (AWSSecretsManagerProvider(region="eu-west-1"), SecretsManagerBackend),
            (AWSParameterStoreProvider(region="eu-west-1"), ParameterStoreBackend),
        ],
    )
    def test_resolves_aws(self, provider, backend):
        session_factory = MagicMock()
        resolver = StoreResolver(MagicMock(), session_factory=session_factory, session_name="ops")

        client = resolver.resolve(StoreConfig(name="aws", provider=provider))

        assert isinstance(client, backend)
        assert session_factory.call_args.kwargs["session_name"] == "ops"

    def test_missing_provider(self):
        resolver = StoreResolver(MagicMock())

        with pytest.raises(ConfigValidationError) as exc_info:
            resolver.resolve(StoreConfig(name="empty", provider=None))

        assert "does not have a valid client" in str(exc_info.value)

    def test_unregistered_provider(self):
        resolver = StoreResolver(MagicMock())

        with pytest.raises(ConfigValidationError):
            resolver.resolve(StoreConfig(name="odd", provider=object()))


class TestRegistry:
    """Tests for the backend registry."""

    def test_all_providers_registered(self):
        assert get_backend(VaultProvider) is VaultBackend
        assert get_backend(AWSSecretsManagerProvider) is SecretsManagerBackend
        assert get_backend(AWSParameterStoreProvider) is ParameterStoreBackend

    def test_unknown_provider_raises(self):
        with pytest.raises(KeyError) as exc_info:
            get_backend(dict)

        assert "Available" in str(exc_info.value)

    def test_duplicate_registration_raises(self):
        with pytest.raises(ValueError):

            @register_backend(VaultProvider)
            class OtherVault:
                pass

        assert BACKENDS[VaultProvider] is VaultBackend
