"""Tests for store manifest parsing."""

import base64

import pytest

from core.config.exceptions import ConfigValidationError
from core.schema.store import (
    AppRoleAuth,
    AWSParameterStoreProvider,
    AWSSecretsManagerProvider,
    KubernetesAuth,
    SecretKeySelector,
    SecretRef,
    StoreConfig,
    TokenAuth,
    VaultKVVersion,
    VaultProvider,
)

PEM = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"


def store(spec, kind="SecretStore", namespace="default"):
    metadata = {"name": "my-store"}
    if namespace:
        metadata["namespace"] = namespace
    return {"kind": kind, "metadata": metadata, "spec": spec}


def vault_spec(auth=None, **extra):
    block = {
        "server": "https://vault:8200",
        "path": "secret",
        "auth": auth or {"tokenSecretRef": {"name": "vault-token", "key": "token"}},
    }
    block.update(extra)
    return {"vault": block}


class TestVaultStore:
    """Tests for vault provider blocks."""

    def test_token_auth(self):
        # Act
        config = StoreConfig.from_manifest(store(vault_spec()))

        # Assert
        assert config.name == "my-store"
        assert config.namespace == "default"
        assert isinstance(config.provider, VaultProvider)
        assert config.provider.version == VaultKVVersion.V2
        assert config.provider.auth == TokenAuth(
            secret_ref=SecretKeySelector(name="vault-token", key="token")
        )

    def test_app_role_auth_defaults_mount(self):
        auth = {"appRole": {"roleId": "role-1", "secretRef": {"name": "ar", "key": "secret-id"}}}

        config = StoreConfig.from_manifest(store(vault_spec(auth)))

        assert config.provider.auth == AppRoleAuth(
            role_id="role-1",
            secret_ref=SecretKeySelector(name="ar", key="secret-id"),
            path="approle",
        )

    def test_kubernetes_auth_custom_mount(self):
        auth = {
            "kubernetes": {
                "role": "reader",
                "mountPath": "k8s-prod",
                "secretRef": {"name": "sa-token", "key": "token", "namespace": "vault"},
            }
        }

        config = StoreConfig.from_manifest(store(vault_spec(auth)))

        assert config.provider.auth == KubernetesAuth(
            role="reader",
            secret_ref=SecretKeySelector(name="sa-token", key="token", namespace="vault"),
            mount_path="k8s-prod",
        )

    def test_multiple_auth_methods_rejected(self):
        auth = {
            "tokenSecretRef": {"name": "t", "key": "token"},
            "appRole": {"roleId": "r", "secretRef": {"name": "a", "key": "k"}},
        }

        with pytest.raises(ConfigValidationError) as exc_info:
            StoreConfig.from_manifest(store(vault_spec(auth)))

        assert "exactly one" in str(exc_info.value)

    def test_missing_auth_rejected(self):
        spec = vault_spec()
        spec["vault"]["auth"] = {}

        with pytest.raises(ConfigValidationError):
            StoreConfig.from_manifest(store(spec))

    def test_missing_server_rejected(self):
        spec = vault_spec()
        del spec["vault"]["server"]

        with pytest.raises(ConfigValidationError) as exc_info:
            StoreConfig.from_manifest(store(spec))

        assert "server" in str(exc_info.value)

    def test_kv_v1_and_namespace(self):
        config = StoreConfig.from_manifest(store(vault_spec(version="v1", namespace="team-a")))

        assert config.provider.version == VaultKVVersion.V1
        assert config.provider.namespace == "team-a"

    def test_unsupported_version_rejected(self):
        with pytest.raises(ConfigValidationError):
            StoreConfig.from_manifest(store(vault_spec(version="v3")))

    def test_ca_bundle_accepts_pem_and_base64(self):
        pem = StoreConfig.from_manifest(store(vault_spec(caBundle=PEM)))
        encoded = StoreConfig.from_manifest(
            store(vault_spec(caBundle=base64.b64encode(PEM.encode()).decode()))
        )

        assert pem.provider.ca_bundle == PEM.encode()
        assert encoded.provider.ca_bundle == PEM.encode()

    def test_ca_bundle_garbage_rejected(self):
        with pytest.raises(ConfigValidationError):
            StoreConfig.from_manifest(store(vault_spec(caBundle="not base64!!")))


class TestAWSStores:
    """Tests for AWS provider blocks."""

    def test_secrets_manager_with_credentials(self):
        spec = {
            "AWSSecretManager": {
                "region": "eu-west-1",
                "role": "arn:aws:iam::123:role/reader",
                "credentials": {"secretRef": {"name": "aws-creds", "namespace": "infra"}},
            }
        }

        config = StoreConfig.from_manifest(store(spec))

        assert config.provider == AWSSecretsManagerProvider(
            region="eu-west-1",
            role="arn:aws:iam::123:role/reader",
            credentials_ref=SecretRef(name="aws-creds", namespace="infra"),
        )

    def test_credentials_ref_spelling_is_accepted(self):
        spec = {"AWSSecretManager": {"credentialsRef": {"secretRef": {"name": "aws-creds"}}}}

        config = StoreConfig.from_manifest(store(spec))

        assert config.provider.credentials_ref == SecretRef(name="aws-creds")

    def test_ambient_credentials(self):
        config = StoreConfig.from_manifest(store({"AWSSecretManager": {}}))

        assert config.provider == AWSSecretsManagerProvider()

    def test_parameter_store_prefix(self):
        spec = {"AWSParameterStore": {"region": "us-east-1", "parameter": "/prod/app"}}

        config = StoreConfig.from_manifest(store(spec))

        assert isinstance(config.provider, AWSParameterStoreProvider)
        assert config.provider.parameter == "/prod/app"


class TestStoreConfig:
    """Tests for provider selection."""

    def test_no_provider_rejected(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            StoreConfig.from_manifest(store({}))

        assert "does not have a valid client" in str(exc_info.value)

    def test_two_providers_rejected(self):
        spec = vault_spec()
        spec["AWSSecretManager"] = {}

        with pytest.raises(ConfigValidationError) as exc_info:
            StoreConfig.from_manifest(store(spec))

        assert "more than one provider" in str(exc_info.value)

    def test_cluster_store(self):
        config = StoreConfig.from_manifest(
            store(vault_spec(), kind="ClusterSecretStore", namespace=None)
        )

        assert config.cluster_scoped is True
        assert config.namespace is None
