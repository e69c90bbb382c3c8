"""Shared fixtures for unit tests."""

import json

import pytest

from core.secrets.base import SecretBackend, extract_property, to_byte_map, to_bytes
from core.secrets.exceptions import SecretNotFoundError


class FakeBackend(SecretBackend):
    """In-memory backend: ``secrets`` maps path -> dict (or raw string)."""

    name = "fake"

    def __init__(self, secrets=None):
        self.secrets = secrets or {}
        self.calls = []

    @classmethod
    def from_store(cls, provider, context):
        return cls()

    def _lookup(self, ref):
        self.calls.append(ref.path)
        if ref.path not in self.secrets:
            raise SecretNotFoundError(f"secret {ref.path!r} does not exist")
        return self.secrets[ref.path]

    def get_secret(self, ref):
        value = self._lookup(ref)
        if ref.property is None:
            return to_bytes(value if isinstance(value, str) else json.dumps(value))
        return extract_property(value, ref.property, ref.path)

    def get_secret_map(self, ref):
        return to_byte_map(self._lookup(ref))

    def health_check(self):
        return True


@pytest.fixture
def fake_backend():
    return FakeBackend(
        {
            "app/db": {"a": "1", "b": "2"},
            "app/override": {"b": "3"},
        }
    )


@pytest.fixture
def vault_store_manifest():
    return {
        "apiVersion": "secret-manager.itscontained.io/v1alpha1",
        "kind": "SecretStore",
        "metadata": {"name": "vault", "namespace": "default"},
        "spec": {
            "vault": {
                "server": "http://vault:8200",
                "path": "secret",
                "auth": {"tokenSecretRef": {"name": "vault-token", "key": "token"}},
            }
        },
    }


@pytest.fixture
def external_secret_manifest():
    return {
        "apiVersion": "secret-manager.itscontained.io/v1alpha1",
        "kind": "ExternalSecret",
        "metadata": {
            "name": "db-creds",
            "namespace": "default",
            "uid": "1234-abcd",
            "labels": {"app": "billing"},
        },
        "spec": {
            "storeRef": {"name": "vault"},
            "refreshInterval": "5m",
            "dataFrom": [{"path": "app/db"}],
            "data": [
                {"secretKey": "b", "remoteRef": {"path": "app/override", "property": "b"}}
            ],
        },
    }
