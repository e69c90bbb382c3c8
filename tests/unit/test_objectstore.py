"""Tests for the in-memory object store."""

import base64

import pytest

from controller.objectstore import CREATED, UNCHANGED, UPDATED, InMemoryObjectStore


def secret(name="creds", namespace="default", **data):
    obj = {"apiVersion": "v1", "kind": "Secret", "metadata": {"name": name}}
    if namespace:
        obj["metadata"]["namespace"] = namespace
    obj["data"] = {k: base64.b64encode(v.encode()).decode() for k, v in data.items()}
    return obj


def set_data(**data):
    def mutate(obj):
        obj["data"] = dict(data)

    return mutate


class TestInMemoryObjectStore:
    """Tests for InMemoryObjectStore."""

    def test_add_defaults_namespace(self):
        store = InMemoryObjectStore([secret(namespace=None)])

        assert store.get("Secret", "default", "creds") is not None

    def test_get_returns_copy(self):
        store = InMemoryObjectStore([secret(token="x")])

        store.get("Secret", "default", "creds")["data"]["token"] = "changed"

        assert store.get("Secret", "default", "creds")["data"]["token"] != "changed"

    def test_get_missing(self):
        assert InMemoryObjectStore().get("Secret", "default", "nope") is None

    def test_create_update_unchanged(self):
        # Arrange
        store = InMemoryObjectStore()

        # Act & Assert
        assert store.create_or_update("Secret", "default", "s", set_data(a="MQ==")) == CREATED
        version = store.get("Secret", "default", "s")["metadata"]["resourceVersion"]

        assert store.create_or_update("Secret", "default", "s", set_data(a="MQ==")) == UNCHANGED
        assert store.get("Secret", "default", "s")["metadata"]["resourceVersion"] == version

        assert store.create_or_update("Secret", "default", "s", set_data(a="Mg==")) == UPDATED
        assert store.get("Secret", "default", "s")["metadata"]["resourceVersion"] != version

    def test_created_object_is_a_skeleton(self):
        store = InMemoryObjectStore()

        store.create_or_update("Secret", "team-a", "s", set_data())

        obj = store.get("Secret", "team-a", "s")
        assert obj["apiVersion"] == "v1"
        assert obj["metadata"]["namespace"] == "team-a"

    def test_failed_mutate_writes_nothing(self):
        store = InMemoryObjectStore([secret(token="x")])

        def broken(obj):
            obj["data"] = {}
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.create_or_update("Secret", "default", "creds", broken)

        assert store.get_secret_data("default", "creds") == {"token": b"x"}

    def test_cluster_scoped_ignores_namespace(self):
        store = InMemoryObjectStore(
            [{"kind": "ClusterSecretStore", "metadata": {"name": "global"}, "spec": {}}]
        )

        assert store.get("ClusterSecretStore", "any", "global") is not None
        assert store.get("ClusterSecretStore", None, "global") is not None

    def test_update_status(self):
        store = InMemoryObjectStore(
            [{"kind": "ExternalSecret", "metadata": {"name": "es", "namespace": "default"}}]
        )

        store.update_status("ExternalSecret", "default", "es", {"conditions": []})

        assert store.get("ExternalSecret", "default", "es")["status"] == {"conditions": []}

    def test_update_status_missing(self):
        with pytest.raises(KeyError):
            InMemoryObjectStore().update_status("ExternalSecret", "default", "es", {})

    def test_list_and_delete(self):
        store = InMemoryObjectStore([secret("a"), secret("b")])

        assert store.delete("Secret", "default", "a") is True
        assert store.delete("Secret", "default", "a") is False
        assert [o["metadata"]["name"] for o in store.list("Secret")] == ["b"]


class TestGetSecretData:
    """Tests for credential lookups through the store."""

    def test_decodes_data_and_string_data(self):
        obj = secret(token="abc")
        obj["stringData"] = {"plain": "text"}
        store = InMemoryObjectStore([obj])

        assert store.get_secret_data("default", "creds") == {"token": b"abc", "plain": b"text"}

    def test_missing_secret(self):
        assert InMemoryObjectStore().get_secret_data("default", "nope") is None
