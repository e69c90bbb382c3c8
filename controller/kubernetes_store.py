"""Kubernetes-backed object store."""

import copy
from typing import Callable, Optional

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException

from controller.objectstore import (
    CREATED,
    SECRET_KIND,
    UNCHANGED,
    UPDATED,
    ObjectStore,
    skeleton,
)
from core.schema.store import CLUSTER_SECRET_STORE_KIND, SECRET_STORE_KIND
from core.schema.sync_request import EXTERNAL_SECRET_KIND
from core.secrets.exceptions import UpsertError
from core.utils.logging import get_logger

logger = get_logger(__name__)

CRD_GROUP = "secret-manager.itscontained.io"
CRD_VERSION = "v1alpha1"
CRD_PLURALS = {
    EXTERNAL_SECRET_KIND: "externalsecrets",
    SECRET_STORE_KIND: "secretstores",
    CLUSTER_SECRET_STORE_KIND: "clustersecretstores",
}


def load_kube_config() -> None:
    """In-cluster config when running in a pod, kubeconfig otherwise."""
    try:
        config.load_incluster_config()
        logger.info("Using in-cluster Kubernetes config")
    except ConfigException:
        config.load_kube_config()
        logger.info("Using local kubeconfig")


class KubernetesObjectStore(ObjectStore):
    """
    Object store over the Kubernetes API.

    ExternalSecrets and stores are custom objects; Secrets go through the
    core API. Only Secrets are ever written, only ExternalSecrets get
    status updates.

    Usage:
        load_kube_config()
        store = KubernetesObjectStore()
    """

    def __init__(self, core_api: Optional[client.CoreV1Api] = None,
                 custom_api: Optional[client.CustomObjectsApi] = None):
        self.core = core_api or client.CoreV1Api()
        self.custom = custom_api or client.CustomObjectsApi()

    def get(self, kind: str, namespace: Optional[str], name: str) -> Optional[dict]:
        try:
            if kind == SECRET_KIND:
                secret = self.core.read_namespaced_secret(name, namespace)
                obj = self.core.api_client.sanitize_for_serialization(secret)
                obj.setdefault("apiVersion", "v1")
                obj.setdefault("kind", SECRET_KIND)
                return obj
            if kind == CLUSTER_SECRET_STORE_KIND:
                return self.custom.get_cluster_custom_object(
                    CRD_GROUP, CRD_VERSION, CRD_PLURALS[kind], name
                )
            if kind in CRD_PLURALS:
                return self.custom.get_namespaced_custom_object(
                    CRD_GROUP, CRD_VERSION, namespace, CRD_PLURALS[kind], name
                )
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        raise ValueError(f"Unsupported kind: {kind}")

    def create_or_update(
        self,
        kind: str,
        namespace: Optional[str],
        name: str,
        mutate: Callable[[dict], None],
    ) -> str:
        if kind != SECRET_KIND:
            raise ValueError(f"Only {SECRET_KIND} objects can be written, got {kind}")

        existing = self.get(kind, namespace, name)
        obj = copy.deepcopy(existing) if existing is not None else skeleton(kind, namespace, name)
        mutate(obj)

        try:
            if existing is None:
                self.core.create_namespaced_secret(namespace, obj)
                return CREATED
            if obj == existing:
                return UNCHANGED
            self.core.replace_namespaced_secret(name, namespace, obj)
            return UPDATED
        except ApiException as e:
            raise UpsertError(
                f"cannot write Secret {namespace}/{name}: {e.status} {e.reason}"
            ) from e

    def update_status(self, kind: str, namespace: Optional[str], name: str, status: dict) -> None:
        if kind not in CRD_PLURALS:
            raise ValueError(f"Status updates are only supported for custom kinds, got {kind}")
        self.custom.patch_namespaced_custom_object_status(
            CRD_GROUP, CRD_VERSION, namespace, CRD_PLURALS[kind], name, {"status": status}
        )
