"""Object store capability and an in-memory implementation."""

import base64
import copy
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional

from core.schema.store import CLUSTER_SECRET_STORE_KIND
from core.utils.logging import get_logger

logger = get_logger(__name__)

SECRET_KIND = "Secret"

CLUSTER_SCOPED_KINDS = {CLUSTER_SECRET_STORE_KIND}

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"


class ObjectStore(ABC):
    """
    Where ExternalSecrets, stores and Secrets live.

    Objects are plain manifest dicts. Cluster-scoped kinds ignore the
    namespace argument.
    """

    @abstractmethod
    def get(self, kind: str, namespace: Optional[str], name: str) -> Optional[dict]:
        """Return the object, or None if it doesn't exist."""
        pass

    @abstractmethod
    def create_or_update(
        self,
        kind: str,
        namespace: Optional[str],
        name: str,
        mutate: Callable[[dict], None],
    ) -> str:
        """
        Upsert an object.

        ``mutate`` receives the current object (or a skeleton with only
        name/namespace set) and edits it in place. Nothing is written when
        ``mutate`` raises.

        Returns:
            CREATED, UPDATED or UNCHANGED
        """
        pass

    @abstractmethod
    def update_status(self, kind: str, namespace: Optional[str], name: str, status: dict) -> None:
        """Replace the status of an object."""
        pass

    def get_secret_data(self, namespace: Optional[str], name: str) -> Optional[Dict[str, bytes]]:
        """Decoded ``data`` (plus ``stringData``) of a Secret, or None if absent."""
        secret = self.get(SECRET_KIND, namespace, name)
        if secret is None:
            return None
        data = {
            key: base64.b64decode(value) for key, value in (secret.get("data") or {}).items()
        }
        for key, value in (secret.get("stringData") or {}).items():
            data[key] = str(value).encode()
        return data


def skeleton(kind: str, namespace: Optional[str], name: str) -> dict:
    metadata = {"name": name}
    if kind not in CLUSTER_SCOPED_KINDS:
        metadata["namespace"] = namespace
    obj = {"kind": kind, "metadata": metadata}
    if kind == SECRET_KIND:
        obj["apiVersion"] = "v1"
    return obj


class InMemoryObjectStore(ObjectStore):
    """
    Thread-safe dict-backed object store.

    Used by tests and by the offline ``sync`` command.

    Usage:
        store = InMemoryObjectStore(load_manifests("manifests/"))
        secret = store.get("Secret", "default", "db-creds")
    """

    def __init__(self, objects: Iterable[dict] = ()):
        self._lock = threading.RLock()
        self._objects: Dict[tuple, dict] = {}
        self._version = 0
        for obj in objects:
            self.add(obj)

    @staticmethod
    def _key(kind: str, namespace: Optional[str], name: str) -> tuple:
        if kind in CLUSTER_SCOPED_KINDS:
            namespace = None
        return kind, namespace, name

    def _bump(self, obj: dict) -> None:
        self._version += 1
        obj.setdefault("metadata", {})["resourceVersion"] = str(self._version)

    def add(self, obj: dict) -> None:
        """Insert or overwrite an object as-is."""
        metadata = obj.get("metadata") or {}
        kind = obj["kind"]
        namespace = metadata.get("namespace")
        if namespace is None and kind not in CLUSTER_SCOPED_KINDS:
            namespace = "default"
        obj = copy.deepcopy(obj)
        if kind not in CLUSTER_SCOPED_KINDS:
            obj["metadata"]["namespace"] = namespace
        with self._lock:
            self._bump(obj)
            self._objects[self._key(kind, namespace, metadata["name"])] = obj

    def delete(self, kind: str, namespace: Optional[str], name: str) -> bool:
        with self._lock:
            return self._objects.pop(self._key(kind, namespace, name), None) is not None

    def list(self, kind: str) -> List[dict]:
        with self._lock:
            return [copy.deepcopy(o) for (k, _, _), o in self._objects.items() if k == kind]

    def get(self, kind: str, namespace: Optional[str], name: str) -> Optional[dict]:
        with self._lock:
            obj = self._objects.get(self._key(kind, namespace, name))
            return copy.deepcopy(obj) if obj is not None else None

    def create_or_update(
        self,
        kind: str,
        namespace: Optional[str],
        name: str,
        mutate: Callable[[dict], None],
    ) -> str:
        key = self._key(kind, namespace, name)
        with self._lock:
            existing = self._objects.get(key)
            obj = copy.deepcopy(existing) if existing is not None else skeleton(kind, namespace, name)
            mutate(obj)

            if existing is None:
                self._bump(obj)
                self._objects[key] = obj
                logger.debug(f"Created {kind} {namespace}/{name}")
                return CREATED
            if obj == existing:
                return UNCHANGED
            self._bump(obj)
            self._objects[key] = obj
            logger.debug(f"Updated {kind} {namespace}/{name}")
            return UPDATED

    def update_status(self, kind: str, namespace: Optional[str], name: str, status: dict) -> None:
        with self._lock:
            obj = self._objects.get(self._key(kind, namespace, name))
            if obj is None:
                raise KeyError(f"{kind} {namespace}/{name} not found")
            obj["status"] = copy.deepcopy(status)
