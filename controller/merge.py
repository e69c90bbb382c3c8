"""Merge engine - builds the target Secret from backend data and a template."""

import base64
import binascii
import copy
from typing import Dict, Iterable, Optional, Union

import yaml

from core.config.merger import deep_merge
from core.schema.sync_request import API_VERSION, EXTERNAL_SECRET_KIND, SyncRequest
from core.secrets.base import SecretBackend
from core.secrets.exceptions import MergeError, SecretSyncError
from core.utils.logging import get_logger
from monitoring.recorders import Metrics, track_time

logger = get_logger(__name__)

SECRET_KIND = "Secret"
DEFAULT_SECRET_TYPE = "Opaque"

# Template metadata the engine always owns
PROTECTED_METADATA = ("name", "namespace", "ownerReferences", "uid", "resourceVersion")


class MergeEngine:
    """
    Turns a sync request into the Secret that should exist.

    Precedence, lowest to highest:
        1. dataFrom maps, in declared order (later maps win on collisions)
        2. data entries, in declared order (explicit secretKey always wins)
        3. template fields (labels, annotations, type, data, stringData)

    Usage:
        engine = MergeEngine()
        payload = engine.build_data(client, request.data_from, request.data)
        secret = engine.render(request, payload)
    """

    def build_data(
        self, client: SecretBackend, data_from: Iterable, data: Iterable
    ) -> Dict[str, bytes]:
        """
        Fetch and merge all references, then base64-encode every value.

        Any fetch failure aborts the whole build.

        Returns:
            {secret_key: base64-encoded bytes}
        """
        merged: Dict[str, bytes] = {}

        for ref in data_from:
            merged.update(self._fetch(client, "get_secret_map", ref))

        for entry in data:
            merged[entry.secret_key] = self._fetch(client, "get_secret", entry.remote_ref)

        return {key: base64.b64encode(value) for key, value in merged.items()}

    def _fetch(self, client: SecretBackend, operation: str, ref):
        backend = getattr(client, "name", type(client).__name__)
        with track_time() as t:
            try:
                result = getattr(client, operation)(ref)
            except SecretSyncError as e:
                Metrics.backend_call(backend, operation, latency=t["duration"], success=False)
                raise type(e)(f"path {ref.path!r}: {e}") from e
        Metrics.backend_call(backend, operation, latency=t["duration"])
        return result

    def render(
        self,
        request: SyncRequest,
        payload: Dict[str, bytes],
        template: Union[dict, str, None] = None,
    ) -> dict:
        """
        Build the target Secret manifest and overlay the template.

        Args:
            request: The owning ExternalSecret
            payload: Output of ``build_data``
            template: Overrides ``request.template`` when given

        Raises:
            MergeError: If the template cannot be parsed or applied
        """
        secret = {
            "apiVersion": "v1",
            "kind": SECRET_KIND,
            "metadata": {
                "name": request.name,
                "namespace": request.namespace,
                "labels": dict(request.labels),
                "annotations": dict(request.annotations),
                "ownerReferences": [owner_reference(request)],
            },
            "type": DEFAULT_SECRET_TYPE,
            "data": {key: value.decode("ascii") for key, value in payload.items()},
        }

        template = request.template if template is None else template
        if template is None:
            return secret
        return apply_template(secret, template)


def owner_reference(request: SyncRequest) -> dict:
    """Controller owner reference, so deleting the request cascades."""
    ref = {
        "apiVersion": API_VERSION,
        "kind": EXTERNAL_SECRET_KIND,
        "name": request.name,
        "controller": True,
        "blockOwnerDeletion": True,
    }
    if request.uid:
        ref["uid"] = request.uid
    return ref


def parse_template(template: Union[dict, str]) -> dict:
    """Accept a mapping or JSON/YAML text."""
    if isinstance(template, (bytes, str)):
        try:
            template = yaml.safe_load(template)
        except yaml.YAMLError as e:
            raise MergeError(f"error unmarshalling template: {e}") from e
    if not isinstance(template, dict):
        raise MergeError(f"template must be an object, got {type(template).__name__}")
    return copy.deepcopy(template)


def _validate_base64(values: dict) -> dict:
    for key, value in values.items():
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, TypeError, ValueError) as e:
            raise MergeError(f"template data key {key!r} is not valid base64: {e}") from e
    return values


def apply_template(secret: dict, template: Union[dict, str]) -> dict:
    """
    Deep-merge ``template`` onto ``secret``; template fields win.

    ``data`` entries in the template must already be base64, ``stringData``
    entries are plain text and get encoded here.
    """
    overlay = parse_template(template)

    metadata: Optional[dict] = overlay.get("metadata")
    if metadata is not None:
        if not isinstance(metadata, dict):
            raise MergeError("template metadata must be an object")
        for key in PROTECTED_METADATA:
            if metadata.pop(key, None) is not None:
                logger.warning(f"Ignoring template metadata.{key} for {secret['metadata']['name']}")

    data = overlay.pop("data", None) or {}
    if not isinstance(data, dict):
        raise MergeError("template data must be an object")
    data = {k: str(v) for k, v in _validate_base64(data).items()}

    string_data = overlay.pop("stringData", None) or {}
    if not isinstance(string_data, dict):
        raise MergeError("template stringData must be an object")
    for key, value in string_data.items():
        data[key] = base64.b64encode(str(value).encode()).decode("ascii")

    for key in ("apiVersion", "kind"):
        overlay.pop(key, None)
    if data:
        overlay["data"] = data

    return deep_merge(secret, overlay)
