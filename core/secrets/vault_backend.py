"""HashiCorp Vault KV secret backend."""

import hashlib
import logging
import os
import tempfile
from typing import Dict, Optional

import hvac
import requests
from hvac.exceptions import InvalidPath, VaultError

from core.schema.store import (
    AppRoleAuth,
    KubernetesAuth,
    TokenAuth,
    VaultKVVersion,
    VaultProvider,
)
from core.schema.sync_request import RemoteRef
from core.secrets.base import SecretBackend, extract_property, to_byte_map, to_bytes
from core.secrets.exceptions import AuthError, BackendError, SecretNotFoundError
from core.secrets.registry import register_backend

logger = logging.getLogger(__name__)


def kv_mount_path(path: str, version: VaultKVVersion) -> str:
    """
    Mount path to read from for a KV engine version.

    KV v2 serves secrets below a ``data`` segment; it is appended unless
    the configured path already carries it.

    Examples:
        kv_mount_path("secret", V2) -> "secret/data"
        kv_mount_path("secret/data", V2) -> "secret/data"
        kv_mount_path("secret", V1) -> "secret"
    """
    path = path.strip("/")
    if version != VaultKVVersion.V2:
        return path
    if "/data/" in f"/{path}/":
        return path
    return f"{path}/data"


def _ca_bundle_file(ca_bundle: bytes) -> str:
    """Write a PEM bundle once per content and return its path."""
    digest = hashlib.sha256(ca_bundle).hexdigest()[:16]
    path = os.path.join(tempfile.gettempdir(), f"vault-ca-{digest}.pem")
    if not os.path.exists(path):
        with open(path, "wb") as f:
            f.write(ca_bundle)
    return path


# ============================================================
# AUTH METHODS
# ============================================================


def _login_token(client, auth: TokenAuth, context) -> None:
    client.token = context.read_key(auth.secret_ref)


def _login_app_role(client, auth: AppRoleAuth, context) -> None:
    secret_id = context.read_key(auth.secret_ref)
    client.auth.approle.login(
        role_id=auth.role_id,
        secret_id=secret_id,
        mount_point=auth.path,
    )


def _login_kubernetes(client, auth: KubernetesAuth, context) -> None:
    jwt = context.read_key(auth.secret_ref)
    client.auth.kubernetes.login(
        role=auth.role,
        jwt=jwt,
        mount_point=auth.mount_path,
    )


AUTH_METHODS = {
    TokenAuth: _login_token,
    AppRoleAuth: _login_app_role,
    KubernetesAuth: _login_kubernetes,
}


@register_backend(VaultProvider)
class VaultBackend(SecretBackend):
    """
    Reads secrets from a Vault KV v1 or v2 engine.

    The store ``path`` is the engine mount ("secret"); a RemoteRef path
    ("app/db") is read below it, e.g. ``secret/data/app/db`` on KV v2.

    Usage:
        backend = VaultBackend.from_store(store.provider, context)
        password = backend.get_secret(RemoteRef(path="app/db", property="password"))
    """

    name = "vault"

    def __init__(self, client: hvac.Client, provider: VaultProvider):
        self._client = client
        self.provider = provider
        self.mount_path = kv_mount_path(provider.path, provider.version)

    @classmethod
    def from_store(cls, provider: VaultProvider, context) -> "VaultBackend":
        factory = context.vault_client_factory or hvac.Client
        verify = _ca_bundle_file(provider.ca_bundle) if provider.ca_bundle else True
        client = factory(url=provider.server, namespace=provider.namespace, verify=verify)

        login = AUTH_METHODS.get(type(provider.auth))
        if login is None:
            raise AuthError(f"unsupported vault auth method: {type(provider.auth).__name__}")

        try:
            login(client, provider.auth, context)
        except AuthError:
            raise
        except (VaultError, requests.exceptions.RequestException) as e:
            raise AuthError(f"vault login at {provider.server} failed: {e}") from e

        logger.debug(
            f"Authenticated to Vault {provider.server} using {type(provider.auth).__name__}"
        )
        return cls(client, provider)

    def secret_path(self, path: str) -> str:
        return f"{self.mount_path}/{path.strip('/')}"

    def _read(self, ref: RemoteRef) -> dict:
        path = self.secret_path(ref.path)
        params: Optional[dict] = None
        if ref.version and self.provider.version == VaultKVVersion.V2:
            params = {"version": ref.version}

        try:
            response = self._client.adapter.get(f"/v1/{path}", params=params)
        except InvalidPath as e:
            raise SecretNotFoundError(f"secret {path!r} not found in Vault") from e
        except (VaultError, requests.exceptions.RequestException) as e:
            raise BackendError(f"could not read secret {path!r} from Vault: {e}") from e

        if not isinstance(response, dict):
            raise SecretNotFoundError(f"secret {path!r} not found in Vault")

        data = response.get("data")
        if self.provider.version == VaultKVVersion.V2 and data is not None:
            data = data.get("data")
        if data is None:
            raise SecretNotFoundError(f"secret {path!r} in Vault has no data")
        if not isinstance(data, dict):
            raise BackendError(f"secret {path!r} in Vault is not a key/value object")
        return data

    def get_secret(self, ref: RemoteRef) -> bytes:
        """
        Read one value.

        With ``property`` set, that field is returned. Without it, the secret
        must hold exactly one field; anything else is ambiguous and fails.
        """
        data = self._read(ref)
        where = f"secret {ref.path!r} from Vault"
        if ref.property is not None:
            return extract_property(data, ref.property, where)
        if len(data) != 1:
            raise BackendError(
                f"{where} has {len(data)} fields, set a property to select one"
            )
        return to_bytes(next(iter(data.values())))

    def get_secret_map(self, ref: RemoteRef) -> Dict[str, bytes]:
        return to_byte_map(self._read(ref))

    def health_check(self) -> bool:
        try:
            return bool(self._client.is_authenticated())
        except (VaultError, requests.exceptions.RequestException) as e:
            logger.warning(f"Vault health check failed for {self.provider.server}: {e}")
            return False
