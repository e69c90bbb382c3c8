"""SecretStore / ClusterSecretStore data model.

A store manifest carries exactly one provider block. Each block maps to one
provider dataclass below, so ``StoreConfig.provider`` is a proper tagged
union and dispatch on it is a lookup by type.
"""

import base64
import binascii
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from core.config.exceptions import ConfigValidationError

SECRET_STORE_KIND = "SecretStore"
CLUSTER_SECRET_STORE_KIND = "ClusterSecretStore"
STORE_KINDS = (SECRET_STORE_KIND, CLUSTER_SECRET_STORE_KIND)


@dataclass(frozen=True)
class SecretRef:
    """Reference to a whole secret object."""

    name: str
    namespace: Optional[str] = None


@dataclass(frozen=True)
class SecretKeySelector:
    """Reference to one key inside a secret object."""

    name: str
    key: str
    namespace: Optional[str] = None


# ============================================================
# VAULT AUTH VARIANTS
# ============================================================


@dataclass(frozen=True)
class TokenAuth:
    secret_ref: SecretKeySelector


@dataclass(frozen=True)
class AppRoleAuth:
    role_id: str
    secret_ref: SecretKeySelector
    path: str = "approle"


@dataclass(frozen=True)
class KubernetesAuth:
    role: str
    secret_ref: SecretKeySelector
    mount_path: str = "kubernetes"


VaultAuth = Union[TokenAuth, AppRoleAuth, KubernetesAuth]


# ============================================================
# PROVIDER VARIANTS
# ============================================================


class VaultKVVersion(str, Enum):
    V1 = "v1"
    V2 = "v2"


@dataclass(frozen=True)
class VaultProvider:
    """HashiCorp Vault KV backend."""

    server: str
    path: str
    auth: VaultAuth
    version: VaultKVVersion = VaultKVVersion.V2
    namespace: Optional[str] = None
    ca_bundle: Optional[bytes] = None


@dataclass(frozen=True)
class AWSSecretsManagerProvider:
    """AWS Secrets Manager backend."""

    region: Optional[str] = None
    role: Optional[str] = None
    credentials_ref: Optional[SecretRef] = None


@dataclass(frozen=True)
class AWSParameterStoreProvider:
    """AWS Systems Manager Parameter Store backend."""

    region: Optional[str] = None
    role: Optional[str] = None
    credentials_ref: Optional[SecretRef] = None
    parameter: Optional[str] = None


StoreProvider = Union[VaultProvider, AWSSecretsManagerProvider, AWSParameterStoreProvider]


@dataclass(frozen=True)
class StoreConfig:
    """A parsed SecretStore or ClusterSecretStore."""

    name: str
    provider: StoreProvider
    kind: str = SECRET_STORE_KIND
    namespace: Optional[str] = None

    @property
    def cluster_scoped(self) -> bool:
        return self.kind == CLUSTER_SECRET_STORE_KIND

    @classmethod
    def from_manifest(cls, manifest: dict) -> "StoreConfig":
        """
        Build a StoreConfig from a store manifest.

        Raises:
            ConfigValidationError: If zero or more than one provider is set
        """
        metadata = manifest.get("metadata") or {}
        name = metadata.get("name", "")
        kind = manifest.get("kind") or SECRET_STORE_KIND
        spec = manifest.get("spec") or {}

        present = [key for key in PROVIDER_PARSERS if spec.get(key) is not None]
        if not present:
            raise ConfigValidationError(
                f"{kind} {name!r} does not have a valid client: no provider configured"
            )
        if len(present) > 1:
            raise ConfigValidationError(
                f"{kind} {name!r} configures more than one provider: {', '.join(present)}"
            )

        key = present[0]
        provider = PROVIDER_PARSERS[key](spec[key], f"{kind} {name!r}")
        return cls(
            name=name,
            provider=provider,
            kind=kind,
            namespace=metadata.get("namespace"),
        )


# ============================================================
# MANIFEST PARSERS
# ============================================================


def _require(block: dict, field_name: str, where: str):
    value = block.get(field_name)
    if value in (None, ""):
        raise ConfigValidationError(f"{where}: missing required field '{field_name}'")
    return value


def _key_selector(block: Optional[dict], where: str) -> SecretKeySelector:
    if not block:
        raise ConfigValidationError(f"{where}: missing secretRef")
    return SecretKeySelector(
        name=_require(block, "name", where),
        key=_require(block, "key", where),
        namespace=block.get("namespace"),
    )


def _credentials_ref(block: dict, where: str) -> Optional[SecretRef]:
    creds = block.get("credentialsRef") or block.get("credentials") or {}
    ref = creds.get("secretRef")
    if not ref:
        return None
    return SecretRef(name=_require(ref, "name", where), namespace=ref.get("namespace"))


def _ca_bundle(value) -> Optional[bytes]:
    if not value:
        return None
    if isinstance(value, bytes):
        return value
    if value.lstrip().startswith("-----BEGIN"):
        return value.encode()
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as e:
        raise ConfigValidationError(f"caBundle is neither PEM nor base64: {e}") from e


def parse_vault_auth(block: Optional[dict], where: str) -> VaultAuth:
    block = block or {}
    present = [k for k in ("tokenSecretRef", "appRole", "kubernetes") if block.get(k)]
    if len(present) != 1:
        raise ConfigValidationError(
            f"{where}: exactly one of tokenSecretRef, appRole or kubernetes "
            f"must be set for vault auth (got {len(present)})"
        )

    if "tokenSecretRef" in present:
        return TokenAuth(secret_ref=_key_selector(block["tokenSecretRef"], where))

    if "appRole" in present:
        app_role = block["appRole"]
        return AppRoleAuth(
            role_id=_require(app_role, "roleId", where),
            secret_ref=_key_selector(app_role.get("secretRef"), where),
            path=app_role.get("path") or "approle",
        )

    kube = block["kubernetes"]
    return KubernetesAuth(
        role=_require(kube, "role", where),
        secret_ref=_key_selector(kube.get("secretRef"), where),
        mount_path=kube.get("mountPath") or "kubernetes",
    )


def parse_vault(block: dict, where: str) -> VaultProvider:
    version = block.get("version") or VaultKVVersion.V2.value
    try:
        kv_version = VaultKVVersion(version)
    except ValueError:
        raise ConfigValidationError(
            f"{where}: unsupported vault KV version {version!r}"
        ) from None

    return VaultProvider(
        server=_require(block, "server", where),
        path=_require(block, "path", where),
        auth=parse_vault_auth(block.get("auth"), where),
        version=kv_version,
        namespace=block.get("namespace"),
        ca_bundle=_ca_bundle(block.get("caBundle")),
    )


def parse_secrets_manager(block: dict, where: str) -> AWSSecretsManagerProvider:
    return AWSSecretsManagerProvider(
        region=block.get("region") or None,
        role=block.get("role") or None,
        credentials_ref=_credentials_ref(block, where),
    )


def parse_parameter_store(block: dict, where: str) -> AWSParameterStoreProvider:
    return AWSParameterStoreProvider(
        region=block.get("region") or None,
        role=block.get("role") or None,
        credentials_ref=_credentials_ref(block, where),
        parameter=block.get("parameter") or None,
    )


# Manifest key → parser. Adding a provider means adding one entry here.
PROVIDER_PARSERS = {
    "vault": parse_vault,
    "AWSSecretManager": parse_secrets_manager,
    "AWSParameterStore": parse_parameter_store,
}
