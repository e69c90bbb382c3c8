"""AWS Secrets Manager secret backend."""

import logging
import re
from typing import Dict, Union

from botocore.exceptions import BotoCoreError, ClientError

from core.schema.store import AWSSecretsManagerProvider
from core.schema.sync_request import RemoteRef
from core.secrets.aws_session import CLIENT_CONFIG, raise_backend_error, session_for
from core.secrets.base import (
    SecretBackend,
    decode_json_map,
    extract_property,
    to_byte_map,
    to_bytes,
)
from core.secrets.exceptions import AuthError, BackendError
from core.secrets.registry import register_backend

logger = logging.getLogger(__name__)

VERSION_ID = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


@register_backend(AWSSecretsManagerProvider)
class SecretsManagerBackend(SecretBackend):
    """
    Reads secrets with ``GetSecretValue``.

    A RemoteRef ``version`` is sent as ``VersionId`` when it looks like a
    version UUID, otherwise as ``VersionStage`` (e.g. "AWSPREVIOUS").
    """

    name = "secretsmanager"

    def __init__(self, client):
        self._client = client

    @classmethod
    def from_store(cls, provider: AWSSecretsManagerProvider, context) -> "SecretsManagerBackend":
        session = session_for(provider, context)
        try:
            client = session.client("secretsmanager", config=CLIENT_CONFIG)
        except BotoCoreError as e:
            raise AuthError(f"unable to create SecretsManager client: {e}") from e
        return cls(client)

    def _fetch(self, ref: RemoteRef) -> Union[str, bytes]:
        kwargs = {"SecretId": ref.path}
        if ref.version:
            if VERSION_ID.match(ref.version):
                kwargs["VersionId"] = ref.version
            else:
                kwargs["VersionStage"] = ref.version

        try:
            out = self._client.get_secret_value(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise_backend_error(
                e,
                f"secret {ref.path!r} from AWS SecretsManager",
                not_found_codes=("ResourceNotFoundException",),
            )

        if out.get("SecretString") is not None:
            return out["SecretString"]
        if out.get("SecretBinary") is not None:
            return out["SecretBinary"]
        raise BackendError(f"secret {ref.path!r} from AWS SecretsManager has no value")

    def get_secret(self, ref: RemoteRef) -> bytes:
        raw = self._fetch(ref)
        if ref.property is None:
            return to_bytes(raw)
        where = f"secret {ref.path!r} from AWS SecretsManager"
        return extract_property(decode_json_map(raw, where), ref.property, where)

    def get_secret_map(self, ref: RemoteRef) -> Dict[str, bytes]:
        raw = self._fetch(ref)
        return to_byte_map(decode_json_map(raw, f"secret {ref.path!r} from AWS SecretsManager"))

    def health_check(self) -> bool:
        try:
            self._client.list_secrets(MaxResults=1)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"AWS SecretsManager health check failed: {e}")
            return False
