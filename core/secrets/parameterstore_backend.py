"""AWS Systems Manager Parameter Store secret backend."""

import logging
from typing import Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from core.schema.store import AWSParameterStoreProvider
from core.schema.sync_request import RemoteRef
from core.secrets.aws_session import CLIENT_CONFIG, raise_backend_error, session_for
from core.secrets.base import (
    SecretBackend,
    decode_json_map,
    extract_property,
    to_byte_map,
    to_bytes,
)
from core.secrets.exceptions import AuthError
from core.secrets.registry import register_backend

logger = logging.getLogger(__name__)


@register_backend(AWSParameterStoreProvider)
class ParameterStoreBackend(SecretBackend):
    """
    Reads parameters with ``GetParameter`` (decrypting SecureStrings).

    The store's ``parameter`` field, when set, is a name prefix: RemoteRef
    path "db" under prefix "/prod/app" reads "/prod/app/db". A RemoteRef
    ``version`` selects "name:version".
    """

    name = "parameterstore"

    def __init__(self, client, prefix: Optional[str] = None):
        self._client = client
        self.prefix = prefix

    @classmethod
    def from_store(cls, provider: AWSParameterStoreProvider, context) -> "ParameterStoreBackend":
        session = session_for(provider, context)
        try:
            client = session.client("ssm", config=CLIENT_CONFIG)
        except BotoCoreError as e:
            raise AuthError(f"unable to create SecureSystemsManager client: {e}") from e
        return cls(client, prefix=provider.parameter)

    def parameter_name(self, ref: RemoteRef) -> str:
        name = ref.path
        if self.prefix:
            name = f"{self.prefix.rstrip('/')}/{name.lstrip('/')}"
        if ref.version:
            name = f"{name}:{ref.version}"
        return name

    def _fetch(self, ref: RemoteRef) -> str:
        name = self.parameter_name(ref)
        try:
            out = self._client.get_parameter(Name=name, WithDecryption=True)
        except (ClientError, BotoCoreError) as e:
            raise_backend_error(
                e,
                f"parameter {name!r} from AWS Parameter Store",
                not_found_codes=("ParameterNotFound", "ParameterVersionNotFound"),
            )
        return out["Parameter"]["Value"]

    def get_secret(self, ref: RemoteRef) -> bytes:
        raw = self._fetch(ref)
        if ref.property is None:
            return to_bytes(raw)
        where = f"parameter {ref.path!r} from AWS Parameter Store"
        return extract_property(decode_json_map(raw, where), ref.property, where)

    def get_secret_map(self, ref: RemoteRef) -> Dict[str, bytes]:
        raw = self._fetch(ref)
        return to_byte_map(
            decode_json_map(raw, f"parameter {ref.path!r} from AWS Parameter Store")
        )

    def health_check(self) -> bool:
        try:
            self._client.describe_parameters(MaxResults=1)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"AWS Parameter Store health check failed: {e}")
            return False
