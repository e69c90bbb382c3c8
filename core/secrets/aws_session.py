"""AWS session setup shared by Secrets Manager and Parameter Store."""

import logging
from typing import Callable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from core.schema.store import SecretRef
from core.secrets.context import DEFAULT_SESSION_NAME
from core.secrets.exceptions import AuthError, BackendError, SecretNotFoundError

logger = logging.getLogger(__name__)

SECRET_KEY_ACCESS_KEY_ID = "accessKeyID"
SECRET_KEY_SECRET_ACCESS_KEY = "secretAccessKey"

CLIENT_CONFIG = Config(user_agent_extra="secret-manager")


class SessionProvider:
    """
    Builds an authenticated boto3 session.

    Credentials come from explicit keys when both are given, otherwise from
    the ambient chain (environment, shared config, instance role). With a
    ``role`` set, those credentials are exchanged through STS AssumeRole for
    temporary ones.

    Usage:
        session = SessionProvider(region="eu-central-1", role=arn).get_session()
        client = session.client("secretsmanager", config=CLIENT_CONFIG)
    """

    def __init__(
        self,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        region: Optional[str] = None,
        role: Optional[str] = None,
        session_name: str = DEFAULT_SESSION_NAME,
        session_factory: Callable = boto3.Session,
    ):
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.region = region
        self.role = role
        self.session_name = session_name
        self.session_factory = session_factory

    @property
    def explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def get_session(self):
        """
        Returns:
            boto3 Session

        Raises:
            AuthError: If the session can't be created or the role can't be assumed
        """
        kwargs = {}
        if self.explicit_credentials:
            kwargs["aws_access_key_id"] = self.access_key_id
            kwargs["aws_secret_access_key"] = self.secret_access_key
        if self.region:
            kwargs["region_name"] = self.region

        try:
            session = self.session_factory(**kwargs)
        except BotoCoreError as e:
            raise AuthError(f"unable to create aws session: {e}") from e

        if not self.role:
            return session

        try:
            sts = session.client("sts", config=CLIENT_CONFIG)
            result = sts.assume_role(RoleArn=self.role, RoleSessionName=self.session_name)
        except (BotoCoreError, ClientError) as e:
            raise AuthError(f"unable to assume role {self.role}: {e}") from e

        creds = result["Credentials"]
        logger.debug(f"Assumed role {self.role} as session '{self.session_name}'")
        try:
            return self.session_factory(
                aws_access_key_id=creds["AccessKeyId"],
                aws_secret_access_key=creds["SecretAccessKey"],
                aws_session_token=creds["SessionToken"],
                region_name=self.region or session.region_name,
            )
        except BotoCoreError as e:
            raise AuthError(f"unable to create aws session: {e}") from e


def _credential(data: dict, key: str, ref: SecretRef, namespace: Optional[str]) -> str:
    if key not in data:
        raise AuthError(
            f"no data for {key!r} in secret '{ref.namespace or namespace}/{ref.name}'"
        )
    value = data[key]
    return value.decode().strip() if isinstance(value, bytes) else str(value).strip()


def session_for(provider, context):
    """
    Open a session for an AWS provider block.

    Args:
        provider: AWSSecretsManagerProvider or AWSParameterStoreProvider
        context: ResolveContext used to read ``credentialsRef``
    """
    access_key_id = secret_access_key = None
    ref = provider.credentials_ref
    if ref is not None:
        data = context.read_secret(ref)
        access_key_id = _credential(data, SECRET_KEY_ACCESS_KEY_ID, ref, context.namespace)
        secret_access_key = _credential(
            data, SECRET_KEY_SECRET_ACCESS_KEY, ref, context.namespace
        )

    factory = context.session_factory or SessionProvider
    return factory(
        access_key_id=access_key_id,
        secret_access_key=secret_access_key,
        region=provider.region,
        role=provider.role,
        session_name=context.session_name,
    ).get_session()


def raise_backend_error(e: Exception, where: str, not_found_codes=()) -> None:
    """Translate a botocore failure into the sync error taxonomy."""
    if isinstance(e, ClientError):
        code = e.response.get("Error", {}).get("Code", "")
        if code in not_found_codes:
            raise SecretNotFoundError(f"{where} does not exist ({code})") from e
        if code in ("AccessDeniedException", "UnrecognizedClientException"):
            raise AuthError(f"access to {where} denied: {e}") from e
    raise BackendError(f"could not read {where}: {e}") from e
