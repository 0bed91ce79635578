"""
Delegated credentials for cross-account discovery.

Member accounts trust the discovery account through two roles named after
the discovery (source) account id:

- openraven-cross-account-org-<source>: In the organization master account
- openraven-cross-account-<source>: In every member account

Sessions are scoped: acquire them with ``with broker.session_for_account(...)``
and the temporary credentials are cleared on every exit path. The yielded
session refuses to create clients once its block has ended.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import AuthorizationError, SessionReleasedError

logger = logging.getLogger(__name__)

MASTER_ROLE_TEMPLATE = "arn:aws:iam::{account_id}:role/openraven-cross-account-org-{source_account_id}"
RESOURCE_ROLE_TEMPLATE = "arn:aws:iam::{account_id}:role/openraven-cross-account-{source_account_id}"
SESSION_DURATION_SECONDS = 900

boto_config = Config(retries={"max_attempts": 10, "mode": "standard"})


class ScopedSession:
    """A boto3 session that can only be used inside its ``with`` block.

    Clients created from it keep their credentials until closed, so create
    them inside the block and close them there too.
    """

    def __init__(self, account_id: str, session: boto3.Session):
        self.account_id = account_id
        self._session: Optional[boto3.Session] = session

    @property
    def active(self) -> bool:
        return self._session is not None

    def _require(self) -> boto3.Session:
        if self._session is None:
            raise SessionReleasedError(
                f"Session for account {self.account_id} used after its scope ended"
            )
        return self._session

    def client(self, service_name: str, **kwargs):
        return self._require().client(service_name, **kwargs)

    def get_available_regions(self, service_name: str) -> list:
        return self._require().get_available_regions(service_name)

    def release(self) -> None:
        self._session = None


class CredentialBroker:
    """Assume discovery roles in organization accounts.

    One broker serves one logical operation. Use it as a context manager so
    its STS client is closed when the operation ends.
    """

    def __init__(self, region: str = "us-east-1", sts_client=None):
        self.region = region
        self._sts_client = sts_client
        self._source_account_id: Optional[str] = None
        self.active_sessions = 0

    def __enter__(self) -> "CredentialBroker":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def sts_client(self):
        if self._sts_client is None:
            self._sts_client = boto3.client("sts", region_name=self.region, config=boto_config)
        return self._sts_client

    @property
    def source_account_id(self) -> str:
        """The caller's own account id, resolved once per broker."""
        if self._source_account_id is None:
            self._source_account_id = self.sts_client.get_caller_identity()["Account"]
        return self._source_account_id

    def account_role_arn(self, account_id: str) -> str:
        return RESOURCE_ROLE_TEMPLATE.format(
            account_id=account_id, source_account_id=self.source_account_id
        )

    def master_role_arn(self, master_account_id: str) -> str:
        return MASTER_ROLE_TEMPLATE.format(
            account_id=master_account_id, source_account_id=self.source_account_id
        )

    def session_for_account(self, account_id: str):
        """Scoped boto3 session inside a member account."""
        return self._assume(account_id, self.account_role_arn(account_id))

    def session_for_master(self, master_account_id: str):
        """Scoped boto3 session inside the organization master account."""
        return self._assume(master_account_id, self.master_role_arn(master_account_id))

    @contextmanager
    def _assume(self, account_id: str, role_arn: str) -> Iterator[ScopedSession]:
        try:
            response = self.sts_client.assume_role(
                RoleArn=role_arn,
                RoleSessionName=f"openraven-{account_id}",
                DurationSeconds=SESSION_DURATION_SECONDS,
            )
        except (ClientError, BotoCoreError) as e:
            raise AuthorizationError(account_id, role_arn, str(e)) from e

        credentials = response["Credentials"]
        session = ScopedSession(
            account_id,
            boto3.Session(
                aws_access_key_id=credentials["AccessKeyId"],
                aws_secret_access_key=credentials["SecretAccessKey"],
                aws_session_token=credentials["SessionToken"],
                region_name=self.region,
            ),
        )
        self.active_sessions += 1
        logger.debug(
            "Assumed discovery role",
            extra={"action": "assume_role", "account_id": account_id, "role_arn": role_arn},
        )

        try:
            yield session
        finally:
            session.release()
            credentials.clear()
            self.active_sessions -= 1
            logger.debug(
                "Released discovery role session",
                extra={"action": "release_role", "account_id": account_id},
            )

    def close(self) -> None:
        if self._sts_client is not None:
            logger.debug(
                "Closing STS client",
                extra={"action": "close", "source_account_id": self._source_account_id},
            )
            self._sts_client.close()
            self._sts_client = None
