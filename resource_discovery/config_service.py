"""
AWS Config service discovery for every account and region of the organization.

For each account listed in the stored organization document:

- Assume the discovery role in the account
- Read the first Config recorder, delivery channel and their statuses in
  every region the Config service supports
- Store one AWSAccount document (with its region list) and one AWSRegion
  document per region, including the synthetic "global" region
"""

import logging
from contextlib import closing
from functools import lru_cache
from typing import Optional

import botocore.session
from botocore.exceptions import BotoCoreError, ClientError, DataNotFoundError

from .credentials import CredentialBroker, boto_config
from .document_store import DocumentStore, index_name
from .documents import normalize
from .errors import AuthorizationError, MissingConfigurationError, NotFoundError
from .organization import OrganizationCrawler, iter_accounts
from .outcomes import BatchOutcome

logger = logging.getLogger(__name__)

ACCOUNT_RESOURCE_TYPE = "AWSAccount"
REGION_RESOURCE_TYPE = "AWSRegion"
GLOBAL_REGION_ID = "global"
GLOBAL_REGION = {"id": GLOBAL_REGION_ID, "description": "Global"}


@lru_cache(maxsize=1)
def region_descriptions() -> dict:
    """Map region ids to their human names ("us-east-1" -> "US East (N. Virginia)")."""
    try:
        endpoints = botocore.session.get_session().get_data("endpoints")
    except DataNotFoundError:
        return {}
    return {
        region_id: details.get("description", region_id)
        for partition in endpoints.get("partitions", [])
        for region_id, details in partition.get("regions", {}).items()
    }


def describe_region(region_id: str) -> str:
    return region_descriptions().get(region_id, region_id)


def region_arn(region_id: str, account_id: str) -> str:
    return f"arn:aws:organizations:{region_id}:{account_id}"


class ConfigDiscoverer:
    """Read the AWS Config footprint of one account/region."""

    def discover_config_state(self, account_id: str, region_id: str, session) -> dict:
        """Return the first recorder, delivery channel and their statuses.

        Returns dict with any of:
            - recorder: Configuration recorder descriptor
            - recorderStatus: Configuration recorder status
            - deliveryChannel: Delivery channel descriptor
            - deliveryChannelStatus: Delivery channel status

        Raises:
            MissingConfigurationError: If none of the four exist
            ClientError: On authorization or API failures
        """
        state = {}
        with closing(session.client("config", region_name=region_id, config=boto_config)) as client:
            recorders = client.describe_configuration_recorders().get("ConfigurationRecorders", [])
            if recorders:
                state["recorder"] = recorders[0]

            statuses = client.describe_configuration_recorder_status().get(
                "ConfigurationRecordersStatus", []
            )
            if statuses:
                state["recorderStatus"] = statuses[0]

            channels = client.describe_delivery_channels().get("DeliveryChannels", [])
            if channels:
                state["deliveryChannel"] = channels[0]

            channel_statuses = client.describe_delivery_channel_status().get(
                "DeliveryChannelsStatus", []
            )
            if channel_statuses:
                state["deliveryChannelStatus"] = channel_statuses[0]

        if not state:
            raise MissingConfigurationError(
                f"AWS Config information missing for account {account_id}, region {region_id}"
            )
        return normalize(state)


def build_account_documents(account: dict, regions: list, master_account_id: str, master_account_arn: str) -> list:
    """Build the AWSRegion documents and the AWSAccount document for one account.

    The synthetic global region is always present exactly once.
    """
    account_id = account["id"]
    regions = [region for region in regions if region["id"] != GLOBAL_REGION_ID]
    regions.append(dict(GLOBAL_REGION))

    account_document = dict(account)
    account_document.update(
        {
            "awsAccountId": account_id,
            "resourceId": account_id,
            "resourceName": account.get("name", account_id),
            "resourceType": ACCOUNT_RESOURCE_TYPE,
            "masterAccountId": master_account_id,
            "masterAccountArn": master_account_arn,
            "regions": regions,
        }
    )

    region_documents = [
        {
            "awsAccountId": account_id,
            "resourceId": region["id"],
            "resourceType": REGION_RESOURCE_TYPE,
            "resourceName": region.get("description", region["id"]),
            "arn": region_arn(region["id"], account_id),
            "awsRegion": region["id"],
        }
        for region in regions
    ]
    return region_documents + [account_document]


class ConfigServiceInventory:
    """Discover and store Config service state for organization accounts."""

    def __init__(
        self,
        store: DocumentStore,
        broker: CredentialBroker,
        organizations: OrganizationCrawler,
        discoverer: Optional[ConfigDiscoverer] = None,
        regions: Optional[list] = None,
        query_limit: int = 1000,
    ):
        self.store = store
        self.broker = broker
        self.organizations = organizations
        self.discoverer = discoverer or ConfigDiscoverer()
        self.regions = regions or []
        self.query_limit = query_limit

    def get_config_service_info(self, account_id: Optional[str] = None) -> list:
        """Return stored account documents, all of them or just ``account_id``."""
        if account_id is not None:
            return self.store.query(
                index_name(ACCOUNT_RESOURCE_TYPE), {"awsAccountId": account_id}
            )
        return self.store.query(index_name(ACCOUNT_RESOURCE_TYPE), limit=self.query_limit)

    def region_ids(self, session) -> list:
        if self.regions:
            return list(self.regions)
        return session.get_available_regions("config")

    def discover(self, account_id: Optional[str] = None) -> BatchOutcome:
        """Discover every account of the stored organization, or only ``account_id``.

        Raises:
            NotFoundError: If the organization has not been discovered yet
        """
        organization = self.organizations.get_organization_document()
        if not organization:
            raise NotFoundError("No organization document stored, discover the organization first")

        master_account_id = organization["masterAccountId"]
        master_account_arn = organization.get("masterAccountArn") or organization.get("arn", "")

        outcome = BatchOutcome()
        for account in iter_accounts(organization, account_id):
            outcome.extend(self.discover_account(account, master_account_id, master_account_arn))

        logger.info(
            "Config service discovery finished",
            extra={"action": "discover", "account_id": account_id, "summary": outcome.summary()},
        )
        return outcome

    def discover_account(self, account: dict, master_account_id: str, master_account_arn: str) -> BatchOutcome:
        """Discover every region of one account and store its documents as one batch."""
        outcome = BatchOutcome()
        account_id = account["id"]
        regions = []

        try:
            with self.broker.session_for_account(account_id) as session:
                for region_id in self.region_ids(session):
                    region = self._discover_region(
                        account_id, region_id, session, master_account_id, outcome
                    )
                    if region is not None:
                        regions.append(region)
        except (AuthorizationError, ClientError, BotoCoreError) as e:
            logger.warning(
                "Failed to discover account",
                extra={
                    "action": "discover_account",
                    "account_id": account_id,
                    "master_account_id": master_account_id,
                    "error": str(e),
                },
            )
            outcome.failed(account_id, e)
            return outcome

        documents = build_account_documents(account, regions, master_account_id, master_account_arn)
        written = self.store.bulk_upsert(documents)
        if written.has_failures:
            outcome.failed(account_id, f"{len(written.results) - written.written} documents rejected")
        else:
            outcome.succeeded(account_id, documents[-1])
        return outcome

    def _discover_region(
        self, account_id: str, region_id: str, session, master_account_id: str, outcome: BatchOutcome
    ) -> Optional[dict]:
        key = f"{account_id}/{region_id}"
        region = {"id": region_id, "description": describe_region(region_id)}
        try:
            region.update(self.discoverer.discover_config_state(account_id, region_id, session))
        except MissingConfigurationError as e:
            logger.info(
                "AWS Config not enabled",
                extra={"action": "discover_region", "account_id": account_id, "region": region_id},
            )
            outcome.skipped(key, e)
            return region
        except (ClientError, BotoCoreError) as e:
            logger.warning(
                "Failed to discover region",
                extra={
                    "action": "discover_region",
                    "account_id": account_id,
                    "region": region_id,
                    "master_account_id": master_account_id,
                    "error": str(e),
                },
            )
            outcome.failed(key, e)
            return None

        outcome.succeeded(key, region)
        return region
