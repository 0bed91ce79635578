"""
Ingest AWS Config configuration snapshots delivered to S3.

A snapshot is ingested when the delivery channel status reports a last
successful delivery time different from the one recorded on the stored
snapshot document for the same account and region. The snapshot object is
found under the day prefix of that delivery time:

    [<s3KeyPrefix>/]AWSLogs/<account>/Config/<region>/<year>/<month>/<day>/ConfigSnapshot

Month and day are not zero padded, matching the keys AWS Config writes.
"""

import gzip
import json
import logging
from contextlib import closing
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from .config_service import ConfigServiceInventory
from .credentials import CredentialBroker, boto_config
from .document_store import DocumentStore, index_name
from .documents import dig, parse_instant
from .errors import (
    AlreadyProcessedError,
    AuthorizationError,
    MissingConfigurationError,
    NotFoundError,
)
from .outcomes import BatchOutcome, Status

logger = logging.getLogger(__name__)

SNAPSHOT_RESOURCE_TYPE = "AWSConfigSnapshot"
SNAPSHOT_PREFIX_TEMPLATE = "AWSLogs/{account_id}/Config/{region_id}/{year}/{month}/{day}/ConfigSnapshot"
SNAPSHOT_ARN_TEMPLATE = "urn:openraven:aws:{region_id}:{account_id}:mimir/snapshot"
LAST_SUCCESSFUL_TIME_PATH = ("deliveryChannelStatus", "configSnapshotDeliveryInfo", "lastSuccessfulTime")


def snapshot_prefix(account_id: str, region_id: str, delivered_at, key_prefix: Optional[str] = None) -> str:
    """Object key prefix of the snapshots delivered on the day of ``delivered_at`` (UTC)."""
    prefix = SNAPSHOT_PREFIX_TEMPLATE.format(
        account_id=account_id,
        region_id=region_id,
        year=delivered_at.year,
        month=delivered_at.month,
        day=delivered_at.day,
    )
    if key_prefix:
        return f"{key_prefix.strip('/')}/{prefix}"
    return prefix


def snapshot_arn(account_id: str, region_id: str) -> str:
    return SNAPSHOT_ARN_TEMPLATE.format(account_id=account_id, region_id=region_id)


def _matches(value: Optional[str], wanted: Optional[str]) -> bool:
    return wanted is None or value == wanted


class SnapshotIngester:
    """Detect, fetch and index new configuration snapshots."""

    def __init__(
        self,
        store: DocumentStore,
        broker: CredentialBroker,
        inventory: ConfigServiceInventory,
        query_limit: int = 1000,
    ):
        self.store = store
        self.broker = broker
        self.inventory = inventory
        self.query_limit = query_limit

    def get_snapshot_documents(self, account_id: Optional[str] = None, region_id: Optional[str] = None) -> list:
        """Return stored snapshot records filtered by account and/or region."""
        filters = {}
        if account_id is not None:
            filters["awsAccountId"] = account_id
        if region_id is not None:
            filters["awsRegion"] = region_id

        limit = 1 if account_id is not None and region_id is not None else self.query_limit
        return self.store.query(index_name(SNAPSHOT_RESOURCE_TYPE), filters or None, limit)

    def _account_documents(self, account_id: Optional[str]) -> list:
        accounts = [
            account
            for account in self.inventory.get_config_service_info(account_id)
            if _matches(account.get("awsAccountId"), account_id)
        ]
        if not accounts:
            raise NotFoundError(
                "No account documents stored, discover the config service first"
            )
        return accounts

    def ingest(self, account_id: Optional[str] = None, region_id: Optional[str] = None) -> BatchOutcome:
        """Ingest the newest snapshot of every matching account/region.

        Returns:
            A BatchOutcome keyed by "<account>/<region>"; succeeded items carry
            the new snapshot record, skipped items were already processed or
            have no Config delivery set up.
        """
        outcome = BatchOutcome()

        for account in self._account_documents(account_id):
            current_account = account["awsAccountId"]
            previous = self.get_snapshot_documents(current_account, region_id)

            for region in account.get("regions") or []:
                current_region = region["id"]
                if not _matches(current_region, region_id):
                    continue

                key = f"{current_account}/{current_region}"
                last_document = next(
                    (
                        document
                        for document in previous
                        if document.get("awsRegion") == current_region
                        and document.get("awsAccountId") == current_account
                    ),
                    None,
                )
                try:
                    record = self.process_snapshot(account, region, last_document)
                except AlreadyProcessedError as e:
                    logger.info(
                        "Snapshot already processed",
                        extra={"action": "ingest", "account_id": current_account, "region": current_region},
                    )
                    outcome.skipped(key, e)
                except MissingConfigurationError as e:
                    logger.debug(
                        "No snapshot delivery configured",
                        extra={"action": "ingest", "account_id": current_account, "region": current_region},
                    )
                    outcome.skipped(key, e)
                except (
                    AuthorizationError,
                    NotFoundError,
                    ClientError,
                    BotoCoreError,
                    OSError,
                    ValueError,
                ) as e:
                    logger.warning(
                        "Failed to ingest snapshot",
                        extra={
                            "action": "ingest",
                            "account_id": current_account,
                            "region": current_region,
                            "master_account_id": account.get("masterAccountId"),
                            "error": str(e),
                        },
                    )
                    outcome.failed(key, e)
                else:
                    self._store_record(key, record, outcome)
        return outcome

    def _store_record(self, key: str, record: dict, outcome: BatchOutcome) -> None:
        # Each record is stored as soon as its region is ingested
        written = self.store.bulk_upsert([record])
        if written.has_failures:
            error = written.with_status(Status.FAILED)[0].error
            logger.warning(
                "Failed to store snapshot record",
                extra={"action": "ingest", "key": key, "resource_id": record["resourceId"], "error": error},
            )
            outcome.failed(key, f"Snapshot record rejected: {error}")
        else:
            outcome.succeeded(key, record)

    def process_snapshot(self, account: dict, region: dict, last_document: Optional[dict]) -> dict:
        """Load the newest snapshot of one account/region and return its record.

        Raises:
            MissingConfigurationError: If the region has no delivery bucket or delivery time
            AlreadyProcessedError: If the delivery time matches ``last_document``
            NotFoundError: If no snapshot object exists under the day prefix
            ValueError: If the snapshot is not a JSON object with a configurationItems list
        """
        account_id = account["awsAccountId"]
        region_id = region["id"]
        bucket = dig(region, "deliveryChannel", "s3BucketName")
        last_successful_time = dig(region, *LAST_SUCCESSFUL_TIME_PATH)

        if not bucket or not last_successful_time:
            raise MissingConfigurationError(
                f"Missing snapshot information for account {account_id}, region {region_id}, "
                f"bucket {bucket!r}, lastSuccessfulTime {last_successful_time!r}"
            )

        delivered_at = parse_instant(last_successful_time)
        if parse_instant(dig(last_document, *LAST_SUCCESSFUL_TIME_PATH)) == delivered_at:
            raise AlreadyProcessedError(
                f"Snapshot already processed date: {delivered_at.isoformat()}, "
                f"account: {account_id}, region: {region_id}"
            )

        prefix = snapshot_prefix(
            account_id, region_id, delivered_at, dig(region, "deliveryChannel", "s3KeyPrefix")
        )

        with self.broker.session_for_account(account_id) as session:
            with closing(session.client("s3", region_name=region_id, config=boto_config)) as client:
                listing = client.list_objects_v2(Bucket=bucket, Prefix=prefix, MaxKeys=1)
                contents = listing.get("Contents", [])
                if not contents:
                    raise NotFoundError(f"No snapshot object in s3://{bucket}/{prefix}")

                snapshot_key = contents[0]["Key"]
                response = client.get_object(Bucket=bucket, Key=snapshot_key)
                with closing(response["Body"]) as body, gzip.GzipFile(fileobj=body) as stream:
                    snapshot = json.load(stream)

        items = snapshot.get("configurationItems") if isinstance(snapshot, dict) else None
        if not isinstance(items, list):
            raise ValueError(f"Snapshot s3://{bucket}/{snapshot_key} has no configurationItems list")
        items = [item for item in items if isinstance(item, dict)]
        written = self.store.bulk_upsert(items)

        logger.info(
            "Ingested configuration snapshot",
            extra={
                "action": "process_snapshot",
                "account_id": account_id,
                "region": region_id,
                "key": snapshot_key,
                "items": len(items),
                "written": written.written,
            },
        )

        return {
            "awsAccountId": account_id,
            "awsRegion": region_id,
            "masterAccountId": account.get("masterAccountId"),
            "resourceId": snapshot_key,
            "resourceName": snapshot_key,
            "resourceType": SNAPSHOT_RESOURCE_TYPE,
            "arn": snapshot_arn(account_id, region_id),
            "s3BucketName": bucket,
            "itemsWritten": written.written,
            "lastSuccessfulTime": delivered_at.isoformat(),
            "deliveryChannel": region.get("deliveryChannel"),
            "deliveryChannelStatus": region.get("deliveryChannelStatus"),
        }

    def deliver(self, account_id: Optional[str] = None, region_id: Optional[str] = None) -> BatchOutcome:
        """Ask AWS Config to deliver a fresh snapshot for every matching account/region.

        Regions without a delivery channel are left out. The new snapshot is
        not waited for; run ``ingest`` once it has been delivered.
        """
        outcome = BatchOutcome()

        for account in self._account_documents(account_id):
            current_account = account["awsAccountId"]
            for region in account.get("regions") or []:
                current_region = region["id"]
                channel_name = dig(region, "deliveryChannel", "name")
                if not _matches(current_region, region_id) or not channel_name:
                    continue

                key = f"{current_account}/{current_region}"
                try:
                    snapshot_id = self.request_delivery(current_account, current_region, channel_name)
                except (AuthorizationError, ClientError, BotoCoreError) as e:
                    logger.warning(
                        "Failed to deliver snapshot",
                        extra={
                            "action": "deliver",
                            "account_id": current_account,
                            "region": current_region,
                            "delivery_channel": channel_name,
                            "master_account_id": account.get("masterAccountId"),
                            "error": str(e),
                        },
                    )
                    outcome.failed(key, e)
                    continue

                outcome.succeeded(
                    key,
                    {
                        "awsAccountId": current_account,
                        "awsRegion": current_region,
                        "deliveryChannelName": channel_name,
                        "configSnapshotId": snapshot_id,
                    },
                )
        return outcome

    def request_delivery(self, account_id: str, region_id: str, channel_name: str) -> str:
        with self.broker.session_for_account(account_id) as session:
            with closing(session.client("config", region_name=region_id, config=boto_config)) as client:
                response = client.deliver_config_snapshot(deliveryChannelName=channel_name)
        return response["configSnapshotId"]
