"""
Entry points of the discovery pipeline.

Each method runs one operation with its own credential broker and returns
the resulting document collection. Nothing raises past this layer: any
failure is logged and the method returns None, so callers can tell "failed"
(None) apart from "nothing discovered yet" (empty list or empty dict).
"""

import functools
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from .config_service import ConfigServiceInventory
from .credentials import CredentialBroker
from .document_store import DocumentStore
from .organization import OrganizationCrawler
from .snapshots import SnapshotIngester

logger = logging.getLogger(__name__)


def fail_soft(method):
    """Log any exception raised by ``method`` and return None instead."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except Exception as e:
            logger.error(
                "Operation failed",
                extra={"action": method.__name__, "arguments": kwargs or args, "error": str(e)},
                exc_info=True,
            )
            return None

    return wrapper


class Pipeline:
    """The collaborators of one operation, sharing one credential broker."""

    def __init__(self, store: DocumentStore, broker: CredentialBroker, config: dict):
        region = config["primary_region"]
        query_limit = config["query_limit"]
        self.organizations = OrganizationCrawler(store, broker, region=region)
        self.inventory = ConfigServiceInventory(
            store,
            broker,
            self.organizations,
            regions=config.get("regions"),
            query_limit=query_limit,
        )
        self.snapshots = SnapshotIngester(store, broker, self.inventory, query_limit=query_limit)


class ResourceDiscoveryService:
    """Fail-soft facade over the organization, config and snapshot operations."""

    def __init__(self, config: dict, store: Optional[DocumentStore] = None, broker_factory=None):
        self.config = config
        self.store = store or DocumentStore(config["search"], region=config["primary_region"])
        self._broker_factory = broker_factory or (
            lambda: CredentialBroker(region=config["primary_region"])
        )

    @contextmanager
    def pipeline(self) -> Iterator[Pipeline]:
        with self._broker_factory() as broker:
            yield Pipeline(self.store, broker, self.config)

    @fail_soft
    def get_organization_info(self) -> Optional[dict]:
        with self.pipeline() as pipeline:
            return pipeline.organizations.get_organization_document() or {}

    @fail_soft
    def discover_organization_info(self) -> Optional[dict]:
        with self.pipeline() as pipeline:
            return pipeline.organizations.discover_organization() or {}

    @fail_soft
    def get_config_for_account(self, account_id: Optional[str] = None) -> list:
        with self.pipeline() as pipeline:
            return pipeline.inventory.get_config_service_info(account_id)

    @fail_soft
    def discover_config_for_account(self, account_id: Optional[str] = None) -> list:
        with self.pipeline() as pipeline:
            pipeline.inventory.discover(account_id)
            return pipeline.inventory.get_config_service_info(account_id)

    @fail_soft
    def get_snapshots(self, account_id: Optional[str] = None, region_id: Optional[str] = None) -> list:
        with self.pipeline() as pipeline:
            return pipeline.snapshots.get_snapshot_documents(account_id, region_id)

    @fail_soft
    def ingest_from_snapshot(self, account_id: Optional[str] = None, region_id: Optional[str] = None) -> list:
        with self.pipeline() as pipeline:
            pipeline.snapshots.ingest(account_id, region_id)
            return pipeline.snapshots.get_snapshot_documents(account_id, region_id)

    @fail_soft
    def deliver_snapshot(self, account_id: Optional[str] = None, region_id: Optional[str] = None) -> list:
        with self.pipeline() as pipeline:
            return pipeline.snapshots.deliver(account_id, region_id).values

    @fail_soft
    def setup_database(self) -> bool:
        """Drop the aws* indices, reinstall templates and recreate the core indices."""
        return (
            self.store.delete_all_aws_indices()
            and self.store.apply_templates()
            and self.store.ensure_indices_exist(self.config["indices"])
        )
