"""
Discover the AWS Organization tree and persist it as one document.

The tree is built with an explicit work-list rather than recursion so that
deep organizations cannot exhaust the call stack. Each unit is appended to
the work-list once when it is discovered and removed once when its children
have been enumerated.
"""

import logging
from collections import deque
from contextlib import closing
from typing import Iterator, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .credentials import CredentialBroker, boto_config
from .document_store import DocumentStore, index_name
from .documents import normalize
from .errors import AuthorizationError

logger = logging.getLogger(__name__)

ORGANIZATION_RESOURCE_TYPE = "AWSOrganization"


def walk_units(organization: dict) -> Iterator[dict]:
    """Yield every organizational unit of a stored organization document once.

    Roots come first, then units in discovery order.
    """
    pending = deque(organization.get("roots") or [])
    while pending:
        unit = pending.popleft()
        pending.extend(unit.get("organizationalUnits") or [])
        yield unit


def iter_accounts(organization: dict, account_id: Optional[str] = None) -> Iterator[dict]:
    """Yield the accounts of every unit, optionally only ``account_id``."""
    for unit in walk_units(organization):
        for account in unit.get("accounts") or []:
            if account_id is None or account.get("id") == account_id:
                yield account


def _paginate(client, operation: str, result_key: str, **kwargs) -> list:
    paginator = client.get_paginator(operation)
    items = []
    for page in paginator.paginate(**kwargs):
        items.extend(page.get(result_key, []))
    return items


class OrganizationCrawler:
    """Build and store the organization document."""

    def __init__(
        self,
        store: DocumentStore,
        broker: CredentialBroker,
        region: str = "us-east-1",
        client_factory=None,
    ):
        self.store = store
        self.broker = broker
        self.region = region
        # Organizations client built from the discovery account's own credentials
        self._client_factory = client_factory or (
            lambda: boto3.client("organizations", region_name=region, config=boto_config)
        )

    def get_organization_document(self) -> Optional[dict]:
        """Return the stored organization document, or None before the first crawl."""
        documents = self.store.query(index_name(ORGANIZATION_RESOURCE_TYPE))
        return documents[0] if documents else None

    def discover_organization(self) -> Optional[dict]:
        """Describe the organization, walk its tree from the master account and store it."""
        with closing(self._client_factory()) as client:
            organization = normalize(client.describe_organization()["Organization"], camel=True)

        master_account_id = organization["masterAccountId"]
        try:
            with self.broker.session_for_master(master_account_id) as session:
                with closing(
                    session.client("organizations", region_name=self.region, config=boto_config)
                ) as client:
                    organization["roots"] = self.build_tree(client)
        except (AuthorizationError, ClientError, BotoCoreError) as e:
            logger.warning(
                "Failed to enumerate organization tree",
                extra={
                    "action": "discover_organization",
                    "master_account_id": master_account_id,
                    "error": str(e),
                },
            )
            # Keep the last known tree rather than replacing it with nothing
            previous = self.get_organization_document() or {}
            organization["roots"] = previous.get("roots", [])

        organization.update(
            {
                "awsAccountId": master_account_id,
                "resourceId": organization["id"],
                "resourceName": organization["id"],
                "resourceType": ORGANIZATION_RESOURCE_TYPE,
            }
        )

        self.store.bulk_upsert([organization])
        return self.get_organization_document()

    def build_tree(self, client) -> list:
        """Enumerate roots and every unit and account beneath them."""
        roots = [normalize(root, camel=True) for root in _paginate(client, "list_roots", "Roots")]

        pending = deque(roots)
        visited = 0
        while pending:
            unit = pending[0]
            unit["organizationalUnits"] = []
            unit["accounts"] = []

            for child in _paginate(
                client, "list_children", "Children",
                ParentId=unit["id"], ChildType="ORGANIZATIONAL_UNIT",
            ):
                response = client.describe_organizational_unit(OrganizationalUnitId=child["Id"])
                child_unit = normalize(response["OrganizationalUnit"], camel=True)
                child_unit.update(normalize(child, camel=True))
                unit["organizationalUnits"].append(child_unit)
                pending.append(child_unit)

            for child in _paginate(
                client, "list_children", "Children",
                ParentId=unit["id"], ChildType="ACCOUNT",
            ):
                response = client.describe_account(AccountId=child["Id"])
                account = normalize(response["Account"], camel=True)
                account.update(normalize(child, camel=True))
                unit["accounts"].append(account)

            pending.popleft()
            visited += 1

        logger.info(
            "Enumerated organization tree",
            extra={"action": "build_tree", "roots": len(roots), "units": visited},
        )
        return roots
