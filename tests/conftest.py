"""
Shared fixtures and test doubles.

- FakeOpenSearch: In-memory stand-in for the opensearch-py client, storing
  documents by (index, id) so the real DocumentStore can be exercised
- FakeBroker: CredentialBroker double handing out per-account sessions
- FakeOrganizationsClient: Organizations API over a synthetic tree
"""

import copy
import json
from contextlib import contextmanager
from unittest.mock import MagicMock

import pytest
from opensearchpy.exceptions import NotFoundError as IndexNotFound

from resource_discovery.document_store import DocumentStore
from resource_discovery.errors import AuthorizationError

MASTER_ACCOUNT_ID = "111111111111"
MEMBER_ACCOUNT_ID = "222222222222"
ORGANIZATION_ID = "o-exampleorgid"


# ============================================================================
# Document store double
# ============================================================================


class FakeOpenSearch:
    """Minimal opensearch-py client keeping documents in memory."""

    def __init__(self):
        self.indices_data = {}
        self.bulk_calls = []
        self.search_calls = []
        self.reject_ids = set()
        self.closed = 0
        self.indices = MagicMock()

    def bulk(self, body, refresh=None):
        self.bulk_calls.append(body)
        items = []
        for action, document in zip(body[::2], body[1::2]):
            meta = action["index"]
            if meta["_id"] in self.reject_ids:
                items.append(
                    {"index": {"_id": meta["_id"], "status": 400, "error": {"type": "mapper_parsing_exception"}}}
                )
                continue
            stored = json.loads(json.dumps(document, default=str))
            self.indices_data.setdefault(meta["_index"], {})[meta["_id"]] = stored
            items.append({"index": {"_index": meta["_index"], "_id": meta["_id"], "status": 201}})
        return {"errors": any("error" in item["index"] for item in items), "items": items}

    def search(self, index, body):
        self.search_calls.append((index, body))
        if index not in self.indices_data:
            raise IndexNotFound(404, "index_not_found_exception", {"index": index})

        query = body["query"]
        terms = {}
        if "bool" in query:
            for clause in query["bool"]["filter"]:
                terms.update(clause["term"])

        hits = [
            {"_id": document_id, "_source": copy.deepcopy(document)}
            for document_id, document in self.indices_data[index].items()
            if all(document.get(key) == value for key, value in terms.items())
        ]
        return {"hits": {"hits": hits[: body["size"]]}}

    def close(self):
        self.closed += 1

    def documents(self, index):
        return list(self.indices_data.get(index, {}).values())


@pytest.fixture
def search_client():
    return FakeOpenSearch()


@pytest.fixture
def store(search_client):
    return DocumentStore(client_factory=lambda: search_client, templates={})


# ============================================================================
# Credentials double
# ============================================================================


class FakeBroker:
    """Hands out pre-built sessions; accounts in ``denied`` fail to assume."""

    def __init__(self, sessions=None, master_session=None, denied=()):
        self.sessions = sessions or {}
        self.master_session = master_session
        self.denied = set(denied)
        self.acquired = []
        self.released = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        pass

    @contextmanager
    def _scoped(self, account_id, session):
        if account_id in self.denied:
            raise AuthorizationError(account_id, f"arn:aws:iam::{account_id}:role/test", "AccessDenied")
        self.acquired.append(account_id)
        try:
            yield session
        finally:
            self.released.append(account_id)

    def session_for_account(self, account_id):
        return self._scoped(account_id, self.sessions.get(account_id))

    def session_for_master(self, master_account_id):
        return self._scoped(master_account_id, self.master_session)


def make_session(clients, regions=("us-east-1",)):
    """boto3.Session stand-in returning ``clients[service_name]``.

    A dict value maps region names to per-region clients.
    """

    def client(service_name, region_name=None, **kwargs):
        service_client = clients[service_name]
        if isinstance(service_client, dict):
            return service_client[region_name]
        return service_client

    session = MagicMock()
    session.client.side_effect = client
    session.get_available_regions.return_value = list(regions)
    return session


def make_config_client(recorder=True, channel=True, last_successful_time="2024-03-06T12:27:55+00:00"):
    """AWS Config client stand-in for one region."""
    client = MagicMock()
    client.describe_configuration_recorders.return_value = {
        "ConfigurationRecorders": [{"name": "default", "roleARN": "arn:aws:iam::222222222222:role/config"}]
        if recorder
        else []
    }
    client.describe_configuration_recorder_status.return_value = {
        "ConfigurationRecordersStatus": [{"name": "default", "recording": True}] if recorder else []
    }
    client.describe_delivery_channels.return_value = {
        "DeliveryChannels": [{"name": "default", "s3BucketName": "config-bucket"}] if channel else []
    }
    client.describe_delivery_channel_status.return_value = {
        "DeliveryChannelsStatus": [
            {
                "name": "default",
                "configSnapshotDeliveryInfo": {
                    "lastStatus": "SUCCESS",
                    "lastSuccessfulTime": last_successful_time,
                },
            }
        ]
        if channel
        else []
    }
    return client


# ============================================================================
# Organizations double
# ============================================================================


class FakePaginator:
    def __init__(self, client, operation):
        self.client = client
        self.operation = operation

    def paginate(self, **kwargs):
        if self.operation == "list_roots":
            yield {"Roots": [self.client.root]}
            return

        self.client.list_children_calls.append((kwargs["ParentId"], kwargs["ChildType"]))
        node = self.client.tree.get(kwargs["ParentId"], {})
        key = "units" if kwargs["ChildType"] == "ORGANIZATIONAL_UNIT" else "accounts"
        children = [{"Id": child_id, "Type": kwargs["ChildType"]} for child_id in node.get(key, [])]
        # One child per page to exercise pagination
        if not children:
            yield {"Children": []}
        for child in children:
            yield {"Children": [child]}


class FakeOrganizationsClient:
    """Organizations API over ``tree``: {parent_id: {"units": [...], "accounts": [...]}}."""

    def __init__(self, tree, root_id="r-root", master_account_id=MASTER_ACCOUNT_ID):
        self.tree = tree
        self.master_account_id = master_account_id
        self.root = {
            "Id": root_id,
            "Arn": f"arn:aws:organizations::{master_account_id}:root/{ORGANIZATION_ID}/{root_id}",
            "Name": "Root",
            "PolicyTypes": [],
        }
        self.list_children_calls = []
        self.described_units = []
        self.described_accounts = []
        self.closed = False

    def get_paginator(self, operation):
        return FakePaginator(self, operation)

    def describe_organization(self):
        return {
            "Organization": {
                "Id": ORGANIZATION_ID,
                "Arn": f"arn:aws:organizations::{self.master_account_id}:organization/{ORGANIZATION_ID}",
                "FeatureSet": "ALL",
                "MasterAccountArn": f"arn:aws:organizations::{self.master_account_id}:account/{ORGANIZATION_ID}/{self.master_account_id}",
                "MasterAccountId": self.master_account_id,
                "MasterAccountEmail": "master@example.com",
            },
            "ResponseMetadata": {"HTTPStatusCode": 200},
        }

    def describe_organizational_unit(self, OrganizationalUnitId):
        self.described_units.append(OrganizationalUnitId)
        return {
            "OrganizationalUnit": {
                "Id": OrganizationalUnitId,
                "Arn": f"arn:aws:organizations::{self.master_account_id}:ou/{ORGANIZATION_ID}/{OrganizationalUnitId}",
                "Name": f"Unit {OrganizationalUnitId}",
            }
        }

    def describe_account(self, AccountId):
        self.described_accounts.append(AccountId)
        return {
            "Account": {
                "Id": AccountId,
                "Arn": f"arn:aws:organizations::{self.master_account_id}:account/{ORGANIZATION_ID}/{AccountId}",
                "Name": f"Account {AccountId}",
                "Email": f"{AccountId}@example.com",
                "Status": "ACTIVE",
            }
        }

    def close(self):
        self.closed = True


def organization_document(accounts_by_unit, master_account_id=MASTER_ACCOUNT_ID):
    """Stored organization document with one root holding ``accounts_by_unit``.

    ``accounts_by_unit`` maps unit ids to account id lists; "r-root" is the root.
    """
    def account(account_id):
        return {
            "id": account_id,
            "arn": f"arn:aws:organizations::{master_account_id}:account/{ORGANIZATION_ID}/{account_id}",
            "name": f"Account {account_id}",
            "status": "ACTIVE",
        }

    root = {
        "id": "r-root",
        "arn": f"arn:aws:organizations::{master_account_id}:root/{ORGANIZATION_ID}/r-root",
        "accounts": [account(a) for a in accounts_by_unit.get("r-root", [])],
        "organizationalUnits": [
            {"id": unit_id, "accounts": [account(a) for a in account_ids], "organizationalUnits": []}
            for unit_id, account_ids in accounts_by_unit.items()
            if unit_id != "r-root"
        ],
    }
    return {
        "id": ORGANIZATION_ID,
        "arn": f"arn:aws:organizations::{master_account_id}:organization/{ORGANIZATION_ID}",
        "masterAccountId": master_account_id,
        "masterAccountArn": f"arn:aws:organizations::{master_account_id}:account/{ORGANIZATION_ID}/{master_account_id}",
        "roots": [root],
        "awsAccountId": master_account_id,
        "resourceId": ORGANIZATION_ID,
        "resourceName": ORGANIZATION_ID,
        "resourceType": "AWSOrganization",
    }


@pytest.fixture
def example_organization(store):
    """Master 111111111111 in the root, member 222222222222 in an OU."""
    document = organization_document(
        {"r-root": [MASTER_ACCOUNT_ID], "ou-members": [MEMBER_ACCOUNT_ID]}
    )
    store.bulk_upsert([document])
    return document
