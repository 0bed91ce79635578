"""
Document store over an OpenSearch (or Elasticsearch-compatible) cluster.

Documents are written to the index named after their ``resourceType``
(lower-cased, colons stripped) under an id derived from their ARN, so
writing the same resource twice replaces the earlier copy.
"""

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional

import boto3
from opensearchpy import AWSV4SignerAuth, OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import ConnectionError as SearchConnectionError
from opensearchpy.exceptions import OpenSearchException

from .documents import utc_now_iso
from .errors import StoreError
from .identifiers import document_arn, encoded_named_uuid
from .outcomes import BatchOutcome, Status

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
AWS_INDEX_PATTERN = "aws*"


def index_name(resource_type: str) -> str:
    """Index for a resource type ("AWS::EC2::Instance" -> "awsec2instance")."""
    return resource_type.replace(":", "").lower()


def load_templates(template_dir: Path = TEMPLATE_DIR) -> dict:
    """Read the index templates shipped with the package, keyed by template name."""
    templates = {}
    for path in sorted(template_dir.glob("*_template.json")):
        with open(path) as f:
            templates[path.name[: -len("_template.json")]] = json.load(f)
    return templates


def build_client(search: dict, region: str = "us-east-1") -> OpenSearch:
    """Create an OpenSearch client from the ``search`` settings block."""
    options = {
        "hosts": [{"host": search["host"], "port": int(search["port"])}],
        "use_ssl": search["protocol"] == "https",
        "verify_certs": search.get("verify_certs", True),
        "timeout": search.get("timeout", 30),
        "max_retries": 3,
        "retry_on_timeout": True,
    }
    if search.get("aws_sigv4"):
        credentials = boto3.Session().get_credentials()
        options["http_auth"] = AWSV4SignerAuth(credentials, region, "es")
        options["connection_class"] = RequestsHttpConnection
    elif search.get("username") and search.get("password"):
        options["http_auth"] = (search["username"], search["password"])
    return OpenSearch(**options)


class DocumentStore:
    """Query, bulk upsert and index lifecycle on the document store.

    A fresh client is opened for each call and closed when the call ends.
    """

    def __init__(
        self,
        search: Optional[dict] = None,
        region: str = "us-east-1",
        client_factory: Optional[Callable[[], OpenSearch]] = None,
        templates: Optional[dict] = None,
    ):
        if client_factory is None:
            if search is None:
                raise ValueError("DocumentStore needs search settings or a client factory")
            client_factory = lambda: build_client(search, region)  # noqa: E731
        self._client_factory = client_factory
        self._templates = templates

    @property
    def templates(self) -> dict:
        if self._templates is None:
            self._templates = load_templates()
        return self._templates

    @contextmanager
    def connect(self) -> Iterator[OpenSearch]:
        client = self._client_factory()
        try:
            yield client
        finally:
            client.close()

    def query(self, index: str, filters: Optional[dict] = None, limit: int = 1) -> list:
        """Return up to ``limit`` documents from ``index`` matching every filter exactly.

        Failures are logged and produce an empty list.
        """
        if filters:
            query = {
                "bool": {
                    "filter": [{"term": {key: value}} for key, value in filters.items()]
                }
            }
        else:
            query = {"match_all": {}}

        try:
            with self.connect() as client:
                response = client.search(index=index, body={"size": limit, "query": query})
        except OpenSearchException as e:
            logger.warning(
                "Failed getting documents",
                extra={"action": "query", "index": index, "filters": filters, "error": str(e)},
            )
            return []

        return [hit["_source"] for hit in response["hits"]["hits"]]

    def bulk_upsert(self, documents: list) -> BatchOutcome:
        """Stamp, identify and index ``documents`` in one bulk request.

        Each document gains ``updatedIso`` and ``documentId`` in place. A
        document that already exists under the same id is fully replaced.

        Returns:
            A BatchOutcome keyed by document id. Individual rejections are
            failed items; documents that were accepted stay written.

        Raises:
            StoreError: If the store cannot be reached at all
        """
        outcome = BatchOutcome()
        actions = []
        pending = []
        updated_iso = utc_now_iso()

        for document in documents:
            arn = document_arn(document)
            resource_type = document.get("resourceType")
            if not arn or not resource_type:
                outcome.failed(
                    str(document.get("resourceId", "<unknown>")),
                    "document has no ARN or resourceType",
                )
                continue

            document["updatedIso"] = updated_iso
            document["documentId"] = encoded_named_uuid(arn)
            actions.append(
                {"index": {"_index": index_name(resource_type), "_id": document["documentId"]}}
            )
            actions.append(document)
            pending.append(document)

        if actions:
            try:
                with self.connect() as client:
                    response = client.bulk(body=actions, refresh="true")
            except SearchConnectionError as e:
                raise StoreError(f"Document store unreachable: {e}") from e
            except OpenSearchException as e:
                for document in pending:
                    outcome.failed(document["documentId"], e)
                pending = []
                response = {"items": []}

            for document, item in zip(pending, response.get("items", [])):
                result = item.get("index", {})
                if result.get("error"):
                    outcome.failed(document["documentId"], json.dumps(result["error"], default=str))
                else:
                    outcome.succeeded(document["documentId"], document)

        if outcome.has_failures:
            logger.warning(
                "Bulk upsert finished with failures",
                extra={
                    "action": "bulk_upsert",
                    "summary": outcome.summary(),
                    "failures": [
                        {"id": failure.key, "error": failure.error}
                        for failure in outcome.with_status(Status.FAILED)
                    ],
                },
            )
        return outcome

    def ensure_indices_exist(self, names: list) -> bool:
        """Create every index in ``names`` that does not exist yet.

        Returns True only if every index exists afterwards.
        """
        with self.connect() as client:
            present = []
            for name in names:
                try:
                    if not client.indices.exists(index=name):
                        client.indices.create(index=name)
                    present.append(True)
                except OpenSearchException as e:
                    logger.warning(
                        "Failure creating index",
                        extra={"action": "ensure_indices_exist", "index": name, "error": str(e)},
                    )
                    present.append(False)
        return all(present)

    def templates_present(self) -> bool:
        """True if every shipped index template is installed."""
        with self.connect() as client:
            present = []
            for name in self.templates:
                try:
                    present.append(client.indices.exists_template(name=name))
                except OpenSearchException as e:
                    logger.warning(
                        "Failure getting index template",
                        extra={"action": "templates_present", "template": name, "error": str(e)},
                    )
                    present.append(False)
        return all(present)

    def apply_templates(self) -> bool:
        """Install or overwrite every shipped index template."""
        with self.connect() as client:
            acknowledged = []
            for name, body in self.templates.items():
                try:
                    response = client.indices.put_template(name=name, body=body)
                    acknowledged.append(bool(response.get("acknowledged")))
                except OpenSearchException as e:
                    logger.error(
                        "Failure putting index template",
                        extra={"action": "apply_templates", "template": name, "error": str(e)},
                    )
                    acknowledged.append(False)
        return all(acknowledged)

    def delete_all_aws_indices(self) -> bool:
        """Delete every index matching ``aws*``."""
        try:
            with self.connect() as client:
                response = client.indices.delete(index=AWS_INDEX_PATTERN)
        except OpenSearchException as e:
            logger.warning(
                "Failure deleting indices",
                extra={"action": "delete_all_aws_indices", "pattern": AWS_INDEX_PATTERN, "error": str(e)},
            )
            return False
        return bool(response.get("acknowledged"))
