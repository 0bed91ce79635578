"""Per-item results aggregated into a batch outcome."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Status(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ItemResult:
    """Result of processing one unit of work (a document, an account, a region)."""

    # Identifies the unit, e.g. "222222222222/us-east-1" or a document id
    key: str
    status: Status
    value: Any = None
    error: Optional[str] = None


@dataclass
class BatchOutcome:
    """Ordered collection of item results for one operation."""

    results: list = field(default_factory=list)

    def succeeded(self, key: str, value: Any = None) -> ItemResult:
        return self._add(ItemResult(key, Status.SUCCEEDED, value=value))

    def skipped(self, key: str, error: Any) -> ItemResult:
        return self._add(ItemResult(key, Status.SKIPPED, error=str(error)))

    def failed(self, key: str, error: Any) -> ItemResult:
        return self._add(ItemResult(key, Status.FAILED, error=str(error)))

    def extend(self, other: "BatchOutcome") -> None:
        self.results.extend(other.results)

    def _add(self, result: ItemResult) -> ItemResult:
        self.results.append(result)
        return result

    def with_status(self, status: Status) -> list:
        return [result for result in self.results if result.status == status]

    @property
    def values(self) -> list:
        """Values of succeeded items, in processing order."""
        return [result.value for result in self.with_status(Status.SUCCEEDED)]

    @property
    def written(self) -> int:
        return len(self.with_status(Status.SUCCEEDED))

    @property
    def has_failures(self) -> bool:
        return any(result.status == Status.FAILED for result in self.results)

    def summary(self) -> dict:
        return {status.value: len(self.with_status(status)) for status in Status}
