"""
Usage ingestion.

Validates classified items, stamps them with server time and writes them
through the store adapter's alias dual-write. Batches are processed
sequentially with no cross-item transaction: a failed item never undoes
an earlier item's write.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from .errors import InvalidImageCount, InvalidModelName, StoreUnavailable, UsageError
from .payload import UsageItem
from usage_reconciler.storage.models import UsageRecord, current_time_ms
from usage_reconciler.storage.repository import UsageRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemResult:
    """Outcome of one batch item."""
    index: int
    success: bool
    record: Optional[UsageRecord] = None
    error: Optional[UsageError] = None

    def to_dict(self) -> dict:
        if self.success:
            return {"index": self.index, "success": True, "data": self.record.to_dict()}
        return {
            "index": self.index,
            "success": False,
            "error": self.error.message,
            "reason": self.error.reason,
        }


@dataclass
class BatchResult:
    """Per-item results in input order. ``success`` only if every item succeeded."""
    results: List[ItemResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(result.success for result in self.results)

    @property
    def records(self) -> List[UsageRecord]:
        return [r.record for r in self.results if r.success]


def validate_item(item: UsageItem) -> None:
    """Check model name and image count.

    Raises:
        UsageError: The item's own classification error, if any
        InvalidModelName: If the model name is not non-empty text
        InvalidImageCount: If the count is not a positive whole number
    """
    if item.error is not None:
        raise item.error

    if not isinstance(item.model_name, str) or not item.model_name.strip():
        raise InvalidModelName()

    count = item.image_count
    if isinstance(count, bool) or not isinstance(count, (int, float)):
        raise InvalidImageCount()
    if isinstance(count, float) and (not math.isfinite(count) or not count.is_integer()):
        raise InvalidImageCount()
    if count <= 0:
        raise InvalidImageCount()


class IngestionService:
    """Turns classified usage items into stored records."""

    def __init__(
        self,
        repository: UsageRepository,
        clock: Callable[[], int] = current_time_ms,
    ):
        self.repository = repository
        self.clock = clock

    def _effective_identifier(self, item: UsageItem, request_identifier: Optional[str]) -> str:
        return item.identifier or request_identifier or self.repository.policy.unknown_identifier

    def _write(
        self, item: UsageItem, request_identifier: Optional[str]
    ) -> Tuple[UsageRecord, Optional[UsageRecord]]:
        record = UsageRecord(
            model_name=item.model_name,
            image_count=int(item.image_count),
            timestamp=self.clock(),
            user_id=self._effective_identifier(item, request_identifier),
        )
        canonical, alias = self.repository.write_with_aliases(record)
        logger.debug(
            "Stored %s x%d for %s (alias=%s)",
            canonical.model_name,
            canonical.image_count,
            canonical.user_id,
            alias.user_id if alias else None,
        )
        return canonical, alias

    def ingest_single(self, item: UsageItem, request_identifier: Optional[str] = None) -> UsageRecord:
        """Validate and store one item, raising its failure directly.

        Returns:
            The persisted canonical record

        Raises:
            InvalidModelName, InvalidImageCount, UnrecognizedPayloadShape:
                Validation failure, nothing written
            StoreUnavailable: The write did not happen
        """
        validate_item(item)
        canonical, _ = self._write(item, request_identifier)
        return canonical

    def ingest(self, items: Sequence[UsageItem], request_identifier: Optional[str] = None) -> BatchResult:
        """Validate and store each item independently, in order.

        Validation failures are recorded per item and processing
        continues. ``StoreUnavailable`` aborts the batch and propagates;
        items already written stay written and are listed on the error's
        ``written`` attribute.
        """
        batch = BatchResult()
        for index, item in enumerate(items):
            try:
                validate_item(item)
            except UsageError as e:
                logger.warning("Rejected batch item %d: %s", index, e.reason)
                batch.results.append(ItemResult(index=index, success=False, error=e))
                continue

            try:
                canonical, _ = self._write(item, request_identifier)
            except StoreUnavailable as e:
                e.written = batch.records
                raise
            batch.results.append(ItemResult(index=index, success=True, record=canonical))

        logger.info(
            "Ingested batch of %d items (%d failed)",
            len(batch.results),
            sum(1 for r in batch.results if not r.success),
        )
        return batch
