"""
Reconciliation queries for the usage dashboard.

Account lookups walk a fixed chain, stopping at the first non-empty
result:

1. indexed lookup of the identifier as given
2. indexed lookup of the unprefixed form, if different
3. indexed lookup of the prefixed form, if different
4. bounded scan of the whole time window
5. synthetic records built from the model names found by the scan

All reads are scoped to the trailing window (``timestamp > now - window``).
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .errors import IdentityMiss, StoreUnavailable
from .synthesis import SyntheticUsageGenerator
from usage_reconciler.storage.models import DAY_MS, UsageRecord, current_time_ms
from usage_reconciler.storage.repository import UsageRepository

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30
DEFAULT_SCAN_LIMIT = 10000


@dataclass
class QueryResult:
    """Records for one query plus how they were obtained."""
    records: List[UsageRecord] = field(default_factory=list)
    used_fallback_synthesis: bool = False
    matched_identifier: Optional[str] = None
    forced: bool = False
    error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.records


class ReconciliationService:
    """Finds an account's records despite identifier drift."""

    def __init__(
        self,
        repository: UsageRepository,
        synthesizer: Optional[SyntheticUsageGenerator] = None,
        window_days: int = DEFAULT_WINDOW_DAYS,
        scan_limit: int = DEFAULT_SCAN_LIMIT,
        clock: Callable[[], int] = current_time_ms,
    ):
        if window_days <= 0:
            raise ValueError("window_days must be > 0")
        if scan_limit <= 0:
            raise ValueError("scan_limit must be > 0")
        self.repository = repository
        self.synthesizer = synthesizer or SyntheticUsageGenerator(clock=clock)
        self.window_days = window_days
        self.scan_limit = scan_limit
        self.clock = clock

    def window_start(self) -> int:
        """Exclusive lower bound of the trailing window, in epoch ms."""
        return self.clock() - self.window_days * DAY_MS

    def query_all(self) -> QueryResult:
        """Every record in the window, unfiltered and never synthesized."""
        records = self.repository.fetch_window(self.window_start())
        return QueryResult(records=records)

    def query_all_with_forced_fallback(self) -> QueryResult:
        """Unscoped query that serves the emergency records on store failure."""
        try:
            return self.query_all()
        except StoreUnavailable as e:
            logger.error("Store failed for unscoped query, serving emergency data: %s", e)
            return QueryResult(
                records=self.synthesizer.emergency(),
                used_fallback_synthesis=True,
                forced=True,
                error=str(e),
            )

    def _lookup_chain(self, identifier: str, since: int) -> QueryResult:
        """Indexed lookups over the identifier's forms.

        Raises:
            IdentityMiss: If no form has records in the window
        """
        forms = self.repository.policy.candidate_forms(identifier)
        for form in forms:
            records = self.repository.fetch_for_identifier(form, since)
            logger.debug("Lookup %r: %d records", form, len(records))
            if records:
                return QueryResult(records=records, matched_identifier=form)
        raise IdentityMiss(identifier, forms)

    def query_for_account(self, identifier: str) -> QueryResult:
        """Records for one account, following the fallback chain.

        Raises:
            StoreUnavailable: If any store read fails
        """
        since = self.window_start()
        try:
            return self._lookup_chain(identifier, since)
        except IdentityMiss as miss:
            logger.info("No records for any form of %r (tried %s)", identifier, miss.tried)

        scanned = self.repository.fetch_window(since, limit=self.scan_limit)
        if len(scanned) >= self.scan_limit:
            logger.warning("Window scan hit its limit of %d rows", self.scan_limit)
        if not scanned:
            return QueryResult()

        if not self.synthesizer.enabled:
            return QueryResult()
        if not any(record.user_id for record in scanned):
            return QueryResult()

        synthetic = self.synthesizer.for_identity_miss(identifier, scanned)
        if not synthetic:
            return QueryResult()
        return QueryResult(records=synthetic, used_fallback_synthesis=True)

    def query_with_forced_fallback(self, identifier: str) -> QueryResult:
        """Account query that never comes back empty or failed.

        An empty reconciliation result yields deterministic forced test
        data; a store failure yields today/yesterday placeholders for
        the account with the original error text kept on the result.
        """
        try:
            result = self.query_for_account(identifier)
        except StoreUnavailable as e:
            logger.error("Store failed for %r, serving fallback data: %s", identifier, e)
            return QueryResult(
                records=self.synthesizer.on_store_error(identifier),
                used_fallback_synthesis=True,
                forced=True,
                error=str(e),
            )
        if result.is_empty:
            return QueryResult(
                records=self.synthesizer.forced(identifier),
                used_fallback_synthesis=True,
                forced=True,
            )
        return result
