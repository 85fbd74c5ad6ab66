"""
Endpoint contracts for the usage API.

Framework-neutral handlers for ``POST``, ``GET`` and ``DELETE /usage``.
Each returns an ``ApiResponse`` with a status code and a JSON-ready body;
routing, CORS and authentication are left to the hosting web layer.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from usage_reconciler.config.loader import ServiceConfig, default_config
from usage_reconciler.core.errors import StoreUnavailable, UnrecognizedPayloadShape, UsageError
from usage_reconciler.core.ingestion import IngestionService
from usage_reconciler.core.payload import classify_payload, parse_body
from usage_reconciler.core.reconciliation import QueryResult, ReconciliationService
from usage_reconciler.core.synthesis import SyntheticUsageGenerator
from usage_reconciler.storage.models import UsageRecord, current_time_ms
from usage_reconciler.storage.repository import UsageRepository

logger = logging.getLogger(__name__)

STORED_MESSAGE = "Data from desktop client successfully stored"
NO_DATA_MESSAGE = "No data found for this user"
SYNTHETIC_MESSAGE = "Using generated test data for this user"
EMERGENCY_MESSAGE = "Using emergency fallback data due to error"
ERROR_FALLBACK_MESSAGE = "Using fallback test data due to error"
CLEARED_MESSAGE = "All model usage data cleared"


@dataclass
class ApiResponse:
    status: int
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _error_response(status: int, error: str, **extra: Any) -> ApiResponse:
    return ApiResponse(status=status, body={"success": False, "error": error, **extra})


def _is_true(value: Optional[str]) -> bool:
    return value is not None and str(value).lower() == "true"


class UsageAPI:
    """Request handlers wired to the ingestion and reconciliation services."""

    def __init__(
        self,
        repository: UsageRepository,
        ingestion: IngestionService,
        reconciliation: ReconciliationService,
        on_usage_recorded: Optional[Callable[[List[str]], None]] = None,
    ):
        self.repository = repository
        self.ingestion = ingestion
        self.reconciliation = reconciliation
        self.on_usage_recorded = on_usage_recorded

    def _notify(self, records: List[UsageRecord]) -> None:
        """Run the refresh callback; writes are already committed, so its failure is only logged."""
        identifiers = sorted({record.user_id for record in records if record.user_id})
        if self.on_usage_recorded is None or not identifiers:
            return
        try:
            self.on_usage_recorded(identifiers)
        except Exception:
            logger.exception("Usage refresh callback failed for %s", identifiers)

    def post_usage(self, raw_body: Union[str, bytes], headers: Optional[Mapping[str, str]] = None) -> ApiResponse:
        """Store usage reported by the desktop client."""
        try:
            body = parse_body(raw_body)
            payload = classify_payload(body, headers)
        except UnrecognizedPayloadShape as e:
            return _error_response(400, e.message, receivedFormat=e.keys)
        except UsageError as e:
            return _error_response(400, e.message)

        try:
            if payload.is_batch:
                batch = self.ingestion.ingest(payload.items, payload.request_identifier)
                self._notify(batch.records)
                return ApiResponse(
                    status=200,
                    body={
                        "success": batch.success,
                        "data": [result.to_dict() for result in batch.results],
                    },
                )

            record = self.ingestion.ingest_single(payload.items[0], payload.request_identifier)
        except StoreUnavailable as e:
            self._notify(e.written)
            return _error_response(500, f"Failed to store data: {e.message}")
        except UsageError as e:
            return _error_response(400, e.message)

        self._notify([record])
        return ApiResponse(
            status=200,
            body={"success": True, "data": record.to_dict(), "message": STORED_MESSAGE},
        )

    def get_usage(self, params: Optional[Mapping[str, str]] = None) -> ApiResponse:
        """Usage for one account, or the whole window when no userId is given."""
        params = params or {}
        user_id = params.get("userId")
        force_test_data = _is_true(params.get("forceTestData"))

        if not user_id:
            if force_test_data:
                result = self.reconciliation.query_all_with_forced_fallback()
                if result.error is not None:
                    return self._query_response(
                        result, message=EMERGENCY_MESSAGE, error=f"Original error: {result.error}"
                    )
                return self._query_response(result, message="")
            try:
                result = self.reconciliation.query_all()
            except StoreUnavailable as e:
                return _error_response(500, f"Error retrieving model usage data: {e.message}", data=[])
            return self._query_response(result, message="")

        if force_test_data:
            result = self.reconciliation.query_with_forced_fallback(user_id)
            if result.error is not None:
                return self._query_response(
                    result, message=ERROR_FALLBACK_MESSAGE, error=f"Original error: {result.error}"
                )
            return self._query_response(result)

        try:
            result = self.reconciliation.query_for_account(user_id)
        except StoreUnavailable as e:
            return _error_response(500, f"Error querying database: {e.message}", data=[])
        return self._query_response(result)

    def _query_response(self, result: QueryResult, message: Optional[str] = None, **extra: Any) -> ApiResponse:
        if message is None:
            if result.used_fallback_synthesis:
                message = SYNTHETIC_MESSAGE
            elif result.is_empty:
                message = NO_DATA_MESSAGE
            else:
                message = ""
        body = {
            "success": True,
            "data": [record.to_dict() for record in result.records],
            "message": message,
            "usedFallbackSynthesis": result.used_fallback_synthesis,
            **extra,
        }
        return ApiResponse(status=200, body=body)

    def delete_usage(self) -> ApiResponse:
        """Remove every stored record."""
        try:
            deleted = self.repository.delete_all()
        except StoreUnavailable:
            return _error_response(500, "Failed to clear model usage data")
        return ApiResponse(
            status=200,
            body={"success": True, "message": CLEARED_MESSAGE, "deleted": deleted},
        )


def build_api(
    config: Optional[ServiceConfig] = None,
    clock: Callable[[], int] = current_time_ms,
    on_usage_recorded: Optional[Callable[[List[str]], None]] = None,
) -> UsageAPI:
    """Wire repository, services and handlers from one configuration."""
    config = config or default_config()
    repository = UsageRepository(config.storage.db_path, policy=config.identity)
    synthesizer = SyntheticUsageGenerator(config.synthesis, clock=clock)
    return UsageAPI(
        repository=repository,
        ingestion=IngestionService(repository, clock=clock),
        reconciliation=ReconciliationService(
            repository,
            synthesizer=synthesizer,
            window_days=config.query.window_days,
            scan_limit=config.query.scan_limit,
            clock=clock,
        ),
        on_usage_recorded=on_usage_recorded,
    )
