"""
Synthetic usage data.

Every fabricated record in the system comes from this module. Records
are flagged ``synthetic=True`` and must never be written to the store.
Turning off ``on_identity_miss`` replaces the implicit fallback with a
plain empty result without touching the matching logic.
"""

import logging
import random
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from usage_reconciler.storage.models import DAY_MS, UsageRecord, current_time_ms

logger = logging.getLogger(__name__)

EMERGENCY_IDENTIFIER = "emergency_fallback"
DEFAULT_FORCED_MODELS = ("Stable Diffusion", "DALL-E", "Midjourney")


@dataclass(frozen=True)
class SynthesisConfig:
    """Bounds for fabricated counts (inclusive)."""
    on_identity_miss: bool = True
    today_range: Tuple[int, int] = (5, 24)
    yesterday_range: Tuple[int, int] = (3, 17)
    forced_models: Tuple[str, ...] = DEFAULT_FORCED_MODELS
    forced_days: int = 7

    def __post_init__(self):
        for name in ("today_range", "yesterday_range"):
            low, high = getattr(self, name)
            if low <= 0 or high < low:
                raise ValueError(f"{name} must satisfy 0 < low <= high")
        if not self.forced_models:
            raise ValueError("forced_models cannot be empty")
        if self.forced_days <= 0:
            raise ValueError("forced_days must be > 0")


def distinct_model_names(records: Sequence[UsageRecord]) -> List[str]:
    """Model names in order of first appearance."""
    seen: List[str] = []
    for record in records:
        if record.model_name and record.model_name not in seen:
            seen.append(record.model_name)
    return seen


class SyntheticUsageGenerator:
    """Fabricates placeholder usage so a dashboard is never blank."""

    def __init__(
        self,
        config: SynthesisConfig = SynthesisConfig(),
        clock: Callable[[], int] = current_time_ms,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.clock = clock
        self.rng = rng or random.Random()

    @property
    def enabled(self) -> bool:
        return self.config.on_identity_miss

    def _record(self, model_name: str, count: int, timestamp: int, user_id: str) -> UsageRecord:
        return UsageRecord(
            model_name=model_name,
            image_count=count,
            timestamp=timestamp,
            user_id=user_id,
            synthetic=True,
        )

    def for_identity_miss(self, identifier: str, observed: Sequence[UsageRecord]) -> List[UsageRecord]:
        """Two records per model name seen in other accounts' data.

        One dated now, one dated a day earlier. Empty when nothing was
        observed.
        """
        now = self.clock()
        records = []
        for model_name in distinct_model_names(observed):
            records.append(self._record(
                model_name, self.rng.randint(*self.config.today_range), now, identifier
            ))
            records.append(self._record(
                model_name, self.rng.randint(*self.config.yesterday_range), now - DAY_MS, identifier
            ))
        logger.warning(
            "Serving %d synthetic records for %s (%d models)",
            len(records), identifier, len(records) // 2,
        )
        return records

    def forced(self, identifier: str) -> List[UsageRecord]:
        """Deterministic placeholder data, only on explicit caller request.

        Counts are seeded by the identifier so repeated calls for one
        account return the same values.
        """
        rng = random.Random(identifier)
        now = self.clock()
        records = []
        for day in range(self.config.forced_days):
            for model_name in self.config.forced_models:
                records.append(self._record(
                    model_name, rng.randint(*self.config.today_range), now - day * DAY_MS, identifier
                ))
        logger.warning("Serving %d forced test records for %s", len(records), identifier)
        return records

    def on_store_error(self, identifier: str) -> List[UsageRecord]:
        """Today and yesterday records per forced model for one account.

        Served when an account query failed and fallback was forced.
        """
        now = self.clock()
        records = []
        for model_name in self.config.forced_models:
            records.append(self._record(
                model_name, self.rng.randint(*self.config.today_range), now, identifier
            ))
            records.append(self._record(
                model_name, self.rng.randint(*self.config.yesterday_range), now - DAY_MS, identifier
            ))
        logger.warning("Serving %d error fallback records for %s", len(records), identifier)
        return records

    def emergency(self) -> List[UsageRecord]:
        """Fixed records served when an unscoped query failed and fallback was forced."""
        now = self.clock()
        return [
            self._record("Stable Diffusion", 15, now, EMERGENCY_IDENTIFIER),
            self._record("DALL-E", 8, now - DAY_MS, EMERGENCY_IDENTIFIER),
        ]
