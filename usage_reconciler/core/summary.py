"""
Daily usage summary for dashboards.

Groups records by local calendar day and model name, summing image
counts. Accepts stored records or raw metric dicts in either naming
convention; the input is never modified.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from usage_reconciler.storage.models import UsageRecord

logger = logging.getLogger(__name__)

Metric = Union[UsageRecord, Mapping[str, Any]]


@dataclass(frozen=True)
class NormalizedMetric:
    model_name: str
    image_count: int
    timestamp: int


@dataclass
class DayBucket:
    """Totals per model for one calendar day."""
    day: date
    totals: Dict[str, int] = field(default_factory=dict)

    @property
    def date_key(self) -> str:
        return self.day.strftime("%Y-%m-%d")

    @property
    def label(self) -> str:
        return f"{self.day:%b} {self.day.day}"

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date_key, "formattedDate": self.label, **self.totals}


@dataclass
class UsageSummary:
    days: List[DayBucket] = field(default_factory=list)
    model_names: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.days


def _timestamp_from(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value:
        # fromisoformat only accepts a "Z" suffix from 3.11 on
        if value.endswith(("Z", "z")):
            value = value[:-1] + "+00:00"
        try:
            return int(datetime.fromisoformat(value).timestamp() * 1000)
        except ValueError:
            return None
    return None


def normalize_metric(metric: Metric) -> Optional[NormalizedMetric]:
    """Map a record or raw dict onto canonical fields.

    Canonical names win; ``model``/``count``/``date`` fill the gaps.
    Returns None for entries missing a model, count or time.
    """
    if isinstance(metric, UsageRecord):
        return NormalizedMetric(metric.model_name, metric.image_count, metric.timestamp)
    if not isinstance(metric, Mapping):
        return None

    model_name = metric.get("modelName") or metric.get("model")
    image_count = metric.get("imageCount") or metric.get("count")
    timestamp = _timestamp_from(metric.get("timestamp"))
    if timestamp is None:
        timestamp = _timestamp_from(metric.get("date"))

    if not isinstance(model_name, str) or not model_name:
        return None
    if isinstance(image_count, bool) or not isinstance(image_count, (int, float)) or image_count <= 0:
        return None
    if timestamp is None:
        return None
    return NormalizedMetric(model_name, int(image_count), timestamp)


def summarize_usage(metrics: Iterable[Metric]) -> UsageSummary:
    """Bucket metrics by local day and model, days ascending."""
    buckets: Dict[date, DayBucket] = {}
    model_names: List[str] = []
    skipped = 0

    for metric in metrics:
        normalized = normalize_metric(metric)
        if normalized is None:
            skipped += 1
            continue

        day = datetime.fromtimestamp(normalized.timestamp / 1000).date()
        bucket = buckets.setdefault(day, DayBucket(day=day))
        bucket.totals[normalized.model_name] = (
            bucket.totals.get(normalized.model_name, 0) + normalized.image_count
        )
        if normalized.model_name not in model_names:
            model_names.append(normalized.model_name)

    if skipped:
        logger.debug("Skipped %d metrics missing model, count or time", skipped)

    return UsageSummary(
        days=[buckets[day] for day in sorted(buckets)],
        model_names=model_names,
    )
