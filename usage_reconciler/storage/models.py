"""
Data models for storage layer.

Defines the stored usage record and the clock used to stamp it.
"""

import time
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

DAY_MS = 24 * 60 * 60 * 1000


def current_time_ms() -> int:
    """Server wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class UsageRecord:
    """Immutable usage event reported by the desktop client.

    ``timestamp`` is always assigned by the server at write time.
    Records are never updated; they are removed only by a bulk clear.
    Synthetic records are fabricated for display and never persisted.
    """
    model_name: str
    image_count: int
    timestamp: int
    user_id: Optional[str] = None
    record_id: Optional[int] = None
    synthetic: bool = False

    def with_user(self, user_id: Optional[str]) -> "UsageRecord":
        """Copy of this record under another identifier, not yet stored."""
        return replace(self, user_id=user_id, record_id=None)

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation using the canonical field names."""
        data: Dict[str, Any] = {
            "modelName": self.model_name,
            "imageCount": self.image_count,
            "timestamp": self.timestamp,
            "userId": self.user_id,
        }
        if self.record_id is not None:
            data["_id"] = self.record_id
        if self.synthetic:
            data["synthetic"] = True
        return data
