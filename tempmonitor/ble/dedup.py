"""
Duplicate suppression for decoded readings.
Sensors broadcast far more often than their values change; only one reading
per device per threshold interval is accepted for persistence.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from ..models import Reading
from ..schema import ScanConfig


class FilterDecision(Enum):
    """Outcome of considering a reading."""
    ACCEPTED = "accepted"
    SUPPRESSED = "suppressed"


class DedupState:
    """Last accepted timestamp per source, owned by one DuplicateFilter."""

    def __init__(self):
        self._last_accepted: Dict[str, datetime] = {}

    def get(self, source_id: str) -> Optional[datetime]:
        return self._last_accepted.get(source_id)

    def mark_accepted(self, source_id: str, timestamp: datetime):
        self._last_accepted[source_id] = timestamp

    def __len__(self) -> int:
        return len(self._last_accepted)

    def __contains__(self, source_id: str) -> bool:
        return source_id in self._last_accepted


class DuplicateFilter:
    """
    Per-device duplicate filter.

    A reading is accepted when its device has no accepted reading yet, or when
    at least ``duplicate_threshold`` seconds have passed since the last accepted
    one. Construct one filter per scan session.
    """

    def __init__(self, state: Optional[DedupState] = None):
        self.state = state if state is not None else DedupState()
        self.accepted_count = 0
        self.suppressed_count = 0

    def consider(self, reading: Reading, config: ScanConfig) -> FilterDecision:
        last_accepted = self.state.get(reading.source_id)

        if last_accepted is not None:
            elapsed = (reading.timestamp - last_accepted).total_seconds()
            if elapsed < config.duplicate_threshold:
                self.suppressed_count += 1
                return FilterDecision.SUPPRESSED

        self.state.mark_accepted(reading.source_id, reading.timestamp)
        self.accepted_count += 1
        return FilterDecision.ACCEPTED
