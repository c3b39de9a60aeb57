"""
Core value types for the temperature monitor.
A Reading is the unit that flows through decoding, duplicate suppression,
persistence and history reconciliation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone


TEMPERATURE_MIN_C = -40.0
TEMPERATURE_MAX_C = 80.0
HUMIDITY_MIN_PCT = 0
HUMIDITY_MAX_PCT = 100


class InvalidReadingError(ValueError):
    """Raised when a reading carries values outside physical bounds."""
    pass


@dataclass(frozen=True)
class Reading:
    """
    A single temperature/humidity sample.

    The timestamp is normalized to UTC with second resolution and the
    temperature to one decimal place. ``source_id`` only scopes duplicate
    suppression and does not take part in equality.
    """
    timestamp: datetime
    temperature_c: float
    humidity_pct: int
    source_id: str = field(default="", compare=False)

    def __post_init__(self):
        if not isinstance(self.timestamp, datetime):
            raise InvalidReadingError(f"Timestamp must be a datetime, got {type(self.timestamp).__name__}")
        if self.timestamp.tzinfo is None or self.timestamp.utcoffset() is None:
            raise InvalidReadingError(f"Timestamp must be timezone-aware: {self.timestamp!r}")

        if isinstance(self.humidity_pct, bool) or not isinstance(self.humidity_pct, int):
            raise InvalidReadingError(f"Humidity must be an integer, got {self.humidity_pct!r}")
        if not HUMIDITY_MIN_PCT <= self.humidity_pct <= HUMIDITY_MAX_PCT:
            raise InvalidReadingError(
                f"Humidity {self.humidity_pct}% outside [{HUMIDITY_MIN_PCT}, {HUMIDITY_MAX_PCT}]"
            )

        try:
            # + 0.0 folds -0.0 into 0.0
            temperature = round(float(self.temperature_c), 1) + 0.0
        except (TypeError, ValueError):
            raise InvalidReadingError(f"Temperature must be numeric, got {self.temperature_c!r}")
        if not TEMPERATURE_MIN_C <= temperature <= TEMPERATURE_MAX_C:
            raise InvalidReadingError(
                f"Temperature {temperature}°C outside [{TEMPERATURE_MIN_C}, {TEMPERATURE_MAX_C}]"
            )

        timestamp = self.timestamp.astimezone(timezone.utc).replace(microsecond=0)
        object.__setattr__(self, "timestamp", timestamp)
        object.__setattr__(self, "temperature_c", temperature)

    def with_source(self, source_id: str) -> "Reading":
        """Return a copy of this reading attributed to another device."""
        return Reading(self.timestamp, self.temperature_c, self.humidity_pct, source_id)
