"""
Pydantic schemas for the scan session configuration.
A ScanConfig is an immutable snapshot handed to the scan controller for one run.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_HISTORY_LAST_N = 200


class HistoryLoadPolicy(BaseModel):
    """How much persisted history to load at startup: everything, or the last N rows."""
    model_config = ConfigDict(frozen=True)

    last_n: Optional[int] = Field(None, ge=1, description="Keep only the most recent N rows; None loads all")

    @classmethod
    def full(cls) -> "HistoryLoadPolicy":
        return cls(last_n=None)

    @classmethod
    def last(cls, n: int = DEFAULT_HISTORY_LAST_N) -> "HistoryLoadPolicy":
        return cls(last_n=n)

    @property
    def is_full(self) -> bool:
        return self.last_n is None

    def describe(self) -> str:
        return "full" if self.is_full else f"last {self.last_n}"


class ScanConfig(BaseModel):
    """Immutable scan settings for a single scan session."""
    model_config = ConfigDict(frozen=True)

    target_id: Optional[str] = Field(None, description="Only accept advertisements from this address")
    scan_timeout: float = Field(20.0, gt=0, description="Scan window length in seconds")
    scan_pause: float = Field(20.0, ge=0, description="Pause between scan windows in seconds")
    duplicate_threshold: float = Field(30.0, ge=0, description="Minimum seconds between accepted readings per device")
    continuous_mode: bool = Field(True, description="Scan without pauses")
    history_load_policy: HistoryLoadPolicy = Field(default_factory=HistoryLoadPolicy.full)

    @field_validator("target_id")
    @classmethod
    def normalize_target_id(cls, v):
        """Treat blank targets as absent and compare addresses case-insensitively."""
        if v is None or not v.strip():
            return None
        return v.strip().upper()

    def matches_target(self, source_id: str) -> bool:
        """Check whether an advertisement source passes the target filter."""
        return self.target_id is None or source_id.upper() == self.target_id
