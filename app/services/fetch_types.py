"""
Shared dataclasses used across the aggregation pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, Literal, TypeVar


T = TypeVar("T")

OutcomeStatus = Literal["success", "failed", "timeout", "rate_limited", "not_found", "skipped"]


@dataclass(slots=True)
class AdapterOutcome(Generic[T]):
    """Result of one adapter call inside a fan-out, success or failure."""
    index: int
    provider: str
    status: OutcomeStatus
    started_at: datetime
    completed_at: datetime
    items: list[T] = field(default_factory=list)
    error: str | None = None
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.completed_at - self.started_at).total_seconds())

    def to_dict(self) -> dict:
        payload = {
            "provider": self.provider,
            "status": self.status,
            "items": len(self.items),
            "attempts": self.attempts,
            "duration_seconds": round(self.duration_seconds, 3),
        }
        if self.error:
            payload["error"] = self.error
        return payload


__all__ = ["AdapterOutcome", "OutcomeStatus"]
