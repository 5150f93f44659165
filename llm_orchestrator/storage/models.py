"""
Data models for storage layer.

Defines the provenance ledger entry.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class RequestProvenance:
    """Immutable record of one model invocation.

    Append-only rows that make routing decisions auditable and feed model
    statistics and drift detection. The only field ever written after
    insertion is quality_score, backfilled once by an external evaluator.
    """
    request_id: str
    model_id: str
    task_type: str
    prompt_hash: str
    output_hash: str
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0
    quality_score: Optional[float] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ModelStats:
    """Aggregate performance of one model over a trailing window."""
    model_id: str
    total_requests: int
    average_latency_ms: int
    average_quality_score: Optional[float]
    error_rate: float
    last_used: Optional[datetime]


@dataclass(frozen=True)
class WindowAggregate:
    """Sample count, mean latency and error rate of one time window."""
    sample_count: int
    average_latency_ms: float
    error_rate: float


@dataclass(frozen=True)
class ErrorEntry:
    """A failed invocation, for operator debugging."""
    request_id: str
    model_id: str
    error: str
    created_at: datetime
