"""
Drift detection for model behaviour.

Compares a model's recent window against its own historical baseline.
Drift is never asserted from a window that is too small to be meaningful.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from llm_orchestrator.config.loader import DriftSettings
from llm_orchestrator.storage.models import WindowAggregate


class DriftSignal(Enum):
    """Outcome of a drift comparison."""
    NO_SIGNAL = "no_signal"  # Insufficient data in at least one window
    STABLE = "stable"
    DRIFTING = "drifting"


@dataclass(frozen=True)
class DriftReport:
    """Recent vs historical comparison for one model."""
    model_id: str
    signal: DriftSignal
    recent: WindowAggregate
    historical: WindowAggregate
    latency_change_pct: Optional[float]
    reasons: tuple = ()

    @property
    def drift_detected(self) -> Optional[bool]:
        """True/False when both windows have data, None for no signal."""
        if self.signal == DriftSignal.NO_SIGNAL:
            return None
        return self.signal == DriftSignal.DRIFTING


@dataclass(frozen=True)
class DriftWarning:
    """Observational warning surfaced to operators. Never blocks a request."""
    model_id: str
    message: str


def compute_drift(
    model_id: str,
    recent: WindowAggregate,
    historical: WindowAggregate,
    settings: Optional[DriftSettings] = None,
) -> DriftReport:
    """Decide whether a model has drifted from its historical baseline.

    Rules:
    - Latency: recent mean latency > historical mean * (1 + latency_increase)
    - Errors: recent error rate > 0 and > historical rate * error_rate_multiplier

    Args:
        model_id: Model being checked
        recent: Aggregate over the recent window
        historical: Aggregate over the historical window (recent excluded)
        settings: Thresholds; defaults to DriftSettings()

    Returns:
        DriftReport; NO_SIGNAL when either window has fewer than min_samples
    """
    settings = settings or DriftSettings()

    if (recent.sample_count < settings.min_samples
            or historical.sample_count < settings.min_samples):
        return DriftReport(
            model_id=model_id,
            signal=DriftSignal.NO_SIGNAL,
            recent=recent,
            historical=historical,
            latency_change_pct=None,
        )

    reasons = []
    latency_change_pct = None
    if historical.average_latency_ms > 0:
        latency_change_pct = (
            (recent.average_latency_ms - historical.average_latency_ms)
            / historical.average_latency_ms * 100
        )
        if latency_change_pct > settings.latency_increase * 100:
            reasons.append(
                f"Latency up {latency_change_pct:.0f}% "
                f"({recent.average_latency_ms:.0f}ms vs {historical.average_latency_ms:.0f}ms)"
            )

    error_threshold = historical.error_rate * settings.error_rate_multiplier
    if recent.error_rate > 0 and recent.error_rate > error_threshold:
        reasons.append(
            f"Error rate {recent.error_rate:.1%} exceeds "
            f"{settings.error_rate_multiplier:g}x historical {historical.error_rate:.1%}"
        )

    return DriftReport(
        model_id=model_id,
        signal=DriftSignal.DRIFTING if reasons else DriftSignal.STABLE,
        recent=recent,
        historical=historical,
        latency_change_pct=latency_change_pct,
        reasons=tuple(reasons),
    )
