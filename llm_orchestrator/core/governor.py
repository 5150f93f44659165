"""
Cost governance and admission control.

Tracks a daily request counter per cost class and allows, denies or
downgrades a call before any cost is incurred. Counters reset lazily at the
first operation after local midnight; no background timer is involved.

Several models share one cost class, so budgets are pooled per class rather
than per model.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from llm_orchestrator.config.loader import BudgetLimits

from .registry import CostClass, ModelRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CostBudget:
    """Snapshot of one cost class budget."""
    cost_class: CostClass
    daily_limit: int
    current_usage: int
    reset_at: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.daily_limit - self.current_usage)

    @property
    def usage_ratio(self) -> float:
        return self.current_usage / self.daily_limit


@dataclass(frozen=True)
class CostDecision:
    """Admission decision for one model call."""
    allowed: bool
    reason: str
    remaining_budget: int
    suggested_downgrade: Optional[str] = None
    # budget day an admitted reservation belongs to
    reset_at: Optional[datetime] = None


@dataclass
class _Counter:
    limit: int
    usage: int = 0


def _next_midnight(now: datetime) -> datetime:
    return datetime(now.year, now.month, now.day, tzinfo=now.tzinfo) + timedelta(days=1)


class CostGovernor:
    """Per-cost-class daily budgets with atomic check-and-increment.

    Every read and write of the counters happens under one lock, so the
    counters and the reset timestamp are always updated together.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        limits: Optional[BudgetLimits] = None,
        clock: Callable[[], datetime] = datetime.now,
        warning_threshold: float = 0.8,
        critical_threshold: float = 0.9,
    ):
        self.registry = registry
        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold
        self._clock = clock
        self._lock = threading.Lock()
        limits = limits or BudgetLimits()
        self._counters: Dict[CostClass, _Counter] = {
            cost_class: _Counter(limit) for cost_class, limit in limits.as_dict().items()
        }
        self._reset_at = _next_midnight(clock())

    def check_budget(self, model_id: str) -> CostDecision:
        """Decide whether a call to model_id may proceed. Read-only.

        Raises:
            UnknownModelError: If the model is not registered
        """
        with self._lock:
            self._maybe_reset()
            return self._decide(model_id)

    def record_usage(self, model_id: str) -> None:
        """Count one attempted call against the model's cost class."""
        cost_class = self.registry.get(model_id).cost_class
        with self._lock:
            self._maybe_reset()
            counter = self._counters[cost_class]
            counter.usage += 1
            usage, limit = counter.usage, counter.limit
        logger.debug("Recorded usage for %s: %s %d/%d", model_id, cost_class.value, usage, limit)

    def admit(self, model_id: str) -> CostDecision:
        """Check and reserve one call in a single atomic step.

        A denied decision reserves nothing. A reservation for a call that is
        never dispatched must be handed back with release(). An allowed
        decision reports the budget left after the reservation.
        """
        with self._lock:
            self._maybe_reset()
            decision = self._decide(model_id)
            if decision.allowed:
                counter = self._counters[self.registry.get(model_id).cost_class]
                counter.usage += 1
                decision = replace(
                    decision,
                    remaining_budget=max(0, counter.limit - counter.usage),
                    reset_at=self._reset_at,
                )
        if not decision.allowed:
            logger.warning("Budget denied %s: %s", model_id, decision.reason)
        return decision

    def release(self, model_id: str, reservation: Optional[CostDecision] = None) -> None:
        """Hand back a reservation made by admit() for an undispatched call.

        A reservation from a budget day that has since been reset is dropped;
        the new day's counter is left alone.
        """
        cost_class = self.registry.get(model_id).cost_class
        with self._lock:
            self._maybe_reset()
            if reservation is not None and reservation.reset_at != self._reset_at:
                logger.debug("Ignoring release of %s from a previous budget day", model_id)
                return
            counter = self._counters[cost_class]
            counter.usage = max(0, counter.usage - 1)

    def can_complete_request(self, model_id: str, estimated_calls: int = 1) -> bool:
        """Whether the model's class has room for estimated_calls more calls."""
        cost_class = self.registry.get(model_id).cost_class
        with self._lock:
            self._maybe_reset()
            counter = self._counters[cost_class]
            return counter.usage + estimated_calls <= counter.limit

    def get_budgets(self) -> Dict[CostClass, CostBudget]:
        with self._lock:
            self._maybe_reset()
            return {
                cost_class: CostBudget(cost_class, c.limit, c.usage, self._reset_at)
                for cost_class, c in self._counters.items()
            }

    def get_usage_stats(self) -> Dict[str, Dict[str, object]]:
        """Usage, limit and percentage per cost class."""
        stats = {}
        for cost_class, budget in self.get_budgets().items():
            stats[cost_class.value] = {
                "used": budget.current_usage,
                "limit": budget.daily_limit,
                "remaining": budget.remaining,
                "percentage": round(budget.usage_ratio * 100),
                "reset_at": budget.reset_at.isoformat(),
            }
        return stats

    def get_warnings(self) -> List[str]:
        """Near-limit conditions. Observational only, never blocks a request."""
        warnings = []
        for cost_class, budget in self.get_budgets().items():
            ratio = budget.usage_ratio
            percentage = round(ratio * 100)
            if ratio >= self.critical_threshold:
                warnings.append(
                    f"CRITICAL: {cost_class.value} budget at {percentage}% "
                    f"({budget.current_usage}/{budget.daily_limit})"
                )
            elif ratio > self.warning_threshold:
                warnings.append(
                    f"WARNING: {cost_class.value} budget at {percentage}% "
                    f"({budget.current_usage}/{budget.daily_limit})"
                )
        return warnings

    def update_budgets(self, limits: Dict[CostClass, int]) -> None:
        """Change daily limits at runtime. Current usage is kept.

        Raises:
            ValueError: If a limit is not a positive integer
        """
        for cost_class, limit in limits.items():
            if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
                raise ValueError(f"{cost_class.value} budget must be a positive integer")
        with self._lock:
            for cost_class, limit in limits.items():
                self._counters[cost_class].limit = limit
        logger.info("Budgets updated: %s", {c.value: v for c, v in limits.items()})

    def force_reset(self) -> None:
        """Zero every counter immediately."""
        with self._lock:
            self._reset(self._clock())
        logger.info("Budgets force reset")

    def _decide(self, model_id: str) -> CostDecision:
        # caller holds the lock
        cost_class = self.registry.get(model_id).cost_class
        counter = self._counters[cost_class]
        remaining = max(0, counter.limit - counter.usage)
        if counter.usage < counter.limit:
            return CostDecision(
                allowed=True,
                reason="Within budget",
                remaining_budget=remaining,
            )

        for alternative in self.registry.cheaper_alternatives(model_id):
            alt_counter = self._counters[alternative.cost_class]
            if alt_counter.usage < alt_counter.limit:
                return CostDecision(
                    allowed=False,
                    reason=(
                        f"{cost_class.value} budget exhausted "
                        f"({counter.usage}/{counter.limit}); downgrade to {alternative.id}"
                    ),
                    remaining_budget=0,
                    suggested_downgrade=alternative.id,
                )

        return CostDecision(
            allowed=False,
            reason=(
                f"Daily {cost_class.value} budget exhausted "
                f"({counter.usage}/{counter.limit}) and no cheaper alternative available"
            ),
            remaining_budget=0,
        )

    def _maybe_reset(self) -> None:
        # caller holds the lock
        now = self._clock()
        if now >= self._reset_at:
            self._reset(now)
            logger.info("Daily budgets reset")

    def _reset(self, now: datetime) -> None:
        for counter in self._counters.values():
            counter.usage = 0
        self._reset_at = _next_midnight(now)
