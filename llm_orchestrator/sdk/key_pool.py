"""
Pool of interchangeable upstream credentials.

Each key carries its own cool-down and per-model rate windows (tokens per
minute, requests per day). These limits are imposed by the provider and are
tracked independently of the self-imposed cost-class budgets.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from llm_orchestrator.core.registry import ModelProfile

logger = logging.getLogger(__name__)


@dataclass
class _RateWindow:
    """Rolling minute and day counters of one key for one model."""
    minute_start: datetime
    day_start: datetime
    minute_tokens: int = 0
    day_requests: int = 0

    def roll(self, now: datetime) -> None:
        if now - self.minute_start >= timedelta(minutes=1):
            self.minute_start = now
            self.minute_tokens = 0
        if now - self.day_start >= timedelta(days=1):
            self.day_start = now
            self.day_requests = 0

    def has_room(self, profile: ModelProfile, tokens: int) -> bool:
        if self.day_requests >= profile.requests_per_day:
            return False
        # an oversized request is still allowed into an empty minute window
        if self.minute_tokens and self.minute_tokens + tokens > profile.tokens_per_minute:
            return False
        return True


@dataclass
class _KeyState:
    api_key: str
    rate_limited_until: Optional[datetime] = None
    usage_today: int = 0
    last_used: Optional[datetime] = None
    windows: Dict[str, _RateWindow] = field(default_factory=dict)

    def cooling(self, now: datetime) -> bool:
        return self.rate_limited_until is not None and self.rate_limited_until > now


class KeyPool:
    """Round-robin checkout of credentials that are not cooling down.

    All state is mutated under a single lock so concurrent requests never
    observe a half-updated key.
    """

    def __init__(
        self,
        api_keys: Sequence[str],
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._clock = clock
        self._lock = threading.Lock()
        self._keys: List[_KeyState] = [_KeyState(api_key=k) for k in api_keys if k]
        self._next_index = 0
        if not self._keys:
            logger.warning("No upstream API keys configured; model calls will fail")
        else:
            logger.info("Key pool initialized with %d key(s)", len(self._keys))

    def __len__(self) -> int:
        return len(self._keys)

    def checkout(
        self,
        profile: ModelProfile,
        estimated_tokens: int = 0,
    ) -> Optional[Tuple[int, str]]:
        """Reserve the next usable key for one call.

        The returned key's request and token windows are charged immediately,
        so two concurrent callers can never both take the last slot.

        Args:
            profile: Model the call targets (supplies per-key limits)
            estimated_tokens: Tokens to charge against the minute window

        Returns:
            (index, api_key) or None when every key is unavailable
        """
        with self._lock:
            now = self._clock()
            count = len(self._keys)
            for offset in range(count):
                index = (self._next_index + offset) % count
                state = self._keys[index]
                if state.cooling(now):
                    continue
                if state.rate_limited_until is not None:
                    state.rate_limited_until = None

                window = state.windows.get(profile.id)
                if window is None:
                    window = _RateWindow(minute_start=now, day_start=now)
                    state.windows[profile.id] = window
                window.roll(now)
                if not window.has_room(profile, estimated_tokens):
                    continue

                window.day_requests += 1
                window.minute_tokens += estimated_tokens
                state.usage_today += 1
                state.last_used = now
                self._next_index = (index + 1) % count
                return index, state.api_key
            return None

    def mark_rate_limited(self, index: int, retry_after_seconds: float) -> datetime:
        """Put a key into cool-down after a quota response."""
        with self._lock:
            until = self._clock() + timedelta(seconds=retry_after_seconds)
            self._keys[index].rate_limited_until = until
        logger.warning("Key %d rate limited until %s", index, until.isoformat())
        return until

    def record_tokens(self, index: int, model_id: str, estimated: int, actual: int) -> None:
        """Correct a key's minute window once real token usage is known."""
        with self._lock:
            window = self._keys[index].windows.get(model_id)
            if window is not None:
                window.minute_tokens = max(0, window.minute_tokens + actual - estimated)

    def status(self) -> Dict[str, int]:
        """Key pool status for operator introspection."""
        with self._lock:
            now = self._clock()
            rate_limited = sum(1 for k in self._keys if k.cooling(now))
            return {
                "total": len(self._keys),
                "available": len(self._keys) - rate_limited,
                "rate_limited": rate_limited,
            }

    def daily_usage(self) -> Dict[str, object]:
        with self._lock:
            per_key = [k.usage_today for k in self._keys]
        return {"total_requests": sum(per_key), "per_key": per_key}

    def reset_daily_usage(self) -> None:
        with self._lock:
            for state in self._keys:
                state.usage_today = 0
        logger.info("Key pool daily usage reset")
