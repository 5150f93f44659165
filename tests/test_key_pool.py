"""
Unit tests for the credential pool.
"""

from datetime import datetime, timedelta

from llm_orchestrator.core.registry import MODEL_REGISTRY, CostClass, ModelProfile, TaskIntent
from llm_orchestrator.sdk.key_pool import KeyPool

PROFILE = MODEL_REGISTRY.get("llama-3.1-8b-instant")


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def _small_profile(tokens_per_minute=1000, requests_per_day=2):
    return ModelProfile(
        id="tiny",
        display_name="Tiny",
        context_window=1000,
        cost_class=CostClass.LOW,
        affinities=frozenset({TaskIntent.CLASSIFICATION}),
        tokens_per_minute=tokens_per_minute,
        requests_per_day=requests_per_day,
    )


class TestCheckout:
    """Round-robin checkout."""

    def setup_method(self):
        self.clock = FakeClock(datetime(2024, 6, 1, 12, 0))

    def test_round_robin(self):
        pool = KeyPool(["a", "b", "c"], clock=self.clock)
        keys = [pool.checkout(PROFILE)[1] for _ in range(4)]
        assert keys == ["a", "b", "c", "a"]

    def test_empty_keys_are_ignored(self):
        pool = KeyPool(["a", "", None], clock=self.clock)
        assert len(pool) == 1

    def test_no_keys_returns_none(self):
        assert KeyPool([], clock=self.clock).checkout(PROFILE) is None

    def test_rate_limited_key_is_skipped(self):
        pool = KeyPool(["a", "b"], clock=self.clock)
        pool.mark_rate_limited(0, 60)
        assert [pool.checkout(PROFILE)[1] for _ in range(2)] == ["b", "b"]

    def test_cooldown_expires(self):
        pool = KeyPool(["a"], clock=self.clock)
        pool.mark_rate_limited(0, 30)
        assert pool.checkout(PROFILE) is None

        self.clock.advance(seconds=31)
        assert pool.checkout(PROFILE) == (0, "a")

    def test_daily_request_window(self):
        profile = _small_profile(requests_per_day=2)
        pool = KeyPool(["a"], clock=self.clock)
        assert pool.checkout(profile) is not None
        assert pool.checkout(profile) is not None
        assert pool.checkout(profile) is None

        self.clock.advance(days=1)
        assert pool.checkout(profile) is not None

    def test_minute_token_window(self):
        profile = _small_profile(tokens_per_minute=1000, requests_per_day=100)
        pool = KeyPool(["a"], clock=self.clock)
        assert pool.checkout(profile, 600) is not None
        assert pool.checkout(profile, 600) is None

        self.clock.advance(minutes=1)
        assert pool.checkout(profile, 600) is not None

    def test_oversized_request_allowed_into_empty_window(self):
        profile = _small_profile(tokens_per_minute=1000, requests_per_day=100)
        pool = KeyPool(["a"], clock=self.clock)
        assert pool.checkout(profile, 5000) is not None

    def test_record_tokens_corrects_estimate(self):
        profile = _small_profile(tokens_per_minute=1000, requests_per_day=100)
        pool = KeyPool(["a"], clock=self.clock)
        index, _ = pool.checkout(profile, 900)
        pool.record_tokens(index, profile.id, 900, 100)
        assert pool.checkout(profile, 800) is not None


class TestIntrospection:
    """Status and usage snapshots."""

    def setup_method(self):
        self.clock = FakeClock(datetime(2024, 6, 1, 12, 0))

    def test_status(self):
        pool = KeyPool(["a", "b", "c"], clock=self.clock)
        pool.mark_rate_limited(1, 60)
        assert pool.status() == {"total": 3, "available": 2, "rate_limited": 1}

    def test_daily_usage(self):
        pool = KeyPool(["a", "b"], clock=self.clock)
        for _ in range(3):
            pool.checkout(PROFILE)
        assert pool.daily_usage() == {"total_requests": 3, "per_key": [2, 1]}

        pool.reset_daily_usage()
        assert pool.daily_usage() == {"total_requests": 0, "per_key": [0, 0]}
