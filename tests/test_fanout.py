"""
Unit tests for settled fan-out.
"""

import threading

from llm_orchestrator.core.fanout import FanOutTask, run_settled
from llm_orchestrator.core.orchestrator import ErrorKind, OrchestratorResult


class TestRunSettled:
    """Independent calls settle independently."""

    def test_empty(self):
        assert run_settled([]) == []

    def test_results_in_task_order(self):
        release = threading.Event()

        def slow():
            release.wait(timeout=5)
            return "slow"

        def fast():
            release.set()
            return "fast"

        results = run_settled([FanOutTask("slow", slow), FanOutTask("fast", fast)])

        assert [r.name for r in results] == ["slow", "fast"]
        assert [r.value for r in results] == ["slow", "fast"]
        assert all(r.ok for r in results)

    def test_exception_yields_default(self):
        def broken():
            raise RuntimeError("boom")

        results = run_settled([
            FanOutTask("broken", broken, default={"items": []}),
            FanOutTask("fine", lambda: 42),
        ])

        assert results[0].ok is False
        assert results[0].value == {"items": []}
        assert results[0].error == "boom"
        assert results[1].value == 42

    def test_failed_result_yields_default(self):
        failed = OrchestratorResult(
            success=False, error="Daily high budget exhausted", error_kind=ErrorKind.BUDGET_EXCEEDED
        )
        succeeded = OrchestratorResult(success=True, data="summary")

        results = run_settled([
            FanOutTask("critique", lambda: failed, default="n/a"),
            FanOutTask("summary", lambda: succeeded),
        ])

        assert results[0].value == "n/a"
        assert results[0].error == "Daily high budget exhausted"
        assert results[1].value == "summary"
        assert results[1].ok is True

    def test_max_workers(self):
        results = run_settled([FanOutTask(str(i), lambda i=i: i) for i in range(5)], max_workers=2)
        assert [r.value for r in results] == [0, 1, 2, 3, 4]
