"""
Settled fan-out of independent orchestrator calls.

Runs calls concurrently on a thread pool. A failing call yields its own
default value and never cancels or fails its siblings.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FanOutTask:
    """One independent call and the value to use if it fails."""
    name: str
    call: Callable[[], Any]
    default: Any = None


@dataclass(frozen=True)
class SettledResult:
    name: str
    value: Any
    ok: bool
    error: Optional[str] = None


def _settle(task: FanOutTask) -> SettledResult:
    try:
        outcome = task.call()
    except Exception as e:
        logger.exception("Fan-out task %s raised", task.name)
        return SettledResult(task.name, task.default, ok=False, error=str(e))

    # OrchestratorResult-like values carry their own success flag
    if hasattr(outcome, "success"):
        if not outcome.success:
            logger.warning("Fan-out task %s failed: %s", task.name, outcome.error)
            return SettledResult(task.name, task.default, ok=False, error=outcome.error)
        return SettledResult(task.name, outcome.data, ok=True)
    return SettledResult(task.name, outcome, ok=True)


def run_settled(
    tasks: Sequence[FanOutTask],
    max_workers: Optional[int] = None,
) -> List[SettledResult]:
    """Run tasks concurrently and wait for all of them.

    Args:
        tasks: Calls to run
        max_workers: Thread pool size (defaults to one thread per task)

    Returns:
        One SettledResult per task, in task order
    """
    if not tasks:
        return []
    with ThreadPoolExecutor(max_workers=max_workers or len(tasks)) as executor:
        futures = [executor.submit(_settle, task) for task in tasks]
        return [future.result() for future in futures]
