"""
Component wiring.

Builds every orchestration component explicitly from a configuration. There
are no module-level singletons; callers own the returned context.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence

from llm_orchestrator.config.loader import (
    OrchestratorConfig,
    apply_env_overrides,
    default_config,
    load_api_keys,
)
from llm_orchestrator.sdk.executor import ModelExecutor
from llm_orchestrator.sdk.key_pool import KeyPool
from llm_orchestrator.storage.repository import ProvenanceRepository

from .classifier import TaskClassifier
from .governor import CostGovernor
from .orchestrator import Orchestrator
from .provenance import ProvenanceStore
from .registry import MODEL_REGISTRY, ModelRegistry
from .router import ModelRouter

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorContext:
    """Every long-lived component of one orchestrator instance."""
    config: OrchestratorConfig
    registry: ModelRegistry
    key_pool: KeyPool
    executor: ModelExecutor
    classifier: TaskClassifier
    router: ModelRouter
    governor: CostGovernor
    provenance: ProvenanceStore
    orchestrator: Orchestrator


def build_context(
    config: Optional[OrchestratorConfig] = None,
    api_keys: Optional[Sequence[str]] = None,
    executor=None,
    clock: Optional[Callable[[], datetime]] = None,
    registry: ModelRegistry = MODEL_REGISTRY,
) -> OrchestratorContext:
    """Wire up an orchestrator.

    Args:
        config: Configuration (defaults to defaults plus LLM_* environment overrides)
        api_keys: Upstream credentials (defaults to GROQ_API_KEY_* variables)
        executor: Replacement executor, e.g. a test double
        clock: Time source shared by governor, key pool and provenance

    Returns:
        OrchestratorContext
    """
    config = config or apply_env_overrides(default_config())
    keys = list(api_keys) if api_keys is not None else load_api_keys()
    clock = clock or datetime.now

    key_pool = KeyPool(keys, clock=clock)
    if executor is None:
        executor = ModelExecutor(
            registry,
            key_pool,
            base_url=config.executor.base_url,
            timeout_seconds=config.executor.timeout_seconds,
            cooldown_seconds=config.executor.cooldown_seconds,
        )

    classifier = TaskClassifier(executor)
    router = ModelRouter(registry)
    governor = CostGovernor(
        registry,
        config.budgets,
        clock=clock,
        warning_threshold=config.warning_threshold,
        critical_threshold=config.critical_threshold,
    )
    provenance = ProvenanceStore(
        ProvenanceRepository(config.provenance.db_path),
        enabled=config.provenance.enabled,
        drift_settings=config.drift,
        clock=clock,
    )
    orchestrator = Orchestrator(
        executor,
        classifier,
        router,
        governor,
        provenance,
        key_pool=key_pool,
        config=config,
        clock=clock,
    )
    return OrchestratorContext(
        config=config,
        registry=registry,
        key_pool=key_pool,
        executor=executor,
        classifier=classifier,
        router=router,
        governor=governor,
        provenance=provenance,
        orchestrator=orchestrator,
    )
