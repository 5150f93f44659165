"""
Static model capability table.

Router and governor read model characteristics from here so neither of them
hard-codes model specific behaviour.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterator, List

from .errors import UnknownModelError


class TaskIntent(Enum):
    """Purpose of a request, used as the first routing key."""
    ANALYSIS = "analysis"
    SUMMARIZATION = "summarization"
    IDEATION = "ideation"
    CLASSIFICATION = "classification"
    REASONING = "reasoning"
    CRITIQUE = "critique"


class Complexity(Enum):
    """Complexity of a request, used as the second routing key."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CostClass(Enum):
    """Coarse cost grouping; models of one class share a budget pool."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _COST_RANK[self]


_COST_RANK = {CostClass.LOW: 0, CostClass.MEDIUM: 1, CostClass.HIGH: 2}


class Priority(Enum):
    """Caller preference used to break ties between routing candidates."""
    SPEED = "speed"
    QUALITY = "quality"
    COST = "cost"


@dataclass(frozen=True)
class ModelProfile:
    """Capabilities and per-key limits of one upstream model."""
    id: str
    display_name: str
    context_window: int
    cost_class: CostClass
    affinities: FrozenSet[TaskIntent]
    tokens_per_minute: int  # per key
    requests_per_day: int  # per key

    def __post_init__(self):
        if self.context_window <= 0:
            raise ValueError("context_window must be > 0")
        if self.tokens_per_minute <= 0:
            raise ValueError("tokens_per_minute must be > 0")
        if self.requests_per_day <= 0:
            raise ValueError("requests_per_day must be > 0")

    def supports(self, intent: TaskIntent) -> bool:
        return intent in self.affinities


@dataclass(frozen=True)
class ModelRegistry:
    """Immutable lookup table of model profiles keyed by model id."""
    profiles: Dict[str, ModelProfile]

    def get(self, model_id: str) -> ModelProfile:
        """Get the profile for a model.

        Raises:
            UnknownModelError: If the model is not registered
        """
        if model_id not in self.profiles:
            raise UnknownModelError(f"Unknown model: {model_id}")
        return self.profiles[model_id]

    def __contains__(self, model_id: object) -> bool:
        return model_id in self.profiles

    def __iter__(self) -> Iterator[ModelProfile]:
        return iter(self.profiles.values())

    def ids(self) -> List[str]:
        return list(self.profiles)

    def display_name(self, model_id: str) -> str:
        profile = self.profiles.get(model_id)
        return profile.display_name if profile else model_id

    def models_for(self, intent: TaskIntent) -> List[ModelProfile]:
        """All models listing the intent among their affinities, registry order."""
        return [p for p in self.profiles.values() if p.supports(intent)]

    def cheaper_alternatives(self, model_id: str) -> List[ModelProfile]:
        """Models of a strictly cheaper cost class sharing at least one affinity.

        Ordered nearest cost class first, then registry order, so the first
        entry is the smallest step down.
        """
        source = self.get(model_id)
        candidates = [
            p for p in self.profiles.values()
            if p.cost_class.rank < source.cost_class.rank
            and p.affinities & source.affinities
        ]
        # sorted() is stable, registry order is kept within a class
        return sorted(candidates, key=lambda p: -p.cost_class.rank)


def _profile(model_id, display_name, context_window, cost_class, affinities,
             tokens_per_minute=6000, requests_per_day=14400):
    return ModelProfile(
        id=model_id,
        display_name=display_name,
        context_window=context_window,
        cost_class=cost_class,
        affinities=frozenset(affinities),
        tokens_per_minute=tokens_per_minute,
        requests_per_day=requests_per_day,
    )


# Fixed capability table - loaded once, never mutated
MODEL_REGISTRY = ModelRegistry({
    p.id: p for p in (
        _profile(
            "llama-3.3-70b-versatile", "Llama 3.3 70B", 128000, CostClass.MEDIUM,
            {TaskIntent.IDEATION, TaskIntent.ANALYSIS},
        ),
        _profile(
            "llama-3.1-8b-instant", "Llama 3.1 8B", 128000, CostClass.LOW,
            {TaskIntent.CLASSIFICATION},
        ),
        _profile(
            "deepseek-r1-distill-llama-70b", "DeepSeek R1 Distill 70B", 64000, CostClass.HIGH,
            {TaskIntent.REASONING, TaskIntent.CRITIQUE},
            requests_per_day=1000,
        ),
        _profile(
            "deepseek-r1-distill-qwen-32b", "DeepSeek R1 Distill 32B", 64000, CostClass.MEDIUM,
            {TaskIntent.REASONING},
            requests_per_day=1000,
        ),
        _profile(
            "qwen/qwen3-32b", "Qwen3 32B", 32000, CostClass.MEDIUM,
            {TaskIntent.SUMMARIZATION},
            requests_per_day=1000,
        ),
        _profile(
            "gemma2-9b-it", "Gemma2 9B", 8000, CostClass.LOW,
            {TaskIntent.CLASSIFICATION},
        ),
        _profile(
            "mistral-saba-24b", "Mistral Saba 24B", 32000, CostClass.LOW,
            {TaskIntent.CLASSIFICATION, TaskIntent.SUMMARIZATION},
        ),
    )
})
