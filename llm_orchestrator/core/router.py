"""
Model routing.

Maps (intent, complexity) to a primary model and a fallback using a fixed
routing matrix. Routing is pure: the same inputs always give the same
decision, and nothing here looks at budgets or upstream state.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

from .registry import (
    MODEL_REGISTRY,
    Complexity,
    ModelProfile,
    ModelRegistry,
    Priority,
    TaskIntent,
)

logger = logging.getLogger(__name__)

# Context reserved for an attached media description
MEDIA_CONTEXT_TOKENS = 1500

DRAFT_MODEL = "llama-3.3-70b-versatile"
CRITIQUE_MODEL_STRONG = "deepseek-r1-distill-llama-70b"
CRITIQUE_MODEL_LIGHT = "deepseek-r1-distill-qwen-32b"

# High-stakes work that always gets a draft and a critique
TWO_PASS_ROUTES = frozenset({
    (TaskIntent.IDEATION, Complexity.HIGH),
    (TaskIntent.ANALYSIS, Complexity.HIGH),
})

_LLAMA_70B = "llama-3.3-70b-versatile"
_LLAMA_8B = "llama-3.1-8b-instant"
_GEMMA = "gemma2-9b-it"
_SABA = "mistral-saba-24b"
_QWEN = "qwen/qwen3-32b"
_R1_70B = "deepseek-r1-distill-llama-70b"
_R1_32B = "deepseek-r1-distill-qwen-32b"


@dataclass(frozen=True)
class RoutingRule:
    """Candidates for one matrix cell, best quality first."""
    candidates: Tuple[str, ...]
    reasoning: str


@dataclass(frozen=True)
class RouterDecision:
    """Outcome of routing one request."""
    primary: str
    fallback: str
    estimated_cost: int  # estimated total tokens (input and output)
    reasoning: str
    requires_two_pass: bool


ROUTING_MATRIX: Dict[TaskIntent, Dict[Complexity, RoutingRule]] = {
    TaskIntent.CLASSIFICATION: {
        Complexity.LOW: RoutingRule((_LLAMA_8B, _GEMMA, _SABA), "Fast model for simple labels"),
        Complexity.MEDIUM: RoutingRule((_LLAMA_8B, _SABA, _GEMMA), "Fast model with nuance"),
        Complexity.HIGH: RoutingRule((_LLAMA_70B, _LLAMA_8B), "Larger model for ambiguous categories"),
    },
    TaskIntent.SUMMARIZATION: {
        Complexity.LOW: RoutingRule((_SABA, _LLAMA_8B), "Cheap model for short content"),
        Complexity.MEDIUM: RoutingRule((_QWEN, _SABA), "Summarization specialist"),
        Complexity.HIGH: RoutingRule((_QWEN, _LLAMA_70B), "Summarization specialist for long content"),
    },
    TaskIntent.IDEATION: {
        Complexity.LOW: RoutingRule((_LLAMA_8B, _LLAMA_70B), "Fast creative generation"),
        Complexity.MEDIUM: RoutingRule((_LLAMA_70B, _LLAMA_8B), "Versatile model for creative work"),
        Complexity.HIGH: RoutingRule((_LLAMA_70B, _QWEN), "Versatile model for strategy generation"),
    },
    TaskIntent.ANALYSIS: {
        Complexity.LOW: RoutingRule((_LLAMA_8B, _LLAMA_70B), "Fast structured insight"),
        Complexity.MEDIUM: RoutingRule((_LLAMA_70B, _LLAMA_8B), "Versatile model for diagnostics"),
        Complexity.HIGH: RoutingRule((_LLAMA_70B, _QWEN), "Versatile model for deep analysis"),
    },
    TaskIntent.REASONING: {
        Complexity.LOW: RoutingRule((_LLAMA_8B, _R1_32B), "Fast model for simple logic"),
        Complexity.MEDIUM: RoutingRule((_R1_32B, _LLAMA_70B), "Reasoning model for rubric scoring"),
        Complexity.HIGH: RoutingRule((_R1_70B, _R1_32B), "Strongest reasoning model for multi-step logic"),
    },
    TaskIntent.CRITIQUE: {
        Complexity.LOW: RoutingRule((_LLAMA_70B, _LLAMA_8B), "Versatile model for light review"),
        Complexity.MEDIUM: RoutingRule((_R1_32B, _LLAMA_70B), "Reasoning model for gap analysis"),
        Complexity.HIGH: RoutingRule((_R1_70B, _R1_32B), "Strongest reasoning model for validation"),
    },
}


class ModelRouter:
    """Chooses a primary and fallback model for a classified request."""

    def __init__(self, registry: ModelRegistry = MODEL_REGISTRY):
        self.registry = registry

    def route(
        self,
        intent: TaskIntent,
        complexity: Complexity,
        input_tokens: int,
        priority: Priority = Priority.QUALITY,
        has_media: bool = False,
        requires_two_pass: bool = False,
    ) -> RouterDecision:
        """Route a request to a primary model and a fallback.

        Args:
            intent: Classified intent
            complexity: Classified complexity
            input_tokens: Estimated input size
            priority: Tie-break preference between candidates
            has_media: Whether a media description is attached
            requires_two_pass: Caller request for two-pass; high ideation and
                high analysis are always two-pass

        Returns:
            RouterDecision
        """
        rule = ROUTING_MATRIX[intent][complexity]
        candidates = self._fitting(rule.candidates, input_tokens, has_media)
        primary = self._pick(candidates, complexity, priority)
        fallback = self._fallback(primary, intent)

        reasoning = f"{rule.reasoning} ({intent.value}/{complexity.value}, {priority.value})"
        if primary.id != rule.candidates[0]:
            reasoning += f"; chose {primary.display_name} over {self.display_name(rule.candidates[0])}"

        decision = RouterDecision(
            primary=primary.id,
            fallback=fallback,
            estimated_cost=input_tokens * 2,
            reasoning=reasoning,
            requires_two_pass=requires_two_pass or (intent, complexity) in TWO_PASS_ROUTES,
        )
        logger.info("Routed %s/%s to %s (fallback %s)",
                    intent.value, complexity.value, decision.primary, decision.fallback)
        return decision

    def draft_model(self, intent: TaskIntent) -> str:
        """Model used for the draft pass of a two-pass request."""
        return DRAFT_MODEL

    def critique_model(self, complexity: Complexity) -> str:
        """Model used for the critique pass of a two-pass request."""
        if complexity == Complexity.LOW:
            return CRITIQUE_MODEL_LIGHT
        return CRITIQUE_MODEL_STRONG

    def display_name(self, model_id: str) -> str:
        return self.registry.display_name(model_id)

    def _fitting(self, candidate_ids, input_tokens: int, has_media: bool) -> List[ModelProfile]:
        needed = input_tokens + (MEDIA_CONTEXT_TOKENS if has_media else 0)
        profiles = [self.registry.get(c) for c in candidate_ids]
        fitting = [p for p in profiles if p.context_window >= needed]
        if fitting:
            return fitting
        # nothing fits: the largest window has the best chance
        largest = max(profiles, key=lambda p: p.context_window)
        logger.warning("No candidate fits %d tokens, using %s", needed, largest.id)
        return [largest]

    def _pick(self, candidates: List[ModelProfile], complexity: Complexity,
              priority: Priority) -> ModelProfile:
        if priority == Priority.QUALITY:
            return candidates[0]
        if priority == Priority.SPEED and complexity == Complexity.HIGH:
            return candidates[0]
        # min() returns the first of equal ranks, keeping quality order on ties
        return min(candidates, key=lambda p: p.cost_class.rank)

    def _fallback(self, primary: ModelProfile, intent: TaskIntent) -> str:
        alternatives = [p for p in self.registry.models_for(intent) if p.id != primary.id]
        if not alternatives:
            return primary.id
        return min(alternatives, key=lambda p: p.cost_class.rank).id
