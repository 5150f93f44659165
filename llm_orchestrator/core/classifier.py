"""
Task classifier.

Turns a free-text request into an (intent, complexity, two-pass) judgment
before routing. A classifier failure never aborts the request: it degrades to
a deterministic keyword heuristic.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from llm_orchestrator.sdk.executor import ExecutionOptions, ResponseFormat
from llm_orchestrator.sdk.schemas import ClassifierAnswer, validate_payload

from .errors import ClassificationDegraded, UpstreamError
from .registry import Complexity, TaskIntent
from .token_counter import estimate_tokens

logger = logging.getLogger(__name__)

CLASSIFIER_MODEL = "llama-3.1-8b-instant"
FAST_PATH_MAX_CHARS = 100
MAX_CLASSIFIER_INPUT_CHARS = 2000
HEURISTIC_CONFIDENCE = 0.5
FAST_PATH_CONFIDENCE = 0.9
DEFAULT_MODEL_CONFIDENCE = 0.7

CLASSIFICATION_SYSTEM_PROMPT = """You are a task classifier for an AI routing system. Classify the incoming request.

OUTPUT FORMAT (strict JSON):
{
  "intent": "<one of: analysis, summarization, ideation, classification, reasoning, critique>",
  "complexity": "<one of: low, medium, high>",
  "estimatedTokens": <number>,
  "confidence": <0.0-1.0>,
  "requiresTwoPass": <boolean>
}

INTENT DEFINITIONS:
- analysis: diagnostic evaluation, structured insights
- summarization: compress long content, extract key points
- ideation: creative generation, strategy proposals, messaging
- classification: quick categorization, simple labels
- reasoning: complex logic, scoring with rubrics
- critique: validation, gap analysis, quality checks

COMPLEXITY:
- low: short input (<500 tokens), clear intent
- medium: 500-2000 tokens, some nuance
- high: >2000 tokens or multi-step reasoning

Set requiresTwoPass for strategy generation, final deliverables and client-facing content."""

# checked in order, first match wins
_KEYWORD_RULES = (
    (TaskIntent.SUMMARIZATION, ("summarize", "summary")),
    (TaskIntent.IDEATION, ("generate", "create", "strategy")),
    (TaskIntent.CLASSIFICATION, ("classify", "categorize", "detect")),
    (TaskIntent.CRITIQUE, ("validate", "review", "critique")),
    (TaskIntent.REASONING, ("calculate", "score", "reason")),
)


@dataclass(frozen=True)
class ClassificationHints:
    """Caller-supplied context that can force two-pass execution."""
    has_media: bool = False
    is_strategy_request: bool = False
    is_client_facing: bool = False

    @property
    def forces_two_pass(self) -> bool:
        return self.is_strategy_request or self.is_client_facing


@dataclass(frozen=True)
class ClassificationResult:
    """Typed judgment produced once per request."""
    intent: TaskIntent
    complexity: Complexity
    estimated_tokens: int
    confidence: float
    requires_two_pass: bool
    degraded: bool = False


def two_pass_required(
    intent: TaskIntent,
    complexity: Complexity,
    hints: ClassificationHints,
    model_flag: bool = False,
) -> bool:
    """Two-pass when the model asks for it, a hint forces it, or for complex ideation."""
    return (
        model_flag
        or hints.forces_two_pass
        or (intent == TaskIntent.IDEATION and complexity == Complexity.HIGH)
    )


def heuristic_classification(
    text: str,
    hints: Optional[ClassificationHints] = None,
) -> ClassificationResult:
    """Deterministic keyword classifier used when the model call fails."""
    hints = hints or ClassificationHints()
    estimated = estimate_tokens(text)
    lowered = text.lower()

    intent = TaskIntent.ANALYSIS
    for candidate, keywords in _KEYWORD_RULES:
        if any(k in lowered for k in keywords):
            intent = candidate
            break

    if estimated < 200:
        complexity = Complexity.LOW
    elif estimated > 1000:
        complexity = Complexity.HIGH
    else:
        complexity = Complexity.MEDIUM

    return ClassificationResult(
        intent=intent,
        complexity=complexity,
        estimated_tokens=estimated,
        confidence=HEURISTIC_CONFIDENCE,
        requires_two_pass=two_pass_required(intent, complexity, hints),
        degraded=True,
    )


class TaskClassifier:
    """Classifies requests with a small, cheap, low-temperature model."""

    def __init__(self, executor, model_id: str = CLASSIFIER_MODEL):
        self.executor = executor
        self.model_id = model_id

    def classify(
        self,
        text: str,
        hints: Optional[ClassificationHints] = None,
    ) -> ClassificationResult:
        """Classify a request. Never raises for upstream problems.

        Args:
            text: The user prompt
            hints: Caller context (media, strategy, client-facing)

        Returns:
            ClassificationResult; degraded=True when the heuristic was used
        """
        hints = hints or ClassificationHints()

        if len(text) < FAST_PATH_MAX_CHARS and not hints.has_media:
            return ClassificationResult(
                intent=TaskIntent.CLASSIFICATION,
                complexity=Complexity.LOW,
                estimated_tokens=estimate_tokens(text),
                confidence=FAST_PATH_CONFIDENCE,
                requires_two_pass=hints.forces_two_pass,
            )

        try:
            answer = self._ask_model(text, hints)
        except ClassificationDegraded as e:
            logger.warning("Classification failed, using keyword heuristic: %s", e)
            return heuristic_classification(text, hints)

        return self._sanitize(answer, estimate_tokens(text), hints)

    def _ask_model(self, text: str, hints: ClassificationHints):
        truncated = text[:MAX_CLASSIFIER_INPUT_CHARS]
        if len(text) > MAX_CLASSIFIER_INPUT_CHARS:
            truncated += "... [truncated]"

        prompt = (
            f"Classify this request:\n\n{truncated}\n\n"
            "Additional context:\n"
            f"- Has media attachment: {hints.has_media}\n"
            f"- Strategy request: {hints.is_strategy_request}\n"
            f"- Client-facing output: {hints.is_client_facing}\n"
            f"- Estimated input tokens: {estimate_tokens(text)}"
        )
        options = ExecutionOptions(
            temperature=0.1,
            max_tokens=256,
            response_format=ResponseFormat.JSON,
        )
        try:
            result = self.executor.execute(
                self.model_id, CLASSIFICATION_SYSTEM_PROMPT, prompt, options
            )
            return validate_payload(result.data, ClassifierAnswer)
        except UpstreamError as e:
            raise ClassificationDegraded(str(e)) from e

    def _sanitize(self, answer, estimated_tokens: int,
                  hints: ClassificationHints) -> ClassificationResult:
        intent = _enum_or_default(TaskIntent, answer.intent, TaskIntent.ANALYSIS)
        complexity = _enum_or_default(Complexity, answer.complexity, Complexity.MEDIUM)

        try:
            confidence = float(answer.confidence)
        except (TypeError, ValueError):
            confidence = DEFAULT_MODEL_CONFIDENCE
        confidence = min(1.0, max(0.0, confidence))

        tokens = answer.estimated_tokens
        if isinstance(tokens, bool) or not isinstance(tokens, int) or tokens < 0:
            tokens = estimated_tokens

        return ClassificationResult(
            intent=intent,
            complexity=complexity,
            estimated_tokens=tokens,
            confidence=confidence,
            requires_two_pass=two_pass_required(
                intent, complexity, hints, model_flag=answer.requires_two_pass is True
            ),
        )


def _enum_or_default(enum_cls, value, default):
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass
    return default
