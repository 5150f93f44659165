"""
Unit tests for the task classifier.
"""

from unittest.mock import Mock, patch

import httpx
import openai

from llm_orchestrator.core.classifier import (
    ClassificationHints,
    TaskClassifier,
    heuristic_classification,
)
from llm_orchestrator.core.errors import UpstreamOutputError, UpstreamTransientError
from llm_orchestrator.core.registry import MODEL_REGISTRY, Complexity, TaskIntent
from llm_orchestrator.sdk.executor import ModelExecutor
from llm_orchestrator.sdk.key_pool import KeyPool

LONG_SUMMARY_PROMPT = (
    "Please summarize the following quarterly marketing report for the leadership team. "
    * 8
)


def _executor_returning(data):
    executor = Mock()
    executor.execute.return_value = Mock(data=data)
    return executor


class TestFastPath:
    """Short prompts skip the model call."""

    def test_short_prompt_is_classification(self):
        executor = Mock()
        result = TaskClassifier(executor).classify("Is this positive?")

        assert result.intent == TaskIntent.CLASSIFICATION
        assert result.complexity == Complexity.LOW
        assert result.requires_two_pass is False
        assert result.degraded is False
        executor.execute.assert_not_called()

    def test_short_prompt_keeps_caller_two_pass_hint(self):
        result = TaskClassifier(Mock()).classify(
            "Write a tagline", ClassificationHints(is_client_facing=True)
        )
        assert result.requires_two_pass is True

    def test_media_disables_fast_path(self):
        executor = _executor_returning({"intent": "analysis", "complexity": "medium"})
        result = TaskClassifier(executor).classify("Describe this", ClassificationHints(has_media=True))

        executor.execute.assert_called_once()
        assert result.intent == TaskIntent.ANALYSIS


class TestModelClassification:
    """Model answers are validated and sanitised."""

    def test_valid_answer(self):
        executor = _executor_returning({
            "intent": "summarization",
            "complexity": "medium",
            "estimatedTokens": 180,
            "confidence": 0.92,
            "requiresTwoPass": False,
        })
        result = TaskClassifier(executor).classify(LONG_SUMMARY_PROMPT)

        assert result.intent == TaskIntent.SUMMARIZATION
        assert result.complexity == Complexity.MEDIUM
        assert result.estimated_tokens == 180
        assert result.confidence == 0.92
        assert result.requires_two_pass is False
        assert result.degraded is False

    def test_uses_small_model_with_low_temperature(self):
        executor = _executor_returning({"intent": "analysis", "complexity": "low"})
        TaskClassifier(executor).classify(LONG_SUMMARY_PROMPT)

        args = executor.execute.call_args[0]
        assert args[0] == "llama-3.1-8b-instant"
        assert args[3].temperature == 0.1
        assert args[3].max_tokens == 256

    def test_input_is_truncated(self):
        executor = _executor_returning({"intent": "analysis", "complexity": "low"})
        TaskClassifier(executor).classify("x" * 5000)

        prompt = executor.execute.call_args[0][2]
        assert "x" * 2000 + "... [truncated]" in prompt
        assert "x" * 2001 not in prompt

    def test_unknown_values_fall_back_to_defaults(self):
        executor = _executor_returning({
            "intent": "poetry",
            "complexity": "extreme",
            "estimatedTokens": "lots",
            "confidence": 7,
        })
        result = TaskClassifier(executor).classify(LONG_SUMMARY_PROMPT)

        assert result.intent == TaskIntent.ANALYSIS
        assert result.complexity == Complexity.MEDIUM
        assert result.estimated_tokens > 0
        assert result.confidence == 1.0

    def test_high_complexity_ideation_requires_two_pass(self):
        executor = _executor_returning({
            "intent": "ideation",
            "complexity": "high",
            "requiresTwoPass": False,
        })
        result = TaskClassifier(executor).classify(LONG_SUMMARY_PROMPT)
        assert result.requires_two_pass is True

    def test_strategy_hint_forces_two_pass(self):
        executor = _executor_returning({"intent": "analysis", "complexity": "low"})
        result = TaskClassifier(executor).classify(
            LONG_SUMMARY_PROMPT, ClassificationHints(is_strategy_request=True)
        )
        assert result.requires_two_pass is True


class TestDegradation:
    """Classifier failures fall back to the keyword heuristic."""

    def test_upstream_failure_degrades(self):
        executor = Mock()
        executor.execute.side_effect = UpstreamTransientError("timeout")
        result = TaskClassifier(executor).classify(LONG_SUMMARY_PROMPT)

        assert result.degraded is True
        assert result.intent == TaskIntent.SUMMARIZATION
        assert result.confidence == 0.5

    def test_malformed_output_degrades(self):
        executor = Mock()
        executor.execute.side_effect = UpstreamOutputError("Failed to parse JSON response")
        result = TaskClassifier(executor).classify(LONG_SUMMARY_PROMPT)
        assert result.degraded is True

    def test_non_object_answer_degrades(self):
        result = TaskClassifier(_executor_returning([1, 2, 3])).classify(LONG_SUMMARY_PROMPT)
        assert result.degraded is True

    @patch("llm_orchestrator.sdk.executor.OpenAI")
    def test_unreadable_sdk_response_degrades(self, mock_openai_class):
        mock_openai_class.return_value.chat.completions.create.side_effect = (
            openai.APIResponseValidationError(
                response=httpx.Response(200, request=httpx.Request("POST", "https://example.test")),
                body=None,
            )
        )
        executor = ModelExecutor(MODEL_REGISTRY, KeyPool(["key-1"]))

        result = TaskClassifier(executor).classify(LONG_SUMMARY_PROMPT)

        assert result.degraded is True
        assert result.intent == TaskIntent.SUMMARIZATION


class TestHeuristic:
    """Keyword heuristic rules."""

    def test_keyword_order(self):
        assert heuristic_classification("summarize and create").intent == TaskIntent.SUMMARIZATION
        assert heuristic_classification("create a strategy").intent == TaskIntent.IDEATION
        assert heuristic_classification("categorize these").intent == TaskIntent.CLASSIFICATION
        assert heuristic_classification("review my plan").intent == TaskIntent.CRITIQUE
        assert heuristic_classification("calculate the total").intent == TaskIntent.REASONING
        assert heuristic_classification("what happened here").intent == TaskIntent.ANALYSIS

    def test_complexity_from_length(self):
        assert heuristic_classification("a" * 100).complexity == Complexity.LOW
        assert heuristic_classification("a" * 2000).complexity == Complexity.MEDIUM
        assert heuristic_classification("a" * 5000).complexity == Complexity.HIGH

    def test_two_pass_rule_matches_model_path(self):
        result = heuristic_classification("generate ideas " * 400)
        assert result.intent == TaskIntent.IDEATION
        assert result.complexity == Complexity.HIGH
        assert result.requires_two_pass is True
