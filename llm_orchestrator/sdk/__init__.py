"""
SDK layer for the LLM orchestrator.

Provides rate-limit aware access to the upstream model provider.
"""

from .executor import ExecutionOptions, ExecutionResult, ModelExecutor, ResponseFormat
from .key_pool import KeyPool

__all__ = ["ExecutionOptions", "ExecutionResult", "KeyPool", "ModelExecutor", "ResponseFormat"]
