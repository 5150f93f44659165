"""
Model executor.

Executes one upstream chat completion through the OpenAI-compatible SDK with
per-key rate-limit awareness and a single bounded cross-key retry.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional

import openai
from openai import OpenAI
from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt

from ..config.loader import DEFAULT_BASE_URL
from ..core.errors import (
    AttemptTelemetry,
    KeyPoolExhaustedError,
    UpstreamError,
    UpstreamOutputError,
    UpstreamQuotaError,
    UpstreamRejectedError,
    UpstreamTransientError,
)
from ..core.registry import ModelRegistry
from ..core.token_counter import TokenUsage, content_hash, estimate_tokens
from .key_pool import KeyPool
from .schemas import parse_json_payload

logger = logging.getLogger(__name__)

# first attempt plus one cross-key retry
MAX_ATTEMPTS = 2


class ResponseFormat(Enum):
    TEXT = "text"
    JSON = "json"


@dataclass(frozen=True)
class ExecutionOptions:
    """Sampling options for one call."""
    temperature: float = 0.2
    max_tokens: int = 4096
    response_format: ResponseFormat = ResponseFormat.TEXT


@dataclass(frozen=True)
class ExecutionResult:
    """Successful call: text, decoded data and telemetry."""
    request_id: str
    model_id: str
    text: str
    data: Any
    usage: TokenUsage
    prompt_hash: str
    output_hash: str
    latency_ms: int
    attempts: int = 1

    @property
    def telemetry(self) -> AttemptTelemetry:
        return AttemptTelemetry(
            request_id=self.request_id,
            model_id=self.model_id,
            prompt_hash=self.prompt_hash,
            output_hash=self.output_hash,
            input_tokens=self.usage.prompt_tokens,
            output_tokens=self.usage.completion_tokens,
            latency_ms=self.latency_ms,
            attempts=self.attempts,
        )


def new_request_id() -> str:
    return f"req_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, UpstreamError) and error.retryable and error.attempted


def _retry_after_seconds(error: openai.APIStatusError, default: float) -> float:
    headers = getattr(error.response, "headers", None) or {}
    try:
        return float(headers.get("retry-after", default))
    except (TypeError, ValueError):
        return default


class ModelExecutor:
    """Executes model calls against a pool of interchangeable credentials.

    Two admission layers meet here: the provider's per-key limits (handled by
    the KeyPool) and the caller's own budgets (handled before execute() is
    ever called).
    """

    def __init__(
        self,
        registry: ModelRegistry,
        key_pool: KeyPool,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 45.0,
        cooldown_seconds: float = 60.0,
    ):
        self.registry = registry
        self.key_pool = key_pool
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.cooldown_seconds = cooldown_seconds
        self._clients: Dict[int, OpenAI] = {}
        self._clients_lock = threading.Lock()

    def execute(
        self,
        model_id: str,
        system_prompt: str,
        user_prompt: str,
        options: Optional[ExecutionOptions] = None,
    ) -> ExecutionResult:
        """Run one chat completion.

        Quota and transient failures are retried once on the next available
        key. Every raised UpstreamError carries telemetry for provenance.

        Args:
            model_id: Registry model id
            system_prompt: System message
            user_prompt: User message
            options: Sampling options (defaults to ExecutionOptions())

        Returns:
            ExecutionResult on success

        Raises:
            UnknownModelError: If the model is not registered
            UpstreamQuotaError: Quota exhausted on every tried key
            KeyPoolExhaustedError: No key was available, nothing was sent
            UpstreamTransientError: Network failure, timeout or 5xx
            UpstreamRejectedError: Non-retryable provider rejection
            UpstreamOutputError: Response body failed JSON decoding
        """
        profile = self.registry.get(model_id)
        options = options or ExecutionOptions()
        request_id = new_request_id()
        prompt_hash = content_hash(system_prompt + user_prompt)
        estimated_input = estimate_tokens(system_prompt) + estimate_tokens(user_prompt)
        started = time.monotonic()
        attempts = 0
        last_error: Optional[UpstreamError] = None

        def attempt_once() -> ExecutionResult:
            nonlocal attempts, last_error
            lease = self.key_pool.checkout(profile, estimated_input)
            if lease is None:
                if last_error is not None:
                    raise last_error
                raise KeyPoolExhaustedError(
                    "All API keys are rate limited. Please wait and try again."
                )
            attempts += 1
            try:
                return self._call(lease, model_id, system_prompt, user_prompt, options,
                                  request_id, prompt_hash, estimated_input)
            except UpstreamError as e:
                last_error = e
                raise

        retrying = Retrying(
            stop=stop_after_attempt(MAX_ATTEMPTS),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            result = retrying(attempt_once)
        except UpstreamError as e:
            latency_ms = int((time.monotonic() - started) * 1000)
            base = e.telemetry or AttemptTelemetry(
                request_id=request_id,
                model_id=model_id,
                prompt_hash=prompt_hash,
                output_hash="",
                input_tokens=estimated_input,
                output_tokens=0,
                latency_ms=0,
            )
            e.telemetry = replace(base, latency_ms=latency_ms, attempts=attempts)
            logger.error("%s failed after %d attempt(s): %s", model_id, attempts, e)
            raise

        result = replace(
            result,
            latency_ms=int((time.monotonic() - started) * 1000),
            attempts=attempts,
        )
        logger.info(
            "%s completed in %dms (%d tokens)",
            model_id, result.latency_ms, result.usage.total_tokens,
        )
        return result

    def _call(self, lease, model_id, system_prompt, user_prompt, options,
              request_id, prompt_hash, estimated_input) -> ExecutionResult:
        index, api_key = lease
        client = self._client_for(index, api_key)

        def failure(output_hash="", output_tokens=0, input_tokens=estimated_input):
            return AttemptTelemetry(
                request_id=request_id,
                model_id=model_id,
                prompt_hash=prompt_hash,
                output_hash=output_hash,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                latency_ms=0,
            )

        kwargs: Dict[str, Any] = {
            "model": model_id,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        if options.response_format == ResponseFormat.JSON:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = client.chat.completions.create(**kwargs)
        except openai.RateLimitError as e:
            retry_after = _retry_after_seconds(e, self.cooldown_seconds)
            self.key_pool.mark_rate_limited(index, retry_after)
            raise UpstreamQuotaError(
                f"Rate limited on key {index}: {e}", telemetry=failure(), retry_after=retry_after
            ) from e
        except openai.APITimeoutError as e:
            raise UpstreamTransientError(
                f"Timed out after {self.timeout_seconds:g}s", telemetry=failure()
            ) from e
        except openai.APIConnectionError as e:
            raise UpstreamTransientError(f"Connection error: {e}", telemetry=failure()) from e
        except openai.APIStatusError as e:
            if e.status_code >= 500:
                raise UpstreamTransientError(
                    f"Upstream error {e.status_code}: {e}", telemetry=failure()
                ) from e
            if "rate_limit" in str(e):
                self.key_pool.mark_rate_limited(index, self.cooldown_seconds)
                raise UpstreamQuotaError(
                    f"Rate limited on key {index}: {e}", telemetry=failure(),
                    retry_after=self.cooldown_seconds,
                ) from e
            raise UpstreamRejectedError(
                f"Upstream rejected request ({e.status_code}): {e}", telemetry=failure()
            ) from e
        except openai.APIError as e:
            # e.g. APIResponseValidationError: a response the SDK could not read
            raise UpstreamOutputError(
                f"Malformed upstream response: {e}", telemetry=failure()
            ) from e

        content = ""
        if response.choices:
            content = response.choices[0].message.content or ""
        output_hash = content_hash(content)

        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
            )
        else:
            usage = TokenUsage(estimated_input, estimate_tokens(content))
        self.key_pool.record_tokens(index, model_id, estimated_input, usage.total_tokens)

        data: Any = content
        if options.response_format == ResponseFormat.JSON:
            try:
                data = parse_json_payload(content)
            except UpstreamOutputError as e:
                e.telemetry = failure(output_hash, usage.completion_tokens, usage.prompt_tokens)
                raise

        return ExecutionResult(
            request_id=request_id,
            model_id=model_id,
            text=content,
            data=data,
            usage=usage,
            prompt_hash=prompt_hash,
            output_hash=output_hash,
            latency_ms=0,
        )

    def _client_for(self, index: int, api_key: str) -> OpenAI:
        with self._clients_lock:
            client = self._clients.get(index)
            if client is None:
                client = OpenAI(
                    api_key=api_key,
                    base_url=self.base_url,
                    timeout=self.timeout_seconds,
                    max_retries=0,
                )
                self._clients[index] = client
            return client
