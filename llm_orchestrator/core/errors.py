"""
Error taxonomy for the orchestration core.

Only ValidationError and BudgetExceeded are allowed to stop a request before
an upstream call is made. Every UpstreamError carries the telemetry of the
attempt that produced it so provenance can always be written.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AttemptTelemetry:
    """Hashes, token counts and timing of one executor call."""
    request_id: str
    model_id: str
    prompt_hash: str
    output_hash: str
    input_tokens: int
    output_tokens: int
    latency_ms: int
    attempts: int = 1


class OrchestratorError(Exception):
    """Base class for every error raised by the orchestration core."""


class ValidationError(OrchestratorError, ValueError):
    """Malformed caller input. Never retried, never logged as a model failure."""


class UnknownModelError(OrchestratorError, KeyError):
    """Model id is not present in the registry."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "unknown model"


class ClassificationDegraded(OrchestratorError):
    """Classifier model call failed; the heuristic classifier takes over."""


class BudgetExceeded(OrchestratorError):
    """Admission control denied the call before any cost was incurred."""

    def __init__(self, message: str, decision):
        super().__init__(message)
        self.decision = decision


class UpstreamError(OrchestratorError):
    """Failure reported by (or while talking to) the upstream model provider."""

    retryable = False

    def __init__(
        self,
        message: str,
        telemetry: Optional[AttemptTelemetry] = None,
        attempted: bool = True,
    ):
        super().__init__(message)
        self.telemetry = telemetry
        self.attempted = attempted


class UpstreamQuotaError(UpstreamError):
    """429 / quota response. The key that produced it is cooling down."""

    retryable = True

    def __init__(
        self,
        message: str,
        telemetry: Optional[AttemptTelemetry] = None,
        attempted: bool = True,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, telemetry=telemetry, attempted=attempted)
        self.retry_after = retry_after


class KeyPoolExhaustedError(UpstreamQuotaError):
    """Every credential is cooling down or out of window; nothing was sent."""

    def __init__(self, message: str, telemetry: Optional[AttemptTelemetry] = None):
        super().__init__(message, telemetry=telemetry, attempted=False)


class UpstreamTransientError(UpstreamError):
    """Network failure, timeout or 5xx response."""

    retryable = True


class UpstreamRejectedError(UpstreamError):
    """Non-retryable provider rejection (bad request, auth failure)."""


class UpstreamOutputError(UpstreamError):
    """Response could not be parsed or failed schema validation."""
