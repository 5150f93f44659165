"""
Request orchestration.

Sequences one request through classification, routing, admission and
single- or two-pass execution, writing one provenance record per executed
model call. process() always returns an OrchestratorResult; failures are
values, not exceptions, so callers can apply their own fallbacks.
"""

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, Union

from llm_orchestrator.config.loader import OrchestratorConfig, default_config
from llm_orchestrator.sdk.executor import (
    ExecutionOptions,
    ExecutionResult,
    ResponseFormat,
    new_request_id,
)
from llm_orchestrator.sdk.schemas import CritiqueJudgment, validate_payload
from llm_orchestrator.storage.models import RequestProvenance

from .classifier import ClassificationHints, ClassificationResult, TaskClassifier
from .errors import (
    AttemptTelemetry,
    BudgetExceeded,
    UpstreamError,
    UpstreamOutputError,
    UpstreamQuotaError,
    UpstreamRejectedError,
    UpstreamTransientError,
    ValidationError,
)
from .governor import CostDecision, CostGovernor
from .provenance import ProvenanceStore
from .registry import Complexity, Priority, TaskIntent
from .router import ModelRouter, RouterDecision
from .token_counter import estimate_tokens
from .two_pass import (
    CRITIQUE_MAX_TOKENS,
    CRITIQUE_SYSTEM_PROMPT,
    CRITIQUE_TEMPERATURE,
    DRAFT_TEMPERATURE,
    TwoPassOutcome,
    TwoPassState,
    build_critique_prompt,
)

logger = logging.getLogger(__name__)

CLASSIFY_SYSTEM_PROMPT = "You are a classifier. Respond concisely."
MAX_TEMPERATURE = 2.0


class ErrorKind(Enum):
    """Discriminator for failed results."""
    VALIDATION = "validation"
    BUDGET_EXCEEDED = "budget_exceeded"
    UPSTREAM_QUOTA = "upstream_quota"
    UPSTREAM_TRANSIENT = "upstream_transient"
    UPSTREAM_REJECTED = "upstream_rejected"
    UPSTREAM_OUTPUT = "upstream_output"
    UPSTREAM = "upstream"


# most specific first
_UPSTREAM_KINDS = (
    (UpstreamOutputError, ErrorKind.UPSTREAM_OUTPUT),
    (UpstreamQuotaError, ErrorKind.UPSTREAM_QUOTA),
    (UpstreamTransientError, ErrorKind.UPSTREAM_TRANSIENT),
    (UpstreamRejectedError, ErrorKind.UPSTREAM_REJECTED),
)


def error_kind_for(error: UpstreamError) -> ErrorKind:
    for error_type, kind in _UPSTREAM_KINDS:
        if isinstance(error, error_type):
            return kind
    return ErrorKind.UPSTREAM


@dataclass(frozen=True)
class RequestOptions:
    """Per-request caller options.

    task_type skips classification. priority defaults to the configured
    default priority. schema, when given, is a pydantic model the response
    data must validate against.
    """
    task_type: Optional[Union[TaskIntent, str]] = None
    priority: Optional[Union[Priority, str]] = None
    is_client_facing: bool = False
    is_strategy_request: bool = False
    has_media: bool = False
    response_format: ResponseFormat = ResponseFormat.TEXT
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    schema: Optional[Type[Any]] = None
    cancel_event: Optional[threading.Event] = None


@dataclass(frozen=True)
class OrchestratorResult:
    """Discriminated success/failure value returned by process()."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    provenance: Optional[RequestProvenance] = None
    classification: Optional[ClassificationResult] = None
    decision: Optional[RouterDecision] = None
    model_id: Optional[str] = None
    critique: Optional[CritiqueJudgment] = None
    suggested_downgrade: Optional[str] = None
    remaining_budget: Optional[int] = None
    states: Tuple[TwoPassState, ...] = ()


@dataclass
class _Call:
    """One executed model call and the provenance written for it."""
    model_id: str
    record: RequestProvenance
    result: Optional[ExecutionResult] = None
    error: Optional[UpstreamError] = None


@dataclass
class _Request:
    system_prompt: str
    user_prompt: str
    options: RequestOptions
    intent: TaskIntent
    priority: Priority
    started: float
    states: List[TwoPassState] = field(default_factory=list)


class Orchestrator:
    """Composes classifier, router, governor, executor and provenance."""

    def __init__(
        self,
        executor,
        classifier: TaskClassifier,
        router: ModelRouter,
        governor: CostGovernor,
        provenance: ProvenanceStore,
        key_pool=None,
        config: Optional[OrchestratorConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.executor = executor
        self.classifier = classifier
        self.router = router
        self.governor = governor
        self.provenance = provenance
        self.key_pool = key_pool
        self.config = config or default_config()
        self._clock = clock
        logger.info(
            "Orchestrator initialized (two-pass %s, auto-downgrade %s)",
            "enabled" if self.config.two_pass_enabled else "disabled",
            "on" if self.config.auto_downgrade else "off",
        )

    def process(
        self,
        system_prompt: str,
        user_prompt: str,
        options: Optional[RequestOptions] = None,
    ) -> OrchestratorResult:
        """Run one request end to end.

        Args:
            system_prompt: System message for the working model
            user_prompt: Caller content
            options: RequestOptions (defaults to RequestOptions())

        Returns:
            OrchestratorResult. Validation and budget failures write no
            provenance; every executed model call writes exactly one record.
        """
        options = options or RequestOptions()
        started = time.monotonic()
        try:
            task_type, priority = self._validate(system_prompt, user_prompt, options)
        except ValidationError as e:
            logger.warning("Rejected request: %s", e)
            return OrchestratorResult(
                success=False, error=str(e), error_kind=ErrorKind.VALIDATION
            )

        classification = self._classify(user_prompt, options, task_type)
        request = _Request(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            options=options,
            intent=classification.intent,
            priority=priority,
            started=started,
            states=[TwoPassState.CLASSIFIED],
        )
        logger.info(
            "Classified: %s (%s), two-pass: %s",
            classification.intent.value, classification.complexity.value,
            classification.requires_two_pass,
        )

        decision = self.router.route(
            classification.intent,
            classification.complexity,
            classification.estimated_tokens,
            priority=priority,
            has_media=options.has_media,
            requires_two_pass=classification.requires_two_pass,
        )
        two_pass = self.config.two_pass_enabled and decision.requires_two_pass
        target = self.router.draft_model(classification.intent) if two_pass else decision.primary

        try:
            model_id, cost = self._admit(target)
        except BudgetExceeded as e:
            return self._budget_failure(request, e.decision, target, classification, decision)

        if two_pass:
            outcome = self._execute_two_pass(request, model_id, classification, cost)
            return self._two_pass_result(request, outcome, model_id, classification, decision, cost)
        return self._execute_single_pass(request, model_id, classification, decision, cost)

    def classify(
        self,
        prompt: str,
        response_format: ResponseFormat = ResponseFormat.TEXT,
    ) -> OrchestratorResult:
        """Quick label using the fast classification models."""
        return self.process(
            CLASSIFY_SYSTEM_PROMPT,
            prompt,
            RequestOptions(
                task_type=TaskIntent.CLASSIFICATION,
                priority=Priority.SPEED,
                response_format=response_format,
            ),
        )

    def summarize(self, content: str, max_length: Optional[int] = None) -> OrchestratorResult:
        if max_length:
            system_prompt = f"Summarize the following content in {max_length} words or less."
        else:
            system_prompt = "Provide a concise summary of the following content."
        return self.process(
            system_prompt,
            content,
            RequestOptions(task_type=TaskIntent.SUMMARIZATION, priority=Priority.QUALITY),
        )

    def generate_strategy(
        self,
        system_prompt: str,
        context: str,
        response_format: ResponseFormat = ResponseFormat.TEXT,
    ) -> OrchestratorResult:
        """Strategy generation; always requests the draft-then-critique path."""
        return self.process(
            system_prompt,
            context,
            RequestOptions(
                task_type=TaskIntent.IDEATION,
                priority=Priority.QUALITY,
                is_strategy_request=True,
                response_format=response_format,
            ),
        )

    def analyze_structured(
        self,
        system_prompt: str,
        content: str,
        schema: Optional[Type[Any]] = None,
    ) -> OrchestratorResult:
        """JSON analysis, validated against schema when one is given."""
        return self.process(
            system_prompt,
            content,
            RequestOptions(
                task_type=TaskIntent.ANALYSIS,
                priority=Priority.QUALITY,
                response_format=ResponseFormat.JSON,
                schema=schema,
            ),
        )

    def get_stats(self) -> Dict[str, Any]:
        """Read-only operator snapshot. No side effects."""
        key_pool = self.key_pool
        warnings = list(self.governor.get_warnings())
        for drift in self.provenance.drift_warnings(self.router.registry.ids()):
            warnings.append(f"DRIFT: {drift.model_id}: {drift.message}")
        return {
            "key_pool": key_pool.status() if key_pool is not None else None,
            "usage": key_pool.daily_usage() if key_pool is not None else None,
            "cost_budgets": self.governor.get_usage_stats(),
            "model_stats": self.provenance.get_all_model_stats(),
            "warnings": warnings,
        }

    def _validate(self, system_prompt, user_prompt, options: RequestOptions):
        if not isinstance(system_prompt, str):
            raise ValidationError("system_prompt must be a string")
        if not isinstance(user_prompt, str) or not user_prompt.strip():
            raise ValidationError("user_prompt must be a non-empty string")

        task_type = options.task_type
        if task_type is not None and not isinstance(task_type, TaskIntent):
            try:
                task_type = TaskIntent(str(task_type).lower())
            except ValueError:
                raise ValidationError(f"Unknown task type: {options.task_type}")

        priority = options.priority or self.config.default_priority
        if not isinstance(priority, Priority):
            try:
                priority = Priority(str(priority).lower())
            except ValueError:
                raise ValidationError(f"Unknown priority: {options.priority}")

        temperature = options.temperature
        if temperature is not None:
            if isinstance(temperature, bool) or not isinstance(temperature, (int, float)):
                raise ValidationError("temperature must be a number")
            if not 0 <= temperature <= MAX_TEMPERATURE:
                raise ValidationError(f"temperature must be between 0 and {MAX_TEMPERATURE:g}")

        max_tokens = options.max_tokens
        if max_tokens is not None:
            if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens <= 0:
                raise ValidationError("max_tokens must be a positive integer")

        return task_type, priority

    def _classify(self, user_prompt, options, task_type) -> ClassificationResult:
        hints = ClassificationHints(
            has_media=options.has_media,
            is_strategy_request=options.is_strategy_request,
            is_client_facing=options.is_client_facing,
        )
        if task_type is None:
            return self.classifier.classify(user_prompt, hints)
        return ClassificationResult(
            intent=task_type,
            complexity=Complexity.MEDIUM,
            estimated_tokens=estimate_tokens(user_prompt),
            confidence=1.0,
            requires_two_pass=hints.forces_two_pass,
        )

    def _admit(self, model_id: str) -> Tuple[str, CostDecision]:
        """Reserve budget for model_id, substituting a downgrade when allowed.

        Raises:
            BudgetExceeded: If neither the model nor a downgrade is admitted
        """
        decision = self.governor.admit(model_id)
        if decision.allowed:
            return model_id, decision

        downgrade = decision.suggested_downgrade
        if downgrade and self.config.auto_downgrade:
            downgraded = self.governor.admit(downgrade)
            if downgraded.allowed:
                logger.warning("Budget exceeded for %s, downgrading to %s", model_id, downgrade)
                return downgrade, downgraded
        raise BudgetExceeded(decision.reason, decision)

    def _options_for(self, request: _Request, temperature: Optional[float] = None) -> ExecutionOptions:
        options = request.options
        kwargs: Dict[str, Any] = {
            "max_tokens": options.max_tokens or self.config.executor.default_max_tokens,
            "response_format": options.response_format,
        }
        # caller temperature wins over the pass default
        if options.temperature is not None:
            kwargs["temperature"] = float(options.temperature)
        elif temperature is not None:
            kwargs["temperature"] = temperature
        return ExecutionOptions(**kwargs)

    def _call(
        self,
        model_id: str,
        system_prompt: str,
        user_prompt: str,
        options: ExecutionOptions,
        task_type: TaskIntent,
        schema: Optional[Type[Any]] = None,
        reservation: Optional[CostDecision] = None,
    ) -> _Call:
        """Execute one model call and write its provenance record."""
        try:
            result = self.executor.execute(model_id, system_prompt, user_prompt, options)
            if schema is not None:
                try:
                    data = validate_payload(result.data, schema)
                except UpstreamOutputError as e:
                    e.telemetry = result.telemetry
                    raise
                result = replace(result, data=data)
        except UpstreamError as e:
            if not e.attempted:
                self.governor.release(model_id, reservation)
            record = self._log(e.telemetry, model_id, task_type, error=str(e))
            return _Call(model_id=model_id, record=record, error=e)

        record = self._log(result.telemetry, model_id, task_type)
        return _Call(model_id=model_id, record=record, result=result)

    def _log(self, telemetry: Optional[AttemptTelemetry], model_id: str,
             task_type: TaskIntent, error: Optional[str] = None) -> RequestProvenance:
        if telemetry is None:
            telemetry = AttemptTelemetry(
                request_id=new_request_id(),
                model_id=model_id,
                prompt_hash="",
                output_hash="",
                input_tokens=0,
                output_tokens=0,
                latency_ms=0,
                attempts=0,
            )
        record = RequestProvenance(
            request_id=telemetry.request_id,
            model_id=telemetry.model_id,
            task_type=task_type.value,
            prompt_hash=telemetry.prompt_hash,
            output_hash=telemetry.output_hash,
            input_tokens=telemetry.input_tokens,
            output_tokens=telemetry.output_tokens,
            latency_ms=telemetry.latency_ms,
            error=error,
            created_at=self._clock(),
        )
        self.provenance.log_request(record)
        return record

    def _execute_single_pass(self, request: _Request, model_id: str,
                             classification: ClassificationResult,
                             decision: RouterDecision, cost: CostDecision) -> OrchestratorResult:
        request.states.append(TwoPassState.EXECUTING)
        options = self._options_for(request)
        call = self._call(model_id, request.system_prompt, request.user_prompt,
                          options, request.intent, request.options.schema, cost)

        fallback = decision.fallback
        if call.error is not None and call.error.retryable and fallback != model_id:
            fallback_cost = self.governor.admit(fallback)
            if fallback_cost.allowed:
                logger.warning("%s failed (%s), failing over to %s", model_id, call.error, fallback)
                call = self._call(fallback, request.system_prompt, request.user_prompt,
                                  options, request.intent, request.options.schema, fallback_cost)
                cost = fallback_cost

        request.states.append(TwoPassState.DONE)
        if call.error is not None:
            return OrchestratorResult(
                success=False,
                error=str(call.error),
                error_kind=error_kind_for(call.error),
                provenance=call.record,
                classification=classification,
                decision=decision,
                model_id=call.model_id,
                remaining_budget=cost.remaining_budget,
                states=tuple(request.states),
            )
        return OrchestratorResult(
            success=True,
            data=call.result.data,
            provenance=call.record,
            classification=classification,
            decision=decision,
            model_id=call.model_id,
            remaining_budget=cost.remaining_budget,
            states=tuple(request.states),
        )

    def _execute_two_pass(self, request: _Request, draft_model: str,
                          classification: ClassificationResult,
                          cost: CostDecision) -> TwoPassOutcome:
        """Draft, then critique. A failed draft ends the protocol."""
        outcome = TwoPassOutcome(states=request.states)
        outcome.states.append(TwoPassState.DRAFTING)
        logger.info("Two-pass: drafting with %s", draft_model)

        draft = self._call(
            draft_model, request.system_prompt, request.user_prompt,
            self._options_for(request, DRAFT_TEMPERATURE),
            request.intent, request.options.schema, cost,
        )
        outcome.draft_call = draft
        if draft.error is not None:
            outcome.draft_error = draft.error
            outcome.states.append(TwoPassState.DONE)
            return outcome
        outcome.draft = draft.result

        cancel = request.options.cancel_event
        if cancel is not None and cancel.is_set():
            outcome.critique_skipped = "cancelled before critique"
            return self._merge(outcome)

        try:
            critique_model, critique_cost = self._admit(
                self.router.critique_model(classification.complexity)
            )
        except BudgetExceeded as e:
            outcome.critique_skipped = e.decision.reason
            return self._merge(outcome)

        outcome.critique_model = critique_model
        outcome.states.append(TwoPassState.CRITIQUING)
        logger.info("Two-pass: critiquing with %s", critique_model)
        critique = self._call(
            critique_model,
            CRITIQUE_SYSTEM_PROMPT,
            build_critique_prompt(draft.result.data, request.user_prompt),
            ExecutionOptions(
                temperature=CRITIQUE_TEMPERATURE,
                max_tokens=CRITIQUE_MAX_TOKENS,
                response_format=ResponseFormat.JSON,
            ),
            TaskIntent.CRITIQUE,
            CritiqueJudgment,
            critique_cost,
        )
        if critique.error is not None:
            outcome.critique_skipped = f"critique failed: {critique.error}"
        else:
            outcome.critique = critique.result.data
            logger.info(
                "Critique complete: rigor=%s, passed=%s",
                outcome.critique.rigor_score, outcome.critique.validation_passed,
            )
        return self._merge(outcome)

    def _merge(self, outcome: TwoPassOutcome) -> TwoPassOutcome:
        if outcome.critique_skipped:
            logger.warning("Critique skipped: %s", outcome.critique_skipped)
        outcome.states.append(TwoPassState.MERGED)
        outcome.states.append(TwoPassState.DONE)
        return outcome

    def _two_pass_result(self, request: _Request, outcome: TwoPassOutcome, draft_model: str,
                         classification: ClassificationResult, decision: RouterDecision,
                         cost: CostDecision) -> OrchestratorResult:
        draft_call = outcome.draft_call
        if outcome.draft_error is not None:
            return OrchestratorResult(
                success=False,
                error=str(outcome.draft_error),
                error_kind=error_kind_for(outcome.draft_error),
                provenance=draft_call.record,
                classification=classification,
                decision=decision,
                model_id=draft_model,
                remaining_budget=cost.remaining_budget,
                states=tuple(request.states),
            )
        return OrchestratorResult(
            success=True,
            data=outcome.merged,
            provenance=draft_call.record,
            classification=classification,
            decision=decision,
            model_id=draft_model,
            critique=outcome.critique,
            remaining_budget=cost.remaining_budget,
            states=tuple(request.states),
        )

    def _budget_failure(self, request: _Request, cost: CostDecision, model_id: str,
                        classification: ClassificationResult,
                        decision: RouterDecision) -> OrchestratorResult:
        # stub record, never persisted: nothing was executed
        stub = RequestProvenance(
            request_id=f"budget_{int(time.time() * 1000)}",
            model_id=model_id,
            task_type=request.intent.value,
            prompt_hash="",
            output_hash="",
            latency_ms=int((time.monotonic() - request.started) * 1000),
            error=cost.reason,
            created_at=self._clock(),
        )
        request.states.append(TwoPassState.DONE)
        return OrchestratorResult(
            success=False,
            error=cost.reason,
            error_kind=ErrorKind.BUDGET_EXCEEDED,
            provenance=stub,
            classification=classification,
            decision=decision,
            suggested_downgrade=cost.suggested_downgrade,
            remaining_budget=cost.remaining_budget,
            states=tuple(request.states),
        )
