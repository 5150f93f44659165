"""
Draft-then-critique protocol.

A draft model produces the answer, a stronger reasoning model reviews it and
returns a structured judgment. The merged output is always the draft data;
the judgment travels alongside it.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

MAX_CRITIQUE_REQUEST_CHARS = 1000
DRAFT_TEMPERATURE = 0.3
CRITIQUE_TEMPERATURE = 0.1
CRITIQUE_MAX_TOKENS = 1024

CRITIQUE_SYSTEM_PROMPT = """You are a critical reviewer validating AI-generated content for quality and completeness.

Analyze the provided draft and output a JSON evaluation:
{
  "validationPassed": <boolean>,
  "rigorScore": <1-100>,
  "gaps": ["list of identified gaps or issues"],
  "suggestions": ["specific improvement suggestions"],
  "logicalFlaws": ["any logical inconsistencies found"],
  "overallAssessment": "<brief overall assessment>"
}

Be thorough but fair. Flag real issues, not nitpicks."""


class TwoPassState(Enum):
    """Lifecycle of one request through the orchestrator."""
    CLASSIFIED = "classified"
    DRAFTING = "drafting"
    CRITIQUING = "critiquing"
    MERGED = "merged"
    EXECUTING = "executing"  # single-pass path
    DONE = "done"


@dataclass
class TwoPassOutcome:
    """What the two passes produced.

    draft is the ExecutionResult of the draft pass, or None when it failed.
    critique is the validated CritiqueJudgment, or None when the critique was
    skipped or failed.
    """
    draft: Any = None
    draft_call: Any = None
    draft_error: Optional[Exception] = None
    critique: Any = None
    critique_model: Optional[str] = None
    critique_skipped: Optional[str] = None
    states: List[TwoPassState] = field(default_factory=list)

    @property
    def merged(self) -> Any:
        return self.draft.data if self.draft is not None else None


def serialize_draft(data: Any) -> str:
    if isinstance(data, str):
        return data
    if hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")
    return json.dumps(data, indent=2, default=str)


def build_critique_prompt(draft_data: Any, user_prompt: str) -> str:
    """User message for the critique pass: the draft plus the original request."""
    return (
        "Review this draft output for quality, completeness, and logical consistency:\n\n"
        f"DRAFT OUTPUT:\n{serialize_draft(draft_data)}\n\n"
        f"ORIGINAL REQUEST:\n{user_prompt[:MAX_CRITIQUE_REQUEST_CHARS]}"
    )
