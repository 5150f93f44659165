"""
Schemas for upstream JSON payloads.

Upstream output is never trusted as-is: it is parsed and validated against a
declared model before use, and any failure becomes an UpstreamOutputError.
"""

import json
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from llm_orchestrator.core.errors import UpstreamOutputError

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class ClassifierAnswer(BaseModel):
    """Raw classifier answer. Lenient: values are sanitised afterwards."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    intent: Any = None
    complexity: Any = None
    estimated_tokens: Any = Field(default=None, alias="estimatedTokens")
    confidence: Any = None
    requires_two_pass: Any = Field(default=None, alias="requiresTwoPass")


class CritiqueJudgment(BaseModel):
    """Structured verdict returned by the critique pass."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    validation_passed: bool = Field(alias="validationPassed")
    rigor_score: float = Field(alias="rigorScore", ge=0, le=100)
    gaps: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    logical_flaws: List[str] = Field(default_factory=list, alias="logicalFlaws")
    overall_assessment: Optional[str] = Field(default=None, alias="overallAssessment")


def parse_json_payload(text: str) -> Any:
    """Decode a JSON response body.

    Raises:
        UpstreamOutputError: If the text is not valid JSON
    """
    try:
        return json.loads(text)
    except (TypeError, ValueError) as e:
        preview = (text or "")[:100]
        raise UpstreamOutputError(f"Failed to parse JSON response: {preview}...") from e


def validate_payload(payload: Any, schema: Type[SchemaT]) -> SchemaT:
    """Validate decoded (or raw JSON text) payload against a pydantic schema.

    Raises:
        UpstreamOutputError: If the payload does not match the schema
    """
    if isinstance(payload, str):
        payload = parse_json_payload(payload)
    try:
        return schema.model_validate(payload)
    except PydanticValidationError as e:
        raise UpstreamOutputError(
            f"Response failed {schema.__name__} validation: {e.error_count()} error(s)"
        ) from e
