"""
Pydantic schemas for structured LLM output parsing.
These enforce clean, typed responses from the LLM instead of raw markdown.
"""

import json
import re
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from agenthub.shared.constants import HIGH_RATING_MIN_SCORE, MEDIUM_RATING_MIN_SCORE

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

REPLY_INTENTS = ("interested", "not_interested", "meeting_request", "out_of_office", "other")


class SchemaParseError(ValueError):
    """LLM text did not contain a usable structured answer."""


def rating_for_score(score: int) -> str:
    if score >= HIGH_RATING_MIN_SCORE:
        return "high"
    if score >= MEDIUM_RATING_MIN_SCORE:
        return "medium"
    return "low"


def _extract_json(text: str) -> dict:
    """Pull the first {...} block out of free text (models love code fences)."""
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise SchemaParseError("No JSON object in model response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise SchemaParseError(f"Malformed JSON in model response: {e}") from e
    if not isinstance(data, dict):
        raise SchemaParseError("Model response JSON is not an object")
    return data


class QualificationOutput(BaseModel):
    """Structured output from the falcon qualification prompt."""
    score: int = Field(ge=0, le=100, description="Overall fit score, 0-100")
    rating: Optional[str] = Field(default=None, description="One of: high, medium, low")
    reasoning: str = Field(default="", description="Short justification")

    @classmethod
    def parse_from_text(cls, text: str) -> "QualificationOutput":
        data = _extract_json(text)
        try:
            result = cls.model_validate(data)
        except ValidationError as e:
            raise SchemaParseError(f"Invalid qualification output: {e.errors()[0]['msg']}") from e
        if result.rating not in ("high", "medium", "low"):
            result.rating = rating_for_score(result.score)
        return result


class ReplyTriageOutput(BaseModel):
    """Structured output from the sentinel reply-triage prompt."""
    intent: str = Field(description="One of REPLY_INTENTS")
    summary: str = Field(default="")

    @classmethod
    def parse_from_text(cls, text: str) -> "ReplyTriageOutput":
        data = _extract_json(text)
        try:
            result = cls.model_validate(data)
        except ValidationError as e:
            raise SchemaParseError(f"Invalid triage output: {e.errors()[0]['msg']}") from e
        intent = result.intent.strip().lower().replace(" ", "_")
        result.intent = intent if intent in REPLY_INTENTS else "other"
        return result
