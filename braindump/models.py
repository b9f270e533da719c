"""Data models shared by the proxies, the session store and the workflow."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError


class SessionContext(BaseModel):
    """Name, description and objective framing a brainstorming session."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    objective: str = Field(min_length=1)


class CategoryInsightGroup(BaseModel):
    title: str
    description: str
    insights: List[str] = Field(min_length=1)


class StructuredResult(BaseModel):
    summary: str
    categories: List[CategoryInsightGroup]


class GeneratedStructuredResult(StructuredResult):
    """Shape a structuring model answer must have to be accepted."""

    categories: List[CategoryInsightGroup] = Field(min_length=3, max_length=6)


class TranscriptionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str = ""
    succeeded: bool = False
    error_message: Optional[str] = None

    @classmethod
    def success(cls, text: str) -> "TranscriptionResult":
        return cls(text=text, succeeded=True)

    @classmethod
    def failure(cls, message: str) -> "TranscriptionResult":
        return cls(succeeded=False, error_message=message)


class SavedSession(BaseModel):
    """A persisted session, serialised with the document field names."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(alias="userId")
    session_context: SessionContext = Field(alias="sessionData")
    structured_result: StructuredResult = Field(alias="structuredOutput")
    transcript_text: str = Field(alias="transcription")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(item) for item in err.get("loc", ())) or "value"
        parts.append(f"{location}: {err.get('msg')}")
    return "; ".join(parts)


def parse_session_context(data: Any) -> SessionContext:
    """Validate raw input into a :class:`SessionContext`.

    Raises:
        ValidationError: If ``data`` is not a mapping or any field is missing
            or blank after trimming.
    """
    if isinstance(data, SessionContext):
        return data
    if not isinstance(data, dict):
        raise ValidationError("Session data must include name, description, and objective")
    try:
        return SessionContext.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Session data must include name, description, and objective",
            details=_describe(exc),
        ) from exc


def parse_structured_result(data: Any) -> StructuredResult:
    if not isinstance(data, dict):
        raise ValidationError("Structured output must be an object")
    try:
        return StructuredResult.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError("Structured output is malformed", details=_describe(exc)) from exc
