"""Pydantic schemas for AI responses."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EmailClassificationOutput(BaseModel):
    """Raw classifier output; normalized by classification_service."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    category: str | None = None
    priority_score: float | None = Field(default=None, alias="priorityScore")
    lead_score: float | None = Field(default=None, alias="leadScore")
    confidence_score: float | None = Field(default=None, alias="confidenceScore")
    sentiment_score: float | None = Field(default=None, alias="sentimentScore")
    key_entities: dict[str, Any] | None = Field(default=None, alias="keyEntities")
    reasoning: str | None = None
    suggested_action: str | None = Field(default=None, alias="suggestedAction")

    @field_validator(
        "priority_score", "lead_score", "confidence_score", "sentiment_score", mode="before"
    )
    @classmethod
    def _coerce_number(cls, value: Any) -> Any:
        # Models sometimes answer "85" or "85%".
        if isinstance(value, str):
            cleaned = value.strip().rstrip("%")
            try:
                return float(cleaned)
            except ValueError:
                return None
        return value

    @field_validator("key_entities", mode="before")
    @classmethod
    def _coerce_entities(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @field_validator("reasoning", "suggested_action", "category", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)
