"""Feedback models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

COMMENT_MAX_LENGTH = 500


class FeedbackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    analysis_id: str = Field(..., validation_alias=AliasChoices("analysis_id", "analysisId"))
    user_id: Optional[str] = Field(None, validation_alias=AliasChoices("user_id", "userId"))
    helpful: Optional[bool] = None
    comment: Optional[str] = None

    @field_validator("analysis_id", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str:
        return str(value).strip() if value is not None else ""

    @field_validator("user_id", mode="before")
    @classmethod
    def _blank_user(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        return value.strip() or None

    @field_validator("comment", mode="before")
    @classmethod
    def _truncate(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        return value[:COMMENT_MAX_LENGTH]


class FeedbackRecord(BaseModel):
    id: str
    analysis_id: str
    user_id: Optional[str] = None
    helpful: Optional[bool] = None
    comment: Optional[str] = None
    created_at: Optional[datetime] = None
