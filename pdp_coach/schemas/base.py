"""Response envelope shared by every run endpoint and by domain errors."""
from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar('T')


class ResponseMeta(BaseModel):
    request_id: str | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    # Non-fatal problems, e.g. the schedule could not be updated on finish
    warnings: list[str] = Field(default_factory=list)


class APIError(BaseModel):
    code: str
    message: str
    details: dict = Field(default_factory=dict)


class APIResponse(BaseModel, Generic[T]):
    data: T | None = None
    meta: ResponseMeta | None = None
    errors: list[APIError] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Envelope for a failed request: no data, one or more errors."""

    data: None = None
    meta: ResponseMeta
    errors: list[APIError]
