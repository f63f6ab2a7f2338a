"""
Pydantic Schemas - Feed API Wire Models

Defines the Pydantic schemas for the DataSync events feed:
- Pagination metadata and the page envelope
- Structured error bodies

Usage:
    from utils.schemas import FeedPage

    page = FeedPage.model_validate(body)
    for event in page.events:
        ...

Events stay untyped inside FeedPage so the source record can be stored
verbatim; the normalizer rejects items that are not objects.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Pagination(BaseModel):
    """Pagination block of a feed page."""

    model_config = ConfigDict(extra="allow")

    limit: Optional[int] = None
    hasMore: Optional[bool] = False
    nextCursor: Optional[str] = None
    cursorExpiresIn: Optional[float] = None


class FeedPage(BaseModel):
    """Successful feed response envelope.

    {
        "data": [{"id": "...", "timestamp": 1700000000000, ...}],
        "pagination": {"limit": 5000, "hasMore": true, "nextCursor": "abc"},
        "meta": {"total": 12000, "returned": 5000}
    }
    """

    model_config = ConfigDict(extra="allow")

    data: Optional[list[Any]] = Field(default_factory=list)
    pagination: Optional[Pagination] = Field(default_factory=Pagination)
    meta: Optional[dict[str, Any]] = None

    @property
    def events(self) -> list[Any]:
        return self.data or []

    @property
    def has_more(self) -> bool:
        return bool(self.pagination and self.pagination.hasMore)

    @property
    def next_cursor(self) -> Optional[str]:
        return (self.pagination and self.pagination.nextCursor) or None

    @property
    def cursor_expires_in(self) -> Optional[float]:
        return self.pagination.cursorExpiresIn if self.pagination else None


class FeedError(BaseModel):
    """Structured error body returned by the feed.

    Error bodies are best-effort, so every field is optional.
    """

    model_config = ConfigDict(extra="allow")

    error: Optional[str] = None
    message: Optional[str] = None
    code: Optional[str] = None
    hint: Optional[str] = None

    @field_validator("error", "message", "code", "hint", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, (dict, list)):
            return None
        return str(v)
