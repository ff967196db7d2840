"""Pydantic models for blog post records and request payloads."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

UPDATABLE_FIELDS = frozenset({"title", "content", "author"})


class Author(BaseModel):
    """Post author, exposed as ``{"firstName": ..., "lastName": ...}``."""

    model_config = ConfigDict(strict=True, populate_by_name=True)

    first_name: str = Field(alias="firstName", min_length=1)
    last_name: str = Field(alias="lastName", min_length=1)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class PostCreate(BaseModel):
    """Payload accepted by POST /posts. Unknown keys (including ``id``) are ignored."""

    model_config = ConfigDict(strict=True)

    title: str = Field(min_length=1)
    content: str = ""
    author: Author


class PostUpdate(BaseModel):
    """Partial update for PUT /posts/{id}; only supplied fields are applied."""

    model_config = ConfigDict(strict=True)

    id: str = Field(description="Must match the id in the request path")
    title: str | None = Field(default=None, min_length=1)
    content: str | None = None
    author: Author | None = None

    def changes(self) -> dict[str, Any]:
        """Fields the client actually sent, excluding explicit nulls."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set & UPDATABLE_FIELDS
            if getattr(self, name) is not None
        }


class BlogPost(BaseModel):
    """A stored blog post."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    content: str = ""
    author: Author
    created: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def new(cls, post_id: str, fields: PostCreate) -> BlogPost:
        return cls(id=post_id, title=fields.title, content=fields.content, author=fields.author)

    def merge(self, update: PostUpdate) -> BlogPost:
        """Return a copy with the update's supplied fields applied."""
        return self.model_copy(update=update.changes(), deep=True)

    def serialize(self) -> dict[str, Any]:
        """External JSON representation."""
        return self.model_dump(mode="json", by_alias=True, exclude={"created"})

    def to_document(self) -> str:
        """JSON document as persisted by the Redis store."""
        return self.model_dump_json(by_alias=True)
