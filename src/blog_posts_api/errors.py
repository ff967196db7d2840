"""Error taxonomy shared by the store adapters and the HTTP handlers."""

from __future__ import annotations

from pydantic import ValidationError


class BlogPostError(Exception):
    """Base class for errors raised by the blog posts service."""


class PostValidationError(BlogPostError):
    """Client-supplied data is missing, malformed, or inconsistent. Maps to 400."""

    @classmethod
    def from_pydantic(cls, exc: ValidationError) -> PostValidationError:
        """Summarise a pydantic error as ``field: message`` pairs."""
        parts = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err["loc"]) or "body"
            parts.append(f"{loc}: {err['msg']}")
        return cls("; ".join(parts))


class PostNotFoundError(BlogPostError):
    """No record exists for the requested id. Maps to 404."""

    def __init__(self, post_id: str) -> None:
        super().__init__(f"Blog post {post_id} not found")
        self.post_id = post_id


class StoreError(BlogPostError):
    """The document store is unreachable or returned unusable data. Maps to 500."""


class ServerStateError(RuntimeError):
    """Raised on an illegal start/stop transition of the server wrapper."""
