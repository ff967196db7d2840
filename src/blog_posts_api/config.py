"""Application configuration via environment variables."""

from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

MEMORY_SCHEME = "memory"
REDIS_SCHEMES = frozenset({"redis", "rediss", "unix"})


def validate_database_url(url: str) -> str:
    """Reject store URLs whose scheme no backend can serve."""
    scheme = urlparse(url).scheme
    if scheme != MEMORY_SCHEME and scheme not in REDIS_SCHEMES:
        supported = ", ".join(sorted(REDIS_SCHEMES | {MEMORY_SCHEME}))
        raise ValueError(
            f"Unsupported database URL scheme '{scheme}' (expected one of: {supported})"
        )
    return url


class Settings(BaseSettings):
    """Service configuration loaded from environment variables."""

    model_config = {"env_prefix": ""}

    # Document store
    database_url: str = Field(
        default="memory://",
        description="Store URL: memory:// for in-process, redis://... for Redis",
    )
    redis_key: str = Field(
        default="blog_posts", description="Redis hash holding the blog post collection"
    )

    # Server
    host: str = Field(default="0.0.0.0", description="Server bind host")
    port: int = Field(default=8080, ge=0, le=65535, description="Server bind port")
    log_level: str = Field(default="info", description="Log level")

    @field_validator("database_url")
    @classmethod
    def _validate_database_url(cls, v: str) -> str:
        return validate_database_url(v)
