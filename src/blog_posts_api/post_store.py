"""Blog post document store: Protocol + Memory + Redis implementations.

The Redis backend keeps the whole collection in one hash, one JSON document
per post keyed by id, so a listing is a single atomic ``HGETALL`` snapshot.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Protocol, runtime_checkable
from urllib.parse import urlparse
from uuid import uuid4

import structlog
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from blog_posts_api.config import MEMORY_SCHEME, REDIS_SCHEMES, validate_database_url
from blog_posts_api.errors import PostNotFoundError, StoreError
from blog_posts_api.metrics import store_errors_total
from blog_posts_api.models import BlogPost, PostCreate, PostUpdate
from blog_posts_api.telemetry import get_tracer

if TYPE_CHECKING:
    from redis.asyncio import Redis

log = structlog.get_logger()
_tracer = get_tracer(__name__)

DEFAULT_REDIS_KEY = "blog_posts"


def _new_id() -> str:
    return uuid4().hex


@runtime_checkable
class PostStore(Protocol):
    """Protocol for blog post storage backends."""

    async def list_posts(self) -> list[BlogPost]: ...

    async def get(self, post_id: str) -> BlogPost: ...

    async def create(self, fields: PostCreate) -> BlogPost: ...

    async def update(self, post_id: str, fields: PostUpdate) -> BlogPost: ...

    async def delete(self, post_id: str) -> bool: ...

    async def count(self) -> int: ...

    async def clear(self) -> None: ...

    async def ping(self) -> None: ...

    async def aclose(self) -> None: ...


class MemoryPostStore:
    """In-process store for local runs and testing. Lists in insertion order."""

    def __init__(self) -> None:
        self._posts: dict[str, BlogPost] = {}

    async def list_posts(self) -> list[BlogPost]:
        return [post.model_copy(deep=True) for post in self._posts.values()]

    async def get(self, post_id: str) -> BlogPost:
        post = self._posts.get(post_id)
        if post is None:
            raise PostNotFoundError(post_id)
        return post.model_copy(deep=True)

    async def create(self, fields: PostCreate) -> BlogPost:
        post_id = _new_id()
        while post_id in self._posts:
            post_id = _new_id()
        post = BlogPost.new(post_id, fields)
        self._posts[post_id] = post
        return post.model_copy(deep=True)

    async def update(self, post_id: str, fields: PostUpdate) -> BlogPost:
        current = self._posts.get(post_id)
        if current is None:
            raise PostNotFoundError(post_id)
        updated = current.merge(fields)
        self._posts[post_id] = updated
        return updated.model_copy(deep=True)

    async def delete(self, post_id: str) -> bool:
        return self._posts.pop(post_id, None) is not None

    async def count(self) -> int:
        return len(self._posts)

    async def clear(self) -> None:
        self._posts.clear()

    async def ping(self) -> None:
        return None

    async def aclose(self) -> None:
        self._posts.clear()


@contextmanager
def _store_op(op: str) -> Iterator[None]:
    """Trace a Redis call and translate driver failures into ``StoreError``."""
    with _tracer.start_as_current_span(f"post_store.{op}"):
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            store_errors_total.add(1, {"op": op})
            log.warning("redis_store_unreachable", op=op, error=str(exc))
            raise StoreError(f"Document store unavailable during {op}") from exc


class RedisPostStore:
    """Redis-backed store. Updates use WATCH/MULTI so a concurrent delete is never undone."""

    def __init__(self, client: Redis, key: str = DEFAULT_REDIS_KEY) -> None:
        self._client: Redis = client
        self._key = key

    def _decode(self, raw: bytes | str) -> BlogPost:
        data = raw.decode() if isinstance(raw, bytes) else str(raw)
        try:
            return BlogPost.model_validate_json(data)
        except ValidationError as exc:
            store_errors_total.add(1, {"op": "decode"})
            raise StoreError("Stored blog post document is corrupt") from exc

    async def list_posts(self) -> list[BlogPost]:
        with _store_op("list"):
            raw = await self._client.hgetall(self._key)  # type: ignore[misc]
        posts = [self._decode(doc) for doc in raw.values()]
        return sorted(posts, key=lambda p: (p.created, p.id))

    async def get(self, post_id: str) -> BlogPost:
        with _store_op("get"):
            raw = await self._client.hget(self._key, post_id)  # type: ignore[misc]
        if raw is None:
            raise PostNotFoundError(post_id)
        return self._decode(raw)

    async def create(self, fields: PostCreate) -> BlogPost:
        with _store_op("create"):
            while True:
                post = BlogPost.new(_new_id(), fields)
                doc = post.to_document()
                if await self._client.hsetnx(self._key, post.id, doc):  # type: ignore[misc]
                    return post

    async def update(self, post_id: str, fields: PostUpdate) -> BlogPost:
        with _store_op("update"):
            async with self._client.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(self._key)
                        raw = await pipe.hget(self._key, post_id)  # type: ignore[misc]
                        if raw is None:
                            raise PostNotFoundError(post_id)
                        updated = self._decode(raw).merge(fields)
                        pipe.multi()
                        pipe.hset(self._key, post_id, updated.to_document())
                        await pipe.execute()
                        return updated
                    except WatchError:
                        log.debug("post_update_retry", post_id=post_id)

    async def delete(self, post_id: str) -> bool:
        with _store_op("delete"):
            removed: int = await self._client.hdel(self._key, post_id)  # type: ignore[misc]
        return removed > 0

    async def count(self) -> int:
        with _store_op("count"):
            return int(await self._client.hlen(self._key))  # type: ignore[misc]

    async def clear(self) -> None:
        with _store_op("clear"):
            await self._client.delete(self._key)

    async def ping(self) -> None:
        with _store_op("ping"):
            await self._client.ping()  # type: ignore[misc]

    async def aclose(self) -> None:
        await self._client.aclose()


def create_post_store(database_url: str, redis_key: str = DEFAULT_REDIS_KEY) -> PostStore:
    """Factory: create a PostStore for the scheme of *database_url*."""
    scheme = urlparse(validate_database_url(database_url)).scheme
    if scheme in REDIS_SCHEMES:
        import redis.asyncio as aioredis

        return RedisPostStore(aioredis.from_url(database_url), redis_key)
    if scheme == MEMORY_SCHEME:
        return MemoryPostStore()
    msg = f"no store backend for scheme '{scheme}'"
    raise ValueError(msg)
