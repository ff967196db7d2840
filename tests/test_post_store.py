"""Tests for the memory and Redis post stores and the store factory."""

from __future__ import annotations

from collections.abc import AsyncIterator
from unittest.mock import AsyncMock

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from blog_posts_api.errors import PostNotFoundError, StoreError
from blog_posts_api.models import PostCreate, PostUpdate
from blog_posts_api.post_store import (
    MemoryPostStore,
    PostStore,
    RedisPostStore,
    create_post_store,
)
from tests.conftest import MISSING_ID, REDIS_KEY, generate_post_data, seed_posts


@pytest.fixture(params=["memory", "redis"])
async def store(request: pytest.FixtureRequest) -> AsyncIterator[PostStore]:
    """Each behavioural test runs against both backends."""
    if request.param == "memory":
        backend: PostStore = MemoryPostStore()
    else:
        client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())
        backend = RedisPostStore(client, REDIS_KEY)
    yield backend
    await backend.aclose()


def _create_fields() -> PostCreate:
    return PostCreate.model_validate(generate_post_data())


# -- Protocol conformance --


def test_memory_store_implements_protocol() -> None:
    assert isinstance(MemoryPostStore(), PostStore)


def test_redis_store_implements_protocol(fake_redis: fakeredis.FakeAsyncRedis) -> None:
    assert isinstance(RedisPostStore(fake_redis), PostStore)


# -- Behaviour (both backends) --


async def test_create_assigns_unique_ids(store: PostStore) -> None:
    posts = await seed_posts(store)
    ids = {post.id for post in posts}
    assert len(ids) == len(posts)
    assert all(ids)


async def test_create_then_get_returns_same_values(store: PostStore) -> None:
    fields = _create_fields()
    created = await store.create(fields)
    fetched = await store.get(created.id)
    assert fetched == created
    assert fetched.title == fields.title
    assert fetched.content == fields.content
    assert fetched.author == fields.author


async def test_get_missing_raises_not_found(store: PostStore) -> None:
    with pytest.raises(PostNotFoundError) as excinfo:
        await store.get(MISSING_ID)
    assert excinfo.value.post_id == MISSING_ID


async def test_list_and_count_match(store: PostStore) -> None:
    assert await store.list_posts() == []
    seeded = await seed_posts(store, 4)
    listed = await store.list_posts()
    assert await store.count() == 4
    assert {p.id for p in listed} == {p.id for p in seeded}


async def test_list_order_is_stable(store: PostStore) -> None:
    await seed_posts(store, 5)
    first = [p.id for p in await store.list_posts()]
    second = [p.id for p in await store.list_posts()]
    assert first == second


async def test_update_merges_supplied_fields_only(store: PostStore) -> None:
    original = await store.create(_create_fields())
    update = PostUpdate.model_validate({"id": original.id, "title": "fofofofofofofof"})

    returned = await store.update(original.id, update)
    stored = await store.get(original.id)

    assert returned == stored
    assert stored.title == "fofofofofofofof"
    assert stored.content == original.content
    assert stored.author == original.author
    assert stored.created == original.created


async def test_update_missing_raises_not_found(store: PostStore) -> None:
    update = PostUpdate.model_validate({"id": MISSING_ID, "title": "x"})
    with pytest.raises(PostNotFoundError):
        await store.update(MISSING_ID, update)
    assert await store.count() == 0


async def test_delete_is_idempotent(store: PostStore) -> None:
    post = await store.create(_create_fields())
    assert await store.delete(post.id) is True
    assert await store.delete(post.id) is False
    with pytest.raises(PostNotFoundError):
        await store.get(post.id)


async def test_returned_posts_are_copies(store: PostStore) -> None:
    post = await store.create(_create_fields())
    fetched = await store.get(post.id)
    fetched.title = "mutated locally"
    assert (await store.get(post.id)).title == post.title


async def test_clear_removes_everything(store: PostStore) -> None:
    await seed_posts(store, 3)
    await store.clear()
    assert await store.count() == 0


async def test_ping_succeeds(store: PostStore) -> None:
    await store.ping()


# -- Redis specifics --


async def test_redis_store_keeps_documents_in_one_hash(
    post_store: RedisPostStore, fake_redis: fakeredis.FakeAsyncRedis
) -> None:
    post = await post_store.create(_create_fields())
    raw = await fake_redis.hget(REDIS_KEY, post.id)
    assert raw is not None
    assert b'"firstName"' in raw
    assert b'"created"' in raw


async def test_redis_update_retries_after_concurrent_write(
    post_store: RedisPostStore, fake_redis: fakeredis.FakeAsyncRedis
) -> None:
    target = await post_store.create(_create_fields())
    other = await post_store.create(_create_fields())
    update = PostUpdate.model_validate({"id": target.id, "content": "futuristic fusion"})

    original_pipeline = fake_redis.pipeline
    touched = other.model_copy(update={"content": "written by another client"})
    interfered = False

    def pipeline_with_interference(*args: object, **kwargs: object) -> object:
        pipe = original_pipeline(*args, **kwargs)
        real_hget = pipe.hget

        async def hget(*hargs: object) -> object:
            nonlocal interfered
            value = await real_hget(*hargs)
            if not interfered:
                interfered = True
                # A write from another client lands between WATCH and EXEC.
                await fake_redis.hset(REDIS_KEY, other.id, touched.to_document())
            return value

        pipe.hget = hget
        return pipe

    fake_redis.pipeline = pipeline_with_interference  # type: ignore[method-assign]
    await post_store.update(target.id, update)

    assert interfered
    assert (await post_store.get(target.id)).content == "futuristic fusion"
    assert (await post_store.get(other.id)).content == "written by another client"


async def test_redis_update_does_not_resurrect_deleted_post(
    post_store: RedisPostStore,
) -> None:
    post = await post_store.create(_create_fields())
    await post_store.delete(post.id)
    with pytest.raises(PostNotFoundError):
        await post_store.update(post.id, PostUpdate.model_validate({"id": post.id, "title": "x"}))
    assert await post_store.count() == 0


async def test_redis_store_wraps_connection_errors(fake_redis: fakeredis.FakeAsyncRedis) -> None:
    store = RedisPostStore(fake_redis, REDIS_KEY)
    fake_redis.hgetall = AsyncMock(  # type: ignore[method-assign]
        side_effect=RedisConnectionError("down")
    )
    with pytest.raises(StoreError, match="unavailable during list"):
        await store.list_posts()


async def test_redis_ping_wraps_connection_errors(fake_redis: fakeredis.FakeAsyncRedis) -> None:
    store = RedisPostStore(fake_redis, REDIS_KEY)
    fake_redis.ping = AsyncMock(side_effect=OSError("refused"))  # type: ignore[method-assign]
    with pytest.raises(StoreError):
        await store.ping()


async def test_redis_store_rejects_corrupt_documents(
    post_store: RedisPostStore, fake_redis: fakeredis.FakeAsyncRedis
) -> None:
    await fake_redis.hset(REDIS_KEY, MISSING_ID, "{not json")
    with pytest.raises(StoreError, match="corrupt"):
        await post_store.get(MISSING_ID)


# -- Factory --


def test_factory_memory_url() -> None:
    assert isinstance(create_post_store("memory://"), MemoryPostStore)


@pytest.mark.parametrize(
    "url", ["redis://localhost:6379/0", "rediss://cache.example.com:6380/1", "unix:///tmp/r.sock"]
)
async def test_factory_redis_urls(url: str) -> None:
    store = create_post_store(url)
    assert isinstance(store, RedisPostStore)
    await store.aclose()


def test_factory_rejects_unknown_scheme() -> None:
    with pytest.raises(ValueError, match="Unsupported database URL scheme 'mongodb'"):
        create_post_store("mongodb://localhost/blog")
