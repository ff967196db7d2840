"""Shared test constants, fixtures, and factory functions."""

from collections.abc import AsyncIterator
from typing import Any

import fakeredis
import pytest
from faker import Faker
from httpx import ASGITransport, AsyncClient

from blog_posts_api.config import Settings
from blog_posts_api.main import create_app
from blog_posts_api.models import BlogPost, PostCreate
from blog_posts_api.post_store import PostStore, RedisPostStore

# -- Constants --

REDIS_KEY = "test_blog_posts"
SEED_COUNT = 10
MISSING_ID = "0" * 32

FAKER_SEED = 4321

fake = Faker()


# -- Factories --


def make_settings(**overrides: Any) -> Settings:
    """Create a Settings instance with test defaults. Override any field."""
    defaults: dict[str, Any] = {
        "database_url": "memory://",
        "redis_key": REDIS_KEY,
        "host": "127.0.0.1",
        "port": 0,
    }
    return Settings(**(defaults | overrides))


def generate_post_data() -> dict[str, Any]:
    """Random, plausible blog post payload in the external JSON shape."""
    return {
        "title": fake.job(),
        "content": fake.paragraph(),
        "author": {
            "firstName": fake.first_name(),
            "lastName": fake.last_name(),
        },
    }


async def seed_posts(store: PostStore, count: int = SEED_COUNT) -> list[BlogPost]:
    """Insert *count* generated posts directly through the store."""
    return [
        await store.create(PostCreate.model_validate(generate_post_data()))
        for _ in range(count)
    ]


# -- Fixtures --


@pytest.fixture(autouse=True)
def _seed_fake() -> None:
    """Reseed the shared Faker so each test sees the same data."""
    fake.seed_instance(FAKER_SEED)


@pytest.fixture
def fake_redis() -> fakeredis.FakeAsyncRedis:
    """Isolated fake Redis client per test."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())


@pytest.fixture
async def post_store(fake_redis: fakeredis.FakeAsyncRedis) -> AsyncIterator[RedisPostStore]:
    """Redis-backed store over fakeredis; wiped after each test."""
    store = RedisPostStore(fake_redis, REDIS_KEY)
    yield store
    await store.clear()
    await store.aclose()


@pytest.fixture
async def client(post_store: RedisPostStore) -> AsyncIterator[AsyncClient]:
    """AsyncClient wired to a fresh app with the test store injected."""
    transport = ASGITransport(app=create_app(post_store))
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
