"""Pytest configuration and shared fixtures."""

import os

os.environ.setdefault("ENV", "test")

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from config import Settings
from database import USERS, MongoStore
from main import create_app
from schemas import User
from security import Identity
from tests.fake_mongo import FakeClient, FakeClientFactory


@pytest.fixture
def test_settings() -> Settings:
    return Settings(ENV="test", MONGO_URI="mongodb://fake:27017", MONGO_DB_NAME="devflow_test")


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def mongo(client_factory) -> FakeClient:
    return client_factory.client


@pytest_asyncio.fixture
async def store(test_settings, client_factory) -> AsyncGenerator[MongoStore, None]:
    store = MongoStore(test_settings, client_factory=client_factory)
    await store.ensure_indexes()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def db(store):
    return await store.connect()


async def make_user(db, name: str, username: str, email: str) -> Identity:
    user = User(name=name, username=username, email=email).model_dump()
    res = await db[USERS].insert_one(user)
    return Identity(user_id=str(res.inserted_id), name=name, email=email)


@pytest_asyncio.fixture
async def author(db) -> Identity:
    return await make_user(db, "Ada Lovelace", "ada", "ada@example.com")


@pytest_asyncio.fixture
async def other_user(db) -> Identity:
    return await make_user(db, "Alan Turing", "alan", "alan@example.com")


@pytest.fixture
def api(test_settings, client_factory):
    """Test client over a fresh app; the lifespan connects to the fake Mongo."""
    app = create_app(MongoStore(test_settings, client_factory=client_factory))
    with TestClient(app) as client:
        yield client
