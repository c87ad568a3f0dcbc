import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from tortoise import Tortoise

from storymint.core.config import MODELS_MODULES
from storymint.core.security import get_session
from storymint.main import app
from storymint.models.story import Story, StoryStatus

CREATOR = "0x" + "c" * 40
SELLER = "0x" + "a" * 40
BUYER = "0x" + "b" * 40
AUTHOR = "0x" + "d" * 40

BAD_WALLETS = [
    "",
    "0x123",
    "0x" + "g" * 40,
    "1x" + "a" * 40,
    "0x" + "a" * 41,
    "0x" + "a" * 39,
    "0x" + "a" * 40 + "\n",
]


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory SQLite database with all tables, per test."""
    await Tortoise.init(db_url="sqlite://:memory:", modules={"models": MODELS_MODULES})
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


@pytest_asyncio.fixture
async def story(db):
    return await Story.create(id="story-1", title="The Lighthouse", author_wallet=AUTHOR, status=StoryStatus.PUBLISHED)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def signed_in():
    """Simulates the upstream auth layer having authenticated the caller."""
    app.dependency_overrides[get_session] = lambda: {"user_id": "user-12345"}
    yield
    app.dependency_overrides.pop(get_session, None)
