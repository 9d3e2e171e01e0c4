import os

# must be set before windynovel.config is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_TO_FILE"] = "false"

import pytest
from httpx import AsyncClient, ASGITransport
from passlib.hash import bcrypt
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from windynovel.database import Base, get_async_session
from windynovel.main import app
from windynovel.models.user_model import User, UserRole
from windynovel.services import chapters as chapter_service
from windynovel.services import stories as story_service
from windynovel.utils.token_utils import create_access_token

PASSWORD = "secret123"
# low cost factor keeps the suite fast
PASSWORD_HASH = bcrypt.using(rounds=4).hash(PASSWORD)


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def make_user(db, username: str, role: str = UserRole.USER, **extra) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        password=PASSWORD_HASH,
        role=role,
        favorite_genres=[],
        preferences={},
        is_active=extra.pop("is_active", True),
        **extra,
    )
    db.add(user)
    await db.commit()
    return user


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
async def user(db):
    return await make_user(db, "reader")


@pytest.fixture
async def other_user(db):
    return await make_user(db, "another")


@pytest.fixture
async def admin(db):
    return await make_user(db, "boss", role=UserRole.ADMIN)


@pytest.fixture
async def story(db, user):
    s = await story_service.create_story(
        db,
        {
            "title": "Gió Mùa Hạ",
            "author": "Nguyễn Văn A",
            "description": "A summer story.",
            "tags": ["lãng mạn", "học đường"],
        },
        user,
    )
    await db.commit()
    return s


@pytest.fixture
async def chapter(db, story, user):
    c = await chapter_service.create_chapter(
        db,
        {"story_id": story.id, "number": 1, "title": "Mở đầu", "content": "one two three four"},
        user,
    )
    await db.commit()
    return c


@pytest.fixture
def user_headers(user):
    return auth_headers(user)


@pytest.fixture
def other_headers(other_user):
    return auth_headers(other_user)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)
