"""Shared test fixtures."""
import os
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Force test settings before any app imports
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["JWT_SECRET"] = "test-secret-key"
os.environ["JWT_EXPIRATION_DAYS"] = "1"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["APIFY_API_TOKEN"] = "test-token"

from database import Base, get_db, User
from core.auth import hash_password, create_access_token
from main import app

from fastapi.testclient import TestClient


TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(app)


@pytest.fixture
def session_factory():
    """Session factory bound to the test database."""
    return TestingSessionLocal


@pytest.fixture
def db():
    """Direct DB session for test setup."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def test_user(db):
    """Create a test user and return (user, token)."""
    user = User(
        email="test@example.com",
        name="Test User",
        password_hash=hash_password("password123"),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    token = create_access_token(user.id)
    return user, token


@pytest.fixture
def auth_headers(test_user):
    """Authorization headers for authenticated requests."""
    _, token = test_user
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def linked_user(db, test_user):
    """The test user with a linked TikTok account."""
    user, _ = test_user
    user.tiktok_username = "creator"
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def second_user(db):
    """A second user with no shared access (for isolation tests)."""
    user = User(
        email="other@example.com",
        name="Other User",
        password_hash=hash_password("password123"),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    token = create_access_token(user.id)
    return user, token


def _item(video_id="v1", **overrides):
    item = {
        "id": video_id,
        "text": f"Video {video_id} #fyp #dance",
        "createTime": 1700000000,
        "diggCount": 10,
        "shareCount": 2,
        "playCount": 100,
        "commentCount": 3,
        "collectCount": 1,
        "covers": [f"https://p16.tiktokcdn.com/{video_id}.jpeg"],
        "webVideoUrl": f"https://www.tiktok.com/@creator/video/{video_id}",
        "hashtags": [{"name": "fyp"}, {"name": "dance"}],
        "authorMeta": {
            "name": "creator",
            "avatar": "https://p16.tiktokcdn.com/avatar.jpeg",
            "following": 12,
            "fans": 3400,
            "heart": 56000,
            "video": 42,
        },
    }
    item.update(overrides)
    return item


@pytest.fixture
def make_item():
    """Factory for provider items in the scraper's JSON shape."""
    return _item
