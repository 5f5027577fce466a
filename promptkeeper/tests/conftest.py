import json

import httpx
import pytest
from sqlalchemy.orm import sessionmaker, Session as SQLAlchemySession
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from promptkeeper.config import Settings
from promptkeeper.database import get_db, make_engine
from promptkeeper.main import create_app
from promptkeeper.models import Base, Category, Project, Tag
from promptkeeper.services import PromptService
from promptkeeper.utils.llm_utils import build_default_registry

# Use an in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="session")
def db_engine():
    engine = make_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """Creates the tables for one test and drops them afterwards."""
    Base.metadata.create_all(bind=db_engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    Base.metadata.drop_all(bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> SQLAlchemySession:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def test_settings():
    return Settings(config_data={})


@pytest.fixture
def prompt_service(test_settings):
    return PromptService(max_retries=test_settings.VERSION_MINT_MAX_RETRIES)


class FakeChatBackend:
    """Answers OpenAI-compatible chat requests and records what was sent."""

    def __init__(self, reply="Optimized prompt", chunks=("Hel", "lo"), status_code=200):
        self.reply = reply
        self.chunks = list(chunks)
        self.status_code = status_code
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content.decode("utf-8"))
        self.requests.append({"url": str(request.url), "headers": dict(request.headers), "body": body})
        if self.status_code >= 400:
            return httpx.Response(self.status_code, text="upstream exploded")
        if body.get("stream"):
            lines = [
                "data: " + json.dumps({"choices": [{"delta": {"content": chunk}}]})
                for chunk in self.chunks
            ]
            lines.append("data: [DONE]")
            return httpx.Response(
                200,
                content=("\n\n".join(lines) + "\n\n").encode("utf-8"),
                headers={"Content-Type": "text/event-stream"},
            )
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": self.reply}}]})


@pytest.fixture
def chat_backend():
    return FakeChatBackend()


@pytest.fixture
def provider_registry(chat_backend):
    return build_default_registry(transport=httpx.MockTransport(chat_backend), timeout=5.0)


@pytest.fixture(scope="function")
def app(db_engine, session_factory, provider_registry, test_settings):
    application = create_app(
        database_engine=db_engine,
        registry=provider_registry,
        app_settings=test_settings,
        configure_logging=False,
    )

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    application.dependency_overrides[get_db] = override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture(scope="function")
def test_client(app):
    """
    Provides a TestClient for the FastAPI application, with the database
    dependency overridden to use the test database.
    """
    client = TestClient(app)
    yield client


@pytest.fixture
def client(test_client):
    """Alias used by some tests."""
    yield test_client


@pytest.fixture
def project(db_session) -> Project:
    db_project = Project(name="Demo", description="Demo project")
    db_session.add(db_project)
    db_session.commit()
    db_session.refresh(db_project)
    return db_project


@pytest.fixture
def category(db_session) -> Category:
    db_category = Category(name="general")
    db_session.add(db_category)
    db_session.commit()
    db_session.refresh(db_category)
    return db_category


@pytest.fixture
def tags(db_session):
    db_tags = [Tag(name="prod", color="#ff0000"), Tag(name="draft")]
    db_session.add_all(db_tags)
    db_session.commit()
    for t in db_tags:
        db_session.refresh(t)
    return db_tags
