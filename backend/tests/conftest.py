import gc
import json
from pathlib import Path

import httpx
import pytest
from alembic import command
from alembic.config import Config
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from backend.app.config.settings import settings
from backend.app.main import app, configure_gateway
from backend.app.providers.types import ConversationTurn, ProviderConfig, ProviderKind, SamplingParams


class FakeUpstream:
    """Routes upstream HTTP calls to canned responses and records every request."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], object] = {}

    def add(self, method: str, path: str, response) -> None:
        """``response`` is an ``httpx.Response``, an exception to raise, or a callable."""
        self.routes[(method.upper(), path)] = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"error": "no route"})
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        return response

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


def sse_body(*payloads, done: bool = True) -> bytes:
    lines = [f"data: {json.dumps(p)}\n\n" for p in payloads]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def ndjson_body(*payloads) -> bytes:
    return "".join(json.dumps(p) + "\n" for p in payloads).encode()


def make_config(kind=ProviderKind.OPENAI_COMPATIBLE, **overrides) -> ProviderConfig:
    fields = {
        "id": "cfg-1",
        "name": "Test Provider",
        "kind": kind,
        "endpoint": "https://llm.example.com/v1",
        "model": "test-model",
        "credential": "sk-test",
        "sampling": SamplingParams(temperature=0.2, max_output_tokens=64),
    }
    if kind is ProviderKind.AZURE_DEPLOYMENT:
        fields.update(endpoint="https://contoso.openai.azure.com", deployment_name="gpt4o", model="")
    if kind is ProviderKind.OLLAMA:
        fields.update(endpoint="http://ollama.local:11434", credential=None)
    fields.update(overrides)
    return ProviderConfig(**fields)


def user_context(text: str = "Hello") -> list[ConversationTurn]:
    return [
        ConversationTurn(role="system", text="You are a helpful AI assistant."),
        ConversationTurn(role="user", text=text),
    ]


@pytest.fixture(scope="session")
def project_root():
    return Path(__file__).resolve().parent.parent.parent


@pytest.fixture
def tmp_db_path(tmp_path):
    return tmp_path / "test.db"


def apply_migrations(db_url, project_root):
    cfg = Config(str(project_root / "backend" / "alembic.ini"))
    cfg.set_main_option("script_location", str(project_root / "backend" / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    cfg.attributes["configure_logger"] = False
    command.upgrade(cfg, "head")


@pytest.fixture
def engine(tmp_db_path, project_root):
    db_url = f"sqlite:///{tmp_db_path}"
    apply_migrations(db_url, project_root)
    engine = create_engine(
        db_url,
        poolclass=NullPool,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    with engine.connect() as conn:
        conn.execute(text("PRAGMA foreign_keys=ON;"))
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()
    # Force garbage collection to release locks
    gc.collect()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def gateway_settings():
    return settings.model_copy(update={"demo_word_delay_seconds": 0, "config_cache_ttl_seconds": 0})


@pytest.fixture
def client(engine, session_factory, upstream, gateway_settings, monkeypatch):
    """Test client wired to a migrated temp DB and the fake upstream."""
    monkeypatch.setattr(settings, "database_url", str(engine.url))
    from backend.app.db.engine import reset_engine_for_tests
    from backend.app.db.session import reset_sessionmaker_for_tests
    reset_engine_for_tests()
    reset_sessionmaker_for_tests()

    configure_gateway(app, upstream.client(), session_factory=session_factory, config=gateway_settings)
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.state.dispatcher = None
        reset_engine_for_tests()
        reset_sessionmaker_for_tests()
