from backend.app.db.repo.configs_repo import create_config
from backend.app.providers.types import ProviderKind


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_health_deep_demo_mode(client):
    response = client.get("/health/deep")
    assert response.status_code == 200
    data = response.json()
    assert data["config_store"]["ok"] is True
    assert data["demo_mode"] is True
    assert data["default_provider"] is None
    assert set(data["provider_kinds"]) == {"openai_compatible", "ollama", "azure_deployment"}


def test_health_deep_with_default(client, db_session):
    create_config(db_session, name="Local", kind=ProviderKind.OLLAMA.value, endpoint="http://ollama:11434", model="llama3", is_default=True)
    db_session.commit()

    data = client.get("/health/deep").json()
    assert data["demo_mode"] is False
    assert data["default_provider"] == "ollama"


def test_migrations_to_head_on_empty_db(engine):
    from sqlalchemy import inspect

    tables = set(inspect(engine).get_table_names())
    assert {"llm_configs", "users", "alembic_version"} <= tables
