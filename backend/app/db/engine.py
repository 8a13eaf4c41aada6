"""Engine for the provider configuration store."""
from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url

from backend.app.config.settings import settings

_engines: dict[str, Engine] = {}


def _ensure_sqlite_dir(url: URL) -> None:
    database = url.database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


def _sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def get_engine(database_url: str | None = None) -> Engine:
    """Engine for ``database_url`` (default: settings), created once per URL."""
    url = database_url or settings.database_url
    engine = _engines.get(url)
    if engine is not None:
        return engine

    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        _ensure_sqlite_dir(parsed)
        # Sessions are opened from the threadpool as well as the event loop
        engine = create_engine(url, connect_args={"check_same_thread": False})
        event.listen(engine, "connect", _sqlite_pragmas)
    else:
        engine = create_engine(url, pool_pre_ping=True)
    _engines[url] = engine
    return engine


def reset_engine_for_tests():
    """Dispose and forget every engine (for tests only)."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()
