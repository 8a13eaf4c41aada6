from __future__ import annotations

from typing import Generator

from sqlalchemy.orm import Session, sessionmaker

from backend.app.config.settings import settings
from backend.app.db.engine import get_engine

_sessionmakers: dict[str, sessionmaker] = {}


def get_sessionmaker(database_url: str | None = None) -> sessionmaker:
    """Session factory bound to the config store engine."""
    url = database_url or settings.database_url
    if url not in _sessionmakers:
        _sessionmakers[url] = sessionmaker(bind=get_engine(url), autoflush=False)
    return _sessionmakers[url]


def reset_sessionmaker_for_tests():
    _sessionmakers.clear()


# Dependency for FastAPI
def get_db() -> Generator[Session, None, None]:
    with get_sessionmaker()() as db:
        yield db
