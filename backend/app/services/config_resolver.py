"""Lookup of the provider configuration that serves a user's chat turn."""
from __future__ import annotations

import threading
import time
from typing import Callable

from sqlalchemy.orm import Session

from backend.app.core.errors import ConfigValidationError
from backend.app.core.logging import get_logger
from backend.app.db.repo.configs_repo import get_config, get_default_config
from backend.app.db.repo.users_repo import get_user
from backend.app.providers.types import ProviderConfig

logger = get_logger(__name__)

_DEFAULT_KEY = "__default__"


class ConfigResolver:
    """Resolves ``user preference (if enabled) -> default -> None``.

    Resolved configs are cached for ``ttl_seconds``; admin edits become
    visible once the entry expires or ``invalidate()`` is called.
    """

    def __init__(self, session_factory: Callable[[], Session], ttl_seconds: float = 30):
        self._session_factory = session_factory
        self.ttl_seconds = ttl_seconds
        self._cache: dict[str, tuple[float, ProviderConfig | None]] = {}
        self._lock = threading.Lock()

    def invalidate(self) -> None:
        with self._lock:
            self._cache.clear()

    def _cached(self, key: str) -> tuple[bool, ProviderConfig | None]:
        if self.ttl_seconds <= 0:
            return False, None
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return False, None
            stored_at, config = entry
            if time.monotonic() - stored_at > self.ttl_seconds:
                del self._cache[key]
                return False, None
            return True, config

    def _store(self, key: str, config: ProviderConfig | None) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._cache[key] = (time.monotonic(), config)

    def _load(self, key: str, loader: Callable[[Session], object]) -> ProviderConfig | None:
        hit, config = self._cached(key)
        if hit:
            return config
        with self._session_factory() as session:
            row = loader(session)
            config = row.to_provider_config() if row is not None else None
        self._store(key, config)
        return config

    def _preferred_config_id(self, user_id: int) -> str | None:
        with self._session_factory() as session:
            user = get_user(session, user_id)
            return user.preferred_config_id if user is not None else None

    def get(self, config_id: str) -> ProviderConfig | None:
        return self._load(config_id, lambda session: get_config(session, config_id))

    def default(self) -> ProviderConfig | None:
        return self._load(_DEFAULT_KEY, get_default_config)

    def resolve(self, user_id: int | None) -> ProviderConfig | None:
        """Config for ``user_id``; ``None`` means nothing is configured."""
        if user_id is not None:
            preferred_id = self._preferred_config_id(user_id)
            if preferred_id:
                try:
                    preferred = self.get(preferred_id)
                except ConfigValidationError:
                    logger.warning("Preferred configuration is unusable", data={"config_id": preferred_id})
                    preferred = None
                if preferred is not None and preferred.enabled:
                    return preferred
                logger.info("Preferred configuration unavailable; using default", data={"config_id": preferred_id})

        try:
            config = self.default()
        except ConfigValidationError:
            logger.warning("Default configuration is unusable; falling back to demo")
            return None
        if config is None:
            logger.info("No default provider configuration")
        return config
