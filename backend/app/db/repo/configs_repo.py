from __future__ import annotations

from typing import List, Optional

from sqlalchemy.orm import Session

from backend.app.db.models import LLMConfig


def get_config(session: Session, config_id: str) -> Optional[LLMConfig]:
    """Get a provider configuration by id."""
    return session.query(LLMConfig).filter(LLMConfig.id == config_id).first()


def get_default_config(session: Session) -> Optional[LLMConfig]:
    """Get the enabled default configuration, if any."""
    return (
        session.query(LLMConfig)
        .filter(LLMConfig.is_default.is_(True), LLMConfig.is_enabled.is_(True))
        .order_by(LLMConfig.updated_at.desc())
        .first()
    )


def list_enabled_configs(session: Session) -> List[LLMConfig]:
    """List enabled configurations, default first."""
    return (
        session.query(LLMConfig)
        .filter(LLMConfig.is_enabled.is_(True))
        .order_by(LLMConfig.is_default.desc(), LLMConfig.name)
        .all()
    )


def create_config(session: Session, **fields) -> LLMConfig:
    """Create a configuration. A new default clears the previous one."""
    config = LLMConfig(**fields)
    if config.is_default:
        session.query(LLMConfig).filter(LLMConfig.is_default.is_(True)).update({"is_default": False})
    session.add(config)
    session.flush()  # To get the ID
    return config


def set_default_config(session: Session, config_id: str) -> Optional[LLMConfig]:
    """Make ``config_id`` the only default. Returns None when it does not exist."""
    config = get_config(session, config_id)
    if config is None:
        return None
    session.query(LLMConfig).filter(LLMConfig.id != config_id).update({"is_default": False})
    config.is_default = True
    session.flush()
    return config
