from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from backend.app.db.models import User


def create_user(session: Session, username: str, preferred_config_id: str | None = None) -> User:
    """Create a new user."""
    user = User(username=username, preferred_config_id=preferred_config_id)
    session.add(user)
    session.flush()  # To get the ID
    return user


def get_user(session: Session, user_id: int) -> Optional[User]:
    """Get a user by id."""
    return session.query(User).filter(User.id == user_id).first()


def set_preferred_config(session: Session, user_id: int, config_id: str | None) -> None:
    """Update the user's preferred provider configuration."""
    session.query(User).filter(User.id == user_id).update({"preferred_config_id": config_id})
