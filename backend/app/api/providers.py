from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.app.api.deps import get_config_resolver, get_dispatcher
from backend.app.core.errors import ConfigNotFound
from backend.app.db.repo.configs_repo import list_enabled_configs
from backend.app.db.session import get_db
from backend.app.providers.types import ProviderConfig
from backend.app.services.config_resolver import ConfigResolver
from backend.app.services.dispatcher import ProviderDispatcher

router = APIRouter(prefix="/providers", tags=["providers"])


def _require_config(resolver: ConfigResolver, config_id: str) -> ProviderConfig:
    config = resolver.get(config_id)
    if config is None:
        raise ConfigNotFound()
    return config


@router.get("")
def list_providers(db: Session = Depends(get_db)):
    return [row.to_provider_config().public_dict() for row in list_enabled_configs(db)]


@router.post("/{config_id}/test")
async def test_provider(
    config_id: str,
    resolver: ConfigResolver = Depends(get_config_resolver),
    dispatcher: ProviderDispatcher = Depends(get_dispatcher),
):
    config = _require_config(resolver, config_id)
    response = await dispatcher.probe(config)
    return {"success": True, "response": response, "message": "Configuration test successful!"}


@router.get("/{config_id}/models")
async def list_provider_models(
    config_id: str,
    resolver: ConfigResolver = Depends(get_config_resolver),
    dispatcher: ProviderDispatcher = Depends(get_dispatcher),
):
    config = _require_config(resolver, config_id)
    models = await dispatcher.list_models(config)
    return {"models": [{"id": m.id, "label": m.label} for m in models]}
