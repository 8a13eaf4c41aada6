from __future__ import annotations

from fastapi import Request

from backend.app.services.blob_store import HTTPBlobStore
from backend.app.services.config_resolver import ConfigResolver
from backend.app.services.context_builder import ContextBuilder
from backend.app.services.dispatcher import ProviderDispatcher


def get_dispatcher(request: Request) -> ProviderDispatcher:
    return request.app.state.dispatcher


def get_context_builder(request: Request) -> ContextBuilder:
    return request.app.state.context_builder


def get_config_resolver(request: Request) -> ConfigResolver:
    return request.app.state.config_resolver


def get_blob_store(request: Request) -> HTTPBlobStore:
    return request.app.state.blob_store
