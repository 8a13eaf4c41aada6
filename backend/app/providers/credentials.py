"""Credential shape detection.

A credential with two or more ``.`` separators (a JWT-like ``header.payload.sig``
token, e.g. an Azure AD access token) is sent as a bearer token; anything else
is treated as a raw API key. Non-JWT secrets that happen to contain two dots
are misclassified as bearer tokens; this is a known limitation kept for
compatibility with existing Azure configurations.
"""
from __future__ import annotations

import enum

TOKEN_SEPARATOR = "."
MIN_TOKEN_SEPARATORS = 2


class CredentialKind(str, enum.Enum):
    BEARER_TOKEN = "bearer_token"
    API_KEY = "api_key"


def classify_credential(credential: str) -> CredentialKind:
    if credential.strip().count(TOKEN_SEPARATOR) >= MIN_TOKEN_SEPARATORS:
        return CredentialKind.BEARER_TOKEN
    return CredentialKind.API_KEY


def auth_headers(credential: str | None, api_key_header: str | None = None) -> dict[str, str]:
    """Build the auth header for a credential.

    ``api_key_header`` names the header raw API keys go in. Providers that
    take API keys as bearer tokens (OpenAI and compatibles) pass ``None``.
    """
    if not credential:
        return {}
    credential = credential.strip()
    if classify_credential(credential) is CredentialKind.BEARER_TOKEN or api_key_header is None:
        return {"Authorization": f"Bearer {credential}"}
    return {api_key_header: credential}
