"""Gateway error taxonomy."""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class APIError(Exception):
    code: str
    message: str
    detail: dict | None = None
    status_code: int = 500

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class GatewayError(APIError):
    """Base for every error the provider gateway raises on purpose."""

    default_code = "PROVIDER_ERROR"
    default_message = "Provider returned an error"
    default_status = 502

    def __init__(self, message: str | None = None, detail: dict | None = None):
        super().__init__(
            code=self.default_code,
            message=message or self.default_message,
            detail=detail,
            status_code=self.default_status,
        )


class ConfigValidationError(GatewayError):
    default_code = "CONFIG_INVALID"
    default_message = "Provider configuration is invalid"
    default_status = 400


class ConfigNotFound(GatewayError):
    default_code = "CONFIG_NOT_FOUND"
    default_message = "Provider configuration not found"
    default_status = 404


class InvalidTurnError(GatewayError):
    default_code = "INVALID_MESSAGE"
    default_message = "Message content is required"
    default_status = 400


class ProviderUnreachable(GatewayError):
    default_code = "PROVIDER_UNREACHABLE"
    default_message = "Provider is unreachable"
    default_status = 503


class ProviderTimeout(ProviderUnreachable):
    default_code = "PROVIDER_TIMEOUT"
    default_message = "Provider request timed out"
    default_status = 504


class AuthenticationFailed(GatewayError):
    default_code = "AUTHENTICATION_FAILED"
    default_message = "Provider rejected the credential; re-enter the API key or token"
    default_status = 401


class DeploymentNotFound(GatewayError):
    default_code = "DEPLOYMENT_NOT_FOUND"
    default_message = (
        "Azure deployment not found; check the deployment name and api-version "
        "in the provider configuration"
    )
    default_status = 404


class ModelNotFound(GatewayError):
    default_code = "MODEL_NOT_FOUND"
    default_message = "Requested model not found"
    default_status = 400


class RateLimited(GatewayError):
    default_code = "RATE_LIMITED"
    default_message = "Provider rate limit exceeded"
    default_status = 429


class ProviderError(GatewayError):
    pass


@dataclass
class ImageResolutionFailed(Exception):
    """Raised by blob fetches; the image resolver logs it and drops the image."""

    storage_key: str
    reason: str = field(default="fetch failed")

    def __str__(self) -> str:
        return f"Failed to resolve image {self.storage_key}: {self.reason}"
