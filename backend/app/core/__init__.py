from .errors import APIError, GatewayError
from .logging import bind_context, get_logger, request_id_var, setup_logging

__all__ = [
    "APIError",
    "GatewayError",
    "bind_context",
    "get_logger",
    "request_id_var",
    "setup_logging",
]
