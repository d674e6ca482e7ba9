"""
API module - HTTP listeners for legacy connectors.
"""

from .http_server import (
    AUTH_RESPONSE,
    SUCCESS_RESPONSE,
    create_auth_app,
    create_http_app,
)

__all__ = ["AUTH_RESPONSE", "SUCCESS_RESPONSE", "create_auth_app", "create_http_app"]
