"""Authentication helpers for payer APIs.

Supports:
- OAuth2 client credentials (Basic or form-body client authentication)
- Session token caching with an expiry safety buffer
"""

from .oauth2 import (
    OAuth2Error,
    TokenGrant,
    get_preset_config,
    request_client_credentials_token,
)
from .token_cache import TokenCache, credential_cache_key

__all__ = [
    "OAuth2Error",
    "TokenCache",
    "TokenGrant",
    "credential_cache_key",
    "get_preset_config",
    "request_client_credentials_token",
]
