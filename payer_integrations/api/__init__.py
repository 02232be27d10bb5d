"""HTTP plumbing shared by payer adapters."""

from .auth import OAuth2Error, TokenCache, request_client_credentials_token
from .retry import RetryingHttpClient

__all__ = [
    "OAuth2Error",
    "RetryingHttpClient",
    "TokenCache",
    "request_client_credentials_token",
]
