"""Security module for payer credential management.

Provides encryption and secure storage for payer credentials.
"""

from .credentials import (
    ApiKeyCredentials,
    CertificateCredentials,
    CredentialManager,
    OAuthClientCredentials,
    PayerCredentialData,
    UsernamePasswordCredentials,
    get_credential_manager,
)

__all__ = [
    "ApiKeyCredentials",
    "CertificateCredentials",
    "CredentialManager",
    "OAuthClientCredentials",
    "PayerCredentialData",
    "UsernamePasswordCredentials",
    "get_credential_manager",
]
