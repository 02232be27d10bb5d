"""OAuth2 client credentials flow for payer APIs.

Payers differ on where the client secret goes: some expect HTTP Basic
auth, others (CMS Blue Button) expect it in the form body.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from ... import config
from ..retry import RetryingHttpClient
from .token_cache import utcnow

logger = logging.getLogger(__name__)


class OAuth2Error(Exception):
    """Raised when OAuth2 authentication fails."""

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.error_code = error_code


@dataclass
class TokenGrant:
    """Access token issued by a token endpoint."""

    access_token: str
    expires_at: datetime
    token_type: str = "Bearer"
    scope: str | None = None


# OAuth2 provider presets for payer APIs
OAUTH2_PRESETS: dict[str, dict[str, Any]] = {
    "cms_bluebutton": {
        "grant_type": "client_credentials",
        "auth_method": "body",
    },
    "smart_on_fhir": {
        "grant_type": "client_credentials",
        "auth_method": "basic",
        "scope": "system/Patient.read system/Coverage.read",
    },
}


def get_preset_config(preset: str, **overrides: Any) -> dict[str, Any]:
    """Get OAuth2 config with provider preset.

    Args:
        preset: Provider preset name
        **overrides: Override preset values

    Returns:
        OAuth2 configuration
    """
    if preset not in OAUTH2_PRESETS:
        raise ValueError(
            f"Unknown preset: {preset}. Available: {list(OAUTH2_PRESETS.keys())}"
        )

    preset_config = {**OAUTH2_PRESETS[preset]}
    preset_config.update(overrides)
    return preset_config


async def request_client_credentials_token(
    http: RetryingHttpClient,
    oauth2_config: dict[str, Any],
) -> TokenGrant:
    """Exchange client credentials for an access token.

    Args:
        http: Retrying client used for the token request
        oauth2_config: OAuth2 configuration dictionary with keys:
            - token_url: Token endpoint URL
            - client_id: Client ID
            - client_secret: Client secret
            - auth_method: "basic" or "body" (default: basic)
            - scope: Optional scope(s)
            - audience: Optional audience
            - extra_params: Additional form parameters

    Returns:
        TokenGrant with the access token and its absolute expiry

    Raises:
        OAuth2Error: If the token endpoint rejects the request
        PayerServiceUnavailableError: If the endpoint is unreachable
    """
    token_url = oauth2_config.get("token_url")
    client_id = oauth2_config.get("client_id")
    client_secret = oauth2_config.get("client_secret")

    if not token_url or not client_id or not client_secret:
        raise OAuth2Error("token_url, client_id, and client_secret are required")

    data: dict[str, str] = {
        "grant_type": oauth2_config.get("grant_type", "client_credentials"),
    }

    scope = oauth2_config.get("scope")
    if scope:
        data["scope"] = scope

    audience = oauth2_config.get("audience")
    if audience:
        data["audience"] = audience

    extra_params = oauth2_config.get("extra_params") or {}
    data.update(extra_params)

    headers = {
        "Content-Type": "application/x-www-form-urlencoded",
        "Accept": "application/json",
    }

    if oauth2_config.get("auth_method", "basic") == "basic":
        credentials = base64.b64encode(f"{client_id}:{client_secret}".encode()).decode()
        headers["Authorization"] = f"Basic {credentials}"
    else:
        data["client_id"] = client_id
        data["client_secret"] = client_secret

    response = await http.post(token_url, data=data, headers=headers)

    if response.status_code == 200:
        try:
            token_data = response.json()
        except ValueError:
            raise OAuth2Error("Token endpoint returned invalid JSON")

        access_token = token_data.get("access_token")
        if not access_token:
            raise OAuth2Error("Token response missing access_token")

        expires_in = token_data.get("expires_in") or config.DEFAULT_TOKEN_TTL_SECONDS
        logger.info(f"OAuth2 token obtained, expires in {expires_in}s")

        return TokenGrant(
            access_token=access_token,
            expires_at=utcnow() + timedelta(seconds=float(expires_in)),
            token_type=token_data.get("token_type", "Bearer"),
            scope=token_data.get("scope"),
        )

    try:
        error_data = response.json()
        error_code = error_data.get("error", "unknown")
        error_desc = error_data.get(
            "error_description", f"Status {response.status_code}"
        )
    except (ValueError, AttributeError):
        raise OAuth2Error(
            f"Token request failed: {response.status_code} - {response.text[:200]}"
        )
    raise OAuth2Error(f"{error_code}: {error_desc}", error_code)
