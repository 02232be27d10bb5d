"""Pytest configuration and fixtures."""

from __future__ import annotations

from typing import Any, Callable
from unittest.mock import AsyncMock

import httpx
import pytest
from cryptography.fernet import Fernet

from payer_integrations.api.retry import RetryingHttpClient
from payer_integrations.config import CREDENTIAL_ENCRYPTION_KEY_ENV
from payer_integrations.models import PayerCredential, PayerRequestContext
from payer_integrations.security.credentials import (
    ApiKeyCredentials,
    CredentialManager,
    OAuthClientCredentials,
)

Route = Callable[[httpx.Request], httpx.Response] | tuple[int, Any]


class FakePayer:
    """MockTransport handler that routes by URL path and records requests.

    A route is either a callable taking the request or a ``(status, json)``
    pair; unknown paths answer 404.
    """

    def __init__(self, routes: dict[str, Route] | None = None) -> None:
        self.routes: dict[str, Route] = dict(routes or {})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(route):
            return route(request)
        status, payload = route
        return httpx.Response(status, json=payload)

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


@pytest.fixture
def fake_payer() -> type[FakePayer]:
    """The FakePayer class, for building per-test routes."""
    return FakePayer


@pytest.fixture
def fernet_key() -> str:
    """Fresh Fernet key."""
    return Fernet.generate_key().decode()


@pytest.fixture
def credential_manager(tmp_path: Any, fernet_key: str) -> CredentialManager:
    """Credential manager backed by a throwaway SQLite file."""
    return CredentialManager(str(tmp_path / "credentials.db"), encryption_key=fernet_key)


@pytest.fixture
def no_encryption_key(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make sure the encryption key env var is unset."""
    monkeypatch.delenv(CREDENTIAL_ENCRYPTION_KEY_ENV, raising=False)


@pytest.fixture
def oauth_credential(credential_manager: CredentialManager) -> PayerCredential:
    """Sealed Blue Button client credentials."""
    return credential_manager.seal(
        1,
        "MEDICARE",
        OAuthClientCredentials(client_id="bb-client", client_secret="bb-secret"),
    ).model_copy(update={"id": "cred-medicare"})


@pytest.fixture
def api_key_credential(credential_manager: CredentialManager) -> PayerCredential:
    """Sealed Stedi API key."""
    return credential_manager.seal(
        1, "STEDI", ApiKeyCredentials(api_key="sk_test_123")
    ).model_copy(update={"id": "cred-stedi"})


@pytest.fixture
def make_context() -> Callable[..., PayerRequestContext]:
    """Factory for request contexts with realistic defaults."""

    def _make(credentials: PayerCredential, **overrides: Any) -> PayerRequestContext:
        values: dict[str, Any] = {
            "practice_id": 1,
            "patient_id": 42,
            "member_id": "1EG4TE5MK73",
            "date_of_birth": "1980-05-15",
            "first_name": "Jane",
            "last_name": "Doe",
            "credentials": credentials,
            "payer_code": credentials.payer_code,
            "provider_npi": "1234567890",
            "provider_name": "Sunrise Therapy",
        }
        values.update(overrides)
        return PayerRequestContext(**values)

    return _make


@pytest.fixture
def make_http() -> Callable[..., RetryingHttpClient]:
    """Factory for retrying clients wired to a MockTransport handler.

    Backoff sleeps are replaced with an AsyncMock, reachable as
    ``client._sleep``.
    """

    def _make(
        handler: Callable[[httpx.Request], httpx.Response],
        payer_code: str = "TEST",
        **kwargs: Any,
    ) -> RetryingHttpClient:
        kwargs.setdefault("sleep", AsyncMock())
        kwargs.setdefault("max_attempts", 3)
        kwargs.setdefault("retry_delay", 1)
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return RetryingHttpClient(payer_code, client=client, **kwargs)

    return _make
