"""Tests for the retrying HTTP client."""

from __future__ import annotations

from unittest.mock import call

import httpx
import pytest

from payer_integrations.api.retry import RetryingHttpClient
from payer_integrations.errors import PayerServiceUnavailableError
from payer_integrations.models import ErrorCode

URL = "https://payer.test/eligibility"


class TestRetryPolicy:
    """Tests for which responses are retried and how long to wait."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, make_http) -> None:
        """A 200 is returned without sleeping."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"ok": True})

        http = make_http(handler)
        response = await http.get(URL)

        assert response.json() == {"ok": True}
        assert len(calls) == 1
        http._sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self, make_http) -> None:
        """4xx responses are returned on the first attempt."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404, json={"error": "not found"})

        http = make_http(handler)
        response = await http.get(URL)

        assert response.status_code == 404
        assert len(calls) == 1
        http._sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_server_errors_retried_then_succeed(self, make_http) -> None:
        """5xx responses are retried with exponential backoff."""
        statuses = iter([503, 502, 200])
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(next(statuses), json={})

        http = make_http(handler)
        response = await http.post(URL, json_data={"q": 1})

        assert response.status_code == 200
        assert len(calls) == 3
        assert http._sleep.await_args_list == [call(1), call(2)]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_service_unavailable(self, make_http) -> None:
        """Three server errors raise SERVICE_UNAVAILABLE with the last error."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        http = make_http(handler, payer_code="AETNA")

        with pytest.raises(PayerServiceUnavailableError) as exc_info:
            await http.get(URL)

        assert len(calls) == 3
        assert http._sleep.await_args_list == [call(1), call(2)]
        assert exc_info.value.code == ErrorCode.SERVICE_UNAVAILABLE
        assert exc_info.value.payer_code == "AETNA"
        assert "HTTP 500" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_transport_errors_retried(self, make_http) -> None:
        """Connection failures count as transient."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                raise httpx.ConnectError("Connection refused", request=request)
            return httpx.Response(200, json={})

        http = make_http(handler)
        response = await http.get(URL)

        assert response.status_code == 200
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_transport_error_message_kept(self, make_http) -> None:
        """The last transport error message is reported on exhaustion."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        http = make_http(handler)

        with pytest.raises(PayerServiceUnavailableError, match="timed out"):
            await http.get(URL)

    @pytest.mark.asyncio
    async def test_backoff_scales_with_retry_delay(self, make_http) -> None:
        """Delays double from the configured initial delay."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        http = make_http(handler, max_attempts=4, retry_delay=0.5)

        with pytest.raises(PayerServiceUnavailableError):
            await http.get(URL)

        assert http._sleep.await_args_list == [call(0.5), call(1.0), call(2.0)]

    @pytest.mark.asyncio
    async def test_per_attempt_timeout(self, make_http) -> None:
        """Every attempt carries the configured timeout."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.extensions["timeout"])
            return httpx.Response(200)

        http = make_http(handler, timeout=30)
        await http.get(URL)

        assert seen[0]["read"] == 30

    @pytest.mark.asyncio
    async def test_probe_does_not_retry(self, make_http) -> None:
        """Health probes make exactly one attempt."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        http = make_http(handler)
        response = await http.probe("GET", URL)

        assert response.status_code == 503
        assert len(calls) == 1

    def test_rejects_zero_attempts(self) -> None:
        """At least one attempt is required."""
        with pytest.raises(ValueError, match="max_attempts"):
            RetryingHttpClient("TEST", max_attempts=0)


class TestClientLifecycle:
    """Tests for client ownership."""

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self) -> None:
        """A caller-provided client stays open after aclose."""
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200))
        )
        http = RetryingHttpClient("TEST", client=client)

        await http.aclose()

        assert client.is_closed is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed(self) -> None:
        """A lazily created client is closed by the context manager."""
        async with RetryingHttpClient("TEST") as http:
            client = http._get_client()

        assert client.is_closed is True
