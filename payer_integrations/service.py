"""Payer integration service.

Thin orchestration over the adapter registry: picks the adapter for a payer,
filters by capability before touching the network, and keeps credential
usage and error counters current.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from .base import BasePayerAdapter, create_error_response, elapsed_ms, generate_request_id
from .models import (
    Capability,
    ErrorCode,
    HealthCheckResult,
    HealthStatus,
    PayerRequestContext,
    PayerResponse,
)
from .registry import AdapterRegistry, get_registry
from .security.credentials import CredentialManager, get_credential_manager

logger = logging.getLogger(__name__)


class PayerIntegrationService:
    """Entry point for fetching normalized insurance data."""

    def __init__(
        self,
        registry: AdapterRegistry | None = None,
        credential_manager: CredentialManager | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            registry: Adapter registry (default: global registry)
            credential_manager: Credential store (default: global manager)
        """
        self.registry = registry or get_registry()
        self._credential_manager = credential_manager

    @property
    def credential_manager(self) -> CredentialManager:
        if self._credential_manager is None:
            self._credential_manager = get_credential_manager()
        return self._credential_manager

    def get_adapter(self, payer_code: str) -> BasePayerAdapter | None:
        """Get the adapter serving a payer code."""
        return self.registry.get(payer_code)

    def available_payers(self) -> list[str]:
        """All routed payer codes."""
        return self.registry.list_payer_codes()

    async def fetch(
        self,
        capability: Capability | str,
        context: PayerRequestContext,
        start_date: str | None = None,
        end_date: str | None = None,
        service_code: str = "",
    ) -> PayerResponse[Any]:
        """Fetch one kind of insurance data for a patient.

        Args:
            capability: What to fetch
            context: Request context (payer code selects the adapter)
            start_date: Claims history lower bound (YYYY-MM-DD)
            end_date: Claims history upper bound (YYYY-MM-DD)
            service_code: Service code for prior authorization

        Returns:
            The adapter's response envelope, or an error envelope when the
            payer or capability is not available (no network call is made)
        """
        request_id = context.request_id or generate_request_id()
        start = time.monotonic()

        try:
            capability = Capability(capability)
        except ValueError:
            return create_error_response(
                ErrorCode.INVALID_REQUEST,
                f"Unknown data type: {capability}",
                elapsed_ms(start),
                request_id=request_id,
            )

        adapter = self.get_adapter(context.payer_code)
        if adapter is None:
            return create_error_response(
                ErrorCode.INVALID_REQUEST,
                f"No adapter available for payer: {context.payer_code}",
                elapsed_ms(start),
                request_id=request_id,
            )

        if not adapter.supports_capability(capability):
            return create_error_response(
                ErrorCode.NOT_IMPLEMENTED,
                f"Payer {context.payer_code} does not support {capability.value}",
                elapsed_ms(start),
                request_id=request_id,
            )

        if context.request_id is None:
            context = context.model_copy(update={"request_id": request_id})

        if capability is Capability.ELIGIBILITY:
            response = await adapter.check_eligibility(context)
        elif capability is Capability.BENEFITS:
            response = await adapter.get_benefits(context)
        elif capability is Capability.CLAIMS_HISTORY:
            response = await adapter.get_claims_history(context, start_date, end_date)
        else:
            response = await adapter.check_prior_auth(context, service_code)

        await self._record_outcome(context, response)
        outcome = response.error.code.value if response.error else "success"
        logger.info(
            f"{capability.value} for {context.payer_code}: {outcome} "
            f"in {response.response_time_ms}ms",
            extra={"request_id": response.request_id, "payer_code": context.payer_code},
        )
        return response

    async def fetch_all(
        self,
        capabilities: list[Capability | str],
        context: PayerRequestContext,
    ) -> dict[Capability, PayerResponse[Any]]:
        """Fetch several kinds of data concurrently.

        Unknown capability names are skipped.
        """
        wanted: list[Capability] = []
        for capability in capabilities:
            try:
                wanted.append(Capability(capability))
            except ValueError:
                logger.warning(f"Skipping unknown data type: {capability}")

        # A shared request id would make the envelopes indistinguishable
        context = context.model_copy(update={"request_id": None})
        responses = await asyncio.gather(
            *(self.fetch(capability, context) for capability in wanted)
        )
        return dict(zip(wanted, responses))

    async def check_all_payer_health(self) -> dict[str, HealthCheckResult]:
        """Health-check every adapter concurrently.

        Returns:
            Result per routed payer code; codes sharing an adapter share
            its result.
        """
        adapters = self.registry.adapters()
        results = await asyncio.gather(*(self._check_health(a) for a in adapters))
        by_adapter = {id(adapter): result for adapter, result in zip(adapters, results)}

        return {
            payer_code: by_adapter[id(adapter)]
            for payer_code, adapter in self.registry.items()
        }

    async def _check_health(self, adapter: BasePayerAdapter) -> HealthCheckResult:
        try:
            return await adapter.health_check()
        except Exception as e:
            logger.error(f"Health check for {adapter.payer_code} failed: {e}")
            return HealthCheckResult(
                status=HealthStatus.DOWN,
                latency_ms=0,
                message=str(e) or type(e).__name__,
            )

    async def _record_outcome(
        self, context: PayerRequestContext, response: PayerResponse[Any]
    ) -> None:
        """Update credential counters after a payer call.

        The store is SQLite, so writes run in a worker thread. A failed write
        is logged and never replaces the payer response.
        """
        credential_id = context.credentials.id
        if credential_id is None:
            return

        try:
            if response.success:
                await asyncio.to_thread(self.credential_manager.record_usage, credential_id)
            elif response.error and response.error.code is ErrorCode.AUTH_FAILED:
                await asyncio.to_thread(
                    self.credential_manager.record_error,
                    credential_id,
                    response.error.message,
                )
        except Exception as e:
            logger.error(
                f"Failed to record outcome for credential {credential_id}: {e}",
                extra={"request_id": response.request_id, "payer_code": context.payer_code},
            )

    async def aclose(self) -> None:
        await self.registry.aclose()
