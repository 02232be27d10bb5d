"""Base payer adapter abstract class.

Defines the capability surface every payer integration exposes and the
response envelope builders they share.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, ClassVar
from uuid import uuid4

import httpx

from .api.auth.token_cache import TokenCache, credential_cache_key
from .api.retry import RetryingHttpClient
from .errors import (
    PayerAdapterError,
    PayerApiError,
    PayerAuthenticationError,
    PayerMemberNotFoundError,
    PayerRateLimitError,
    PayerServiceUnavailableError,
)
from .models import (
    ApiType,
    AuthResult,
    Capability,
    ErrorCode,
    HealthCheckResult,
    NormalizedBenefits,
    NormalizedClaimsHistory,
    NormalizedEligibility,
    NormalizedPriorAuth,
    PayerCredential,
    PayerError,
    PayerRequestContext,
    PayerResponse,
)
from .security.credentials import CredentialManager, get_credential_manager

logger = logging.getLogger(__name__)


def generate_request_id() -> str:
    """Generate a request id for tracing one capability call."""
    return str(uuid4())


def create_success_response(
    data: Any,
    raw_response: Any,
    response_time_ms: float,
    request_id: str | None = None,
) -> PayerResponse[Any]:
    """Build a successful envelope, generating a request id if needed."""
    return PayerResponse(
        success=True,
        data=data,
        raw_response=raw_response,
        response_time_ms=response_time_ms,
        request_id=request_id or generate_request_id(),
    )


def create_error_response(
    code: ErrorCode,
    message: str,
    response_time_ms: float,
    details: Any = None,
    request_id: str | None = None,
) -> PayerResponse[Any]:
    """Build a failed envelope, generating a request id if needed."""
    return PayerResponse(
        success=False,
        error=PayerError(code=code, message=message, details=details),
        response_time_ms=response_time_ms,
        request_id=request_id or generate_request_id(),
    )


def elapsed_ms(start: float) -> float:
    """Milliseconds since a ``time.monotonic()`` reading."""
    return round((time.monotonic() - start) * 1000, 2)


class BasePayerAdapter(ABC):
    """Abstract base class for all payer adapters.

    Adapters handle:
    - Authentication against the payer (tokens cached per credential)
    - Health checks
    - Capability calls returning ``PayerResponse`` envelopes

    Capability methods never raise: any exception is converted into an
    error envelope. ``ensure_authenticated`` is the one helper allowed to
    raise, and it is only called inside capability methods.

    The HTTP client and token cache are collaborators passed in at
    construction; subclasses do not reimplement retry or caching.
    """

    payer_code: ClassVar[str]
    api_type: ClassVar[ApiType]
    capabilities: ClassVar[frozenset[Capability]] = frozenset({Capability.ELIGIBILITY})
    # Adapters whose "token" is the decrypted secret itself set this to False
    caches_tokens: ClassVar[bool] = True

    def __init__(
        self,
        http: RetryingHttpClient | None = None,
        token_cache: TokenCache | None = None,
        credential_manager: CredentialManager | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            http: Retrying HTTP client (default: one owned by this adapter)
            token_cache: Token cache (default: a fresh, empty cache)
            credential_manager: Decrypts credentials (default: global manager)
        """
        self.http = http or RetryingHttpClient(self.payer_code)
        self.token_cache = token_cache or TokenCache()
        self._credential_manager = credential_manager

    @property
    def credential_manager(self) -> CredentialManager:
        if self._credential_manager is None:
            self._credential_manager = get_credential_manager()
        return self._credential_manager

    # --- Abstract operations ---

    @abstractmethod
    async def authenticate(self, credentials: PayerCredential) -> AuthResult:
        """Exchange stored credentials for a session token.

        Must not raise; failures are reported as ``AuthResult(success=False)``,
        with ``error_code=SERVICE_UNAVAILABLE`` when the payer was unreachable.
        """

    @abstractmethod
    async def health_check(self) -> HealthCheckResult:
        """Probe payer connectivity.

        ``degraded`` means reachable but rejecting (4xx); ``down`` means 5xx,
        timeout or network failure.
        """

    # --- Capabilities (overridable) ---

    async def check_eligibility(
        self, context: PayerRequestContext
    ) -> PayerResponse[NormalizedEligibility]:
        return self._not_implemented(Capability.ELIGIBILITY, context)

    async def get_benefits(
        self, context: PayerRequestContext
    ) -> PayerResponse[NormalizedBenefits]:
        return self._not_implemented(Capability.BENEFITS, context)

    async def get_claims_history(
        self,
        context: PayerRequestContext,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> PayerResponse[NormalizedClaimsHistory]:
        return self._not_implemented(Capability.CLAIMS_HISTORY, context)

    async def check_prior_auth(
        self, context: PayerRequestContext, service_code: str
    ) -> PayerResponse[NormalizedPriorAuth]:
        return self._not_implemented(Capability.PRIOR_AUTH, context)

    def supports_capability(self, capability: Capability | str) -> bool:
        """Whether this payer supports a capability (no network call)."""
        try:
            return Capability(capability) in self.capabilities
        except ValueError:
            return False

    # --- Token lifecycle ---

    def is_token_valid(self, credentials: PayerCredential) -> bool:
        return self.token_cache.is_valid(credential_cache_key(credentials))

    async def ensure_authenticated(self, credentials: PayerCredential) -> str:
        """Return a valid session token for these credentials.

        Tokens are cached per credential, so practices sharing this adapter
        never send each other's tokens. Adapters with ``caches_tokens``
        unset authenticate on every call and nothing is kept.

        Raises:
            PayerServiceUnavailableError: If the auth endpoint was unreachable
            PayerAuthenticationError: If the credentials were rejected
        """
        key = credential_cache_key(credentials)
        if self.caches_tokens:
            token = self.token_cache.get(key)
            if token is not None:
                return token
            self._log("debug", "No valid cached token, authenticating")

        auth_result = await self.authenticate(credentials)
        if not auth_result.success or not auth_result.token:
            message = auth_result.error or "Authentication failed"
            if auth_result.error_code is ErrorCode.SERVICE_UNAVAILABLE:
                raise PayerServiceUnavailableError(self.payer_code, message)
            raise PayerAuthenticationError(self.payer_code, message)

        if not self.caches_tokens:
            return auth_result.token

        cached = self.token_cache.store(key, auth_result.token, auth_result.expires_at)
        self._log("info", f"Authenticated, token valid until {cached.expires_at.isoformat()}")
        return cached.token

    def _check_response(
        self,
        response: httpx.Response,
        member_id: str | None = None,
        credentials: PayerCredential | None = None,
    ) -> None:
        """Raise the adapter error matching a non-2xx payer response.

        Args:
            response: Payer response
            member_id: When given, a 404 means the member does not exist
            credentials: Credentials the request was sent with; their
                cached token is dropped on 401

        Raises:
            PayerMemberNotFoundError: 404 on a member lookup
            PayerRateLimitError: 429
            PayerAuthenticationError: 401
            PayerApiError: Any other non-2xx status
        """
        if response.is_success:
            return

        status = response.status_code
        if status == 404 and member_id is not None:
            raise PayerMemberNotFoundError(self.payer_code, member_id)

        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise PayerRateLimitError(
                self.payer_code,
                int(retry_after) if retry_after and retry_after.isdigit() else None,
            )

        if status == 401:
            if credentials is not None:
                self.token_cache.invalidate(credential_cache_key(credentials))
            raise PayerAuthenticationError(
                self.payer_code, "Payer rejected the session token", {"status_code": status}
            )

        raise PayerApiError(
            self.payer_code,
            f"{self.payer_code} API error {status}: {response.text[:200]}",
            status_code=status,
        )

    # --- Envelope helpers ---

    def _error_from_exception(
        self,
        error: Exception,
        start: float,
        request_id: str,
    ) -> PayerResponse[Any]:
        """Convert an exception raised inside a capability call."""
        if isinstance(error, PayerAdapterError):
            self._log("warning", f"{error.code.value}: {error.message}", request_id=request_id)
            return create_error_response(
                error.code, error.message, elapsed_ms(start), error.details, request_id
            )

        self._log("error", f"Unexpected error: {error}", request_id=request_id)
        return create_error_response(
            ErrorCode.UNKNOWN_ERROR,
            str(error) or type(error).__name__,
            elapsed_ms(start),
            {"error_type": type(error).__name__},
            request_id,
        )

    def _not_implemented(
        self, capability: Capability, context: PayerRequestContext | None = None
    ) -> PayerResponse[Any]:
        return create_error_response(
            ErrorCode.NOT_IMPLEMENTED,
            f"{capability.value} is not implemented for {self.payer_code}",
            0,
            request_id=context.request_id if context else None,
        )

    # --- Lifecycle ---

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "BasePayerAdapter":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    def _log(self, level: str, message: str, **context: Any) -> None:
        """Log a message with payer context.

        Args:
            level: Log level (debug, info, warning, error)
            message: Log message
            **context: Additional context to include
        """
        log_fn = getattr(logger, level.lower(), logger.info)
        log_fn(
            f"[{self.payer_code}] {message}",
            extra={"payer_code": self.payer_code, **context},
        )
