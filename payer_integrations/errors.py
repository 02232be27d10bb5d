"""Exceptions raised inside payer adapters.

Each exception carries the ``ErrorCode`` it maps to, so the capability
boundary can convert it into an error envelope without branching on type.
"""

from __future__ import annotations

from typing import Any

from .models import ErrorCode


class PayerAdapterError(Exception):
    """Base exception for payer adapter errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        payer_code: str,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.payer_code = payer_code
        self.details = details


class PayerAuthenticationError(PayerAdapterError):
    """Authentication rejected or credentials malformed."""

    def __init__(self, payer_code: str, message: str, details: Any = None) -> None:
        super().__init__(message, ErrorCode.AUTH_FAILED, payer_code, details)


class PayerRateLimitError(PayerAdapterError):
    """Payer answered 429."""

    def __init__(self, payer_code: str, retry_after_seconds: int | None = None) -> None:
        message = "Rate limit exceeded"
        if retry_after_seconds:
            message += f". Retry after {retry_after_seconds} seconds"
        super().__init__(
            message,
            ErrorCode.RATE_LIMITED,
            payer_code,
            {"retry_after_seconds": retry_after_seconds},
        )
        self.retry_after_seconds = retry_after_seconds


class PayerServiceUnavailableError(PayerAdapterError):
    """Retries exhausted against 5xx or transport failures."""

    def __init__(self, payer_code: str, message: str) -> None:
        super().__init__(message, ErrorCode.SERVICE_UNAVAILABLE, payer_code)


class PayerInvalidRequestError(PayerAdapterError):
    """Request cannot be built from the given context."""

    def __init__(self, payer_code: str, message: str, details: Any = None) -> None:
        super().__init__(message, ErrorCode.INVALID_REQUEST, payer_code, details)


class PayerMemberNotFoundError(PayerAdapterError):
    """Payer has no record for the member identifier."""

    def __init__(self, payer_code: str, member_id: str) -> None:
        super().__init__(
            f"Member not found: {member_id}",
            ErrorCode.MEMBER_NOT_FOUND,
            payer_code,
            {"member_id": member_id},
        )


class PayerApiError(PayerAdapterError):
    """Non-2xx payer response other than not-found or rate limiting."""

    def __init__(
        self, payer_code: str, message: str, status_code: int | None = None
    ) -> None:
        super().__init__(
            message, ErrorCode.API_ERROR, payer_code, {"status_code": status_code}
        )
        self.status_code = status_code
