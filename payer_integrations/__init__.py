"""Payer integrations for therapy practice billing.

Normalizes eligibility, benefits and claims data from insurance payers
(FHIR R4 APIs, clearinghouse EDI 270/271 and proprietary REST APIs) into a
single schema.
"""

from .base import BasePayerAdapter, create_error_response, create_success_response
from .errors import (
    PayerAdapterError,
    PayerApiError,
    PayerAuthenticationError,
    PayerInvalidRequestError,
    PayerMemberNotFoundError,
    PayerRateLimitError,
    PayerServiceUnavailableError,
)
from .models import (
    Capability,
    ErrorCode,
    HealthStatus,
    NormalizedBenefits,
    NormalizedClaimsHistory,
    NormalizedEligibility,
    NormalizedPriorAuth,
    PayerCredential,
    PayerRequestContext,
    PayerResponse,
)
from .registry import AdapterRegistry, get_registry
from .service import PayerIntegrationService

__version__ = "0.1.0"

__all__ = [
    "AdapterRegistry",
    "BasePayerAdapter",
    "Capability",
    "ErrorCode",
    "HealthStatus",
    "NormalizedBenefits",
    "NormalizedClaimsHistory",
    "NormalizedEligibility",
    "NormalizedPriorAuth",
    "PayerAdapterError",
    "PayerApiError",
    "PayerAuthenticationError",
    "PayerCredential",
    "PayerIntegrationService",
    "PayerInvalidRequestError",
    "PayerMemberNotFoundError",
    "PayerRateLimitError",
    "PayerRequestContext",
    "PayerResponse",
    "PayerServiceUnavailableError",
    "create_error_response",
    "create_success_response",
    "get_registry",
]
