"""Pydantic models for the payer integration layer.

Defines the normalized output schema every payer adapter produces, the
request context handed to adapters, and the uniform response envelope.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

T = TypeVar("T")


class Capability(str, Enum):
    """Data a payer adapter can retrieve."""

    ELIGIBILITY = "eligibility"
    BENEFITS = "benefits"
    CLAIMS_HISTORY = "claims_history"
    PRIOR_AUTH = "prior_auth"


class ApiType(str, Enum):
    """Wire protocol family spoken by a payer."""

    EDI_270 = "edi_270"
    FHIR_R4 = "fhir_r4"
    PROPRIETARY = "proprietary"


class HealthStatus(str, Enum):
    """Payer connectivity status."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


class ErrorCode(str, Enum):
    """Error codes carried in a failed PayerResponse."""

    AUTH_FAILED = "AUTH_FAILED"
    API_ERROR = "API_ERROR"
    MEMBER_NOT_FOUND = "MEMBER_NOT_FOUND"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    INVALID_REQUEST = "INVALID_REQUEST"


class CredentialType(str, Enum):
    """Kinds of payer credential blobs."""

    OAUTH_CLIENT = "oauth_client"
    API_KEY = "api_key"
    USERNAME_PASSWORD = "username_password"
    CERTIFICATE = "certificate"


# --- Credentials ---


class PayerCredential(BaseModel):
    """Encrypted payer credential as stored at rest.

    The cleartext never appears on this model; adapters obtain it through
    ``CredentialManager.decrypt``.
    """

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    practice_id: int
    payer_code: str
    credential_type: CredentialType
    encrypted_credentials: str = Field(repr=False)
    expires_at: datetime | None = None
    is_active: bool = True
    error_count: int = 0
    last_error: str | None = None
    last_used: datetime | None = None


# --- Request context ---


class PayerRequestContext(BaseModel):
    """Everything an adapter needs for one capability call."""

    model_config = ConfigDict(frozen=True)

    practice_id: int
    patient_id: int
    member_id: str
    date_of_birth: str = ""  # YYYY-MM-DD
    first_name: str = ""
    last_name: str = ""
    credentials: PayerCredential
    payer_code: str
    payer_name: str | None = None
    group_number: str | None = None
    provider_npi: str | None = None
    provider_name: str | None = None
    trading_partner_service_id: str | None = None
    capability: Capability | None = None
    request_id: str | None = None


# --- Adapter results ---


class AuthResult(BaseModel):
    """Outcome of exchanging credentials for a session token."""

    success: bool
    token: str | None = Field(default=None, repr=False)
    expires_at: datetime | None = None
    error: str | None = None
    # SERVICE_UNAVAILABLE when the auth endpoint could not be reached;
    # anything else is treated as a rejection.
    error_code: ErrorCode | None = None


class HealthCheckResult(BaseModel):
    """Outcome of a lightweight connectivity probe."""

    status: HealthStatus
    latency_ms: float
    message: str | None = None


class CachedToken(BaseModel):
    """A bearer/session token cached for one credential."""

    token: str = Field(repr=False)
    expires_at: datetime


# --- Normalized schema ---


class NormalizedEligibility(BaseModel):
    """Coverage status for a member, identical across payers."""

    is_eligible: bool
    status: str = "unknown"  # active, inactive, unknown
    effective_date: str
    termination_date: str | None = None
    plan_name: str
    plan_type: str
    member_id: str
    group_number: str | None = None
    coverage_level: str = "individual"  # individual, family
    network_status: str = "in_network"  # in_network, out_of_network


class AccumulatorAmounts(BaseModel):
    """Individual/family limits and amounts met toward them."""

    individual: float = 0
    family: float = 0
    individual_met: float = 0
    family_met: float = 0


class NormalizedBenefits(BaseModel):
    """Cost-sharing benefits for a member."""

    deductible: AccumulatorAmounts = Field(default_factory=AccumulatorAmounts)
    out_of_pocket_max: AccumulatorAmounts = Field(default_factory=AccumulatorAmounts)
    copay: float = 0
    coinsurance: float = 0
    visits_allowed: int | None = None
    visits_used: int | None = None
    prior_auth_required: bool = False
    referral_required: bool = False
    service_limitations: list[str] | None = None


class ClaimSummary(BaseModel):
    """One adjudicated claim."""

    claim_number: str
    date_of_service: str | None
    provider: str
    service_type: str
    billed_amount: float
    allowed_amount: float
    paid_amount: float
    patient_responsibility: float
    status: str


class NormalizedClaimsHistory(BaseModel):
    """Claims history for a member."""

    claims: list[ClaimSummary] = []
    total_claims: int = 0
    total_paid: float = 0


class NormalizedPriorAuth(BaseModel):
    """Prior authorization status for a service."""

    required: bool
    auth_number: str | None = None
    status: str | None = None
    valid_from: str | None = None
    valid_to: str | None = None
    approved_units: int | None = None
    used_units: int | None = None
    remaining_units: int | None = None


# --- Response envelope ---


class PayerError(BaseModel):
    """Error payload of a failed PayerResponse."""

    code: ErrorCode
    message: str
    details: Any = None


class PayerResponse(BaseModel, Generic[T]):
    """Uniform envelope returned by every capability call.

    Exactly one of ``data`` and ``error`` is populated. ``raw_response`` is
    only kept on success.
    """

    success: bool
    data: T | None = None
    raw_response: Any = None
    error: PayerError | None = None
    response_time_ms: float
    request_id: str

    @model_validator(mode="after")
    def check_data_xor_error(self) -> "PayerResponse[T]":
        """Enforce the success/data/error invariant."""
        if self.success:
            if self.data is None or self.error is not None:
                raise ValueError("Successful response requires data and no error")
        else:
            if self.error is None or self.data is not None:
                raise ValueError("Failed response requires error and no data")
            if self.raw_response is not None:
                raise ValueError("Failed response cannot carry raw_response")
        return self
