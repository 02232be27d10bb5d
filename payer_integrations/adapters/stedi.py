"""Stedi clearinghouse adapter.

Real-time eligibility (X12 270/271 in JSON form) for any payer the
clearinghouse reaches. The target payer is selected by its trading partner
service ID.
"""

from __future__ import annotations

import random
import re
import string
import time
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .. import config
from ..api.auth.token_cache import TokenCache
from ..api.retry import RetryingHttpClient
from ..base import (
    BasePayerAdapter,
    create_success_response,
    elapsed_ms,
    generate_request_id,
)
from ..constants import DEFAULT_SERVICE_TYPE_CODES, TRADING_PARTNER_MAP
from ..errors import PayerInvalidRequestError
from ..models import (
    AccumulatorAmounts,
    ApiType,
    AuthResult,
    Capability,
    HealthCheckResult,
    HealthStatus,
    NormalizedBenefits,
    NormalizedEligibility,
    PayerCredential,
    PayerRequestContext,
    PayerResponse,
)
from ..security.credentials import ApiKeyCredentials, CredentialManager
from ..utils.parsing import format_date_yyyymmdd, parse_amount, parse_date_field

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

# Well-formed but unroutable request used to probe connectivity
HEALTH_CHECK_PAYLOAD: dict[str, Any] = {
    "controlNumber": "HEALTHCHECK",
    "tradingPartnerServiceId": "00000",
    "provider": {"organizationName": "Test", "npi": "0000000000"},
    "subscriber": {
        "memberId": "TEST",
        "firstName": "Test",
        "lastName": "Test",
        "dateOfBirth": "19900101",
    },
    "encounter": {"serviceTypeCodes": DEFAULT_SERVICE_TYPE_CODES},
}


# --- Response models ---


class StediModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class StediSubscriber(StediModel):
    member_id: str | None = Field(default=None, alias="memberId")
    group_number: str | None = Field(default=None, alias="groupNumber")


class StediPlanInformation(StediModel):
    plan_date: str | None = Field(default=None, alias="planDate")
    effective_date: str | None = Field(default=None, alias="effectiveDate")
    termination_date: str | None = Field(default=None, alias="terminationDate")
    plan_description: str | None = Field(default=None, alias="planDescription")
    insurance_type: str | None = Field(default=None, alias="insuranceType")
    group_number: str | None = Field(default=None, alias="groupNumber")


class StediBenefit(StediModel):
    code: str | None = None
    information_code: str | None = Field(default=None, alias="informationCode")
    coverage_level_code: str | None = Field(default=None, alias="coverageLevelCode")
    in_plan_network_indicator: str | None = Field(
        default=None, alias="inPlanNetworkIndicator"
    )
    benefit_amount: str | float | None = Field(default=None, alias="benefitAmount")
    benefit_percent: str | float | None = Field(default=None, alias="benefitPercent")
    quantity_qualifier: str | None = Field(default=None, alias="quantityQualifier")
    quantity: str | float | None = None
    time_qualifier: str | None = Field(default=None, alias="timeQualifier")


class StediEligibilityResponse(StediModel):
    control_number: str | None = Field(default=None, alias="controlNumber")
    trading_partner_service_id: str | None = Field(
        default=None, alias="tradingPartnerServiceId"
    )
    subscriber: StediSubscriber = Field(default_factory=StediSubscriber)
    plan_information: list[StediPlanInformation] = Field(
        default_factory=list, alias="planInformation"
    )
    benefits_information: list[StediBenefit] = Field(
        default_factory=list, alias="benefitsInformation"
    )
    errors: list[dict[str, Any]] = Field(default_factory=list)


# --- Trading partner resolution ---


def normalize_payer_key(name: str) -> str:
    """Normalize a payer name or code to a TRADING_PARTNER_MAP key.

    Examples:
        >>> normalize_payer_key("Blue Cross Blue Shield")
        'blue_cross_blue_shield'
        >>> normalize_payer_key("AETNA")
        'aetna'
    """
    return _NON_ALNUM.sub("_", name.strip().lower()).strip("_")


def resolve_trading_partner_id(
    payer: str | None,
    override: str | None = None,
    trading_partners: dict[str, str] | None = None,
) -> str | None:
    """Resolve the trading partner service ID for a payer.

    An explicit override wins. Otherwise the normalized payer key must match
    a mapping entry exactly.
    """
    if override:
        return override
    if not payer:
        return None
    mapping = TRADING_PARTNER_MAP if trading_partners is None else trading_partners
    return mapping.get(normalize_payer_key(payer))


def generate_control_number() -> str:
    """Unique control number: ``TB`` + epoch milliseconds + 4 random chars."""
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"TB{int(time.time() * 1000)}{suffix}"


# --- Normalization ---


def parse_coverage_status(response: StediEligibilityResponse) -> str:
    """Coverage status from the first benefit that states one."""
    for benefit in response.benefits_information:
        if benefit.code == "1" or benefit.information_code == "Active Coverage":
            return "active"
        if benefit.code == "6" or benefit.information_code == "Inactive":
            return "inactive"
    return "unknown"


def parse_eligibility(
    response: StediEligibilityResponse, context: PayerRequestContext
) -> NormalizedEligibility:
    """Map a Stedi eligibility response to NormalizedEligibility."""
    plan = (
        response.plan_information[0]
        if response.plan_information
        else StediPlanInformation()
    )
    status = parse_coverage_status(response)

    return NormalizedEligibility(
        is_eligible=status == "active",
        status=status,
        effective_date=parse_date_field(plan.plan_date or plan.effective_date) or "",
        termination_date=parse_date_field(plan.termination_date),
        plan_name=plan.plan_description or plan.insurance_type or "",
        plan_type=plan.insurance_type or "",
        member_id=response.subscriber.member_id or context.member_id,
        group_number=response.subscriber.group_number
        or plan.group_number
        or context.group_number,
        coverage_level="individual",
        network_status="in_network",
    )


def parse_benefits(response: StediEligibilityResponse) -> NormalizedBenefits:
    """Map Stedi benefit entries to NormalizedBenefits.

    Benefit codes:
        B: copay, A: coinsurance, C: deductible, G: out-of-pocket max,
        F with quantity qualifier VS: visit limit, CB: prior auth required.

    Out-of-network entries (``inPlanNetworkIndicator == "N"``) are skipped.
    Deductible and out-of-pocket amounts on family-level entries (``FAM``)
    fill the family accumulators.
    """
    deductible = AccumulatorAmounts()
    out_of_pocket = AccumulatorAmounts()
    copay = 0.0
    coinsurance = 0.0
    visits_allowed: int | None = None
    prior_auth_required = False
    limitations: list[str] = []

    for benefit in response.benefits_information:
        if benefit.in_plan_network_indicator == "N":
            continue

        amount = parse_amount(benefit.benefit_amount)
        family = benefit.coverage_level_code == "FAM"

        if benefit.code == "B":
            if amount > 0:
                copay = amount
        elif benefit.code == "A":
            percent = parse_amount(benefit.benefit_percent)
            # 271 percentages are usually fractions ("0.2")
            if 0 < percent <= 1:
                percent = round(percent * 100, 2)
            if percent > 0:
                coinsurance = percent
        elif benefit.code == "C":
            if amount > 0:
                if family:
                    deductible.family = amount
                else:
                    deductible.individual = amount
        elif benefit.code == "G":
            if amount > 0:
                if family:
                    out_of_pocket.family = amount
                else:
                    out_of_pocket.individual = amount
        elif benefit.code == "F":
            if benefit.quantity_qualifier == "VS":
                visits_allowed = int(parse_amount(benefit.quantity))
                limitations.append(f"{visits_allowed} visits")
        elif benefit.code == "CB":
            prior_auth_required = True

    return NormalizedBenefits(
        deductible=deductible,
        out_of_pocket_max=out_of_pocket,
        copay=copay,
        coinsurance=coinsurance,
        visits_allowed=visits_allowed,
        visits_used=None,
        prior_auth_required=prior_auth_required,
        referral_required=False,
        service_limitations=limitations or None,
    )


class StediAdapter(BasePayerAdapter):
    """Adapter for the Stedi eligibility API.

    One adapter serves every payer routed through the clearinghouse; the
    request context's payer name or code picks the trading partner.

    The API key is decrypted for each request and never cached, since the
    adapter is shared by every practice.
    """

    payer_code = "STEDI"
    api_type = ApiType.EDI_270
    capabilities = frozenset({Capability.ELIGIBILITY, Capability.BENEFITS})
    caches_tokens = False

    def __init__(
        self,
        api_url: str = config.STEDI_API_URL,
        trading_partners: dict[str, str] | None = None,
        service_type_codes: list[str] | None = None,
        health_check_api_key: str | None = config.STEDI_HEALTH_CHECK_API_KEY,
        http: RetryingHttpClient | None = None,
        token_cache: TokenCache | None = None,
        credential_manager: CredentialManager | None = None,
    ) -> None:
        """Initialize the Stedi adapter.

        Args:
            api_url: Eligibility endpoint
            trading_partners: Normalized payer key to service ID mapping
                (default: TRADING_PARTNER_MAP)
            service_type_codes: X12 service type codes to request
            health_check_api_key: Service key for health probes; without
                one the probe is unauthenticated and reports degraded
            http: Retrying HTTP client
            token_cache: Token cache
            credential_manager: Decrypts payer credentials
        """
        super().__init__(http, token_cache, credential_manager)
        self.api_url = api_url
        self.trading_partners = (
            dict(TRADING_PARTNER_MAP) if trading_partners is None else trading_partners
        )
        self.service_type_codes = service_type_codes or list(DEFAULT_SERVICE_TYPE_CODES)
        self.health_check_api_key = health_check_api_key

    def _headers(self, api_key: str | None) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Key {api_key}"
        return headers

    async def authenticate(self, credentials: PayerCredential) -> AuthResult:
        # The "token" is the decrypted key itself; it lives for one request.
        try:
            cred_data = self.credential_manager.decrypt(credentials)
        except Exception as e:
            return AuthResult(success=False, error=str(e) or "Invalid credentials")

        if not isinstance(cred_data, ApiKeyCredentials):
            return AuthResult(success=False, error="Invalid credential type for Stedi")

        return AuthResult(success=True, token=cred_data.api_key)

    async def health_check(self) -> HealthCheckResult:
        start = time.monotonic()
        # A missing key shows up as 401 (degraded), which still proves the
        # API is reachable.
        try:
            response = await self.http.probe(
                "POST",
                self.api_url,
                json=HEALTH_CHECK_PAYLOAD,
                headers=self._headers(self.health_check_api_key),
            )
        except httpx.TransportError as e:
            return HealthCheckResult(
                status=HealthStatus.DOWN,
                latency_ms=elapsed_ms(start),
                message=f"Connection failed: {e}",
            )

        latency_ms = elapsed_ms(start)
        status = response.status_code
        if status in (401, 403):
            return HealthCheckResult(
                status=HealthStatus.DEGRADED,
                latency_ms=latency_ms,
                message="Invalid API key",
            )
        if status >= 500:
            return HealthCheckResult(
                status=HealthStatus.DOWN,
                latency_ms=latency_ms,
                message=f"Stedi service error: {status}",
            )
        # 400/422 are expected for the probe payload
        return HealthCheckResult(
            status=HealthStatus.HEALTHY,
            latency_ms=latency_ms,
            message="Connected to Stedi API",
        )

    def build_request(
        self, context: PayerRequestContext, trading_partner_id: str
    ) -> dict[str, Any]:
        """Build the eligibility request body for a context."""
        subscriber: dict[str, Any] = {
            "memberId": context.member_id,
            "firstName": context.first_name,
            "lastName": context.last_name,
            "dateOfBirth": (
                format_date_yyyymmdd(context.date_of_birth)
                if context.date_of_birth
                else ""
            ),
        }
        if context.group_number:
            subscriber["groupNumber"] = context.group_number

        return {
            "controlNumber": generate_control_number(),
            "tradingPartnerServiceId": trading_partner_id,
            "provider": {
                "organizationName": context.provider_name or "",
                "npi": context.provider_npi or "",
            },
            "subscriber": subscriber,
            "encounter": {"serviceTypeCodes": list(self.service_type_codes)},
        }

    async def _request_eligibility(
        self, context: PayerRequestContext, request_id: str
    ) -> tuple[StediEligibilityResponse, dict[str, Any]]:
        """Send one eligibility request and parse the response.

        Raises:
            PayerInvalidRequestError: If no trading partner resolves (no
                request is sent)
        """
        payer = context.payer_name or context.payer_code
        trading_partner_id = resolve_trading_partner_id(
            payer, context.trading_partner_service_id, self.trading_partners
        )
        if not trading_partner_id and context.payer_name:
            # Free-text payer names vary; the routed payer code is canonical
            trading_partner_id = resolve_trading_partner_id(
                context.payer_code, trading_partners=self.trading_partners
            )
        if not trading_partner_id:
            raise PayerInvalidRequestError(
                self.payer_code,
                f"No trading partner ID found for payer: {payer}",
                {"payer": payer},
            )

        api_key = await self.ensure_authenticated(context.credentials)
        body = self.build_request(context, trading_partner_id)
        self._log(
            "info",
            "Eligibility request",
            request_id=request_id,
            control_number=body["controlNumber"],
            trading_partner_id=trading_partner_id,
        )

        response = await self.http.post(
            self.api_url, json_data=body, headers=self._headers(api_key)
        )
        self._check_response(
            response, member_id=context.member_id, credentials=context.credentials
        )

        payload = response.json()
        parsed = StediEligibilityResponse.model_validate(payload)
        if parsed.errors:
            self._log(
                "warning",
                f"Response contains {len(parsed.errors)} errors",
                request_id=request_id,
                control_number=body["controlNumber"],
            )
        return parsed, payload

    async def check_eligibility(
        self, context: PayerRequestContext
    ) -> PayerResponse[NormalizedEligibility]:
        request_id = context.request_id or generate_request_id()
        start = time.monotonic()

        try:
            parsed, payload = await self._request_eligibility(context, request_id)
            return create_success_response(
                parse_eligibility(parsed, context),
                payload,
                elapsed_ms(start),
                request_id,
            )
        except Exception as e:
            return self._error_from_exception(e, start, request_id)

    async def get_benefits(
        self, context: PayerRequestContext
    ) -> PayerResponse[NormalizedBenefits]:
        request_id = context.request_id or generate_request_id()
        start = time.monotonic()

        try:
            parsed, payload = await self._request_eligibility(context, request_id)
            return create_success_response(
                parse_benefits(parsed), payload, elapsed_ms(start), request_id
            )
        except Exception as e:
            return self._error_from_exception(e, start, request_id)
