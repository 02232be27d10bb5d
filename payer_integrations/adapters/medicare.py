"""CMS Blue Button 2.0 (Medicare) adapter.

FHIR R4 API authenticated with OAuth2 client credentials. Eligibility is
read from the beneficiary's Patient and Coverage resources; claims history
from ExplanationOfBenefit resources.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from typing import Any

import httpx

from .. import config
from ..api.auth.oauth2 import get_preset_config, request_client_credentials_token
from ..api.auth.token_cache import TokenCache
from ..api.retry import RetryingHttpClient
from ..base import (
    BasePayerAdapter,
    create_success_response,
    elapsed_ms,
    generate_request_id,
)
from ..errors import PayerAdapterError, PayerInvalidRequestError, PayerMemberNotFoundError
from ..models import (
    AccumulatorAmounts,
    ApiType,
    AuthResult,
    Capability,
    ClaimSummary,
    HealthCheckResult,
    HealthStatus,
    NormalizedBenefits,
    NormalizedClaimsHistory,
    NormalizedEligibility,
    PayerCredential,
    PayerRequestContext,
    PayerResponse,
)
from ..security.credentials import CredentialManager, OAuthClientCredentials
from ..utils.parsing import format_date_iso, parse_amount, parse_flexible_date
from .fhir_resources import Bundle, Coverage, ExplanationOfBenefit, Patient

SANDBOX_BASE_URL = "https://sandbox.bluebutton.cms.gov/v2"
PRODUCTION_BASE_URL = "https://api.bluebutton.cms.gov/v2"

PAYER_CODE = "MEDICARE"
FHIR_JSON = "application/fhir+json"

PLAN_NAME_BY_COVERAGE_CODE = {
    "PART-A": "Medicare Part A",
    "PART-B": "Medicare Part B",
    "PART-C": "Medicare Part C",
    "PART-D": "Medicare Part D",
}


@dataclass(frozen=True)
class MedicarePlanDefaults:
    """Plan parameters Blue Button does not expose per beneficiary.

    Defaults are the published 2024 Part B figures.
    """

    deductible: float = 233.0
    out_of_pocket_max: float = 8850.0
    coinsurance: float = 20.0
    copay: float = 0.0


def normalize_eligibility(
    patient: Patient,
    coverage: Coverage | None,
    member_id: str = "",
    today: date | None = None,
) -> NormalizedEligibility:
    """Map a Patient and its Coverage to NormalizedEligibility.

    Coverage is eligible when it has no termination date or the termination
    date is still in the future.
    """
    today = today or date.today()
    period = coverage.period if coverage and coverage.period else None
    start = period.start if period and period.start else today.isoformat()
    end = period.end if period else None

    if end:
        end_parsed = parse_flexible_date(end)
        is_eligible = end_parsed is not None and end_parsed.date() > today
    else:
        is_eligible = True

    plan_name = "Medicare"
    if coverage and coverage.type:
        plan_name = PLAN_NAME_BY_COVERAGE_CODE.get(coverage.type.first_code or "", plan_name)

    return NormalizedEligibility(
        is_eligible=is_eligible,
        status="active" if is_eligible else "inactive",
        effective_date=start,
        termination_date=end,
        plan_name=plan_name,
        plan_type="Medicare",
        member_id=patient.identifier_value("mbi") or member_id,
        group_number=coverage.subscriber_id if coverage else None,
        coverage_level="individual",
        # Medicare has no provider networks in the commercial sense
        network_status="in_network",
    )


def normalize_claims_history(bundle: Bundle) -> NormalizedClaimsHistory:
    """Map an ExplanationOfBenefit search bundle to NormalizedClaimsHistory."""
    claims: list[ClaimSummary] = []
    total_paid = 0.0

    for eob in bundle.resources(ExplanationOfBenefit):
        billed = parse_amount(eob.total_amount("submitted"))
        allowed = parse_amount(eob.total_amount("eligible"))
        paid = parse_amount(eob.total_amount("benefit"))
        total_paid += paid

        claim_number = eob.identifier[0].value if eob.identifier else None
        date_of_service = eob.billable_period.start if eob.billable_period else None

        claims.append(
            ClaimSummary(
                claim_number=claim_number or eob.id or "",
                date_of_service=date_of_service or eob.created,
                provider=(eob.provider.display if eob.provider else None)
                or "Unknown Provider",
                service_type=(eob.type.first_display if eob.type else None)
                or "Medical Service",
                billed_amount=billed,
                allowed_amount=allowed,
                paid_amount=paid,
                patient_responsibility=round(allowed - paid, 2),
                status=eob.status or "unknown",
            )
        )

    return NormalizedClaimsHistory(
        claims=claims,
        total_claims=len(claims),
        total_paid=round(total_paid, 2),
    )


def service_date_params(
    start_date: str | None, end_date: str | None
) -> list[tuple[str, str]]:
    """EOB ``service-date`` bounds as FHIR ``ge``/``le`` search params.

    Raises:
        PayerInvalidRequestError: If a bound is not a recognizable date
    """
    params: list[tuple[str, str]] = []
    for prefix, value in (("ge", start_date), ("le", end_date)):
        if not value:
            continue
        try:
            params.append(("service-date", f"{prefix}{format_date_iso(value)}"))
        except ValueError as e:
            raise PayerInvalidRequestError(
                PAYER_CODE, str(e), {"service_date": value}
            ) from e
    return params


class MedicareAdapter(BasePayerAdapter):
    """Adapter for the CMS Blue Button 2.0 FHIR API.

    Supports:
    - OAuth2 client credentials (client secret in the form body)
    - Sandbox/production base URL switch
    - Eligibility, benefits and claims history
    """

    payer_code = PAYER_CODE
    api_type = ApiType.FHIR_R4
    capabilities = frozenset(
        {Capability.ELIGIBILITY, Capability.BENEFITS, Capability.CLAIMS_HISTORY}
    )

    def __init__(
        self,
        use_sandbox: bool = config.USE_SANDBOX,
        base_url: str | None = None,
        plan_defaults: MedicarePlanDefaults | None = None,
        http: RetryingHttpClient | None = None,
        token_cache: TokenCache | None = None,
        credential_manager: CredentialManager | None = None,
    ) -> None:
        """Initialize the Medicare adapter.

        Args:
            use_sandbox: Use the Blue Button sandbox (default from env)
            base_url: Override the API base URL (including /v2)
            plan_defaults: Plan parameters reported by get_benefits
            http: Retrying HTTP client
            token_cache: Token cache
            credential_manager: Decrypts payer credentials
        """
        super().__init__(http, token_cache, credential_manager)
        default_url = SANDBOX_BASE_URL if use_sandbox else PRODUCTION_BASE_URL
        self.base_url = (base_url or default_url).rstrip("/")
        self.health_url = str(httpx.URL(self.base_url).copy_with(path="/health"))
        self.plan_defaults = plan_defaults or MedicarePlanDefaults()

    @property
    def token_url(self) -> str:
        return f"{self.base_url}/o/token/"

    async def authenticate(self, credentials: PayerCredential) -> AuthResult:
        try:
            cred_data = self.credential_manager.decrypt(credentials)
            if not isinstance(cred_data, OAuthClientCredentials):
                return AuthResult(
                    success=False, error="Invalid credential type for Medicare"
                )

            oauth2_config = get_preset_config(
                "cms_bluebutton",
                token_url=cred_data.token_endpoint or self.token_url,
                client_id=cred_data.client_id,
                client_secret=cred_data.client_secret,
                scope=" ".join(cred_data.scopes) or None,
            )
            grant = await request_client_credentials_token(self.http, oauth2_config)
            return AuthResult(
                success=True, token=grant.access_token, expires_at=grant.expires_at
            )

        except PayerAdapterError as e:
            # Token endpoint unreachable after retries
            self._log("warning", f"Authentication failed: {e.message}")
            return AuthResult(success=False, error=e.message, error_code=e.code)
        except Exception as e:
            self._log("warning", f"Authentication failed: {e}")
            return AuthResult(success=False, error=str(e) or "Authentication failed")

    async def health_check(self) -> HealthCheckResult:
        start = time.monotonic()

        try:
            response = await self.http.probe("GET", self.health_url)
        except httpx.TransportError as e:
            return HealthCheckResult(
                status=HealthStatus.DOWN,
                latency_ms=elapsed_ms(start),
                message=str(e) or type(e).__name__,
            )

        latency_ms = elapsed_ms(start)
        if response.is_success:
            return HealthCheckResult(status=HealthStatus.HEALTHY, latency_ms=latency_ms)
        if response.status_code < 500:
            return HealthCheckResult(
                status=HealthStatus.DEGRADED,
                latency_ms=latency_ms,
                message=f"HTTP {response.status_code}",
            )
        return HealthCheckResult(
            status=HealthStatus.DOWN,
            latency_ms=latency_ms,
            message=f"HTTP {response.status_code}",
        )

    async def _search(
        self,
        resource_type: str,
        token: str,
        params: Any,
        credentials: PayerCredential,
        member_id: str | None = None,
    ) -> tuple[Bundle, dict[str, Any]]:
        """Run a FHIR search and parse the result bundle.

        Returns:
            Typed bundle and the raw JSON payload
        """
        response = await self.http.get(
            f"{self.base_url}/fhir/{resource_type}",
            params=params,
            headers={"Authorization": f"Bearer {token}", "Accept": FHIR_JSON},
        )
        self._check_response(response, member_id=member_id, credentials=credentials)

        payload = response.json()
        return Bundle.model_validate(payload), payload

    async def check_eligibility(
        self, context: PayerRequestContext
    ) -> PayerResponse[NormalizedEligibility]:
        request_id = context.request_id or generate_request_id()
        start = time.monotonic()

        try:
            credentials = context.credentials
            token = await self.ensure_authenticated(credentials)

            patient_bundle, _ = await self._search(
                "Patient",
                token,
                {"identifier": context.member_id},
                credentials,
                member_id=context.member_id,
            )
            patient_raw = patient_bundle.first_raw(Patient)
            if patient_raw is None:
                raise PayerMemberNotFoundError(self.payer_code, context.member_id)
            patient = Patient.model_validate(patient_raw)

            coverage_bundle, _ = await self._search(
                "Coverage", token, {"beneficiary": f"Patient/{patient.id}"}, credentials
            )
            coverage_raw = coverage_bundle.first_raw(Coverage)
            coverage = Coverage.model_validate(coverage_raw) if coverage_raw else None

            eligibility = normalize_eligibility(patient, coverage, context.member_id)
            return create_success_response(
                eligibility,
                {"patient": patient_raw, "coverage": coverage_raw},
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
            token = await self.ensure_authenticated(context.credentials)

            # One EOB confirms the beneficiary is reachable; plan parameters
            # themselves are not published per beneficiary.
            _, eob_raw = await self._search(
                "ExplanationOfBenefit",
                token,
                {"patient": context.member_id, "_count": "1"},
                context.credentials,
            )

            defaults = self.plan_defaults
            benefits = NormalizedBenefits(
                deductible=AccumulatorAmounts(
                    individual=defaults.deductible, family=defaults.deductible
                ),
                out_of_pocket_max=AccumulatorAmounts(
                    individual=defaults.out_of_pocket_max,
                    family=defaults.out_of_pocket_max,
                ),
                copay=defaults.copay,
                coinsurance=defaults.coinsurance,
                prior_auth_required=False,
                referral_required=False,
            )
            return create_success_response(
                benefits, eob_raw, elapsed_ms(start), request_id
            )

        except Exception as e:
            return self._error_from_exception(e, start, request_id)

    async def get_claims_history(
        self,
        context: PayerRequestContext,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> PayerResponse[NormalizedClaimsHistory]:
        request_id = context.request_id or generate_request_id()
        start = time.monotonic()

        try:
            params = [("patient", context.member_id)] + service_date_params(
                start_date, end_date
            )
            token = await self.ensure_authenticated(context.credentials)

            eob_bundle, eob_raw = await self._search(
                "ExplanationOfBenefit", token, params, context.credentials
            )
            history = normalize_claims_history(eob_bundle)
            self._log(
                "info",
                f"Retrieved {history.total_claims} claims",
                request_id=request_id,
            )
            return create_success_response(
                history, eob_raw, elapsed_ms(start), request_id
            )

        except Exception as e:
            return self._error_from_exception(e, start, request_id)
