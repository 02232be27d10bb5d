"""Tests for the Stedi clearinghouse adapter."""

from __future__ import annotations

import json
import re
from typing import Any

import httpx
import pytest

from payer_integrations.adapters.stedi import (
    StediAdapter,
    StediEligibilityResponse,
    generate_control_number,
    normalize_payer_key,
    parse_benefits,
    parse_coverage_status,
    parse_eligibility,
    resolve_trading_partner_id,
)
from payer_integrations.models import Capability, ErrorCode, HealthStatus
from payer_integrations.security.credentials import ApiKeyCredentials, OAuthClientCredentials

API_URL = "https://stedi.test/eligibility/v3"
API_PATH = "/eligibility/v3"

ELIGIBILITY_RESPONSE: dict[str, Any] = {
    "controlNumber": "TB1",
    "tradingPartnerServiceId": "60054",
    "subscriber": {"memberId": "W123456789", "groupNumber": "GRP-1"},
    "planInformation": [
        {"planDate": "20240101", "planDescription": "Aetna Choice POS II", "insuranceType": "PPO"}
    ],
    "benefitsInformation": [
        {"code": "1", "informationCode": "Active Coverage"},
        {"code": "B", "benefitAmount": "25", "inPlanNetworkIndicator": "Y"},
        {"code": "B", "benefitAmount": "60", "inPlanNetworkIndicator": "N"},
        {"code": "A", "benefitPercent": "0.2", "inPlanNetworkIndicator": "Y"},
        {"code": "C", "benefitAmount": "1500", "coverageLevelCode": "IND"},
        {"code": "C", "benefitAmount": "3000", "coverageLevelCode": "FAM"},
        {"code": "G", "benefitAmount": "5000", "coverageLevelCode": "IND"},
        {"code": "F", "quantityQualifier": "VS", "quantity": "30"},
        {"code": "CB"},
    ],
}


def parsed(payload: dict[str, Any]) -> StediEligibilityResponse:
    return StediEligibilityResponse.model_validate(payload)


@pytest.fixture
def make_adapter(make_http, credential_manager):
    def _make(payer, **kwargs: Any) -> StediAdapter:
        return StediAdapter(
            api_url=API_URL,
            http=make_http(payer, payer_code="STEDI"),
            credential_manager=credential_manager,
            **kwargs,
        )

    return _make


class TestTradingPartnerResolution:
    """Tests for mapping payers to trading partner service IDs."""

    def test_normalize_payer_key(self) -> None:
        """Names collapse to lowercase underscore keys."""
        assert normalize_payer_key("AETNA") == "aetna"
        assert normalize_payer_key("Blue Cross Blue Shield") == "blue_cross_blue_shield"
        assert normalize_payer_key("  United-Healthcare ") == "united_healthcare"

    def test_exact_lookup(self) -> None:
        """Known payers resolve through the enumerated mapping."""
        assert resolve_trading_partner_id("Aetna") == "60054"
        assert resolve_trading_partner_id("Blue Cross Blue Shield") == "00050"
        assert resolve_trading_partner_id("UHC") == "87726"

    def test_no_substring_matching(self) -> None:
        """Names merely containing a known key do not resolve."""
        assert resolve_trading_partner_id("Aetna Better Health of Ohio") is None
        assert resolve_trading_partner_id("Acme Health") is None
        assert resolve_trading_partner_id(None) is None

    def test_override_wins(self) -> None:
        """An explicit service ID bypasses the mapping."""
        assert resolve_trading_partner_id("Acme Health", override="ACME1") == "ACME1"

    def test_custom_mapping(self) -> None:
        """Callers may supply their own mapping."""
        assert resolve_trading_partner_id("Oscar", trading_partners={"oscar": "OSC"}) == "OSC"
        assert resolve_trading_partner_id("Aetna", trading_partners={"oscar": "OSC"}) is None

    def test_control_number_format(self) -> None:
        """Control numbers are TB + epoch millis + 4 random characters."""
        first = generate_control_number()
        second = generate_control_number()

        assert re.fullmatch(r"TB\d{13}[A-Z0-9]{4}", first)
        assert first != second


class TestStediParsing:
    """Tests for 271-style response normalization."""

    def test_benefits(self) -> None:
        """Benefit codes map onto normalized benefits."""
        benefits = parse_benefits(parsed(ELIGIBILITY_RESPONSE))

        assert benefits.copay == 25
        assert benefits.coinsurance == 20
        assert benefits.deductible.individual == 1500
        assert benefits.deductible.family == 3000
        assert benefits.out_of_pocket_max.individual == 5000
        assert benefits.visits_allowed == 30
        assert benefits.prior_auth_required is True
        assert benefits.referral_required is False

    def test_out_of_network_entries_ignored(self) -> None:
        """Only in-network (or unflagged) entries are used."""
        benefits = parse_benefits(
            parsed(
                {
                    "benefitsInformation": [
                        {"code": "B", "benefitAmount": "60", "inPlanNetworkIndicator": "N"},
                        {"code": "CB", "inPlanNetworkIndicator": "N"},
                    ]
                }
            )
        )

        assert benefits.copay == 0
        assert benefits.prior_auth_required is False

    def test_whole_percent_coinsurance(self) -> None:
        """Percentages already above 1 are kept."""
        benefits = parse_benefits(
            parsed({"benefitsInformation": [{"code": "A", "benefitPercent": "20"}]})
        )
        assert benefits.coinsurance == 20

    def test_empty_response(self) -> None:
        """No benefit entries gives zeroed benefits."""
        benefits = parse_benefits(parsed({}))

        assert benefits.copay == 0
        assert benefits.visits_allowed is None
        assert benefits.service_limitations is None

    @pytest.mark.parametrize(
        ("benefit", "expected"),
        [
            ({"code": "1"}, "active"),
            ({"informationCode": "Active Coverage"}, "active"),
            ({"code": "6"}, "inactive"),
            ({"informationCode": "Inactive"}, "inactive"),
            ({"code": "B"}, "unknown"),
        ],
    )
    def test_coverage_status(self, benefit: dict[str, str], expected: str) -> None:
        """Status comes from codes 1 and 6."""
        assert parse_coverage_status(parsed({"benefitsInformation": [benefit]})) == expected

    def test_eligibility(self, make_context, api_key_credential) -> None:
        """Plan information fills the eligibility fields."""
        eligibility = parse_eligibility(
            parsed(ELIGIBILITY_RESPONSE), make_context(api_key_credential)
        )

        assert eligibility.is_eligible is True
        assert eligibility.status == "active"
        assert eligibility.effective_date == "2024-01-01"
        assert eligibility.plan_name == "Aetna Choice POS II"
        assert eligibility.plan_type == "PPO"
        assert eligibility.member_id == "W123456789"
        assert eligibility.group_number == "GRP-1"

    def test_unknown_status_is_not_eligible(self, make_context, api_key_credential) -> None:
        """Only explicit active coverage counts as eligible."""
        eligibility = parse_eligibility(parsed({}), make_context(api_key_credential))

        assert eligibility.is_eligible is False
        assert eligibility.status == "unknown"
        assert eligibility.member_id == "1EG4TE5MK73"


class TestStediAdapter:
    """Tests for Stedi calls against a fake clearinghouse."""

    @pytest.mark.asyncio
    async def test_eligibility_request(
        self, fake_payer, make_adapter, make_context, api_key_credential
    ) -> None:
        """The request body and key header follow the Stedi contract."""
        payer = fake_payer({API_PATH: (200, ELIGIBILITY_RESPONSE)})
        adapter = make_adapter(payer)
        context = make_context(
            api_key_credential,
            payer_code="AETNA",
            payer_name="Aetna",
            member_id="W123456789",
            group_number="GRP-1",
        )

        response = await adapter.check_eligibility(context)

        assert response.success is True
        assert response.data.is_eligible is True
        assert response.raw_response == ELIGIBILITY_RESPONSE

        request = payer.requests[0]
        body = json.loads(request.content)
        assert request.method == "POST"
        assert request.headers["Authorization"] == "Key sk_test_123"
        assert body["controlNumber"].startswith("TB")
        assert body["tradingPartnerServiceId"] == "60054"
        assert body["provider"] == {"organizationName": "Sunrise Therapy", "npi": "1234567890"}
        assert body["subscriber"] == {
            "memberId": "W123456789",
            "firstName": "Jane",
            "lastName": "Doe",
            "dateOfBirth": "19800515",
            "groupNumber": "GRP-1",
        }
        assert body["encounter"] == {"serviceTypeCodes": ["30"]}

    @pytest.mark.asyncio
    async def test_benefits(
        self, fake_payer, make_adapter, make_context, api_key_credential
    ) -> None:
        """Benefits come from the same eligibility call."""
        payer = fake_payer({API_PATH: (200, ELIGIBILITY_RESPONSE)})
        adapter = make_adapter(payer)

        response = await adapter.get_benefits(
            make_context(api_key_credential, payer_code="AETNA")
        )

        assert response.success is True
        assert response.data.copay == 25

    @pytest.mark.asyncio
    async def test_unknown_payer_makes_no_request(
        self, fake_payer, make_adapter, make_context, api_key_credential
    ) -> None:
        """An unresolvable payer fails with INVALID_REQUEST before any I/O."""
        payer = fake_payer({API_PATH: (200, ELIGIBILITY_RESPONSE)})
        adapter = make_adapter(payer)

        response = await adapter.check_eligibility(
            make_context(api_key_credential, payer_code="ACME", payer_name="Acme Health")
        )

        assert response.success is False
        assert response.error.code == ErrorCode.INVALID_REQUEST
        assert response.error.message == "No trading partner ID found for payer: Acme Health"
        assert payer.requests == []
        assert len(adapter.token_cache) == 0

    @pytest.mark.asyncio
    async def test_practices_use_their_own_keys(
        self, fake_payer, make_adapter, make_context, credential_manager
    ) -> None:
        """A shared adapter sends each practice's own API key."""
        payer = fake_payer({API_PATH: (200, ELIGIBILITY_RESPONSE)})
        adapter = make_adapter(payer)
        first = credential_manager.seal(
            1, "STEDI", ApiKeyCredentials(api_key="key-practice-1")
        ).model_copy(update={"id": "cred-1"})
        second = credential_manager.seal(
            2, "STEDI", ApiKeyCredentials(api_key="key-practice-2")
        ).model_copy(update={"id": "cred-2"})

        await adapter.check_eligibility(make_context(first, payer_code="AETNA"))
        await adapter.check_eligibility(
            make_context(second, practice_id=2, payer_code="AETNA")
        )

        assert [r.headers["Authorization"] for r in payer.requests] == [
            "Key key-practice-1",
            "Key key-practice-2",
        ]
        assert len(adapter.token_cache) == 0

    @pytest.mark.asyncio
    async def test_unmatched_payer_name_falls_back_to_code(
        self, fake_payer, make_adapter, make_context, api_key_credential
    ) -> None:
        """A free-text payer name that misses the mapping uses the payer code."""
        payer = fake_payer({API_PATH: (200, ELIGIBILITY_RESPONSE)})
        adapter = make_adapter(payer)

        response = await adapter.check_eligibility(
            make_context(api_key_credential, payer_code="AETNA", payer_name="Aetna Inc.")
        )

        assert response.success is True
        assert json.loads(payer.requests[0].content)["tradingPartnerServiceId"] == "60054"

    @pytest.mark.asyncio
    async def test_trading_partner_override(
        self, fake_payer, make_adapter, make_context, api_key_credential
    ) -> None:
        """The context override routes payers missing from the mapping."""
        payer = fake_payer({API_PATH: (200, ELIGIBILITY_RESPONSE)})
        adapter = make_adapter(payer)

        response = await adapter.check_eligibility(
            make_context(
                api_key_credential,
                payer_code="ACME",
                payer_name="Acme Health",
                trading_partner_service_id="ACME1",
            )
        )

        assert response.success is True
        assert json.loads(payer.requests[0].content)["tradingPartnerServiceId"] == "ACME1"

    @pytest.mark.asyncio
    async def test_bad_request_is_api_error(
        self, fake_payer, make_adapter, make_context, api_key_credential
    ) -> None:
        """Other 4xx responses are API errors and not retried."""
        payer = fake_payer({API_PATH: (400, {"message": "Invalid subscriber"})})
        adapter = make_adapter(payer)

        response = await adapter.check_eligibility(
            make_context(api_key_credential, payer_code="CIGNA")
        )

        assert response.error.code == ErrorCode.API_ERROR
        assert response.error.details == {"status_code": 400}
        assert len(payer.requests) == 1

    @pytest.mark.asyncio
    async def test_wrong_credential_type(
        self, fake_payer, make_adapter, make_context, credential_manager
    ) -> None:
        """Stedi needs an API key."""
        payer = fake_payer()
        adapter = make_adapter(payer)
        credential = credential_manager.seal(
            1, "STEDI", OAuthClientCredentials(client_id="c", client_secret="s")
        )

        response = await adapter.check_eligibility(make_context(credential, payer_code="AETNA"))

        assert response.error.code == ErrorCode.AUTH_FAILED
        assert payer.requests == []

    @pytest.mark.asyncio
    async def test_claims_history_not_supported(
        self, fake_payer, make_adapter, make_context, api_key_credential
    ) -> None:
        """Stedi offers eligibility and benefits only."""
        adapter = make_adapter(fake_payer())

        response = await adapter.get_claims_history(make_context(api_key_credential))

        assert response.error.code == ErrorCode.NOT_IMPLEMENTED
        assert adapter.supports_capability(Capability.BENEFITS) is True
        assert adapter.supports_capability(Capability.CLAIMS_HISTORY) is False


class TestStediHealthCheck:
    """Tests for clearinghouse health probing."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (200, HealthStatus.HEALTHY),
            (400, HealthStatus.HEALTHY),
            (422, HealthStatus.HEALTHY),
            (401, HealthStatus.DEGRADED),
            (403, HealthStatus.DEGRADED),
            (502, HealthStatus.DOWN),
        ],
    )
    async def test_status_mapping(
        self, fake_payer, make_adapter, status: int, expected: HealthStatus
    ) -> None:
        """Reachable-but-rejecting probes are still considered up."""
        payer = fake_payer({API_PATH: (status, {})})

        result = await make_adapter(payer).health_check()

        assert result.status == expected
        assert len(payer.requests) == 1
        assert json.loads(payer.requests[0].content)["controlNumber"] == "HEALTHCHECK"

    @pytest.mark.asyncio
    async def test_network_failure(self, make_http, credential_manager) -> None:
        """Connection failures are down."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Name or service not known", request=request)

        adapter = StediAdapter(
            api_url=API_URL, http=make_http(handler), credential_manager=credential_manager
        )
        result = await adapter.health_check()

        assert result.status == HealthStatus.DOWN
        assert "Connection failed" in result.message

    @pytest.mark.asyncio
    async def test_health_check_uses_service_key(self, fake_payer, make_adapter) -> None:
        """The configured health key is sent; no key means no header."""
        payer = fake_payer({API_PATH: (400, {})})

        await make_adapter(payer, health_check_api_key="sk_health").health_check()
        await make_adapter(payer, health_check_api_key=None).health_check()

        keyed, anonymous = payer.requests
        assert keyed.headers["Authorization"] == "Key sk_health"
        assert "Authorization" not in anonymous.headers
