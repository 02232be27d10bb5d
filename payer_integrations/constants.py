"""Shared constants for payer integrations."""

# Clearinghouse trading partner service IDs, keyed by normalized payer key
# (lowercase, words joined by underscores). Used for:
# 1. Routing clearinghouse eligibility requests to the right payer
# 2. Validating clearinghouse payer routes at config load time
TRADING_PARTNER_MAP: dict[str, str] = {
    "aetna": "60054",
    "anthem": "00025",
    "bcbs": "00050",
    "blue_cross": "00050",
    "blue_cross_blue_shield": "00050",
    "cigna": "62308",
    "humana": "61101",
    "kaiser": "94135",
    "united": "87726",
    "unitedhealthcare": "87726",
    "united_healthcare": "87726",
    "uhc": "87726",
    "medicare": "CMS",
    "medicaid": "SKMD0",
    "tricare": "99726",
}

# X12 service type code 30: Health Benefit Plan Coverage
DEFAULT_SERVICE_TYPE_CODES: list[str] = ["30"]

# Credentials are deactivated after this many consecutive failures
MAX_CREDENTIAL_ERRORS = 5
