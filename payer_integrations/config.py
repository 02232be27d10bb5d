"""Shared configuration for the payer integration layer.

This module centralizes environment variable access and default values
to prevent drift between modules.
"""

import os

# Credential storage
CREDENTIAL_ENCRYPTION_KEY_ENV = "PAYER_CREDENTIAL_ENCRYPTION_KEY"
DB_PATH = os.getenv("PAYER_DB_PATH", "./data/payer_integrations.db")

# Payer integration definitions (YAML or JSON)
CONFIG_PATH = os.getenv("PAYER_CONFIG_PATH", "config/payers.yaml")

# Sandbox endpoints unless explicitly disabled
USE_SANDBOX = os.getenv("PAYER_USE_SANDBOX", "true").lower() in ("true", "1", "yes")

# Outbound HTTP
HTTP_TIMEOUT_SECONDS = float(os.getenv("PAYER_HTTP_TIMEOUT", "30"))
MAX_ATTEMPTS = int(os.getenv("PAYER_MAX_RETRIES", "3"))
RETRY_DELAY_SECONDS = float(os.getenv("PAYER_RETRY_DELAY", "1"))
HEALTH_CHECK_TIMEOUT_SECONDS = 10.0

# Token cache
TOKEN_EXPIRY_BUFFER_SECONDS = 5 * 60
DEFAULT_TOKEN_TTL_SECONDS = 60 * 60

# Clearinghouse
STEDI_API_URL = os.getenv(
    "STEDI_API_URL",
    "https://healthcare.us.stedi.com/2024-04-01/change/medicalnetwork/eligibility/v3",
)
# Service key for clearinghouse health probes (tenant keys are never used)
STEDI_HEALTH_CHECK_API_KEY = os.getenv("STEDI_HEALTH_CHECK_API_KEY")
