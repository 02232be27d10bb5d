"""Concrete payer adapters.

Available adapters:
- MedicareAdapter: CMS Blue Button 2.0 (FHIR R4, OAuth2)
- StediAdapter: Stedi clearinghouse eligibility (API key)
"""

from .medicare import MedicareAdapter, MedicarePlanDefaults
from .stedi import StediAdapter, normalize_payer_key, resolve_trading_partner_id

__all__ = [
    "MedicareAdapter",
    "MedicarePlanDefaults",
    "StediAdapter",
    "normalize_payer_key",
    "resolve_trading_partner_id",
]
