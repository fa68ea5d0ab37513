"""
Pricing Services

Read-only reference data access (Supabase) for the pricing engine.
Currency normalization for article and cargo values.
Tariff and customs regime lookups.
Local transport rate table and resolver.
"""

from .database import get_supabase
from .currency_service import (
    SETTLEMENT_CURRENCY,
    normalize_currency_code,
    is_settlement_currency,
    to_settlement_currency,
    get_rate_to_xof,
    convert_to_xof,
    format_xof,
)
from .tariff_service import (
    get_tariff_code,
    get_tariff_lookup,
    get_customs_regime,
    list_active_regimes,
)
from .transport_rate_service import (
    TRUCKING_SERVICE_KEYS,
    load_local_transport_rates,
    is_rate_valid_on,
    container_search_terms,
    match_destination,
    find_local_transport_rate,
)

__all__ = [
    "get_supabase",
    # Currency service
    "SETTLEMENT_CURRENCY",
    "normalize_currency_code",
    "is_settlement_currency",
    "to_settlement_currency",
    "get_rate_to_xof",
    "convert_to_xof",
    "format_xof",
    # Tariff service
    "get_tariff_code",
    "get_tariff_lookup",
    "get_customs_regime",
    "list_active_regimes",
    # Local transport rates
    "TRUCKING_SERVICE_KEYS",
    "load_local_transport_rates",
    "is_rate_valid_on",
    "container_search_terms",
    "match_destination",
    "find_local_transport_rate",
]
