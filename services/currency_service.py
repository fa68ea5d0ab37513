"""
Currency Service - Settlement currency normalization (XOF / FCFA)

EUR is pegged to XOF at a fixed parity (BCEAO), so article values in EUR
convert without any lookup. Other currencies either pass through with a
warning (CAF distribution ratios) or are resolved from the exchange_rates
table (cargo value conversion).
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional
import logging

from calculation_guards import round_to_unit
from calculation_models import PricingConfig
from .database import get_supabase

logger = logging.getLogger(__name__)

SETTLEMENT_CURRENCY = "XOF"

# Spellings of the settlement currency found in documents
SETTLEMENT_ALIASES = {"XOF", "FCFA", "CFA"}


def normalize_currency_code(currency: Optional[str]) -> str:
    """Upper-case, trimmed currency code. Empty means settlement currency."""
    return (currency or SETTLEMENT_CURRENCY).strip().upper() or SETTLEMENT_CURRENCY


def is_settlement_currency(currency: Optional[str]) -> bool:
    return normalize_currency_code(currency) in SETTLEMENT_ALIASES


def to_settlement_currency(
    value: Decimal,
    currency: Optional[str],
    warnings: List[str],
    config: Optional[PricingConfig] = None
) -> Decimal:
    """
    Convert an article value to XOF. Always succeeds.

    - XOF / FCFA / CFA -> identity
    - EUR -> value * fixed peg
    - anything else -> value unchanged + warning
    """
    config = config or PricingConfig()
    code = normalize_currency_code(currency)

    if code in SETTLEMENT_ALIASES:
        return value
    if code == "EUR":
        return value * config.eur_xof_peg

    warnings.append(
        f"Devise article non supportée ({code}) — répartition CAF peut être inexacte"
    )
    logger.warning(f"Unsupported article currency {code}, value passed through unconverted")
    return value


def get_rate_to_xof(currency: str) -> Decimal:
    """
    Get the active XOF rate for a currency from the exchange_rates table.

    Only rows whose validity window contains now are considered; the most
    recent valid_from wins.

    Raises:
        ValueError: If no valid rate exists for the currency
    """
    code = normalize_currency_code(currency)
    now = datetime.now(timezone.utc).isoformat()

    supabase = get_supabase()
    result = supabase.table("exchange_rates")\
        .select("currency_code, rate_to_xof, valid_from, valid_until")\
        .eq("currency_code", code)\
        .lte("valid_from", now)\
        .gte("valid_until", now)\
        .order("valid_from", desc=True)\
        .limit(1)\
        .execute()

    rows = result.data or []
    if not rows or rows[0].get("rate_to_xof") in (None, ""):
        raise ValueError(f"Exchange rate for {code} expired or missing")

    rate = Decimal(str(rows[0]["rate_to_xof"]))
    logger.debug(f"Loaded exchange rate {code}->XOF: {rate}")
    return rate


def convert_to_xof(
    amount: Decimal,
    currency: Optional[str],
    config: Optional[PricingConfig] = None
) -> Decimal:
    """
    Convert a cargo amount to XOF for use as a tax base.

    Unlike to_settlement_currency, an unknown rate is an error here: a silent
    pass-through would misstate the duty base.
    """
    config = config or PricingConfig()
    code = normalize_currency_code(currency)

    if amount == 0 or code in SETTLEMENT_ALIASES:
        return amount
    if code == "EUR":
        return amount * config.eur_xof_peg

    return amount * get_rate_to_xof(code)


def format_xof(amount: Decimal) -> str:
    """Format an amount as '1 234 567 FCFA' (rounded to the unit)"""
    rounded = int(round_to_unit(amount))
    grouped = f"{rounded:,}".replace(",", " ")
    return f"{grouped} FCFA"
