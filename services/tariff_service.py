"""
Tariff Service

Read-only lookups on the hs_codes and customs_regimes reference tables.
Rows are imported by an external bulk process; nothing here writes.
"""

from typing import Dict, Iterable, List, Optional
import logging

from calculation_mapper import (
    build_tariff_lookup,
    map_customs_regime_row,
    map_tariff_code_row,
    normalize_hs_code,
    strip_hs_code,
)
from calculation_models import CustomsRegime, TariffCode
from .database import get_supabase

logger = logging.getLogger(__name__)


def _quoted(values: Iterable[str]) -> str:
    return ",".join(f'"{value}"' for value in values)


def hs_code_filter(codes: Iterable[str]) -> Optional[str]:
    """
    Build the PostgREST or-filter matching rows for the given HS codes.

    code_normalized is stored either as bare digits ("85044000") or padded
    to 10 digits ("8504400000"), so both spellings are queried, together
    with the published code itself.
    """
    published = set()
    normalized = set()
    for code in codes:
        key = normalize_hs_code(code)
        if not key:
            continue
        published.add(str(code).strip())
        normalized.add(key)
        normalized.add(strip_hs_code(code))
    if not normalized:
        return None
    return f"code.in.({_quoted(sorted(published))}),code_normalized.in.({_quoted(sorted(normalized))})"


def get_tariff_code(code: str) -> Optional[TariffCode]:
    """
    Get a single HS code row by any spelling of its code.

    Returns:
        TariffCode or None if not found
    """
    filters = hs_code_filter([code])
    if not filters:
        return None

    supabase = get_supabase()
    result = supabase.table("hs_codes")\
        .select("*")\
        .or_(filters)\
        .limit(1)\
        .execute()

    if not result.data:
        logger.info(f"HS code {code} not found")
        return None
    return map_tariff_code_row(result.data[0])


def get_tariff_lookup(codes: Iterable[str]) -> Dict[str, TariffCode]:
    """
    Load all requested HS codes in one query, indexed by normalized code.

    Unknown codes are simply absent from the returned dict.
    """
    codes = list(codes)
    filters = hs_code_filter(codes)
    if not filters:
        return {}

    supabase = get_supabase()
    result = supabase.table("hs_codes")\
        .select("*")\
        .or_(filters)\
        .execute()

    lookup = build_tariff_lookup(result.data or [])
    missing = {normalize_hs_code(code) for code in codes} - set(lookup) - {""}
    if missing:
        logger.info(f"HS codes not found in reference table: {sorted(missing)}")
    return lookup


def get_customs_regime(regime_code: Optional[str]) -> Optional[CustomsRegime]:
    """
    Get an active customs regime by code.

    Returns None when no code is given or the regime is unknown/inactive;
    the caller then applies no exemption.
    """
    if not regime_code:
        return None

    supabase = get_supabase()
    result = supabase.table("customs_regimes")\
        .select("*")\
        .eq("code", regime_code)\
        .eq("is_active", True)\
        .limit(1)\
        .execute()

    if not result.data:
        logger.warning(f"Regime {regime_code} not found or inactive, no exemption applied")
        return None
    return map_customs_regime_row(result.data[0])


def list_active_regimes() -> List[CustomsRegime]:
    """All active customs regimes, ordered by code"""
    supabase = get_supabase()
    result = supabase.table("customs_regimes")\
        .select("*")\
        .eq("is_active", True)\
        .order("code")\
        .execute()
    return [map_customs_regime_row(row) for row in result.data or []]
