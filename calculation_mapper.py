"""
Calculation Mapping Module

This module handles:
- Safe conversion of raw values coming from reference tables and requests
- HS code normalization (digits only, 10-digit convention)
- Mapping database rows to calculation models
- Two-tier config resolution (explicit override > environment > default)

IMPORTANT: The calculation engine is CURRENCY-AGNOSTIC past the normalizer.
All values handed to the duty cascade must already be in XOF/FCFA.
"""

import os
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional
import logging

from calculation_models import (
    Article,
    CustomsRegime,
    LocalTransportRate,
    OriginInfo,
    PricingConfig,
    TariffCode,
)

# Setup logger
logger = logging.getLogger(__name__)

HS_CODE_LENGTH = 10


# ============================================================================
# SAFE CONVERSION UTILITIES
# ============================================================================

def safe_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """Safely convert value to Decimal"""
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default


def safe_optional_decimal(value: Any) -> Optional[Decimal]:
    """Convert to Decimal, keeping None for missing or unparseable values"""
    if value is None or value == "":
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        logger.warning(f"Unparseable numeric value ignored: {value!r}")
        return None
    return number if number.is_finite() else None


def safe_str(value: Any, default: str = "") -> str:
    """Safely convert value to string"""
    if value is None or value == "":
        return default
    return str(value)


def safe_int(value: Any, default: Optional[int] = 0) -> Optional[int]:
    """Safely convert value to int"""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def safe_bool(value: Any, default: bool = False) -> bool:
    """Convert DB flags ('true', 1, 'oui', True) to bool"""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ("true", "1", "yes", "oui", "y", "o", "x")


def safe_date(value: Any) -> Optional[date]:
    """Parse a date or ISO timestamp string; None when missing"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning(f"Unparseable date ignored: {value!r}")
        return None


# ============================================================================
# HS CODE NORMALIZATION
# ============================================================================

def strip_hs_code(code: Optional[str]) -> str:
    """Digits only: '8504.40.00' -> '85044000'"""
    return re.sub(r"\D", "", code or "")


def normalize_hs_code(code: Optional[str]) -> str:
    """
    Normalize an HS code to the 10-digit lookup key.

    Non-digits are stripped, short codes are padded on the right with zeros
    (HS codes are prefix-hierarchical), long codes are truncated.
    '8504.40' -> '8504400000'
    """
    digits = strip_hs_code(code)
    if not digits:
        return ""
    return digits.ljust(HS_CODE_LENGTH, "0")[:HS_CODE_LENGTH]


def split_hs_codes(value: Optional[str]) -> List[str]:
    """Split a multi-code field ('8504.40.00, 8537.10.00; ...')"""
    if not value:
        return []
    return [part.strip() for part in re.split(r"[,;]", value) if part.strip()]


# ============================================================================
# CEDEAO / ECOWAS ORIGIN NORMALIZATION
# ============================================================================

# ISO codes and common spellings of bloc members (community levy exemption)
CEDEAO_COUNTRIES = {
    "BJ", "BF", "CV", "CI", "GM", "GH", "GN", "GW", "LR", "ML", "NE", "NG", "SN", "SL", "TG",
    "BENIN", "BÉNIN", "BURKINA FASO", "CAP-VERT", "CAP VERT", "CABO VERDE", "CAPE VERDE",
    "COTE D'IVOIRE", "CÔTE D'IVOIRE", "IVORY COAST", "GAMBIE", "GAMBIA", "GHANA",
    "GUINEE", "GUINÉE", "GUINEA", "GUINEE-BISSAU", "GUINÉE-BISSAU", "GUINEA-BISSAU",
    "LIBERIA", "MALI", "NIGER", "NIGERIA", "SENEGAL", "SÉNÉGAL", "SIERRA LEONE", "TOGO",
}


def is_cedeao_country(country: Optional[str]) -> bool:
    """Check whether an origin country belongs to the CEDEAO bloc"""
    if not country:
        return False
    return country.strip().upper() in CEDEAO_COUNTRIES


def map_origin(data: Optional[Mapping[str, Any]]) -> OriginInfo:
    """Build OriginInfo; the bloc exemption follows the explicit flag or the country"""
    data = data or {}
    country = safe_str(data.get("origin") or data.get("country")) or None
    is_cedeao = safe_bool(data.get("is_cedeao")) or is_cedeao_country(country)
    return OriginInfo(
        country=country,
        is_cedeao=is_cedeao,
        is_cge=safe_bool(data.get("is_cge")),
    )


# ============================================================================
# ROW MAPPING (reference tables -> models)
# ============================================================================

TARIFF_RATE_FIELDS = (
    "dd", "surtaxe", "rs", "pcs", "pcc", "cosec", "tin",
    "t_conj", "tev", "t_past", "t_para", "t_ciment", "tva",
)

REGIME_FLAG_FIELDS = ("dd", "stx", "rs", "tin", "tva", "cosec", "pcs", "pcc", "tpast", "ta")


def map_tariff_code_row(row: Mapping[str, Any]) -> TariffCode:
    """Map an hs_codes row to TariffCode"""
    code = safe_str(row.get("code"))
    rates = {field: safe_optional_decimal(row.get(field)) for field in TARIFF_RATE_FIELDS}
    return TariffCode(
        code=code,
        code_normalized=normalize_hs_code(row.get("code_normalized") or code),
        description=row.get("description"),
        chapter=safe_int(row.get("chapter"), None),
        bic=safe_bool(row.get("bic")),
        mercurialis=safe_bool(row.get("mercurialis")),
        **rates,
    )


def map_customs_regime_row(row: Mapping[str, Any]) -> CustomsRegime:
    """Map a customs_regimes row. A flag left NULL on a loaded regime means exempt."""
    flags = {field: safe_bool(row.get(field)) for field in REGIME_FLAG_FIELDS}
    return CustomsRegime(
        code=safe_str(row.get("code")),
        name=row.get("name"),
        is_active=safe_bool(row.get("is_active"), default=True),
        **flags,
    )


def map_transport_rate_row(row: Mapping[str, Any]) -> LocalTransportRate:
    """Map a local_transport_rates row"""
    return LocalTransportRate(
        origin=safe_str(row.get("origin")),
        destination=safe_str(row.get("destination")),
        container_type=safe_str(row.get("container_type")),
        rate_amount=safe_decimal(row.get("rate_amount")),
        rate_currency=row.get("rate_currency") or None,
        is_active=safe_bool(row.get("is_active"), default=True),
        validity_start=safe_date(row.get("validity_start")),
        validity_end=safe_date(row.get("validity_end")),
        provider=row.get("provider") or None,
        cargo_category=row.get("cargo_category") or None,
    )


def map_article(data: Mapping[str, Any]) -> Article:
    """Map an extracted article detail to Article"""
    return Article(
        hs_code=safe_str(data.get("hs_code")),
        value=safe_decimal(data.get("value")),
        currency=safe_str(data.get("currency"), "XOF").strip().upper(),
        description=data.get("description"),
    )


def build_tariff_lookup(rows: Iterable[Mapping[str, Any]]) -> Dict[str, TariffCode]:
    """Index hs_codes rows by normalized 10-digit code. First row wins."""
    lookup: Dict[str, TariffCode] = {}
    for row in rows:
        tariff = map_tariff_code_row(row)
        if tariff.code_normalized and tariff.code_normalized not in lookup:
            lookup[tariff.code_normalized] = tariff
    return lookup


def find_tariff_code(lookup: Mapping[str, TariffCode], code: str) -> Optional[TariffCode]:
    """Look up a tariff code by any spelling of its HS code"""
    key = normalize_hs_code(code)
    if not key:
        return None
    return lookup.get(key)


# ============================================================================
# CONFIG RESOLUTION
# ============================================================================

ENV_PREFIX = "PRICING_"


def load_pricing_config(overrides: Optional[Mapping[str, Any]] = None) -> PricingConfig:
    """
    Resolve PricingConfig: explicit override > environment > default.

    Environment keys are PRICING_<FIELD> (e.g. PRICING_RATE_TVA=18).
    """
    overrides = overrides or {}
    values: Dict[str, Decimal] = {}
    for field_name in PricingConfig.model_fields:
        raw = overrides.get(field_name)
        if raw is None or raw == "":
            raw = os.getenv(f"{ENV_PREFIX}{field_name.upper()}")
        if raw is None or raw == "":
            continue
        value = safe_optional_decimal(raw)
        if value is None:
            logger.warning(f"Ignoring invalid pricing config {field_name}={raw!r}")
            continue
        values[field_name] = value
    return PricingConfig(**values)
