"""
Local Transport Rate Service

Loads the local trucking rate table and resolves the applicable rate for a
destination city and container type. Resolution never raises: every
"cannot suggest" case returns None and the line stays manual.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence
import logging

from calculation_mapper import map_transport_rate_row
from calculation_models import LocalTransportRate, PricingContext, RateMatch
from .database import get_supabase

logger = logging.getLogger(__name__)

# Service keys eligible for a trucking rate suggestion
TRUCKING_SERVICE_KEYS = frozenset({"TRUCKING", "ON_CARRIAGE"})

LOCAL_TRANSPORT_SOURCE = "local_transport_rate"
LOCAL_TRANSPORT_CONFIDENCE = 0.90


def load_local_transport_rates() -> List[LocalTransportRate]:
    """
    Load active rows of the local_transport_rates table.

    Validity windows are checked at resolution time, not here, so the
    snapshot can be reused across a batch of lines.
    """
    supabase = get_supabase()
    result = supabase.table("local_transport_rates")\
        .select("*")\
        .eq("is_active", True)\
        .order("destination")\
        .execute()

    rates = [map_transport_rate_row(row) for row in result.data or []]
    logger.debug(f"Loaded {len(rates)} local transport rates")
    return rates


def is_rate_valid_on(rate: LocalTransportRate, day: date) -> bool:
    """Active and, when a window is set, day within [start, end]"""
    if not rate.is_active:
        return False
    if rate.validity_start and rate.validity_start > day:
        return False
    if rate.validity_end and rate.validity_end < day:
        return False
    return True


def container_search_terms(container_type: str) -> List[str]:
    """
    Tokens a rate's container_type must contain to match the request.

    '40DV' -> ["40'", "40' DRY", "40'DRY"]; low-bed / flat-rack -> low bed tokens.
    Unknown families match nothing.
    """
    normalized = container_type.strip().upper()
    if normalized.startswith("20"):
        return ["20'", "20' DRY", "20'DRY"]
    if normalized.startswith("40"):
        return ["40'", "40' DRY", "40'DRY"]
    if "LOW" in normalized or "FLAT" in normalized:
        return ["LOW BED", "LOWBED"]
    return []


def _destination_key(destination: str) -> str:
    return destination.strip().upper()


def match_destination(
    rates: Sequence[LocalTransportRate],
    destination_city: str
) -> List[LocalTransportRate]:
    """
    Rates for a destination city.

    Exact (case-insensitive, trimmed) match first. Otherwise containment in
    either direction, accepted only when all partial matches share one
    destination; ambiguous or empty partial matches give [].
    """
    query = _destination_key(destination_city)

    exact = [r for r in rates if _destination_key(r.destination) == query]
    if exact:
        return exact

    partial = [
        r for r in rates
        if query in _destination_key(r.destination) or _destination_key(r.destination) in query
    ]
    destinations = {_destination_key(r.destination) for r in partial}
    if len(destinations) == 1:
        return partial

    if len(destinations) > 1:
        logger.info(f"Ambiguous destination {destination_city!r}: {sorted(destinations)}")
    return []


def _format_amount(amount: Decimal) -> str:
    if amount == amount.to_integral_value():
        return str(int(amount))
    return f"{amount.normalize():f}"


def find_local_transport_rate(
    rates: Sequence[LocalTransportRate],
    service_key: str,
    context: PricingContext,
    is_air_mode: bool,
    today: Optional[date] = None
) -> Optional[RateMatch]:
    """
    Suggest a local trucking rate for a service line.

    Args:
        rates: Snapshot of the rate table
        service_key: Service line key (only TRUCKING / ON_CARRIAGE qualify)
        context: Request facts (destination_city, container_type)
        is_air_mode: Air legs never get a trucking rate
        today: Reference date for validity windows (defaults to today)

    Returns:
        RateMatch or None when no rate can be suggested
    """
    if service_key not in TRUCKING_SERVICE_KEYS:
        return None
    if is_air_mode:
        return None
    if not context.destination_city or not context.destination_city.strip():
        return None
    if not context.container_type or not context.container_type.strip():
        return None

    today = today or date.today()
    valid_rates = [r for r in rates if is_rate_valid_on(r, today)]

    candidates = match_destination(valid_rates, context.destination_city)
    if not candidates:
        return None

    terms = container_search_terms(context.container_type)
    best = next(
        (r for r in candidates if any(term in r.container_type.strip().upper() for term in terms)),
        None,
    )
    if best is None:
        logger.info(
            f"No {context.container_type} rate for {context.destination_city} "
            f"among {len(candidates)} candidates"
        )
        return None

    amount = _format_amount(best.rate_amount)
    return RateMatch(
        rate=best.rate_amount,
        currency=best.rate_currency or "XOF",
        source=LOCAL_TRANSPORT_SOURCE,
        confidence=LOCAL_TRANSPORT_CONFIDENCE,
        explanation=(
            f"local_transport: dest={best.destination}, container={best.container_type}, "
            f"provider={best.provider or 'unknown'}, rate={amount}"
        ),
    )
