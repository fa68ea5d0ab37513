"""
Customs Duty & Freight Pricing - FastHTML + Supabase

Thin JSON API over the pricing engine. Reference data (HS codes, customs
regimes, local transport rates) is read from Supabase; every computation
is delegated to calculation_engine / quotation_engine.

Run with: python main.py
"""

from fasthtml.common import *
from starlette.responses import JSONResponse
from typing import Any, Dict, List
import json
import logging
import os
from dotenv import load_dotenv

load_dotenv()

from pydantic import ValidationError

from calculation_engine import (
    calculate_caf,
    compute_duties_for_code,
    compute_shipment_duties,
    distribute_caf,
)
from calculation_guards import to_non_negative
from calculation_mapper import load_pricing_config, map_article, map_origin, split_hs_codes
from calculation_models import (
    Article,
    OriginInfo,
    PricingConfig,
    PricingContext,
    QuotationInput,
    QuoteIssue,
    TariffCodeNotFound,
)
from quotation_engine import run_quotation_engine
from services.tariff_service import (
    get_customs_regime,
    get_tariff_code,
    get_tariff_lookup,
    list_active_regimes,
)
from services.transport_rate_service import find_local_transport_rate, load_local_transport_rates

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ============================================================================
# APP SETUP
# ============================================================================

def invalid_json_handler(req, exc):
    """Bodies sent as application/json are parsed before the route handler runs"""
    logger.info(f"Malformed JSON on {req.url.path}: {exc}")
    return json_error("Request body must be valid JSON", 400)


app, rt = fast_app(
    secret_key=os.getenv("APP_SECRET", "dev-secret-change-in-production"),
    exception_handlers={json.JSONDecodeError: invalid_json_handler},
)


# ============================================================================
# REQUEST / RESPONSE HELPERS
# ============================================================================

class PayloadError(ValueError):
    """Request body that cannot be used (bad JSON, missing field, bad number)"""


def json_ok(model_or_data: Any, status_code: int = 200) -> JSONResponse:
    """Serialize a pydantic model (amounts as numbers) or plain data"""
    if hasattr(model_or_data, "model_dump"):
        model_or_data = model_or_data.model_dump(mode="json")
    return JSONResponse(model_or_data, status_code=status_code)


def json_error(message: str, status_code: int, details: Any = None) -> JSONResponse:
    body: Dict[str, Any] = {"error": message}
    if details is not None:
        body["details"] = details
    return JSONResponse(body, status_code=status_code)


def validation_error_response(e: ValidationError) -> JSONResponse:
    return json_error(
        "Invalid request",
        400,
        e.errors(include_url=False, include_context=False, include_input=False),
    )


async def read_payload(req) -> Dict[str, Any]:
    """Parse the JSON body; must be an object"""
    try:
        payload = await req.json()
    except ValueError:
        raise PayloadError("Request body must be valid JSON")
    if not isinstance(payload, dict):
        raise PayloadError("Request body must be a JSON object")
    return payload


def require_amount(payload: Dict[str, Any], field: str, issues: List[QuoteIssue]):
    """Guarded non-negative amount; missing or non-numeric is a 400"""
    value = to_non_negative(payload.get(field), field, issues)
    if value is None:
        raise PayloadError(f"{field} must be a finite number")
    return value


def read_hs_codes(payload: Dict[str, Any]) -> List[str]:
    """hs_codes as a list, or a comma/semicolon separated string"""
    raw = payload.get("hs_codes")
    if isinstance(raw, str):
        return split_hs_codes(raw)
    if isinstance(raw, list):
        return [str(code).strip() for code in raw if str(code).strip()]
    return []


def read_articles(payload: Dict[str, Any]) -> List[Article]:
    raw = payload.get("articles") or []
    if not isinstance(raw, list):
        raise PayloadError("articles must be a list")
    return [map_article(item) for item in raw if isinstance(item, dict)]


def read_origin(payload: Dict[str, Any]) -> OriginInfo:
    """Origin fields at top level, or nested under "origin" as an object"""
    nested = payload.get("origin")
    if isinstance(nested, dict):
        return map_origin({**payload, **nested, "origin": nested.get("country")})
    return map_origin(payload)


def read_config(payload: Dict[str, Any]) -> PricingConfig:
    """Per-request rate overrides on top of env/default config"""
    overrides = payload.get("config")
    if overrides is not None and not isinstance(overrides, dict):
        raise PayloadError("config must be a JSON object")
    return load_pricing_config(overrides)


# ============================================================================
# HEALTH
# ============================================================================

@rt("/healthz")
def get():
    return json_ok({"status": "ok"})


# ============================================================================
# REFERENCE DATA
# ============================================================================

@rt("/api/hs-codes/{code}")
def get(code: str):
    """Single HS code with its fiscal rates"""
    try:
        tariff = get_tariff_code(code)
    except Exception as e:
        logger.exception(f"Failed to load HS code {code}")
        return json_error("Reference data unavailable", 503, str(e))

    if tariff is None:
        return json_ok(TariffCodeNotFound(code=code), status_code=404)
    return json_ok(tariff)


@rt("/api/regimes")
def get():
    """Active customs regimes"""
    try:
        regimes = list_active_regimes()
    except Exception as e:
        logger.exception("Failed to load customs regimes")
        return json_error("Reference data unavailable", 503, str(e))
    return json_ok({"regimes": [r.model_dump(mode="json") for r in regimes]})


# ============================================================================
# CAF
# ============================================================================

@rt("/api/caf/calculate")
async def post(req):
    """CAF from invoice value + incoterm (+ optional freight / insurance rate)"""
    try:
        payload = await read_payload(req)
        issues: List[QuoteIssue] = []
        invoice_value = require_amount(payload, "invoice_value", issues)
        freight = to_non_negative(payload.get("freight_amount"), "freight_amount", issues)
        insurance_rate = to_non_negative(payload.get("insurance_rate"), "insurance_rate", issues)
        config = read_config(payload)
    except PayloadError as e:
        return json_error(str(e), 400)
    except ValidationError as e:
        return validation_error_response(e)

    result = calculate_caf(payload.get("incoterm"), invoice_value, freight, insurance_rate, config)
    body = result.model_dump(mode="json")
    body["issues"] = [issue.model_dump(mode="json") for issue in issues]
    return json_ok(body)


@rt("/api/caf/distribute")
async def post(req):
    """Split a CAF total across HS codes, proportionally to article values"""
    try:
        payload = await read_payload(req)
        caf_total = require_amount(payload, "caf_total", [])
        hs_codes = read_hs_codes(payload)
        articles = read_articles(payload)
        config = read_config(payload)
    except PayloadError as e:
        return json_error(str(e), 400)
    except ValidationError as e:
        return validation_error_response(e)

    return json_ok(distribute_caf(hs_codes, caf_total, articles, config))


# ============================================================================
# DUTIES
# ============================================================================

@rt("/api/duties/calculate")
async def post(req):
    """
    Duty breakdown.

    Single code: {"hs_code", "caf_value", origin fields, "regime_code"}
    Shipment:    {"hs_codes", "caf_total", "articles", origin fields, "regime_code"}
    """
    try:
        payload = await read_payload(req)
        origin = read_origin(payload)
        config = read_config(payload)
        hs_codes = read_hs_codes(payload)
        code = str(payload.get("hs_code") or "").strip()
        if not hs_codes and not code:
            raise PayloadError("hs_code or hs_codes is required")
        if hs_codes:
            caf_total = require_amount(payload, "caf_total", [])
            articles = read_articles(payload)
        elif payload.get("caf_value") is None:
            raise PayloadError("caf_value is required")
    except PayloadError as e:
        return json_error(str(e), 400)
    except ValidationError as e:
        return validation_error_response(e)

    try:
        regime = get_customs_regime(payload.get("regime_code"))
        lookup = get_tariff_lookup(hs_codes or [code])
    except Exception as e:
        logger.exception("Failed to load tariff reference data")
        return json_error("Reference data unavailable", 503, str(e))

    if hs_codes:
        result = compute_shipment_duties(hs_codes, caf_total, lookup, articles, origin, regime, config)
        return json_ok(result)

    result = compute_duties_for_code(code, payload.get("caf_value"), lookup, origin, regime, config)
    if isinstance(result, TariffCodeNotFound):
        return json_ok(result, status_code=404)
    return json_ok(result)


# ============================================================================
# LOCAL TRANSPORT
# ============================================================================

@rt("/api/transport/resolve")
async def post(req):
    """Suggest a local trucking rate: {"service_key", "context", "is_air_mode"}"""
    try:
        payload = await read_payload(req)
        context = PricingContext.model_validate(payload.get("context") or {})
    except PayloadError as e:
        return json_error(str(e), 400)
    except ValidationError as e:
        return validation_error_response(e)

    try:
        rates = load_local_transport_rates()
    except Exception as e:
        logger.exception("Failed to load local transport rates")
        return json_error("Reference data unavailable", 503, str(e))

    match = find_local_transport_rate(
        rates,
        str(payload.get("service_key") or "").strip().upper(),
        context,
        bool(payload.get("is_air_mode")),
    )
    return json_ok({"match": match.model_dump(mode="json") if match else None})


# ============================================================================
# QUOTATION TOTALS
# ============================================================================

@rt("/api/quotation/totals")
async def post(req):
    """Totals snapshot for manually edited quotation lines"""
    try:
        payload = await read_payload(req)
        data = QuotationInput.model_validate(payload)
    except PayloadError as e:
        return json_error(str(e), 400)
    except ValidationError as e:
        return validation_error_response(e)

    return json_ok(run_quotation_engine(data))


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    print("\n" + "="*50)
    print("  Customs Duty & Freight Pricing - FastHTML + Supabase")
    print("="*50)
    print(f"  URL: http://localhost:{os.getenv('PORT', '5001')}")
    print("="*50 + "\n")

    serve(port=int(os.getenv("PORT", "5001")))
