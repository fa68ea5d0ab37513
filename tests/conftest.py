"""
Shared pytest fixtures for pricing engine tests.

Provides:
- Reference data row factories (hs_codes, customs_regimes, local_transport_rates)
- Tariff lookup and rate table fixtures
- Test client for the FastHTML app
"""

import pytest
import os
import sys

# Set test environment before importing app
os.environ["TESTING"] = "true"
os.environ["SUPABASE_URL"] = "https://test.supabase.co"
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
os.environ["APP_SECRET"] = "test-secret"

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from calculation_mapper import build_tariff_lookup, map_transport_rate_row


# ============================================================================
# MOCK FACTORIES
# ============================================================================

def make_tariff_row(
    code="8504.40.00",
    description="Convertisseurs statiques",
    chapter=85,
    bic=True,
    **rates
):
    """Create an hs_codes row dict. Rates not given stay NULL."""
    row = {
        "code": code,
        "code_normalized": None,
        "description": description,
        "chapter": chapter,
        "bic": bic,
        "mercurialis": False,
    }
    row.update(rates)
    return row


def make_regime_row(code="C100", name="Mise à la consommation", **flags):
    """Create a customs_regimes row dict; all taxes apply unless overridden."""
    row = {
        "code": code,
        "name": name,
        "is_active": True,
        "dd": True, "stx": True, "rs": True, "tin": True, "tva": True,
        "cosec": True, "pcs": True, "pcc": True, "tpast": True, "ta": True,
    }
    row.update(flags)
    return row


def make_transport_rate_row(
    destination="KAOLACK",
    container_type="40' Dry",
    rate_amount=527460,
    provider=None,
    rate_currency="XOF",
    is_active=True,
    validity_start=None,
    validity_end=None
):
    """Create a local_transport_rates row dict."""
    return {
        "origin": "DAKAR",
        "destination": destination,
        "container_type": container_type,
        "rate_amount": rate_amount,
        "rate_currency": rate_currency,
        "is_active": is_active,
        "validity_start": validity_start,
        "validity_end": validity_end,
        "provider": provider,
        "cargo_category": None,
    }


# ============================================================================
# REFERENCE DATA FIXTURES
# ============================================================================

@pytest.fixture
def transformer_row():
    """Electrical goods: DD 10%, defaults for levies and VAT, BIC applies."""
    return make_tariff_row(code="8504.40.00", dd=10)


@pytest.fixture
def sugar_row():
    """Protected product: surtax, internal tax and conjunctural tax, no BIC."""
    return make_tariff_row(
        code="1701.99.10",
        description="Sucre raffiné",
        chapter=17,
        bic=False,
        dd=20,
        surtaxe=5,
        tin=5,
        t_conj=10,
    )


@pytest.fixture
def tariff_lookup(transformer_row, sugar_row):
    """Lookup keyed by normalized 10-digit code."""
    return build_tariff_lookup([transformer_row, sugar_row])


@pytest.fixture
def local_transport_rates():
    """Snapshot of the local transport rate table."""
    rows = [
        make_transport_rate_row("KAOLACK", "40' Dry", 527460, provider="Aksa Energy"),
        make_transport_rate_row("KAOLACK", "20' Dry", 290280, provider="Aksa Energy"),
        make_transport_rate_row("THIES / POPONGUINE", "40' Dry", 248980),
        make_transport_rate_row("THIES / POPONGUINE", "20' Dry", 151040),
    ]
    return [map_transport_rate_row(row) for row in rows]


# ============================================================================
# APP CLIENT (for integration tests)
# ============================================================================

@pytest.fixture
def app_client():
    """
    Create a test client for the FastHTML app.

    If import fails, tests using this fixture will be skipped.
    """
    try:
        from starlette.testclient import TestClient
        from main import app
    except Exception as e:
        pytest.skip(f"Cannot create app client: {e}")
    return TestClient(app)
