"""
Tests for the Currency Service

Tests cover:
- Settlement currency normalization for CAF ratios
- Exchange rate lookup from the exchange_rates table
- Conversion of cargo values to XOF
- FCFA formatting
"""

import pytest
from decimal import Decimal
from unittest.mock import MagicMock, patch
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from calculation_models import PricingConfig
from services.currency_service import (
    convert_to_xof,
    format_xof,
    get_rate_to_xof,
    is_settlement_currency,
    normalize_currency_code,
    to_settlement_currency,
)


@pytest.fixture
def mock_supabase():
    """Mock Supabase client."""
    with patch("services.currency_service.get_supabase") as mock:
        client = MagicMock()
        mock.return_value = client
        yield client


def _rate_query(client):
    return client.table.return_value.select.return_value.eq.return_value.lte.return_value \
        .gte.return_value.order.return_value.limit.return_value


# =============================================================================
# SETTLEMENT NORMALIZATION
# =============================================================================

class TestToSettlementCurrency:
    """Tests for to_settlement_currency."""

    @pytest.mark.parametrize("currency", ["XOF", "FCFA", "cfa", " xof ", "", None])
    def test_settlement_aliases_identity(self, currency):
        warnings = []
        assert to_settlement_currency(Decimal("1000"), currency, warnings) == Decimal("1000")
        assert warnings == []

    def test_eur_uses_fixed_peg(self):
        warnings = []
        assert to_settlement_currency(Decimal("1000"), "EUR", warnings) == Decimal("655957")
        assert warnings == []

    def test_eur_peg_from_config(self):
        config = PricingConfig(eur_xof_peg=Decimal("650"))
        assert to_settlement_currency(Decimal("2"), "eur", [], config) == Decimal("1300")

    def test_unknown_currency_passes_through_with_warning(self):
        warnings = []
        assert to_settlement_currency(Decimal("100"), "usd", warnings) == Decimal("100")
        assert warnings == ["Devise article non supportée (USD) — répartition CAF peut être inexacte"]

    def test_normalize_currency_code(self):
        assert normalize_currency_code(None) == "XOF"
        assert normalize_currency_code("  ") == "XOF"
        assert normalize_currency_code("eur ") == "EUR"
        assert is_settlement_currency("FCFA") is True
        assert is_settlement_currency("EUR") is False


# =============================================================================
# EXCHANGE RATES
# =============================================================================

class TestExchangeRates:
    """Tests for get_rate_to_xof and convert_to_xof."""

    def test_get_rate(self, mock_supabase):
        _rate_query(mock_supabase).execute.return_value = MagicMock(
            data=[{"currency_code": "USD", "rate_to_xof": "605.12"}]
        )

        assert get_rate_to_xof("usd") == Decimal("605.12")
        mock_supabase.table.assert_called_with("exchange_rates")
        mock_supabase.table.return_value.select.return_value.eq.assert_called_with("currency_code", "USD")

    def test_missing_rate_raises(self, mock_supabase):
        _rate_query(mock_supabase).execute.return_value = MagicMock(data=[])

        with pytest.raises(ValueError, match="USD"):
            get_rate_to_xof("USD")

    def test_convert_usd(self, mock_supabase):
        _rate_query(mock_supabase).execute.return_value = MagicMock(
            data=[{"currency_code": "USD", "rate_to_xof": 600}]
        )
        assert convert_to_xof(Decimal("10"), "USD") == Decimal("6000")

    def test_convert_without_lookup(self, mock_supabase):
        assert convert_to_xof(Decimal("10"), "EUR") == Decimal("6559.57")
        assert convert_to_xof(Decimal("10"), "FCFA") == Decimal("10")
        assert convert_to_xof(Decimal("0"), "USD") == Decimal("0")
        mock_supabase.table.assert_not_called()


# =============================================================================
# FORMATTING
# =============================================================================

class TestFormatXof:
    """Tests for format_xof."""

    def test_thousands_grouping(self):
        assert format_xof(Decimal("1234567")) == "1 234 567 FCFA"

    def test_rounds_half_up(self):
        assert format_xof(Decimal("999.5")) == "1 000 FCFA"

    def test_small_amount(self):
        assert format_xof(Decimal("0")) == "0 FCFA"
