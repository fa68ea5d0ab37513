"""
Tests for CAF derivation and distribution (calculation_engine)

Regression scenarios for the CAF distributor:
- Proportional split by article value (EUR converted at the fixed peg)
- Equal split fallbacks (no articles, single article, incomplete coverage)
- Mixed currencies normalized before computing ratios
- Sum of shares always equals the CAF total
"""

import pytest
from decimal import Decimal
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from calculation_engine import calculate_caf, distribute_caf, equal_split
from calculation_models import Article, CafMethod, DistributionMethod, PricingConfig


def _article(hs_code, value, currency="EUR"):
    return Article(hs_code=hs_code, value=Decimal(str(value)), currency=currency)


# =============================================================================
# DISTRIBUTION
# =============================================================================

class TestProportionalDistribution:
    """Article values cover every requested HS code."""

    def test_two_codes_by_eur_value(self):
        caf_total = Decimal("3053480")
        result = distribute_caf(
            ["8504.40.00", "8537.10.00"],
            caf_total,
            [_article("8504.40.00", 165), _article("8537.10.00", 3760)],
        )

        assert result.method == DistributionMethod.PROPORTIONAL
        # round(3053480 * 165 / 3925) = round(128362.85...)
        assert result.shares[0] == Decimal("128363")
        assert result.shares[1] == caf_total - Decimal("128363")
        assert sum(result.shares) == caf_total
        assert result.warnings == []

    def test_mixed_currencies_normalized(self):
        result = distribute_caf(
            ["8504.40.00", "8537.10.00"],
            Decimal("2000000"),
            [_article("8504.40.00", 1000, "EUR"), _article("8537.10.00", 655957, "XOF")],
        )

        assert result.method == DistributionMethod.PROPORTIONAL
        assert result.shares == [Decimal("1000000"), Decimal("1000000")]

    def test_code_spelling_ignored(self):
        result = distribute_caf(
            ["8504.40.00", "8537.10.00"],
            Decimal("1000"),
            [_article("85044000", 1), _article("8537 10 00", 3)],
        )
        assert result.method == DistributionMethod.PROPORTIONAL
        assert result.shares == [Decimal("250"), Decimal("750")]

    def test_values_summed_per_code(self):
        result = distribute_caf(
            ["8504.40.00", "8537.10.00"],
            Decimal("1000"),
            [
                _article("8504.40.00", 1, "XOF"),
                _article("8504.40.00", 1, "XOF"),
                _article("8537.10.00", 2, "XOF"),
            ],
        )
        assert result.shares == [Decimal("500"), Decimal("500")]

    def test_unsupported_currency_warns_but_distributes(self):
        result = distribute_caf(
            ["8504.40.00", "8537.10.00"],
            Decimal("1000"),
            [_article("8504.40.00", 100, "USD"), _article("8537.10.00", 100, "USD")],
        )
        assert result.method == DistributionMethod.PROPORTIONAL
        assert sum(result.shares) == Decimal("1000")
        assert "Devise article non supportée (USD) — répartition CAF peut être inexacte" in result.warnings

    def test_custom_peg_from_config(self):
        config = PricingConfig(eur_xof_peg=Decimal("1"))
        result = distribute_caf(
            ["8504.40.00", "8537.10.00"],
            Decimal("100"),
            [_article("8504.40.00", 1, "EUR"), _article("8537.10.00", 1, "XOF")],
            config,
        )
        assert result.shares == [Decimal("50"), Decimal("50")]


class TestEqualDistribution:
    """Fallbacks to an equal split."""

    def test_no_articles(self):
        caf_total = Decimal("3053480")
        result = distribute_caf(["8504.40.00", "8537.10.00"], caf_total)

        assert result.method == DistributionMethod.EQUAL
        assert result.shares == [caf_total / 2, caf_total / 2]

    def test_single_code_gets_everything(self):
        result = distribute_caf(["8504.40.00"], Decimal("3053480"), [_article("8504.40.00", 165)])

        assert result.method == DistributionMethod.EQUAL
        assert result.shares == [Decimal("3053480")]

    def test_single_article_for_two_codes(self):
        result = distribute_caf(
            ["8504.40.00", "8537.10.00"],
            Decimal("1000"),
            [_article("8504.40.00", 165)],
        )
        assert result.method == DistributionMethod.EQUAL
        assert result.shares == [Decimal("500"), Decimal("500")]

    def test_incomplete_coverage_warns(self):
        result = distribute_caf(
            ["8504.40.00", "8537.10.00"],
            Decimal("3053480"),
            [_article("8504.40.00", 165), _article("9999.99.00", 3760), _article("9999.99.00", 10)],
        )

        assert result.method == DistributionMethod.EQUAL
        assert result.shares == [Decimal("1526740"), Decimal("1526740")]
        assert result.warnings == [
            "Détails articles incomplets : 1/2 HS couverts — répartition équitable utilisée"
        ]

    def test_duplicate_codes_split_equally(self):
        result = distribute_caf(
            ["1111.00.00", "1111.00", "2222.00.00"],
            Decimal("1000"),
            [_article("1111.00.00", 300, "XOF"), _article("2222.00.00", 100, "XOF")],
        )

        assert result.method == DistributionMethod.EQUAL
        assert result.shares == [Decimal("333.33"), Decimal("333.33"), Decimal("333.34")]
        assert all(share >= 0 for share in result.shares)
        assert result.warnings == ["Codes HS en double — répartition équitable utilisée"]

    def test_zero_total_value(self):
        result = distribute_caf(
            ["8504.40.00", "8537.10.00"],
            Decimal("1000"),
            [_article("8504.40.00", 0), _article("8537.10.00", 0)],
        )
        assert result.method == DistributionMethod.EQUAL
        assert result.shares == [Decimal("500"), Decimal("500")]

    def test_no_codes(self):
        result = distribute_caf([], Decimal("1000"))
        assert result.shares == []
        assert len(result.warnings) == 1

    @pytest.mark.parametrize("count", [1, 2, 3, 7, 11])
    def test_equal_split_sum_is_exact(self, count):
        caf_total = Decimal("1000000")
        shares = equal_split(caf_total, count)
        assert len(shares) == count
        assert sum(shares) == caf_total


# =============================================================================
# CAF DERIVATION
# =============================================================================

class TestCalculateCaf:
    """Incoterm-driven CAF."""

    def test_cif_is_invoice_value(self):
        result = calculate_caf("CIF", Decimal("1000000"))
        assert result.method == CafMethod.INVOICE_VALUE
        assert result.caf_value == Decimal("1000000")
        assert result.warnings == []

    def test_fob_with_freight(self):
        result = calculate_caf("fob", Decimal("1000000"), freight_amount=Decimal("200000"))

        assert result.method == CafMethod.FOB_PLUS_FREIGHT
        assert result.freight_amount == Decimal("200000")
        # (1 000 000 + 200 000) * 0.5%
        assert result.insurance_amount == Decimal("6000")
        assert result.caf_value == Decimal("1206000")

    def test_exw_estimates_freight(self):
        result = calculate_caf("EXW", Decimal("1000000"))

        assert result.freight_amount == Decimal("80000")
        assert result.insurance_amount == Decimal("5400")
        assert result.caf_value == Decimal("1085400")
        assert len(result.warnings) == 1

    def test_unknown_incoterm_uses_invoice_value(self):
        result = calculate_caf("XYZ", Decimal("500"))
        assert result.method == CafMethod.INVOICE_VALUE
        assert result.caf_value == Decimal("500")
        assert result.warnings

    def test_missing_incoterm_defaults_to_cif(self):
        result = calculate_caf(None, Decimal("500"))
        assert result.method == CafMethod.INVOICE_VALUE
        assert result.warnings == []
