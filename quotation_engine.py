"""
Quotation Line Engine

Pure aggregation of manually edited quotation lines:
    input -> guarded sums -> tax -> rounding -> snapshot

No side effects. Every sanitization or rounding decision is reported as a
QuoteIssue in the snapshot rather than raised.
"""

from decimal import Decimal
from typing import List, Sequence

from calculation_guards import apply_rounding, as_money, as_quantity, as_volume_m3, as_weight_kg
from calculation_models import (
    CargoLine,
    CargoMetrics,
    QuotationEngineResult,
    QuotationInput,
    QuotationSnapshot,
    QuotationTotals,
    QuoteIssue,
    RoundingMode,
    ServiceLine,
)

ZERO = Decimal("0")


def sum_cargo_metrics(cargo_lines: Sequence[CargoLine], issues: List[QuoteIssue]) -> CargoMetrics:
    """Guarded sums of quantity, weight and volume over cargo lines"""
    total_quantity = ZERO
    total_weight_kg = ZERO
    total_volume_m3 = ZERO

    for i, line in enumerate(cargo_lines):
        total_quantity += as_quantity(line.quantity, f"cargoLines[{i}].quantity", issues) or ZERO
        total_weight_kg += as_weight_kg(line.weight_kg, f"cargoLines[{i}].weight_kg", issues) or ZERO
        total_volume_m3 += as_volume_m3(line.volume_m3, f"cargoLines[{i}].volume_m3", issues) or ZERO

    return CargoMetrics(
        total_quantity=total_quantity,
        total_weight_kg=total_weight_kg,
        total_volume_m3=total_volume_m3,
    )


def sum_service_subtotal(service_lines: Sequence[ServiceLine], issues: List[QuoteIssue]) -> Decimal:
    """Σ quantity × unit_price, missing or invalid values counting as 0"""
    subtotal = ZERO
    for i, line in enumerate(service_lines):
        quantity = as_quantity(line.quantity, f"serviceLines[{i}].quantity", issues) or ZERO
        unit_price = as_money(line.unit_price, f"serviceLines[{i}].unit_price", issues) or ZERO
        subtotal += quantity * unit_price
    return subtotal


def compute_totals(data: QuotationInput, issues: List[QuoteIssue]) -> QuotationTotals:
    """
    Compute quotation totals.

    tax = total_ht × tax_rate (tax_rate is a fraction, <= 0 means no tax).
    total_ht, total_tax and total_ttc are rounded independently, so
    total_ttc may differ by one unit from total_ht + total_tax.
    """
    context = data.context
    rounding = context.rounding if context else RoundingMode.NONE
    tax_rate = context.tax_rate if context and context.tax_rate is not None else ZERO

    cargo = sum_cargo_metrics(data.cargo_lines, issues)
    subtotal_services = sum_service_subtotal(data.service_lines, issues)

    total_ht = subtotal_services
    total_tax = total_ht * tax_rate if tax_rate > 0 else ZERO
    total_ttc = total_ht + total_tax

    return QuotationTotals(
        subtotal_services=subtotal_services,
        subtotal_cargo_metrics=cargo,
        total_ht=apply_rounding(total_ht, rounding, issues, "totals.total_ht"),
        total_tax=apply_rounding(total_tax, rounding, issues, "totals.total_tax"),
        total_ttc=apply_rounding(total_ttc, rounding, issues, "totals.total_ttc"),
    )


def run_quotation_engine(data: QuotationInput) -> QuotationEngineResult:
    """Run the engine and return the input echoed with its snapshot"""
    issues: List[QuoteIssue] = []
    totals = compute_totals(data, issues)
    return QuotationEngineResult(
        input=data,
        snapshot=QuotationSnapshot(totals=totals, issues=issues),
    )
