"""
Numeric Guard

Non-destructive sanitization of untrusted numeric inputs.
Issues are collected in a caller-owned list; nothing here raises.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, List, Optional

from calculation_models import QuoteIssue, QuoteIssueCode, RoundingMode


def to_finite_decimal(value: Any) -> Optional[Decimal]:
    """Convert to a finite Decimal, or None when the value is not a real number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float, str)):
        try:
            number = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return None
    else:
        return None
    if not number.is_finite():
        return None
    return number


def to_non_negative(value: Any, path: str, issues: List[QuoteIssue]) -> Optional[Decimal]:
    """
    Validate a value as a non-negative finite number.

    - None -> None, no issue
    - NaN / Infinity / non-numeric -> None + NON_FINITE_NUMBER
    - negative -> 0 + NEGATIVE_VALUES_COERCED
    """
    if value is None:
        return None

    number = to_finite_decimal(value)
    if number is None:
        issues.append(QuoteIssue(
            code=QuoteIssueCode.NON_FINITE_NUMBER,
            message="Valeur numérique non finie ignorée",
            path=path,
        ))
        return None

    if number < 0:
        issues.append(QuoteIssue(
            code=QuoteIssueCode.NEGATIVE_VALUES_COERCED,
            message="Valeur négative ramenée à 0",
            path=path,
        ))
        return Decimal("0")

    return number


def as_money(value: Any, path: str, issues: List[QuoteIssue]) -> Optional[Decimal]:
    return to_non_negative(value, path, issues)


def as_quantity(value: Any, path: str, issues: List[QuoteIssue]) -> Optional[Decimal]:
    return to_non_negative(value, path, issues)


def as_weight_kg(value: Any, path: str, issues: List[QuoteIssue]) -> Optional[Decimal]:
    return to_non_negative(value, path, issues)


def as_volume_m3(value: Any, path: str, issues: List[QuoteIssue]) -> Optional[Decimal]:
    return to_non_negative(value, path, issues)


def round_to_unit(value: Decimal) -> Decimal:
    """Round half-up to a whole currency unit."""
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def apply_rounding(
    value: Decimal,
    mode: Optional[RoundingMode],
    issues: List[QuoteIssue],
    path: str
) -> Decimal:
    """
    Apply the post-hoc rounding policy to a final total.

    Only emits ROUNDING_APPLIED when the value actually changed.
    """
    if mode == RoundingMode.INTEGER:
        rounded = round_to_unit(value)
        if rounded != value:
            issues.append(QuoteIssue(
                code=QuoteIssueCode.ROUNDING_APPLIED,
                message="Arrondi appliqué (integer)",
                path=path,
            ))
        return rounded
    return value
