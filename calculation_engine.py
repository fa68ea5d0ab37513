"""
Customs Duty & Freight Pricing - Calculation Engine
Implements CAF derivation, CAF distribution across tariff lines and the
duty/tax cascade for imports valued in XOF.

CURRENCY HANDLING:
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
ALL CALCULATIONS HAPPEN IN XOF (FCFA).

Flow:
1. Article values arrive in their declared currency (EUR, XOF, ...)
2. currency_service.to_settlement_currency() normalizes them for ratios
3. CAF total is split across HS codes (proportional, or equal fallback)
4. Each HS code runs the duty cascade on its CAF share
5. Totals are rounded to the unit only when the breakdown is assembled

Cascade order is a legal requirement: each base depends on prior stages.
━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
"""

from decimal import Decimal, ROUND_DOWN
from typing import Dict, List, Mapping, Optional, Sequence, Union
import logging

from calculation_guards import round_to_unit, to_non_negative
from calculation_mapper import find_tariff_code, normalize_hs_code, strip_hs_code
from calculation_models import (
    Article,
    CafCalculation,
    CafDistributionResult,
    CafMethod,
    CustomsRegime,
    DistributionMethod,
    DutyBreakdown,
    DutyCode,
    DutyLine,
    DutyTotals,
    OriginInfo,
    PricingConfig,
    QuoteIssue,
    ShipmentDutyLine,
    ShipmentDutyResult,
    TariffCode,
    TariffCodeNotFound,
)
from services.currency_service import format_xof, to_settlement_currency

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENTIME = Decimal("0.01")


# ============================================================================
# REFERENCE MAPPINGS
# ============================================================================

# Incoterm -> how CAF is derived from the invoice value
INCOTERM_CAF_METHOD = {
    "EXW": CafMethod.FOB_PLUS_FREIGHT,
    "FCA": CafMethod.FOB_PLUS_FREIGHT,
    "FAS": CafMethod.FOB_PLUS_FREIGHT,
    "FOB": CafMethod.FOB_PLUS_FREIGHT,
    "CFR": CafMethod.INVOICE_VALUE,
    "CIF": CafMethod.INVOICE_VALUE,
    "CPT": CafMethod.INVOICE_VALUE,
    "CIP": CafMethod.INVOICE_VALUE,
    "DAP": CafMethod.INVOICE_VALUE,
    "DPU": CafMethod.INVOICE_VALUE,
    "DDP": CafMethod.INVOICE_VALUE,
}

DUTY_NAMES = {
    DutyCode.DD: "Droit de Douane",
    DutyCode.SURTAXE: "Surtaxe",
    DutyCode.RS: "Redevance Statistique",
    DutyCode.PCS: "Prélèvement Communautaire de Solidarité",
    DutyCode.PCC: "Prélèvement CEDEAO",
    DutyCode.COSEC: "COSEC",
    DutyCode.TIN: "Taxe Intérieure",
    DutyCode.TCI: "Taxe Conjoncturelle à l'Importation",
    DutyCode.TEV: "Taxe Environnementale Véhicules",
    DutyCode.T_PAST: "Taxe Pastorale",
    DutyCode.T_PARA: "Taxe Parafiscale",
    DutyCode.T_CIMENT: "Taxe sur le Ciment",
    DutyCode.TVA: "Taxe sur la Valeur Ajoutée",
    DutyCode.BIC: "Acompte BIC",
}

# Steps 1-6
CUSTOMS_DUTY_CODES = frozenset({
    DutyCode.DD, DutyCode.SURTAXE, DutyCode.RS, DutyCode.PCS, DutyCode.PCC, DutyCode.COSEC,
})

# Steps 8-10
INTERNAL_TAX_CODES = frozenset({
    DutyCode.TIN, DutyCode.TCI, DutyCode.TEV, DutyCode.T_PAST, DutyCode.T_PARA, DutyCode.T_CIMENT,
})

# Regime applied when none is given: every tax applies
NO_REGIME = CustomsRegime(code="")


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def percent_of(base: Decimal, rate: Decimal) -> Decimal:
    """rate is a percentage: percent_of(1000, 18) == 180. Full precision."""
    return base * rate / HUNDRED


def rate_or_default(rate: Optional[Decimal], default: Decimal) -> Decimal:
    """Tariff rate when set on the HS code, otherwise the configured default"""
    return default if rate is None else rate


def _duty_line(
    code: DutyCode,
    rate: Decimal,
    base: Decimal,
    notes: Optional[str] = None
) -> DutyLine:
    return DutyLine(
        name=DUTY_NAMES[code],
        code=code,
        rate=rate,
        base=base,
        amount=percent_of(base, rate),
        notes=notes,
    )


# ============================================================================
# CAF DERIVATION (incoterm)
# ============================================================================

def calculate_caf(
    incoterm: Optional[str],
    invoice_value: Decimal,
    freight_amount: Optional[Decimal] = None,
    insurance_rate: Optional[Decimal] = None,
    config: Optional[PricingConfig] = None
) -> CafCalculation:
    """
    Derive the CAF (cost, insurance, freight) value from the invoice value.

    C/D-group incoterms already include freight: CAF = invoice value.
    E/F-group incoterms: CAF = FOB + freight + insurance on (FOB + freight).
    Freight defaults to an estimate (8% of FOB) when not provided.
    """
    config = config or PricingConfig()
    warnings: List[str] = []
    code = (incoterm or "CIF").strip().upper()
    invoice_value = Decimal(invoice_value)

    method = INCOTERM_CAF_METHOD.get(code)
    if method is None:
        warnings.append(f"Incoterm inconnu ({code}) — valeur facture utilisée comme CAF")
        logger.warning(f"Unknown incoterm {code}, using invoice value as CAF")
        method = CafMethod.INVOICE_VALUE

    if method == CafMethod.INVOICE_VALUE:
        return CafCalculation(
            fob_value=invoice_value,
            freight_amount=ZERO,
            insurance_rate=ZERO,
            insurance_amount=ZERO,
            caf_value=invoice_value,
            method=method,
            warnings=warnings,
        )

    rate = config.rate_insurance if insurance_rate is None else Decimal(insurance_rate)
    if freight_amount is not None and Decimal(freight_amount) > 0:
        freight = Decimal(freight_amount)
    else:
        freight = invoice_value * config.rate_freight_estimate
        warnings.append(
            f"Fret non fourni — estimé à {(config.rate_freight_estimate * HUNDRED).normalize():f}% de la valeur FOB"
        )
    insurance = (invoice_value + freight) * rate

    return CafCalculation(
        fob_value=invoice_value,
        freight_amount=freight,
        insurance_rate=rate,
        insurance_amount=insurance,
        caf_value=invoice_value + freight + insurance,
        method=method,
        warnings=warnings,
    )


# ============================================================================
# CAF DISTRIBUTION ACROSS HS CODES
# ============================================================================

def equal_split(caf_total: Decimal, count: int) -> List[Decimal]:
    """
    Split caf_total in `count` equal shares.

    Shares are truncated to the centime and the last share absorbs the
    remainder, so the sum is exact.
    """
    if count <= 0:
        return []
    share = (caf_total / count).quantize(CENTIME, rounding=ROUND_DOWN)
    shares = [share] * (count - 1)
    shares.append(caf_total - share * (count - 1))
    return shares


def distribute_caf(
    hs_codes: Sequence[str],
    caf_total: Decimal,
    articles: Optional[Sequence[Article]] = None,
    config: Optional[PricingConfig] = None
) -> CafDistributionResult:
    """
    Allocate the CAF total across HS codes proportionally to article values.

    Steps:
    1. Fewer than 2 articles -> equal split (1 code gets the whole CAF)
    2. Sum XOF-normalized article values per digits-only HS code
    3. Total value <= 0 -> equal split
    4. Coverage guard: every requested code must carry a positive value,
       otherwise equal split + warning
    5. Duplicate HS codes -> equal split + warning
    6. First N-1 codes get round(caf_total * ratio); the last gets the remainder

    Guarantee: sum(shares) == caf_total for every path.
    """
    caf_total = Decimal(caf_total)
    warnings: List[str] = []
    shares: List[Decimal] = []
    method = DistributionMethod.EQUAL

    if not hs_codes:
        warnings.append("Aucun code HS fourni — répartition CAF impossible")
        return CafDistributionResult(shares=[], method=method, warnings=warnings)

    has_articles = bool(articles) and len(articles) >= 2
    distinct_codes = {normalize_hs_code(code) for code in hs_codes}
    if has_articles and len(distinct_codes) != len(hs_codes):
        warnings.append("Codes HS en double — répartition équitable utilisée")
        logger.warning(f"Duplicate HS codes in {list(hs_codes)}, using equal CAF distribution")
    elif has_articles:
        value_by_code: Dict[str, Decimal] = {}
        for article in articles:
            key = strip_hs_code(article.hs_code)
            value_xof = to_settlement_currency(article.value, article.currency, warnings, config)
            value_by_code[key] = value_by_code.get(key, ZERO) + value_xof

        total_value = sum(value_by_code.values(), ZERO)

        if total_value > 0:
            covered = sum(
                1 for code in hs_codes
                if value_by_code.get(strip_hs_code(code), ZERO) > 0
            )

            if covered != len(hs_codes):
                warnings.append(
                    f"Détails articles incomplets : {covered}/{len(hs_codes)} HS couverts "
                    f"— répartition équitable utilisée"
                )
                logger.warning(f"Incomplete coverage {covered}/{len(hs_codes)}, using equal CAF distribution")
                shares = equal_split(caf_total, len(hs_codes))
            else:
                distributed = ZERO
                last_index = len(hs_codes) - 1
                for index, code in enumerate(hs_codes):
                    if index == last_index:
                        shares.append(caf_total - distributed)
                    else:
                        ratio = value_by_code[strip_hs_code(code)] / total_value
                        share = round_to_unit(caf_total * ratio)
                        shares.append(share)
                        distributed += share
                method = DistributionMethod.PROPORTIONAL
                logger.debug(f"Proportional CAF: total_value={total_value}, shares={shares}")

    # Fallback: equal distribution if nothing usable was computed
    if len(shares) != len(hs_codes):
        shares = equal_split(caf_total, len(hs_codes))
        method = DistributionMethod.EQUAL

    return CafDistributionResult(shares=shares, method=method, warnings=warnings)


# ============================================================================
# DUTY CASCADE
# ============================================================================

def summarize_duty_lines(lines: Sequence[DutyLine], caf_value: Decimal) -> DutyTotals:
    """
    Aggregate duty lines into rounded totals.

    Sums are taken at full precision and rounded once.
    """
    customs = sum((l.amount for l in lines if l.code in CUSTOMS_DUTY_CODES), ZERO)
    internal = sum((l.amount for l in lines if l.code in INTERNAL_TAX_CODES), ZERO)
    vat = sum((l.amount for l in lines if l.code == DutyCode.TVA), ZERO)
    advance = sum((l.amount for l in lines if l.code == DutyCode.BIC), ZERO)
    grand_total = sum((l.amount for l in lines), ZERO)

    return DutyTotals(
        customs_duties=round_to_unit(customs),
        internal_taxes=round_to_unit(internal),
        vat=round_to_unit(vat),
        advance_tax=round_to_unit(advance),
        grand_total=round_to_unit(grand_total),
        taxable_value=round_to_unit(caf_value + grand_total),
    )


def compute_duty_lines(
    tariff: TariffCode,
    caf_value: Decimal,
    origin: Optional[OriginInfo] = None,
    regime: Optional[CustomsRegime] = None,
    config: Optional[PricingConfig] = None
) -> List[DutyLine]:
    """
    Run the duty cascade for one HS code on its CAF value.

    Returns the ordered duty lines at full precision.
    """
    origin = origin or OriginInfo()
    regime = regime or NO_REGIME
    config = config or PricingConfig()
    caf = Decimal(caf_value)
    exempt_note = f"Exonéré (régime {regime.code})"

    lines: List[DutyLine] = []

    # 1. Droit de Douane (DD)
    dd = _duty_line(
        DutyCode.DD,
        (tariff.dd or ZERO) if regime.dd else ZERO,
        caf,
        None if regime.dd else exempt_note,
    )
    lines.append(dd)

    # 2. Surtaxe - only listed when the HS code carries one
    surtax_rate = tariff.surtaxe or ZERO
    if surtax_rate > 0:
        lines.append(_duty_line(
            DutyCode.SURTAXE,
            surtax_rate if regime.stx else ZERO,
            caf,
            None if regime.stx else exempt_note,
        ))

    # 3. Redevance Statistique (RS)
    rs = _duty_line(
        DutyCode.RS,
        rate_or_default(tariff.rs, config.rate_rs) if regime.rs else ZERO,
        caf,
        None if regime.rs else exempt_note,
    )
    lines.append(rs)

    # 4. Prélèvement Communautaire de Solidarité (PCS)
    lines.append(_duty_line(
        DutyCode.PCS,
        rate_or_default(tariff.pcs, config.rate_pcs) if regime.pcs else ZERO,
        caf,
        None if regime.pcs else exempt_note,
    ))

    # 5. Prélèvement CEDEAO (PCC) - zero for origins inside the bloc
    if not regime.pcc:
        pcc_rate, pcc_notes = ZERO, exempt_note
    elif origin.is_cedeao:
        pcc_rate, pcc_notes = ZERO, "Exonéré (origine CEDEAO)"
    else:
        pcc_rate, pcc_notes = rate_or_default(tariff.pcc, config.rate_pcc), None
    lines.append(_duty_line(DutyCode.PCC, pcc_rate, caf, pcc_notes))

    # 6. COSEC
    lines.append(_duty_line(
        DutyCode.COSEC,
        rate_or_default(tariff.cosec, config.rate_cosec) if regime.cosec else ZERO,
        caf,
        None if regime.cosec else exempt_note,
    ))

    # 7. Intermediate base for internal tax
    intermediate_base = caf + dd.amount + rs.amount

    # 8. Taxe Intérieure (TIN)
    tin_amount = ZERO
    tin_rate = tariff.tin or ZERO
    if tin_rate > 0:
        tin = _duty_line(
            DutyCode.TIN,
            tin_rate if regime.tin else ZERO,
            intermediate_base,
            None if regime.tin else exempt_note,
        )
        tin_amount = tin.amount
        lines.append(tin)

    # 9. Taxe Conjoncturelle à l'Importation (TCI) - protective tax
    tci_amount = ZERO
    tci_rate = tariff.t_conj or ZERO
    if tci_rate > 0:
        tci = _duty_line(DutyCode.TCI, tci_rate, caf, "Protection produits locaux (sucre, huiles)")
        tci_amount = tci.amount
        lines.append(tci)

    # 10. Special taxes, each rate x CAF, only when set
    tev_rate = tariff.tev or ZERO
    if tev_rate > 0:
        lines.append(_duty_line(DutyCode.TEV, tev_rate, caf))

    past_rate = tariff.t_past or ZERO
    if past_rate > 0:
        lines.append(_duty_line(
            DutyCode.T_PAST,
            past_rate if regime.tpast else ZERO,
            caf,
            None if regime.tpast else exempt_note,
        ))

    para_rate = tariff.t_para or ZERO
    if para_rate > 0:
        lines.append(_duty_line(DutyCode.T_PARA, para_rate, caf))

    ciment_rate = tariff.t_ciment or ZERO
    if ciment_rate > 0:
        lines.append(_duty_line(DutyCode.T_CIMENT, ciment_rate, caf))

    # 11. VAT base
    vat_base = caf + dd.amount + rs.amount + tin_amount + tci_amount

    # 12. TVA
    if not regime.tva:
        tva_rate, tva_notes = ZERO, exempt_note
    else:
        tva_rate = rate_or_default(tariff.tva, config.rate_tva)
        tva_notes = "Exonéré" if tva_rate == 0 else None
    lines.append(_duty_line(DutyCode.TVA, tva_rate, vat_base, tva_notes))

    # 13. Acompte BIC - HS code flag and importer not CGE
    bic_applicable = tariff.bic and not origin.is_cge
    if origin.is_cge:
        bic_notes = "Exonéré (entreprise CGE)"
    elif not tariff.bic:
        bic_notes = "Non applicable"
    else:
        bic_notes = None
    lines.append(_duty_line(
        DutyCode.BIC,
        config.rate_bic if bic_applicable else ZERO,
        vat_base,
        bic_notes,
    ))

    return lines


def compute_duties(
    tariff: TariffCode,
    caf_value: Decimal,
    origin: Optional[OriginInfo] = None,
    regime: Optional[CustomsRegime] = None,
    config: Optional[PricingConfig] = None,
    issues: Optional[List[QuoteIssue]] = None
) -> DutyBreakdown:
    """
    Compute the full duty breakdown for one HS code.

    Pure function of (tariff, caf_value, origin, regime, config): the same
    inputs always produce the same breakdown.
    """
    origin = origin or OriginInfo()
    caf = Decimal(caf_value)

    lines = compute_duty_lines(tariff, caf, origin, regime, config)
    totals = summarize_duty_lines(lines, caf)

    logger.debug(f"Duties for {tariff.code} on CAF {caf}: total={totals.grand_total}")

    return DutyBreakdown(
        hs_code=tariff.code,
        description=tariff.description,
        chapter=tariff.chapter,
        mercurialis=tariff.mercurialis,
        caf_value=caf,
        origin=origin,
        regime_code=regime.code if regime else None,
        regime_name=regime.name if regime else None,
        lines=lines,
        totals=totals,
        formatted={
            "caf_value": format_xof(caf),
            "total_debours": format_xof(totals.grand_total),
            "valeur_imposable": format_xof(totals.taxable_value),
        },
        issues=issues or [],
    )


def compute_duties_for_code(
    code: str,
    caf_value: object,
    lookup: Mapping[str, TariffCode],
    origin: Optional[OriginInfo] = None,
    regime: Optional[CustomsRegime] = None,
    config: Optional[PricingConfig] = None
) -> Union[DutyBreakdown, TariffCodeNotFound]:
    """
    Look up an HS code and compute its duties.

    An unknown code is a typed TariffCodeNotFound result, not an exception.
    An invalid CAF value is sanitized (recorded as an issue) and treated as 0.
    """
    tariff = find_tariff_code(lookup, code)
    if tariff is None:
        logger.info(f"HS code {code} not found in reference data")
        return TariffCodeNotFound(code=code)

    issues: List[QuoteIssue] = []
    caf = to_non_negative(caf_value, "caf_value", issues)
    return compute_duties(tariff, caf if caf is not None else ZERO, origin, regime, config, issues)


# ============================================================================
# SHIPMENT (MULTI HS CODE) AGGREGATION
# ============================================================================

def compute_shipment_duties(
    hs_codes: Sequence[str],
    caf_total: Decimal,
    lookup: Mapping[str, TariffCode],
    articles: Optional[Sequence[Article]] = None,
    origin: Optional[OriginInfo] = None,
    regime: Optional[CustomsRegime] = None,
    config: Optional[PricingConfig] = None
) -> ShipmentDutyResult:
    """
    Distribute the CAF total across HS codes and run the cascade per code.

    Codes missing from the reference data are reported and skipped; totals
    cover the codes that were found.
    """
    caf_total = Decimal(caf_total)
    distribution = distribute_caf(hs_codes, caf_total, articles, config)
    warnings = list(distribution.warnings)

    shipment_lines: List[ShipmentDutyLine] = []
    missing_codes: List[str] = []
    all_duty_lines: List[DutyLine] = []
    found_caf = ZERO

    for index, (code, share) in enumerate(zip(hs_codes, distribution.shares), start=1):
        tariff = find_tariff_code(lookup, code)
        if tariff is None:
            missing_codes.append(code)
            warnings.append(f"Code HS {code} non trouvé (article {index}) - Droits à calculer manuellement")
            logger.warning(f"HS code {code} not found (article {index})")
            continue

        breakdown = compute_duties(tariff, share, origin, regime, config)
        shipment_lines.append(ShipmentDutyLine(
            article_index=index,
            hs_code=code,
            caf_share=share,
            breakdown=breakdown,
        ))
        all_duty_lines.extend(breakdown.lines)
        found_caf += share

    return ShipmentDutyResult(
        caf_total=caf_total,
        distribution=distribution,
        lines=shipment_lines,
        missing_codes=missing_codes,
        totals=summarize_duty_lines(all_duty_lines, found_caf),
        warnings=warnings,
    )
