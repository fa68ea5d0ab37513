"""
Customs Duty & Freight Pricing - Calculation Models
Pydantic models for duty, CAF distribution, transport rate and quotation inputs

All monetary values are Decimal in settlement currency (XOF/FCFA) internally.
JSON output always emits amounts as plain numbers, never strings.
"""

from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional
from datetime import date
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator


# Decimal internally, plain JSON number on the wire
Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


# ============================================================================
# ENUMS - Tags
# ============================================================================

class QuoteIssueCode(str, Enum):
    """Machine-readable diagnostic codes"""
    EMPTY_LINES_IGNORED = "EMPTY_LINES_IGNORED"
    NEGATIVE_VALUES_COERCED = "NEGATIVE_VALUES_COERCED"
    MISSING_REQUIRED_VALUES = "MISSING_REQUIRED_VALUES"
    NON_FINITE_NUMBER = "NON_FINITE_NUMBER"
    ROUNDING_APPLIED = "ROUNDING_APPLIED"


class RoundingMode(str, Enum):
    """Post-hoc rounding policy for final totals"""
    NONE = "none"
    INTEGER = "integer"


class DistributionMethod(str, Enum):
    """How the CAF total was split across tariff lines"""
    PROPORTIONAL = "proportional"
    EQUAL = "equal"


class CafMethod(str, Enum):
    """CAF derivation by incoterm group"""
    INVOICE_VALUE = "INVOICE_VALUE"        # C/D group: invoice already includes freight
    FOB_PLUS_FREIGHT = "FOB_PLUS_FREIGHT"  # E/F group: add freight + insurance


class DutyCode(str, Enum):
    """Duty/tax line codes, in cascade order"""
    DD = "DD"              # Droit de Douane
    SURTAXE = "SURTAXE"    # Surtaxe
    RS = "RS"              # Redevance Statistique
    PCS = "PCS"            # Prélèvement Communautaire de Solidarité
    PCC = "PCC"            # Prélèvement CEDEAO
    COSEC = "COSEC"        # Conseil Sénégalais des Chargeurs
    TIN = "TIN"            # Taxe Intérieure
    TCI = "TCI"            # Taxe Conjoncturelle à l'Importation
    TEV = "TEV"            # Taxe Environnementale Véhicules
    T_PAST = "T_PAST"      # Taxe Pastorale
    T_PARA = "T_PARA"      # Taxe Parafiscale
    T_CIMENT = "T_CIMENT"  # Taxe sur le Ciment
    TVA = "TVA"            # Taxe sur la Valeur Ajoutée
    BIC = "BIC"            # Acompte BIC (advance income tax)


# ============================================================================
# DIAGNOSTICS
# ============================================================================

class QuoteIssue(BaseModel):
    """Non-throwing diagnostic attached to a guard or rounding decision"""
    code: QuoteIssueCode
    message: str
    path: Optional[str] = None


# ============================================================================
# CONFIGURATION (admin controlled, env overridable)
# ============================================================================

class PricingConfig(BaseModel):
    """Default fiscal rates and reference parities.

    Rates are percentages (1 = 1%) except insurance/freight estimate which are
    fractions of value, matching how they are stored in the reference tables.
    """
    rate_rs: Decimal = Field(default=Decimal("1"), ge=0, le=100, description="Statistical levy %")
    rate_pcs: Decimal = Field(default=Decimal("0.8"), ge=0, le=100, description="Solidarity levy %")
    rate_pcc: Decimal = Field(default=Decimal("0.5"), ge=0, le=100, description="Community (CEDEAO) levy %")
    rate_cosec: Decimal = Field(default=Decimal("0.4"), ge=0, le=100, description="Shipping levy %")
    rate_tva: Decimal = Field(default=Decimal("18"), ge=0, le=100, description="VAT %")
    rate_bic: Decimal = Field(default=Decimal("3"), ge=0, le=100, description="Advance income tax %")
    eur_xof_peg: Decimal = Field(default=Decimal("655.957"), gt=0, description="Fixed EUR -> XOF parity")
    rate_insurance: Decimal = Field(default=Decimal("0.005"), ge=0, le=1, description="Insurance rate on FOB + freight")
    rate_freight_estimate: Decimal = Field(default=Decimal("0.08"), ge=0, le=1, description="Freight estimate when actual freight unknown")


# ============================================================================
# REFERENCE DATA (read-only)
# ============================================================================

class TariffCode(BaseModel):
    """HS code row with its fiscal rates (percent). None = rate not set."""
    model_config = ConfigDict(frozen=True)

    code: str = Field(..., description="HS code as published (e.g. 8504.40.00)")
    code_normalized: str = Field(..., description="Digits only, 10-digit convention")
    description: Optional[str] = None
    chapter: Optional[int] = None

    dd: Optional[Decimal] = Field(default=None, description="Customs duty %")
    surtaxe: Optional[Decimal] = Field(default=None, description="Surtax %")
    rs: Optional[Decimal] = Field(default=None, description="Statistical levy %")
    pcs: Optional[Decimal] = Field(default=None, description="Solidarity levy %")
    pcc: Optional[Decimal] = Field(default=None, description="Community levy %")
    cosec: Optional[Decimal] = Field(default=None, description="Shipping levy %")
    tin: Optional[Decimal] = Field(default=None, description="Internal tax %")
    t_conj: Optional[Decimal] = Field(default=None, description="Conjunctural tax %")
    tev: Optional[Decimal] = Field(default=None, description="Environmental tax %")
    t_past: Optional[Decimal] = Field(default=None, description="Pastoral tax %")
    t_para: Optional[Decimal] = Field(default=None, description="Parafiscal tax %")
    t_ciment: Optional[Decimal] = Field(default=None, description="Cement tax %")
    tva: Optional[Decimal] = Field(default=None, description="VAT %")

    bic: bool = Field(default=False, description="Subject to advance income tax")
    mercurialis: bool = Field(default=False, description="Subject to official valuation override")


class CustomsRegime(BaseModel):
    """Customs regime exemption flags. True = tax applies."""
    model_config = ConfigDict(frozen=True)

    code: str
    name: Optional[str] = None
    dd: bool = True
    stx: bool = True
    rs: bool = True
    tin: bool = True
    tva: bool = True
    cosec: bool = True
    pcs: bool = True
    pcc: bool = True
    tpast: bool = True
    ta: bool = True
    is_active: bool = True


class LocalTransportRate(BaseModel):
    """Trucking rate row from the local transport rate table"""
    model_config = ConfigDict(frozen=True)

    origin: str = ""
    destination: str
    container_type: str
    rate_amount: Amount
    rate_currency: Optional[str] = None
    is_active: bool = True
    validity_start: Optional[date] = None
    validity_end: Optional[date] = None
    provider: Optional[str] = None
    cargo_category: Optional[str] = None


# ============================================================================
# REQUEST-SCOPED INPUTS
# ============================================================================

class OriginInfo(BaseModel):
    """Origin and importer status driving levy exemptions"""
    country: Optional[str] = Field(default=None, description="Origin country (ISO-2 or name)")
    is_cedeao: bool = Field(default=False, description="Origin inside the CEDEAO/ECOWAS bloc")
    is_cge: bool = Field(default=False, description="Importer under CGE status (no advance income tax)")


class Article(BaseModel):
    """A line of goods within a shipment"""
    hs_code: str
    value: Amount
    currency: str = "XOF"
    description: Optional[str] = None

    @field_validator("currency", mode="before")
    @classmethod
    def default_currency(cls, v):
        """Missing currency means settlement currency"""
        return v or "XOF"


class ContainerInfo(BaseModel):
    type: str
    quantity: int = 1


class PricingContext(BaseModel):
    """Request-scoped facts consumed by the transport rate resolver"""
    scope: str = "import"
    container_type: Optional[str] = None
    container_count: Optional[int] = None
    corridor: Optional[str] = None
    origin_port: Optional[str] = None
    destination_port: Optional[str] = None
    origin_country: Optional[str] = None
    destination_country: Optional[str] = None
    containers: List[ContainerInfo] = Field(default_factory=list)
    weight_kg: Optional[Amount] = None
    caf_value: Optional[Amount] = None
    client_code: Optional[str] = None
    destination_city: Optional[str] = None


# ============================================================================
# RESULTS
# ============================================================================

class CafCalculation(BaseModel):
    """CAF derived from invoice value and incoterm"""
    fob_value: Amount
    freight_amount: Amount
    insurance_rate: Amount
    insurance_amount: Amount
    caf_value: Amount
    method: CafMethod
    warnings: List[str] = Field(default_factory=list)


class CafDistributionResult(BaseModel):
    """Per-line CAF shares. Invariant: sum(shares) == caf_total exactly."""
    shares: List[Amount]
    method: DistributionMethod
    warnings: List[str] = Field(default_factory=list)


class DutyLine(BaseModel):
    """One named duty/tax line of the cascade"""
    name: str
    code: DutyCode
    rate: Amount
    base: Amount
    amount: Amount
    notes: Optional[str] = None


class DutyTotals(BaseModel):
    """Aggregated totals, rounded to the unit"""
    customs_duties: Amount
    internal_taxes: Amount
    vat: Amount
    advance_tax: Amount
    grand_total: Amount
    taxable_value: Amount


class DutyBreakdown(BaseModel):
    """Full duty computation for one HS code"""
    hs_code: str
    description: Optional[str] = None
    chapter: Optional[int] = None
    mercurialis: bool = False
    caf_value: Amount
    origin: OriginInfo
    regime_code: Optional[str] = None
    regime_name: Optional[str] = None
    lines: List[DutyLine]
    totals: DutyTotals
    formatted: Dict[str, str] = Field(default_factory=dict)
    issues: List[QuoteIssue] = Field(default_factory=list)


class TariffCodeNotFound(BaseModel):
    """Typed lookup failure for an unknown HS code"""
    error: str = "HS code not found"
    code: str
    suggestion: str = "Vérifiez le code SH ou consultez la nomenclature douanière"


class ShipmentDutyLine(BaseModel):
    article_index: int
    hs_code: str
    caf_share: Amount
    breakdown: DutyBreakdown


class ShipmentDutyResult(BaseModel):
    """Duties for a shipment mixing several HS codes"""
    caf_total: Amount
    distribution: CafDistributionResult
    lines: List[ShipmentDutyLine]
    missing_codes: List[str] = Field(default_factory=list)
    totals: DutyTotals
    warnings: List[str] = Field(default_factory=list)


class RateMatch(BaseModel):
    """Suggested local transport rate with audit explanation"""
    rate: Amount
    currency: str
    source: str = "local_transport_rate"
    confidence: float
    explanation: str


# ============================================================================
# QUOTATION LINES (manual editing)
# ============================================================================

class CargoLine(BaseModel):
    """Cargo line. Numeric fields are untrusted and sanitized by the engine."""
    id: str
    quantity: Optional[Any] = None
    weight_kg: Optional[Any] = None
    volume_m3: Optional[Any] = None
    description: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None


class ServiceLine(BaseModel):
    """Service line. Numeric fields are untrusted and sanitized by the engine."""
    id: str
    description: Optional[str] = None
    quantity: Optional[Any] = None
    unit_price: Optional[Any] = None
    service_code: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None


class QuotationContext(BaseModel):
    currency: Optional[str] = None
    tax_rate: Optional[Decimal] = None
    rounding: RoundingMode = RoundingMode.NONE


class QuotationInput(BaseModel):
    cargo_lines: List[CargoLine] = Field(default_factory=list)
    service_lines: List[ServiceLine] = Field(default_factory=list)
    context: Optional[QuotationContext] = None


class CargoMetrics(BaseModel):
    total_weight_kg: Amount
    total_volume_m3: Amount
    total_quantity: Amount


class QuotationTotals(BaseModel):
    subtotal_services: Amount
    subtotal_cargo_metrics: CargoMetrics
    total_ht: Amount
    total_tax: Amount
    total_ttc: Amount


class QuotationSnapshot(BaseModel):
    totals: QuotationTotals
    issues: List[QuoteIssue] = Field(default_factory=list)


class QuotationEngineResult(BaseModel):
    input: QuotationInput
    snapshot: QuotationSnapshot
