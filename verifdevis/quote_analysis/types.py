"""
Structures de données échangées entre les étapes de l'analyse.

ExtractedData, MarketPriceLine et ScoringResult sont immuables : une fois
produites par leur étape, elles ne sont plus modifiées. VerificationResult est
construit progressivement par le vérificateur puis transmis tel quel au score.
"""

import dataclasses
import datetime
import enum
from dataclasses import dataclass, field

from verifdevis.quote_analysis.models import DocumentType, ScoreColor


class Severity(enum.IntEnum):
    """Sévérité locale d'une facette. L'ordre est utilisé pour l'agrégation."""

    OK = 0
    WARNING = 1
    CRITICAL = 2

    def to_score(self) -> ScoreColor:
        return {
            Severity.OK: ScoreColor.VERT,
            Severity.WARNING: ScoreColor.ORANGE,
            Severity.CRITICAL: ScoreColor.ROUGE,
        }[self]


def to_jsonable(value):
    """Conversion récursive (dataclasses, tuples, enums, dates) vers des types JSON."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    return value


################################################################################
## Données extraites


@dataclass(frozen=True)
class LineItem:
    label: str
    category: str = "autres"
    quantity: float | None = None
    unit: str | None = None
    unit_price: float | None = None
    amount_ht: float | None = None
    amount_ttc: float | None = None

    @property
    def effective_unit_price(self) -> float | None:
        if self.unit_price is not None:
            return self.unit_price
        if self.amount_ht is not None and self.quantity:
            return self.amount_ht / self.quantity
        return None


@dataclass(frozen=True)
class CompanyInfo:
    name: str | None = None
    siret: str | None = None
    address: str | None = None
    postal_code: str | None = None
    city: str | None = None
    trade: str | None = None
    identifier_candidates: tuple[str, ...] = ()

    @property
    def siren(self) -> str | None:
        if self.siret and len(self.siret) >= 9:
            return self.siret[:9]
        return None


@dataclass(frozen=True)
class SiteInfo:
    address: str | None = None
    postal_code: str | None = None
    city: str | None = None


@dataclass(frozen=True)
class PaymentTerms:
    deposit_pct: float | None = None
    deposit_before_works_pct: float | None = None
    schedule_detected: bool = False
    modes: tuple[str, ...] = ()
    iban: str | None = None

    @property
    def effective_deposit_pct(self) -> float | None:
        if self.deposit_before_works_pct is not None:
            return self.deposit_before_works_pct
        if not self.schedule_detected:
            return self.deposit_pct
        return None


@dataclass(frozen=True)
class InsurancePolicy:
    """Assurance déclarée sur le devis ou sur une attestation."""

    kind: str
    mentioned: bool | None = None
    insurer: str | None = None
    policy_number: str | None = None
    valid_from: datetime.date | None = None
    valid_until: datetime.date | None = None
    covered_activities: tuple[str, ...] = ()


@dataclass(frozen=True)
class Guarantees:
    decennale: InsurancePolicy = field(default_factory=lambda: InsurancePolicy(kind="decennale"))
    rc_pro: InsurancePolicy = field(default_factory=lambda: InsurancePolicy(kind="rc_pro"))
    certifications: tuple[str, ...] = ()

    def get(self, kind: str) -> InsurancePolicy:
        return self.decennale if kind == "decennale" else self.rc_pro


@dataclass(frozen=True)
class ExtractedData:
    company: CompanyInfo = field(default_factory=CompanyInfo)
    site: SiteInfo = field(default_factory=SiteInfo)
    items: tuple[LineItem, ...] = ()
    total_ht: float | None = None
    total_tva: float | None = None
    total_ttc: float | None = None
    vat_rates: tuple[float, ...] = ()
    payment: PaymentTerms = field(default_factory=PaymentTerms)
    guarantees: Guarantees = field(default_factory=Guarantees)
    document_type: DocumentType = DocumentType.DEVIS
    quote_date: datetime.date | None = None
    raw_text: str = ""

    @property
    def items_total_ht(self) -> float | None:
        amounts = [item.amount_ht for item in self.items if item.amount_ht is not None]
        if not amounts:
            return None
        return round(sum(amounts), 2)

    @property
    def job_types(self) -> list[str]:
        seen = []
        for item in self.items:
            if item.category not in seen:
                seen.append(item.category)
        return seen

    def to_dict(self) -> dict:
        data = to_jsonable(self)
        data.pop("raw_text")
        data["company"]["siren"] = self.company.siren
        return data


################################################################################
## Vérification entreprise


class LookupStatus(enum.StrEnum):
    OK = "ok"
    NOT_FOUND = "not_found"
    NO_SIRET = "no_siret"
    ERROR = "error"
    SKIPPED = "skipped"


class ActivityStatus(enum.StrEnum):
    ACTIVE = "active"
    CEASED = "ceased"
    INSOLVENCY = "insolvency"


@dataclass
class FinancialYear:
    closing_date: str | None = None
    revenue: float | None = None
    net_result: float | None = None
    equity: float | None = None
    debt_ratio: float | None = None
    liquidity_ratio: float | None = None
    financial_autonomy: float | None = None

    @property
    def loss_pct_of_revenue(self) -> float | None:
        if self.net_result is None or self.net_result >= 0 or not self.revenue or self.revenue <= 0:
            return None
        return abs(self.net_result / self.revenue * 100)


@dataclass
class CompanyRecord:
    """Fiche entreprise telle que mise en cache (réponse registre normalisée)."""

    name: str | None = None
    address: str | None = None
    postal_code: str | None = None
    city: str | None = None
    creation_date: str | None = None
    is_active: bool = True
    procedure_collective: bool = False
    activity_label: str | None = None
    finances: list[FinancialYear] = field(default_factory=list)

    def to_payload(self) -> dict:
        return to_jsonable(self)

    @classmethod
    def from_payload(cls, payload: dict) -> "CompanyRecord":
        data = dict(payload)
        year_fields = {f.name for f in dataclasses.fields(FinancialYear)}
        data["finances"] = [
            FinancialYear(**{k: v for k, v in f.items() if k in year_fields}) for f in data.get("finances") or []
        ]
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class SourceStatus:
    name: str
    status: str = "skipped"  # ok | unknown | skipped
    error: str | None = None
    cache_hit: bool = False
    latency_ms: int | None = None


@dataclass
class SiteContext:
    commune: str | None = None
    code_insee: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    risks_checked: bool = False
    risks: list[str] = field(default_factory=list)
    seismic_zone: str | None = None
    heritage_checked: bool = False
    heritage_status: str = "inconnu"  # possible | non_detecte | inconnu
    heritage_types: list[str] = field(default_factory=list)


@dataclass
class GuaranteeCheck:
    """Cohérence d'une garantie (décennale, RC Pro) avec le devis."""

    kind: str
    level: ScoreColor
    present: bool
    reasons: list[str] = field(default_factory=list)


@dataclass
class VerificationResult:
    lookup_status: LookupStatus = LookupStatus.SKIPPED
    identifier_status: str = "absent"  # valid | absent | invalid
    exists: bool | None = None
    activity_status: ActivityStatus | None = None
    official_name: str | None = None
    official_address: str | None = None
    official_city: str | None = None
    creation_date: str | None = None
    age_years: int | None = None
    procedure_collective: bool | None = None
    finances: list[FinancialYear] = field(default_factory=list)
    finances_status: str = "skipped"  # ok | not_found | error | skipped
    address_matches: bool | None = None

    iban_checked: bool = False
    iban_valid: bool | None = None
    iban_country: str | None = None
    iban_bank: str | None = None

    rge_relevant: bool = False
    rge_found: bool = False
    rge_qualifications: list[str] = field(default_factory=list)

    google_found: bool = False
    google_rating: float | None = None
    google_reviews: int | None = None

    site_context: SiteContext | None = None
    guarantees: dict[str, GuaranteeCheck] = field(default_factory=dict)
    attestation_comparison: dict | None = None

    sources: dict[str, SourceStatus] = field(default_factory=dict)
    fetched_at: datetime.datetime | None = None

    @property
    def company_unknown(self) -> bool:
        return self.lookup_status in (LookupStatus.ERROR, LookupStatus.NO_SIRET, LookupStatus.SKIPPED)

    @property
    def degraded(self) -> bool:
        return any(s.status == "unknown" for s in self.sources.values())

    @property
    def latest_finances(self) -> FinancialYear | None:
        return self.finances[0] if self.finances else None

    def to_dict(self) -> dict:
        data = to_jsonable(self)
        data["degraded"] = self.degraded
        return data


################################################################################
## Prix de marché


@dataclass(frozen=True)
class ZoneResult:
    zone: str
    coefficient: float
    is_default: bool

    def to_dict(self) -> dict:
        return {"zone": self.zone, "coefficient": self.coefficient, "isDefault": self.is_default}


@dataclass(frozen=True)
class PriceBand:
    min: float
    avg: float
    max: float


@dataclass(frozen=True)
class MarketPriceLine:
    job_type: str
    label: str
    zone: str
    zone_coefficient: float
    zone_is_default: bool
    available: bool
    band: PriceBand | None = None
    unit: str = "forfait"
    reliability: str | None = None  # bon | moyen | faible
    nb_observations: int = 0
    unavailable_reason: str | None = None
    quote_amount_ht: float | None = None
    quote_unit_price: float | None = None
    position: str | None = None  # below | within | above

    def to_dict(self) -> dict:
        return to_jsonable(self)


################################################################################
## Score


@dataclass(frozen=True)
class FacetResult:
    name: str
    severity: Severity
    unknown: bool = False
    critical: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    ok: tuple[str, ...] = ()
    info: tuple[str, ...] = ()


@dataclass(frozen=True)
class StrategicScores:
    ivp_score: int | None
    ipi_score: int | None
    label: str
    breakdown_owner: dict | None
    breakdown_investor: dict | None
    weighted_recovery_rate: float | None

    def to_dict(self) -> dict:
        return to_jsonable(self)


@dataclass(frozen=True)
class ScoringResult:
    score: ScoreColor
    explanation: str
    facets: tuple[FacetResult, ...]
    points_ok: tuple[str, ...]
    alertes: tuple[str, ...]
    recommandations: tuple[str, ...]
    strategic: StrategicScores | None = None

    def facet(self, name: str) -> FacetResult | None:
        for facet in self.facets:
            if facet.name == name:
                return facet
        return None

    def to_dict(self) -> dict:
        return to_jsonable(self)
