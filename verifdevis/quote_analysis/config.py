"""
Configuration injectée dans les composants de l'analyse.

Les valeurs par défaut sont lues une seule fois dans les settings Django au
démarrage (AnalysisConfig.from_settings) puis passées aux constructeurs.
"""

from dataclasses import dataclass, field

from django.conf import settings

from verifdevis.quote_analysis.models import DocumentType, Domain, ZoneType

ALLOWED_MIME_TYPES = (
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/heic",
    "image/webp",
)

DEFAULT_ZONE_COEFFICIENTS = {
    ZoneType.PETITE_VILLE: 0.90,
    ZoneType.VILLE_MOYENNE: 1.00,
    ZoneType.GRANDE_VILLE: 1.20,
}


@dataclass(frozen=True)
class AnalysisConfig:
    max_file_size: int = 10 * 1024 * 1024
    allowed_mime_types: tuple[str, ...] = ALLOWED_MIME_TYPES
    min_text_length: int = 100
    pdf_native_min_words: int = 50
    totals_tolerance: float = 0.01
    source_timeout: float = 5.0
    time_budget_seconds: int = 120
    market_price_min_sample: int = 5
    cache_ttl_ok: int = 30 * 24 * 3600
    cache_ttl_not_found: int = 24 * 3600
    cache_ttl_error: int = 3600
    zone_coefficients: dict = field(default_factory=lambda: dict(DEFAULT_ZONE_COEFFICIENTS))
    extraction_model: str = "openweight-medium"
    vision_model: str = "openweight-medium"
    summary_model: str = "openweight-small"
    ocr_model: str = "mistral-ocr-2512"
    llm_max_retries: int = 1
    summary_enabled: bool = True
    default_domain: str = Domain.TRAVAUX

    @classmethod
    def from_settings(cls) -> "AnalysisConfig":
        return cls(
            max_file_size=settings.ANALYSIS_MAX_FILE_SIZE,
            min_text_length=settings.ANALYSIS_MIN_TEXT_LENGTH,
            pdf_native_min_words=settings.ANALYSIS_PDF_NATIVE_MIN_WORDS,
            totals_tolerance=settings.ANALYSIS_TOTALS_TOLERANCE,
            source_timeout=settings.ANALYSIS_SOURCE_TIMEOUT,
            time_budget_seconds=settings.ANALYSIS_TIME_BUDGET_SECONDS,
            market_price_min_sample=settings.MARKET_PRICE_MIN_SAMPLE,
            cache_ttl_ok=settings.COMPANY_CACHE_TTL_OK,
            cache_ttl_not_found=settings.COMPANY_CACHE_TTL_NOT_FOUND,
            cache_ttl_error=settings.COMPANY_CACHE_TTL_ERROR,
            extraction_model=settings.LLM_EXTRACTION_MODEL,
            vision_model=settings.LLM_VISION_MODEL,
            summary_model=settings.LLM_SUMMARY_MODEL,
            ocr_model=settings.LLM_OCR_MODEL,
            llm_max_retries=settings.LLM_MAX_RETRIES,
            summary_enabled=settings.LLM_SUMMARY_ENABLED,
            default_domain=settings.ANALYSIS_DEFAULT_DOMAIN,
        )


################################################################################
## Domaines


@dataclass(frozen=True)
class DomainConfig:
    domain: str
    label: str
    primary_insurance: str
    secondary_insurances: tuple[str, ...]
    insurance_labels: dict
    certifications: tuple[str, ...]
    blocks_visible: tuple[str, ...]
    extraction_hint: str = ""


EXTRACTION_RULES = """Tu n'évalues PAS les artisans et tu ne portes AUCUN jugement de valeur.

RÈGLES D'EXTRACTION :
1. N'invente AUCUNE information. Si une donnée n'est pas visible, retourne null.
2. Mode de paiement : "especes" SEULEMENT si les mots "espèces", "cash", "comptant en espèces" sont \
explicitement présents. Si un IBAN ou RIB est présent, les modes incluent "virement". Ne jamais déduire \
"especes" par défaut.
3. Assurances : true si clairement mentionnée, false si absente, null si doute.
4. Travaux : identifie la CATÉGORIE MÉTIER principale même si un produit ou une marque est mentionné.
5. Extrais TOUS les postes du devis, sans exception, et recopie le libellé mot pour mot.
6. Réponds UNIQUEMENT avec un JSON valide et complet."""


DOMAIN_CONFIGS = {
    Domain.TRAVAUX: DomainConfig(
        domain=Domain.TRAVAUX,
        label="Travaux / BTP",
        primary_insurance="decennale",
        secondary_insurances=("rc_pro",),
        insurance_labels={"decennale": "Assurance décennale", "rc_pro": "RC Pro"},
        certifications=("RGE", "QUALIBAT"),
        blocks_visible=("entreprise", "devis", "prix_marche", "securite", "contexte", "urbanisme"),
        extraction_hint="Tu es un expert en travaux de bâtiment et rénovation.",
    ),
    Domain.AUTO: DomainConfig(
        domain=Domain.AUTO,
        label="Automobile / Garage",
        primary_insurance="rc_pro",
        secondary_insurances=(),
        insurance_labels={"rc_pro": "RC Pro"},
        certifications=(),
        blocks_visible=("entreprise", "devis", "prix_marche", "securite"),
        extraction_hint="Tu es un expert en réparation automobile.",
    ),
    Domain.DENTAIRE: DomainConfig(
        domain=Domain.DENTAIRE,
        label="Dentaire",
        primary_insurance="rc_pro",
        secondary_insurances=(),
        insurance_labels={"rc_pro": "RC Pro"},
        certifications=(),
        blocks_visible=("entreprise", "devis", "securite"),
        extraction_hint="Tu es un expert en tarification dentaire.",
    ),
}


def get_domain_config(domain: str | None) -> DomainConfig:
    return DOMAIN_CONFIGS.get(domain, DOMAIN_CONFIGS[Domain.TRAVAUX])


def get_visible_blocks(domain: str | None, document_type: str = DocumentType.DEVIS) -> tuple[str, ...]:
    """
    Blocs (facettes) applicables pour un domaine et un type de document.

    Les diagnostics et prestations techniques ne sont pas comparables à un prix de
    marché : le bloc prix est retiré.
    """
    blocks = get_domain_config(domain).blocks_visible
    if document_type in (DocumentType.DIAGNOSTIC, DocumentType.PRESTATION_TECHNIQUE):
        blocks = tuple(b for b in blocks if b != "prix_marche")
    return blocks


def get_required_guarantees(domain: str | None, document_type: str = DocumentType.DEVIS) -> tuple[str, ...]:
    """
    Garanties à contrôler. La décennale ne couvre que les ouvrages : elle n'est pas
    exigée pour une mission de diagnostic ou une prestation technique, où la RC Pro
    devient la garantie principale.
    """
    config = get_domain_config(domain)
    guarantees = (config.primary_insurance, *config.secondary_insurances)
    if document_type in (DocumentType.DIAGNOSTIC, DocumentType.PRESTATION_TECHNIQUE):
        guarantees = tuple(g for g in guarantees if g != "decennale") or ("rc_pro",)
    return guarantees
