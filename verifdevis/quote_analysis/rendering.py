"""
Mise en forme du résultat d'analyse (sans appel externe).

Transforme le ScoringResult et les détails des facettes en listes lisibles
(points_ok, alertes, recommandations), en détail des postes (types_travaux) et
en bandeau d'analyse adaptée pour les diagnostics et prestations techniques.
"""

from dataclasses import dataclass, field

from verifdevis.quote_analysis.models import DocumentType, ScoreColor
from verifdevis.quote_analysis.pricing.zones import get_zone_label
from verifdevis.quote_analysis.types import (
    ExtractedData,
    MarketPriceLine,
    ScoringResult,
    SiteContext,
    VerificationResult,
    to_jsonable,
)

ADAPTED_ANALYSIS_BANNERS = {
    DocumentType.DIAGNOSTIC: {
        "mode": "diagnostic",
        "title": "Analyse adaptée — Diagnostic immobilier",
        "message": (
            "Le document transmis concerne un diagnostic immobilier (DPE, amiante, plomb, électricité, gaz, etc.). "
            "L'analyse a été adaptée à la nature de cette mission, qui diffère d'un devis de travaux."
        ),
        "explanation_items": [
            "Il n'existe pas de prix de référence standardisé pour les diagnostics (tarifs libres)",
            "Les assurances obligatoires ne sont pas les mêmes que pour des travaux",
            "La mission est principalement technique et intellectuelle",
        ],
        "analysis_scope": [
            "La fiabilité de l'entreprise",
            "La clarté des diagnostics inclus dans la prestation",
            "La cohérence indicative du tarif",
            "Les conditions de paiement",
        ],
        "price_note": (
            "Les tarifs des diagnostics immobiliers sont libres et peuvent varier selon la taille du bien, "
            "sa localisation et le nombre de diagnostics requis."
        ),
    },
    DocumentType.PRESTATION_TECHNIQUE: {
        "mode": "prestation_technique",
        "title": "Analyse adaptée à la nature du document",
        "message": (
            "Le document transmis concerne une prestation technique liée au bâtiment (diagnostic, audit, étude "
            "ou expertise). L'analyse a été adaptée à la nature de cette mission, qui diffère d'un devis de travaux."
        ),
        "explanation_items": [
            "Il n'existe généralement pas de prix de référence standardisé",
            "Les assurances obligatoires ne sont pas les mêmes que pour des travaux",
            "La mission est principalement technique ou intellectuelle",
        ],
        "analysis_scope": [
            "La fiabilité de l'entreprise",
            "La clarté de la mission décrite",
            "Les conditions de paiement",
        ],
        "price_note": None,
    },
}

PRICE_POSITION_SCORES = {
    "below": ScoreColor.VERT,
    "within": ScoreColor.VERT,
    "above": ScoreColor.ORANGE,
}

PRICE_POSITION_EXPLANATIONS = {
    "below": "Prix inférieur à la fourchette basse du marché",
    "within": "Prix dans la fourchette de marché",
    "above": "Prix au-dessus de la fourchette de marché",
}


@dataclass(frozen=True)
class RenderedAnalysis:
    score: ScoreColor
    resume: str
    points_ok: list[str] = field(default_factory=list)
    alertes: list[str] = field(default_factory=list)
    recommandations: list[str] = field(default_factory=list)
    types_travaux: list[dict] = field(default_factory=list)
    banner: dict | None = None
    site_context: dict | None = None

    def to_dict(self) -> dict:
        return to_jsonable(self)


def get_banner(document_type: str) -> dict | None:
    """Bandeau d'analyse adaptée ; aucun pour un devis de travaux standard."""
    banner = ADAPTED_ANALYSIS_BANNERS.get(document_type)
    return dict(banner) if banner else None


def render_site_context(context: SiteContext | None, extracted: ExtractedData) -> list[str]:
    lines = []
    if context is None:
        if extracted.site.address or extracted.site.postal_code:
            lines.append(
                "📍 Patrimoine / ABF : INCONNU — l'adresse du chantier n'a pas pu être géolocalisée, "
                "la vérification n'a pas pu être réalisée"
            )
        return lines

    commune = f" ({context.commune})" if context.commune else ""
    if context.risks_checked:
        if context.risks:
            lines.append(f"📍 Risques naturels identifiés sur la commune{commune} : {', '.join(context.risks[:5])}")
        else:
            lines.append(f"📍 Aucun risque naturel majeur recensé sur la commune{commune}")
    if context.seismic_zone:
        lines.append(f"📍 Zone sismique : {context.seismic_zone}")

    if context.heritage_status == "possible":
        types = f" ({', '.join(context.heritage_types)})" if context.heritage_types else ""
        lines.append(
            "📍 Patrimoine / ABF : POSSIBLE — le chantier semble situé dans une zone de protection "
            f"patrimoniale{types}"
        )
    elif context.heritage_status == "non_detecte":
        lines.append(
            "📍 Patrimoine / ABF : NON DÉTECTÉ — aucune zone patrimoniale n'a été détectée autour de "
            "l'adresse du chantier à partir des données publiques disponibles"
        )
    return lines


def render_types_travaux(
    extracted: ExtractedData,
    market_prices: list[MarketPriceLine] | None,
    descriptions: list[str] | None = None,
) -> list[dict]:
    by_job_type = {line.job_type: line for line in market_prices or []}
    descriptions = descriptions or []
    rows = []
    for i, item in enumerate(extracted.items):
        line = by_job_type.get(item.category)
        available = line is not None and line.available
        rows.append(
            {
                "categorie": item.category,
                "libelle": item.label or item.category,
                "description": descriptions[i] if i < len(descriptions) else item.label,
                "quantite": item.quantity,
                "unite": item.unit or "forfait",
                "montant_ht": item.amount_ht,
                "score_prix": PRICE_POSITION_SCORES.get(line.position) if available else None,
                "fourchette_min": line.band.min if available else None,
                "fourchette_max": line.band.max if available else None,
                "zone_type": get_zone_label(line.zone) if line is not None else None,
                "explication": (
                    PRICE_POSITION_EXPLANATIONS.get(line.position)
                    if available
                    else (line.unavailable_reason if line is not None else None)
                ),
            }
        )
    return rows


def render(
    extracted: ExtractedData,
    verification: VerificationResult,
    scoring: ScoringResult,
    market_prices: list[MarketPriceLine] | None = None,
    resume: str | None = None,
    descriptions: list[str] | None = None,
) -> RenderedAnalysis:
    points_ok, alertes = [], []
    for facet in scoring.facets:
        alertes.extend(f"🔴 {message}" for message in facet.critical)
    for facet in scoring.facets:
        alertes.extend(f"🟠 {message}" for message in facet.warnings)
    for facet in scoring.facets:
        points_ok.extend(f"✓ {message}" for message in facet.ok)
        points_ok.extend(f"ℹ️ {message}" for message in facet.info)
    points_ok.extend(render_site_context(verification.site_context, extracted))

    explanation, *others = scoring.recommandations or (scoring.explanation,)
    recommandations = [f"📊 {explanation}", *(f"💡 {r}" for r in others)]

    return RenderedAnalysis(
        score=scoring.score,
        resume=resume or scoring.explanation,
        points_ok=points_ok,
        alertes=alertes,
        recommandations=recommandations,
        types_travaux=render_types_travaux(extracted, market_prices, descriptions),
        banner=get_banner(extracted.document_type),
        site_context=to_jsonable(verification.site_context) if verification.site_context else None,
    )
