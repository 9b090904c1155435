"""
Score de confiance d'un devis.

Chaque facette (entreprise, assurances, paiement, cohérence, mentions, prix,
réputation) est évaluée indépendamment en OK / WARNING / CRITICAL. Le score
global est la pire sévérité parmi les facettes applicables :

- une facette CRITICAL donne ROUGE ;
- sinon une facette WARNING donne ORANGE ;
- sinon VERT.

Une facette "inconnue" (source injoignable) compte au plus comme WARNING.
Le calcul est déterministe et sans appel externe.
"""

import logging

from verifdevis.quote_analysis.config import (
    AnalysisConfig,
    get_domain_config,
    get_required_guarantees,
    get_visible_blocks,
)
from verifdevis.quote_analysis.models import ScoreColor
from verifdevis.quote_analysis.processor.post_processing_llm import is_plausible_vat_rate
from verifdevis.quote_analysis.scoring.strategic import compute_strategic_scores
from verifdevis.quote_analysis.types import (
    ActivityStatus,
    ExtractedData,
    FacetResult,
    LookupStatus,
    MarketPriceLine,
    ScoringResult,
    Severity,
    VerificationResult,
)

logger = logging.getLogger(__name__)

COUNTRY_NAMES = {
    "FR": "France",
    "BE": "Belgique",
    "DE": "Allemagne",
    "ES": "Espagne",
    "IT": "Italie",
    "PT": "Portugal",
    "LU": "Luxembourg",
    "CH": "Suisse",
    "GB": "Royaume-Uni",
    "NL": "Pays-Bas",
    "PL": "Pologne",
    "RO": "Roumanie",
    "BG": "Bulgarie",
    "LT": "Lituanie",
    "LV": "Lettonie",
    "EE": "Estonie",
    "IE": "Irlande",
    "MT": "Malte",
    "CY": "Chypre",
}

TRACEABLE_PAYMENT_MODES = ("virement", "cheque", "carte_bancaire", "prelevement")


def get_country_name(code: str | None) -> str:
    if not code:
        return "pays inconnu"
    return COUNTRY_NAMES.get(code.upper(), code.upper())


def build_facet(name, critical=(), warnings=(), ok=(), info=(), unknown=False) -> FacetResult:
    """Construit une facette ; une facette inconnue sans fait critique reste au plus en WARNING."""
    if critical:
        severity = Severity.CRITICAL
    elif warnings or unknown:
        severity = Severity.WARNING
    else:
        severity = Severity.OK
    return FacetResult(
        name=name,
        severity=severity,
        unknown=unknown and not critical,
        critical=tuple(critical),
        warnings=tuple(warnings),
        ok=tuple(ok),
        info=tuple(info),
    )


def aggregate(facets) -> ScoreColor:
    """Pire sévérité parmi les facettes (VERT si aucune facette)."""
    worst = max((facet.severity for facet in facets), default=Severity.OK)
    return worst.to_score()


def plural(n: int, singular: str, plural_form: str | None = None) -> str:
    return singular if n <= 1 else (plural_form or singular + "s")


################################################################################
## Facettes


def evaluate_company(extracted: ExtractedData, verification: VerificationResult) -> FacetResult:
    critical, warnings, ok, info = [], [], [], []
    status = verification.lookup_status
    unknown = False

    if verification.identifier_status == "invalid":
        critical.append(
            f"Identifiant SIRET/SIREN incohérent ({extracted.company.siret}) : la clé de contrôle est invalide"
        )

    if status == LookupStatus.OK:
        name = verification.official_name or extracted.company.name
        if verification.activity_status == ActivityStatus.CEASED:
            critical.append("Entreprise radiée des registres officiels")
        else:
            ok.append(f"Entreprise identifiée dans les registres officiels : {name}")

        age = verification.age_years
        if age is not None:
            if age < 2:
                warnings.append(f"Entreprise récente ({age} {plural(age, 'an')}) : ancienneté à prendre en compte")
            elif age >= 5:
                ok.append(f"Entreprise établie ({age} ans d'ancienneté)")
            else:
                ok.append(f"Entreprise établie depuis {age} ans")

        if verification.address_matches is False:
            info.append("Adresse du devis différente du siège déclaré au registre (établissement secondaire possible)")
    elif status == LookupStatus.NOT_FOUND:
        warnings.append("Entreprise introuvable dans les registres officiels avec le SIRET indiqué")
    elif status == LookupStatus.NO_SIRET:
        unknown = True
        if extracted.company.name:
            info.append("SIRET non détecté sur le devis : vérification registre non réalisée")
        else:
            info.append("Coordonnées entreprise non identifiées sur le devis")
    else:
        unknown = True
        info.append("Vérification entreprise temporairement indisponible : données à confirmer manuellement")

    # BODACC fait foi même si le registre principal est indisponible
    if verification.procedure_collective is True:
        critical.append("Procédure collective en cours (redressement ou liquidation judiciaire)")
    elif verification.procedure_collective is False and status == LookupStatus.OK:
        ok.append("Aucune procédure collective en cours")

    latest = verification.latest_finances
    if latest is not None:
        if latest.equity is not None and latest.equity < 0:
            critical.append(f"Capitaux propres négatifs au dernier exercice ({latest.equity:,.0f} €)".replace(",", " "))
        if latest.debt_ratio is not None:
            if latest.debt_ratio > 200:
                critical.append(f"Taux d'endettement très élevé ({latest.debt_ratio:.0f}%)")
            elif latest.debt_ratio > 100:
                warnings.append(f"Taux d'endettement élevé ({latest.debt_ratio:.0f}%)")
        loss_pct = latest.loss_pct_of_revenue
        if loss_pct is not None and loss_pct > 20:
            critical.append(f"Pertes importantes au dernier exercice ({loss_pct:.0f}% du CA)")
        if latest.liquidity_ratio is not None and latest.liquidity_ratio < 80:
            warnings.append(f"Ratio de liquidité faible ({latest.liquidity_ratio:.0f}%)")
        if latest.net_result is not None and latest.net_result > 0:
            ok.append("Résultat net positif au dernier exercice")
        if latest.financial_autonomy is not None and latest.financial_autonomy > 30:
            ok.append(f"Bonne autonomie financière ({latest.financial_autonomy:.0f}%)")

    return build_facet("entreprise", critical, warnings, ok, info, unknown=unknown)


def evaluate_guarantees(
    extracted: ExtractedData, verification: VerificationResult, domain: str | None
) -> FacetResult:
    critical, warnings, ok, info = [], [], [], []
    labels = get_domain_config(domain).insurance_labels
    unknown = False

    for kind in get_required_guarantees(domain, extracted.document_type):
        label = labels.get(kind, kind)
        check = verification.guarantees.get(kind)
        if check is None:
            unknown = True
            info.append(f"{label} : vérification non effectuée")
            continue
        if check.level == ScoreColor.ROUGE:
            critical.extend(f"{label} : {reason}" for reason in check.reasons)
        elif check.level == ScoreColor.ORANGE:
            if not check.present:
                warnings.append(f"{label} non justifiée : demandez l'attestation d'assurance à l'artisan")
            else:
                warnings.extend(f"{label} : {reason}" for reason in check.reasons)
        else:
            ok.append(f"{label} cohérente avec le devis")

    for certification in get_domain_config(domain).certifications:
        if any(certification.upper() in c.upper() for c in extracted.guarantees.certifications):
            ok.append(f"Qualification {certification} mentionnée sur le devis")
    if verification.rge_found:
        ok.append(f"Qualification RGE vérifiée : {', '.join(verification.rge_qualifications[:2])}")
    elif verification.rge_relevant:
        info.append("Qualification RGE non trouvée : vérifiez l'éligibilité aux aides si applicable")

    return build_facet("assurances", critical, warnings, ok, info, unknown=unknown)


def evaluate_payment(extracted: ExtractedData, verification: VerificationResult) -> FacetResult:
    critical, warnings, ok, info = [], [], [], []
    payment = extracted.payment

    has_cash = "especes" in payment.modes
    if has_cash:
        critical.append("Paiement en espèces explicitement demandé sur le devis")
    elif any(mode in TRACEABLE_PAYMENT_MODES for mode in payment.modes):
        ok.append("Mode de paiement traçable")

    deposit = payment.effective_deposit_pct
    if deposit is not None:
        if deposit > 50:
            critical.append(f"Acompte supérieur à 50% demandé avant travaux ({deposit:g}%)")
        elif deposit > 30:
            warnings.append(f"Acompte modéré ({deposit:g}%) : un acompte ≤ 30% est recommandé")
        else:
            ok.append(f"Acompte raisonnable ({deposit:g}%)")
    if payment.schedule_detected:
        ok.append("Échéancier de paiement prévu")

    if payment.iban:
        if verification.iban_valid is False:
            warnings.append("Format IBAN invalide (erreur de saisie probable)")
        elif verification.iban_valid is True:
            if verification.iban_country and verification.iban_country != "FR":
                warnings.append(
                    f"IBAN étranger ({get_country_name(verification.iban_country)}) : à confirmer si attendu"
                )
            else:
                bank = f" ({verification.iban_bank})" if verification.iban_bank else ""
                ok.append(f"IBAN valide domicilié en France{bank}")
    else:
        info.append("Coordonnées bancaires non détectées sur le devis : demandez un RIB à l'artisan")

    return build_facet("paiement", critical, warnings, ok, info)


def evaluate_consistency(extracted: ExtractedData, tolerance: float) -> FacetResult:
    """Cohérence interne : total HT = somme des postes, TTC = HT + TVA (à la tolérance près)."""
    warnings, ok, info = [], [], []
    total_ht = extracted.total_ht
    items_total = extracted.items_total_ht

    if total_ht is not None and total_ht < 0:
        logger.warning("Scoring inconsistency: negative total HT (%s) ignored for consistency check", total_ht)
        total_ht = None

    if total_ht is not None and items_total is not None:
        allowed = max(1.0, abs(total_ht) * tolerance)
        if abs(total_ht - items_total) > allowed:
            warnings.append(
                f"Total HT ({total_ht:.2f} €) différent de la somme des postes ({items_total:.2f} €)"
            )
        else:
            ok.append("Total HT cohérent avec le détail des postes")
    elif not extracted.items:
        info.append("Aucun poste de travaux détaillé détecté sur le devis")

    if total_ht is not None and extracted.total_tva is not None and extracted.total_ttc is not None:
        expected_ttc = total_ht + extracted.total_tva
        allowed = max(1.0, abs(extracted.total_ttc) * tolerance)
        if abs(expected_ttc - extracted.total_ttc) > allowed:
            warnings.append(
                f"Total TTC ({extracted.total_ttc:.2f} €) différent du total HT + TVA ({expected_ttc:.2f} €)"
            )

    return build_facet("coherence", warnings=warnings, ok=ok, info=info)


def evaluate_mentions(extracted: ExtractedData) -> FacetResult:
    """Mentions obligatoires et plausibilité des taux de TVA."""
    warnings, ok = [], []

    missing = []
    if not extracted.company.name:
        missing.append("nom de l'entreprise")
    if not extracted.company.siret:
        missing.append("SIRET")
    if not extracted.items:
        missing.append("détail des prestations")
    if extracted.total_ht is None and extracted.total_ttc is None:
        missing.append("montant total")
    if missing:
        warnings.append(f"Mentions obligatoires absentes ou illisibles : {', '.join(missing)}")
    else:
        ok.append("Mentions obligatoires présentes")

    implausible = [rate for rate in extracted.vat_rates if not is_plausible_vat_rate(rate)]
    if implausible:
        rates = ", ".join(f"{rate:g}%" for rate in implausible)
        warnings.append(f"Taux de TVA inhabituel ({rates}) : les taux applicables sont 20%, 10% ou 5,5%")

    return build_facet("mentions", warnings=warnings, ok=ok)


def evaluate_prices(market_prices: list[MarketPriceLine]) -> FacetResult:
    """Position prix : une fourchette indisponible est neutre."""
    warnings, ok, info = [], [], []
    for line in market_prices:
        if not line.available:
            info.append(f"{line.label} : prestation sans référence de prix standardisée")
            continue
        band = line.band
        if line.position == "above":
            warnings.append(
                f"{line.label} : prix ({line.quote_unit_price:.2f} €/{line.unit}) au-dessus de la fourchette "
                f"de marché ({band.min:.0f} à {band.max:.0f} €/{line.unit})"
            )
        elif line.position == "below":
            info.append(f"{line.label} : prix inférieur à la fourchette basse du marché")
        elif line.position == "within":
            ok.append(f"{line.label} : prix dans la fourchette de marché ({band.min:.0f} à {band.max:.0f} €/{line.unit})")
        else:
            info.append(f"{line.label} : quantité non détectée, comparaison de prix non réalisée")
    return build_facet("prix", warnings=warnings, ok=ok, info=info)


def evaluate_reputation(extracted: ExtractedData, verification: VerificationResult) -> FacetResult:
    warnings, ok, info = [], [], []
    source = verification.sources.get("google")
    unknown = source is not None and source.status == "unknown"
    if verification.google_found and verification.google_rating is not None:
        rating = verification.google_rating
        reviews = verification.google_reviews or 0
        if rating < 4.0:
            warnings.append(f"Note Google inférieure au seuil de confort ({rating}/5, {reviews} avis)")
        elif rating >= 4.2:
            ok.append(f"Bonne réputation en ligne ({rating}/5 sur Google, {reviews} avis)")
        else:
            ok.append(f"Réputation en ligne correcte ({rating}/5 sur Google, {reviews} avis)")
    elif not unknown and extracted.company.name:
        info.append("Aucun avis Google trouvé : cela ne préjuge pas de la qualité de l'entreprise")
    return build_facet("reputation", warnings=warnings, ok=ok, info=info, unknown=unknown)


################################################################################
## Score


class Scorer:
    def __init__(self, config: AnalysisConfig | None = None, domain: str | None = None):
        self.config = config or AnalysisConfig()
        self.domain = domain or self.config.default_domain

    def evaluate_facets(
        self,
        extracted: ExtractedData,
        verification: VerificationResult,
        market_prices: list[MarketPriceLine] | None,
    ) -> list[FacetResult]:
        blocks = get_visible_blocks(self.domain, extracted.document_type)
        facets = [
            evaluate_company(extracted, verification),
            evaluate_guarantees(extracted, verification, self.domain),
            evaluate_payment(extracted, verification),
            evaluate_consistency(extracted, self.config.totals_tolerance),
            evaluate_mentions(extracted),
        ]
        if "prix_marche" in blocks:
            facets.append(evaluate_prices(market_prices or []))
        facets.append(evaluate_reputation(extracted, verification))
        return facets

    def score(
        self,
        extracted: ExtractedData,
        verification: VerificationResult,
        market_prices: list[MarketPriceLine] | None = None,
        strategic_matrix: dict | None = None,
    ) -> ScoringResult:
        facets = self.evaluate_facets(extracted, verification, market_prices)
        score = aggregate(facets)

        critical = [msg for facet in facets for msg in facet.critical]
        warnings = [msg for facet in facets for msg in facet.warnings]
        unknown_facets = [facet for facet in facets if facet.unknown]
        points_ok = [msg for facet in facets for msg in (*facet.ok, *facet.info)]

        explanation = self._explanation(score, critical, warnings, unknown_facets, points_ok)
        recommandations = self._recommandations(score, extracted, facets, explanation)

        strategic = None
        if strategic_matrix is not None:
            strategic = compute_strategic_scores(
                [{"job_type": item.category, "amount_ht": item.amount_ht or 0} for item in extracted.items],
                strategic_matrix,
            )

        logger.info(
            "Score computed: %s (critical=%d warnings=%d unknown=%s)",
            score,
            len(critical),
            len(warnings),
            [facet.name for facet in unknown_facets],
        )
        return ScoringResult(
            score=score,
            explanation=explanation,
            facets=tuple(facets),
            points_ok=tuple(points_ok),
            alertes=tuple(critical + warnings),
            recommandations=tuple(recommandations),
            strategic=strategic,
        )

    @staticmethod
    def _explanation(score, critical, warnings, unknown_facets, points_ok) -> str:
        if score == ScoreColor.ROUGE:
            n = len(critical)
            return (
                f"{n} {plural(n, 'point critique', 'points critiques')} "
                f"{plural(n, 'détecté', 'détectés')} nécessitant une attention particulière avant engagement."
            )
        if score == ScoreColor.ORANGE:
            n = len(warnings) + len(unknown_facets)
            return (
                f"{n} {plural(n, 'point', 'points')} de vigilance à vérifier. "
                "L'ensemble des éléments analysés ne révèle pas de risque critique."
            )
        if points_ok:
            head = ", ".join(points_ok[:3])
            return f"Aucun point de vigilance. Éléments positifs : {head}{'...' if len(points_ok) > 3 else ''}."
        return "Aucun point critique ni de vigilance détecté sur ce devis."

    @staticmethod
    def _recommandations(score, extracted: ExtractedData, facets, explanation) -> list[str]:
        by_name = {facet.name: facet for facet in facets}
        recommandations = [explanation]

        if score == ScoreColor.ROUGE:
            recommandations.append(
                "Ne signez pas et ne versez aucun acompte avant d'avoir levé les points critiques."
            )
        elif score == ScoreColor.ORANGE and not any(facet.critical for facet in facets):
            recommandations.append(
                "Les points de vigilance listés sont des vérifications de confort recommandées, "
                "pas des signaux d'alerte critiques."
            )

        if by_name["assurances"].severity != Severity.OK:
            recommandations.append("Pour confirmer les assurances, demandez les attestations d'assurance (PDF) à jour.")
        if by_name["entreprise"].unknown:
            recommandations.append(
                "Vérifiez l'entreprise sur annuaire-entreprises.data.gouv.fr ou infogreffe.fr avec son SIRET."
            )

        deposit = extracted.payment.effective_deposit_pct
        if deposit is not None and deposit > 30:
            recommandations.append("Il est recommandé de limiter l'acompte à 30% maximum du montant total.")
        if "especes" in extracted.payment.modes:
            recommandations.append("Privilégiez un mode de paiement traçable (virement, chèque).")
        if by_name["coherence"].warnings:
            recommandations.append("Demandez à l'artisan de corriger les totaux du devis avant signature.")
        return recommandations
