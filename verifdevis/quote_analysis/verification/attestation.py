"""
Comparaison d'une attestation d'assurance avec le devis.

Chaque champ (nom, SIREN, adresse, validité, activités) reçoit un statut
OK / INCOMPLET / INCOHERENT / NON_DISPONIBLE, puis une cohérence globale
dont on déduit le score d'assurance de niveau 2.
"""

import datetime
import enum
import logging
import re

from django.utils import timezone

from verifdevis.quote_analysis.models import ScoreColor
from verifdevis.quote_analysis.processor.post_processing_llm import (
    normalize_for_comparison,
    post_processing_date,
    strip_accents,
)
from verifdevis.quote_analysis.types import ExtractedData

logger = logging.getLogger(__name__)


class ComparisonStatus(enum.StrEnum):
    OK = "OK"
    INCOMPLET = "INCOMPLET"
    INCOHERENT = "INCOHERENT"
    NON_DISPONIBLE = "NON_DISPONIBLE"


COMPARED_FIELDS = ("nom_entreprise", "siret_siren", "adresse", "periode_validite", "activite_couverte")

# Mots clés attendus dans les activités couvertes, par catégorie de travaux
WORK_TYPE_KEYWORDS = {
    "toiture": ["toiture", "couverture", "toit", "charpente"],
    "charpente": ["charpente", "bois", "structure"],
    "zinguerie": ["zinguerie", "couverture"],
    "maconnerie": ["maconnerie", "gros oeuvre", "mur", "beton"],
    "demolition": ["demolition", "gros oeuvre", "maconnerie"],
    "facade": ["facade", "ravalement", "enduit"],
    "peinture": ["peinture", "revetement", "finition"],
    "plomberie": ["plomberie", "sanitaire", "eau"],
    "salle_de_bain": ["plomberie", "sanitaire", "carrelage"],
    "chauffe_eau": ["plomberie", "sanitaire", "chauffage"],
    "electricite": ["electricite", "electrique"],
    "tableau_electrique": ["electricite", "electrique"],
    "isolation": ["isolation", "thermique", "acoustique"],
    "carrelage": ["carrelage", "revetement", "sol"],
    "menuiserie": ["menuiserie", "bois", "fenetre", "porte"],
    "fenetre": ["menuiserie", "fenetre", "vitrerie"],
    "porte": ["menuiserie", "porte"],
    "volet_roulant": ["menuiserie", "fermeture", "volet"],
    "chauffage": ["chauffage", "climatisation", "ventilation", "genie climatique"],
    "pompe_a_chaleur": ["pompe a chaleur", "chauffage", "climatisation", "genie climatique"],
    "chaudiere": ["chaudiere", "chauffage", "genie climatique"],
    "radiateur": ["chauffage", "genie climatique"],
    "poele": ["poele", "chauffage", "fumisterie"],
    "ventilation": ["ventilation", "vmc", "genie climatique"],
    "panneaux_solaires": ["photovoltaique", "solaire", "electricite"],
}

GENERAL_COVERAGE = ("batiment", "construction", "travaux", "tous corps d'etat", "tce")

POSTAL_CODE_RE = re.compile(r"\b(\d{5})\b")


def compact(text: str | None) -> str:
    """Forme compacte pour la comparaison : sans accents, ponctuation, espaces ni forme juridique."""
    return normalize_for_comparison(text or "").replace(" ", "")


def calculate_similarity(str1: str, str2: str) -> float:
    """Indice de Jaccard sur les ensembles de caractères."""
    if not str1 or not str2:
        return 0.0
    set1, set2 = set(str1), set(str2)
    return len(set1 & set2) / len(set1 | set2)


def extract_postal_code(address: str | None) -> str | None:
    match = POSTAL_CODE_RE.search(address or "")
    return match.group(1) if match else None


def get_work_type_keywords(category: str) -> list[str]:
    for key, keywords in WORK_TYPE_KEYWORDS.items():
        if key in category:
            return keywords
    return [category.replace("_", " ")]


def compare_name(attestation_name: str | None, quote_name: str | None) -> ComparisonStatus:
    if not attestation_name:
        return ComparisonStatus.INCOMPLET
    if not quote_name:
        return ComparisonStatus.NON_DISPONIBLE
    a, q = compact(attestation_name), compact(quote_name)
    if a == q or a in q or q in a:
        return ComparisonStatus.OK
    similarity = calculate_similarity(a, q)
    if similarity > 0.7:
        return ComparisonStatus.OK
    if similarity > 0.4:
        return ComparisonStatus.INCOMPLET
    return ComparisonStatus.INCOHERENT


def compare_identifier(attestation_id: str | None, quote_id: str | None) -> ComparisonStatus:
    if not attestation_id:
        return ComparisonStatus.INCOMPLET
    if not quote_id:
        return ComparisonStatus.NON_DISPONIBLE
    # Même SIREN, établissement différent : même entreprise
    if attestation_id == quote_id or attestation_id[:9] == quote_id[:9]:
        return ComparisonStatus.OK
    return ComparisonStatus.INCOHERENT


def compare_address(attestation_address: str | None, quote_address: str | None) -> ComparisonStatus:
    if not attestation_address:
        return ComparisonStatus.INCOMPLET
    if not quote_address:
        return ComparisonStatus.NON_DISPONIBLE
    similarity = calculate_similarity(compact(attestation_address), compact(quote_address))
    if similarity > 0.5:
        return ComparisonStatus.OK
    if similarity > 0.3:
        return ComparisonStatus.INCOMPLET
    postal_a, postal_q = extract_postal_code(attestation_address), extract_postal_code(quote_address)
    if postal_a and postal_a == postal_q:
        return ComparisonStatus.OK
    return ComparisonStatus.INCOHERENT


def compare_validity(end_date, today: datetime.date) -> ComparisonStatus:
    end_date = post_processing_date(end_date)
    if end_date is None:
        return ComparisonStatus.INCOMPLET
    return ComparisonStatus.OK if end_date > today else ComparisonStatus.INCOHERENT


def compare_activities(activities, job_types: list[str]) -> ComparisonStatus:
    if not activities:
        return ComparisonStatus.INCOMPLET
    if isinstance(activities, str):
        activities = [activities]
    covered = strip_accents(" ".join(str(a) for a in activities)).lower().replace("’", "'")
    job_types = [j for j in job_types if j and j != "autres"]
    if not job_types:
        return ComparisonStatus.NON_DISPONIBLE

    # Chaque catégorie du devis doit être couverte
    for category in job_types:
        if not any(keyword in covered for keyword in get_work_type_keywords(category)):
            break
    else:
        return ComparisonStatus.OK
    if any(term in covered for term in GENERAL_COVERAGE):
        return ComparisonStatus.OK
    return ComparisonStatus.INCOMPLET


def global_coherence(comparison: dict) -> ComparisonStatus:
    statuses = [comparison[name] for name in COMPARED_FIELDS]
    if ComparisonStatus.INCOHERENT in statuses:
        return ComparisonStatus.INCOHERENT
    if statuses.count(ComparisonStatus.OK) >= 3:
        return ComparisonStatus.OK
    if statuses.count(ComparisonStatus.INCOMPLET) > 2:
        return ComparisonStatus.INCOMPLET
    return ComparisonStatus.OK


def compare_attestation_with_quote(
    attestation: dict, extracted: ExtractedData, today: datetime.date | None = None
) -> dict:
    """
    Compare les champs extraits d'une attestation avec ceux du devis.

    Retourne un dict sérialisable : un statut par champ, "coherence_globale"
    et "garanties" (types de garantie attestés).
    """
    today = today or timezone.localdate()
    company = extracted.company
    quote_address = " ".join(p for p in (company.address, company.postal_code, company.city) if p)
    attestation_address = " ".join(
        p for p in (attestation.get("adresse"), attestation.get("code_postal")) if p
    )

    comparison = {
        "nom_entreprise": compare_name(attestation.get("entreprise_nom"), company.name),
        "siret_siren": compare_identifier(attestation.get("siret"), company.siret),
        "adresse": compare_address(attestation_address, quote_address),
        "periode_validite": compare_validity(attestation.get("date_fin_validite"), today),
        "activite_couverte": compare_activities(attestation.get("activites_couvertes"), extracted.job_types),
    }
    comparison["coherence_globale"] = global_coherence(comparison)
    comparison = {key: str(value) for key, value in comparison.items()}
    comparison["garanties"] = list(attested_kinds(attestation))
    logger.info("Attestation compared: %s", comparison["coherence_globale"])
    return comparison


def determine_level(comparison: dict | None) -> ScoreColor | None:
    """Score d'assurance de niveau 2 : INCOHERENT → ROUGE, OK → VERT, sinon ORANGE."""
    if not comparison:
        return None
    coherence = comparison.get("coherence_globale")
    if coherence == ComparisonStatus.INCOHERENT:
        return ScoreColor.ROUGE
    if coherence == ComparisonStatus.OK:
        return ScoreColor.VERT
    return ScoreColor.ORANGE


def attested_kinds(attestation: dict) -> tuple[str, ...]:
    """Garanties couvertes par l'attestation ; sans précision, la décennale."""
    kind = strip_accents(str(attestation.get("type_garantie") or "")).lower()
    kinds = []
    if "decennale" in kind or not kind:
        kinds.append("decennale")
    if "rc" in kind or "responsabilite" in kind:
        kinds.append("rc_pro")
    return tuple(kinds)

