"""
Indice stratégique patrimonial (auxiliaire).

Modèle numérique pondéré, indépendant du score VERT/ORANGE/ROUGE : il n'est
jamais utilisé pour calculer le score principal.

- IVP (propriétaire occupant) = 0.30 valeur + 0.25 liquidité + 0.20 attractivité
  + 0.15 énergie + 0.10 réduction du risque
- IPI (investisseur) = 0.35 loyer + 0.25 vacance + 0.20 énergie + 0.10 fiscalité
  + 0.10 (5 - risque capex)

Chaque sous-facteur est noté sur 5 ; la moyenne pondérée (poids = montant HT du
poste, ou 1 si nul/négatif) est ramenée sur 100.
"""

from verifdevis.quote_analysis.models import StrategicMatrixRow
from verifdevis.quote_analysis.types import StrategicScores

MATRIX_COLUMNS = (
    "value_intrinseque",
    "liquidite",
    "attractivite",
    "energie",
    "reduction_risque",
    "impact_loyer",
    "vacance",
    "fiscalite",
    "capex_risk",
    "recovery_rate",
)

DEFAULT_RECOVERY_RATE = 0.5

NOT_COMPUTED = StrategicScores(
    ivp_score=None,
    ipi_score=None,
    label="Non calculé",
    breakdown_owner=None,
    breakdown_investor=None,
    weighted_recovery_rate=None,
)


def clamp(value, low, high):
    return max(low, min(high, value))


def label_from_ivp(score100: int) -> str:
    if score100 >= 90:
        return "Transformation patrimoniale"
    if score100 >= 75:
        return "Potentiel stratégique"
    if score100 >= 60:
        return "Valorisation significative"
    if score100 >= 40:
        return "Optimisation modérée"
    return "Impact patrimonial limité"


def load_strategic_matrix(job_types) -> dict[str, dict]:
    rows = StrategicMatrixRow.objects.filter(job_type__in=list(job_types)).values("job_type", *MATRIX_COLUMNS)
    return {row["job_type"]: row for row in rows}


def _round(value: float) -> int:
    # Arrondi au plus proche, demi vers le haut
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def compute_strategic_scores(items: list[dict], matrix: dict[str, dict]) -> StrategicScores:
    """
    Calcule les indices IVP / IPI pour une liste de postes.

    Args:
        items: [{"job_type": str, "amount_ht": float}]
        matrix: job_type → ligne de la matrice stratégique (colonnes MATRIX_COLUMNS)

    Returns:
        StrategicScores ; "Non calculé" si aucun poste ne correspond à la matrice
    """
    total_weight = 0.0
    acc = dict.fromkeys(("ivp", "ipi", *MATRIX_COLUMNS), 0.0)

    for item in items:
        row = matrix.get(item.get("job_type"))
        if row is None:
            continue
        amount = item.get("amount_ht") or 0
        weight = amount if amount > 0 else 1
        total_weight += weight

        values = {col: float(row.get(col) or 0) for col in MATRIX_COLUMNS}
        if row.get("recovery_rate") is None:
            values["recovery_rate"] = DEFAULT_RECOVERY_RATE

        ivp = (
            0.30 * values["value_intrinseque"]
            + 0.25 * values["liquidite"]
            + 0.20 * values["attractivite"]
            + 0.15 * values["energie"]
            + 0.10 * values["reduction_risque"]
        )
        ipi = (
            0.35 * values["impact_loyer"]
            + 0.25 * values["vacance"]
            + 0.20 * values["energie"]
            + 0.10 * values["fiscalite"]
            + 0.10 * (5 - values["capex_risk"])
        )
        acc["ivp"] += ivp * weight
        acc["ipi"] += ipi * weight
        for col in MATRIX_COLUMNS:
            acc[col] += values[col] * weight

    if total_weight == 0:
        return NOT_COMPUTED

    def sub_score(col):
        return clamp(_round(acc[col] / total_weight / 5 * 10), 0, 10)

    ivp_score = clamp(_round(acc["ivp"] / total_weight * 20), 0, 100)
    ipi_score = clamp(_round(acc["ipi"] / total_weight * 20), 0, 100)

    return StrategicScores(
        ivp_score=ivp_score,
        ipi_score=ipi_score,
        label=label_from_ivp(ivp_score),
        breakdown_owner={
            "value": sub_score("value_intrinseque"),
            "liquidite": sub_score("liquidite"),
            "attractivite": sub_score("attractivite"),
            "energie": sub_score("energie"),
            "reduction_risque": sub_score("reduction_risque"),
        },
        breakdown_investor={
            "impact_loyer": sub_score("impact_loyer"),
            "vacance": sub_score("vacance"),
            "energie": sub_score("energie"),
            "fiscalite": sub_score("fiscalite"),
            "capex_risk": sub_score("capex_risk"),
        },
        weighted_recovery_rate=acc["recovery_rate"] / total_weight,
    )
