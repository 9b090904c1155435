"""
Coefficient de zone géographique.

La zone est déterminée par les 2 premiers caractères du code postal. Une zone
absente de la table donne "ville_moyenne" (coefficient 1.00) marquée par défaut ;
la recherche ne lève jamais d'exception.
"""

import logging
import math

from django.db import DatabaseError

from verifdevis.quote_analysis.config import DEFAULT_ZONE_COEFFICIENTS
from verifdevis.quote_analysis.models import ZoneGeographique, ZoneType
from verifdevis.quote_analysis.types import PriceBand, ZoneResult

logger = logging.getLogger(__name__)

ZONE_LABELS = {
    ZoneType.PETITE_VILLE: "Petite ville / rural",
    ZoneType.VILLE_MOYENNE: "Ville moyenne",
    ZoneType.GRANDE_VILLE: "Grande ville / métropole",
}


def default_zone(coefficients: dict | None = None) -> ZoneResult:
    coefficients = coefficients or DEFAULT_ZONE_COEFFICIENTS
    return ZoneResult(
        zone=ZoneType.VILLE_MOYENNE.value,
        coefficient=float(coefficients.get(ZoneType.VILLE_MOYENNE, 1.0)),
        is_default=True,
    )


def load_zone_table() -> dict[str, tuple[str, float | None]]:
    """Charge la table préfixe postal → (type de zone, coefficient)."""
    return {
        row.prefixe_postal: (row.type_zone, float(row.coefficient) if row.coefficient is not None else None)
        for row in ZoneGeographique.objects.all()
    }


def get_zone_coefficient(
    postal_code: str | None,
    table: dict[str, tuple[str, float | None]] | None = None,
    coefficients: dict | None = None,
) -> ZoneResult:
    """
    Détermine la zone et le coefficient de pondération à partir du code postal.

    Args:
        postal_code: Code postal (ou simple préfixe) du chantier
        table: Table préfixe → (zone, coefficient). Chargée en base si absente.
        coefficients: Coefficients par défaut par type de zone

    Returns:
        ZoneResult, avec is_default=True si le préfixe n'est pas référencé
    """
    coefficients = coefficients or DEFAULT_ZONE_COEFFICIENTS
    prefix = (postal_code or "").strip()[:2]
    if len(prefix) != 2:
        return default_zone(coefficients)

    if table is None:
        try:
            table = load_zone_table()
        except DatabaseError:
            logger.exception("Zone table unavailable, using default zone for prefix=%s", prefix)
            return default_zone(coefficients)

    match = table.get(prefix)
    if match is None:
        return default_zone(coefficients)

    zone, coefficient = match
    if zone not in ZONE_LABELS:
        logger.warning("Unknown zone type %r for prefix=%s, using default zone", zone, prefix)
        return default_zone(coefficients)
    if coefficient is None:
        coefficient = coefficients.get(zone, 1.0)
    return ZoneResult(zone=str(zone), coefficient=float(coefficient), is_default=False)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def apply_zone_coefficient(prices: PriceBand, coefficient: float) -> PriceBand:
    """
    Applique le coefficient de zone à une fourchette de prix.

    Chaque valeur est arrondie à l'entier le plus proche puis les trois valeurs
    sont triées : min <= avg <= max est garanti même si l'arrondi ou une
    fourchette de référence incohérente a perturbé l'ordre.
    """
    adjusted = [round_half_up(v * coefficient) for v in (prices.min, prices.avg, prices.max)]
    ordered = sorted(adjusted)
    if ordered != adjusted:
        logger.warning(
            "Price band reordered after zone coefficient: %s -> %s (coefficient=%s)", adjusted, ordered, coefficient
        )
    return PriceBand(min=ordered[0], avg=ordered[1], max=ordered[2])


def get_zone_label(zone: str) -> str:
    return ZONE_LABELS.get(zone, "Zone inconnue")
