"""
Prix de marché : fourchette de référence par type de travaux, pondérée par la
zone géographique du chantier.
"""

import logging
from dataclasses import dataclass

from verifdevis.quote_analysis.config import AnalysisConfig
from verifdevis.quote_analysis.models import DvfPrice, ReferencePrice
from verifdevis.quote_analysis.pricing.zones import (
    apply_zone_coefficient,
    get_zone_coefficient,
    get_zone_label,
)
from verifdevis.quote_analysis.types import ExtractedData, MarketPriceLine, PriceBand

logger = logging.getLogger(__name__)

NO_REFERENCE_CATEGORY = "autres"

# Tolérances autour de la fourchette avant de considérer un prix hors marché
LOW_PRICE_FACTOR = 0.7
HIGH_PRICE_FACTOR = 1.3


@dataclass(frozen=True)
class ReferencePriceData:
    job_type: str
    label: str
    unit: str
    price_min_unit_ht: float
    price_avg_unit_ht: float
    price_max_unit_ht: float
    fixed_min_ht: float = 0
    fixed_avg_ht: float = 0
    fixed_max_ht: float = 0
    nb_observations: int = 0

    @property
    def is_fixed_price(self) -> bool:
        return self.price_max_unit_ht <= 0 and self.fixed_max_ht > 0

    @property
    def base_band(self) -> PriceBand:
        if self.is_fixed_price:
            return PriceBand(min=self.fixed_min_ht, avg=self.fixed_avg_ht, max=self.fixed_max_ht)
        return PriceBand(min=self.price_min_unit_ht, avg=self.price_avg_unit_ht, max=self.price_max_unit_ht)


def load_reference_prices(domain: str | None = None) -> dict[str, ReferencePriceData]:
    qs = ReferencePrice.objects.all()
    if domain:
        qs = qs.filter(domain=domain)
    return {
        row.job_type: ReferencePriceData(
            job_type=row.job_type,
            label=row.label,
            unit=row.unit,
            price_min_unit_ht=row.price_min_unit_ht,
            price_avg_unit_ht=row.price_avg_unit_ht,
            price_max_unit_ht=row.price_max_unit_ht,
            fixed_min_ht=row.fixed_min_ht,
            fixed_avg_ht=row.fixed_avg_ht,
            fixed_max_ht=row.fixed_max_ht,
            nb_observations=row.nb_observations,
        )
        for row in qs
    }


def reliability_tier(nb_observations: int) -> str:
    if nb_observations >= 30:
        return "bon"
    if nb_observations >= 10:
        return "moyen"
    return "faible"


def price_position(price: float | None, band: PriceBand | None) -> str | None:
    if price is None or band is None or band.max <= 0:
        return None
    if price < band.min * LOW_PRICE_FACTOR:
        return "below"
    if price > band.max * HIGH_PRICE_FACTOR:
        return "above"
    return "within"


class MarketPriceResolver:
    """
    Résout une fourchette de prix de marché par type de travaux.

    Les tables de référence (prix, zones) peuvent être injectées ; à défaut
    elles sont lues en base au premier usage.
    """

    def __init__(
        self,
        config: AnalysisConfig | None = None,
        reference_prices: dict[str, ReferencePriceData] | None = None,
        zone_table: dict | None = None,
        domain: str | None = None,
    ):
        self.config = config or AnalysisConfig()
        self._reference_prices = reference_prices
        self._zone_table = zone_table
        self.domain = domain

    @property
    def reference_prices(self) -> dict[str, ReferencePriceData]:
        if self._reference_prices is None:
            self._reference_prices = load_reference_prices(self.domain)
        return self._reference_prices

    def resolve(
        self,
        job_type: str,
        postal_code: str | None,
        quantity: float | None = None,
        amount_ht: float | None = None,
        label: str | None = None,
    ) -> MarketPriceLine:
        zone = get_zone_coefficient(postal_code, table=self._zone_table, coefficients=self.config.zone_coefficients)
        reference = self.reference_prices.get(job_type) if job_type != NO_REFERENCE_CATEGORY else None

        unavailable = dict(
            job_type=job_type,
            label=label or (reference.label if reference else job_type),
            zone=zone.zone,
            zone_coefficient=zone.coefficient,
            zone_is_default=zone.is_default,
            available=False,
            quote_amount_ht=amount_ht,
        )
        if reference is None:
            return MarketPriceLine(**unavailable, unavailable_reason="Pas de référence de prix pour cette catégorie")

        if reference.nb_observations < self.config.market_price_min_sample:
            return MarketPriceLine(
                **unavailable,
                unit=reference.unit,
                nb_observations=reference.nb_observations,
                reliability=reliability_tier(reference.nb_observations),
                unavailable_reason="Échantillon de prix insuffisant",
            )

        band = apply_zone_coefficient(reference.base_band, zone.coefficient)

        if reference.is_fixed_price:
            quote_price = amount_ht
        elif amount_ht is not None and quantity:
            quote_price = amount_ht / quantity
        else:
            quote_price = None

        return MarketPriceLine(
            job_type=job_type,
            label=label or reference.label,
            zone=zone.zone,
            zone_coefficient=zone.coefficient,
            zone_is_default=zone.is_default,
            available=True,
            band=band,
            unit=reference.unit,
            reliability=reliability_tier(reference.nb_observations),
            nb_observations=reference.nb_observations,
            quote_amount_ht=amount_ht,
            quote_unit_price=round(quote_price, 2) if quote_price is not None else None,
            position=price_position(quote_price, band),
        )

    def resolve_items(self, extracted: ExtractedData) -> list[MarketPriceLine]:
        """Une ligne de prix par type de travaux présent dans le devis."""
        postal_code = extracted.site.postal_code or extracted.company.postal_code
        lines = []
        for job_type in extracted.job_types:
            items = [item for item in extracted.items if item.category == job_type]
            amounts = [item.amount_ht for item in items if item.amount_ht is not None]
            quantities = [item.quantity for item in items if item.quantity]
            units = {item.unit for item in items if item.unit}
            amount_ht = sum(amounts) if amounts else None
            # Quantités additionnables seulement si elles partagent la même unité
            quantity = sum(quantities) if quantities and len(units) <= 1 and len(quantities) == len(items) else None
            label = items[0].label if len(items) == 1 else None
            lines.append(self.resolve(job_type, postal_code, quantity=quantity, amount_ht=amount_ht, label=label))
        logger.info(
            "Market prices resolved: %d line(s), %d available",
            len(lines),
            sum(1 for line in lines if line.available),
        )
        return lines


################################################################################
## DVF


def get_dvf_market_price(code_insee: str, type_bien: str | None = None, zone_table: dict | None = None) -> dict:
    """
    Prix au m² issus des transactions DVF pour une commune.

    Returns:
        {dvf_available, prix_m2, source, zone_label, niveau_fiabilite?, nb_transactions?}
    """
    row = DvfPrice.objects.filter(code_insee=code_insee).first()
    zone = get_zone_coefficient(row.code_postal if row else None, table=zone_table)
    if row is None:
        return {
            "dvf_available": False,
            "prix_m2": None,
            "source": "DVF",
            "zone_label": get_zone_label(zone.zone),
        }

    if type_bien == "maison":
        prix_m2, nb = row.prix_m2_maison, row.nb_ventes_maison
    elif type_bien == "appartement":
        prix_m2, nb = row.prix_m2_appartement, row.nb_ventes_appartement
    else:
        prices = [p for p in (row.prix_m2_appartement, row.prix_m2_maison) if p]
        prix_m2 = round(sum(prices) / len(prices)) if prices else None
        counts = [n for n in (row.nb_ventes_maison, row.nb_ventes_appartement) if n is not None]
        nb = sum(counts) if counts else None

    result = {
        "dvf_available": prix_m2 is not None,
        "prix_m2": prix_m2,
        "source": row.source,
        "zone_label": get_zone_label(zone.zone),
    }
    if nb is not None:
        result["nb_transactions"] = nb
        result["niveau_fiabilite"] = reliability_tier(nb)
    return result
