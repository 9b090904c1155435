from unittest.mock import patch

import pytest
from django.db import DatabaseError

from verifdevis.quote_analysis.models import ZoneType
from verifdevis.quote_analysis.pricing.zones import (
    apply_zone_coefficient,
    get_zone_coefficient,
    get_zone_label,
    load_zone_table,
)
from verifdevis.quote_analysis.types import PriceBand

from tests.factories.analysis import ZoneGeographiqueFactory

TABLE = {
    "75": (ZoneType.GRANDE_VILLE, 1.25),
    "69": (ZoneType.GRANDE_VILLE, None),
    "23": (ZoneType.PETITE_VILLE, None),
    "99": ("zone_inconnue", 1.5),
}


def test_get_zone_coefficient_from_table():
    zone = get_zone_coefficient("75011", table=TABLE)
    assert zone.zone == ZoneType.GRANDE_VILLE
    assert zone.coefficient == 1.25
    assert zone.is_default is False


def test_get_zone_coefficient_default_coefficient_for_zone_type():
    assert get_zone_coefficient("69003", table=TABLE).coefficient == 1.20
    assert get_zone_coefficient("23000", table=TABLE).coefficient == 0.90


@pytest.mark.parametrize("postal_code", ["44000", None, "", "7", "99000"])
def test_get_zone_coefficient_falls_back_to_default_zone(postal_code):
    zone = get_zone_coefficient(postal_code, table=TABLE)
    assert zone.zone == ZoneType.VILLE_MOYENNE
    assert zone.coefficient == 1.0
    assert zone.is_default is True


def test_get_zone_coefficient_custom_coefficients():
    coefficients = {ZoneType.VILLE_MOYENNE: 1.05, ZoneType.GRANDE_VILLE: 1.3}
    assert get_zone_coefficient("69003", table=TABLE, coefficients=coefficients).coefficient == 1.3
    assert get_zone_coefficient("44000", table=TABLE, coefficients=coefficients).coefficient == 1.05


@pytest.mark.django_db
def test_get_zone_coefficient_reads_database():
    ZoneGeographiqueFactory(prefixe_postal="13", type_zone=ZoneType.GRANDE_VILLE, coefficient=1.15)

    assert load_zone_table() == {"13": (ZoneType.GRANDE_VILLE, 1.15)}
    zone = get_zone_coefficient("13001")
    assert zone.coefficient == 1.15
    assert zone.is_default is False


def test_get_zone_coefficient_database_error():
    with patch("verifdevis.quote_analysis.pricing.zones.load_zone_table", side_effect=DatabaseError("down")):
        assert get_zone_coefficient("13001").is_default is True


def test_apply_zone_coefficient_rounds_values():
    band = apply_zone_coefficient(PriceBand(min=40, avg=55, max=70), 1.2)
    assert band == PriceBand(min=48, avg=66, max=84)


def test_apply_zone_coefficient_small_town():
    band = apply_zone_coefficient(PriceBand(min=1000, avg=1500, max=2000), 0.90)
    assert band == PriceBand(min=900, avg=1350, max=1800)


def test_apply_zone_coefficient_rounds_half_up():
    assert apply_zone_coefficient(PriceBand(min=25, avg=35, max=45), 0.9) == PriceBand(min=23, avg=32, max=41)


def test_apply_zone_coefficient_keeps_band_ordered():
    band = apply_zone_coefficient(PriceBand(min=80, avg=60, max=100), 1.0)
    assert band.min <= band.avg <= band.max
    assert band == PriceBand(min=60, avg=80, max=100)


def test_get_zone_label():
    assert get_zone_label(ZoneType.PETITE_VILLE) == "Petite ville / rural"
    assert get_zone_label("autre") == "Zone inconnue"
