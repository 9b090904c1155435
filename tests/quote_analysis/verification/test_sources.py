import pytest
import requests
import responses
from responses import matchers

from verifdevis.quote_analysis.errors import UpstreamDegraded
from verifdevis.quote_analysis.verification.sources import (
    AdresseClient,
    BodaccClient,
    GeorisquesClient,
    GooglePlacesClient,
    GpuClient,
    OpenIbanClient,
    PappersClient,
    RgeClient,
)

from tests.utils import VALID_IBAN, VALID_SIRET

PAPPERS_URL = "https://api.pappers.test/v2"

PAPPERS_RESPONSE = {
    "nom_entreprise": "TOITURES MARTIN",
    "date_creation": "2012-03-01",
    "entreprise_cessee": False,
    "procedure_collective_en_cours": False,
    "libelle_code_naf": "Travaux de couverture par éléments",
    "siege": {"adresse_ligne_1": "12 RUE DES LILAS", "code_postal": "69003", "ville": "LYON"},
    "finances": [
        {"annee": 2022, "chiffre_affaires": 400000, "resultat": 12000, "taux_endettement": 40},
        {"annee": 2023, "chiffre_affaires": 450000, "resultat": -5000, "capitaux_propres": 60000},
    ],
}


@pytest.fixture
def pappers():
    return PappersClient("test-key", PAPPERS_URL, timeout=1)


################################################################################
## Pappers


@responses.activate
def test_pappers_get_company(pappers):
    responses.add(
        responses.GET,
        f"{PAPPERS_URL}/entreprise",
        json=PAPPERS_RESPONSE,
        match=[matchers.query_param_matcher({"siret": VALID_SIRET, "api_token": "test-key"})],
    )

    record = pappers.get_company(VALID_SIRET)

    assert record.name == "TOITURES MARTIN"
    assert record.postal_code == "69003"
    assert record.is_active
    assert not record.procedure_collective
    # Exercice le plus récent en premier
    assert [f.closing_date for f in record.finances] == ["2023", "2022"]
    assert record.finances[0].equity == 60000


@responses.activate
def test_pappers_lookup_by_siren(pappers):
    responses.add(
        responses.GET,
        f"{PAPPERS_URL}/entreprise",
        json={"nom_entreprise": "X", "entreprise_cessee": True},
        match=[matchers.query_param_matcher({"siren": VALID_SIRET[:9], "api_token": "test-key"})],
    )

    assert pappers.get_company(VALID_SIRET[:9]).is_active is False


@responses.activate
def test_pappers_not_found(pappers):
    responses.add(responses.GET, f"{PAPPERS_URL}/entreprise", json={"error": "not found"}, status=404)

    assert pappers.get_company(VALID_SIRET) is None


@pytest.mark.parametrize(
    "kwargs, code",
    [
        ({"status": 500, "json": {}}, "HTTP_500"),
        ({"status": 401, "json": {}}, "HTTP_401"),
        ({"body": requests.Timeout()}, "timeout"),
        ({"body": requests.ConnectionError()}, "network_error"),
        ({"body": "<html>maintenance</html>"}, "invalid_json"),
        ({"json": {"finances": "none"}}, "invalid_payload"),
    ],
)
@responses.activate
def test_pappers_degraded(pappers, kwargs, code):
    responses.add(responses.GET, f"{PAPPERS_URL}/entreprise", **kwargs)

    with pytest.raises(UpstreamDegraded) as exc_info:
        pappers.get_company(VALID_SIRET)

    assert exc_info.value.code == code
    assert exc_info.value.source == "pappers"


def test_pappers_from_settings(settings):
    settings.PAPPERS_API_KEY = ""
    assert PappersClient.from_settings(timeout=1) is None

    settings.PAPPERS_API_KEY = "abc"
    client = PappersClient.from_settings(timeout=2)
    assert client.api_key == "abc"
    assert client.timeout == 2


################################################################################
## Autres sources


@responses.activate
def test_bodacc_collective_procedure():
    url = "https://bodacc.test/records"
    responses.add(responses.GET, url, json={"total_count": 2, "results": []})

    assert BodaccClient(url).has_collective_procedure(VALID_SIRET[:9]) is True
    assert "numeroIdentifiantRcs" in responses.calls[0].request.url


@responses.activate
def test_bodacc_no_procedure():
    url = "https://bodacc.test/records"
    responses.add(responses.GET, url, json={"total_count": 0, "results": []})

    assert BodaccClient(url).has_collective_procedure(VALID_SIRET[:9]) is False


@responses.activate
def test_openiban_validate():
    responses.add(
        responses.GET,
        f"https://openiban.test/validate/{VALID_IBAN}",
        json={"valid": True, "bankData": {"name": "Banque Test", "bic": "BNPAFRPP"}},
    )

    check = OpenIbanClient("https://openiban.test/validate").validate(VALID_IBAN)

    assert check.valid
    assert check.bank_name == "Banque Test"
    assert check.bic == "BNPAFRPP"


@responses.activate
def test_google_find_rating():
    url = "https://google.test/findplace"
    responses.add(
        responses.GET,
        url,
        json={"status": "OK", "candidates": [{"name": "Toitures Martin", "rating": 4.6, "user_ratings_total": 38}]},
    )

    place = GooglePlacesClient("key", url).find_rating("Toitures Martin", "Lyon")

    assert place.rating == 4.6
    assert place.reviews_count == 38


@responses.activate
def test_google_zero_results_and_error_status():
    url = "https://google.test/findplace"
    client = GooglePlacesClient("key", url)
    responses.add(responses.GET, url, json={"status": "ZERO_RESULTS", "candidates": []})
    responses.add(responses.GET, url, json={"status": "REQUEST_DENIED"})

    assert client.find_rating("Inconnu") is None
    with pytest.raises(UpstreamDegraded) as exc_info:
        client.find_rating("Inconnu")
    assert exc_info.value.code == "api_status"


@responses.activate
def test_rge_qualifications():
    url = "https://rge.test/lines"
    responses.add(
        responses.GET,
        url,
        json={
            "results": [
                {"siret": VALID_SIRET, "nom_qualification": "Qualibat RGE"},
                {"siret": VALID_SIRET, "nom_qualification": "Qualibat RGE"},
                {"siret": VALID_SIRET, "domaine": "Pompe à chaleur"},
                {"siret": "99999999900011", "nom_qualification": "Autre entreprise"},
            ]
        },
    )

    assert RgeClient(url).qualifications(VALID_SIRET[:9]) == ["Qualibat RGE", "Pompe à chaleur"]


@responses.activate
def test_adresse_geocode():
    url = "https://adresse.test/search"
    responses.add(
        responses.GET,
        url,
        json={
            "features": [
                {
                    "geometry": {"coordinates": [4.92, 45.77]},
                    "properties": {"city": "Vaulx-en-Velin", "citycode": "69256"},
                }
            ]
        },
    )

    point = AdresseClient(url).geocode("4 chemin du Moulin 69120")

    assert (point.latitude, point.longitude) == (45.77, 4.92)
    assert point.code_insee == "69256"


@responses.activate
def test_adresse_no_result():
    url = "https://adresse.test/search"
    responses.add(responses.GET, url, json={"features": []})

    assert AdresseClient(url).geocode("nulle part") is None


@responses.activate
def test_georisques():
    base = "https://georisques.test/api/v1"
    responses.add(
        responses.GET,
        f"{base}/gaspar/risques",
        json={"data": [{"risques_detail": [{"libelle_risque_long": "Inondation"}, {"type": "Séisme"}]}]},
    )
    responses.add(responses.GET, f"{base}/zonage_sismique", json={"data": [{"zone_sismicite": "2 - Faible"}]})
    client = GeorisquesClient(base)

    assert client.risks("69256") == ["Inondation", "Séisme"]
    assert client.seismic_zone("69256") == "2 - Faible"


@responses.activate
def test_gpu_heritage():
    url = "https://gpu.test/document"
    responses.add(
        responses.GET,
        url,
        json={
            "features": [
                {"properties": {"typepsc": "Monument historique", "libelle": "Périmètre église"}},
                {"properties": {"typepsc": "Zone U"}},
            ]
        },
    )
    responses.add(responses.GET, url, json={"features": []})
    client = GpuClient(url)

    heritage = client.heritage(45.77, 4.92)
    assert heritage.status == "possible"
    assert heritage.types == ["Périmètre église"]
    assert client.heritage(45.77, 4.92).status == "non_detecte"
