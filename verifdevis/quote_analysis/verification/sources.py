"""
Clients des sources externes interrogées par le vérificateur.

Chaque appel a son propre timeout court. Une erreur réseau, un timeout ou une
réponse non 2xx lève UpstreamDegraded ; un 404 du registre est une réponse
négative explicite, pas une erreur.
"""

import logging
import time
from dataclasses import dataclass, field

from django.conf import settings

import pydantic
import requests

from verifdevis.quote_analysis.errors import UpstreamDegraded
from verifdevis.quote_analysis.types import CompanyRecord, FinancialYear

logger = logging.getLogger(__name__)


class SourceClient:
    name = "source"

    def __init__(self, base_url: str, timeout: float = 5.0, session: requests.Session | None = None):
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("Accept", "application/json")

    def _get(self, url: str, params: dict | None = None, accept_statuses: tuple[int, ...] = ()) -> requests.Response:
        start = time.monotonic()
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            raise UpstreamDegraded(self.name, code="timeout", details=f"{self.name} timeout") from e
        except requests.RequestException as e:
            raise UpstreamDegraded(self.name, code="network_error", details=f"{self.name}: {e.__class__.__name__}") from e
        finally:
            logger.debug("%s GET took %dms", self.name, (time.monotonic() - start) * 1000)

        if response.ok or response.status_code in accept_statuses:
            return response
        raise UpstreamDegraded(self.name, code=f"HTTP_{response.status_code}", details=f"{self.name} returned {response.status_code}")

    def _json(self, response: requests.Response) -> dict:
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamDegraded(self.name, code="invalid_json", details=f"{self.name} returned invalid JSON") from e


################################################################################
## Registre (Pappers)


class PappersFinance(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="ignore")

    annee: int | None = None
    date_de_cloture_exercice: str | None = None
    chiffre_affaires: float | None = None
    resultat: float | None = None
    fonds_propres: float | None = None
    capitaux_propres: float | None = None
    taux_endettement: float | None = None
    ratio_de_liquidite: float | None = None
    autonomie_financiere: float | None = None

    def to_financial_year(self) -> FinancialYear:
        equity = self.capitaux_propres if self.capitaux_propres is not None else self.fonds_propres
        return FinancialYear(
            closing_date=self.date_de_cloture_exercice or (str(self.annee) if self.annee else None),
            revenue=self.chiffre_affaires,
            net_result=self.resultat,
            equity=equity,
            debt_ratio=self.taux_endettement,
            liquidity_ratio=self.ratio_de_liquidite,
            financial_autonomy=self.autonomie_financiere,
        )


class PappersSiege(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="ignore")

    adresse_ligne_1: str | None = None
    code_postal: str | None = None
    ville: str | None = None


class PappersCompany(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="ignore")

    nom_entreprise: str | None = None
    denomination: str | None = None
    date_creation: str | None = None
    entreprise_cessee: bool | None = False
    procedure_collective_existe: bool | None = None
    procedure_collective_en_cours: bool | None = None
    procedure_collective: bool | None = None
    libelle_code_naf: str | None = None
    siege: PappersSiege | None = None
    finances: list[PappersFinance] = pydantic.Field(default_factory=list)

    def to_record(self) -> CompanyRecord:
        siege = self.siege or PappersSiege()
        procedure = self.procedure_collective_en_cours
        if procedure is None:
            procedure = self.procedure_collective
        # Exercice le plus récent en premier
        finances = sorted(self.finances, key=lambda f: f.annee or 0, reverse=True)
        return CompanyRecord(
            name=self.nom_entreprise or self.denomination,
            address=siege.adresse_ligne_1,
            postal_code=siege.code_postal,
            city=siege.ville,
            creation_date=self.date_creation,
            is_active=self.entreprise_cessee is not True,
            procedure_collective=bool(procedure),
            activity_label=self.libelle_code_naf,
            finances=[f.to_financial_year() for f in finances],
        )


class PappersClient(SourceClient):
    name = "pappers"

    def __init__(self, api_key: str, base_url: str, **kwargs):
        super().__init__(base_url, **kwargs)
        self.api_key = api_key

    @classmethod
    def from_settings(cls, timeout: float, session=None) -> "PappersClient | None":
        if not settings.PAPPERS_API_KEY:
            return None
        return cls(settings.PAPPERS_API_KEY, settings.PAPPERS_API_URL, timeout=timeout, session=session)

    def get_company(self, identifier: str) -> CompanyRecord | None:
        """Fiche entreprise, None si le registre ne la connaît pas (404)."""
        param = "siret" if len(identifier) == 14 else "siren"
        response = self._get(
            f"{self.base_url.rstrip('/')}/entreprise",
            params={param: identifier, "api_token": self.api_key},
            accept_statuses=(404,),
        )
        if response.status_code == 404:
            return None
        try:
            company = PappersCompany.model_validate(self._json(response))
        except pydantic.ValidationError as e:
            raise UpstreamDegraded(self.name, code="invalid_payload", details=str(e)) from e
        return company.to_record()


################################################################################
## BODACC


class BodaccClient(SourceClient):
    name = "bodacc"

    @classmethod
    def from_settings(cls, timeout: float, session=None) -> "BodaccClient":
        return cls(settings.BODACC_API_URL, timeout=timeout, session=session)

    def has_collective_procedure(self, siren: str) -> bool:
        """Annonce de jugement (ouverture de procédure collective) publiée pour ce SIREN."""
        where = f'numeroIdentifiantRcs="{siren}" AND (typeavis="Jugement" OR typeavis="Jugement d\'ouverture")'
        response = self._get(self.base_url, params={"where": where, "limit": 1})
        return (self._json(response).get("total_count") or 0) > 0


################################################################################
## Banque (OpenIBAN)


@dataclass
class IbanCheck:
    valid: bool
    bank_name: str | None = None
    bic: str | None = None


class OpenIbanClient(SourceClient):
    name = "openiban"

    @classmethod
    def from_settings(cls, timeout: float, session=None) -> "OpenIbanClient":
        return cls(settings.OPENIBAN_API_URL, timeout=timeout, session=session)

    def validate(self, iban: str) -> IbanCheck:
        response = self._get(f"{self.base_url.rstrip('/')}/{iban}", params={"getBIC": "true"})
        data = self._json(response)
        bank_data = data.get("bankData") or {}
        return IbanCheck(
            valid=data.get("valid") is True,
            bank_name=bank_data.get("name") or None,
            bic=bank_data.get("bic") or None,
        )


################################################################################
## Réputation (Google Places)


@dataclass
class PlaceRating:
    name: str | None
    rating: float | None
    reviews_count: int | None


class GooglePlacesClient(SourceClient):
    name = "google"

    def __init__(self, api_key: str, base_url: str, **kwargs):
        super().__init__(base_url, **kwargs)
        self.api_key = api_key

    @classmethod
    def from_settings(cls, timeout: float, session=None) -> "GooglePlacesClient | None":
        if not settings.GOOGLE_PLACES_API_KEY:
            return None
        return cls(settings.GOOGLE_PLACES_API_KEY, settings.GOOGLE_PLACES_API_URL, timeout=timeout, session=session)

    def find_rating(self, company_name: str, city: str | None = None) -> PlaceRating | None:
        search_input = f"{company_name} {city or ''}".strip()
        response = self._get(
            self.base_url,
            params={
                "input": search_input,
                "inputtype": "textquery",
                "fields": "name,rating,user_ratings_total",
                "key": self.api_key,
            },
        )
        data = self._json(response)
        if data.get("status") not in ("OK", "ZERO_RESULTS"):
            raise UpstreamDegraded(self.name, code="api_status", details=f"google status {data.get('status')}")
        candidates = data.get("candidates") or []
        if not candidates:
            return None
        place = candidates[0]
        return PlaceRating(
            name=place.get("name"),
            rating=place.get("rating"),
            reviews_count=place.get("user_ratings_total"),
        )


################################################################################
## Qualifications RGE (ADEME)


class RgeClient(SourceClient):
    name = "rge"

    @classmethod
    def from_settings(cls, timeout: float, session=None) -> "RgeClient":
        return cls(settings.ADEME_RGE_API_URL, timeout=timeout, session=session)

    def qualifications(self, siren: str) -> list[str]:
        response = self._get(self.base_url, params={"q": siren, "q_fields": "siret", "size": 10})
        results = self._json(response).get("results") or []
        qualifications = []
        for row in results:
            if not str(row.get("siret") or "").startswith(siren):
                continue
            label = row.get("nom_qualification") or row.get("domaine")
            if label and label not in qualifications:
                qualifications.append(label)
        return qualifications


################################################################################
## Contexte du chantier (API Adresse, Géorisques, GPU)


@dataclass
class GeoPoint:
    latitude: float
    longitude: float
    commune: str | None
    code_insee: str | None


@dataclass
class HeritageCheck:
    status: str  # possible | non_detecte
    types: list[str] = field(default_factory=list)


class AdresseClient(SourceClient):
    name = "adresse"

    @classmethod
    def from_settings(cls, timeout: float, session=None) -> "AdresseClient":
        return cls(settings.ADRESSE_API_URL, timeout=timeout, session=session)

    def geocode(self, query: str) -> GeoPoint | None:
        response = self._get(self.base_url, params={"q": query, "limit": 1})
        features = self._json(response).get("features") or []
        if not features:
            return None
        longitude, latitude = features[0]["geometry"]["coordinates"]
        properties = features[0].get("properties") or {}
        return GeoPoint(
            latitude=latitude,
            longitude=longitude,
            commune=properties.get("city") or properties.get("label"),
            code_insee=properties.get("citycode"),
        )


class GeorisquesClient(SourceClient):
    name = "georisques"

    @classmethod
    def from_settings(cls, timeout: float, session=None) -> "GeorisquesClient":
        return cls(settings.GEORISQUES_API_URL, timeout=timeout, session=session)

    def risks(self, code_insee: str) -> list[str]:
        response = self._get(f"{self.base_url.rstrip('/')}/gaspar/risques", params={"code_insee": code_insee})
        data = self._json(response).get("data") or []
        if not data:
            return []
        details = data[0].get("risques_detail") or []
        return [
            label
            for label in (r.get("libelle_risque_long") or r.get("libelle_risque") or r.get("type") for r in details)
            if label
        ]

    def seismic_zone(self, code_insee: str) -> str | None:
        response = self._get(f"{self.base_url.rstrip('/')}/zonage_sismique", params={"code_insee": code_insee})
        data = self._json(response).get("data") or []
        return data[0].get("zone_sismicite") if data else None


class GpuClient(SourceClient):
    name = "gpu"

    @classmethod
    def from_settings(cls, timeout: float, session=None) -> "GpuClient":
        return cls(settings.GPU_API_URL, timeout=timeout, session=session)

    def heritage(self, latitude: float, longitude: float) -> HeritageCheck:
        response = self._get(self.base_url, params={"lat": latitude, "lon": longitude})
        features = self._json(response).get("features") or []
        types = []
        for feature in features:
            properties = feature.get("properties") or {}
            kind = (properties.get("typepsc") or "").lower()
            if "monument" in kind or "patrimoine" in kind:
                types.append(properties.get("libelle") or properties.get("typepsc"))
        return HeritageCheck(status="possible" if types else "non_detecte", types=types)
