"""
Vérification de l'entreprise émettrice d'un devis.

Les sources (registre, BODACC, banque, réputation, RGE, contexte du chantier)
sont interrogées en parallèle, chacune avec son propre timeout. Une source en
échec est notée "unknown" et n'interrompt jamais l'analyse : le résultat est
alors marqué dégradé.
"""

import datetime
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from django.db import connection
from django.utils import timezone

from schwifty import IBAN
from schwifty.exceptions import SchwiftyException

from verifdevis.quote_analysis.config import AnalysisConfig, get_domain_config, get_required_guarantees
from verifdevis.quote_analysis.errors import UpstreamDegraded
from verifdevis.quote_analysis.models import CacheStatus, ScoreColor
from verifdevis.quote_analysis.processor.attributes.devis import ENERGY_CATEGORIES
from verifdevis.quote_analysis.processor.post_processing_llm import (
    check_consistency_iban,
    check_consistency_siret,
    iban_country_code,
)
from verifdevis.quote_analysis.types import (
    ActivityStatus,
    CompanyRecord,
    ExtractedData,
    GuaranteeCheck,
    LookupStatus,
    SiteContext,
    SourceStatus,
    VerificationResult,
)
from verifdevis.quote_analysis.verification.attestation import (
    ComparisonStatus,
    attested_kinds,
    compare_attestation_with_quote,
)
from verifdevis.quote_analysis.verification.cache import CachedCompany, CompanyCache, ttl_for_status
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

logger = logging.getLogger(__name__)

# Erreurs de forme dans une réponse par ailleurs valide (champ manquant...)
PAYLOAD_ERRORS = (KeyError, IndexError, TypeError, ValueError)


@dataclass
class VerificationClients:
    """Clients des sources externes. None : source non configurée (ignorée)."""

    pappers: PappersClient | None = None
    bodacc: BodaccClient | None = None
    openiban: OpenIbanClient | None = None
    google: GooglePlacesClient | None = None
    rge: RgeClient | None = None
    adresse: AdresseClient | None = None
    georisques: GeorisquesClient | None = None
    gpu: GpuClient | None = None

    @classmethod
    def from_settings(cls, timeout: float) -> "VerificationClients":
        return cls(
            pappers=PappersClient.from_settings(timeout),
            bodacc=BodaccClient.from_settings(timeout),
            openiban=OpenIbanClient.from_settings(timeout),
            google=GooglePlacesClient.from_settings(timeout),
            rge=RgeClient.from_settings(timeout),
            adresse=AdresseClient.from_settings(timeout),
            georisques=GeorisquesClient.from_settings(timeout),
            gpu=GpuClient.from_settings(timeout),
        )


def compute_age_years(creation_date: str | None, today: datetime.date) -> int | None:
    if not creation_date:
        return None
    try:
        created = datetime.date.fromisoformat(creation_date[:10])
    except ValueError:
        return None
    return int((today - created).days // 365.25)


class CompanyVerifier:
    def __init__(
        self,
        config: AnalysisConfig | None = None,
        cache: CompanyCache | None = None,
        clients: VerificationClients | None = None,
        domain: str | None = None,
    ):
        self.config = config or AnalysisConfig()
        self.cache = cache
        self.clients = clients if clients is not None else VerificationClients.from_settings(self.config.source_timeout)
        self.domain = domain or self.config.default_domain

    ############################################################################
    ## Exécution des sources

    def _run_source(self, result: VerificationResult, name: str, func, *args):
        """Appelle une source et consigne son statut. Retourne None en cas d'échec."""
        status = result.sources.setdefault(name, SourceStatus(name=name))
        start = time.monotonic()
        try:
            value = func(*args)
        except UpstreamDegraded as e:
            logger.warning("Source %s degraded: %s (%s)", name, e.code, e.details)
            status.status = "unknown"
            status.error = e.code
            return None
        except PAYLOAD_ERRORS as e:
            logger.warning("Source %s returned an unexpected payload: %r", name, e)
            status.status = "unknown"
            status.error = "invalid_payload"
            return None
        finally:
            status.latency_ms = int((time.monotonic() - start) * 1000)
        status.status = "ok"
        return value

    ############################################################################
    ## Registre

    def _lookup_company(self, identifier: str) -> tuple[str, CompanyRecord | None, bool]:
        """(statut cache, fiche, cache_hit). Lève UpstreamDegraded si le registre échoue."""
        cached = self.cache.get(identifier) if self.cache is not None else None
        if cached is not None:
            if cached.status == CacheStatus.ERROR:
                raise UpstreamDegraded("pappers", code=cached.error_code or "cached_error", details="cached error")
            record = CompanyRecord.from_payload(cached.payload) if cached.status == CacheStatus.OK else None
            return cached.status, record, True

        try:
            record = self.clients.pappers.get_company(identifier)
        except UpstreamDegraded as e:
            self._cache_put(identifier, CachedCompany(status=CacheStatus.ERROR, error_code=e.code, error_message=e.message))
            raise
        if record is None:
            self._cache_put(identifier, CachedCompany(status=CacheStatus.NOT_FOUND))
            return CacheStatus.NOT_FOUND, None, False
        self._cache_put(identifier, CachedCompany(status=CacheStatus.OK, payload=record.to_payload()))
        return CacheStatus.OK, record, False

    def _cache_put(self, key: str, value: CachedCompany):
        if self.cache is not None:
            self.cache.put(key, value, ttl_for_status(value.status, self.config))

    def _registry_task(self, result: VerificationResult, identifier: str):
        """Exécuté dans un thread : la connexion ouverte par le cache est fermée à la fin."""
        status = result.sources.setdefault("pappers", SourceStatus(name="pappers"))
        try:
            value = self._run_source(result, "pappers", self._lookup_company, identifier)
        finally:
            connection.close()
        if value is None:
            return None
        cache_status, record, cache_hit = value
        status.cache_hit = cache_hit
        return cache_status, record

    def _apply_registry(self, result: VerificationResult, extracted: ExtractedData, registry, today):
        if registry is None:
            result.lookup_status = LookupStatus.ERROR
            return
        cache_status, record = registry
        if cache_status == CacheStatus.NOT_FOUND:
            result.lookup_status = LookupStatus.NOT_FOUND
            result.exists = False
            return

        result.lookup_status = LookupStatus.OK
        result.exists = True
        result.official_name = record.name
        result.official_address = " ".join(p for p in (record.address, record.postal_code) if p) or None
        result.official_city = record.city
        result.creation_date = record.creation_date
        result.age_years = compute_age_years(record.creation_date, today)
        result.finances = list(record.finances)
        result.finances_status = "ok" if record.finances else "not_found"
        result.procedure_collective = record.procedure_collective
        if not record.is_active:
            result.activity_status = ActivityStatus.CEASED
        elif record.procedure_collective:
            result.activity_status = ActivityStatus.INSOLVENCY
        else:
            result.activity_status = ActivityStatus.ACTIVE

        declared_postal = extracted.company.postal_code
        if declared_postal and record.postal_code:
            result.address_matches = declared_postal == record.postal_code

    ############################################################################
    ## Banque

    def _check_iban(self, result: VerificationResult, iban: str):
        result.iban_checked = True
        result.iban_country = iban_country_code(iban)
        check = None
        if self.clients.openiban is not None:
            check = self._run_source(result, "openiban", self.clients.openiban.validate, iban)
        if check is not None:
            result.iban_valid = check.valid
            result.iban_bank = check.bank_name
            return

        # Contrôle local de la clé quand OpenIBAN ne répond pas
        result.iban_valid = check_consistency_iban(iban)
        if result.iban_valid:
            try:
                result.iban_bank = IBAN(iban).bank_name
            except SchwiftyException:
                result.iban_bank = None
        if "openiban" in result.sources:
            result.sources["openiban"].error = f"{result.sources['openiban'].error} (contrôle local)"

    ############################################################################
    ## Contexte du chantier

    def _site_context(self, result: VerificationResult, extracted: ExtractedData) -> SiteContext | None:
        site = extracted.site
        query = " ".join(p for p in (site.address, site.postal_code, site.city) if p)
        if not query or self.clients.adresse is None:
            return None
        point = self._run_source(result, "adresse", self.clients.adresse.geocode, query)
        if point is None:
            return None

        context = SiteContext(
            commune=point.commune, code_insee=point.code_insee, latitude=point.latitude, longitude=point.longitude
        )
        with ThreadPoolExecutor(max_workers=3) as executor:
            risks = seismic = heritage = None
            if self.clients.georisques is not None and point.code_insee:
                risks = executor.submit(
                    self._run_source, result, "georisques", self.clients.georisques.risks, point.code_insee
                )
                seismic = executor.submit(
                    self._run_source, result, "georisques_sismique", self.clients.georisques.seismic_zone, point.code_insee
                )
            if self.clients.gpu is not None:
                heritage = executor.submit(
                    self._run_source, result, "gpu", self.clients.gpu.heritage, point.latitude, point.longitude
                )

            if risks is not None:
                risk_list = risks.result()
                context.risks_checked = risk_list is not None
                context.risks = risk_list or []
                context.seismic_zone = seismic.result()
            if heritage is not None:
                check = heritage.result()
                if check is not None:
                    context.heritage_checked = True
                    context.heritage_status = check.status
                    context.heritage_types = check.types
        return context

    ############################################################################
    ## Garanties

    def check_guarantees(
        self, extracted: ExtractedData, attestation: dict | None, comparison: dict | None, today: datetime.date
    ) -> dict[str, GuaranteeCheck]:
        """
        Cohérence de chaque garantie exigée avec le devis :

        - attestation établie pour une autre entreprise (SIREN différent) : ROUGE ;
        - attestation expirée ou activités couvertes sans rapport avec les travaux : ORANGE ;
        - ni attestation ni mention sur le devis : ORANGE ;
        - sinon VERT.
        """
        checks = {}
        attested = attested_kinds(attestation) if attestation else ()
        labels = get_domain_config(self.domain).insurance_labels

        for kind in get_required_guarantees(self.domain, extracted.document_type):
            if comparison is not None and kind in attested:
                checks[kind] = self._check_attested_guarantee(kind, comparison)
                continue

            policy = extracted.guarantees.get(kind)
            if not policy.mentioned:
                checks[kind] = GuaranteeCheck(
                    kind=kind,
                    level=ScoreColor.ORANGE,
                    present=False,
                    reasons=[f"{labels.get(kind, kind)} ni mentionnée sur le devis ni justifiée par une attestation"],
                )
            elif policy.valid_until is not None and policy.valid_until < (extracted.quote_date or today):
                checks[kind] = GuaranteeCheck(
                    kind=kind,
                    level=ScoreColor.ORANGE,
                    present=True,
                    reasons=[f"période de validité dépassée ({policy.valid_until:%d/%m/%Y})"],
                )
            else:
                checks[kind] = GuaranteeCheck(kind=kind, level=ScoreColor.VERT, present=True)
        return checks

    @staticmethod
    def _check_attested_guarantee(kind: str, comparison: dict) -> GuaranteeCheck:
        if comparison["siret_siren"] == ComparisonStatus.INCOHERENT:
            return GuaranteeCheck(
                kind=kind,
                level=ScoreColor.ROUGE,
                present=True,
                reasons=["l'attestation fournie concerne une autre entreprise (SIREN différent du devis)"],
            )
        reasons = []
        if comparison["periode_validite"] == ComparisonStatus.INCOHERENT:
            reasons.append("attestation expirée")
        if comparison["activite_couverte"] == ComparisonStatus.INCOMPLET:
            reasons.append("les activités couvertes ne correspondent pas aux travaux du devis")
        if comparison["nom_entreprise"] == ComparisonStatus.INCOHERENT:
            reasons.append("le nom de l'assuré diffère de l'entreprise du devis")
        if reasons:
            return GuaranteeCheck(kind=kind, level=ScoreColor.ORANGE, present=True, reasons=reasons)
        return GuaranteeCheck(kind=kind, level=ScoreColor.VERT, present=True)

    ############################################################################
    ## Point d'entrée

    def verify(self, extracted: ExtractedData, attestation: dict | None = None) -> VerificationResult:
        today = timezone.localdate()
        result = VerificationResult(fetched_at=timezone.now())
        company = extracted.company
        identifier = company.siret

        if not identifier:
            result.identifier_status = "absent"
            result.lookup_status = LookupStatus.NO_SIRET
        elif not check_consistency_siret(identifier):
            # Clé de contrôle fausse : l'identifiant ne peut pas exister au registre
            result.identifier_status = "invalid"
            result.lookup_status = LookupStatus.NOT_FOUND
            result.exists = False
        else:
            result.identifier_status = "valid"

        siren = company.siren if result.identifier_status == "valid" else None
        result.rge_relevant = any(job in ENERGY_CATEGORIES for job in extracted.job_types)

        with ThreadPoolExecutor(max_workers=6) as executor:
            registry = bodacc = google = rge = iban = None
            if siren and self.clients.pappers is not None:
                registry = executor.submit(self._registry_task, result, identifier)
            elif siren:
                result.lookup_status = LookupStatus.SKIPPED
            if siren and self.clients.bodacc is not None:
                bodacc = executor.submit(self._run_source, result, "bodacc", self.clients.bodacc.has_collective_procedure, siren)
            name = company.name
            if name and self.clients.google is not None:
                google = executor.submit(self._run_source, result, "google", self.clients.google.find_rating, name, company.city)
            if siren and result.rge_relevant and self.clients.rge is not None:
                rge = executor.submit(self._run_source, result, "rge", self.clients.rge.qualifications, siren)
            site = executor.submit(self._site_context, result, extracted)
            if extracted.payment.iban:
                iban = executor.submit(self._check_iban, result, extracted.payment.iban)

            if registry is not None:
                self._apply_registry(result, extracted, registry.result(), today)
            if bodacc is not None:
                has_procedure = bodacc.result()
                if has_procedure:
                    result.procedure_collective = True
                    if result.activity_status == ActivityStatus.ACTIVE:
                        result.activity_status = ActivityStatus.INSOLVENCY
                elif has_procedure is False and result.procedure_collective is None:
                    result.procedure_collective = False
            if google is not None:
                place = google.result()
                if place is not None:
                    result.google_found = True
                    result.google_rating = place.rating
                    result.google_reviews = place.reviews_count
            if rge is not None:
                qualifications = rge.result() or []
                result.rge_qualifications = qualifications
                result.rge_found = bool(qualifications)
            result.site_context = site.result()
            if iban is not None:
                iban.result()

        comparison = None
        if attestation:
            comparison = compare_attestation_with_quote(attestation, extracted, today=today)
            result.attestation_comparison = comparison
        result.guarantees = self.check_guarantees(extracted, attestation, comparison, today)

        logger.info(
            "Company verified: lookup=%s identifier=%s degraded=%s sources=%s",
            result.lookup_status,
            result.identifier_status,
            result.degraded,
            {name: source.status for name, source in result.sources.items()},
        )
        return result
