"""
Orchestration d'une analyse : extraction, puis vérification entreprise et
prix de marché en parallèle, score, mise en forme et enregistrement.

Une analyse se termine toujours en "completed" ou "error" : aucun résultat
partiel n'est enregistré comme terminé.
"""

import datetime
import logging
import time
import traceback
from concurrent.futures import ThreadPoolExecutor

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError
from django.db.transaction import atomic

from celery.exceptions import SoftTimeLimitExceeded

from verifdevis.common.utils import log_execution_time
from verifdevis.quote_analysis.config import AnalysisConfig
from verifdevis.quote_analysis.errors import (
    AnalysisError,
    AnalysisNotFound,
    AnalysisTimeout,
    ExtractionError,
    PersistenceError,
    ValidationError,
)
from verifdevis.quote_analysis.llm.client import LLMClient
from verifdevis.quote_analysis.models import Analysis, AnalysisStatus
from verifdevis.quote_analysis.pricing.market_prices import MarketPriceResolver, load_reference_prices
from verifdevis.quote_analysis.pricing.zones import load_zone_table
from verifdevis.quote_analysis.processor.extraction import extract_attestation_data, extract_quote_data
from verifdevis.quote_analysis.processor.text_extraction import extract_text, guess_mime_type, validate_document
from verifdevis.quote_analysis.rendering import render
from verifdevis.quote_analysis.scoring.scorer import Scorer
from verifdevis.quote_analysis.scoring.strategic import load_strategic_matrix
from verifdevis.quote_analysis.summarize import summarize_quote, summarize_work_items
from verifdevis.quote_analysis.verification.attestation import determine_level
from verifdevis.quote_analysis.verification.cache import DatabaseCompanyCache
from verifdevis.quote_analysis.verification.verifier import CompanyVerifier

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Une erreur inattendue est survenue pendant l'analyse du devis. Veuillez réessayer."


def now():
    return datetime.datetime.now(tz=datetime.timezone.utc)


class AnalysisRunner:
    """
    Exécute l'analyse d'un devis enregistré.

    Les collaborateurs (client LLM, vérificateur, résolveur de prix) sont
    construits à partir de la configuration sauf s'ils sont injectés.
    """

    def __init__(
        self,
        config: AnalysisConfig | None = None,
        llm_client: LLMClient | None = None,
        verifier: CompanyVerifier | None = None,
        price_resolver: MarketPriceResolver | None = None,
    ):
        self.config = config or AnalysisConfig.from_settings()
        self._llm_client = llm_client
        self._verifier = verifier
        self._price_resolver = price_resolver

    @property
    def llm_client(self) -> LLMClient:
        if self._llm_client is None:
            self._llm_client = LLMClient()
        return self._llm_client

    def get_verifier(self, domain: str) -> CompanyVerifier:
        if self._verifier is None:
            self._verifier = CompanyVerifier(self.config, cache=DatabaseCompanyCache(), domain=domain)
        return self._verifier

    def get_price_resolver(self, domain: str) -> MarketPriceResolver:
        # Tables de référence chargées ici ; depuis les threads, seul le cache entreprise accède à la base
        if self._price_resolver is None:
            self._price_resolver = MarketPriceResolver(
                self.config,
                reference_prices=load_reference_prices(domain),
                zone_table=load_zone_table(),
                domain=domain,
            )
        return self._price_resolver

    ############################################################################
    ## Cycle de vie

    def run(self, analysis_id: str) -> Analysis:
        analysis, started = self._start(analysis_id)
        if not started:
            return analysis

        start = time.monotonic()
        try:
            self.process(analysis, deadline=start + self.config.time_budget_seconds)
        except PersistenceError as e:
            logger.exception("Analysis %s could not be saved", analysis.id)
            self._fail(analysis, e.message, e.details)
            raise
        except AnalysisError as e:
            logger.warning("Analysis %s failed: %s (%s)", analysis.id, e.code, e.details)
            self._fail(analysis, e.message, e.details)
        except SoftTimeLimitExceeded:
            logger.warning("Analysis %s exceeded the time budget", analysis.id)
            self._fail(analysis, AnalysisTimeout.default_message, "soft time limit exceeded")
        except Exception as e:
            logger.exception("Unexpected error during analysis %s", analysis.id)
            self._fail(analysis, GENERIC_ERROR_MESSAGE, f"{e!r}\n{traceback.format_exc()}")
        return analysis

    def _start(self, analysis_id: str) -> tuple[Analysis, bool]:
        """Passe l'analyse en cours ; False si elle est déjà en cours ou terminée."""
        with atomic():
            try:
                analysis = Analysis.objects.select_for_update().get(id=analysis_id)
            except (Analysis.DoesNotExist, DjangoValidationError):
                raise AnalysisNotFound(details=str(analysis_id)) from None

            if analysis.status not in (AnalysisStatus.PENDING, AnalysisStatus.ERROR):
                logger.info("Analysis already processed id=%s status=%s", analysis.id, analysis.status)
                return analysis, False

            analysis.status = AnalysisStatus.PROCESSING
            analysis.started_at = now()
            analysis.finished_at = None
            analysis.duration = None
            analysis.error_message = ""
            analysis.error_details = ""
            analysis.save(
                update_fields=["status", "started_at", "finished_at", "duration", "error_message", "error_details"]
            )
        logger.info("Analysis started id=%s file=%s", analysis.id, analysis.file.name)
        return analysis, True

    def _fail(self, analysis: Analysis, message: str, details: str | None):
        analysis.status = AnalysisStatus.ERROR
        analysis.error_message = message
        analysis.error_details = details or ""
        analysis.finished_at = now()
        if analysis.started_at:
            analysis.duration = analysis.finished_at - analysis.started_at
        try:
            analysis.save(update_fields=["status", "error_message", "error_details", "finished_at", "duration"])
        except DatabaseError:
            logger.exception("Could not mark analysis %s as failed", analysis.id)

    def _check_deadline(self, deadline: float, phase: str):
        if time.monotonic() > deadline:
            raise AnalysisTimeout(details=f"time budget exceeded after {phase}")

    ############################################################################
    ## Étapes

    def read_document(self, field_file, filename: str, declared_mime: str) -> tuple[bytes, str]:
        try:
            with field_file.open("rb") as f:
                content = f.read()
        except OSError as e:
            raise ExtractionError(details=f"Fichier introuvable : {e}") from e
        mime_type = guess_mime_type(filename or field_file.name, declared_mime)
        validate_document(content, mime_type, self.config)
        return content, mime_type

    def read_attestation(self, analysis: Analysis) -> dict | None:
        """Attestation facultative : un document illisible est ignoré."""
        if not analysis.attestation:
            return None
        try:
            content, mime_type = self.read_document(
                analysis.attestation, analysis.attestation.name, analysis.attestation_mime_type
            )
            text, _ = extract_text(content, mime_type, llm_client=self.llm_client, config=self.config)
        except (ValidationError, ExtractionError) as e:
            logger.warning("Attestation of analysis %s ignored: %s", analysis.id, e.details or e.message)
            return None
        return extract_attestation_data(text, self.llm_client, self.config) or None

    def process(self, analysis: Analysis, deadline: float):
        domain = analysis.domain or self.config.default_domain

        with log_execution_time(f"extraction {analysis.id}"):
            content, mime_type = self.read_document(analysis.file, analysis.filename, analysis.mime_type)
            text, is_ocr = extract_text(
                content, mime_type, llm_client=self.llm_client, config=self.config, filename=analysis.filename
            )
            extracted = extract_quote_data(text, self.llm_client, self.config, domain=domain)
            attestation = self.read_attestation(analysis)
        logger.info("Analysis %s: text extracted (%d chars, ocr=%s)", analysis.id, len(text), is_ocr)
        self._check_deadline(deadline, "extraction")

        verifier = self.get_verifier(domain)
        resolver = self.get_price_resolver(domain)
        strategic_matrix = load_strategic_matrix(extracted.job_types)

        with log_execution_time(f"verification {analysis.id}"):
            with ThreadPoolExecutor(max_workers=2) as executor:
                verification_future = executor.submit(verifier.verify, extracted, attestation)
                prices_future = executor.submit(resolver.resolve_items, extracted)
                verification = verification_future.result()
                market_prices = prices_future.result()
        self._check_deadline(deadline, "verification")

        scoring = Scorer(self.config, domain=domain).score(extracted, verification, market_prices, strategic_matrix)
        resume = summarize_quote(extracted, scoring, self.llm_client, self.config)
        descriptions = [
            item["description"] for item in summarize_work_items(extracted.items, self.llm_client, self.config)
        ]
        rendered = render(extracted, verification, scoring, market_prices, resume=resume, descriptions=descriptions)
        self._check_deadline(deadline, "scoring")

        level2 = determine_level(verification.attestation_comparison)
        analysis.status = AnalysisStatus.COMPLETED
        analysis.score = rendered.score
        analysis.document_type = extracted.document_type
        analysis.resume = rendered.resume
        analysis.points_ok = rendered.points_ok
        analysis.alertes = rendered.alertes
        analysis.recommandations = rendered.recommandations
        analysis.types_travaux = rendered.types_travaux
        analysis.banner = rendered.banner
        analysis.site_context = rendered.site_context
        analysis.raw_text = text
        analysis.extracted_data = extracted.to_dict()
        analysis.verification = verification.to_dict()
        analysis.attestation_comparison = verification.attestation_comparison
        analysis.assurance_level2_score = level2 or ""
        analysis.strategic_scores = scoring.strategic.to_dict() if scoring.strategic else None
        analysis.finished_at = now()
        analysis.duration = analysis.finished_at - analysis.started_at
        try:
            with atomic():
                analysis.save()
        except DatabaseError as e:
            raise PersistenceError(details=str(e)) from e
        logger.info("Analysis completed id=%s score=%s duration=%s", analysis.id, analysis.score, analysis.duration)
