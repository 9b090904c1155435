"""
Extraction du texte brut d'un devis (PDF ou image).

Les PDF natifs sont lus avec PyMuPDF ; un PDF scanné (peu de mots) part à
l'OCR du fournisseur LLM, une photo ou un scan image au modèle vision.
"""

import logging
import mimetypes
import os

import pymupdf

from verifdevis.common.utils import clean_nul_bytes, count_words, log_execution_time
from verifdevis.quote_analysis.config import AnalysisConfig
from verifdevis.quote_analysis.errors import ExtractionError, ValidationError
from verifdevis.quote_analysis.llm.client import LLMApiError, LLMClient

logger = logging.getLogger(__name__)

EXTENSION_MIME_TYPES = {
    "pdf": "application/pdf",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "heic": "image/heic",
    "webp": "image/webp",
}

VISION_PROMPT = (
    "Transcris intégralement le texte de ce document (devis ou attestation), "
    "ligne par ligne, sans résumer ni reformuler. Conserve les montants, les "
    "numéros SIRET, IBAN et les tableaux de prestations tels qu'ils apparaissent."
)


def guess_mime_type(filename: str | None, declared: str | None = None) -> str | None:
    """Type MIME déclaré, sinon déduit de l'extension du fichier."""
    if declared:
        return declared.split(";")[0].strip().lower()
    if not filename:
        return None
    extension = os.path.splitext(filename)[1].lstrip(".").lower()
    return EXTENSION_MIME_TYPES.get(extension) or mimetypes.guess_type(filename)[0]


def validate_document(content: bytes, mime_type: str | None, config: AnalysisConfig):
    if mime_type not in config.allowed_mime_types:
        raise ValidationError(
            "Format de fichier non supporté. Formats acceptés : PDF, JPG, PNG, HEIC, WEBP.",
            code="unsupported_mime_type",
            details=f"mime_type={mime_type!r}",
        )
    if not content:
        raise ValidationError("Le fichier est vide.", code="empty_file")
    if len(content) > config.max_file_size:
        size_mb = config.max_file_size // (1024 * 1024)
        raise ValidationError(
            f"Fichier trop volumineux (maximum {size_mb} Mo).",
            code="file_too_large",
            details=f"size={len(content)}",
        )


def extract_text_from_pdf(file_content: bytes, llm_client: LLMClient, config: AnalysisConfig):
    """
    Extrait le texte d'un PDF. Si le PDF contient moins de mots que le seuil,
    utilise l'OCR pour extraire le texte.

    Returns:
        tuple: (texte extrait, booléen indiquant si l'OCR a été utilisé)
    """
    try:
        doc = pymupdf.Document(stream=file_content)
    except (pymupdf.FileDataError, RuntimeError) as e:
        raise ExtractionError(details=f"PDF illisible: {e}") from e

    with doc:
        text = "\n".join(page.get_text(sort=True) for page in doc).strip()

    if count_words(text) >= config.pdf_native_min_words:
        return text, False

    # Peu de mots : PDF scanné
    logger.info("PDF has %d word(s), falling back to OCR", count_words(text))
    return llm_client.ocr_pdf(file_content, model=config.ocr_model), True


def extract_text_from_image(file_content: bytes, mime_type: str, llm_client: LLMClient, config: AnalysisConfig):
    return llm_client.ask_vision(file_content, mime_type, VISION_PROMPT, model=config.vision_model), True


def extract_text(
    file_content: bytes,
    mime_type: str | None,
    llm_client: LLMClient | None = None,
    config: AnalysisConfig | None = None,
    filename: str | None = None,
):
    """
    Valide puis extrait le texte d'un document.

    Returns:
        tuple: (texte extrait, booléen indiquant si l'OCR/vision a été utilisé)

    Raises:
        ValidationError: type MIME hors liste, fichier vide ou trop volumineux.
        ExtractionError: texte vide ou trop court, ou échec du fournisseur d'extraction.
    """
    config = config or AnalysisConfig()
    mime_type = guess_mime_type(filename, mime_type)
    validate_document(file_content, mime_type, config)
    llm_client = llm_client or LLMClient()

    try:
        with log_execution_time(f"extract_text({filename or mime_type})"):
            if mime_type == "application/pdf":
                text, is_ocr = extract_text_from_pdf(file_content, llm_client, config)
            else:
                text, is_ocr = extract_text_from_image(file_content, mime_type, llm_client, config)
    except LLMApiError as e:
        logger.warning("Text extraction provider failed: %s", e.code)
        raise ExtractionError(details=f"{e.code}: {e.details}") from e

    text = clean_nul_bytes(text or "").strip()
    if len(text) < config.min_text_length:
        raise ExtractionError(details=f"Texte extrait trop court ({len(text)} caractères)")
    return text, is_ocr
