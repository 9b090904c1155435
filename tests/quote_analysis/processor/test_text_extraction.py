import pymupdf
import pytest

from verifdevis.quote_analysis.config import AnalysisConfig
from verifdevis.quote_analysis.errors import ExtractionError, ValidationError
from verifdevis.quote_analysis.llm.client import LLMApiError
from verifdevis.quote_analysis.processor.text_extraction import extract_text, guess_mime_type, validate_document

OCR_TEXT = "Devis toiture - SIRET 732 829 320 00074 - Total HT 6 000,00 € - " * 5


def make_pdf(lines: list[str]) -> bytes:
    doc = pymupdf.open()
    page = doc.new_page()
    page.insert_text((50, 72), "\n".join(lines), fontsize=9)
    content = doc.tobytes()
    doc.close()
    return content


NATIVE_PDF_LINES = [
    "TOITURES MARTIN SARL - 12 rue des Lilas 69003 Lyon - SIRET 732 829 320 00074",
    "Devis numero 2025-041 du 15/03/2025 pour le chantier situe 4 chemin du Moulin",
    "Refection complete de la toiture en tuiles terre cuite, 100 m2 a 60 euros le m2",
    "Depose des anciennes tuiles, evacuation des gravats et nettoyage du chantier inclus",
    "Total HT 6000 euros, TVA 10 pour cent 600 euros, Total TTC 6600 euros a regler",
    "Acompte de 30 pour cent a la commande, solde a la reception des travaux realises",
]


def test_guess_mime_type():
    assert guess_mime_type("devis.PDF") == "application/pdf"
    assert guess_mime_type("photo.jpeg") == "image/jpeg"
    assert guess_mime_type("scan.heic") == "image/heic"
    assert guess_mime_type("devis.pdf", "application/pdf; charset=binary") == "application/pdf"
    assert guess_mime_type(None) is None


def test_validate_document_rejects_unsupported_type():
    with pytest.raises(ValidationError) as exc_info:
        validate_document(b"Devis", "text/plain", AnalysisConfig())
    assert exc_info.value.status == 400
    assert exc_info.value.code == "unsupported_mime_type"


def test_validate_document_rejects_empty_and_large_files():
    with pytest.raises(ValidationError) as exc_info:
        validate_document(b"", "application/pdf", AnalysisConfig())
    assert exc_info.value.code == "empty_file"

    with pytest.raises(ValidationError) as exc_info:
        validate_document(b"x" * 2048, "application/pdf", AnalysisConfig(max_file_size=1024))
    assert exc_info.value.code == "file_too_large"


def test_extract_text_plain_text_rejected(llm_client):
    """Un fichier texte est refusé avant toute extraction."""
    with pytest.raises(ValidationError):
        extract_text(b"Devis toiture 6000 euros", "text/plain", llm_client=llm_client)
    llm_client.ocr_pdf.assert_not_called()
    llm_client.ask_vision.assert_not_called()


def test_extract_text_native_pdf(llm_client):
    text, is_ocr = extract_text(make_pdf(NATIVE_PDF_LINES), "application/pdf", llm_client=llm_client)

    assert is_ocr is False
    assert "TOITURES MARTIN SARL" in text
    assert "Total TTC 6600 euros" in text
    llm_client.ocr_pdf.assert_not_called()


def test_extract_text_scanned_pdf_uses_ocr(llm_client):
    llm_client.ocr_pdf.return_value = OCR_TEXT

    text, is_ocr = extract_text(make_pdf(["Scan"]), "application/pdf", llm_client=llm_client)

    assert is_ocr is True
    assert text == OCR_TEXT.strip()
    llm_client.ocr_pdf.assert_called_once()
    assert llm_client.ocr_pdf.call_args.kwargs["model"] == AnalysisConfig().ocr_model


def test_extract_text_image_uses_vision(llm_client):
    llm_client.ask_vision.return_value = OCR_TEXT + "\x00"

    text, is_ocr = extract_text(b"\xff\xd8\xff fake jpeg", None, llm_client=llm_client, filename="photo.jpg")

    assert is_ocr is True
    assert "\x00" not in text
    args = llm_client.ask_vision.call_args.args
    assert args[0] == b"\xff\xd8\xff fake jpeg"
    assert args[1] == "image/jpeg"


def test_extract_text_provider_failure(llm_client):
    llm_client.ask_vision.side_effect = LLMApiError("Api Error", code="HTTP_503", details="busy")

    with pytest.raises(ExtractionError) as exc_info:
        extract_text(b"fake png", "image/png", llm_client=llm_client)
    assert "HTTP_503" in exc_info.value.details


def test_extract_text_too_short(llm_client):
    llm_client.ask_vision.return_value = "Devis"

    with pytest.raises(ExtractionError) as exc_info:
        extract_text(b"fake png", "image/png", llm_client=llm_client)
    assert exc_info.value.code == "document_illisible"

