"""
Classification du document : devis de travaux, diagnostic immobilier ou
prestation technique.

Mots clés recherchés dans le texte extrait (sans accents, minuscules), avec des
stopwords qui excluent un type. La déclaration du LLM sert à départager
quand aucun mot clé n'est trouvé.
"""

import logging
import re
from dataclasses import dataclass

from verifdevis.quote_analysis.models import DocumentType
from verifdevis.quote_analysis.processor.post_processing_llm import strip_accents

logger = logging.getLogger(__name__)

DIAGNOSTIC_TYPES = {
    "DPE": ["diagnostic de performance energetique", "dpe"],
    "Amiante": ["amiante"],
    "Plomb (CREP)": ["crep", "constat de risque d'exposition au plomb", "diagnostic plomb"],
    "Électricité": ["diagnostic electricite", "etat de l'installation interieure d'electricite"],
    "Gaz": ["diagnostic gaz", "etat de l'installation interieure de gaz"],
    "Termites": ["termites"],
    "ERP": ["etat des risques", "erp"],
    "Carrez": ["loi carrez", "carrez"],
}

LIST_CLASSIFICATION = {
    DocumentType.DIAGNOSTIC: {
        "words": ["diagnostic immobilier", "diagnostiqueur", "dossier de diagnostic technique", "ddt"]
        + [word for words in DIAGNOSTIC_TYPES.values() for word in words],
        "stopwords": ["pompe a chaleur", "isolation des combles"],
    },
    DocumentType.PRESTATION_TECHNIQUE: {
        "words": [
            "audit energetique",
            "etude thermique",
            "etude de sol",
            "etude geotechnique",
            "maitrise d'oeuvre",
            "bureau d'etudes",
            "expertise batiment",
            "note de calcul",
            "releve de geometre",
            "mission g1",
            "mission g2",
        ],
        "stopwords": [],
    },
}

# Marqueurs de travaux : un document qui en contient beaucoup reste un devis
# même s'il cite un diagnostic (ex : "repérage amiante avant démolition").
WORKS_MARKERS = ["fourniture et pose", "main d'oeuvre", "garantie decennale", "depose", "m2", "ml"]

LLM_DOCUMENT_TYPES = {
    "devis": DocumentType.DEVIS,
    "devis_travaux": DocumentType.DEVIS,
    "diagnostic": DocumentType.DIAGNOSTIC,
    "diagnostic_immobilier": DocumentType.DIAGNOSTIC,
    "prestation_technique": DocumentType.PRESTATION_TECHNIQUE,
}


@dataclass(frozen=True)
class Classification:
    document_type: DocumentType
    diagnostic_types: tuple[str, ...] = ()
    matched_words: tuple[str, ...] = ()


def normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", strip_accents(text or "").lower().replace("’", "'"))


def find_expressions(expressions: list[str], text: str) -> list[str]:
    return [expr for expr in expressions if re.search(rf"\b{re.escape(expr)}\b", text)]


def classify_text(text: str, llm_document_type: str | None = None) -> Classification:
    """
    Retourne le type de document. Par défaut (aucun indice), "devis".
    """
    normalized = normalize_text(text)
    scores = {}
    matched = {}
    for document_type, rules in LIST_CLASSIFICATION.items():
        if find_expressions(rules["stopwords"], normalized):
            continue
        words = find_expressions(rules["words"], normalized)
        if words:
            scores[document_type] = len(words)
            matched[document_type] = words

    works_score = len(find_expressions(WORKS_MARKERS, normalized))
    diagnostic_types = tuple(
        label for label, words in DIAGNOSTIC_TYPES.items() if find_expressions(words, normalized)
    )

    llm_type = LLM_DOCUMENT_TYPES.get((llm_document_type or "").strip().lower())

    if scores:
        best = max(scores, key=scores.get)
        if scores[best] > works_score or llm_type == best:
            return Classification(
                document_type=best,
                diagnostic_types=diagnostic_types if best == DocumentType.DIAGNOSTIC else (),
                matched_words=tuple(matched[best]),
            )

    if llm_type is not None and llm_type != DocumentType.DEVIS and works_score == 0:
        logger.info("Document type %r taken from LLM extraction", llm_type)
        return Classification(document_type=llm_type, diagnostic_types=diagnostic_types)

    return Classification(document_type=DocumentType.DEVIS)
