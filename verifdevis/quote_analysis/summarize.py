"""
Résumés en langage clair produits par le LLM.

Ces textes n'influencent jamais le score : en cas d'échec du LLM, un texte
déterministe est utilisé à la place.
"""

import json
import logging
import re

from verifdevis.quote_analysis.config import AnalysisConfig
from verifdevis.quote_analysis.llm.client import LLMApiError, LLMClient
from verifdevis.quote_analysis.types import ExtractedData, LineItem, ScoringResult

logger = logging.getLogger(__name__)

SUMMARY_PROMPT = """Tu es un assistant qui explique un devis de travaux à un particulier.
Rédige un résumé clair et pédagogique du devis en 3 phrases maximum : nature des travaux, montant total
et principaux points d'attention. Ne donne aucun avis sur l'artisan et n'invente aucune information.

Entreprise : {company}
Postes : {items}
Total HT : {total_ht} | Total TTC : {total_ttc}
Résultat de l'analyse : {score} - {explanation}

Réponds uniquement avec le texte du résumé."""

WORK_ITEMS_PROMPT = """Tu es un assistant spécialisé dans les devis de travaux.
Pour chaque poste de travaux ci-dessous, écris un résumé clair et concis en MOINS DE 50 MOTS.
Le résumé doit décrire la nature du travail de façon compréhensible pour un non-spécialiste.

Postes de travaux :
{items}

Réponds UNIQUEMENT avec un tableau JSON de chaînes, une par poste, dans le même ordre."""


def format_amount(amount: float | None) -> str:
    if amount is None:
        return "non détecté"
    return f"{amount:,.2f} €".replace(",", " ").replace(".", ",")


def fallback_summary(extracted: ExtractedData, scoring: ScoringResult) -> str:
    parts = []
    if extracted.company.name:
        parts.append(f"Devis de {extracted.company.name}")
    else:
        parts.append("Devis")
    if extracted.items:
        labels = ", ".join(item.label for item in extracted.items[:3])
        more = f" et {len(extracted.items) - 3} autre(s) poste(s)" if len(extracted.items) > 3 else ""
        parts[-1] += f" pour : {labels}{more}"
    total = extracted.total_ttc if extracted.total_ttc is not None else extracted.total_ht
    if total is not None:
        suffix = "TTC" if extracted.total_ttc is not None else "HT"
        parts.append(f"Montant total : {format_amount(total)} {suffix}")
    parts.append(scoring.explanation)
    return ". ".join(p.rstrip(".") for p in parts) + "."


def summarize_quote(
    extracted: ExtractedData,
    scoring: ScoringResult,
    llm_client: LLMClient | None = None,
    config: AnalysisConfig | None = None,
) -> str:
    """Résumé narratif du devis (champ resume)."""
    config = config or AnalysisConfig()
    if not config.summary_enabled:
        return fallback_summary(extracted, scoring)

    llm_client = llm_client or LLMClient()
    prompt = SUMMARY_PROMPT.format(
        company=extracted.company.name or "non identifiée",
        items="; ".join(item.label for item in extracted.items[:10]) or "non détaillés",
        total_ht=format_amount(extracted.total_ht),
        total_ttc=format_amount(extracted.total_ttc),
        score=scoring.score,
        explanation=scoring.explanation,
    )
    try:
        summary = llm_client.ask_llm(
            [{"role": "user", "content": prompt}], model=config.summary_model, temperature=0.2
        )
    except LLMApiError as e:
        logger.warning("Summary generation failed (%s), using fallback", e.code)
        return fallback_summary(extracted, scoring)
    summary = (summary or "").strip()
    return summary or fallback_summary(extracted, scoring)


def _fallback_item(item: LineItem, description: str | None = None) -> dict:
    return {
        "description": description or item.label,
        "category": item.category or None,
        "amount_ht": item.amount_ht,
        "quantity": item.quantity,
        "unit": item.unit or None,
    }


def summarize_work_items(
    items: tuple[LineItem, ...],
    llm_client: LLMClient | None = None,
    config: AnalysisConfig | None = None,
) -> list[dict]:
    """Une description courte par poste ; le libellé brut si le LLM échoue."""
    if not items:
        return []
    config = config or AnalysisConfig()
    llm_client = llm_client or LLMClient()

    items_list = "\n".join(
        f"{i}. {item.label} (catégorie: {item.category or 'non précisée'}, montant: "
        f"{item.amount_ht if item.amount_ht is not None else '?'} € HT, quantité: "
        f"{item.quantity if item.quantity is not None else '?'} {item.unit or ''})"
        for i, item in enumerate(items, start=1)
    )
    try:
        text = llm_client.ask_llm(
            [{"role": "user", "content": WORK_ITEMS_PROMPT.format(items=items_list)}],
            model=config.summary_model,
            temperature=0.2,
        )
    except LLMApiError as e:
        logger.warning("Work items summary failed (%s), using labels", e.code)
        return [_fallback_item(item) for item in items]

    match = re.search(r"\[[\s\S]*\]", text or "")
    try:
        summaries = json.loads(match.group(0)) if match else None
    except json.JSONDecodeError:
        summaries = None
    if not isinstance(summaries, list):
        logger.warning("Could not parse work items summary, using labels")
        return [_fallback_item(item) for item in items]
    if len(summaries) != len(items):
        logger.warning("Got %d summaries for %d items", len(summaries), len(items))

    return [
        _fallback_item(item, summaries[i] if i < len(summaries) and isinstance(summaries[i], str) else None)
        for i, item in enumerate(items)
    ]
