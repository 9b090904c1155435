"""
Structuration du texte d'un devis en ExtractedData.

1. Le texte est envoyé au LLM avec la table des attributs (consignes) et un
   format de réponse JSON schema.
2. La réponse est réparée si besoin (blocs de code, virgules finales, JSON
   tronqué), nettoyée (post_processing_llm) puis validée avec pydantic.
3. Une détection par règles (SIRET/SIREN, IBAN, montants, pourcentages, code
   postal, mentions d'assurance) complète ou corrige la réponse.

Si le LLM échoue ou répond un JSON inexploitable, seule la détection par
règles est utilisée.
"""

import datetime
import json
import logging
import re

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from verifdevis.quote_analysis.config import EXTRACTION_RULES, AnalysisConfig, get_domain_config
from verifdevis.quote_analysis.llm.client import LLMApiError, LLMClient
from verifdevis.quote_analysis.models import DocumentType
from verifdevis.quote_analysis.processor.attributes.devis import JOB_CATEGORIES
from verifdevis.quote_analysis.processor.attributes_query import ATTRIBUTES, select_attr
from verifdevis.quote_analysis.processor.classifier import classify_text
from verifdevis.quote_analysis.processor.post_processing_llm import (
    clean_llm_response,
    normalize_text,
    post_processing_amount,
    post_processing_iban,
    post_processing_payment_modes,
    post_processing_percentage,
    post_processing_postal_code,
    post_processing_siret,
    strip_accents,
)
from verifdevis.quote_analysis.types import (
    CompanyInfo,
    ExtractedData,
    Guarantees,
    InsurancePolicy,
    LineItem,
    PaymentTerms,
    SiteInfo,
)

logger = logging.getLogger(__name__)


################################################################################
## Prompt et format de réponse


def get_prompt_from_attributes(df_attributes: pd.DataFrame) -> str:
    question = """Extrait les informations clés et renvoie-les uniquement au format
        JSON spécifié, sans texte supplémentaire.

        Format de réponse (commence par "{" et termine par "}") :
        {
    """
    fields = [f'  "{row["output_field"]}": ""' for _, row in df_attributes.iterrows()]
    question += ", \n".join(fields)
    question += """ \n}

  Instructions d'extraction :\n\n"""
    question += "\n".join(row["consigne"] for _, row in df_attributes.iterrows())
    return question


def create_response_format(df_attributes: pd.DataFrame, document_type: str) -> dict:
    df_filtered = select_attr(df_attributes, document_type)

    properties = {}
    required = []
    root_defs = {}
    for _, row in df_filtered.iterrows():
        output_field = row["output_field"]
        required.append(output_field)
        schema_to_use = row.get("schema") or {"type": ["string", "null"]}
        if not isinstance(schema_to_use, dict):
            raise ValueError(f"Schema must be a dict (field={output_field})")
        schema_to_use = dict(schema_to_use)

        # Remonter les $defs à la racine pour que les $ref soient résolus
        if "$defs" in schema_to_use:
            for def_name, def_schema in schema_to_use.pop("$defs").items():
                if def_name in root_defs and root_defs[def_name] != def_schema:
                    raise ValueError(f"Schema $defs name clash: '{def_name}' (field={output_field})")
                root_defs[def_name] = def_schema
        properties[output_field] = schema_to_use

    schema = {"type": "object", "properties": properties, "required": required}
    if root_defs:
        schema["$defs"] = root_defs
    return {
        "type": "json_schema",
        "json_schema": {"name": document_type, "schema": schema, "strict": True},
    }


################################################################################
## Réparation du JSON


def repair_truncated_json(content: str) -> str:
    """Ferme les chaînes, tableaux et objets laissés ouverts par une réponse tronquée."""
    stack = []
    in_string = False
    escape_next = False
    for char in content:
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char in "{[":
            stack.append(char)
        elif char in "}]" and stack:
            stack.pop()

    repaired = content
    if in_string:
        repaired += '"'
    repaired = re.sub(r"[,:]\s*$", "", repaired)
    for opener in reversed(stack):
        repaired += "}" if opener == "{" else "]"
    return repaired


def parse_llm_json(content: str | dict) -> dict:
    """
    Décode la réponse du LLM, en la réparant si besoin.

    Raises:
        ValueError: si le contenu reste indécodable ou n'est pas un objet JSON.
    """
    if isinstance(content, dict):
        return content
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        cleaned = content
        block = re.search(r"```(?:json)?\s*([\s\S]*?)(?:```|$)", cleaned)
        if block:
            cleaned = block.group(1).strip()
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start != -1:
            cleaned = cleaned[start : end + 1] if end > start else cleaned[start:]
        cleaned = re.sub(r",(\s*[}\]])", r"\1", cleaned)
        cleaned = repair_truncated_json(cleaned)
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON from LLM: {e}") from e
        logger.info("LLM JSON response repaired")
    if not isinstance(parsed, dict):
        raise ValueError("LLM response is not a JSON object")
    return parsed


################################################################################
## Validation


class LLMLineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    libelle: str = ""
    categorie: str = "autres"
    quantite: float | None = None
    unite: str | None = None
    prix_unitaire_ht: float | None = None
    montant_ht: float | None = None

    @field_validator("quantite", "prix_unitaire_ht", "montant_ht", mode="before")
    @classmethod
    def parse_amount(cls, value):
        return post_processing_amount(value)

    @field_validator("libelle", "categorie", mode="before")
    @classmethod
    def none_to_default(cls, value, info):
        if value is None:
            return "autres" if info.field_name == "categorie" else ""
        return value


class QuoteLLMResponse(BaseModel):
    """Réponse du LLM pour un devis, après nettoyage."""

    model_config = ConfigDict(extra="ignore")

    type_document: str | None = None
    entreprise_nom: str | None = None
    siret: str | None = None
    entreprise_adresse: str | None = None
    code_postal_entreprise: str | None = None
    ville_entreprise: str | None = None
    metier: str | None = None
    iban: str | None = None
    assurance_decennale_mentionnee: bool | None = None
    assurance_rc_pro_mentionnee: bool | None = None
    assureur_decennale: str | None = None
    decennale_date_fin: datetime.date | None = None
    rc_pro_date_fin: datetime.date | None = None
    certifications: list[str] = Field(default_factory=list)
    adresse_chantier: str | None = None
    code_postal_chantier: str | None = None
    ville_chantier: str | None = None
    travaux: list[LLMLineItem] = Field(default_factory=list)
    total_ht: float | None = None
    total_tva: float | None = None
    total_ttc: float | None = None
    taux_tva: tuple[float, ...] = ()
    acompte_pct: float | None = None
    acompte_avant_travaux_pct: float | None = None
    echeancier_detecte: bool = False
    modes_paiement: tuple[str, ...] = ()
    date_devis: datetime.date | None = None

    @field_validator("certifications", "travaux", mode="before")
    @classmethod
    def none_to_list(cls, value):
        return value or []

    @field_validator("echeancier_detecte", mode="before")
    @classmethod
    def none_to_false(cls, value):
        return bool(value)


################################################################################
## Détection par règles

SIRET_RE = re.compile(r"(?<![\d])(\d{3}[ .]?\d{3}[ .]?\d{3}[ .]?\d{5})(?![ .]?\d)")
SIREN_RE = re.compile(r"(?<![\d])(\d{3}[ .]?\d{3}[ .]?\d{3})(?![ .]?\d)")
IBAN_RE = re.compile(r"\b([A-Z]{2}\d{2}(?:[ ]?[A-Z0-9]{4}){2,7}(?:[ ]?[A-Z0-9]{1,3})?)\b")
AMOUNT = r"(-?\s?\d{1,3}(?:[  .]\d{3})*(?:[.,]\d{1,2})?|-?\d+(?:[.,]\d{1,2})?)\s?(?:€|eur)"
TOTAL_HT_RE = re.compile(r"(?:total|montant|net)\s*(?:global\s*)?h\.?t\.?\s*:?\s*" + AMOUNT, re.IGNORECASE)
TOTAL_TVA_RE = re.compile(r"(?:total|montant)?\s*t\.?v\.?a\.?(?:\s*\d{1,2}(?:[.,]\d)?\s?%)?\s*:?\s*" + AMOUNT, re.IGNORECASE)
TOTAL_TTC_RE = re.compile(r"(?:total\s*t\.?t\.?c\.?|net\s*a\s*payer|montant\s*t\.?t\.?c\.?)\s*:?\s*" + AMOUNT, re.IGNORECASE)
VAT_RATE_RE = re.compile(r"t\.?v\.?a\.?\s*(?:a|de)?\s*:?\s*(\d{1,2}(?:[.,]\d{1,2})?)\s?%", re.IGNORECASE)
DEPOSIT_RE = re.compile(r"acompte[^%\n]{0,60}?(\d{1,3}(?:[.,]\d{1,2})?)\s?%", re.IGNORECASE)
POSTAL_CODE_RE = re.compile(r"(?<![\d])((?:0[1-9]|[1-8]\d|9[0-8])\d{3})(?=\s+[A-Za-zÀ-ÿ])")
PAYMENT_WORDS = {
    "virement": ("virement", "rib", "iban"),
    "cheque": ("cheque",),
    "carte_bancaire": ("carte bancaire",),
    "especes": ("especes", "cash"),
    "prelevement": ("prelevement",),
}


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value)


def find_identifier_candidates(text: str) -> tuple[str, ...]:
    """
    SIRET (14 chiffres) présents dans le texte, dans l'ordre d'apparition. À
    défaut de SIRET, les SIREN (9 chiffres). Les IBAN sont ignorés.
    """
    text = IBAN_RE.sub(" ", text)
    candidates = []
    for match in SIRET_RE.finditer(text):
        value = _digits(match.group(1))
        if value not in candidates:
            candidates.append(value)
    if candidates:
        return tuple(candidates)
    for match in SIREN_RE.finditer(text):
        value = _digits(match.group(1))
        if value not in candidates:
            candidates.append(value)
    return tuple(candidates)


def _last_amount(regex: re.Pattern, text: str) -> float | None:
    # Le dernier total mentionné est en général le récapitulatif
    matches = regex.findall(text)
    return post_processing_amount(matches[-1]) if matches else None


def detect_fields(text: str) -> dict:
    """Détection par règles sur le texte brut. Retourne les clés du format LLM nettoyé."""
    normalized = strip_accents(text).lower()
    candidates = find_identifier_candidates(text)
    iban_match = IBAN_RE.search(text.upper())
    vat_rates = []
    for rate in VAT_RATE_RE.findall(normalized):
        value = post_processing_percentage(rate)
        if value is not None and value not in vat_rates:
            vat_rates.append(value)
    deposit = DEPOSIT_RE.search(normalized)
    postal_codes = POSTAL_CODE_RE.findall(IBAN_RE.sub(" ", SIRET_RE.sub(" ", text)))

    modes = [
        mode
        for mode, words in PAYMENT_WORDS.items()
        if any(re.search(rf"\b{word}\b", normalized) for word in words)
    ]
    # "especes" n'est retenu que sur mention explicite d'un paiement en espèces
    if "especes" in modes and not re.search(r"(paiement|regl\w*|payable|comptant)\s+(en\s+)?(especes|cash)", normalized):
        modes.remove("especes")

    return {
        "siret": candidates[0] if candidates else None,
        "identifier_candidates": candidates,
        "iban": post_processing_iban(iban_match.group(1)) if iban_match else None,
        "total_ht": _last_amount(TOTAL_HT_RE, text),
        "total_tva": _last_amount(TOTAL_TVA_RE, text),
        "total_ttc": _last_amount(TOTAL_TTC_RE, normalized),
        "taux_tva": tuple(vat_rates),
        "acompte_pct": post_processing_percentage(deposit.group(1)) if deposit else None,
        "code_postal_entreprise": postal_codes[0] if postal_codes else None,
        "code_postal_chantier": postal_codes[1] if len(postal_codes) > 1 else None,
        "assurance_decennale_mentionnee": True if re.search(r"decennale", normalized) else None,
        "assurance_rc_pro_mentionnee": (
            True if re.search(r"responsabilite civile|rc pro|rcp\b", normalized) else None
        ),
        "modes_paiement": tuple(modes),
        "echeancier_detecte": bool(re.search(r"echeancier|a l'avancement|situation de travaux", normalized)),
    }


################################################################################
## Construction de ExtractedData


def normalize_category(category: str | None) -> str:
    key = re.sub(r"[^a-z0-9]+", "_", strip_accents(category or "").lower()).strip("_")
    if key in JOB_CATEGORIES:
        return key
    if key in ("autre", "divers", ""):
        return "autres"
    # "isolation_combles_perdus" -> "isolation_combles"
    for known in JOB_CATEGORIES:
        if key.startswith(known):
            return known
    return "autres"


def _is_empty(value) -> bool:
    return value is None or value is False or (isinstance(value, (list, tuple)) and not value)


def merge_detection(llm: QuoteLLMResponse | None, rules: dict) -> dict:
    """Valeurs LLM complétées par la détection par règles ; l'identifiant suit la règle du premier SIRET."""
    data = llm.model_dump() if llm else {}
    candidates = rules["identifier_candidates"]

    # Le premier identifiant du texte l'emporte ; le SIRET du LLM complète un SIREN seul
    llm_siret = post_processing_siret(data.get("siret"))
    first = rules["siret"]
    if first and not (llm_siret and len(first) == 9 and llm_siret.startswith(first)):
        if llm_siret and llm_siret != first:
            logger.info("LLM identifier differs from the first one in text, using the text")
        data["siret"] = first

    for key, value in rules.items():
        if key in ("siret", "identifier_candidates"):
            continue
        if _is_empty(data.get(key)):
            data[key] = value
    data["identifier_candidates"] = candidates
    return data


def build_extracted_data(data: dict, text: str, document_type: DocumentType) -> ExtractedData:
    items = tuple(
        LineItem(
            label=normalize_text(item.get("libelle") or ""),
            category=normalize_category(item.get("categorie")),
            quantity=item.get("quantite"),
            unit=item.get("unite"),
            unit_price=item.get("prix_unitaire_ht"),
            amount_ht=item.get("montant_ht"),
        )
        for item in data.get("travaux") or []
        if item.get("libelle") or item.get("montant_ht") is not None
    )
    iban = post_processing_iban(data.get("iban"))
    modes = tuple(data.get("modes_paiement") or ())
    if iban and "virement" not in modes:
        modes = (*modes, "virement")

    return ExtractedData(
        company=CompanyInfo(
            name=normalize_text(data.get("entreprise_nom") or "") or None,
            siret=data.get("siret"),
            address=data.get("entreprise_adresse"),
            postal_code=data.get("code_postal_entreprise"),
            city=data.get("ville_entreprise"),
            trade=data.get("metier"),
            identifier_candidates=tuple(data.get("identifier_candidates") or ()),
        ),
        site=SiteInfo(
            address=data.get("adresse_chantier"),
            postal_code=data.get("code_postal_chantier"),
            city=data.get("ville_chantier"),
        ),
        items=items,
        total_ht=data.get("total_ht"),
        total_tva=data.get("total_tva"),
        total_ttc=data.get("total_ttc"),
        vat_rates=tuple(data.get("taux_tva") or ()),
        payment=PaymentTerms(
            deposit_pct=data.get("acompte_pct"),
            deposit_before_works_pct=data.get("acompte_avant_travaux_pct"),
            schedule_detected=bool(data.get("echeancier_detecte")),
            modes=modes,
            iban=iban,
        ),
        guarantees=Guarantees(
            decennale=InsurancePolicy(
                kind="decennale",
                mentioned=data.get("assurance_decennale_mentionnee"),
                insurer=data.get("assureur_decennale"),
                valid_until=data.get("decennale_date_fin"),
            ),
            rc_pro=InsurancePolicy(
                kind="rc_pro",
                mentioned=data.get("assurance_rc_pro_mentionnee"),
                valid_until=data.get("rc_pro_date_fin"),
            ),
            certifications=tuple(data.get("certifications") or ()),
        ),
        document_type=document_type,
        quote_date=data.get("date_devis"),
        raw_text=text,
    )


################################################################################
## Point d'entrée


def analyze_file_text_llm(
    text: str,
    document_type: str,
    llm_client: LLMClient,
    config: AnalysisConfig,
    domain: str | None = None,
) -> dict:
    """Interroge le LLM et retourne sa réponse décodée (dict), réparée si besoin."""
    question = get_prompt_from_attributes(select_attr(ATTRIBUTES, document_type))
    response_format = create_response_format(ATTRIBUTES, document_type)
    hint = get_domain_config(domain).extraction_hint

    system_prompt = f"{hint}\n\n{EXTRACTION_RULES}"
    user_prompt = f"Analyse le contexte suivant et réponds à la question : {question}\n\nContexte : {text}"
    messages = [{"role": "system", "content": system_prompt}, {"role": "user", "content": user_prompt}]

    last_error = None
    for attempt in range(config.llm_max_retries + 1):
        content = llm_client.ask_llm(
            messages,
            model=config.extraction_model,
            response_format=response_format,
            parse_json=False,
        )
        try:
            return parse_llm_json(content)
        except ValueError as e:
            last_error = e
            logger.warning("Unparsable LLM response (attempt %d): %s", attempt + 1, e)
    raise last_error


def extract_quote_data(
    text: str,
    llm_client: LLMClient | None = None,
    config: AnalysisConfig | None = None,
    domain: str | None = None,
) -> ExtractedData:
    """
    Structure le texte d'un devis. Ne lève pas en cas d'échec du LLM : la
    détection par règles prend le relais.
    """
    config = config or AnalysisConfig()
    llm_client = llm_client or LLMClient()

    llm_data = None
    try:
        response = analyze_file_text_llm(text, "devis", llm_client, config, domain=domain)
        llm_data = QuoteLLMResponse.model_validate(clean_llm_response("devis", response))
    except LLMApiError as e:
        logger.warning("LLM extraction failed (%s), falling back to rule-based extraction", e.code)
    except (ValueError, PydanticValidationError) as e:
        logger.warning("LLM extraction unusable (%s), falling back to rule-based extraction", e)

    rules = detect_fields(text)
    data = merge_detection(llm_data, rules)
    data["siret"] = post_processing_siret(data.get("siret"))
    data["code_postal_entreprise"] = post_processing_postal_code(data.get("code_postal_entreprise"))
    data["code_postal_chantier"] = post_processing_postal_code(data.get("code_postal_chantier"))
    data["modes_paiement"] = post_processing_payment_modes(data.get("modes_paiement"))

    classification = classify_text(text, llm_document_type=data.get("type_document"))
    extracted = build_extracted_data(data, text, classification.document_type)
    logger.info(
        "Quote extracted: type=%s, siret=%s, items=%d, llm=%s",
        extracted.document_type,
        "yes" if extracted.company.siret else "no",
        len(extracted.items),
        llm_data is not None,
    )
    return extracted


def extract_attestation_data(
    text: str,
    llm_client: LLMClient | None = None,
    config: AnalysisConfig | None = None,
) -> dict:
    """Champs d'une attestation d'assurance (dict nettoyé), vide si le LLM échoue."""
    config = config or AnalysisConfig()
    llm_client = llm_client or LLMClient()
    try:
        response = analyze_file_text_llm(text, "attestation", llm_client, config)
    except LLMApiError as e:
        logger.warning("Attestation extraction failed: %s", e.code)
        return {}
    except ValueError as e:
        logger.warning("Attestation extraction unusable: %s", e)
        return {}
    data = clean_llm_response("attestation", response)
    if not data.get("siret"):
        candidates = find_identifier_candidates(text)
        data["siret"] = candidates[0] if candidates else None
    return data
