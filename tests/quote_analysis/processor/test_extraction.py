import datetime
import json

import pytest

from verifdevis.quote_analysis.config import AnalysisConfig
from verifdevis.quote_analysis.llm.client import LLMApiError
from verifdevis.quote_analysis.models import DocumentType
from verifdevis.quote_analysis.processor.attributes_query import ATTRIBUTES, select_attr
from verifdevis.quote_analysis.processor.extraction import (
    QuoteLLMResponse,
    create_response_format,
    detect_fields,
    extract_attestation_data,
    extract_quote_data,
    find_identifier_candidates,
    get_prompt_from_attributes,
    merge_detection,
    normalize_category,
    parse_llm_json,
    repair_truncated_json,
)

QUOTE_TEXT = """TOITURES MARTIN SARL
12 rue des Lilas
69003 Lyon
SIRET : 732 829 320 00074
Devis n° 2025-041 du 15/03/2025
Chantier : 4 chemin du Moulin
69120 Vaulx-en-Velin
Réfection de toiture tuiles 100 m2 x 60,00 € = 6 000,00 €
Total HT : 6 000,00 €
TVA 10 % : 600,00 €
Total TTC : 6 600,00 €
Acompte de 30 % à la commande. Règlement par virement.
IBAN : FR76 3000 6000 0112 3456 7890 189
Assurance décennale AXA n° 123456
"""

LLM_RESPONSE = {
    "type_document": "devis",
    "entreprise_nom": "Toitures Martin SARL",
    "siret": "73282932000074",
    "entreprise_adresse": "12 rue des Lilas",
    "code_postal_entreprise": "69003",
    "ville_entreprise": "Lyon",
    "adresse_chantier": "4 chemin du Moulin",
    "code_postal_chantier": "69120",
    "ville_chantier": "Vaulx-en-Velin",
    "travaux": [
        {
            "libelle": "Réfection de toiture tuiles",
            "categorie": "Toiture",
            "quantite": "100",
            "unite": "m2",
            "prix_unitaire_ht": "60,00",
            "montant_ht": "6 000,00 €",
        }
    ],
    "total_ht": "6000",
    "total_tva": "600",
    "total_ttc": "6600",
    "taux_tva": ["10%"],
    "acompte_pct": "30%",
    "modes_paiement": ["virement"],
    "assurance_decennale_mentionnee": True,
    "assurance_rc_pro_mentionnee": None,
    "date_devis": "15/03/2025",
}


# --- réparation du JSON ---


def test_repair_truncated_json_closes_structures():
    assert json.loads(repair_truncated_json('{"a": [1, 2')) == {"a": [1, 2]}
    assert json.loads(repair_truncated_json('{"a": "abc')) == {"a": "abc"}
    assert json.loads(repair_truncated_json('{"a": 1,')) == {"a": 1}


def test_parse_llm_json_plain():
    assert parse_llm_json('{"siret": "123"}') == {"siret": "123"}
    assert parse_llm_json({"siret": "123"}) == {"siret": "123"}


def test_parse_llm_json_code_block_and_trailing_comma():
    content = 'Voici le résultat :\n```json\n{"siret": "123", "travaux": [{"libelle": "a"},],}\n```'
    assert parse_llm_json(content) == {"siret": "123", "travaux": [{"libelle": "a"}]}


def test_parse_llm_json_truncated():
    content = '{"entreprise_nom": "Martin", "travaux": [{"libelle": "Toiture", "montant_ht": 12'
    assert parse_llm_json(content) == {"entreprise_nom": "Martin", "travaux": [{"libelle": "Toiture", "montant_ht": 12}]}


def test_parse_llm_json_invalid():
    with pytest.raises(ValueError):
        parse_llm_json("pas de json ici")
    with pytest.raises(ValueError):
        parse_llm_json("[1, 2, 3]")


# --- prompt et format de réponse ---


def test_prompt_lists_all_output_fields():
    prompt = get_prompt_from_attributes(select_attr(ATTRIBUTES, "devis"))
    assert '"siret": ""' in prompt
    assert '"travaux": ""' in prompt
    assert "SIRET" in prompt


def test_create_response_format_attestation():
    response_format = create_response_format(ATTRIBUTES, "attestation")
    assert response_format["type"] == "json_schema"
    assert response_format["json_schema"]["name"] == "attestation"
    schema = response_format["json_schema"]["schema"]
    assert "activites_couvertes" in schema["required"]
    assert "travaux" not in schema["properties"]


# --- détection par règles ---


def test_find_identifier_candidates_ignores_iban():
    text = "IBAN FR76 3000 6000 0112 3456 7890 189 - SIRET 732 829 320 00074 - SIRET 552 100 554 00016"
    assert find_identifier_candidates(text) == ("73282932000074", "55210055400016")


def test_find_identifier_candidates_siren_only():
    assert find_identifier_candidates("RCS Lyon 732 829 320") == ("732829320",)
    assert find_identifier_candidates("Tél. 04 78 00 00 00") == ()


def test_detect_fields():
    fields = detect_fields(QUOTE_TEXT)
    assert fields["siret"] == "73282932000074"
    assert fields["iban"] == "FR7630006000011234567890189"
    assert fields["total_ht"] == 6000.0
    assert fields["total_tva"] == 600.0
    assert fields["total_ttc"] == 6600.0
    assert fields["taux_tva"] == (10.0,)
    assert fields["acompte_pct"] == 30.0
    assert fields["code_postal_entreprise"] == "69003"
    assert fields["code_postal_chantier"] == "69120"
    assert fields["assurance_decennale_mentionnee"] is True
    assert fields["assurance_rc_pro_mentionnee"] is None
    assert fields["modes_paiement"] == ("virement",)
    assert fields["echeancier_detecte"] is False


def test_detect_fields_cash_requires_explicit_payment():
    assert "especes" not in detect_fields("Pas d'espèces sur le chantier.")["modes_paiement"]
    assert "especes" in detect_fields("Paiement en espèces à la fin des travaux.")["modes_paiement"]


def test_merge_detection_prefers_first_identifier_found_in_text():
    llm = QuoteLLMResponse(siret="55210055400016", entreprise_nom="Martin")
    rules = detect_fields("SIRET 732 829 320 00074")
    data = merge_detection(llm, rules)
    assert data["siret"] == "73282932000074"
    assert data["entreprise_nom"] == "Martin"
    assert data["identifier_candidates"] == ("73282932000074",)


def test_merge_detection_first_siret_wins_over_llm_pick():
    llm = QuoteLLMResponse(siret="552 100 554 00016")
    rules = detect_fields("SIRET 732 829 320 00074 - sous-traitant SIRET 552 100 554 00016")
    data = merge_detection(llm, rules)
    assert data["siret"] == "73282932000074"
    assert data["identifier_candidates"] == ("73282932000074", "55210055400016")


def test_merge_detection_llm_siret_completes_siren():
    llm = QuoteLLMResponse(siret="73282932000074")
    data = merge_detection(llm, detect_fields("RCS Lyon 732 829 320"))
    assert data["siret"] == "73282932000074"


def test_merge_detection_keeps_llm_siret_without_candidate():
    llm = QuoteLLMResponse(siret="73282932000074")
    data = merge_detection(llm, detect_fields("Devis sans identifiant"))
    assert data["siret"] == "73282932000074"


def test_normalize_category():
    assert normalize_category("Toiture") == "toiture"
    assert normalize_category("Isolation combles perdus") == "isolation_combles"
    assert normalize_category("Électricité") == "electricite"
    assert normalize_category("Divers") == "autres"
    assert normalize_category("Jardinage japonais") == "autres"
    assert normalize_category(None) == "autres"


# --- point d'entrée ---


def test_extract_quote_data(llm_client, config):
    llm_client.ask_llm.return_value = json.dumps(LLM_RESPONSE)

    extracted = extract_quote_data(QUOTE_TEXT, llm_client, config)

    llm_client.ask_llm.assert_called_once()
    assert llm_client.ask_llm.call_args.kwargs["parse_json"] is False
    assert extracted.document_type == DocumentType.DEVIS
    assert extracted.company.name == "Toitures Martin SARL"
    assert extracted.company.siret == "73282932000074"
    assert extracted.company.siren == "732829320"
    assert extracted.company.postal_code == "69003"
    assert extracted.site.postal_code == "69120"
    assert len(extracted.items) == 1
    item = extracted.items[0]
    assert item.category == "toiture"
    assert item.quantity == 100.0
    assert item.unit_price == 60.0
    assert item.amount_ht == 6000.0
    assert extracted.total_ht == 6000.0
    assert extracted.total_ttc == 6600.0
    assert extracted.vat_rates == (10.0,)
    assert extracted.payment.deposit_pct == 30.0
    assert extracted.payment.modes == ("virement",)
    # IBAN absent de la réponse du LLM, complété par la détection
    assert extracted.payment.iban == "FR7630006000011234567890189"
    assert extracted.guarantees.decennale.mentioned is True
    assert extracted.quote_date == datetime.date(2025, 3, 15)
    assert extracted.to_dict()["company"]["siren"] == "732829320"


def test_extract_quote_data_llm_failure_falls_back_to_rules(llm_client, config):
    llm_client.ask_llm.side_effect = LLMApiError("Api Error", code="HTTP_503", details="busy")

    extracted = extract_quote_data(QUOTE_TEXT, llm_client, config)

    assert extracted.company.name is None
    assert extracted.company.siret == "73282932000074"
    assert extracted.items == ()
    assert extracted.total_ht == 6000.0
    assert extracted.payment.iban == "FR7630006000011234567890189"
    assert extracted.payment.modes == ("virement",)


def test_extract_quote_data_unparsable_response_retries(llm_client, config):
    llm_client.ask_llm.side_effect = ["réponse sans json", json.dumps(LLM_RESPONSE)]
    config = AnalysisConfig(summary_enabled=False, llm_max_retries=1)

    extracted = extract_quote_data(QUOTE_TEXT, llm_client, config)

    assert llm_client.ask_llm.call_count == 2
    assert extracted.company.name == "Toitures Martin SARL"


def test_extract_attestation_data(llm_client, config):
    llm_client.ask_llm.return_value = json.dumps(
        {
            "type_garantie": "decennale",
            "assureur": "AXA",
            "entreprise_nom": "Toitures Martin",
            "siret": None,
            "date_fin_validite": "31/12/2026",
            "activites_couvertes": ["Couverture", "Charpente"],
        }
    )

    data = extract_attestation_data("Attestation décennale - SIRET 732 829 320 00074", llm_client, config)

    assert data["siret"] == "73282932000074"
    assert data["date_fin_validite"] == datetime.date(2026, 12, 31)
    assert data["activites_couvertes"] == ["Couverture", "Charpente"]


def test_extract_attestation_data_llm_failure(llm_client, config):
    llm_client.ask_llm.side_effect = LLMApiError("Api Error", code="HTTP_500", details="")
    assert extract_attestation_data("Attestation", llm_client, config) == {}
