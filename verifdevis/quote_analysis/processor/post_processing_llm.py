import copy
import datetime
import logging
import re
import unicodedata

from schwifty import IBAN
from schwifty.exceptions import SchwiftyException

logger = logging.getLogger(__name__)

SPACES_RE = re.compile(r"\s+")

# SIREN de La Poste : ses SIRET ne respectent pas l'algorithme de Luhn
LA_POSTE_SIREN = "356000000"

PAYMENT_MODES = {
    "virement": ("virement", "rib", "iban", "transfert"),
    "cheque": ("cheque", "chèque"),
    "carte_bancaire": ("carte bancaire", "carte_bancaire", "cb", "carte"),
    "especes": ("especes", "espèces", "cash", "liquide"),
    "prelevement": ("prelevement", "prélèvement"),
}

KNOWN_VAT_RATES = (0.0, 2.1, 5.5, 10.0, 20.0)


################################################################################
## Banque


def check_consistency_iban(iban: str) -> bool:
    """
    Vérifie la validité d'un IBAN selon la norme ISO 13616 (longueur par pays et clé).
    Retourne True si valide ou vide, False sinon.
    """
    if not iban:
        return True
    try:
        IBAN(iban)
    except SchwiftyException:
        return False
    return True


def iban_country_code(iban: str) -> str | None:
    if not iban or len(iban) < 2:
        return None
    return iban[:2].upper()


def post_processing_iban(iban: str) -> str | None:
    """Nettoie l'IBAN (espaces, casse). Ne valide pas : la validité est une vérification à part."""
    if not iban:
        return None
    clean_iban = SPACES_RE.sub("", str(iban)).upper()
    if not re.fullmatch(r"[A-Z]{2}\d{2}[A-Z0-9]{10,30}", clean_iban):
        return None
    return clean_iban


################################################################################
## Montants


def post_processing_amount(amount) -> float | None:
    """
    Extrait un montant d'une chaîne de caractères.
    Exemples d'entrées possibles :
      - "1234.56€"
      - "1 234,56 €"
      - "1.234,56"
      - "2 400,50"
      - "- 150,00" (remise)
    Retourne un float arrondi à deux décimales, ou None si rien n'est trouvé.
    """
    if amount is None or isinstance(amount, bool):
        return None
    if isinstance(amount, (int, float)):
        return round(float(amount), 2)
    amount = SPACES_RE.sub("", str(amount))
    match = re.search(r"(-?)(\d+(?:[.,]\d{3})*(?:[.,]\d+)?)", amount)
    if not match:
        return None
    sign, num = match.groups()
    # Le dernier séparateur suivi de 1 ou 2 chiffres est le séparateur décimal
    decimal = re.search(r"[.,](\d{1,2})$", num)
    if decimal:
        integer_part = re.sub(r"[.,]", "", num[: decimal.start()])
        num = f"{integer_part}.{decimal.group(1)}"
    else:
        num = re.sub(r"[.,]", "", num)
    try:
        value = round(float(num), 2)
    except ValueError:
        return None
    return -value if sign else value


def post_processing_percentage(percentage) -> float | None:
    """Extrait un pourcentage ("30%", "30,5 %", 30) en float, None si absent."""
    if percentage is None or isinstance(percentage, bool):
        return None
    if isinstance(percentage, (int, float)):
        return round(float(percentage), 2)
    percentage = SPACES_RE.sub("", str(percentage))
    match = re.search(r"(\d+(?:[.,]\d+)?)", percentage)
    if not match:
        return None
    return round(float(match.group(1).replace(",", ".")), 2)


def post_processing_vat_rates(rates) -> tuple[float, ...]:
    if rates is None:
        return ()
    if not isinstance(rates, (list, tuple)):
        rates = [rates]
    values = []
    for rate in rates:
        value = post_processing_percentage(rate)
        if value is not None and value not in values:
            values.append(value)
    return tuple(values)


def is_plausible_vat_rate(rate: float) -> bool:
    return any(abs(rate - known) < 0.01 for known in KNOWN_VAT_RATES)


################################################################################
## Identifiants


def check_luhn(number: str) -> bool:
    if not number or not number.isdigit():
        return False
    total = 0
    for i, digit in enumerate(reversed(number)):
        n = int(digit)
        if i % 2 == 1:
            n *= 2
            if n > 9:
                n -= 9
        total += n
    return total % 10 == 0


def check_consistency_siret(identifier: str) -> bool:
    """
    Vérifie la clé d'un SIREN (9 chiffres) ou d'un SIRET (14 chiffres).
    Un identifiant qui échoue ce contrôle est considéré comme invalide.
    """
    if not identifier or not identifier.isdigit() or len(identifier) not in (9, 14):
        return False
    if len(identifier) == 14 and identifier.startswith(LA_POSTE_SIREN):
        return sum(int(d) for d in identifier) % 5 == 0
    return check_luhn(identifier)


def post_processing_siret(siret) -> str | None:
    """
    Post-traitement du SIRET (ou du SIREN) pour le nettoyer.
    """
    if not siret:
        return None

    siret = str(siret)
    # Si chaine de float valide (ex: "12345678901234.0"), transformer en entier
    if re.fullmatch(r"\d{14}\.0+", siret):
        siret = siret.split(".")[0]
    siret = SPACES_RE.sub("", siret).replace(".", "")

    if siret.isdigit() and len(siret) in (9, 14):
        return siret
    return None


def post_processing_postal_code(postal_code) -> str | None:
    if not postal_code:
        return None
    match = re.search(r"\b(\d{5})\b", SPACES_RE.sub(" ", str(postal_code)))
    if not match:
        match = re.search(r"(\d{2})\s?(\d{3})", str(postal_code))
        return "".join(match.groups()) if match else None
    return match.group(1)


################################################################################
## Texte


def normalize_text(text: str) -> str:
    """Normalise un texte : trim et espaces multiples."""
    if not text:
        return ""
    text = text.strip()
    return re.sub(r"\s+", " ", text)


def strip_accents(text: str) -> str:
    text = unicodedata.normalize("NFD", text or "")
    return "".join(char for char in text if unicodedata.category(char) != "Mn")


def normalize_for_comparison(text: str) -> str:
    """Minuscules, sans accents, sans ponctuation ni formes juridiques."""
    text = strip_accents(text).lower()
    text = re.sub(r"\b(sarl|sas|sasu|eurl|sa|sci|ei|eirl|ets|entreprise|societe)\b", " ", text)
    text = re.sub(r"[^a-z0-9]+", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def post_processing_payment_modes(modes) -> tuple[str, ...]:
    """Ramène les modes de paiement déclarés à un vocabulaire fermé."""
    if not modes:
        return ()
    if isinstance(modes, str):
        modes = re.split(r"[,;/]", modes)
    result = []
    for mode in modes:
        normalized = strip_accents(str(mode)).lower().strip()
        for key, keywords in PAYMENT_MODES.items():
            if any(re.search(rf"\b{re.escape(strip_accents(k))}\b", normalized) for k in keywords):
                if key not in result:
                    result.append(key)
    return tuple(result)


def post_processing_date(value) -> datetime.date | None:
    """Date au format JJ/MM/AAAA, JJ-MM-AAAA, JJ.MM.AAAA ou AAAA-MM-JJ."""
    if not value:
        return None
    if isinstance(value, datetime.date):
        return value
    value = str(value).strip()
    for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%d/%m/%y"):
        try:
            return datetime.datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    match = re.search(r"(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})", value)
    if match:
        day, month, year = (int(g) for g in match.groups())
        try:
            return datetime.date(year, month, day)
        except ValueError:
            return None
    return None


def post_processing_bool(value) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in ("true", "oui", "yes", "1"):
        return True
    if normalized in ("false", "non", "no", "0"):
        return False
    return None


################################################################################
## Application par type de document


CLEAN_FUNCTIONS = {
    "devis": {
        "fields": {
            "siret": post_processing_siret,
            "iban": post_processing_iban,
            "code_postal_entreprise": post_processing_postal_code,
            "code_postal_chantier": post_processing_postal_code,
            "total_ht": post_processing_amount,
            "total_tva": post_processing_amount,
            "total_ttc": post_processing_amount,
            "taux_tva": post_processing_vat_rates,
            "acompte_pct": post_processing_percentage,
            "acompte_avant_travaux_pct": post_processing_percentage,
            "modes_paiement": post_processing_payment_modes,
            "date_devis": post_processing_date,
            "assurance_decennale_mentionnee": post_processing_bool,
            "assurance_rc_pro_mentionnee": post_processing_bool,
            "decennale_date_fin": post_processing_date,
            "rc_pro_date_fin": post_processing_date,
        },
    },
    "attestation": {
        "fields": {
            "siret": post_processing_siret,
            "code_postal": post_processing_postal_code,
            "date_debut_validite": post_processing_date,
            "date_fin_validite": post_processing_date,
        },
    },
}


def clean_llm_response(document_type: str, llm_response: dict) -> dict:
    cleaned_data = copy.deepcopy(llm_response)
    clean_config = CLEAN_FUNCTIONS.get(document_type)
    if not clean_config:
        return cleaned_data
    clean_fields_functions = clean_config.get("fields", {})
    if clean_fields_functions:
        cleaned_data = apply_clean_functions(cleaned_data, clean_fields_functions)
    return cleaned_data


def apply_clean_functions(data: dict, clean_functions: dict) -> dict:
    """
    Applique les fonctions de nettoyage aux champs correspondants.
    Les champs sans fonction de nettoyage sont recopiés tels quels.
    """
    cleaned_data = {}
    for key in data.keys():
        if key in clean_functions:
            cleaned_data[key] = clean_functions[key](data[key])
        else:
            cleaned_data[key] = data[key]
    return cleaned_data
