"""
Définitions des attributs à extraire pour les devis d'artisans et les
attestations d'assurance.
"""

# Catégories métier reconnues pour les postes de travaux. "autres" n'a pas de
# fourchette de prix de référence.
JOB_CATEGORIES = {
    "maconnerie": "Maçonnerie / gros œuvre",
    "demolition": "Démolition",
    "toiture": "Toiture / couverture",
    "charpente": "Charpente",
    "zinguerie": "Zinguerie",
    "facade": "Façade / ravalement",
    "isolation_combles": "Isolation des combles",
    "isolation_murs": "Isolation des murs",
    "isolation_plancher": "Isolation plancher bas",
    "fenetre": "Fenêtres / menuiseries extérieures",
    "porte": "Portes",
    "volet_roulant": "Volets roulants",
    "plomberie": "Plomberie",
    "salle_de_bain": "Salle de bain",
    "chauffe_eau": "Chauffe-eau",
    "electricite": "Électricité",
    "tableau_electrique": "Tableau électrique",
    "pompe_a_chaleur": "Pompe à chaleur",
    "chaudiere": "Chaudière",
    "radiateur": "Radiateurs",
    "poele": "Poêle à bois / granulés",
    "ventilation": "Ventilation / VMC",
    "carrelage": "Carrelage",
    "parquet": "Parquet / revêtement de sol",
    "peinture": "Peinture",
    "platrerie": "Plâtrerie / cloisons",
    "cuisine": "Cuisine",
    "terrasse": "Terrasse",
    "cloture": "Clôture / portail",
    "amenagement_exterieur": "Aménagement extérieur",
    "piscine": "Piscine",
    "panneaux_solaires": "Panneaux solaires",
    "diagnostic": "Diagnostic immobilier",
    "main_oeuvre": "Main d'œuvre / déplacement",
    "autres": "Autres prestations",
}

# Catégories ouvrant droit aux aides à la rénovation énergétique : la
# qualification RGE n'est recherchée que pour celles-ci.
ENERGY_CATEGORIES = (
    "isolation_combles",
    "isolation_murs",
    "isolation_plancher",
    "fenetre",
    "pompe_a_chaleur",
    "chaudiere",
    "poele",
    "ventilation",
    "chauffe_eau",
    "panneaux_solaires",
)

_NULLABLE_STRING = {"type": ["string", "null"]}
_NULLABLE_NUMBER = {"type": ["number", "null"]}
_NULLABLE_BOOL = {"type": ["boolean", "null"]}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}


DEVIS_ATTRIBUTES = {
    "type_document": {
        "consigne": """TYPE_DOCUMENT
   Définition : nature du document analysé.
   Indices :
   - "devis" : devis de travaux ou de réparation, montants HT/TTC, descriptions de travaux, assurance décennale.
   - "diagnostic" : diagnostic immobilier (DPE, amiante, plomb, gaz, électricité, ERP, Carrez).
   - "prestation_technique" : étude, mission d'ingénierie, maîtrise d'œuvre, audit énergétique, relevé.
   - "autre" : document non conforme (facture, bon de livraison, courrier...).
   Format : une des valeurs "devis", "diagnostic", "prestation_technique", "autre".
""",
        "output_field": "type_document",
        "schema": _NULLABLE_STRING,
    },
    "entreprise_nom": {
        "consigne": """ENTREPRISE_NOM
   Définition : raison sociale de l'entreprise qui émet le devis (pas le client).
   Indices : en-tête du document, logo, pied de page, mentions "SARL", "SAS", "EURL", "EI".
   Format : le nom tel qu'écrit dans le document, null si absent.
""",
        "output_field": "entreprise_nom",
        "schema": _NULLABLE_STRING,
    },
    "siret": {
        "consigne": """SIRET
   Définition : numéro SIRET (14 chiffres) de l'entreprise émettrice, à défaut son SIREN (9 chiffres).
   Indices :
   - Après les mentions "SIRET", "SIREN", "RCS", souvent en pied de page.
   - Ne pas confondre avec le numéro de TVA intracommunautaire (FRXX + SIREN) ni avec un numéro de téléphone.
   Format : chiffres uniquement, sans espace. null si absent.
""",
        "output_field": "siret",
        "schema": _NULLABLE_STRING,
    },
    "entreprise_adresse": {
        "consigne": """ENTREPRISE_ADRESSE
   Définition : adresse postale de l'entreprise émettrice.
   Format : "numéro rue, code postal ville" tel qu'écrit, null si absente.
""",
        "output_field": "entreprise_adresse",
        "schema": _NULLABLE_STRING,
    },
    "code_postal_entreprise": {
        "consigne": """CODE_POSTAL_ENTREPRISE
   Définition : code postal de l'adresse de l'entreprise émettrice.
   Format : 5 chiffres, null si absent.
""",
        "output_field": "code_postal_entreprise",
        "schema": _NULLABLE_STRING,
    },
    "ville_entreprise": {
        "consigne": """VILLE_ENTREPRISE
   Format : nom de la commune de l'entreprise émettrice, null si absente.
""",
        "output_field": "ville_entreprise",
        "schema": _NULLABLE_STRING,
    },
    "metier": {
        "consigne": """METIER
   Définition : activité principale de l'entreprise (ex : "plombier chauffagiste", "couvreur", "électricien").
   Format : en minuscules, null si non déductible du document.
""",
        "output_field": "metier",
        "schema": _NULLABLE_STRING,
    },
    "iban": {
        "consigne": """IBAN
   Définition : IBAN du compte bancaire de l'entreprise, s'il figure sur le devis.
   Format : tel qu'écrit, sans espace. null si absent.
""",
        "output_field": "iban",
        "schema": _NULLABLE_STRING,
    },
    "assurance_decennale_mentionnee": {
        "consigne": """ASSURANCE_DECENNALE_MENTIONNEE
   Définition : le devis mentionne une assurance de garantie décennale.
   Format : true si clairement mentionnée, false si absente, null en cas de doute.
""",
        "output_field": "assurance_decennale_mentionnee",
        "schema": _NULLABLE_BOOL,
    },
    "assurance_rc_pro_mentionnee": {
        "consigne": """ASSURANCE_RC_PRO_MENTIONNEE
   Définition : le devis mentionne une assurance responsabilité civile professionnelle.
   Format : true si clairement mentionnée, false si absente, null en cas de doute.
""",
        "output_field": "assurance_rc_pro_mentionnee",
        "schema": _NULLABLE_BOOL,
    },
    "assureur_decennale": {
        "consigne": """ASSUREUR_DECENNALE
   Définition : nom de la compagnie d'assurance de la garantie décennale (ex : "AXA", "SMABTP", "MAAF").
   Format : null si non précisé.
""",
        "output_field": "assureur_decennale",
        "schema": _NULLABLE_STRING,
    },
    "decennale_date_fin": {
        "consigne": """DECENNALE_DATE_FIN
   Définition : date de fin de validité de l'attestation décennale si elle est indiquée sur le devis.
   Format : "JJ/MM/AAAA", null si absente.
""",
        "output_field": "decennale_date_fin",
        "schema": _NULLABLE_STRING,
    },
    "rc_pro_date_fin": {
        "consigne": """RC_PRO_DATE_FIN
   Définition : date de fin de validité de l'assurance RC Pro si elle est indiquée sur le devis.
   Format : "JJ/MM/AAAA", null si absente.
""",
        "output_field": "rc_pro_date_fin",
        "schema": _NULLABLE_STRING,
    },
    "certifications": {
        "consigne": """CERTIFICATIONS
   Définition : labels et qualifications mentionnés (RGE, QUALIBAT, Qualit'EnR, QualiPAC, Eco Artisan...).
   Format : liste, vide si aucune.
""",
        "output_field": "certifications",
        "schema": _STRING_LIST,
    },
    "adresse_chantier": {
        "consigne": """ADRESSE_CHANTIER
   Définition : adresse du lieu des travaux (à défaut, adresse du client).
   Format : tel qu'écrit, null si absente.
""",
        "output_field": "adresse_chantier",
        "schema": _NULLABLE_STRING,
    },
    "code_postal_chantier": {
        "consigne": """CODE_POSTAL_CHANTIER
   Format : 5 chiffres du code postal du chantier, null si absent.
""",
        "output_field": "code_postal_chantier",
        "schema": _NULLABLE_STRING,
    },
    "ville_chantier": {
        "consigne": """VILLE_CHANTIER
   Format : commune du chantier, null si absente.
""",
        "output_field": "ville_chantier",
        "schema": _NULLABLE_STRING,
    },
    "travaux": {
        "consigne": f"""TRAVAUX
   Définition : liste de TOUS les postes du devis.
   Indices :
   - Recopier le libellé mot pour mot.
   - Identifier la CATÉGORIE MÉTIER du poste même si un produit ou une marque est mentionné.
   - Catégories possibles : {", ".join(JOB_CATEGORIES)}. Utiliser "autres" si aucune ne convient.
   - montant_ht : montant HT de la ligne, quantite / unite (m2, ml, u, forfait) si indiqués.
   Format : liste d'objets, vide si aucun poste lisible.
""",
        "output_field": "travaux",
        "schema": {
            "type": "array",
            "items": {"$ref": "#/$defs/posteTravaux"},
            "$defs": {
                "posteTravaux": {
                    "type": "object",
                    "properties": {
                        "libelle": {"type": "string"},
                        "categorie": {"type": "string"},
                        "quantite": _NULLABLE_NUMBER,
                        "unite": _NULLABLE_STRING,
                        "prix_unitaire_ht": _NULLABLE_NUMBER,
                        "montant_ht": _NULLABLE_NUMBER,
                    },
                    "required": ["libelle", "categorie", "quantite", "unite", "prix_unitaire_ht", "montant_ht"],
                },
            },
        },
    },
    "total_ht": {
        "consigne": """TOTAL_HT
   Définition : montant total hors taxes du devis.
   Indices : "Total HT", "Montant HT", "Net HT".
   Format : en "XXXX.XX" (sans séparateur de milliers, avec 2 décimales), null si absent.
""",
        "output_field": "total_ht",
        "schema": _NULLABLE_NUMBER,
    },
    "total_tva": {
        "consigne": """TOTAL_TVA
   Définition : montant total de la TVA.
   Format : en "XXXX.XX", null si absent.
""",
        "output_field": "total_tva",
        "schema": _NULLABLE_NUMBER,
    },
    "total_ttc": {
        "consigne": """TOTAL_TTC
   Définition : montant total toutes taxes comprises ("Total TTC", "Net à payer").
   Format : en "XXXX.XX", null si absent.
""",
        "output_field": "total_ttc",
        "schema": _NULLABLE_NUMBER,
    },
    "taux_tva": {
        "consigne": """TAUX_TVA
   Définition : taux de TVA appliqués (en %), un par taux distinct.
   Format : liste de nombres (ex : [10, 20]), vide si aucun.
""",
        "output_field": "taux_tva",
        "schema": {"type": "array", "items": {"type": "number"}},
    },
    "acompte_pct": {
        "consigne": """ACOMPTE_PCT
   Définition : pourcentage d'acompte demandé (à la commande ou à la signature).
   Indices : si l'acompte est exprimé en euros, le convertir en pourcentage du total TTC.
   Format : nombre, null si aucun acompte.
""",
        "output_field": "acompte_pct",
        "schema": _NULLABLE_NUMBER,
    },
    "acompte_avant_travaux_pct": {
        "consigne": """ACOMPTE_AVANT_TRAVAUX_PCT
   Définition : part totale (en %) à verser AVANT le début des travaux, tous acomptes confondus.
   Format : nombre, null si non déterminable.
""",
        "output_field": "acompte_avant_travaux_pct",
        "schema": _NULLABLE_NUMBER,
    },
    "echeancier_detecte": {
        "consigne": """ECHEANCIER_DETECTE
   Définition : le devis prévoit un échéancier de paiement en plusieurs étapes liées à l'avancement.
   Format : true ou false.
""",
        "output_field": "echeancier_detecte",
        "schema": {"type": "boolean"},
    },
    "modes_paiement": {
        "consigne": """MODES_PAIEMENT
   Définition : modes de paiement acceptés ou demandés.
   Indices :
   - "especes" SEULEMENT si les mots "espèces", "cash", "comptant en espèces" sont explicitement présents.
   - Si un IBAN ou un RIB est présent, inclure "virement".
   Format : liste parmi "virement", "cheque", "carte_bancaire", "especes", "prelevement".
""",
        "output_field": "modes_paiement",
        "schema": _STRING_LIST,
    },
    "date_devis": {
        "consigne": """DATE_DEVIS
   Définition : date d'émission du devis.
   Format : "JJ/MM/AAAA", null si absente.
""",
        "output_field": "date_devis",
        "schema": _NULLABLE_STRING,
    },
}


ATTESTATION_ATTRIBUTES = {
    "type_garantie": {
        "consigne": """TYPE_GARANTIE
   Définition : garantie attestée par le document.
   Format : "decennale", "rc_pro" ou "decennale_rc_pro" si les deux, null si indéterminable.
""",
        "output_field": "type_garantie",
        "schema": _NULLABLE_STRING,
    },
    "assureur": {
        "consigne": """ASSUREUR
   Définition : compagnie d'assurance qui délivre l'attestation.
   Format : null si absente.
""",
        "output_field": "assureur",
        "schema": _NULLABLE_STRING,
    },
    "numero_police": {
        "consigne": """NUMERO_POLICE
   Définition : numéro du contrat ou de la police d'assurance.
   Format : tel qu'écrit, null si absent.
""",
        "output_field": "numero_police",
        "schema": _NULLABLE_STRING,
    },
    "entreprise_nom": {
        "consigne": """ENTREPRISE_NOM
   Définition : nom de l'entreprise assurée.
   Format : tel qu'écrit, null si absent.
""",
        "output_field": "entreprise_nom",
        "schema": _NULLABLE_STRING,
    },
    "siret": {
        "consigne": """SIRET
   Définition : SIRET ou SIREN de l'entreprise assurée.
   Format : chiffres uniquement, null si absent.
""",
        "output_field": "siret",
        "schema": _NULLABLE_STRING,
    },
    "adresse": {
        "consigne": """ADRESSE
   Définition : adresse de l'entreprise assurée.
   Format : tel qu'écrit, null si absente.
""",
        "output_field": "adresse",
        "schema": _NULLABLE_STRING,
    },
    "code_postal": {
        "consigne": """CODE_POSTAL
   Format : code postal de l'entreprise assurée (5 chiffres), null si absent.
""",
        "output_field": "code_postal",
        "schema": _NULLABLE_STRING,
    },
    "date_debut_validite": {
        "consigne": """DATE_DEBUT_VALIDITE
   Format : "JJ/MM/AAAA", null si absente.
""",
        "output_field": "date_debut_validite",
        "schema": _NULLABLE_STRING,
    },
    "date_fin_validite": {
        "consigne": """DATE_FIN_VALIDITE
   Définition : date de fin de la période de validité de l'attestation.
   Format : "JJ/MM/AAAA", null si absente.
""",
        "output_field": "date_fin_validite",
        "schema": _NULLABLE_STRING,
    },
    "activites_couvertes": {
        "consigne": """ACTIVITES_COUVERTES
   Définition : activités professionnelles garanties listées dans l'attestation.
   Format : liste des activités telles qu'écrites, vide si aucune.
""",
        "output_field": "activites_couvertes",
        "schema": _STRING_LIST,
    },
}
