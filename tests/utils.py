"""Construction de données d'analyse pour les tests."""

import dataclasses

from verifdevis.quote_analysis.models import ScoreColor
from verifdevis.quote_analysis.types import (
    ActivityStatus,
    CompanyInfo,
    ExtractedData,
    Guarantees,
    GuaranteeCheck,
    InsurancePolicy,
    LineItem,
    LookupStatus,
    PaymentTerms,
    SiteInfo,
    VerificationResult,
)

VALID_SIRET = "73282932000074"
INVALID_SIRET = "73282932000075"
VALID_IBAN = "FR7630006000011234567890189"


def make_extracted(**overrides) -> ExtractedData:
    """Devis de travaux sans défaut, modifiable champ par champ."""
    data = dict(
        company=CompanyInfo(
            name="Toitures Martin",
            siret=VALID_SIRET,
            address="12 rue des Lilas",
            postal_code="69003",
            city="Lyon",
        ),
        site=SiteInfo(address="4 chemin du Moulin", postal_code="69120", city="Vaulx-en-Velin"),
        items=(
            LineItem(label="Réfection de toiture tuiles", category="toiture", quantity=100, unit="m2", amount_ht=6000),
        ),
        total_ht=6000.0,
        total_tva=600.0,
        total_ttc=6600.0,
        vat_rates=(10.0,),
        payment=PaymentTerms(deposit_pct=30, modes=("virement",), iban=VALID_IBAN),
        guarantees=Guarantees(decennale=InsurancePolicy(kind="decennale", mentioned=True)),
    )
    data.update(overrides)
    return ExtractedData(**data)


def replace(obj, **changes):
    return dataclasses.replace(obj, **changes)


def make_verification(**overrides) -> VerificationResult:
    """Entreprise active, ancienne, IBAN français valide, garanties cohérentes."""
    data = dict(
        lookup_status=LookupStatus.OK,
        identifier_status="valid",
        exists=True,
        activity_status=ActivityStatus.ACTIVE,
        official_name="TOITURES MARTIN",
        age_years=12,
        procedure_collective=False,
        iban_checked=True,
        iban_valid=True,
        iban_country="FR",
        guarantees={
            "decennale": GuaranteeCheck(kind="decennale", level=ScoreColor.VERT, present=True),
            "rc_pro": GuaranteeCheck(kind="rc_pro", level=ScoreColor.VERT, present=True),
        },
    )
    data.update(overrides)
    return VerificationResult(**data)
