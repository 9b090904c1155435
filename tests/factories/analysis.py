import factory

from verifdevis.quote_analysis.models import (
    Analysis,
    AnalysisStatus,
    Domain,
    DvfPrice,
    ReferencePrice,
    StrategicMatrixRow,
    ZoneGeographique,
    ZoneType,
)

PDF_BYTES = b"%PDF-1.4 devis de test"


class AnalysisFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Analysis

    filename = factory.Sequence(lambda n: f"devis_{n:0>3}.pdf")
    mime_type = "application/pdf"
    domain = Domain.TRAVAUX
    status = AnalysisStatus.PENDING
    file = factory.django.FileField(filename="devis.pdf", data=PDF_BYTES)


class ZoneGeographiqueFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ZoneGeographique
        django_get_or_create = ("prefixe_postal",)

    prefixe_postal = factory.Sequence(lambda n: f"{n % 100:0>2}")
    type_zone = ZoneType.VILLE_MOYENNE
    coefficient = None


class ReferencePriceFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ReferencePrice

    job_type = factory.Sequence(lambda n: f"job_{n:0>3}")
    label = factory.LazyAttribute(lambda o: o.job_type.replace("_", " ").capitalize())
    domain = Domain.TRAVAUX
    unit = "m2"
    price_min_unit_ht = 40
    price_avg_unit_ht = 60
    price_max_unit_ht = 80
    nb_observations = 40


class DvfPriceFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = DvfPrice

    code_insee = factory.Sequence(lambda n: f"{75100 + n}")
    commune = factory.Sequence(lambda n: f"Commune {n}")
    code_postal = "75011"
    prix_m2_maison = 9000
    prix_m2_appartement = 10500
    nb_ventes_maison = 12
    nb_ventes_appartement = 340


class StrategicMatrixRowFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = StrategicMatrixRow

    job_type = factory.Sequence(lambda n: f"job_{n:0>3}")
    value_intrinseque = 3
    liquidite = 3
    attractivite = 3
    energie = 3
    reduction_risque = 3
    impact_loyer = 3
    vacance = 3
    fiscalite = 3
    capex_risk = 3
    recovery_rate = 0.6
