from django.db import models

from verifdevis.common.models import BaseModel


class AnalysisStatus(models.TextChoices):
    PENDING = "pending", "En attente"
    PROCESSING = "processing", "En cours"
    COMPLETED = "completed", "Terminée"
    ERROR = "error", "Erreur"


class ScoreColor(models.TextChoices):
    VERT = "VERT", "Vert"
    ORANGE = "ORANGE", "Orange"
    ROUGE = "ROUGE", "Rouge"


class DocumentType(models.TextChoices):
    DEVIS = "devis", "Devis"
    DIAGNOSTIC = "diagnostic", "Diagnostic"
    PRESTATION_TECHNIQUE = "prestation_technique", "Prestation technique"


class Domain(models.TextChoices):
    TRAVAUX = "travaux", "Travaux / BTP"
    AUTO = "auto", "Automobile / Garage"
    DENTAIRE = "dentaire", "Dentaire"


class ZoneType(models.TextChoices):
    PETITE_VILLE = "petite_ville", "Petite ville / rural"
    VILLE_MOYENNE = "ville_moyenne", "Ville moyenne"
    GRANDE_VILLE = "grande_ville", "Grande ville / métropole"


class CacheStatus(models.TextChoices):
    OK = "ok", "OK"
    NOT_FOUND = "not_found", "Introuvable"
    ERROR = "error", "Erreur"


def analysis_upload_to(instance, filename):
    return f"analyses/{instance.id}/{filename}"


def attestation_upload_to(instance, filename):
    return f"analyses/{instance.id}/attestation/{filename}"


class Analysis(BaseModel):
    file = models.FileField(upload_to=analysis_upload_to, max_length=500)
    filename = models.CharField(max_length=255, blank=True, default="")
    mime_type = models.CharField(max_length=100, blank=True, default="")
    domain = models.CharField(max_length=20, choices=Domain.choices, default=Domain.TRAVAUX)
    attestation = models.FileField(upload_to=attestation_upload_to, max_length=500, blank=True, default="")
    attestation_mime_type = models.CharField(max_length=100, blank=True, default="")

    status = models.CharField(max_length=20, choices=AnalysisStatus.choices, default=AnalysisStatus.PENDING)
    score = models.CharField(max_length=10, choices=ScoreColor.choices, blank=True, default="")
    document_type = models.CharField(max_length=30, choices=DocumentType.choices, blank=True, default="")

    resume = models.TextField(blank=True, default="")
    points_ok = models.JSONField(default=list, blank=True)
    alertes = models.JSONField(default=list, blank=True)
    recommandations = models.JSONField(default=list, blank=True)
    raw_text = models.TextField(blank=True, default="")
    extracted_data = models.JSONField(null=True, blank=True)
    verification = models.JSONField(null=True, blank=True)
    types_travaux = models.JSONField(default=list, blank=True)
    site_context = models.JSONField(null=True, blank=True)
    attestation_comparison = models.JSONField(null=True, blank=True)
    assurance_level2_score = models.CharField(max_length=10, choices=ScoreColor.choices, blank=True, default="")
    strategic_scores = models.JSONField(null=True, blank=True)
    banner = models.JSONField(null=True, blank=True)

    error_message = models.TextField(blank=True, default="")
    error_details = models.TextField(blank=True, default="")

    started_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)
    duration = models.DurationField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.filename or self.id} ({self.status})"


class CompanyCacheEntry(BaseModel):
    siret = models.CharField(max_length=14, unique=True)
    siren = models.CharField(max_length=9, db_index=True)
    provider = models.CharField(max_length=50, default="pappers")
    payload = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=20, choices=CacheStatus.choices)
    error_code = models.CharField(max_length=50, blank=True, default="")
    error_message = models.TextField(blank=True, default="")
    fetched_at = models.DateTimeField()
    expires_at = models.DateTimeField(db_index=True)

    def __str__(self):
        return f"{self.siret} ({self.status})"


class ZoneGeographique(models.Model):
    prefixe_postal = models.CharField(max_length=2, unique=True)
    type_zone = models.CharField(max_length=20, choices=ZoneType.choices)
    coefficient = models.DecimalField(max_digits=4, decimal_places=2, null=True, blank=True)

    class Meta:
        db_table = "zones_geographiques"

    def __str__(self):
        return f"{self.prefixe_postal} → {self.type_zone}"


class ReferencePrice(models.Model):
    job_type = models.CharField(max_length=100, unique=True)
    label = models.CharField(max_length=255)
    domain = models.CharField(max_length=20, choices=Domain.choices, default=Domain.TRAVAUX)
    unit = models.CharField(max_length=20, default="forfait")
    price_min_unit_ht = models.FloatField(default=0)
    price_avg_unit_ht = models.FloatField(default=0)
    price_max_unit_ht = models.FloatField(default=0)
    fixed_min_ht = models.FloatField(default=0)
    fixed_avg_ht = models.FloatField(default=0)
    fixed_max_ht = models.FloatField(default=0)
    nb_observations = models.PositiveIntegerField(default=0)
    keywords = models.TextField(blank=True, default="", help_text="Mots-clés séparés par des virgules")

    class Meta:
        db_table = "market_prices"

    def __str__(self):
        return self.job_type


class DvfPrice(models.Model):
    code_insee = models.CharField(max_length=5, unique=True)
    commune = models.CharField(max_length=255)
    code_postal = models.CharField(max_length=5, blank=True, default="")
    prix_m2_maison = models.FloatField(null=True, blank=True)
    prix_m2_appartement = models.FloatField(null=True, blank=True)
    nb_ventes_maison = models.PositiveIntegerField(null=True, blank=True)
    nb_ventes_appartement = models.PositiveIntegerField(null=True, blank=True)
    source = models.CharField(max_length=100, default="DVF")
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "dvf_prices"

    def __str__(self):
        return f"{self.code_insee} {self.commune}"


class StrategicMatrixRow(models.Model):
    job_type = models.CharField(max_length=100, unique=True)
    value_intrinseque = models.FloatField(default=0)
    liquidite = models.FloatField(default=0)
    attractivite = models.FloatField(default=0)
    energie = models.FloatField(default=0)
    reduction_risque = models.FloatField(default=0)
    impact_loyer = models.FloatField(default=0)
    vacance = models.FloatField(default=0)
    fiscalite = models.FloatField(default=0)
    capex_risk = models.FloatField(default=0)
    recovery_rate = models.FloatField(null=True, blank=True)

    class Meta:
        db_table = "strategic_matrix"

    def __str__(self):
        return self.job_type
