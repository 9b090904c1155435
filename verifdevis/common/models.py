import uuid

from django.db import models


class BaseModel(models.Model):
    """Modèle abstrait : identifiant UUID et horodatages de création et de mise à jour."""

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
    )
    created_at = models.DateTimeField(
        auto_now_add=True,
        editable=False,
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        editable=False,
    )

    class Meta:
        abstract = True
