"""
Erreurs de l'analyse de devis.

Chaque erreur porte un message destiné à l'utilisateur (en français), un code
machine et le statut HTTP à renvoyer lorsqu'elle remonte jusqu'à l'API.
"""


class AnalysisError(Exception):
    status: int = 500
    default_code: str = "analysis_error"
    default_message: str = "Erreur lors de l'analyse du devis."

    def __init__(self, message: str | None = None, *, code: str | None = None, details: str | None = None):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(AnalysisError):
    """Entrée invalide : type de fichier refusé, fichier trop lourd, requête mal formée."""

    status = 400
    default_code = "validation_error"
    default_message = "Requête invalide."


class ExtractionError(AnalysisError):
    """Le texte extrait du document est vide ou inutilisable."""

    status = 400
    default_code = "document_illisible"
    default_message = (
        "Document illisible : impossible de lire le contenu du fichier. "
        "Vérifiez que le devis est net et complet, puis réessayez."
    )


class UpstreamDegraded(AnalysisError):
    """
    Une source externe (registre, banque, géocodage) a échoué.

    Récupérée localement par le vérificateur : la facette concernée passe en
    "inconnu". Ne remonte à l'API que pour les points d'entrée qui interrogent
    directement une source.
    """

    status = 502
    default_code = "upstream_degraded"
    default_message = "Service externe indisponible."

    def __init__(self, source: str, message: str | None = None, **kwargs):
        self.source = source
        super().__init__(message or f"Source {source} indisponible.", **kwargs)


class PersistenceError(AnalysisError):
    status = 500
    default_code = "persistence_error"
    default_message = "Impossible d'enregistrer le résultat de l'analyse."


class AnalysisNotFound(AnalysisError):
    status = 404
    default_code = "not_found"
    default_message = "Analyse introuvable."


class AnalysisTimeout(AnalysisError):
    """Budget de temps global de l'analyse dépassé."""

    status = 500
    default_code = "timeout"
    default_message = "Délai d'analyse dépassé. Veuillez réessayer."
