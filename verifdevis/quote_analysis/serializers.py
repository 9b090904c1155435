from rest_framework import serializers

from .models import Analysis


class AnalyzeQuoteSerializer(serializers.Serializer):
    analysisId = serializers.UUIDField()


class AnalysisSerializer(serializers.ModelSerializer):
    """Champs d'une analyse exposés à l'application."""

    analysisId = serializers.UUIDField(source="id", read_only=True)
    score = serializers.SerializerMethodField()
    assurance_level2_score = serializers.SerializerMethodField()

    class Meta:
        model = Analysis
        fields = [
            "analysisId",
            "status",
            "score",
            "document_type",
            "resume",
            "points_ok",
            "alertes",
            "recommandations",
            "raw_text",
            "types_travaux",
            "site_context",
            "attestation_comparison",
            "assurance_level2_score",
            "strategic_scores",
            "banner",
            "error_message",
            "created_at",
            "finished_at",
        ]

    def get_score(self, obj):
        return obj.score or None

    def get_assurance_level2_score(self, obj):
        return obj.assurance_level2_score or None


class MarketPriceQuerySerializer(serializers.Serializer):
    code_insee = serializers.RegexField(r"^\d[0-9AB]\d{3}$")
    type_bien = serializers.ChoiceField(choices=["maison", "appartement"], required=False, allow_null=True)


class StrategicItemSerializer(serializers.Serializer):
    job_type = serializers.CharField(max_length=100)
    amount_ht = serializers.FloatField(required=False, default=0)


class StrategicScoresQuerySerializer(serializers.Serializer):
    items = StrategicItemSerializer(many=True, allow_empty=True)
