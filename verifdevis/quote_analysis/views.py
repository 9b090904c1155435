import json
import logging

from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.response import Response

from .errors import AnalysisError, AnalysisNotFound, ValidationError
from .models import Analysis, AnalysisStatus
from .pipeline.tasks import launch_analysis
from .pricing.market_prices import get_dvf_market_price
from .scoring.strategic import compute_strategic_scores, load_strategic_matrix
from .serializers import (
    AnalysisSerializer,
    AnalyzeQuoteSerializer,
    MarketPriceQuerySerializer,
    StrategicScoresQuerySerializer,
)

logger = logging.getLogger(__name__)


def error_response(error: AnalysisError) -> Response:
    return Response(error.to_payload(), status=error.status)


def invalid_request(serializer) -> Response:
    return error_response(ValidationError(details=json.dumps(serializer.errors, ensure_ascii=False)))


@api_view(["POST"])
def analyze_quote_view(request):
    """Planifie l'analyse d'un devis déjà enregistré."""
    serializer = AnalyzeQuoteSerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_request(serializer)

    analysis_id = serializer.validated_data["analysisId"]
    analysis = Analysis.objects.filter(id=analysis_id).first()
    if analysis is None:
        return error_response(AnalysisNotFound(details=str(analysis_id)))

    if analysis.status == AnalysisStatus.COMPLETED:
        return Response({"analysisId": str(analysis.id), "status": analysis.status}, status=status.HTTP_200_OK)

    launch_analysis(analysis)
    logger.info("Analysis %s queued", analysis.id)
    return Response(
        {"analysisId": str(analysis.id), "status": AnalysisStatus.PROCESSING},
        status=status.HTTP_202_ACCEPTED,
    )


@api_view(["GET"])
def analysis_detail_view(request, analysis_id):
    analysis = Analysis.objects.filter(id=analysis_id).first()
    if analysis is None:
        return error_response(AnalysisNotFound(details=str(analysis_id)))
    return Response(AnalysisSerializer(analysis).data)


@api_view(["GET"])
def market_prices_view(request):
    serializer = MarketPriceQuerySerializer(data=request.query_params)
    if not serializer.is_valid():
        return invalid_request(serializer)
    return Response(
        get_dvf_market_price(serializer.validated_data["code_insee"], serializer.validated_data.get("type_bien"))
    )


@api_view(["POST"])
def strategic_scores_view(request):
    serializer = StrategicScoresQuerySerializer(data=request.data)
    if not serializer.is_valid():
        return invalid_request(serializer)
    items = serializer.validated_data["items"]
    matrix = load_strategic_matrix({item["job_type"] for item in items})
    return Response(compute_strategic_scores(items, matrix).to_dict())
