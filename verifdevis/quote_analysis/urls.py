from django.urls import path

from . import views

urlpatterns = [
    path("analyze-quote", views.analyze_quote_view, name="analyze-quote"),
    path("analyses/<uuid:analysis_id>", views.analysis_detail_view, name="analysis-detail"),
    path("market-prices", views.market_prices_view, name="market-prices"),
    path("strategic-scores", views.strategic_scores_view, name="strategic-scores"),
]
