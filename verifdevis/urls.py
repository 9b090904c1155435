"""
URL configuration for verifdevis project.
"""

from django.urls import include, path

from .quote_analysis.urls import urlpatterns as quote_analysis_urls

urlpatterns = [
    path("api/", include(quote_analysis_urls)),
]
