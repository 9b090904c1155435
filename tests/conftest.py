from unittest.mock import Mock

import pytest

from verifdevis.quote_analysis.config import AnalysisConfig
from verifdevis.quote_analysis.llm.client import LLMClient
from verifdevis.quote_analysis.verification.cache import InMemoryCompanyCache


@pytest.fixture(autouse=True)
def test_settings(settings):
    """Stockage en mémoire et tâches Celery sans broker."""
    settings.ENV = "test"
    settings.STORAGES = {
        "default": {"BACKEND": "django.core.files.storage.InMemoryStorage"},
        "staticfiles": {"BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage"},
    }
    settings.CELERY_TASK_ALWAYS_EAGER = True
    settings.LLM_API_KEY = "test-key"
    settings.LLM_BASE_URL = "https://llm.test.local/v1"
    settings.LLM_MAX_RETRIES = 0
    settings.PAPPERS_API_KEY = ""
    settings.GOOGLE_PLACES_API_KEY = ""
    return settings


@pytest.fixture
def config():
    return AnalysisConfig(summary_enabled=False, llm_max_retries=0)


@pytest.fixture
def llm_client():
    return Mock(spec=LLMClient)


@pytest.fixture
def company_cache():
    return InMemoryCompanyCache()
