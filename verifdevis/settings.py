"""
Django settings for verifdevis project.

Toutes les valeurs ajustables sont lues dans l'environnement (fichier .env
chargé par python-dotenv en local).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent


def getenv_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


ENV = os.getenv("ENV", "dev")

SECRET_KEY = os.getenv("SECRET_KEY", "django-insecure-verifdevis-dev-key")
DEBUG = getenv_bool("DEBUG", ENV == "dev")
ALLOWED_HOSTS = [h for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h]


# Application definition

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "verifdevis",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "verifdevis.logging.RequestMiddleware",
]

ROOT_URLCONF = "verifdevis.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "verifdevis.wsgi.application"


# Database

if os.getenv("POSTGRES_DB"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("POSTGRES_DB"),
            "USER": os.getenv("POSTGRES_USER", "postgres"),
            "PASSWORD": os.getenv("POSTGRES_PASSWORD", ""),
            "HOST": os.getenv("POSTGRES_HOST", "localhost"),
            "PORT": os.getenv("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# Storage

AWS_STORAGE_BUCKET_NAME = os.getenv("AWS_STORAGE_BUCKET_NAME", "")
AWS_S3_ENDPOINT_URL = os.getenv("AWS_S3_ENDPOINT_URL") or None
AWS_S3_REGION_NAME = os.getenv("AWS_S3_REGION_NAME") or None
AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID", "")
AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY", "")

if AWS_STORAGE_BUCKET_NAME and ENV != "test":
    default_storage_backend = "storages.backends.s3.S3Storage"
elif ENV == "test":
    default_storage_backend = "django.core.files.storage.InMemoryStorage"
else:
    default_storage_backend = "django.core.files.storage.FileSystemStorage"

STORAGES = {
    "default": {"BACKEND": default_storage_backend},
    "staticfiles": {"BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage"},
}

MEDIA_ROOT = BASE_DIR / "media"
STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"


# Internationalization

LANGUAGE_CODE = "fr-fr"
TIME_ZONE = "Europe/Paris"
USE_I18N = True
USE_TZ = True


# REST framework

REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_PARSER_CLASSES": ["rest_framework.parsers.JSONParser"],
    "UNAUTHENTICATED_USER": None,
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
}


# Celery

ANALYSIS_TIME_BUDGET_SECONDS = int(os.getenv("ANALYSIS_TIME_BUDGET_SECONDS", "120"))

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND") or None
CELERY_TASK_ALWAYS_EAGER = getenv_bool("CELERY_TASK_ALWAYS_EAGER", False)
CELERY_TASK_SOFT_TIME_LIMIT = ANALYSIS_TIME_BUDGET_SECONDS
CELERY_TASK_TIME_LIMIT = ANALYSIS_TIME_BUDGET_SECONDS + 15
CELERY_WORKER_HIJACK_ROOT_LOGGER = False


# LLM (passerelle compatible OpenAI)

LLM_API_KEY = os.getenv("LLM_API_KEY", "")
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://llm.testing.beta.gouv.fr/v1")
LLM_EXTRACTION_MODEL = os.getenv("LLM_EXTRACTION_MODEL", "openweight-medium")
LLM_VISION_MODEL = os.getenv("LLM_VISION_MODEL", "openweight-medium")
LLM_SUMMARY_MODEL = os.getenv("LLM_SUMMARY_MODEL", "openweight-small")
LLM_OCR_MODEL = os.getenv("LLM_OCR_MODEL", "mistral-ocr-2512")
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "1"))
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "60"))
LLM_SUMMARY_ENABLED = getenv_bool("LLM_SUMMARY_ENABLED", True)


# Sources externes

PAPPERS_API_KEY = os.getenv("PAPPERS_API_KEY", "")
PAPPERS_API_URL = os.getenv("PAPPERS_API_URL", "https://api.pappers.fr/v2")
BODACC_API_URL = os.getenv(
    "BODACC_API_URL",
    "https://bodacc-datadila.opendatasoft.com/api/explore/v2.1/catalog/datasets/annonces-commerciales/records",
)
OPENIBAN_API_URL = os.getenv("OPENIBAN_API_URL", "https://openiban.com/validate")
GOOGLE_PLACES_API_KEY = os.getenv("GOOGLE_PLACES_API_KEY", "")
GOOGLE_PLACES_API_URL = os.getenv(
    "GOOGLE_PLACES_API_URL", "https://maps.googleapis.com/maps/api/place/findplacefromtext/json"
)
ADEME_RGE_API_URL = os.getenv(
    "ADEME_RGE_API_URL", "https://data.ademe.fr/data-fair/api/v1/datasets/liste-des-entreprises-rge-2/lines"
)
GEORISQUES_API_URL = os.getenv("GEORISQUES_API_URL", "https://georisques.gouv.fr/api/v1")
ADRESSE_API_URL = os.getenv("ADRESSE_API_URL", "https://api-adresse.data.gouv.fr/search")
GPU_API_URL = os.getenv("GPU_API_URL", "https://apicarto.ign.fr/api/gpu/document")


# Analyse de devis

ANALYSIS_MAX_FILE_SIZE = int(os.getenv("ANALYSIS_MAX_FILE_SIZE", str(10 * 1024 * 1024)))
ANALYSIS_MIN_TEXT_LENGTH = int(os.getenv("ANALYSIS_MIN_TEXT_LENGTH", "100"))
ANALYSIS_PDF_NATIVE_MIN_WORDS = int(os.getenv("ANALYSIS_PDF_NATIVE_MIN_WORDS", "50"))
ANALYSIS_TOTALS_TOLERANCE = float(os.getenv("ANALYSIS_TOTALS_TOLERANCE", "0.01"))
ANALYSIS_SOURCE_TIMEOUT = float(os.getenv("ANALYSIS_SOURCE_TIMEOUT", "5"))
ANALYSIS_DEFAULT_DOMAIN = os.getenv("ANALYSIS_DEFAULT_DOMAIN", "travaux")
MARKET_PRICE_MIN_SAMPLE = int(os.getenv("MARKET_PRICE_MIN_SAMPLE", "5"))
COMPANY_CACHE_TTL_OK = int(os.getenv("COMPANY_CACHE_TTL_OK", str(30 * 24 * 3600)))
COMPANY_CACHE_TTL_NOT_FOUND = int(os.getenv("COMPANY_CACHE_TTL_NOT_FOUND", str(24 * 3600)))
COMPANY_CACHE_TTL_ERROR = int(os.getenv("COMPANY_CACHE_TTL_ERROR", str(3600)))


# Logging

REQUEST_ID_HEADER = "HTTP_X_REQUEST_ID"

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "request_id": {"()": "verifdevis.logging.RequestIdFilter"},
        "celery_task": {"()": "verifdevis.logging.CeleryTaskFilter"},
    },
    "formatters": {
        "verbose": {
            "format": (
                "%(asctime)s %(levelname)s [%(name)s] "
                "request_id=%(request_id)s task=%(task_name)s:%(task_id)s %(message)s"
            ),
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "filters": ["request_id", "celery_task"],
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": os.getenv("LOG_LEVEL", "INFO"),
    },
    "loggers": {
        "django": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "verifdevis": {"handlers": ["console"], "level": os.getenv("LOG_LEVEL", "INFO"), "propagate": False},
        "httpx": {"level": "WARNING"},
    },
}
