"""Django settings for the smart task planner backend.

Everything deployment-specific comes from environment variables so the same
module serves local development, tests and production.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "dev-only-insecure-secret-key")
DEBUG = os.environ.get("DJANGO_DEBUG", "false").lower() in ("1", "true", "yes")
ALLOWED_HOSTS = [h for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "rest_framework",
    "planner",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
]

ROOT_URLCONF = "smart_task_planner.urls"
WSGI_APPLICATION = "smart_task_planner.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.environ.get("DATABASE_PATH", str(BASE_DIR / "db.sqlite3")),
        # seconds to wait for the database lock before a commit fails
        "OPTIONS": {"timeout": float(os.environ.get("DATABASE_TIMEOUT", "20"))},
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

USE_TZ = True
TIME_ZONE = "UTC"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
}

# AI gateway used to decompose goals into task plans.
PLANNER = {
    "AI_GATEWAY_URL": os.environ.get(
        "PLANNER_AI_GATEWAY_URL", "https://ai.gateway.lovable.dev/v1/chat/completions"
    ),
    "AI_API_KEY": os.environ.get("PLANNER_AI_API_KEY", ""),
    "AI_MODEL": os.environ.get("PLANNER_AI_MODEL", "google/gemini-2.5-flash"),
    "AI_TIMEOUT": float(os.environ.get("PLANNER_AI_TIMEOUT", "60")),
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "loggers": {
        "planner": {
            "handlers": ["console"],
            "level": os.environ.get("PLANNER_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}
