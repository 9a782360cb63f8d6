"""
Django settings for the AFIP invoicing platform - Base Configuration
Electronic voucher authorization for Argentine tenants.
"""

import os
from pathlib import Path
from typing import Any

# ===============================================================================
# CORE DJANGO SETTINGS
# ===============================================================================

BASE_DIR = Path(__file__).resolve().parent.parent.parent

# Application definition
DJANGO_APPS: list[str] = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
]

THIRD_PARTY_APPS: list[str] = [
    "rest_framework",
    "rest_framework.authtoken",
    "django_q",
]

LOCAL_APPS: list[str] = [
    "apps.billing",  # 🧾 AFIP CAE authorization & voucher numbering
]

INSTALLED_APPS: list[str] = DJANGO_APPS + THIRD_PARTY_APPS + LOCAL_APPS

MIDDLEWARE: list[str] = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"

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

WSGI_APPLICATION = "config.wsgi.application"
ASGI_APPLICATION = "config.asgi.application"

# ===============================================================================
# DATABASE CONFIGURATION
# ===============================================================================

# PostgreSQL is required in production: voucher numbering relies on
# pg_advisory_xact_lock
DATABASES: dict[str, dict[str, Any]] = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.environ.get("DB_NAME", "afip_invoicing"),
        "USER": os.environ.get("DB_USER", "afip_invoicing"),
        "PASSWORD": os.environ.get("DB_PASSWORD", "development_password"),
        "HOST": os.environ.get("DB_HOST", "localhost"),
        "PORT": os.environ.get("DB_PORT", "5432"),
        "CONN_MAX_AGE": 60,
        "OPTIONS": {
            "application_name": "afip_invoicing",
        },
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ===============================================================================
# INTERNATIONALIZATION
# ===============================================================================

LANGUAGE_CODE = "es-ar"
TIME_ZONE = "America/Argentina/Buenos_Aires"
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# ===============================================================================
# DJANGO REST FRAMEWORK
# ===============================================================================

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.TokenAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
}

# ===============================================================================
# AFIP ELECTRONIC INVOICING 🧾
# ===============================================================================

AFIP_SERVICE_NAME = "wsfe"
AFIP_TIMEZONE = "America/Argentina/Buenos_Aires"
AFIP_DEFAULT_TIMEOUT_SECONDS = int(os.environ.get("AFIP_DEFAULT_TIMEOUT_SECONDS", "30"))
AFIP_TICKET_SAFETY_MARGIN_SECONDS = 300  # Refresh tickets 5 minutes before expiry
AFIP_TICKET_VALIDITY_HOURS = 12
AFIP_SEQUENCE_CONFLICT_POLICY = os.environ.get("AFIP_SEQUENCE_CONFLICT_POLICY", "block")  # block | advance
AFIP_LEGACY_TLS = os.environ.get("AFIP_LEGACY_TLS", "true").lower() == "true"
AFIP_RESYNC_BATCH_SIZE = 50
AFIP_AUTO_RESYNC_ENABLED = os.environ.get("AFIP_AUTO_RESYNC_ENABLED", "false").lower() == "true"
AFIP_RESYNC_INTERVAL_MINUTES = 15
AFIP_METRICS_ENABLED = os.environ.get("AFIP_METRICS_ENABLED", "false").lower() == "true"
AFIP_METRICS_PREFIX = "afip"

# ===============================================================================
# DJANGO-Q2 TASK QUEUE
# ===============================================================================

Q_CLUSTER_BASE = {
    "name": "afip-cluster",
    "timeout": 300,  # 5 minutes
    "retry": 600,  # 10 minutes retry delay
    "save_limit": 1000,
    "catch_up": False,  # Don't run missed scheduled tasks
    "orm": "default",
    "bulk": 10,
    "queue_limit": 100,
}

Q_CLUSTER = {
    **Q_CLUSTER_BASE,
    "workers": 2,
    "recycle": 500,
    "sync": False,
}

# ===============================================================================
# SECURITY SETTINGS (Base - override in prod.py)
# ===============================================================================

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY")
if not SECRET_KEY:
    # Development fallback - never use this in production
    import warnings

    warnings.warn(
        "🚨 SECURITY WARNING: Using default SECRET_KEY. Set DJANGO_SECRET_KEY environment variable for production!",
        UserWarning,
        stacklevel=2,
    )
    SECRET_KEY = "django-insecure-dev-key-only-change-in-production-or-tests"  # noqa: S105


def validate_production_secret_key() -> None:
    """Validate SECRET_KEY meets production security requirements"""
    if SECRET_KEY and SECRET_KEY.startswith("django-insecure-"):
        raise ValueError("🔥 CRITICAL SECURITY ERROR: Cannot use insecure SECRET_KEY in production!")


# ===============================================================================
# LOGGING
# ===============================================================================

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{asctime} {levelname} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO",
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "apps": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "zeep": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
}
