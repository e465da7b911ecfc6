"""
Django settings for the investorsarena project.

Values come from the process environment; a local `.env` file is loaded first so
development setups can keep secrets out of the shell.
"""

import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / ".env")


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "django-insecure-dev-only-change-me")

DEBUG = _env_bool("DJANGO_DEBUG", default=False)

ALLOWED_HOSTS = [
    h.strip() for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h.strip()
]


INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "accounts",
    "marketdata",
    "leagues",
    "portfolios",
    "leaderboards",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "investorsarena.urls"

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

WSGI_APPLICATION = "investorsarena.wsgi.application"
ASGI_APPLICATION = "investorsarena.asgi.application"


# Database
# SQLite for local development and tests; PostgreSQL (psycopg) when DATABASE_ENGINE=postgresql.
if os.environ.get("DATABASE_ENGINE", "sqlite").lower() in {"postgres", "postgresql"}:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.environ.get("POSTGRES_DB", "investorsarena"),
            "USER": os.environ.get("POSTGRES_USER", "investorsarena"),
            "PASSWORD": os.environ.get("POSTGRES_PASSWORD", ""),
            "HOST": os.environ.get("POSTGRES_HOST", "localhost"),
            "PORT": os.environ.get("POSTGRES_PORT", "5432"),
            "CONN_MAX_AGE": int(os.environ.get("POSTGRES_CONN_MAX_AGE", "60")),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.environ.get("SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
        }
    }


AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.environ.get("DJANGO_TIME_ZONE", "America/New_York")
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# Market data
QUOTE_PROVIDER = os.environ.get("QUOTE_PROVIDER", "twelve_data")
TWELVE_DATA_API_KEY = os.environ.get("TWELVE_DATA_API_KEY", "")
QUOTE_TIMEOUT_SECONDS = float(os.environ.get("QUOTE_TIMEOUT_SECONDS", "10"))

# Leagues
DEFAULT_VIRTUAL_BUDGET = Decimal(os.environ.get("DEFAULT_VIRTUAL_BUDGET", "100000.00"))
INVITATION_CODE_LENGTH = 8

# Portfolio history
TRANSACTION_HISTORY_DEFAULT_LIMIT = 50
TRANSACTION_HISTORY_MAX_LIMIT = 200

# Accounts
# When on, new accounts are marked verified at registration (development setups).
AUTO_VERIFY_EMAIL = _env_bool("AUTO_VERIFY_EMAIL", default=DEBUG)


LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "django": {"handlers": ["console"], "level": "WARNING", "propagate": False},
        "accounts": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "marketdata": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "leagues": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "portfolios": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "leaderboards": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "investorsarena": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}
