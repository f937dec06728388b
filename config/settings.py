"""
Fiscal – Django Settings (Infrastructure Only)
==============================================
Django serves as the ORM container for the fiscal document store.
The pipeline's own settings (gateway, signing, retry, derivation) are
loaded by fiscal.settings.load_settings from FISCAL_* variables.
"""

import os
from pathlib import Path

# ── Paths ─────────────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent

# ── Security ──────────────────────────────────────────────────
SECRET_KEY = os.environ.get("FISCAL_SECRET_KEY", "fiscal-dev-key-replace-before-deployment")

DEBUG = os.environ.get("FISCAL_DEBUG", "false").lower() in ("1", "true", "yes")

ALLOWED_HOSTS = []

# ── Installed Apps ────────────────────────────────────────────
INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "fiscal.document_store",
]

# ── Database ──────────────────────────────────────────────────
# SQLite for development and tests. PostgreSQL in production gives
# real row locks for series counters (select_for_update).
DATABASES = {
    "default": {
        "ENGINE": os.environ.get("FISCAL_DB_ENGINE", "django.db.backends.sqlite3"),
        "NAME": os.environ.get("FISCAL_DB_NAME", str(BASE_DIR / "db.sqlite3")),
        "USER": os.environ.get("FISCAL_DB_USER", ""),
        "PASSWORD": os.environ.get("FISCAL_DB_PASSWORD", ""),
        "HOST": os.environ.get("FISCAL_DB_HOST", ""),
        "PORT": os.environ.get("FISCAL_DB_PORT", ""),
    }
}

# ── Internationalization ──────────────────────────────────────
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True

# ── Default Primary Key ──────────────────────────────────────
# Fiscal records use explicit string ids. This is a Django fallback only.
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ── Logging ───────────────────────────────────────────────────
# One named logger tree: fiscal.signing, fiscal.gateway, fiscal.retry,
# fiscal.lifecycle, fiscal.derivation, fiscal.events, fiscal.storage, ...
FISCAL_LOG_LEVEL = os.environ.get("FISCAL_LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "loggers": {
        "fiscal": {
            "handlers": ["console"],
            "level": FISCAL_LOG_LEVEL,
            "propagate": True,
        },
        "httpx": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
}
