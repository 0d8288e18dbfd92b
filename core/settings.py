import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env from the data directory (SECRET_KEY and engine overrides live there)
DATA_DIR = Path(os.environ.get("DATA_DIR", BASE_DIR / "data"))
DATA_DIR.mkdir(parents=True, exist_ok=True)

env_file = DATA_DIR / ".env"
if env_file.exists():
    load_dotenv(env_file)

SECRET_KEY = os.environ.get(
    "SECRET_KEY",
    "django-insecure-dev-key-change-me-in-production",
)

DEBUG = os.environ.get("DEBUG", "True").lower() in ("true", "1", "yes")

ALLOWED_HOSTS = os.environ.get("ALLOWED_HOSTS", "localhost,127.0.0.1,0.0.0.0,testserver").split(",")

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "combos",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "core.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "core.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": DATA_DIR / "db.sqlite3",
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

CSRF_TRUSTED_ORIGINS = [
    "http://localhost",
    "http://127.0.0.1",
    "http://localhost:8000",
    "http://127.0.0.1:8000",
]

# ── Combo engine ──────────────────────────────────────────────────────────

AUTO_REFRESH_ENABLED = os.environ.get("AUTO_REFRESH_ENABLED", "True").lower() in ("true", "1", "yes")

COMBO_ENGINE = {
    "CACHE_TTL_HOURS": float(os.environ.get("COMBO_CACHE_TTL_HOURS", 24)),
    "CHUNK_SIZE": int(os.environ.get("COMBO_CHUNK_SIZE", 25)),
    "MAX_WORKERS": int(os.environ.get("COMBO_MAX_WORKERS", 4)),
    "TOP_N": int(os.environ.get("COMBO_TOP_N", 500)),
    "REQUEST_TIMEOUT": float(os.environ.get("COMBO_REQUEST_TIMEOUT", 55)),
    "RATE_LIMIT_MAX_CALLS": int(os.environ.get("COMBO_RATE_LIMIT_MAX_CALLS", 20)),
    "RATE_LIMIT_WINDOW_SECONDS": float(os.environ.get("COMBO_RATE_LIMIT_WINDOW_SECONDS", 60)),
    "BREAKER_FAILURE_THRESHOLD": int(os.environ.get("COMBO_BREAKER_FAILURE_THRESHOLD", 3)),
    "BREAKER_COOLDOWN_SECONDS": float(os.environ.get("COMBO_BREAKER_COOLDOWN_SECONDS", 60)),
    "RANKING_RETENTION_DAYS": int(os.environ.get("COMBO_RANKING_RETENTION_DAYS", 90)),
}

# ── Logging ───────────────────────────────────────────────────────────────

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "{asctime} {levelname} {name}: {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "combos": {
            "level": LOG_LEVEL,
        },
    },
}
