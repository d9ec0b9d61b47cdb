"""
Django settings for the Event Credential Printer.
"""

from pathlib import Path

from decouple import config

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = config("DJANGO_SECRET_KEY", default="change-me")
DEBUG = config("DJANGO_DEBUG", cast=bool, default=False)
APP_BASE_URL = config("APP_BASE_URL", default="http://localhost:8000")


def split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


ALLOWED_HOSTS = split_csv(config("DJANGO_ALLOWED_HOSTS", default="localhost,127.0.0.1,[::1]"))

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "simple_history",
    "rest_framework",
    "events",
    "credentials",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "simple_history.middleware.HistoryRequestMiddleware",
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
    }
]

WSGI_APPLICATION = "config.wsgi.application"

DATABASE_BACKEND = config("DATABASE_BACKEND", default="sqlite")
if DATABASE_BACKEND == "postgresql":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": config("POSTGRES_DB", default="credential_printer"),
            "USER": config("POSTGRES_USER", default="credential_user"),
            "PASSWORD": config("POSTGRES_PASSWORD", default="credential_password"),
            "HOST": config("POSTGRES_HOST", default="db"),
            "PORT": config("POSTGRES_PORT", default=5432, cast=int),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": config("SQLITE_PATH", default=str(BASE_DIR / "db.sqlite3")),
        }
    }

CACHES = {
    "default": {
        "BACKEND": config(
            "DJANGO_CACHE_BACKEND",
            default="django.core.cache.backends.locmem.LocMemCache",
        ),
        "LOCATION": config("DJANGO_CACHE_LOCATION", default="credential-printer"),
    }
}

LANGUAGE_CODE = "en"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"
MEDIA_URL = config("MEDIA_URL", default="/media/")
MEDIA_ROOT = Path(config("MEDIA_ROOT", default=str(BASE_DIR / "media")))
STORAGES = {
    "default": {
        "BACKEND": "django.core.files.storage.FileSystemStorage",
    },
    "staticfiles": {
        "BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage",
    },
}
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LOG_LEVEL = config("LOG_LEVEL", default="INFO")
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "credentials": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "events": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}

# Credential rendering.
CREDENTIAL_IMAGE_MAX_SIZE = config("CREDENTIAL_IMAGE_MAX_SIZE", cast=int, default=1448)
CREDENTIAL_FONT_PATH = config("CREDENTIAL_FONT_PATH", default="")
CREDENTIAL_ZONE_BORDER_WIDTH = config("CREDENTIAL_ZONE_BORDER_WIDTH", cast=int, default=6)
CREDENTIAL_ZONE_GAP = config("CREDENTIAL_ZONE_GAP", cast=int, default=12)
CREDENTIAL_ZONE_PADDING = config("CREDENTIAL_ZONE_PADDING", cast=int, default=0)
CREDENTIAL_VERIFICATION_BASE_URL = config(
    "CREDENTIAL_VERIFICATION_BASE_URL",
    default=f"{APP_BASE_URL.rstrip('/')}/verify-qr",
)
CREDENTIAL_TEMPLATE_CACHE_TTL = config("CREDENTIAL_TEMPLATE_CACHE_TTL", cast=int, default=600)
CREDENTIAL_QUEUE = config("CREDENTIAL_QUEUE", default="credentials")
CREDENTIAL_REGENERATION_CHUNK_SIZE = config("CREDENTIAL_REGENERATION_CHUNK_SIZE", cast=int, default=100)

# Print batches.
PRINT_BATCH_QUEUE = config("PRINT_BATCH_QUEUE", default="print_batches")
PRINT_BATCH_RENDER_WORKERS = config("PRINT_BATCH_RENDER_WORKERS", cast=int, default=4)
PRINT_BATCH_MAX_RETRIES = config("PRINT_BATCH_MAX_RETRIES", cast=int, default=3)
PRINT_BATCH_RETENTION_DAYS = config("PRINT_BATCH_RETENTION_DAYS", cast=int, default=90)
PRINT_BATCH_PDF_DPI = config("PRINT_BATCH_PDF_DPI", cast=int, default=96)

CELERY_BROKER_URL = config("CELERY_BROKER_URL", default="redis://redis:6379/0")
CELERY_RESULT_BACKEND = config("CELERY_RESULT_BACKEND", default="redis://redis:6379/1")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_ROUTES = {
    "credentials.tasks.generate_print_batch": {"queue": PRINT_BATCH_QUEUE},
    "credentials.tasks.generate_credential": {"queue": CREDENTIAL_QUEUE},
    "credentials.tasks.regenerate_credential": {"queue": CREDENTIAL_QUEUE},
    "credentials.tasks.regenerate_event_credentials": {"queue": CREDENTIAL_QUEUE},
}
CELERY_BEAT_SCHEDULE_FILENAME = config(
    "CELERY_BEAT_SCHEDULE_FILENAME",
    default=str(MEDIA_ROOT / "celerybeat-schedule"),
)
CELERY_BEAT_SCHEDULE = {
    "cleanup-old-print-batches-weekly": {
        "task": "credentials.tasks.cleanup_old_print_batches",
        "schedule": 60 * 60 * 24 * 7,
    },
}
