import sys
from pathlib import Path

from mls_api.config import settings as app_settings

SYNC_ROOT = Path(__file__).resolve().parent

if str(SYNC_ROOT) not in sys.path:
    sys.path.insert(0, str(SYNC_ROOT))

SECRET_KEY = app_settings.django.secret_key or "django-insecure-mls-sync-local-only"
DEBUG = app_settings.django.debug
ALLOWED_HOSTS = ["localhost", "127.0.0.1"]
USE_TZ = True
TIME_ZONE = app_settings.django.time_zone

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "mls_data.apps.MlsDataConfig",
]

MIDDLEWARE: list[str] = []
ROOT_URLCONF = "mls_sync.urls"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

if app_settings.django.db_engine.endswith("sqlite3"):
    DATABASES = {
        "default": {
            "ENGINE": app_settings.django.db_engine,
            "NAME": str(Path(app_settings.config_file_path).parent / app_settings.django.db_name),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": app_settings.django.db_engine,
            "NAME": app_settings.django.db_name,
            "HOST": app_settings.django.db_host,
            "PORT": app_settings.django.db_port,
            "USER": app_settings.django.db_user,
            "PASSWORD": app_settings.django.db_password,
        }
    }

MEDIA_ROOT = Path(app_settings.storage.local_root).expanduser()
MEDIA_URL = app_settings.storage.local_base_url

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "[{levelname}] {asctime} {name} {message}",
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
        "level": "DEBUG" if app_settings.debug else "INFO",
    },
    "loggers": {
        "urllib3": {"level": "WARNING"},
        "PIL": {"level": "WARNING"},
        "botocore": {"level": "WARNING"},
    },
}
