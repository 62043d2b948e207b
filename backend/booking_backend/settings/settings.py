"""
Base Django settings for the booking backend.

Values come from the environment (optionally a .env file at the repository
root). Defaults are suitable for local development and the test suite:
SQLite and the in-memory channel layer, no external services required.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(os.path.join(BASE_DIR, '..', '.env'))

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-insecure-attribution-key")
DEBUG = os.getenv("DJANGO_DEBUG", "true").lower() == "true"
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(',')

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'channels',
    'professionals',
    'bookings',
    'attribution',
    'realtime',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'booking_backend.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'booking_backend.wsgi.application'
ASGI_APPLICATION = 'booking_backend.asgi.application'

DATABASES = {
    'default': {
        'ENGINE': os.getenv("DB_ENGINE", 'django.db.backends.sqlite3'),
        'NAME': os.getenv("DB_NAME", str(BASE_DIR / 'db.sqlite3')),
        'USER': os.getenv("DB_USER", ""),
        'PASSWORD': os.getenv("DB_PASSWORD", ""),
        'HOST': os.getenv("DB_HOST", ""),
        'PORT': os.getenv("DB_PORT", ""),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'Europe/Paris'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework.authentication.SessionAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
}

# Channels: in-memory layer by default, Redis in production (see prod.py)
CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Celery
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", REDIS_URL)
CELERY_TASK_SERIALIZER = "json"
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TIMEZONE = TIME_ZONE
CELERY_BEAT_SCHEDULE = {
    "expire-stale-attributions": {
        "task": "attribution.tasks.expire_stale_attributions_task",
        "schedule": 300.0,
    },
}

# ---------------------- Attribution engine ----------------------

ATTRIBUTION_DEFAULT_RADIUS_KM = float(os.getenv("ATTRIBUTION_DEFAULT_RADIUS_KM", "150"))
ATTRIBUTION_BLACKLIST_THRESHOLD = int(os.getenv("ATTRIBUTION_BLACKLIST_THRESHOLD", "2"))
# Precise distance is only requested below this share of the effective radius
ATTRIBUTION_PRECISE_DISTANCE_MARGIN = float(os.getenv("ATTRIBUTION_PRECISE_DISTANCE_MARGIN", "0.8"))
ATTRIBUTION_ESTIMATION_FACTOR = float(os.getenv("ATTRIBUTION_ESTIMATION_FACTOR", "0.85"))
ATTRIBUTION_STALE_AFTER_MINUTES = int(os.getenv("ATTRIBUTION_STALE_AFTER_MINUTES", "240"))
ATTRIBUTION_RESPONSE_TOKEN_MAX_AGE = int(os.getenv("ATTRIBUTION_RESPONSE_TOKEN_MAX_AGE", str(7 * 24 * 3600)))

GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY", "")
GOOGLE_DISTANCE_MATRIX_URL = os.getenv(
    "GOOGLE_DISTANCE_MATRIX_URL",
    "https://maps.googleapis.com/maps/api/distancematrix/json",
)
GOOGLE_DISTANCE_TIMEOUT_SECONDS = float(os.getenv("GOOGLE_DISTANCE_TIMEOUT_SECONDS", "5"))

APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:8000").rstrip("/")

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
        "attribution": {"handlers": ["console"], "level": os.getenv("ATTRIBUTION_LOG_LEVEL", "INFO")},
        "services": {"handlers": ["console"], "level": os.getenv("ATTRIBUTION_LOG_LEVEL", "INFO")},
        "realtime": {"handlers": ["console"], "level": "INFO"},
    },
}
