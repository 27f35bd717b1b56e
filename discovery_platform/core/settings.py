# core/settings.py
import os
from pathlib import Path

import structlog

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name, default=False):
    return os.environ.get(name, str(default)).strip().lower() in ('1', 'true', 'yes', 'on')


def env_list(name, default=''):
    return [v.strip() for v in os.environ.get(name, default).split(',') if v.strip()]


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-only-insecure-key')
DEBUG = env_bool('DJANGO_DEBUG', True)
ALLOWED_HOSTS = env_list('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver')

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
    'discovery',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'core.urls'
WSGI_APPLICATION = 'core.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get('DJANGO_DB_PATH', str(BASE_DIR / 'db.sqlite3')),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'
USE_TZ = True
TIME_ZONE = 'UTC'

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': ['rest_framework.permissions.AllowAny'],
    'UNAUTHENTICATED_USER': None,
}

# ── DISCOVERY ──────────────────────────────────────────────────────
GOOGLE_PLACES_API_KEY = os.environ.get('GOOGLE_PLACES_API_KEY', '')

# 3 pages × 20 results: a query that hits the Text Search cap
DISCOVERY_SATURATION_THRESHOLD = int(os.environ.get('DISCOVERY_SATURATION_THRESHOLD', 60))
DISCOVERY_PLACES_MAX_PAGES = int(os.environ.get('DISCOVERY_PLACES_MAX_PAGES', 3))
DISCOVERY_PLACES_TIMEOUT = float(os.environ.get('DISCOVERY_PLACES_TIMEOUT', 15))
DISCOVERY_PAGE_TOKEN_DELAY = float(os.environ.get('DISCOVERY_PAGE_TOKEN_DELAY', 2))
DISCOVERY_DEFAULT_CELL_SIZE_KM = float(os.environ.get('DISCOVERY_DEFAULT_CELL_SIZE_KM', 10))
DISCOVERY_DEFAULT_QUERIES = env_list(
    'DISCOVERY_DEFAULT_QUERIES', 'farm market,fruit stand,farmers market'
)
DISCOVERY_VIRTUAL_MAX_CELLS = int(os.environ.get('DISCOVERY_VIRTUAL_MAX_CELLS', 500))

# ── LOGGING ────────────────────────────────────────────────────────
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {
        'console': {'class': 'logging.StreamHandler'},
    },
    'root': {'handlers': ['console'], 'level': LOG_LEVEL},
}

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt='iso'),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer() if DEBUG else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)
