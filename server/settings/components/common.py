"""Core Django settings: apps, middleware, database, URLs."""

from typing import Final

from server.settings.components import BASE_DIR, config

SECRET_KEY = config(
    'DJANGO_SECRET_KEY',
    default='insecure-development-key-change-me',
)

DEBUG = config('DJANGO_DEBUG', cast=bool, default=False)

ALLOWED_HOSTS = config(
    'DJANGO_ALLOWED_HOSTS',
    cast=lambda hosts: [host.strip() for host in hosts.split(',')],
    default='localhost,127.0.0.1,testserver',
)

INSTALLED_APPS: Final = (
    'django.contrib.contenttypes',

    # Our apps:
    'server.apps.files',
)

MIDDLEWARE: Final = (
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
)

ROOT_URLCONF = 'server.urls'

WSGI_APPLICATION = 'server.wsgi.application'

_DATABASE_ENGINE = config(
    'DJANGO_DATABASE_ENGINE',
    default='django.db.backends.sqlite3',
)

# Postgres in deployments, SQLite for local runs and tests
DATABASES = {
    'default': {
        'ENGINE': _DATABASE_ENGINE,
        'NAME': config(
            'DJANGO_DATABASE_NAME',
            default=str(BASE_DIR.joinpath('db.sqlite3')),
        ),
        'USER': config('POSTGRES_USER', default=''),
        'PASSWORD': config('POSTGRES_PASSWORD', default=''),
        'HOST': config('DJANGO_DATABASE_HOST', default=''),
        'PORT': config('DJANGO_DATABASE_PORT', default=''),
        'CONN_MAX_AGE': config('CONN_MAX_AGE', cast=int, default=60),
    },
}

if _DATABASE_ENGINE == 'django.db.backends.sqlite3':
    # Writers take the lock at BEGIN and wait for it instead of failing
    DATABASES['default']['OPTIONS'] = {'transaction_mode': 'IMMEDIATE'}
    # File-backed test database: threads in tests get their own connections
    DATABASES['default']['TEST'] = {
        'NAME': str(BASE_DIR.joinpath('test_db.sqlite3')),
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'

USE_I18N = False

TIME_ZONE = 'UTC'

USE_TZ = True

# Slashless routes: `/upload`, `/files/{id}`
APPEND_SLASH = False

# Uploads above this size are spooled to disk by Django before the view runs
FILE_UPLOAD_MAX_MEMORY_SIZE = config(
    'DJANGO_FILE_UPLOAD_MAX_MEMORY_SIZE',
    cast=int,
    default=2621440,  # 2.5 MB, Django default
)
