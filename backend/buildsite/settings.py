"""
Django settings for the buildsite task decision service.

Secrets and deployment-specific values come from the environment
(a local .env file is loaded with python-dotenv).
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv('DJANGO_SECRET_KEY', 'django-insecure-buildsite-dev-key')
DEBUG = os.getenv('DJANGO_DEBUG', 'false').lower() == 'true'
ALLOWED_HOSTS = [h for h in os.getenv('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',') if h]

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
    'tasks.apps.TasksConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'buildsite.urls'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'
USE_TZ = True
TIME_ZONE = 'UTC'

# Session/auth is owned by the gateway in front of this service
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': ['rest_framework.permissions.AllowAny'],
    'UNAUTHENTICATED_USER': None,
}

# --- Decision engine ---
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
AI_DECISION_MODEL = os.getenv('AI_DECISION_MODEL', 'gpt-3.5-turbo-0125')
AI_PRIMARY_TIMEOUT = float(os.getenv('AI_PRIMARY_TIMEOUT', '3.0'))
AI_DECISION_CACHE_TTL = int(os.getenv('AI_DECISION_CACHE_TTL', str(15 * 60)))
AI_DECISION_CACHE_MAX_ENTRIES = int(os.getenv('AI_DECISION_CACHE_MAX_ENTRIES', '100'))

# --- Celery ---
CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.getenv('CELERY_RESULT_BACKEND', CELERY_BROKER_URL)
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']
CELERY_BEAT_SCHEDULE = {
    'sweep-expired-decisions': {
        'task': 'tasks.ai_engine.celery_tasks.sweep_expired_decisions',
        'schedule': 5 * 60,
    },
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'tasks': {
            'handlers': ['console'],
            'level': os.getenv('TASKS_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
