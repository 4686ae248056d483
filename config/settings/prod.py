"""
Production settings for the e-Invoice Platform
"""

from .base import *  # noqa: F403

DEBUG = False

SECRET_KEY = os.environ["DJANGO_SECRET_KEY"]  # noqa: F405
ALLOWED_HOSTS = [h for h in os.environ.get("ALLOWED_HOSTS", "").split(",") if h]  # noqa: F405

DATABASES["default"].update(  # noqa: F405
    {
        "CONN_MAX_AGE": 300,
    }
)

Q_CLUSTER = {
    **Q_CLUSTER_BASE,  # noqa: F405
    "workers": int(os.environ.get("Q_CLUSTER_WORKERS", "4")),  # noqa: F405
    "recycle": 500,
    "sync": False,
}

EINVOICE_ENVIRONMENT = os.environ.get("EINVOICE_ENVIRONMENT", "prod")  # noqa: F405
EINVOICE_METRICS_ENABLED = True

LOGGING["root"]["level"] = "WARNING"  # noqa: F405
LOGGING["loggers"]["apps"]["level"] = "INFO"  # noqa: F405

# ===============================================================================
# CACHE CONFIGURATION (Redis - atomic INCR for shared rate-limit counters) 🔄
# ===============================================================================

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.redis.RedisCache",
        "LOCATION": os.environ.get("REDIS_URL", "redis://127.0.0.1:6379/1"),  # noqa: F405
        "KEY_PREFIX": "einvoice",
        "TIMEOUT": 3600,
    }
}
