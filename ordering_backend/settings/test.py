# ordering_backend/settings/test.py
from .base import *

# -----------------------------------------------------------------------------
# Test Settings
# -----------------------------------------------------------------------------
DEBUG = False

SECRET_KEY = "test-secret-key-not-for-production"

ALLOWED_HOSTS = ["testserver", "localhost", "127.0.0.1"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

SECURE_SSL_REDIRECT = False
SESSION_COOKIE_SECURE = False
CSRF_COOKIE_SECURE = False
SECURE_HSTS_SECONDS = 0

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

STORAGES["staticfiles"] = {
    "BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage",
}

REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []

# -----------------------------------------------------------------------------
# Payment gateway (fixed secrets so tests can sign payloads)
# -----------------------------------------------------------------------------
RAZORPAY_KEY_ID = "rzp_test_key"
RAZORPAY_KEY_SECRET = "rzp_test_secret"
RAZORPAY_WEBHOOK_SECRET = "rzp_webhook_secret"
PAYMENT_CAPTURE_AT_GATEWAY = False
GATEWAY_MAX_RETRIES = 3
GATEWAY_BACKOFF_BASE = 0.0

ORDER_WRITE_MAX_RETRIES = 3

# -----------------------------------------------------------------------------
# Celery (run tasks inline)
# -----------------------------------------------------------------------------
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

# -----------------------------------------------------------------------------
# Logging (console only)
# -----------------------------------------------------------------------------
LOGGING["handlers"] = {
    "console": {
        "level": "WARNING",
        "class": "logging.StreamHandler",
        "formatter": "simple",
        "filters": ["request_id"],
    },
}
for logger_name in ["django", "django.request"] + APP_LOGGERS:
    LOGGING["loggers"][logger_name]["handlers"] = ["console"]
