# ordering_backend/settings/__init__.py
"""
Django settings package for the ordering backend.

This package provides environment-specific settings:
- development: Local development with debug enabled
- production: Production environment with security hardening
- test: In-memory database and eager Celery for the pytest suite

Settings are loaded based on the ENVIRONMENT variable when
DJANGO_SETTINGS_MODULE points at the package itself.
"""

import os
import sys

# Determine which settings to load
ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()

VALID_ENVIRONMENTS = ["development", "production", "test"]
if ENVIRONMENT not in VALID_ENVIRONMENTS:
    raise ValueError(
        f"Invalid ENVIRONMENT '{ENVIRONMENT}'. "
        f"Must be one of: {', '.join(VALID_ENVIRONMENTS)}"
    )

if ENVIRONMENT == "production":
    from .production import *
elif ENVIRONMENT == "test":
    from .test import *
else:
    from .development import *


def validate_settings():
    """Validate critical settings are properly configured."""
    errors = []

    if not SECRET_KEY:
        errors.append("SECRET_KEY must be set to a secure random value")

    if not DATABASES.get("default"):
        errors.append("Database configuration is missing")

    if ENVIRONMENT == "production" and DEBUG:
        errors.append("DEBUG should be False in production")

    if ENVIRONMENT == "production" and not RAZORPAY_WEBHOOK_SECRET:
        errors.append("RAZORPAY_WEBHOOK_SECRET must be set in production")

    if errors:
        error_msg = "\n".join([f"  - {error}" for error in errors])
        raise ValueError(f"Settings validation failed:\n{error_msg}")


if "migrate" not in sys.argv and "collectstatic" not in sys.argv:
    if ENVIRONMENT == "production":
        validate_settings()

__all__ = ["validate_settings"]
