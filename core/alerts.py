import logging

import sentry_sdk

from .exceptions import InvariantViolation

logger = logging.getLogger(__name__)


def alert_invariant_violation(message: str, **context) -> InvariantViolation:
    """
    Log and report a broken monetary invariant, returning the exception to raise.

    Sentry only receives the event when ``sentry_sdk.init`` ran (production).
    """
    logger.critical("INVARIANT VIOLATION: %s | %s", message, context)
    sentry_sdk.capture_message(f"Invariant violation: {message}", level="error", extras=context)
    return InvariantViolation(message, **context)
