"""Stripe SDK setup for order payments."""

import logging

import stripe

from src.core.config import get_settings

logger = logging.getLogger(__name__)


def configure_stripe() -> None:
    """Set the Stripe API key once at startup.

    Without a key, card payments fall back to demo confirmation tokens.
    """
    settings = get_settings()
    if settings.stripe_secret_key:
        stripe.api_key = settings.stripe_secret_key
    else:
        logger.warning("STRIPE_SECRET_KEY not set; card payments will be confirmed with demo tokens")


def get_stripe() -> stripe:
    """Return the module-configured Stripe SDK."""
    return stripe
