"""Checkout domain type definitions."""

from src.models.checkout import (
    PAYMENT_METHODS,
    SESSION_FIELDS,
    SHIPPING_METHODS,
    CheckoutStep,
    StorageKey,
)

__all__ = [
    "CheckoutStep",
    "StorageKey",
    "SESSION_FIELDS",
    "SHIPPING_METHODS",
    "PAYMENT_METHODS",
]
