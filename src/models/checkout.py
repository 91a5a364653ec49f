"""Checkout flow type definitions shared by the store, steps and persistence."""

from enum import IntEnum
from typing import Literal, TypedDict


class CheckoutStep(IntEnum):
    """Wizard steps, in the order the customer walks them."""

    ADDRESS = 0
    SHIPPING_METHOD = 1
    PAYMENT = 2
    REVIEW = 3


FIRST_STEP = CheckoutStep.ADDRESS
LAST_STEP = CheckoutStep.REVIEW

# Checkout session status values issued by the checkout service
SessionStatus = Literal["PENDING", "COMPLETED", "EXPIRED", "FAILED"]

# Session fields that can be pushed to the checkout service after creation
SessionField = Literal["shippingAddress", "billingAddress", "shippingMethod", "paymentMethod"]
SESSION_FIELDS: tuple[str, ...] = ("shippingAddress", "billingAddress", "shippingMethod", "paymentMethod")

# Shipping methods offered by the checkout service
ShippingMethodCode = Literal["STANDARD", "EXPRESS", "OVERNIGHT", "INTERNATIONAL"]
SHIPPING_METHODS: tuple[str, ...] = ("STANDARD", "EXPRESS", "OVERNIGHT", "INTERNATIONAL")

# Payment methods offered at the payment step
PaymentMethodCode = Literal["credit_card", "paypal", "apple_pay", "cash_on_delivery"]
PAYMENT_METHODS: tuple[str, ...] = ("credit_card", "paypal", "apple_pay", "cash_on_delivery")

# Placement phases, in execution order
PlacementPhase = Literal["checkingInventory", "processingPayment", "creatingOrder", "completed"]
PLACEMENT_PHASES: tuple[str, ...] = ("checkingInventory", "processingPayment", "creatingOrder", "completed")

# Notice codes surfaced to the customer
NoticeCode = Literal[
    "stale_pricing",
    "pricing_unavailable",
    "session_update_failed",
    "session_creation_failed",
    "shipping_options_fallback",
    "submission_interrupted",
]


class StorageKey:
    """Well-known keys for persisted checkout blobs."""

    CHECKOUT_STATE = "checkout_state"
    CHECKOUT_SESSION = "checkout_session"
    FALLBACK_DATA = "checkout_fallback_data"
    CURRENT_STEP = "checkout_current_step"
    ORDER_SUBMISSION = "order_submission_status"
    LAST_ORDER_ID = "last_order_id"
    LAST_SESSION_ID = "last_session_id"
    ORDER_COMPLETED = "order_completed"

    # Removed by clear(); the confirmation markers survive it
    CHECKOUT_KEYS = (
        CHECKOUT_STATE,
        CHECKOUT_SESSION,
        FALLBACK_DATA,
        CURRENT_STEP,
        ORDER_SUBMISSION,
    )
    CONFIRMATION_KEYS = (LAST_ORDER_ID, LAST_SESSION_ID, ORDER_COMPLETED)


SUBMITTING = "submitting"


class ShippingMethodRate(TypedDict):
    """Optimistic rate entry for a shipping method."""

    label: str
    multiplier: float
    estimated_days: int


# Base shipping cost the checkout service applies before zone multipliers
BASE_SHIPPING_COST = 10.0

# Method multipliers mirror the checkout service's rate table
SHIPPING_METHOD_RATES: dict[str, ShippingMethodRate] = {
    "STANDARD": {"label": "Standard Shipping", "multiplier": 1.0, "estimated_days": 5},
    "EXPRESS": {"label": "Express Shipping", "multiplier": 1.5, "estimated_days": 3},
    "OVERNIGHT": {"label": "Overnight Shipping", "multiplier": 2.5, "estimated_days": 1},
    "INTERNATIONAL": {"label": "International Shipping", "multiplier": 2.0, "estimated_days": 7},
}


class OrderCompletion(TypedDict):
    """Markers left behind for the order confirmation page."""

    last_order_id: str | None
    last_session_id: str | None
    order_completed: bool
