"""Checkout Pydantic schemas for the domain model and API request/response models.

The storefront services speak camelCase JSON, so every model here uses
snake_case attributes with camelCase aliases and accepts either on input.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.models.checkout import SessionStatus


class CamelModel(BaseModel):
    """Base model serialising to the services' camelCase wire format."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump to a JSON-compatible dict using camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# Domain models


class CartItem(CamelModel):
    """A single cart line sent to the checkout service."""

    model_config = ConfigDict(extra="allow")

    product_id: str = Field(description="Product identifier")
    quantity: int = Field(ge=1, description="Quantity ordered")
    price: float = Field(ge=0, description="Unit price")
    name: str = Field(description="Product name")
    metadata: dict[str, Any] | None = Field(default=None, description="Display metadata (image, variant, sku)")


class Address(CamelModel):
    """Shipping or billing address with contact details."""

    street: str = Field(min_length=1, description="Street address")
    city: str = Field(min_length=1, description="City")
    state: str = Field(min_length=1, description="State or region")
    zip_code: str = Field(min_length=1, description="Postal code")
    country: str = Field(min_length=1, description="ISO country code")
    first_name: str | None = Field(default=None, description="Recipient first name")
    last_name: str | None = Field(default=None, description="Recipient last name")
    email: str | None = Field(default=None, description="Contact email")
    phone: str | None = Field(default=None, description="Contact phone")


class OrderPreview(CamelModel):
    """Non-authoritative price breakdown shown before payment."""

    subtotal: float = Field(default=0, description="Sum of line totals")
    tax: float = Field(default=0, description="Tax amount")
    shipping_cost: float = Field(default=0, description="Shipping cost")
    discount: float = Field(default=0, description="Discount applied")
    total: float = Field(default=0, description="Amount due")
    items: list[CartItem] = Field(default_factory=list, description="Priced lines")


class SessionTotals(CamelModel):
    """Totals recorded on a checkout session."""

    subtotal: float = 0
    tax: float = 0
    shipping_cost: float = 0
    discount: float = 0
    total: float = 0


class CheckoutSession(CamelModel):
    """Server-issued record of an in-progress purchase attempt."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1, description="Session identifier")
    user_id: str = Field(description="Owner of the session")
    status: SessionStatus = Field(default="PENDING", description="Session status")
    cart_snapshot: list[CartItem] = Field(default_factory=list, description="Cart at session creation")
    totals: SessionTotals | None = Field(default=None, description="Session totals")
    shipping_method: str | None = None
    payment_method: str | None = None
    shipping_address: Address | None = None
    billing_address: Address | None = None
    payment_intent_id: str | None = None
    discount_code: str | None = None
    expires_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        """Whether the session can still be mutated or completed."""
        return self.status == "PENDING"

    @property
    def is_completed(self) -> bool:
        """Whether an order may be created from this session."""
        return self.status == "COMPLETED"

    @property
    def amount_due(self) -> float:
        """Total to charge, read from totals or the top-level field some responses carry."""
        if self.totals is not None:
            return self.totals.total
        extra = self.model_extra or {}
        return float(extra.get("total") or 0)


class Order(CamelModel):
    """Order created from a completed checkout session."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1, description="Order identifier")
    status: str | None = Field(default=None, description="Order status owned by the order service")
    checkout_session_id: str | None = None
    total: float | None = None


class ShippingOption(CamelModel):
    """A shipping method offered for an address."""

    method: str
    carrier: str = ""
    cost: float = 0
    estimated_days: str = ""


class CheckoutState(CamelModel):
    """Snapshot of one checkout flow, persisted after every mutation."""

    current_step: int = Field(default=0, ge=0, le=3)
    shipping_address: Address | None = None
    shipping_method: str | None = None
    payment_method: str | None = None
    order_preview: OrderPreview | None = None
    session: CheckoutSession | None = None
    is_placing_order: bool = False


class Notice(CamelModel):
    """User-facing warning produced by the checkout flow."""

    code: str
    message: str


class PlacementPhases(CamelModel):
    """Visible status flags of the order placement sequence."""

    checking_inventory: bool = False
    processing_payment: bool = False
    creating_order: bool = False
    completed: bool = False


class PlacementResult(CamelModel):
    """Outcome of an order placement attempt."""

    success: bool
    order_id: str | None = None
    session_id: str | None = None
    redirect_url: str | None = None
    errors: list[str] = Field(default_factory=list)
    phases: PlacementPhases = Field(default_factory=PlacementPhases)
    phase_history: list[str] = Field(default_factory=list)
    login_required: bool = False


# API request models


class AddressInput(CamelModel):
    """Raw address form input; validated by the address step, not by the schema."""

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = "US"


class StartCheckoutRequest(CamelModel):
    """Body of POST /checkout/session."""

    cart_items: list[CartItem] = Field(default_factory=list)
    coupon_code: str | None = None
    session_id: str | None = Field(default=None, description="Resume an existing session instead of creating one")


class PreviewRequest(CamelModel):
    """Body of POST /checkout/preview."""

    cart_items: list[CartItem] = Field(min_length=1)
    coupon_code: str | None = None


class MethodSelection(CamelModel):
    """Body of the shipping and payment method steps."""

    method: str = ""


class SessionFieldUpdate(CamelModel):
    """Body of PUT /checkout/session/{field}."""

    value: Any = None


class StepUpdate(CamelModel):
    """Body of PUT /checkout/step."""

    step: int


class PlaceOrderRequest(CamelModel):
    """Body of POST /checkout/place-order."""

    cart_items: list[CartItem] = Field(default_factory=list)
    cart_id: str | None = None
    coupon_code: str | None = None
    payment_method_token: str | None = Field(default=None, description="Stripe PaymentMethod id collected by the storefront")


# API response models


class CheckoutStateResponse(CamelModel):
    """Current checkout state with derived flags and pending notices."""

    state: CheckoutState
    can_proceed_to_next_step: bool
    is_loading_preview: bool = False
    is_loading_session: bool = False
    notices: list[Notice] = Field(default_factory=list)


class ReviewSummary(CamelModel):
    """Everything the review step displays before the order is placed."""

    shipping_address: Address | None = None
    shipping_method: str | None = None
    payment_method: str | None = None
    order_preview: OrderPreview | None = None
    session_id: str | None = None
    missing: list[str] = Field(default_factory=list, description="Prior steps still to complete")
    go_back_to_step: int | None = None
    can_place_order: bool = False


class ShippingOptionsResponse(CamelModel):
    """Shipping options for the current address."""

    options: list[ShippingOption]
    fallback: bool = False


class ConfirmationResponse(CamelModel):
    """Markers read by the order confirmation page."""

    last_order_id: str | None = None
    last_session_id: str | None = None
    order_completed: bool = False
