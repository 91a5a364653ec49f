"""Wizard step handlers: local validation first, then store mutation.

Each handler validates its own input and only touches the store once that
validation passes, so a rejected form never causes a network call.
"""

import logging
import re
from typing import Any

from src.core.checkout_api import CheckoutServiceClient
from src.core.http import ServiceAuthError
from src.models.checkout import (
    BASE_SHIPPING_COST,
    PAYMENT_METHODS,
    SHIPPING_METHOD_RATES,
    SHIPPING_METHODS,
    CheckoutStep,
)
from src.schemas.auth import UserContext
from src.schemas.checkout import (
    Address,
    AddressInput,
    CartItem,
    PlacementResult,
    ReviewSummary,
    ShippingOption,
)
from src.services.checkout_store import CheckoutStore, SessionStateError
from src.services.order_placement_service import OrderPlacementService

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
PHONE_PATTERN = re.compile(r"^\+?[0-9\s().-]+$")
PHONE_MIN_DIGITS = 7
PHONE_MAX_DIGITS = 15


class StepValidationError(ValueError):
    """Field-level validation failure for a step form."""

    def __init__(self, errors: dict[str, str]) -> None:
        """Initialize with per-field messages.

        Args:
            errors: Mapping of field name to error message.
        """
        self.errors = errors
        super().__init__("; ".join(errors.values()))

    def to_details(self) -> list[dict[str, Any]]:
        """Format errors for the API error response."""
        return [{"loc": [field], "msg": msg, "type": "value_error"} for field, msg in self.errors.items()]


ADDRESS_REQUIRED_FIELDS = {
    "first_name": "First Name is required",
    "last_name": "Last Name is required",
    "email": "Email is required",
    "phone": "Phone is required",
    "street": "Address is required",
    "city": "City is required",
    "state": "State is required",
    "zip_code": "Zip Code is required",
    "country": "Country is required",
}


def validate_address(data: AddressInput) -> dict[str, str]:
    """Validate an address form.

    Returns:
        dict: Field name to error message; empty when the form is valid.
    """
    errors: dict[str, str] = {}
    for field, message in ADDRESS_REQUIRED_FIELDS.items():
        if not getattr(data, field).strip():
            errors[field] = message

    email = data.email.strip()
    if email and not EMAIL_PATTERN.match(email):
        errors["email"] = "Invalid email format"

    phone = data.phone.strip()
    if phone:
        digits = sum(ch.isdigit() for ch in phone)
        if not PHONE_PATTERN.match(phone) or not PHONE_MIN_DIGITS <= digits <= PHONE_MAX_DIGITS:
            errors["phone"] = "Invalid phone number"

    return errors


def default_shipping_options() -> list[ShippingOption]:
    """Shipping options offered when the checkout service cannot list them."""
    return [
        ShippingOption(
            method=method,
            carrier=rate["label"],
            cost=round(BASE_SHIPPING_COST * rate["multiplier"], 2),
            estimated_days=str(rate["estimated_days"]),
        )
        for method, rate in SHIPPING_METHOD_RATES.items()
    ]


class AddressStep:
    """Step 0: shipping address."""

    def __init__(self, store: CheckoutStore) -> None:
        self.store = store

    async def submit(self, data: AddressInput, cart_items: list[CartItem] | None = None) -> Address:
        """Validate and save the shipping address, then advance.

        When a session exists the address is pushed to it optimistically.
        Pricing is recalculated for the new destination.

        Raises:
            StepValidationError: If the form is invalid (no network call is made).
            OptimisticUpdateError: If the session rejected the address.
        """
        errors = validate_address(data)
        if errors:
            raise StepValidationError(errors)

        address = Address(
            street=data.street.strip(),
            city=data.city.strip(),
            state=data.state.strip(),
            zip_code=data.zip_code.strip(),
            country=data.country.strip().upper(),
            first_name=data.first_name.strip(),
            last_name=data.last_name.strip(),
            email=data.email.strip(),
            phone=data.phone.strip(),
        )

        if self.store.session is not None:
            await self.store.update_session_field("shippingAddress", address)
        else:
            self.store.set_shipping_address(address)

        items = cart_items or self.store.last_cart_items
        if items:
            await self.store.calculate_order_preview(self.store.user_id, items, self.store.coupon_code)

        if self.store.current_step == CheckoutStep.ADDRESS:
            self.store.advance()
        return address


class ShippingMethodStep:
    """Step 1: shipping method."""

    def __init__(self, store: CheckoutStore, checkout_api: CheckoutServiceClient) -> None:
        self.store = store
        self.checkout_api = checkout_api

    async def options(self) -> tuple[list[ShippingOption], bool]:
        """List shipping options for the saved address.

        Returns:
            tuple: (options, fallback) where fallback is True when the default
            table was used because the service could not answer.

        Raises:
            SessionStateError: If no shipping address has been saved yet.
        """
        address = self.store.shipping_address
        if address is None:
            raise SessionStateError("Please provide your shipping address first.", go_back_to_step=CheckoutStep.ADDRESS)

        try:
            options = await self.checkout_api.get_shipping_options(address)
        except ServiceAuthError:
            raise
        except Exception as e:
            logger.warning("Shipping options unavailable, using defaults: %s", e)
            return default_shipping_options(), True

        options = [option for option in options if option.method]
        if not options:
            return default_shipping_options(), True
        return options, False

    async def submit(self, method: str) -> str:
        """Validate and save the shipping method, then advance.

        Raises:
            SessionStateError: If no shipping address has been saved yet.
            StepValidationError: If the method is missing or unknown.
            OptimisticUpdateError: If the session rejected the method.
        """
        if self.store.shipping_address is None:
            raise SessionStateError("Please provide your shipping address first.", go_back_to_step=CheckoutStep.ADDRESS)

        code = method.strip().upper()
        if not code:
            raise StepValidationError({"method": "Please select a shipping method"})
        if code not in SHIPPING_METHODS:
            raise StepValidationError({"method": f"Unsupported shipping method: {method}"})

        if self.store.current_step < CheckoutStep.SHIPPING_METHOD:
            self.store.set_step(CheckoutStep.SHIPPING_METHOD)

        if self.store.session is not None:
            await self.store.update_session_field("shippingMethod", code)
        else:
            self.store.set_shipping_method(code)
        await self.store.settle()

        if self.store.current_step == CheckoutStep.SHIPPING_METHOD:
            self.store.advance()
        return code


class PaymentStep:
    """Step 2: payment method."""

    def __init__(self, store: CheckoutStore) -> None:
        self.store = store

    async def submit(self, method: str) -> str:
        """Validate and save the payment method, then advance.

        Raises:
            SessionStateError: If no shipping method has been selected yet.
            StepValidationError: If the method is missing or unknown.
        """
        if not self.store.shipping_method:
            raise SessionStateError("Please select a shipping method first.", go_back_to_step=CheckoutStep.SHIPPING_METHOD)

        code = method.strip().lower()
        if not code:
            raise StepValidationError({"method": "Please select a payment method"})
        if code not in PAYMENT_METHODS:
            raise StepValidationError({"method": f"Unsupported payment method: {method}"})

        if self.store.current_step < CheckoutStep.PAYMENT:
            self.store.set_step(CheckoutStep.PAYMENT)

        if self.store.session is not None:
            await self.store.update_session_field("paymentMethod", code)
        else:
            self.store.set_payment_method(code)

        if self.store.current_step == CheckoutStep.PAYMENT:
            self.store.advance()
        return code


class ReviewStep:
    """Step 3: review everything and place the order."""

    def __init__(self, store: CheckoutStore, placement: OrderPlacementService) -> None:
        self.store = store
        self.placement = placement

    def summary(self) -> ReviewSummary:
        """Aggregate prior selections and the latest preview.

        Missing selections are listed with the earliest step to go back to.
        """
        missing: list[str] = []
        go_back_to: int | None = None

        if self.store.shipping_address is None:
            missing.append("Please provide your shipping address first.")
            go_back_to = CheckoutStep.ADDRESS
        if not self.store.shipping_method:
            missing.append("Please select a shipping method first.")
            go_back_to = CheckoutStep.SHIPPING_METHOD if go_back_to is None else go_back_to
        if not self.store.payment_method:
            missing.append("Please select a payment method first.")
            go_back_to = CheckoutStep.PAYMENT if go_back_to is None else go_back_to

        session = self.store.session
        return ReviewSummary(
            shipping_address=self.store.shipping_address,
            shipping_method=self.store.shipping_method,
            payment_method=self.store.payment_method,
            order_preview=self.store.order_preview,
            session_id=session.id if session else None,
            missing=missing,
            go_back_to_step=int(go_back_to) if go_back_to is not None else None,
            can_place_order=not missing and not self.store.is_placing_order,
        )

    async def place_order(
        self,
        cart_items: list[CartItem],
        user: UserContext | None,
        access_token: str | None = None,
        cart_id: str | None = None,
        coupon_code: str | None = None,
        payment_method_token: str | None = None,
    ) -> PlacementResult:
        """Hand the reviewed flow to the order placement sequence.

        Raises:
            PlacementRejected: If a prior step is incomplete or an order is already being placed.
        """
        return await self.placement.place_order(
            self.store,
            cart_items,
            user,
            access_token=access_token,
            cart_id=cart_id,
            coupon_code=coupon_code or self.store.coupon_code,
            payment_method_token=payment_method_token,
        )
