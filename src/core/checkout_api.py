"""Client for the remote checkout service (pricing preview and checkout sessions)."""

import logging
from typing import Any

from src.core.http import ServiceClient
from src.schemas.checkout import (
    Address,
    CartItem,
    CheckoutSession,
    OrderPreview,
    ShippingOption,
)

logger = logging.getLogger(__name__)


class CheckoutServiceClient(ServiceClient):
    """Async client for the checkout service.

    The service owns all pricing, tax and shipping calculation; this client
    only shapes requests and parses responses into checkout schemas.
    """

    service_name = "checkout-service"

    async def calculate_preview(
        self,
        user_id: str,
        cart_items: list[CartItem],
        coupon_code: str | None = None,
        shipping_address: Address | None = None,
        shipping_method: str | None = None,
    ) -> OrderPreview:
        """Calculate an order preview with shipping and discount.

        Args:
            user_id: Customer identifier.
            cart_items: Cart lines to price.
            coupon_code: Optional coupon to apply.
            shipping_address: Optional destination for tax and shipping.
            shipping_method: Optional selected shipping method.

        Returns:
            OrderPreview: Price breakdown.
        """
        payload: dict[str, Any] = {
            "userId": user_id,
            "cartItems": [item.to_wire() for item in cart_items],
        }
        if coupon_code:
            payload["couponCode"] = coupon_code
        if shipping_address is not None:
            payload["shippingAddress"] = shipping_address.to_wire()
        if shipping_method:
            payload["shippingMethod"] = shipping_method

        data = await self._request(
            "POST",
            "/preview",
            json=payload,
            default_error="Failed to calculate order preview",
        )
        return OrderPreview.model_validate(data)

    async def create_session(
        self,
        user_id: str,
        cart_items: list[CartItem],
        coupon_code: str | None = None,
        shipping_address: Address | None = None,
        billing_address: Address | None = None,
    ) -> CheckoutSession:
        """Create a checkout session for the cart.

        Returns:
            CheckoutSession: The new session, normally PENDING.
        """
        payload: dict[str, Any] = {
            "userId": user_id,
            "cartItems": [item.to_wire() for item in cart_items],
        }
        if coupon_code:
            payload["couponCode"] = coupon_code
        if shipping_address is not None:
            payload["shippingAddress"] = shipping_address.to_wire()
        if billing_address is not None:
            payload["billingAddress"] = billing_address.to_wire()

        data = await self._request(
            "POST",
            "/session",
            json=payload,
            default_error="Failed to create checkout session",
        )
        session = CheckoutSession.model_validate(data)
        logger.info("Created checkout session %s for user %s", session.id, user_id)
        return session

    async def get_session(self, session_id: str) -> CheckoutSession:
        """Fetch a checkout session by id."""
        data = await self._request(
            "GET",
            f"/session/{session_id}",
            default_error="Failed to get checkout session",
        )
        return CheckoutSession.model_validate(data)

    async def update_shipping_address(self, session_id: str, address: Address) -> CheckoutSession:
        """Set the session's shipping address."""
        data = await self._request(
            "PUT",
            f"/session/{session_id}/shipping-address",
            json={"shippingAddress": address.to_wire()},
            default_error="Failed to update shipping address",
        )
        return CheckoutSession.model_validate(data)

    async def update_billing_address(self, session_id: str, address: Address) -> CheckoutSession:
        """Set the session's billing address."""
        data = await self._request(
            "PUT",
            f"/session/{session_id}/billing-address",
            json={"billingAddress": address.to_wire()},
            default_error="Failed to update billing address",
        )
        return CheckoutSession.model_validate(data)

    async def update_shipping_method(self, session_id: str, shipping_method: str) -> CheckoutSession:
        """Set the session's shipping method."""
        data = await self._request(
            "PUT",
            f"/session/{session_id}/shipping-method",
            json={"shippingMethod": shipping_method},
            default_error="Failed to update shipping method",
        )
        return CheckoutSession.model_validate(data)

    async def update_payment_method(self, session_id: str, payment_method: str) -> CheckoutSession:
        """Set the session's payment method."""
        data = await self._request(
            "PUT",
            f"/session/{session_id}/payment-method",
            json={"paymentMethod": payment_method},
            default_error="Failed to update payment method",
        )
        return CheckoutSession.model_validate(data)

    async def complete_session(self, session_id: str, payment_intent_id: str) -> CheckoutSession:
        """Complete the session after payment.

        Args:
            session_id: Session to complete.
            payment_intent_id: Payment confirmation token.

        Returns:
            CheckoutSession: The session, COMPLETED on success.
        """
        data = await self._request(
            "POST",
            f"/session/{session_id}/complete",
            json={"paymentIntentId": payment_intent_id},
            default_error="Failed to complete checkout session",
        )
        return CheckoutSession.model_validate(data)

    async def get_shipping_options(self, address: Address, order_weight: float | None = None) -> list[ShippingOption]:
        """List shipping options available for an address."""
        payload: dict[str, Any] = {"address": address.to_wire()}
        if order_weight is not None:
            payload["orderWeight"] = order_weight

        data = await self._request(
            "POST",
            "/shipping-options",
            json=payload,
            default_error="Failed to get shipping options",
        )
        options = data.get("options", []) if isinstance(data, dict) else data or []
        return [ShippingOption.model_validate(option) for option in options]

    async def validate_pincode(self, pincode: str, country: str) -> bool:
        """Check whether a postal code is serviceable."""
        data = await self._request(
            "POST",
            "/validate-pincode",
            json={"pincode": pincode, "country": country},
            default_error="Failed to validate pincode",
        )
        return bool(data.get("valid")) if isinstance(data, dict) else False
