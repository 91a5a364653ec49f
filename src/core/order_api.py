"""Clients for the order and cart services."""

import logging

from src.core.http import ServiceClient, ServiceError
from src.schemas.checkout import Order

logger = logging.getLogger(__name__)


class OrderServiceClient(ServiceClient):
    """Async client for the order service."""

    service_name = "order-service"

    async def create_order_from_checkout(self, checkout_session_id: str, access_token: str | None = None) -> Order:
        """Create an order from a completed checkout session.

        The order service answers 201 with the order itself; an envelope is
        also accepted.

        Args:
            checkout_session_id: Completed session to convert.
            access_token: Customer's bearer token, forwarded as-is.

        Returns:
            Order: The created order.

        Raises:
            ServiceError: If the service rejects the request or returns no order id.
        """
        data = await self._request(
            "POST",
            "/orders/checkout",
            json={"checkoutSessionId": checkout_session_id},
            access_token=access_token,
            default_error="Failed to create order",
        )
        if not isinstance(data, dict) or not data.get("id"):
            raise ServiceError("Order service returned no order id", service=self.service_name)

        order = Order.model_validate(data)
        logger.info("Created order %s from checkout session %s", order.id, checkout_session_id)
        return order


class CartServiceClient(ServiceClient):
    """Async client for the cart service."""

    service_name = "cart-service"

    async def clear_cart(self, cart_id: str | None = None, access_token: str | None = None) -> None:
        """Empty the customer's cart.

        Args:
            cart_id: Cart to clear; the service falls back to the caller's cart when omitted.
            access_token: Customer's bearer token, forwarded as-is.
        """
        params = {"cartId": cart_id} if cart_id else None
        await self._request(
            "DELETE",
            "/cart",
            params=params,
            access_token=access_token,
            default_error="Failed to clear cart",
        )
