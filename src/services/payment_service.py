"""Payment confirmation for the order placement sequence."""

import logging
import time

import stripe

from src.core.config import Settings, get_settings
from src.core.stripe import get_stripe
from src.schemas.checkout import CheckoutSession

logger = logging.getLogger(__name__)

# PaymentIntent states that allow the checkout session to be completed
CONFIRMED_INTENT_STATUSES = ("succeeded", "processing", "requires_capture")


class PaymentError(Exception):
    """Payment could not be confirmed."""


class PaymentService:
    """Produces the payment confirmation token a checkout session is completed with."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize payment service.

        Args:
            settings: Optional settings override.
        """
        self.settings = settings or get_settings()
        self.stripe = get_stripe()

    async def confirm_payment(
        self,
        session: CheckoutSession,
        payment_method: str,
        payment_method_token: str | None = None,
    ) -> str:
        """Confirm payment for a checkout session.

        Cash on delivery needs no confirmation. With Stripe configured and a
        payment method token from the storefront, a PaymentIntent is created
        and confirmed for the session total. Otherwise a demo token is
        issued, as the storefront does in its demo checkout.

        Args:
            session: Session being paid for.
            payment_method: Selected payment method code.
            payment_method_token: Stripe PaymentMethod id collected by the storefront.

        Returns:
            str: Payment confirmation token (PaymentIntent id or demo token).

        Raises:
            PaymentError: If Stripe declines or fails to confirm the payment.
        """
        if payment_method == "cash_on_delivery":
            return f"cod_{session.id}"

        if not (self.settings.is_stripe_configured and payment_method_token):
            token = f"demo_payment_{int(time.time() * 1000)}"
            logger.info("Issued demo payment token for session %s", session.id)
            return token

        amount_cents = int(round(session.amount_due * 100))
        if amount_cents <= 0:
            raise PaymentError("Checkout session has no amount due")

        try:
            intent = self.stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=self.settings.stripe_currency,
                payment_method=payment_method_token,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={
                    "checkout_session_id": session.id,
                    "user_id": session.user_id,
                },
            )
        except stripe.error.StripeError as e:
            logger.error("Stripe error confirming payment for session %s: %s", session.id, str(e))
            raise PaymentError(getattr(e, "user_message", None) or "Payment was declined") from e

        if intent.status not in CONFIRMED_INTENT_STATUSES:
            raise PaymentError(f"Payment not confirmed (status: {intent.status})")

        logger.info("Confirmed payment %s for session %s", intent.id, session.id)
        return intent.id
