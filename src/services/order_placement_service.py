"""Order placement: the multi-phase sequence behind "Place order"."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from src.core.checkout_api import CheckoutServiceClient
from src.core.config import Settings, get_settings
from src.core.http import ServiceAuthError
from src.core.order_api import CartServiceClient, OrderServiceClient
from src.core.retry import RetryFn, retry
from src.models.checkout import PlacementPhase
from src.schemas.auth import UserContext
from src.schemas.checkout import CartItem, CheckoutSession, PlacementPhases, PlacementResult
from src.services.checkout_store import CheckoutStore
from src.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Failed to place order. Please try again."

PHASE_CONTEXT: dict[str, str] = {
    "preparing": "while preparing your checkout session",
    "checkingInventory": "while checking inventory",
    "processingPayment": "while processing payment",
    "creatingOrder": "while creating your order",
}

_PHASE_ATTRIBUTES: dict[str, str] = {
    "checkingInventory": "checking_inventory",
    "processingPayment": "processing_payment",
    "creatingOrder": "creating_order",
    "completed": "completed",
}


class PlacementRejected(ValueError):
    """Order placement was refused before anything was sent."""

    def __init__(self, missing: list[str]) -> None:
        """Initialize with the unmet preconditions.

        Args:
            missing: Human-readable description of each unmet precondition.
        """
        self.missing = missing
        super().__init__("; ".join(missing))


class PlacementError(Exception):
    """A step of the placement sequence failed."""


class OrderPlacementService:
    """Runs the order placement sequence for a checkout flow.

    Phases are exposed as flags on the result (and through ``progress`` while
    a sequence runs): checkingInventory, processingPayment, creatingOrder and
    completed. At most one is set at a time and they only move forward.
    """

    def __init__(
        self,
        checkout_api: CheckoutServiceClient,
        order_api: OrderServiceClient,
        cart_api: CartServiceClient,
        payment_service: PaymentService,
        settings: Settings | None = None,
        retry_fn: RetryFn | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the placement service.

        Args:
            checkout_api: Checkout service client.
            order_api: Order service client.
            cart_api: Cart service client.
            payment_service: Payment confirmation.
            settings: Optional settings override.
            retry_fn: Retry wrapper for session completion.
            sleep: Awaitable sleep, replaced in tests.
        """
        self.checkout_api = checkout_api
        self.order_api = order_api
        self.cart_api = cart_api
        self.payment_service = payment_service
        self.settings = settings or get_settings()
        self._retry: RetryFn = retry_fn or retry
        self._sleep = sleep
        self._locks: dict[str, asyncio.Lock] = {}
        self._progress: dict[str, PlacementPhases] = {}

    def progress(self, user_id: str) -> PlacementPhases | None:
        """Phase flags of the sequence running for a user, if any."""
        phases = self._progress.get(user_id)
        return phases.model_copy() if phases is not None else None

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    @staticmethod
    def check_preconditions(store: CheckoutStore, cart_items: list[CartItem]) -> list[str]:
        """List the reasons placement cannot start; empty when it can."""
        missing: list[str] = []
        if store.shipping_address is None:
            missing.append("Shipping address is required")
        if not store.shipping_method:
            missing.append("Shipping method is required")
        if not store.payment_method:
            missing.append("Payment method is required")
        if not cart_items:
            missing.append("Your cart is empty")
        if store.is_placing_order:
            missing.append("An order is already being placed")
        return missing

    async def place_order(
        self,
        store: CheckoutStore,
        cart_items: list[CartItem],
        user: UserContext | None,
        access_token: str | None = None,
        cart_id: str | None = None,
        coupon_code: str | None = None,
        payment_method_token: str | None = None,
    ) -> PlacementResult:
        """Place the order for a checkout flow.

        Preconditions are checked before anything is sent. The sequence then
        marks the submission as in progress, makes sure a session exists,
        checks inventory, confirms payment and completes the session, creates
        the order, clears the cart and records the completion markers. Once
        completed, the flow is cleared after a short delay and the result
        carries the order page to redirect to.

        A failure after the preconditions resets the phases, clears the
        submission marker and returns the accumulated errors; the customer's
        selections are kept so they can retry.

        Args:
            store: Checkout flow to place the order for.
            cart_items: Items being purchased.
            user: Authenticated customer.
            access_token: Bearer token forwarded to the order and cart services.
            cart_id: Cart to clear after the order is created; the customer's current cart when omitted.
            coupon_code: Coupon applied if a session has to be created.
            payment_method_token: Payment method collected by the storefront.

        Returns:
            PlacementResult: Success with order id and redirect URL, or the errors.

        Raises:
            PlacementRejected: If a precondition is not met (no state changes).
        """
        items = list(cart_items) or list(store.last_cart_items)
        lock = self._lock_for(store.user_id)
        missing = self.check_preconditions(store, items)
        if lock.locked() and "An order is already being placed" not in missing:
            missing.append("An order is already being placed")
        if missing:
            raise PlacementRejected(missing)

        try:
            async with lock:
                return await self._run(store, items, user, access_token, cart_id, coupon_code, payment_method_token)
        finally:
            if not lock.locked():
                self._locks.pop(store.user_id, None)

    async def _run(
        self,
        store: CheckoutStore,
        cart_items: list[CartItem],
        user: UserContext | None,
        access_token: str | None,
        cart_id: str | None,
        coupon_code: str | None,
        payment_method_token: str | None,
    ) -> PlacementResult:
        phases = PlacementPhases()
        history: list[str] = []
        current: str = "preparing"
        session: CheckoutSession | None = None

        def enter(phase: PlacementPhase) -> None:
            nonlocal current
            current = phase
            for name in PlacementPhases.model_fields:
                setattr(phases, name, False)
            setattr(phases, _PHASE_ATTRIBUTES[phase], True)
            history.append(phase)
            logger.info("Order placement for %s: %s", store.user_id, phase)

        store.set_placing_order(True)
        self._progress[store.user_id] = phases

        try:
            store.persistence.mark_submitting()
            store.flush()
            session = await self._ensure_session(store, cart_items, user, coupon_code)

            enter("checkingInventory")
            await self._sleep(self.settings.inventory_check_delay_ms / 1000)

            enter("processingPayment")
            session = await self._complete_payment(store, session, payment_method_token)

            enter("creatingOrder")
            order = await self.order_api.create_order_from_checkout(session.id, access_token)

        except Exception as e:
            logger.error(
                "Order placement failed for %s %s: %s",
                store.user_id,
                PHASE_CONTEXT.get(current, ""),
                e,
                extra={"phase": current, "session_id": session.id if session else None},
            )
            self._release(store, phases)
            return PlacementResult(
                success=False,
                session_id=session.id if session else None,
                errors=_describe_failure(e, current),
                phases=phases,
                phase_history=history,
                login_required=isinstance(e, ServiceAuthError),
            )
        except BaseException:
            logger.warning("Order placement for %s cancelled %s", store.user_id, PHASE_CONTEXT.get(current, ""))
            self._release(store, phases)
            raise

        # The order exists from here on; bookkeeping failures must not report a failed placement
        logger.info("Order %s placed for %s from session %s", order.id, store.user_id, session.id)
        try:
            await self._clear_cart(cart_id, access_token)
            self._record_completion(store, order.id, session.id)
            enter("completed")
            await self._sleep(self.settings.completion_redirect_delay_ms / 1000)
        finally:
            self._progress.pop(store.user_id, None)
            try:
                store.clear_checkout()
            except Exception as e:
                logger.error("Failed to clear checkout for %s after order %s: %s", store.user_id, order.id, e)

        return PlacementResult(
            success=True,
            order_id=order.id,
            session_id=session.id,
            redirect_url=f"{self.settings.frontend_url.rstrip('/')}/orders/{order.id}",
            phases=phases,
            phase_history=history,
        )

    def _release(self, store: CheckoutStore, phases: PlacementPhases) -> None:
        """Reopen a flow whose placement did not finish so it can be retried."""
        for name in PlacementPhases.model_fields:
            setattr(phases, name, False)
        self._progress.pop(store.user_id, None)
        store.set_placing_order(False)
        try:
            store.persistence.clear_submitting()
            store.flush()
        except Exception as e:
            logger.error("Failed to clear the submission marker for %s: %s", store.user_id, e)

    def _record_completion(self, store: CheckoutStore, order_id: str, session_id: str) -> None:
        try:
            store.persistence.record_order_completion(order_id, session_id)
        except Exception as e:
            logger.error("Failed to record completion of order %s for %s: %s", order_id, store.user_id, e)
        try:
            store.persistence.clear_submitting()
        except Exception as e:
            logger.error("Failed to clear the submission marker for %s: %s", store.user_id, e)


    async def _ensure_session(
        self,
        store: CheckoutStore,
        cart_items: list[CartItem],
        user: UserContext | None,
        coupon_code: str | None,
    ) -> CheckoutSession:
        session = store.session
        if session is not None:
            if not (session.is_active or session.is_completed):
                raise PlacementError("Your checkout session has expired. Please restart checkout.")
            return session

        if user is None:
            raise PlacementError("User not authenticated. Please log in to place your order.")

        session = await store.create_checkout_session(str(user.user_id), cart_items, coupon_code)
        if session is None:
            raise PlacementError("Could not create a checkout session.")
        return session

    async def _complete_payment(
        self,
        store: CheckoutStore,
        session: CheckoutSession,
        payment_method_token: str | None,
    ) -> CheckoutSession:
        # An earlier attempt may have completed the session before failing later on
        if session.is_completed:
            logger.info("Session %s already completed; skipping payment", session.id)
            return session

        token = await self.payment_service.confirm_payment(session, store.payment_method or "", payment_method_token)
        completed = await self._retry(lambda: self.checkout_api.complete_session(session.id, token))
        if not completed.is_completed:
            raise PlacementError(f"Checkout session was not completed (status: {completed.status})")

        store.set_session(completed)
        store.flush()
        return completed

    async def _clear_cart(self, cart_id: str | None, access_token: str | None) -> None:
        # Without a cart id the cart service clears the caller's own cart
        try:
            await self.cart_api.clear_cart(cart_id, access_token)
        except Exception as e:
            logger.warning("Failed to clear cart %s after order placement: %s", cart_id or "(current)", e)


def _describe_failure(error: Exception, phase: str) -> list[str]:
    errors = [GENERIC_FAILURE_MESSAGE]
    cause = str(error) or error.__class__.__name__
    errors.append(cause)
    context = PHASE_CONTEXT.get(phase)
    if context:
        errors.append(f"The problem occurred {context}.")
    if isinstance(error, ServiceAuthError):
        errors.append("Your session has expired. Please log in again.")
    return errors
