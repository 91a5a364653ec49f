"""Checkout state store: the explicitly-owned state of one checkout flow."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from src.core.checkout_api import CheckoutServiceClient
from src.core.debounce import Debouncer
from src.core.http import ServiceAuthError
from src.core.optimistic import OptimisticUpdateError, optimistic_update
from src.core.retry import RetryFn, retry
from src.models.checkout import (
    BASE_SHIPPING_COST,
    FIRST_STEP,
    LAST_STEP,
    SESSION_FIELDS,
    SHIPPING_METHOD_RATES,
    CheckoutStep,
)
from src.schemas.checkout import (
    Address,
    CartItem,
    CheckoutSession,
    CheckoutState,
    Notice,
    OrderPreview,
)
from src.services.checkout_persistence import CheckoutPersistence

logger = logging.getLogger(__name__)


class SessionStateError(ValueError):
    """The flow is missing state a step depends on (session, address, ...)."""

    def __init__(self, message: str, go_back_to_step: int | None = None) -> None:
        """Initialize the error.

        Args:
            message: Human-readable description.
            go_back_to_step: Step the customer should return to, if any.
        """
        self.message = message
        self.go_back_to_step = go_back_to_step
        super().__init__(message)


class StepTransitionError(ValueError):
    """A forward step transition was requested before the current step was complete."""


def estimate_shipping_cost(method: str, previous_method: str | None, previous_cost: float) -> float | None:
    """Estimate the shipping cost for a newly selected method.

    Uses the method rate table. When the previous method and its cost are
    known, the previous cost is rescaled so the destination zone factor
    already priced in by the service is preserved; otherwise the base cost
    is scaled by the method multiplier.

    Returns:
        float | None: The estimate, or None for methods missing from the table.
    """
    rate = SHIPPING_METHOD_RATES.get(method.upper())
    if rate is None:
        return None

    previous_rate = SHIPPING_METHOD_RATES.get(previous_method.upper()) if previous_method else None
    if previous_rate is not None and previous_cost > 0:
        return round(previous_cost / previous_rate["multiplier"] * rate["multiplier"], 2)
    return round(BASE_SHIPPING_COST * rate["multiplier"], 2)


class CheckoutStore:
    """Holds and mutates one customer's checkout state.

    Owns a ``CheckoutState`` and is the only thing that changes it. Every
    mutation schedules a debounced snapshot write through the persistence
    port. Remote calls go through the retry wrapper; session field updates
    are optimistic and roll back when the checkout service rejects them.
    """

    def __init__(
        self,
        user_id: str,
        checkout_api: CheckoutServiceClient,
        persistence: CheckoutPersistence,
        retry_fn: RetryFn | None = None,
        debounce_seconds: float = 0.3,
    ) -> None:
        """Initialize an empty checkout flow.

        Args:
            user_id: Customer who owns the flow.
            checkout_api: Checkout service client.
            persistence: Persistence port for this flow.
            retry_fn: Retry wrapper applied to remote calls.
            debounce_seconds: Window for coalescing snapshot writes.
        """
        self.user_id = user_id
        self.checkout_api = checkout_api
        self.persistence = persistence
        self._retry: RetryFn = retry_fn or retry
        self._debouncer = Debouncer(debounce_seconds)

        self.state = CheckoutState()
        self.last_cart_items: list[CartItem] = []
        self.coupon_code: str | None = None
        self.is_loading_preview = False
        self.is_loading_session = False

        self._notices: list[Notice] = []
        self._recalculation: asyncio.Task | None = None

    # Read-only views

    @property
    def current_step(self) -> int:
        return self.state.current_step

    @property
    def shipping_address(self) -> Address | None:
        return self.state.shipping_address

    @property
    def shipping_method(self) -> str | None:
        return self.state.shipping_method

    @property
    def payment_method(self) -> str | None:
        return self.state.payment_method

    @property
    def order_preview(self) -> OrderPreview | None:
        return self.state.order_preview

    @property
    def session(self) -> CheckoutSession | None:
        return self.state.session

    @property
    def is_placing_order(self) -> bool:
        return self.state.is_placing_order

    @property
    def can_proceed_to_next_step(self) -> bool:
        """Whether the current step's requirement is met."""
        step = self.state.current_step
        if step == CheckoutStep.ADDRESS:
            return self.state.shipping_address is not None
        if step == CheckoutStep.SHIPPING_METHOD:
            return bool(self.state.shipping_method)
        if step == CheckoutStep.PAYMENT:
            return bool(self.state.payment_method)
        if step == CheckoutStep.REVIEW:
            return True
        return False

    def snapshot(self) -> CheckoutState:
        """Return a deep copy of the current state."""
        return self.state.model_copy(deep=True)

    # Step navigation

    def set_step(self, step: int) -> None:
        """Jump to a step, clamped to the wizard's range."""
        self.state.current_step = max(int(FIRST_STEP), min(int(step), int(LAST_STEP)))
        self._persist()

    def next_step(self) -> None:
        """Move forward one step; no-op on the last step."""
        self.set_step(self.state.current_step + 1)

    def prev_step(self) -> None:
        """Move back one step; no-op on the first step."""
        self.set_step(self.state.current_step - 1)

    def advance(self) -> None:
        """Move forward only if the current step is complete.

        Raises:
            StepTransitionError: If the current step's requirement is not met.
        """
        if not self.can_proceed_to_next_step:
            step_name = CheckoutStep(self.state.current_step).name.lower()
            raise StepTransitionError(f"Complete the {step_name} step before continuing")
        self.next_step()

    # Setters

    def set_shipping_address(self, address: Address) -> None:
        self.state.shipping_address = address
        self._persist()

    def set_shipping_method(self, method: str) -> None:
        """Select a shipping method and re-derive pricing when past the address step."""
        previous_method = self.state.shipping_method
        self.state.shipping_method = method
        self._persist()
        if self.state.current_step >= CheckoutStep.SHIPPING_METHOD:
            self._rederive_preview(previous_method)

    def set_payment_method(self, method: str) -> None:
        self.state.payment_method = method
        self._persist()

    def set_placing_order(self, placing: bool) -> None:
        self.state.is_placing_order = placing
        self._persist()

    def set_session(self, session: CheckoutSession) -> None:
        """Replace the held session with the service's latest copy."""
        self.state.session = session
        self._persist()

    def _rederive_preview(self, previous_method: str | None) -> None:
        """Adjust the preview locally, then schedule an authoritative recalculation."""
        preview = self.state.order_preview
        method = self.state.shipping_method
        if preview is not None and method:
            estimate = estimate_shipping_cost(method, previous_method, preview.shipping_cost)
            if estimate is not None:
                total = round(preview.total - preview.shipping_cost + estimate, 2)
                self.state.order_preview = preview.model_copy(update={"shipping_cost": estimate, "total": total})
                self._persist()

        if not self.last_cart_items:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        if self._recalculation is not None and not self._recalculation.done():
            self._recalculation.cancel()
        self._recalculation = loop.create_task(
            self.calculate_order_preview(self.user_id, self.last_cart_items, self.coupon_code)
        )
        self._recalculation.add_done_callback(self._log_recalculation_failure)

    def _log_recalculation_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Background price recalculation for %s failed: %s", self.user_id, error)

    async def settle(self) -> None:
        """Wait for any pending authoritative price recalculation."""
        task = self._recalculation
        if task is None:
            return
        # Failures are logged by the task's done-callback
        await asyncio.wait({task})
        if self._recalculation is task:
            self._recalculation = None

    # Remote operations

    async def calculate_order_preview(
        self,
        user_id: str,
        cart_items: list[CartItem],
        coupon_code: str | None = None,
    ) -> OrderPreview | None:
        """Recalculate pricing through the checkout service.

        On success the preview is stored and cached as fallback pricing. On
        failure the last cached preview is used and a stale-pricing notice is
        raised; with nothing cached the preview is cleared.

        Returns:
            OrderPreview | None: The preview now held by the store.

        Raises:
            ServiceAuthError: If the checkout service rejects the credentials.
        """
        self.last_cart_items = list(cart_items)
        self.coupon_code = coupon_code
        address = self.state.shipping_address
        method = self.state.shipping_method

        self.is_loading_preview = True
        try:
            preview = await self._retry(
                lambda: self.checkout_api.calculate_preview(user_id, cart_items, coupon_code, address, method)
            )
        except ServiceAuthError:
            raise
        except Exception as e:
            logger.error("Error calculating order preview for %s: %s", user_id, e)
            cached = self.persistence.cached_preview()
            if cached is not None:
                self.state.order_preview = cached
                self.add_notice("stale_pricing", "Prices shown may be out of date. We'll confirm the total before you pay.")
            else:
                self.state.order_preview = None
                self.add_notice("pricing_unavailable", "We couldn't calculate your order total. Please try again.")
        else:
            self.state.order_preview = preview
            self.persistence.cache_preview(preview)
        finally:
            self.is_loading_preview = False

        self._persist()
        return self.state.order_preview

    async def create_checkout_session(
        self,
        user_id: str,
        cart_items: list[CartItem],
        coupon_code: str | None = None,
    ) -> CheckoutSession | None:
        """Create a checkout session for the cart.

        Returns:
            CheckoutSession | None: The new session, or None if creation failed
            (state is left unchanged and the caller must not advance).

        Raises:
            ServiceAuthError: If the checkout service rejects the credentials.
        """
        address = self.state.shipping_address

        self.is_loading_session = True
        try:
            session = await self._retry(
                lambda: self.checkout_api.create_session(user_id, cart_items, coupon_code, address)
            )
        except ServiceAuthError:
            raise
        except Exception as e:
            logger.error("Error creating checkout session for %s: %s", user_id, e)
            self.add_notice("session_creation_failed", "We couldn't start checkout. Please try again.")
            return None
        finally:
            self.is_loading_session = False

        self.state.session = session
        self.last_cart_items = list(cart_items)
        self.coupon_code = coupon_code
        self._persist()
        self.flush()
        return session

    async def update_session_field(self, field: str, value: Any) -> CheckoutSession:
        """Optimistically change a session field and push it to the checkout service.

        The local value changes immediately and is persisted; if the remote
        update fails the previous value is restored.

        Args:
            field: One of shippingAddress, billingAddress, shippingMethod, paymentMethod.
            value: New value (an Address or address dict for the address fields).

        Returns:
            CheckoutSession: The session as updated by the checkout service.

        Raises:
            ValueError: If the field is unknown or the value is invalid.
            SessionStateError: If there is no checkout session yet.
            OptimisticUpdateError: If the remote update failed (local value restored).
        """
        if field not in SESSION_FIELDS:
            raise ValueError(f"Unknown session field: {field}")

        session = self.state.session
        if session is None:
            raise SessionStateError("Checkout session is missing. Please restart checkout.", go_back_to_step=0)

        if field in ("shippingAddress", "billingAddress"):
            value = value if isinstance(value, Address) else Address.model_validate(value)
        elif not isinstance(value, str) or not value:
            raise ValueError(f"{field} must be a non-empty string")

        get_current, apply = self._field_accessors(field)
        commit = self._field_commit(field, session.id, value)
        previous_method = self.state.shipping_method

        try:
            updated = await optimistic_update(get_current, apply, lambda: self._retry(commit), value, description=field)
        except OptimisticUpdateError as e:
            self.add_notice("session_update_failed", f"{e.message}. Your previous selection was kept.")
            raise

        self.state.session = updated
        self._persist()
        if field == "shippingMethod" and self.state.current_step >= CheckoutStep.SHIPPING_METHOD:
            self._rederive_preview(previous_method)
        return updated

    def _field_accessors(self, field: str) -> tuple[Callable[[], Any], Callable[[Any], None]]:
        if field == "billingAddress":

            def get_billing() -> Any:
                return self.state.session.billing_address if self.state.session else None

            def apply_billing(value: Any) -> None:
                if self.state.session is not None:
                    self.state.session = self.state.session.model_copy(update={"billing_address": value})
                    self._persist()

            return get_billing, apply_billing

        attribute = {
            "shippingAddress": "shipping_address",
            "shippingMethod": "shipping_method",
            "paymentMethod": "payment_method",
        }[field]

        def get_value() -> Any:
            return getattr(self.state, attribute)

        def apply_value(value: Any) -> None:
            setattr(self.state, attribute, value)
            self._persist()

        return get_value, apply_value

    def _field_commit(self, field: str, session_id: str, value: Any) -> Callable[[], Awaitable[CheckoutSession]]:
        api = self.checkout_api
        if field == "shippingAddress":
            return lambda: api.update_shipping_address(session_id, value)
        if field == "billingAddress":
            return lambda: api.update_billing_address(session_id, value)
        if field == "shippingMethod":
            return lambda: api.update_shipping_method(session_id, value)
        return lambda: api.update_payment_method(session_id, value)

    async def resume_session(self, session_id: str) -> CheckoutSession:
        """Continue checkout from an existing session.

        Adopts the session's address and method selections and restores the
        saved step, or infers it from how far the session got.

        Raises:
            SessionStateError: If the session is completed, expired or failed.
        """
        session = await self._retry(lambda: self.checkout_api.get_session(session_id))
        if not session.is_active:
            raise SessionStateError("This checkout session is no longer active.", go_back_to_step=0)

        self.state.session = session
        if session.shipping_address is not None:
            self.state.shipping_address = session.shipping_address
        if session.shipping_method:
            self.state.shipping_method = session.shipping_method
        if session.payment_method:
            self.state.payment_method = session.payment_method
        if session.cart_snapshot:
            self.last_cart_items = list(session.cart_snapshot)

        saved_step = self.persistence.saved_step()
        if saved_step is not None:
            self.set_step(saved_step)
        elif self.state.payment_method:
            self.set_step(CheckoutStep.REVIEW)
        elif self.state.shipping_method:
            self.set_step(CheckoutStep.PAYMENT)
        elif self.state.shipping_address is not None:
            self.set_step(CheckoutStep.SHIPPING_METHOD)
        else:
            self.set_step(CheckoutStep.ADDRESS)

        self.flush()
        logger.info("Resumed checkout session %s at step %d", session.id, self.state.current_step)
        return session

    # Lifecycle

    def restore(self) -> bool:
        """Load the persisted snapshot, if any.

        Returns:
            bool: True if a snapshot was restored.
        """
        state = self.persistence.restore()
        if state is None:
            return False
        self.state = state
        if state.session is not None and state.session.cart_snapshot:
            self.last_cart_items = list(state.session.cart_snapshot)
        return True

    def clear_checkout(self) -> None:
        """Reset every field and remove all persisted checkout keys."""
        if self._recalculation is not None and not self._recalculation.done():
            self._recalculation.cancel()
        self._recalculation = None
        self._debouncer.cancel()

        self.state = CheckoutState()
        self.last_cart_items = []
        self.coupon_code = None
        self.persistence.clear()

    def flush(self) -> None:
        """Write any pending snapshot now."""
        self._debouncer.flush()

    def _persist(self) -> None:
        self._debouncer.schedule(self._write_snapshot)

    def _write_snapshot(self) -> None:
        self.persistence.save(self.state)

    # Notices

    def add_notice(self, code: str, message: str) -> None:
        self._notices.append(Notice(code=code, message=message))

    def drain_notices(self) -> list[Notice]:
        """Return and forget the notices raised since the last call."""
        notices, self._notices = self._notices, []
        return notices
