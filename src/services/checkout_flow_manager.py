"""Per-customer checkout flows and the clients they share."""

import logging

from src.core.checkout_api import CheckoutServiceClient
from src.core.config import Settings, get_settings
from src.core.order_api import CartServiceClient, OrderServiceClient
from src.core.retry import make_retry
from src.core.storage import StorageBackend, create_storage_backend
from src.services.checkout_persistence import CheckoutPersistence
from src.services.checkout_steps import AddressStep, PaymentStep, ReviewStep, ShippingMethodStep
from src.services.checkout_store import CheckoutStore
from src.services.order_placement_service import OrderPlacementService
from src.services.payment_service import PaymentService

logger = logging.getLogger(__name__)


class CheckoutFlowManager:
    """Owns one CheckoutStore per customer.

    Stores are created on first use and restored from persistence, so a
    customer who comes back (or a restarted process) continues where the
    flow was left. Remote clients and the placement service are shared by
    every flow.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        backend: StorageBackend | None = None,
        checkout_api: CheckoutServiceClient | None = None,
        order_api: OrderServiceClient | None = None,
        cart_api: CartServiceClient | None = None,
        placement: OrderPlacementService | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            settings: Optional settings override.
            backend: Storage adapter; chosen from settings when omitted.
            checkout_api: Checkout service client.
            order_api: Order service client.
            cart_api: Cart service client.
            placement: Order placement service.
        """
        self.settings = settings or get_settings()
        timeout = self.settings.http_timeout_seconds
        self.backend = backend or create_storage_backend(self.settings)
        self.checkout_api = checkout_api or CheckoutServiceClient(self.settings.checkout_api_url, timeout=timeout)
        self.order_api = order_api or OrderServiceClient(self.settings.order_service_url, timeout=timeout)
        self.cart_api = cart_api or CartServiceClient(self.settings.cart_service_url, timeout=timeout)
        self.retry = make_retry(self.settings.retry_max_attempts, self.settings.retry_base_delay_ms)
        self.placement = placement or OrderPlacementService(
            self.checkout_api,
            self.order_api,
            self.cart_api,
            PaymentService(self.settings),
            settings=self.settings,
            retry_fn=self.retry,
        )
        self._stores: dict[str, CheckoutStore] = {}

    def get_store(self, user_id: str) -> CheckoutStore:
        """Return the customer's flow, creating and restoring it on first use."""
        store = self._stores.get(user_id)
        if store is not None:
            return store

        store = CheckoutStore(
            user_id,
            self.checkout_api,
            CheckoutPersistence(self.backend, user_id),
            retry_fn=self.retry,
            debounce_seconds=self.settings.persist_debounce_ms / 1000,
        )
        if store.restore():
            logger.info("Restored checkout flow for %s at step %d", user_id, store.current_step)
            if store.is_placing_order:
                self._recover_interrupted_submission(store)
        self._stores[user_id] = store
        return store

    def _recover_interrupted_submission(self, store: CheckoutStore) -> None:
        # No sequence can be running for a store this process has not seen yet
        logger.warning("Order submission for %s was interrupted; releasing the flow", store.user_id)
        store.persistence.clear_submitting()
        store.set_placing_order(False)
        store.flush()
        store.add_notice(
            "submission_interrupted",
            "Your last order attempt was interrupted. Check your orders before placing it again.",
        )

    def address_step(self, store: CheckoutStore) -> AddressStep:
        return AddressStep(store)

    def shipping_method_step(self, store: CheckoutStore) -> ShippingMethodStep:
        return ShippingMethodStep(store, self.checkout_api)

    def payment_step(self, store: CheckoutStore) -> PaymentStep:
        return PaymentStep(store)

    def review_step(self, store: CheckoutStore) -> ReviewStep:
        return ReviewStep(store, self.placement)

    def forget(self, user_id: str) -> None:
        """Drop the in-memory flow; persisted data is left alone."""
        store = self._stores.pop(user_id, None)
        if store is not None:
            store.flush()

    async def aclose(self) -> None:
        """Flush pending snapshots and close the remote clients."""
        for store in self._stores.values():
            store.flush()
        self._stores.clear()
        await self.checkout_api.aclose()
        await self.order_api.aclose()
        await self.cart_api.aclose()
        logger.info("Checkout flow manager closed")
