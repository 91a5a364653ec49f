"""Unit tests for CheckoutFlowManager."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.storage import InMemoryStorage
from src.models.checkout import SUBMITTING, CheckoutStep, StorageKey
from src.schemas.checkout import CheckoutState
from src.services.checkout_flow_manager import CheckoutFlowManager
from src.services.checkout_persistence import CheckoutPersistence
from src.services.checkout_steps import ReviewStep, ShippingMethodStep


@pytest.fixture
def manager(test_settings, storage: InMemoryStorage, checkout_api: AsyncMock) -> CheckoutFlowManager:
    """Flow manager over in-memory storage and mocked services."""
    return CheckoutFlowManager(
        settings=test_settings,
        backend=storage,
        checkout_api=checkout_api,
        order_api=AsyncMock(),
        cart_api=AsyncMock(),
        placement=MagicMock(),
    )


class TestGetStore:
    """Tests for CheckoutFlowManager.get_store()."""

    def test_creates_store_once_per_user(self, manager: CheckoutFlowManager) -> None:
        """Test that the same flow is returned for the same customer."""
        first = manager.get_store("user-a")

        assert manager.get_store("user-a") is first
        assert manager.get_store("user-b") is not first
        assert first.current_step == CheckoutStep.ADDRESS

    def test_restores_persisted_flow(self, manager: CheckoutFlowManager, storage: InMemoryStorage) -> None:
        """Test that a saved snapshot is picked up on first use."""
        CheckoutPersistence(storage, "user-a").save(CheckoutState(current_step=2, shipping_method="EXPRESS"))

        store = manager.get_store("user-a")

        assert store.current_step == CheckoutStep.PAYMENT
        assert store.shipping_method == "EXPRESS"

    def test_releases_interrupted_submission(self, manager: CheckoutFlowManager, storage: InMemoryStorage) -> None:
        """Test that a submission left running by a previous process is released."""
        persistence = CheckoutPersistence(storage, "user-a")
        persistence.save(CheckoutState(current_step=3))
        storage.set(persistence.namespace, StorageKey.ORDER_SUBMISSION, SUBMITTING)

        store = manager.get_store("user-a")

        assert store.is_placing_order is False
        assert persistence.is_submitting() is False
        notices = store.drain_notices()
        assert [notice.code for notice in notices] == ["submission_interrupted"]
        assert store.current_step == CheckoutStep.REVIEW


class TestStepFactories:
    """Tests for the step handler factories."""

    def test_steps_share_clients(self, manager: CheckoutFlowManager, checkout_api: AsyncMock) -> None:
        """Test that steps are wired to the manager's clients and placement service."""
        store = manager.get_store("user-a")

        shipping = manager.shipping_method_step(store)
        review = manager.review_step(store)

        assert isinstance(shipping, ShippingMethodStep)
        assert shipping.checkout_api is checkout_api
        assert isinstance(review, ReviewStep)
        assert review.placement is manager.placement


class TestLifecycle:
    """Tests for forget() and aclose()."""

    def test_forget_drops_in_memory_flow_only(self, manager: CheckoutFlowManager) -> None:
        """Test that a forgotten flow is restored from storage next time."""
        store = manager.get_store("user-a")
        store.set_shipping_method("OVERNIGHT")

        manager.forget("user-a")
        restored = manager.get_store("user-a")

        assert restored is not store
        assert restored.shipping_method == "OVERNIGHT"

    @pytest.mark.asyncio
    async def test_aclose_closes_clients(self, manager: CheckoutFlowManager, checkout_api: AsyncMock) -> None:
        """Test that shutdown closes every remote client."""
        manager.get_store("user-a")

        await manager.aclose()

        checkout_api.aclose.assert_awaited_once()
        manager.order_api.aclose.assert_awaited_once()
        manager.cart_api.aclose.assert_awaited_once()
