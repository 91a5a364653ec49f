"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import AsyncMock
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("CHECKOUT_STORAGE_BACKEND", "memory")
os.environ.setdefault("FRONTEND_URL", "http://localhost:3000")
os.environ.setdefault("STRIPE_SECRET_KEY", "")
os.environ.setdefault("RETRY_BASE_DELAY_MS", "0")
os.environ.setdefault("PERSIST_DEBOUNCE_MS", "0")
os.environ.setdefault("INVENTORY_CHECK_DELAY_MS", "0")
os.environ.setdefault("COMPLETION_REDIRECT_DELAY_MS", "0")

from src.api.deps import get_access_token, get_current_user, get_flow_manager  # noqa: E402
from src.core.checkout_api import CheckoutServiceClient  # noqa: E402
from src.core.order_api import CartServiceClient, OrderServiceClient  # noqa: E402
from src.core.retry import make_retry  # noqa: E402
from src.core.storage import InMemoryStorage  # noqa: E402
from src.schemas.auth import UserContext  # noqa: E402
from src.schemas.checkout import (  # noqa: E402
    Address,
    CartItem,
    CheckoutSession,
    Order,
    OrderPreview,
    SessionTotals,
)
from src.services.checkout_flow_manager import CheckoutFlowManager  # noqa: E402
from src.services.checkout_persistence import CheckoutPersistence  # noqa: E402
from src.services.checkout_store import CheckoutStore  # noqa: E402
from src.services.order_placement_service import OrderPlacementService  # noqa: E402
from src.services.payment_service import PaymentService  # noqa: E402

USER_ID = "550e8400-e29b-41d4-a716-446655440000"


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    # Clear the cache to ensure fresh settings
    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    # Clean up cache after tests
    get_settings.cache_clear()


@pytest.fixture
def sample_address() -> Address:
    """A complete US shipping address."""
    return Address(
        first_name="Ada",
        last_name="Lovelace",
        email="ada@example.com",
        phone="+1 415 555 0100",
        street="1 Market St",
        city="San Francisco",
        state="CA",
        zip_code="94105",
        country="US",
    )


@pytest.fixture
def sample_cart() -> list[CartItem]:
    """Two cart lines worth 100.00."""
    return [
        CartItem(product_id="prod-1", quantity=2, price=30.0, name="Mug"),
        CartItem(product_id="prod-2", quantity=1, price=40.0, name="Teapot"),
    ]


@pytest.fixture
def sample_preview() -> OrderPreview:
    """Preview priced for standard shipping."""
    return OrderPreview(subtotal=100.0, tax=8.0, shipping_cost=10.0, discount=0.0, total=118.0)


@pytest.fixture
def make_session() -> Callable[..., CheckoutSession]:
    """Factory for checkout sessions with overridable fields."""

    def _make(**overrides: Any) -> CheckoutSession:
        fields: dict[str, Any] = {
            "id": "cs-1",
            "user_id": USER_ID,
            "status": "PENDING",
            "totals": SessionTotals(subtotal=100.0, tax=8.0, shipping_cost=10.0, total=118.0),
        }
        fields.update(overrides)
        return CheckoutSession(**fields)

    return _make


@pytest.fixture
def checkout_api(
    make_session: Callable[..., CheckoutSession],
    sample_preview: OrderPreview,
) -> AsyncMock:
    """Checkout service client double answering every call successfully."""
    api = AsyncMock(spec=CheckoutServiceClient)
    api.calculate_preview.return_value = sample_preview
    api.create_session.return_value = make_session()
    api.get_session.return_value = make_session()
    api.update_shipping_address.side_effect = lambda session_id, address: make_session(
        id=session_id, shipping_address=address
    )
    api.update_billing_address.side_effect = lambda session_id, address: make_session(
        id=session_id, billing_address=address
    )
    api.update_shipping_method.side_effect = lambda session_id, method: make_session(
        id=session_id, shipping_method=method
    )
    api.update_payment_method.side_effect = lambda session_id, method: make_session(
        id=session_id, payment_method=method
    )
    api.complete_session.side_effect = lambda session_id, token: make_session(
        id=session_id, status="COMPLETED", payment_intent_id=token
    )
    api.get_shipping_options.return_value = []
    return api


@pytest.fixture
def storage() -> InMemoryStorage:
    """Empty in-memory storage backend."""
    return InMemoryStorage()


@pytest.fixture
def persistence(storage: InMemoryStorage) -> CheckoutPersistence:
    """Persistence for the test user."""
    return CheckoutPersistence(storage, USER_ID)


@pytest.fixture
def store(checkout_api: AsyncMock, persistence: CheckoutPersistence) -> CheckoutStore:
    """Checkout store with immediate writes and no retry backoff."""
    return CheckoutStore(
        USER_ID,
        checkout_api,
        persistence,
        retry_fn=make_retry(3, 0),
        debounce_seconds=0,
    )


@pytest.fixture
def order_api() -> AsyncMock:
    """Order service double creating order-1."""
    api = AsyncMock(spec=OrderServiceClient)
    api.create_order_from_checkout.return_value = Order(id="order-1", status="PENDING")
    return api


@pytest.fixture
def cart_api() -> AsyncMock:
    """Cart service double."""
    return AsyncMock(spec=CartServiceClient)


@pytest.fixture
def payment_service() -> AsyncMock:
    """Payment double issuing a fixed demo token."""
    service = AsyncMock(spec=PaymentService)
    service.confirm_payment.return_value = "demo_payment_1"
    return service


@pytest.fixture
def flow_manager(
    test_settings: Any,
    storage: InMemoryStorage,
    checkout_api: AsyncMock,
    order_api: AsyncMock,
    cart_api: AsyncMock,
    payment_service: AsyncMock,
) -> CheckoutFlowManager:
    """Flow manager wired to the service doubles and in-memory storage."""
    retry_fn = make_retry(3, 0)
    placement = OrderPlacementService(
        checkout_api,
        order_api,
        cart_api,
        payment_service,
        settings=test_settings,
        retry_fn=retry_fn,
    )
    return CheckoutFlowManager(
        settings=test_settings,
        backend=storage,
        checkout_api=checkout_api,
        order_api=order_api,
        cart_api=cart_api,
        placement=placement,
    )


@pytest.fixture
def current_user() -> UserContext:
    """Authenticated customer used by the client fixture."""
    return UserContext(user_id=UUID(USER_ID), email="ada@example.com", role="authenticated")


@pytest.fixture
def client(flow_manager: CheckoutFlowManager, current_user: UserContext) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Authentication and the flow manager are overridden so routes run
    against the service doubles.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.main import app

    app.dependency_overrides[get_current_user] = lambda: current_user
    app.dependency_overrides[get_access_token] = lambda: "test-access-token"
    app.dependency_overrides[get_flow_manager] = lambda: flow_manager

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client() -> Generator[TestClient, None, None]:
    """Provide a test client without authentication overrides.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client
