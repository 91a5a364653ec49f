"""Unit tests for the checkout wizard step handlers."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.http import ServiceAuthError, ServiceError
from src.models.checkout import CheckoutStep
from src.schemas.checkout import AddressInput, CartItem, PlacementResult, ShippingOption
from src.services.checkout_steps import (
    AddressStep,
    PaymentStep,
    ReviewStep,
    ShippingMethodStep,
    StepValidationError,
    default_shipping_options,
    validate_address,
)
from src.services.checkout_store import CheckoutStore, SessionStateError


@pytest.fixture
def address_form() -> AddressInput:
    """A valid address form."""
    return AddressInput(
        first_name="Ada",
        last_name="Lovelace",
        email="ada@example.com",
        phone="+1 (415) 555-0100",
        street="1 Market St",
        city="San Francisco",
        state="CA",
        zip_code="94105",
        country="us",
    )


class TestValidateAddress:
    """Tests for validate_address()."""

    def test_valid_form(self, address_form: AddressInput) -> None:
        """Test that a complete form has no errors."""
        assert validate_address(address_form) == {}

    def test_required_fields(self) -> None:
        """Test that blank fields are reported individually."""
        errors = validate_address(AddressInput(country=""))

        assert errors["first_name"] == "First Name is required"
        assert errors["zip_code"] == "Zip Code is required"
        assert len(errors) == 9

    @pytest.mark.parametrize(
        ("field", "value", "message"),
        [
            ("email", "not-an-email", "Invalid email format"),
            ("phone", "12ab", "Invalid phone number"),
            ("phone", "123", "Invalid phone number"),
        ],
    )
    def test_format_errors(self, address_form: AddressInput, field: str, value: str, message: str) -> None:
        """Test email and phone format checks."""
        form = address_form.model_copy(update={field: value})

        assert validate_address(form) == {field: message}


class TestAddressStep:
    """Tests for AddressStep."""

    @pytest.mark.asyncio
    async def test_invalid_form_makes_no_calls(self, store: CheckoutStore, checkout_api: AsyncMock) -> None:
        """Test that validation failures never reach the network."""
        with pytest.raises(StepValidationError) as exc_info:
            await AddressStep(store).submit(AddressInput(email="bad"))

        assert "email" in exc_info.value.errors
        assert exc_info.value.to_details()[0]["type"] == "value_error"
        assert checkout_api.method_calls == []
        assert store.current_step == CheckoutStep.ADDRESS

    @pytest.mark.asyncio
    async def test_saves_address_and_advances(
        self,
        store: CheckoutStore,
        checkout_api: AsyncMock,
        address_form: AddressInput,
        sample_cart: list[CartItem],
    ) -> None:
        """Test that a valid address is saved, priced and the step advances."""
        address = await AddressStep(store).submit(address_form, cart_items=sample_cart)

        assert address.country == "US"
        assert store.shipping_address == address
        assert store.current_step == CheckoutStep.SHIPPING_METHOD
        checkout_api.calculate_preview.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_pushes_address_to_session(
        self,
        store: CheckoutStore,
        checkout_api: AsyncMock,
        address_form: AddressInput,
        sample_cart: list[CartItem],
    ) -> None:
        """Test that an existing session receives the address."""
        await store.create_checkout_session(store.user_id, sample_cart)

        await AddressStep(store).submit(address_form)

        checkout_api.update_shipping_address.assert_awaited_once()
        assert store.session.shipping_address == store.shipping_address


class TestShippingMethodStep:
    """Tests for ShippingMethodStep."""

    @pytest.mark.asyncio
    async def test_requires_address(self, store: CheckoutStore, checkout_api: AsyncMock) -> None:
        """Test that selecting a method before the address sends the customer back."""
        with pytest.raises(SessionStateError) as exc_info:
            await ShippingMethodStep(store, checkout_api).submit("STANDARD")

        assert exc_info.value.go_back_to_step == CheckoutStep.ADDRESS

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["", "  ", "drone"])
    async def test_rejects_missing_or_unknown_method(
        self,
        store: CheckoutStore,
        checkout_api: AsyncMock,
        sample_address,
        method: str,
    ) -> None:
        """Test that the method must be one of the offered codes."""
        store.set_shipping_address(sample_address)

        with pytest.raises(StepValidationError):
            await ShippingMethodStep(store, checkout_api).submit(method)

        assert store.shipping_method is None

    @pytest.mark.asyncio
    async def test_selects_method_and_advances(
        self,
        store: CheckoutStore,
        checkout_api: AsyncMock,
        sample_address,
    ) -> None:
        """Test that a valid method is normalised and the step advances."""
        store.set_shipping_address(sample_address)
        store.set_step(CheckoutStep.SHIPPING_METHOD)

        code = await ShippingMethodStep(store, checkout_api).submit("express")

        assert code == "EXPRESS"
        assert store.shipping_method == "EXPRESS"
        assert store.current_step == CheckoutStep.PAYMENT

    @pytest.mark.asyncio
    async def test_options_fall_back_to_defaults(
        self,
        store: CheckoutStore,
        checkout_api: AsyncMock,
        sample_address,
    ) -> None:
        """Test that the default table is offered when the service fails."""
        store.set_shipping_address(sample_address)
        checkout_api.get_shipping_options.side_effect = ServiceError("down")

        options, fallback = await ShippingMethodStep(store, checkout_api).options()

        assert fallback is True
        assert [option.method for option in options] == ["STANDARD", "EXPRESS", "OVERNIGHT", "INTERNATIONAL"]

    @pytest.mark.asyncio
    async def test_options_from_service(
        self,
        store: CheckoutStore,
        checkout_api: AsyncMock,
        sample_address,
    ) -> None:
        """Test that service options are returned as-is."""
        store.set_shipping_address(sample_address)
        checkout_api.get_shipping_options.return_value = [ShippingOption(method="STANDARD", cost=7.5)]

        options, fallback = await ShippingMethodStep(store, checkout_api).options()

        assert fallback is False
        assert options[0].cost == 7.5

    @pytest.mark.asyncio
    async def test_options_auth_error_propagates(
        self,
        store: CheckoutStore,
        checkout_api: AsyncMock,
        sample_address,
    ) -> None:
        """Test that an expired login is not hidden behind the defaults."""
        store.set_shipping_address(sample_address)
        checkout_api.get_shipping_options.side_effect = ServiceAuthError("expired", status_code=401)

        with pytest.raises(ServiceAuthError):
            await ShippingMethodStep(store, checkout_api).options()

    def test_default_options_priced_from_base(self) -> None:
        """Test default option pricing."""
        costs = {option.method: option.cost for option in default_shipping_options()}

        assert costs == {"STANDARD": 10.0, "EXPRESS": 15.0, "OVERNIGHT": 25.0, "INTERNATIONAL": 20.0}


class TestPaymentStep:
    """Tests for PaymentStep."""

    @pytest.mark.asyncio
    async def test_requires_shipping_method(self, store: CheckoutStore) -> None:
        """Test that payment comes after the shipping method."""
        with pytest.raises(SessionStateError) as exc_info:
            await PaymentStep(store).submit("credit_card")

        assert exc_info.value.go_back_to_step == CheckoutStep.SHIPPING_METHOD

    @pytest.mark.asyncio
    async def test_rejects_unknown_method(self, store: CheckoutStore) -> None:
        """Test that unsupported payment methods are refused."""
        store.set_shipping_method("STANDARD")

        with pytest.raises(StepValidationError):
            await PaymentStep(store).submit("bitcoin")

    @pytest.mark.asyncio
    async def test_selects_method_and_advances(self, store: CheckoutStore) -> None:
        """Test that a valid method moves the flow to review."""
        store.set_shipping_method("STANDARD")
        store.set_step(CheckoutStep.PAYMENT)

        await PaymentStep(store).submit("PayPal")

        assert store.payment_method == "paypal"
        assert store.current_step == CheckoutStep.REVIEW


class TestReviewStep:
    """Tests for ReviewStep."""

    def test_summary_lists_missing_steps(self, store: CheckoutStore) -> None:
        """Test that incomplete selections point to the earliest step."""
        summary = ReviewStep(store, MagicMock()).summary()

        assert len(summary.missing) == 3
        assert summary.go_back_to_step == CheckoutStep.ADDRESS
        assert summary.can_place_order is False

    def test_summary_ready_to_place(self, store: CheckoutStore, sample_address, sample_preview) -> None:
        """Test a complete review."""
        store.set_shipping_address(sample_address)
        store.set_shipping_method("STANDARD")
        store.set_payment_method("credit_card")
        store.state.order_preview = sample_preview

        summary = ReviewStep(store, MagicMock()).summary()

        assert summary.missing == []
        assert summary.go_back_to_step is None
        assert summary.can_place_order is True
        assert summary.order_preview.total == 118.0

    @pytest.mark.asyncio
    async def test_place_order_delegates_to_placement(
        self,
        store: CheckoutStore,
        sample_cart: list[CartItem],
    ) -> None:
        """Test that the review step hands the flow to the placement service."""
        placement = MagicMock()
        placement.place_order = AsyncMock(return_value=PlacementResult(success=True, order_id="order-1"))
        store.coupon_code = "SAVE10"

        result = await ReviewStep(store, placement).place_order(sample_cart, None, access_token="token")

        assert result.order_id == "order-1"
        placement.place_order.assert_awaited_once_with(
            store,
            sample_cart,
            None,
            access_token="token",
            cart_id=None,
            coupon_code="SAVE10",
            payment_method_token=None,
        )
