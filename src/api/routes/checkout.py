"""Checkout API routes: the multi-step checkout flow and order placement."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter, Response, status

from src.api.deps import AccessToken, CheckoutFlow, CurrentUser, FlowManager
from src.api.middleware.error_handler import (
    AuthenticationError,
    ConflictError,
    UpstreamServiceError,
    ValidationError,
)
from src.core.config import get_settings
from src.core.http import ServiceAuthError, ServiceError
from src.core.optimistic import OptimisticUpdateError
from src.models.checkout import SESSION_FIELDS
from src.schemas.checkout import (
    AddressInput,
    CheckoutStateResponse,
    ConfirmationResponse,
    MethodSelection,
    PlacementPhases,
    PlacementResult,
    PlaceOrderRequest,
    PreviewRequest,
    ReviewSummary,
    SessionFieldUpdate,
    ShippingOptionsResponse,
    StartCheckoutRequest,
    StepUpdate,
)
from src.services.checkout_steps import StepValidationError
from src.services.checkout_store import CheckoutStore, SessionStateError, StepTransitionError
from src.services.order_placement_service import PlacementRejected

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


def _login_required(message: str) -> AuthenticationError:
    return AuthenticationError(message, login_url=get_settings().login_url)


@contextmanager
def _checkout_errors() -> Iterator[None]:
    """Translate checkout domain errors into API errors."""
    try:
        yield
    except StepValidationError as e:
        raise ValidationError(str(e), details=e.to_details()) from e
    except SessionStateError as e:
        details = None
        if e.go_back_to_step is not None:
            details = [{"loc": ["go_back_to_step"], "msg": str(e.go_back_to_step), "type": "go_back"}]
        raise ConflictError(e.message, details=details) from e
    except StepTransitionError as e:
        raise ConflictError(str(e)) from e
    except PlacementRejected as e:
        details = [{"loc": ["checkout"], "msg": reason, "type": "precondition"} for reason in e.missing]
        raise ValidationError("Order cannot be placed yet", details=details) from e
    except OptimisticUpdateError as e:
        if isinstance(e.cause, ServiceAuthError):
            raise _login_required("Your session has expired. Please log in again.") from e
        raise UpstreamServiceError(f"{e.message}. Your previous selection was kept.") from e
    except ServiceAuthError as e:
        raise _login_required("Your session has expired. Please log in again.") from e
    except ServiceError as e:
        raise UpstreamServiceError(e.message) from e
    except ValueError as e:
        raise ValidationError(str(e)) from e


def _state_response(store: CheckoutStore) -> CheckoutStateResponse:
    return CheckoutStateResponse(
        state=store.snapshot(),
        can_proceed_to_next_step=store.can_proceed_to_next_step,
        is_loading_preview=store.is_loading_preview,
        is_loading_session=store.is_loading_session,
        notices=store.drain_notices(),
    )


@router.get(
    "",
    response_model=CheckoutStateResponse,
    summary="Get checkout state",
    description="Returns the customer's checkout state, the derived step flag and any pending notices.",
)
async def get_checkout(store: CheckoutFlow) -> CheckoutStateResponse:
    """Return the current checkout state."""
    return _state_response(store)


@router.post(
    "/session",
    response_model=CheckoutStateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start checkout",
    description="Creates a checkout session for the cart, or resumes an existing session by id.",
)
async def start_checkout(data: StartCheckoutRequest, user: CurrentUser, store: CheckoutFlow) -> CheckoutStateResponse:
    """Create or resume the checkout session.

    Args:
        data: Cart items and coupon, or the id of a session to resume.
        user: Authenticated customer.
        store: The customer's checkout flow.

    Returns:
        CheckoutStateResponse: State after the session was created or resumed.

    Raises:
        ValidationError: 422 if neither cart items nor a session id were sent.
        UpstreamServiceError: 502 if the checkout service could not create the session.
    """
    with _checkout_errors():
        if data.session_id:
            await store.resume_session(data.session_id)
            return _state_response(store)

        if not data.cart_items:
            raise ValidationError(
                "Your cart is empty",
                details=[{"loc": ["cartItems"], "msg": "At least one item is required", "type": "value_error"}],
            )

        session = await store.create_checkout_session(str(user.user_id), data.cart_items, data.coupon_code)
        if session is None:
            raise UpstreamServiceError("We couldn't start checkout. Please try again.")
        await store.calculate_order_preview(str(user.user_id), data.cart_items, data.coupon_code)

    return _state_response(store)


@router.post(
    "/address",
    response_model=CheckoutStateResponse,
    summary="Submit shipping address",
)
async def submit_address(data: AddressInput, store: CheckoutFlow, manager: FlowManager) -> CheckoutStateResponse:
    """Validate and save the shipping address, then move to the shipping method step."""
    with _checkout_errors():
        await manager.address_step(store).submit(data)
    return _state_response(store)


@router.get(
    "/shipping-options",
    response_model=ShippingOptionsResponse,
    summary="List shipping options",
)
async def list_shipping_options(store: CheckoutFlow, manager: FlowManager) -> ShippingOptionsResponse:
    """List shipping options for the saved address, falling back to the default table."""
    with _checkout_errors():
        options, fallback = await manager.shipping_method_step(store).options()
    return ShippingOptionsResponse(options=options, fallback=fallback)


@router.post(
    "/shipping-method",
    response_model=CheckoutStateResponse,
    summary="Select shipping method",
)
async def submit_shipping_method(
    data: MethodSelection,
    store: CheckoutFlow,
    manager: FlowManager,
) -> CheckoutStateResponse:
    """Save the shipping method and re-derive pricing, then move to payment."""
    with _checkout_errors():
        await manager.shipping_method_step(store).submit(data.method)
    return _state_response(store)


@router.post(
    "/payment-method",
    response_model=CheckoutStateResponse,
    summary="Select payment method",
)
async def submit_payment_method(
    data: MethodSelection,
    store: CheckoutFlow,
    manager: FlowManager,
) -> CheckoutStateResponse:
    """Save the payment method, then move to review."""
    with _checkout_errors():
        await manager.payment_step(store).submit(data.method)
    return _state_response(store)


@router.post(
    "/preview",
    response_model=CheckoutStateResponse,
    summary="Recalculate order preview",
    description="Prices the cart for the saved address and shipping method. Falls back to cached pricing with a notice.",
)
async def calculate_preview(data: PreviewRequest, user: CurrentUser, store: CheckoutFlow) -> CheckoutStateResponse:
    """Recalculate the order preview."""
    with _checkout_errors():
        await store.calculate_order_preview(str(user.user_id), data.cart_items, data.coupon_code)
    return _state_response(store)


@router.put(
    "/session/{field}",
    response_model=CheckoutStateResponse,
    summary="Update a checkout session field",
    description="Optimistically updates shippingAddress, billingAddress, shippingMethod or paymentMethod.",
)
async def update_session_field(field: str, data: SessionFieldUpdate, store: CheckoutFlow) -> CheckoutStateResponse:
    """Push a single field to the checkout session.

    Raises:
        ValidationError: 422 if the field is unknown or the value is invalid.
        ConflictError: 409 if there is no checkout session yet.
        UpstreamServiceError: 502 if the checkout service rejected the update.
    """
    if field not in SESSION_FIELDS:
        raise ValidationError(f"Unknown session field: {field}")

    with _checkout_errors():
        await store.update_session_field(field, data.value)
    return _state_response(store)


@router.post(
    "/next",
    response_model=CheckoutStateResponse,
    summary="Go to the next step",
)
async def next_step(store: CheckoutFlow) -> CheckoutStateResponse:
    """Advance one step if the current step is complete."""
    with _checkout_errors():
        store.advance()
    return _state_response(store)


@router.post(
    "/prev",
    response_model=CheckoutStateResponse,
    summary="Go to the previous step",
)
async def prev_step(store: CheckoutFlow) -> CheckoutStateResponse:
    """Move back one step; stays on the first step."""
    store.prev_step()
    return _state_response(store)


@router.put(
    "/step",
    response_model=CheckoutStateResponse,
    summary="Jump to a step",
)
async def set_step(data: StepUpdate, store: CheckoutFlow) -> CheckoutStateResponse:
    """Jump to a step; out-of-range values are clamped."""
    store.set_step(data.step)
    return _state_response(store)


@router.get(
    "/review",
    response_model=ReviewSummary,
    summary="Review the order",
)
async def review(store: CheckoutFlow, manager: FlowManager) -> ReviewSummary:
    """Aggregate selections and pricing for the review step."""
    return manager.review_step(store).summary()


@router.post(
    "/place-order",
    response_model=PlacementResult,
    summary="Place the order",
    description=(
        "Runs the order placement sequence: inventory check, payment, order creation. "
        "Responds 502 with the accumulated errors if a phase fails."
    ),
    responses={
        401: {"description": "Authentication expired"},
        422: {"description": "A prior step is incomplete or an order is already being placed"},
        502: {"description": "A placement phase failed"},
    },
)
async def place_order(
    data: PlaceOrderRequest,
    response: Response,
    user: CurrentUser,
    access_token: AccessToken,
    store: CheckoutFlow,
    manager: FlowManager,
) -> PlacementResult:
    """Place the order for the reviewed checkout.

    Args:
        data: Cart items, cart id and optional payment method token.
        response: Used to set the status code when placement fails.
        user: Authenticated customer.
        access_token: Forwarded to the order and cart services.
        store: The customer's checkout flow.
        manager: Flow manager providing the review step.

    Returns:
        PlacementResult: Order id and redirect URL, or the accumulated errors.
    """
    with _checkout_errors():
        result = await manager.review_step(store).place_order(
            data.cart_items,
            user,
            access_token=access_token,
            cart_id=data.cart_id,
            coupon_code=data.coupon_code,
            payment_method_token=data.payment_method_token,
        )

    if result.login_required:
        raise AuthenticationError(
            "Your session has expired. Please log in again.",
            details=[{"loc": ["placement"], "msg": error, "type": "placement_error"} for error in result.errors],
            login_url=get_settings().login_url,
        )
    if not result.success:
        response.status_code = status.HTTP_502_BAD_GATEWAY
    else:
        manager.forget(store.user_id)
    return result


@router.get(
    "/place-order/progress",
    response_model=PlacementPhases | None,
    summary="Order placement progress",
    description="Phase flags of the placement sequence currently running for the customer, or null.",
)
async def placement_progress(user: CurrentUser, manager: FlowManager) -> PlacementPhases | None:
    """Return the running sequence's phase flags."""
    return manager.placement.progress(str(user.user_id))


@router.delete(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Abandon checkout",
    description="Clears every checkout field and persisted key. Order confirmation markers are kept.",
)
async def clear_checkout(store: CheckoutFlow, manager: FlowManager) -> Response:
    """Reset the checkout flow and drop it from memory.

    Raises:
        ConflictError: 409 while an order is being placed.
    """
    if store.is_placing_order:
        raise ConflictError("An order is being placed. Please wait for it to finish.")
    store.clear_checkout()
    logger.info("Checkout cleared for %s", store.user_id)
    manager.forget(store.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/confirmation",
    response_model=ConfirmationResponse,
    summary="Order confirmation markers",
)
async def confirmation(store: CheckoutFlow) -> ConfirmationResponse:
    """Return the last completed order recorded for the customer."""
    return ConfirmationResponse(**store.persistence.last_order())
