"""FastAPI dependency injection functions."""

from typing import Annotated

from fastapi import Depends, Header, Request

from src.api.middleware.auth import AuthError, AuthErrorCode, decode_jwt
from src.api.middleware.error_handler import AuthenticationError
from src.core.config import get_settings
from src.schemas.auth import UserContext
from src.services.checkout_flow_manager import CheckoutFlowManager
from src.services.checkout_store import CheckoutStore


def _bearer_token(authorization: str) -> str:
    """Extract the token from a "Bearer <token>" header value.

    Raises:
        AuthenticationError: 401 if the header is missing or malformed.
    """
    login_url = get_settings().login_url
    if not authorization:
        raise AuthenticationError("Authorization header required", login_url=login_url)

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError(
            "Invalid authorization header format. Expected: Bearer <token>",
            login_url=login_url,
        )
    return parts[1]


async def get_current_user(
    authorization: Annotated[str, Header(description="Bearer token")] = "",
) -> UserContext:
    """Extract and validate the current user from the Authorization header.

    Args:
        authorization: The Authorization header value (Bearer token).

    Returns:
        UserContext: The authenticated user's context.

    Raises:
        AuthenticationError: 401 with the storefront login URL if the token is
            missing, invalid, or expired.
    """
    token = _bearer_token(authorization)

    try:
        payload = decode_jwt(token)
        return payload.to_user_context()

    except AuthError as e:
        message = "Token has expired" if e.code == AuthErrorCode.TOKEN_EXPIRED else e.message
        raise AuthenticationError(message, login_url=get_settings().login_url) from e


async def get_access_token(
    authorization: Annotated[str, Header(description="Bearer token")] = "",
) -> str:
    """Raw bearer token, forwarded to the order and cart services."""
    return _bearer_token(authorization)


def get_flow_manager(request: Request) -> CheckoutFlowManager:
    """Return the flow manager created by the application lifespan."""
    return request.app.state.checkout_flows


# Type aliases for cleaner dependency injection
CurrentUser = Annotated[UserContext, Depends(get_current_user)]
AccessToken = Annotated[str, Depends(get_access_token)]
FlowManager = Annotated[CheckoutFlowManager, Depends(get_flow_manager)]


def get_checkout_store(user: CurrentUser, manager: FlowManager) -> CheckoutStore:
    """Return the authenticated customer's checkout flow."""
    return manager.get_store(str(user.user_id))


CheckoutFlow = Annotated[CheckoutStore, Depends(get_checkout_store)]
