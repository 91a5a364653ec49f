"""Verification of the storefront's customer access tokens."""

import json
import logging
from enum import Enum
from functools import lru_cache
from typing import Any

import jwt
from jwt import PyJWK, PyJWKSet
from pydantic import ValidationError

from src.core.config import get_settings
from src.schemas.auth import TokenPayload

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ["exp", "iat", "sub"]


class AuthErrorCode(str, Enum):
    """Why a token was refused."""

    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"


class AuthError(Exception):
    """A bearer token could not be accepted."""

    def __init__(self, message: str, code: AuthErrorCode) -> None:
        """Initialize authentication error.

        Args:
            message: Human-readable error description.
            code: Failure reason for programmatic handling.
        """
        self.message = message
        self.code = code
        super().__init__(message)


@lru_cache
def get_signing_key() -> dict[str | None, Any]:
    """Load the verification keys from settings, indexed by key id.

    ``JWT_SIGNING_KEY_JWK`` holds either a single JWK or a JWK set
    (``{"keys": [...]}``) so keys can be rotated without a restart of the
    issuer. A single key is stored under ``None`` as well as its ``kid``.

    Raises:
        AuthError: If no key is configured or the JWK cannot be parsed.
    """
    jwk_json = get_settings().jwt_signing_key_jwk
    if not jwk_json:
        raise AuthError("Signing key not configured", AuthErrorCode.INVALID_TOKEN)

    try:
        jwk_data = json.loads(jwk_json)
        if "keys" in jwk_data:
            jwks = PyJWKSet.from_dict(jwk_data).keys
        else:
            jwks = [PyJWK.from_dict(jwk_data)]
    except (ValueError, jwt.PyJWKError, jwt.PyJWKSetError) as e:
        raise AuthError(f"Invalid signing key JWK format: {e}", AuthErrorCode.INVALID_TOKEN) from e

    keys: dict[str | None, Any] = {jwk.key_id: jwk.key for jwk in jwks}
    if len(jwks) == 1:
        keys[None] = jwks[0].key
    return keys


def _key_for(token: str) -> Any:
    keys = get_signing_key()
    key_id = jwt.get_unverified_header(token).get("kid")
    key = keys.get(key_id) or keys.get(None)
    if key is None:
        raise AuthError(f"Unknown signing key: {key_id}", AuthErrorCode.INVALID_SIGNATURE)
    return key


def decode_jwt(token: str) -> TokenPayload:
    """Decode and validate a customer access token.

    Checks signature, expiry and issue time against the configured keys and
    algorithms, and requires a subject.

    Args:
        token: The JWT token string to decode.

    Returns:
        TokenPayload: Validated token payload.

    Raises:
        AuthError: If the token is malformed, expired, or wrongly signed.
    """
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            _key_for(token),
            algorithms=get_settings().jwt_algorithms_list,
            options={"require": REQUIRED_CLAIMS, "verify_aud": False},
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthError("Token has expired", AuthErrorCode.TOKEN_EXPIRED) from e
    except jwt.InvalidSignatureError as e:
        raise AuthError("Invalid token signature", AuthErrorCode.INVALID_SIGNATURE) from e
    except jwt.MissingRequiredClaimError as e:
        raise AuthError(f"Token missing required claim: {e.claim}", AuthErrorCode.INVALID_TOKEN) from e
    except jwt.InvalidTokenError as e:
        logger.debug("Rejected access token: %s", e)
        raise AuthError(f"Invalid token: {e}", AuthErrorCode.INVALID_TOKEN) from e

    try:
        return TokenPayload.model_validate(payload)
    except ValidationError as e:
        raise AuthError("Token claims are malformed", AuthErrorCode.INVALID_TOKEN) from e
