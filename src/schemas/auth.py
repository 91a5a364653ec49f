"""Customer identity carried by storefront access tokens."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class UserContext(BaseModel):
    """The customer a checkout request acts for.

    Each customer owns exactly one checkout flow, keyed by ``user_id``.
    """

    model_config = ConfigDict(from_attributes=True)

    user_id: UUID = Field(description="Customer identifier (JWT sub claim)")
    email: str | None = Field(default=None, description="Customer email, if the token carries one")
    role: str | None = Field(default=None, description="Token role claim")


class TokenPayload(BaseModel):
    """Claims read from a verified access token. Unknown claims are ignored."""

    sub: UUID = Field(description="Customer identifier")
    exp: int = Field(description="Expiration timestamp (Unix epoch)")
    iat: int = Field(description="Issued at timestamp (Unix epoch)")
    email: str | None = None
    role: str | None = None
    aud: str | list[str] | None = None
    iss: str | None = None

    def to_user_context(self) -> UserContext:
        """Build the request's customer context from the claims."""
        return UserContext(user_id=self.sub, email=self.email, role=self.role)


class AuthenticatedResponse(BaseModel):
    """Body of the authenticated health check."""

    authenticated: bool = True
    user_id: str
    email: str | None = None
    role: str | None = None
