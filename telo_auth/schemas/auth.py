"""Authentication schemas exchanged with the identity service.

Wire payloads are camelCase; attributes are snake_case and mapped through
pydantic aliases.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base model for camelCase wire payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON body the identity service expects."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Credentials(WireModel):
    """Login credentials. Never persisted."""

    email: str
    password: str = Field(repr=False)


class TokenPair(WireModel):
    """Access/refresh token pair. Stored and replaced only as a unit."""

    access_token: str = Field(min_length=1, repr=False)
    refresh_token: str = Field(min_length=1, repr=False)


class UserRecord(WireModel):
    """Cached copy of the user profile. The server copy is authoritative."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    id: str
    email: str
    display_name: str = Field(
        default="",
        validation_alias=AliasChoices("displayName", "display_name", "name"),
        serialization_alias="displayName",
    )
    phone: Optional[str] = None
    is_email_verified: bool = False
    favorites_count: int = 0
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None


class RegistrationData(WireModel):
    """Request body for POST /auth/register."""

    name: str = Field(min_length=1)
    email: str
    password: str = Field(repr=False)
    phone: Optional[str] = None


class ProfileUpdate(WireModel):
    """Request body for PUT /auth/profile."""

    name: Optional[str] = None
    phone: Optional[str] = None


class PasswordChange(WireModel):
    """Request body for POST /auth/change-password."""

    current_password: str = Field(repr=False)
    new_password: str = Field(repr=False)
    confirm_password: str = Field(repr=False)


@dataclass
class AuthResult:
    """Outcome of register, login and email verification calls.

    A result with `requires_verification` set never comes with stored tokens;
    the UI routes the user to a "check your email" flow instead.
    """

    success: bool
    user: Optional[UserRecord] = None
    message: Optional[str] = None
    requires_verification: bool = False
    email: Optional[str] = None
    code: Optional[str] = None
    email_send_failed: bool = False
    registration_complete: bool = False
    credentials_valid: bool = False
    already_verified: bool = False
    tokens: Optional[TokenPair] = None


@dataclass
class ActionResult:
    """Outcome of account actions that only report a message."""

    success: bool
    message: Optional[str] = None
    email: Optional[str] = None
    new_email: Optional[str] = None
    current_email: Optional[str] = None
    expires_in: Optional[str] = None
    sent_to: Optional[str] = None
    already_verified: bool = False
