"""Schema module for identity service payloads."""

from telo_auth.schemas.auth import (
    ActionResult,
    AuthResult,
    Credentials,
    PasswordChange,
    ProfileUpdate,
    RegistrationData,
    TokenPair,
    UserRecord,
)

__all__ = [
    "ActionResult",
    "AuthResult",
    "Credentials",
    "PasswordChange",
    "ProfileUpdate",
    "RegistrationData",
    "TokenPair",
    "UserRecord",
]
