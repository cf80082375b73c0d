"""Identity service clients."""

from telo_auth.services.auth_api import AuthApiService
from telo_auth.services.email_verification import (
    EmailVerificationService,
    format_email_for_display,
    get_verification_status,
    is_valid_email,
)
from telo_auth.services.transport import AuthenticatedTransport, response_body

__all__ = [
    "AuthApiService",
    "AuthenticatedTransport",
    "EmailVerificationService",
    "format_email_for_display",
    "get_verification_status",
    "is_valid_email",
    "response_body",
]
