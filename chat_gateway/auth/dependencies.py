"""FastAPI dependencies for authentication."""

from fastapi import Depends, Request

from chat_gateway.auth.identity import AuthUser, IdentityVerifier, is_admin, parse_bearer
from chat_gateway.config import get_settings
from chat_gateway.core.exceptions import AuthenticationError, AuthorizationError
from chat_gateway.core.logging import get_logger

logger = get_logger(__name__)


def get_identity_verifier(request: Request) -> IdentityVerifier:
    return request.app.state.identity_verifier


async def get_current_user(
    request: Request,
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> AuthUser:
    """Get the current authenticated user.

    Fails closed: any problem with the credential rejects the request.

    Raises:
        AuthenticationError: If not authenticated.
    """
    token = parse_bearer(request.headers.get("Authorization"))
    user = await verifier.verify(token)
    if not user.sub:
        raise AuthenticationError("Token verification failed: missing subject")
    return user


async def get_admin_user(
    current_user: AuthUser = Depends(get_current_user),
) -> AuthUser:
    """Require the caller's email to be on the admin allow-list."""
    settings = get_settings()
    if not is_admin(current_user.email, settings.admin_emails_list):
        logger.warning("Admin access denied", data={"sub": current_user.sub})
        raise AuthorizationError("Admin access required")
    return current_user
