"""FastAPI dependencies for resolving the acting user.

Identity comes from a Bearer API token (SHA-256 hash + indexed lookup).
The user's role set is resolved from platform role assignments plus the
roles derived from their opportunity memberships.

Tokens of deactivated (or deleted) users no longer authenticate.

Read endpoints accept anonymous viewers; they get an empty role set.
"""

from dataclasses import dataclass, field

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from opphub.auth.api_tokens import validate_api_token
from opphub.db.models import User
from opphub.db.session import get_db, translate_store_errors
from opphub.logging_config import get_logger
from opphub.services.membership_service import resolve_user_roles

logger = get_logger(__name__)
security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


@dataclass
class AuthenticatedUser:
    """The acting user and their full role set."""

    email: str
    display_name: str | None = None
    roles: list[str] = field(default_factory=list)


async def _user_from_token(db: AsyncSession, token: str) -> AuthenticatedUser | None:
    api_token = await validate_api_token(db, token)
    if api_token is None or not api_token.user_email:
        return None

    with translate_store_errors():
        db_user = await db.get(User, api_token.user_email)
    if db_user is None or not db_user.is_active:
        logger.info("Token rejected for inactive user", user=api_token.user_email)
        return None

    roles = await resolve_user_roles(db, api_token.user_email)
    return AuthenticatedUser(
        email=api_token.user_email, display_name=db_user.display_name, roles=roles
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> AuthenticatedUser:
    """Require an authenticated user; 401 otherwise."""
    user = await _user_from_token(db, credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_security),
    db: AsyncSession = Depends(get_db),
) -> AuthenticatedUser | None:
    """Resolve the user if a valid token was sent, else None (anonymous viewer)."""
    if credentials is None:
        return None
    return await _user_from_token(db, credentials.credentials)


def viewer_roles(user: AuthenticatedUser | None) -> list[str]:
    return user.roles if user is not None else []
