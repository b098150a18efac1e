"""Admin gate for privileged opportunity operations.

Resolution: platform admin OR opportunity admin. The gate never mutates
anything; callers decide whether to raise via ensure_admin().
"""

from collections.abc import Iterable

from opphub.auth.builtin_roles import PLATFORM_ADMIN_ROLE
from opphub.errors import AuthorizationError
from opphub.logging_config import get_logger
from opphub.services.role_codec import HasCode, admin_role

logger = get_logger(__name__)


def is_platform_admin(roles: Iterable[str]) -> bool:
    return PLATFORM_ADMIN_ROLE in set(roles)


def is_opportunity_admin(opportunity: HasCode | str | None, roles: Iterable[str]) -> bool:
    return admin_role(opportunity) in set(roles)


def is_authorized_admin(opportunity: HasCode | str | None, roles: Iterable[str]) -> bool:
    """True if the role set may administer this opportunity."""
    role_set = set(roles)
    allowed = is_platform_admin(role_set) or is_opportunity_admin(opportunity, role_set)
    logger.debug(
        "Admin check",
        role=admin_role(opportunity),
        allowed=allowed,
    )
    return allowed


def ensure_admin(opportunity: HasCode | str | None, roles: Iterable[str]) -> None:
    """Raise AuthorizationError unless the role set may administer the opportunity."""
    if not is_authorized_admin(opportunity, roles):
        raise AuthorizationError()
