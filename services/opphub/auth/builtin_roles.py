"""Global roles that exist as code, not per-opportunity rows.

Platform roles are stored in platform_role_assignments and apply across
every opportunity. Opportunity-scoped roles are derived from opportunity
codes (see opphub.services.role_codec) and are never stored by name.
"""

PLATFORM_ADMIN_ROLE = "admin"
GOV_ROLE = "gov"

PLATFORM_ROLE_NAMES: frozenset[str] = frozenset({PLATFORM_ADMIN_ROLE, GOV_ROLE})


def is_platform_role(name: str) -> bool:
    """Check if a role name is a platform role (admin or gov)."""
    return name in PLATFORM_ROLE_NAMES
