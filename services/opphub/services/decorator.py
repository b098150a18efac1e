"""Viewer-relative presentation of opportunities.

Serializes an opportunity and annotates it with what relationship the
viewer's role set has to it. Nothing here is persisted.
"""

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from opphub.auth.builtin_roles import GOV_ROLE, PLATFORM_ADMIN_ROLE
from opphub.db.models import Opportunity
from opphub.services.role_codec import admin_role, member_role, request_role

_SERIALIZED_FIELDS = (
    "id",
    "code",
    "title",
    "short",
    "description",
    "website",
    "program_id",
    "project_id",
    "created_at",
    "created_by",
    "updated_at",
    "updated_by",
)


def _rfc3339(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def serialize_opportunity(opportunity: Opportunity | None) -> dict[str, Any]:
    """Plain attribute map of an opportunity; ``{}`` when absent."""
    if opportunity is None:
        return {}
    data: dict[str, Any] = {}
    for field in _SERIALIZED_FIELDS:
        value = getattr(opportunity, field, None)
        if isinstance(value, datetime):
            value = _rfc3339(value)
        elif value is not None and field in ("id", "program_id", "project_id"):
            value = str(value)
        data[field] = value
    return data


def viewer_flags(code: str, roles: Iterable[str]) -> dict[str, bool]:
    """The userIs block. Flags are independent and may overlap."""
    role_set = set(roles)
    return {
        "admin": admin_role(code) in role_set or PLATFORM_ADMIN_ROLE in role_set,
        "member": member_role(code) in role_set,
        "request": request_role(code) in role_set,
        "gov": GOV_ROLE in role_set,
    }


def decorate(opportunity: Opportunity | None, roles: Iterable[str]) -> dict[str, Any]:
    """Serialize ``opportunity`` and add ``userIs`` flags for the viewer.

    An absent opportunity yields ``{"userIs": ...}`` with flags computed
    against the empty code.
    """
    data = serialize_opportunity(opportunity)
    data["userIs"] = viewer_flags(data.get("code") or "", roles)
    return data


def decorate_list(
    opportunities: Sequence[Opportunity], roles: Iterable[str]
) -> list[dict[str, Any]]:
    """Decorate each opportunity in order with the same viewer role set."""
    role_set = set(roles)
    return [decorate(opportunity, role_set) for opportunity in opportunities]
