"""Audit stamping for records touched through the API."""

from typing import Any

from opphub.db.models import utc_now


def apply_audit(entity: Any, acting_email: str | None) -> Any:
    """Stamp created_* once and updated_* on every call.

    Blindly copying request bodies onto a record can overwrite these fields,
    so callers stamp after copying.
    """
    now = utc_now()
    if getattr(entity, "created_at", None) is None:
        entity.created_at = now
        entity.created_by = acting_email
    entity.updated_at = now
    entity.updated_by = acting_email
    return entity
