"""Opportunity lifecycle: create, read, update, delete.

The code is assigned once at creation and never touched afterwards, since
every membership role string is derived from it. Changing the title does not
change the code.
"""

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from opphub.config import settings
from opphub.db.models import Opportunity, OpportunityMembership
from opphub.db.session import store_error_message, translate_store_errors
from opphub.errors import CodeExhaustedError, NotFoundError, StoreError, ValidationError
from opphub.logging_config import get_logger
from opphub.services import membership_service
from opphub.services.audit import apply_audit
from opphub.services.role_codec import find_unique_code

logger = get_logger(__name__)

EDITABLE_FIELDS = ("title", "short", "description", "website", "program_id", "project_id")
_REFERENCE_FIELDS = ("program_id", "project_id")


def parse_opportunity_id(raw_id: str) -> uuid.UUID:
    """Parse a path identifier, rejecting anything that is not a UUID."""
    try:
        return uuid.UUID(str(raw_id))
    except ValueError:
        raise ValidationError("Opportunity is invalid") from None


def _clean_attributes(attrs: dict[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field in EDITABLE_FIELDS:
        if field not in attrs:
            continue
        value = attrs[field]
        if field in _REFERENCE_FIELDS and value not in (None, ""):
            try:
                value = uuid.UUID(str(value))
            except ValueError:
                raise ValidationError(f"Invalid {field}") from None
        elif field in _REFERENCE_FIELDS:
            value = None
        elif value is None:
            value = ""
        values[field] = value
    return values


def new_opportunity() -> Opportunity:
    """An unsaved opportunity with every field at its default."""
    return Opportunity(
        code="", title="", short="", description="", website="", program_id=None, project_id=None
    )


async def get_opportunity(db: AsyncSession, opportunity_id: uuid.UUID) -> Opportunity | None:
    """Get an opportunity by ID."""
    with translate_store_errors():
        result = await db.execute(select(Opportunity).where(Opportunity.id == opportunity_id))
    return result.scalar_one_or_none()


async def get_opportunity_by_code(db: AsyncSession, code: str) -> Opportunity | None:
    """Get an opportunity by its code."""
    with translate_store_errors():
        result = await db.execute(select(Opportunity).where(Opportunity.code == code))
    return result.scalar_one_or_none()


async def get_opportunity_or_404(db: AsyncSession, raw_id: str) -> Opportunity:
    """Resolve a path identifier: malformed -> ValidationError, unknown -> NotFoundError."""
    opportunity_id = parse_opportunity_id(raw_id)
    opportunity = await get_opportunity(db, opportunity_id)
    if opportunity is None:
        raise NotFoundError()
    return opportunity


async def list_opportunities(db: AsyncSession) -> list[Opportunity]:
    """List all opportunities sorted by title."""
    with translate_store_errors():
        result = await db.execute(select(Opportunity).order_by(Opportunity.title))
    return list(result.scalars().all())


async def create_opportunity(
    db: AsyncSession,
    attrs: dict[str, Any],
    acting_email: str,
) -> Opportunity:
    """Create an opportunity and make the creator its admin.

    The code is found by probing the store. Two concurrent creations can
    both see the same code as free; the unique constraint on ``code``
    rejects the loser, which then retries with the next free code.
    """
    values = _clean_attributes(attrs)
    title = (values.get("title") or "").strip()
    if not title:
        raise ValidationError("Title cannot be blank")

    rejected: set[str] = set()

    async def lookup(code: str) -> Any:
        if code in rejected:
            return code
        return await get_opportunity_by_code(db, code)

    for _ in range(settings.opportunities.create_retries + 1):
        code = await find_unique_code(title, lookup)

        opportunity = Opportunity(code=code, **values)
        apply_audit(opportunity, acting_email)

        try:
            async with db.begin_nested():
                db.add(opportunity)
                await db.flush()
        except IntegrityError:
            logger.info("Opportunity code taken concurrently, retrying", code=code)
            rejected.add(code)
            continue
        except SQLAlchemyError as e:
            raise StoreError(store_error_message(e)) from e

        await membership_service.grant_admin(db, opportunity, acting_email)
        logger.info("Opportunity created", code=code, user=acting_email)
        return opportunity

    raise CodeExhaustedError(f"Unable to save opportunity '{title}' with a unique code")


async def update_opportunity(
    db: AsyncSession,
    opportunity: Opportunity,
    attrs: dict[str, Any],
    acting_email: str,
) -> Opportunity:
    """Copy editable fields onto the opportunity. The code is never changed."""
    values = _clean_attributes(attrs)
    if "title" in values and not (values["title"] or "").strip():
        raise ValidationError("Title cannot be blank")

    for field, value in values.items():
        setattr(opportunity, field, value)
    apply_audit(opportunity, acting_email)

    with translate_store_errors():
        await db.flush()

    logger.info("Opportunity updated", code=opportunity.code, user=acting_email)
    return opportunity


async def delete_opportunity(db: AsyncSession, opportunity: Opportunity) -> list[str]:
    """Delete an opportunity. Memberships go with it.

    Returns the emails that held a membership; their cached role sets are
    stale once the deletion commits.
    """
    with translate_store_errors():
        result = await db.execute(
            select(OpportunityMembership.user_email).where(
                OpportunityMembership.opportunity_id == opportunity.id
            )
        )
        emails = [row[0] for row in result.all()]

        await db.delete(opportunity)
        await db.flush()

    logger.info("Opportunity deleted", code=opportunity.code, members=len(emails))
    return emails
