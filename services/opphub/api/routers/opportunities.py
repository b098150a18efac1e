"""Opportunity and membership endpoints.

Endpoints (mounted under settings.api_prefix):
    GET    /api/v2/opportunities                                   — decorated list
    POST   /api/v2/opportunities                                   — create (caller becomes admin)
    GET    /api/v2/opportunities/new                               — blank opportunity
    GET    /api/v2/opportunities/{id}                              — decorated read
    PUT    /api/v2/opportunities/{id}                              — update (admin)
    DELETE /api/v2/opportunities/{id}                              — delete (admin)
    GET    /api/v2/opportunities/{id}/members                      — members and admins
    GET    /api/v2/opportunities/{id}/requests                     — pending requests
    POST   /api/v2/opportunities/{id}/request                      — caller requests membership
    POST   /api/v2/opportunities/{id}/requests/{email}/confirm     — approve (admin)
    POST   /api/v2/opportunities/{id}/requests/{email}/deny        — deny (admin)
    DELETE /api/v2/opportunities/{id}/members/{email}              — revoke (admin)
"""

from fastapi import APIRouter, Body, Depends, Path
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from opphub.api.dependencies import (
    AuthenticatedUser,
    get_current_user,
    get_optional_user,
    viewer_roles,
)
from opphub.db.models import OpportunityMembership, User
from opphub.db.session import get_db, translate_store_errors
from opphub.errors import ValidationError
from opphub.logging_config import get_logger
from opphub.redis.client import invalidate_roles
from opphub.services import membership_service, opportunity_service
from opphub.services.authorization import ensure_admin
from opphub.services.decorator import decorate, decorate_list, serialize_opportunity
from opphub.services.membership import MembershipState, roles_for_state

router = APIRouter(tags=["opportunities"])
logger = get_logger(__name__)


def _attributes(body: dict) -> dict:
    data = body.get("data", {})
    if not isinstance(data, dict):
        raise ValidationError("Data must be an object")
    attrs = data.get("attributes", {})
    if not isinstance(attrs, dict):
        raise ValidationError("Attributes must be an object")
    return attrs


def _membership_json(membership: OpportunityMembership, user: User | None) -> dict:
    return {
        "email": membership.user_email,
        "display-name": user.display_name if user is not None else None,
        "state": membership.state,
    }


def _transition_json(opportunity, email: str, state: MembershipState) -> dict:
    return {
        "email": email,
        "state": state.value,
        "roles": sorted(roles_for_state(opportunity, state)),
    }


def _require_email(email: str) -> str:
    email = email.strip()
    if not email:
        raise ValidationError("Email is required")
    return email


async def _commit(db: AsyncSession, *emails: str) -> None:
    """Commit, then drop the cached role sets of users whose roles changed."""
    with translate_store_errors():
        await db.commit()

    for email in emails:
        await invalidate_roles(email)


# ── Opportunities ────────────────────────────────────────────────────────


@router.get("/opportunities")
async def list_opportunities(
    user: AuthenticatedUser | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """List all opportunities sorted by title, decorated for the viewer."""
    opportunities = await opportunity_service.list_opportunities(db)
    return JSONResponse(content={"data": decorate_list(opportunities, viewer_roles(user))})


@router.post("/opportunities", status_code=201)
async def create_opportunity(
    body: dict = Body(...),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Create an opportunity. The creator is granted admin."""
    opportunity = await opportunity_service.create_opportunity(db, _attributes(body), user.email)
    await _commit(db, user.email)

    return JSONResponse(content={"data": serialize_opportunity(opportunity)}, status_code=201)


@router.get("/opportunities/new")
async def new_opportunity(
    user: AuthenticatedUser = Depends(get_current_user),
) -> JSONResponse:
    """Return a blank opportunity for form setup."""
    return JSONResponse(content={"data": serialize_opportunity(opportunity_service.new_opportunity())})


@router.get("/opportunities/{opportunity_id}")
async def show_opportunity(
    opportunity_id: str = Path(...),
    user: AuthenticatedUser | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Show an opportunity, decorated for the viewer."""
    opportunity = await opportunity_service.get_opportunity_or_404(db, opportunity_id)
    return JSONResponse(content={"data": decorate(opportunity, viewer_roles(user))})


@router.put("/opportunities/{opportunity_id}")
async def update_opportunity(
    opportunity_id: str = Path(...),
    body: dict = Body(...),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Update an opportunity (admin only). The code is never changed."""
    opportunity = await opportunity_service.get_opportunity_or_404(db, opportunity_id)
    ensure_admin(opportunity, user.roles)

    opportunity = await opportunity_service.update_opportunity(
        db, opportunity, _attributes(body), user.email
    )
    await _commit(db)

    return JSONResponse(content={"data": serialize_opportunity(opportunity)})


@router.delete("/opportunities/{opportunity_id}")
async def delete_opportunity(
    opportunity_id: str = Path(...),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Delete an opportunity (admin only). Returns the deleted record."""
    opportunity = await opportunity_service.get_opportunity_or_404(db, opportunity_id)
    ensure_admin(opportunity, user.roles)

    data = serialize_opportunity(opportunity)
    emails = await opportunity_service.delete_opportunity(db, opportunity)
    await _commit(db, *emails)

    return JSONResponse(content={"data": data})


# ── Membership ───────────────────────────────────────────────────────────


@router.get("/opportunities/{opportunity_id}/members")
async def list_members(
    opportunity_id: str = Path(...),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """List members and admins. Pending requests are not included."""
    opportunity = await opportunity_service.get_opportunity_or_404(db, opportunity_id)
    rows = await membership_service.list_members(db, opportunity)
    return JSONResponse(content={"data": [_membership_json(m, u) for m, u in rows]})


@router.get("/opportunities/{opportunity_id}/requests")
async def list_requests(
    opportunity_id: str = Path(...),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """List users waiting to be added as members."""
    opportunity = await opportunity_service.get_opportunity_or_404(db, opportunity_id)
    rows = await membership_service.list_requests(db, opportunity)
    return JSONResponse(content={"data": [_membership_json(m, u) for m, u in rows]})


@router.post("/opportunities/{opportunity_id}/request")
async def request_membership(
    opportunity_id: str = Path(...),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """The acting user asks to join."""
    opportunity = await opportunity_service.get_opportunity_or_404(db, opportunity_id)
    await membership_service.request_membership(db, opportunity, user.email)
    await _commit(db, user.email)

    return JSONResponse(content={"ok": True})


@router.post("/opportunities/{opportunity_id}/requests/{email}/confirm")
async def confirm_member(
    opportunity_id: str = Path(...),
    email: str = Path(...),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Approve a pending request (admin only)."""
    opportunity = await opportunity_service.get_opportunity_or_404(db, opportunity_id)
    ensure_admin(opportunity, user.roles)

    email = _require_email(email)
    state = await membership_service.approve_request(db, opportunity, email)
    await _commit(db, email)

    return JSONResponse(content={"data": _transition_json(opportunity, email, state)})


@router.post("/opportunities/{opportunity_id}/requests/{email}/deny")
async def deny_member(
    opportunity_id: str = Path(...),
    email: str = Path(...),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Deny a pending request (admin only)."""
    opportunity = await opportunity_service.get_opportunity_or_404(db, opportunity_id)
    ensure_admin(opportunity, user.roles)

    email = _require_email(email)
    state = await membership_service.deny_request(db, opportunity, email)
    await _commit(db, email)

    return JSONResponse(content={"data": _transition_json(opportunity, email, state)})


@router.delete("/opportunities/{opportunity_id}/members/{email}")
async def revoke_member(
    opportunity_id: str = Path(...),
    email: str = Path(...),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Revoke membership and admin (admin only)."""
    opportunity = await opportunity_service.get_opportunity_or_404(db, opportunity_id)
    ensure_admin(opportunity, user.roles)

    email = _require_email(email)
    state = await membership_service.revoke_membership(db, opportunity, email)
    await _commit(db, email)

    return JSONResponse(content={"data": _transition_json(opportunity, email, state)})
