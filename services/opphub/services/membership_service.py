"""Persisted opportunity memberships and user role-set resolution.

Each (opportunity, user) pair is a single row holding one state; no row is
the 'none' state. A transition reads the row, computes the next state with
the membership state machine, and writes or deletes that one row, so
approve and deny land as a single update inside the caller's transaction.

Cached role sets are left alone here: the caller invalidates the user's
cache key after the transaction commits, or a concurrent resolve could
cache the pre-commit roles again.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from opphub.db.models import Opportunity, OpportunityMembership, PlatformRoleAssignment, User
from opphub.db.session import translate_store_errors
from opphub.logging_config import get_logger
from opphub.redis.client import cache_roles, get_cached_roles
from opphub.services.membership import (
    MembershipAction,
    MembershipState,
    apply_action,
    roles_for_state,
)

logger = get_logger(__name__)

MEMBER_STATES = (MembershipState.MEMBER.value, MembershipState.ADMIN.value)


async def get_membership(
    db: AsyncSession, opportunity: Opportunity, user_email: str
) -> OpportunityMembership | None:
    """Get the membership row for a user on an opportunity."""
    with translate_store_errors():
        result = await db.execute(
            select(OpportunityMembership).where(
                OpportunityMembership.opportunity_id == opportunity.id,
                OpportunityMembership.user_email == user_email,
            )
        )
    return result.scalar_one_or_none()


async def transition(
    db: AsyncSession,
    opportunity: Opportunity,
    user_email: str,
    action: MembershipAction,
) -> MembershipState:
    """Apply ``action`` to a user's membership and persist the result."""
    membership = await get_membership(db, opportunity, user_email)
    current = MembershipState(membership.state) if membership else MembershipState.NONE
    new_state = apply_action(opportunity, current, action)

    with translate_store_errors():
        if new_state is MembershipState.NONE:
            if membership is not None:
                await db.delete(membership)
        elif membership is None:
            db.add(
                OpportunityMembership(
                    opportunity_id=opportunity.id,
                    user_email=user_email,
                    state=new_state.value,
                )
            )
        else:
            membership.state = new_state.value
        await db.flush()

    logger.info(
        "Membership transition",
        opportunity=opportunity.code,
        user=user_email,
        action=str(action),
        from_state=str(current),
        to_state=str(new_state),
    )
    return new_state


async def request_membership(
    db: AsyncSession, opportunity: Opportunity, user_email: str
) -> MembershipState:
    return await transition(db, opportunity, user_email, MembershipAction.REQUEST)


async def approve_request(
    db: AsyncSession, opportunity: Opportunity, user_email: str
) -> MembershipState:
    return await transition(db, opportunity, user_email, MembershipAction.APPROVE)


async def deny_request(
    db: AsyncSession, opportunity: Opportunity, user_email: str
) -> MembershipState:
    return await transition(db, opportunity, user_email, MembershipAction.DENY)


async def grant_admin(
    db: AsyncSession, opportunity: Opportunity, user_email: str
) -> MembershipState:
    return await transition(db, opportunity, user_email, MembershipAction.GRANT_ADMIN)


async def revoke_membership(
    db: AsyncSession, opportunity: Opportunity, user_email: str
) -> MembershipState:
    return await transition(db, opportunity, user_email, MembershipAction.REVOKE)


async def _list_by_states(
    db: AsyncSession, opportunity: Opportunity, states: tuple[str, ...]
) -> list[tuple[OpportunityMembership, User | None]]:
    with translate_store_errors():
        result = await db.execute(
            select(OpportunityMembership, User)
            .outerjoin(User, User.email == OpportunityMembership.user_email)
            .where(
                OpportunityMembership.opportunity_id == opportunity.id,
                OpportunityMembership.state.in_(states),
            )
            .order_by(OpportunityMembership.user_email)
        )
    return [(membership, user) for membership, user in result.all()]


async def list_members(
    db: AsyncSession, opportunity: Opportunity
) -> list[tuple[OpportunityMembership, User | None]]:
    """Members and admins. Users still waiting on a request are excluded."""
    return await _list_by_states(db, opportunity, MEMBER_STATES)


async def list_requests(
    db: AsyncSession, opportunity: Opportunity
) -> list[tuple[OpportunityMembership, User | None]]:
    """Users waiting to be added to the member list."""
    return await _list_by_states(db, opportunity, (MembershipState.PENDING.value,))


async def resolve_user_roles(db: AsyncSession, email: str) -> list[str]:
    """Resolve a user's full role set: platform roles plus derived membership roles.

    Checks Redis first. On a miss, queries platform_role_assignments and
    opportunity_memberships and caches the sorted result.
    """
    cached = await get_cached_roles(email)
    if cached is not None:
        return cached

    with translate_store_errors():
        result = await db.execute(
            select(PlatformRoleAssignment.role_name).where(PlatformRoleAssignment.email == email)
        )
        roles: set[str] = {row[0] for row in result.all()}

        result = await db.execute(
            select(Opportunity.code, OpportunityMembership.state)
            .join(OpportunityMembership, OpportunityMembership.opportunity_id == Opportunity.id)
            .where(OpportunityMembership.user_email == email)
        )
        for code, state in result.all():
            roles.update(roles_for_state(code, state))

    role_list = sorted(roles)
    await cache_roles(email, role_list)
    return role_list
