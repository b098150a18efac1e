"""Opportunity membership state machine.

A user's relationship to an opportunity is one of four states:

    none -> pending  (request)
    pending -> member  (approve, admin gate)
    pending -> none  (deny, admin gate)
    none/pending -> admin  (grant-admin, creator at creation time)
    member/admin -> none  (revoke, admin gate)

The string-level operations below add and remove the derived role strings
on a role set and never touch unrelated roles. The stored state is the
projection of a role set back onto a single variant, so a pair can never be
persisted as both pending and member.
"""

import enum
from collections.abc import Iterable, MutableSet

from opphub.services.role_codec import HasCode, admin_role, member_role, request_role


class MembershipState(enum.StrEnum):
    NONE = "none"
    PENDING = "pending"
    MEMBER = "member"
    ADMIN = "admin"


class MembershipAction(enum.StrEnum):
    REQUEST = "request"
    APPROVE = "approve"
    DENY = "deny"
    GRANT_ADMIN = "grant-admin"
    REVOKE = "revoke"


OpportunityRef = HasCode | str | None


def _add(roles: MutableSet[str], *names: str) -> None:
    roles.update(names)


def _remove(roles: MutableSet[str], *names: str) -> None:
    for name in names:
        roles.discard(name)


def set_member(opportunity: OpportunityRef, roles: MutableSet[str]) -> None:
    _add(roles, member_role(opportunity))


def set_admin(opportunity: OpportunityRef, roles: MutableSet[str]) -> None:
    """Grant admin. Admin is additive: the member role is granted too."""
    _add(roles, member_role(opportunity), admin_role(opportunity))


def set_request(opportunity: OpportunityRef, roles: MutableSet[str]) -> None:
    _add(roles, request_role(opportunity))


def unset_member(opportunity: OpportunityRef, roles: MutableSet[str]) -> None:
    _remove(roles, member_role(opportunity))


def unset_admin(opportunity: OpportunityRef, roles: MutableSet[str]) -> None:
    """Remove both the admin and member roles."""
    _remove(roles, member_role(opportunity), admin_role(opportunity))


def unset_request(opportunity: OpportunityRef, roles: MutableSet[str]) -> None:
    _remove(roles, request_role(opportunity))


def approve(opportunity: OpportunityRef, roles: MutableSet[str]) -> None:
    unset_request(opportunity, roles)
    set_member(opportunity, roles)


def deny(opportunity: OpportunityRef, roles: MutableSet[str]) -> None:
    # Member is removed as well, even though deny normally runs from pending.
    unset_request(opportunity, roles)
    unset_member(opportunity, roles)


def revoke(opportunity: OpportunityRef, roles: MutableSet[str]) -> None:
    unset_admin(opportunity, roles)


_ACTION_OPERATIONS = {
    MembershipAction.REQUEST: set_request,
    MembershipAction.APPROVE: approve,
    MembershipAction.DENY: deny,
    MembershipAction.GRANT_ADMIN: set_admin,
    MembershipAction.REVOKE: revoke,
}


def state_from_roles(opportunity: OpportunityRef, roles: Iterable[str]) -> MembershipState:
    """Project a role set onto a single state (admin > member > pending > none)."""
    role_set = set(roles)
    if admin_role(opportunity) in role_set:
        return MembershipState.ADMIN
    if member_role(opportunity) in role_set:
        return MembershipState.MEMBER
    if request_role(opportunity) in role_set:
        return MembershipState.PENDING
    return MembershipState.NONE


def roles_for_state(opportunity: OpportunityRef, state: MembershipState | str) -> set[str]:
    """Return the role strings that express ``state`` for this opportunity."""
    roles: set[str] = set()
    state = MembershipState(state)
    if state is MembershipState.ADMIN:
        set_admin(opportunity, roles)
    elif state is MembershipState.MEMBER:
        set_member(opportunity, roles)
    elif state is MembershipState.PENDING:
        set_request(opportunity, roles)
    return roles


def apply_action(
    opportunity: OpportunityRef,
    state: MembershipState | str,
    action: MembershipAction | str,
) -> MembershipState:
    """Compute the state reached by running ``action`` from ``state``.

    The action's role operations run against the roles of the current state
    and the result is projected back, so for example approving an admin
    leaves them an admin and requesting as a member changes nothing. Denying
    an admin also leaves them an admin: the lone admin role that remains has
    no state of its own and projects back to ADMIN.
    """
    roles = roles_for_state(opportunity, state)
    _ACTION_OPERATIONS[MembershipAction(action)](opportunity, roles)
    return state_from_roles(opportunity, roles)
