"""
Task mutation permissions.

Admins may mutate any task in their workspace. Everyone else must be one
of the task's assignees. Assignees arrive either as member records or as
bare id strings; both the member id and the member's user id count as a
match for the actor.
"""
from typing import Iterable, Optional, Set, Union

from .schema import Member, MemberRole

Assignee = Union[Member, str, dict]


def assignee_identities(assignee: Assignee) -> Set[str]:
    """All identifiers an assignee record can be matched by."""
    if isinstance(assignee, Member):
        ids = {assignee.id, assignee.user_id}
    elif isinstance(assignee, dict):
        ids = {assignee.get("id"), assignee.get("userId"), assignee.get("$id")}
    else:
        ids = {assignee}
    return {i for i in ids if i}


def can_mutate(
    actor_id: Optional[str],
    assignees: Optional[Iterable[Assignee]],
    role: Optional[MemberRole] = None,
) -> bool:
    """True if ``actor_id`` may drag, edit or delete a task with ``assignees``."""
    if role == MemberRole.ADMIN:
        return True
    if not actor_id or not assignees:
        return False
    return any(actor_id in assignee_identities(a) for a in assignees)
