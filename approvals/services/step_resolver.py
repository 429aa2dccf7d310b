"""Step Resolver — who may decide a step, and who should.

`can_act` is the authorisation predicate the state machine runs before
recording any decision. `suggest_approver` picks a concrete user to route a
designation step to by walking the requester's reporting line.

Designations are resolved at decision time: a user promoted into (or out
of) a designation gains (or loses) the right to decide pending steps
immediately.
"""

import logging

from approvals.integrations.directory import DirectoryAdapter
from approvals.models.process import DesignationApprover, ProcessStep, UserApprover

logger = logging.getLogger(__name__)

# Reporting lines deeper than this are treated as broken data.
MAX_CHAIN_DEPTH = 50


def can_act(step: ProcessStep, actor_user_id: int | None, directory: DirectoryAdapter) -> bool:
    """Return True if `actor_user_id` may decide `step`.

    User(u)        → actor is u.
    Designation(d) → actor's current designation is d. Unknown users
                     resolve to no designation and may not act.
    """
    if actor_user_id is None:
        return False

    approver = step.approver
    if isinstance(approver, UserApprover):
        return actor_user_id == approver.user_id
    if isinstance(approver, DesignationApprover):
        return directory.designation_of(actor_user_id) == approver.designation_id
    return False


def suggest_approver(step: ProcessStep, requester_id: int | None, directory: DirectoryAdapter) -> int | None:
    """Return the user a step should be routed to, or None.

    For a user step this is the bound user. For a designation step the
    requester's managers are walked upwards and the first one holding the
    designation wins; when nobody up the chain holds it the requester's
    direct manager is returned. The requester is never suggested for their
    own request.
    """
    approver = step.approver
    if isinstance(approver, UserApprover):
        return approver.user_id
    if requester_id is None:
        return None

    direct_manager = directory.manager_of(requester_id)
    visited = {requester_id}
    current = direct_manager
    depth = 0
    while current is not None and current not in visited and depth < MAX_CHAIN_DEPTH:
        if directory.designation_of(current) == approver.designation_id:
            return current
        visited.add(current)
        current = directory.manager_of(current)
        depth += 1

    if current is not None and current in visited:
        logger.warning(
            "Cycle in reporting line of user %s at user %s", requester_id, current,
            extra={"step_id": step.id},
        )
    return direct_manager
