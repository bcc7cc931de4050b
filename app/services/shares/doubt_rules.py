"""Who may do what to a doubt thread, and how its status moves.

Pure functions over model rows, no session and no HTTP, so both the REST
routes and the socket handler share exactly the same rules.
"""

from app.core.enum import DoubtStatus, UserRole
from app.db.models.database import Doubts, User
from app.libs.formats.datetime import now as get_now


def is_admin(actor: User) -> bool:
    return actor.role == UserRole.ADMIN.value


def is_asker(actor: User, thread: Doubts) -> bool:
    return thread.user_id == actor.id


def is_assigned_instructor(actor: User, thread: Doubts) -> bool:
    return (
        thread.assigned_instructor_id is not None
        and thread.assigned_instructor_id == actor.id
    )


def is_responder(actor: User, thread: Doubts) -> bool:
    """Assigned instructor or admin: the people who answer doubts."""
    return is_admin(actor) or is_assigned_instructor(actor, thread)


def can_post(actor: User, thread: Doubts) -> bool:
    return is_asker(actor, thread) or is_responder(actor, thread)


def can_manage_status(actor: User, thread: Doubts) -> bool:
    return is_responder(actor, thread)


def parse_status(value: str | DoubtStatus) -> DoubtStatus:
    """Case-insensitive status parse. Raises ValueError on anything else."""
    if isinstance(value, DoubtStatus):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Invalid status: {value!r}")
    try:
        return DoubtStatus(value.strip().upper())
    except ValueError:
        allowed = ", ".join(s.value for s in DoubtStatus)
        raise ValueError(f"Invalid status '{value}'. Allowed: {allowed}")


def transition_status(thread: Doubts, target: str | DoubtStatus) -> DoubtStatus:
    # every status is reachable from every status
    new_status = parse_status(target)
    thread.status = new_status.value
    thread.updated_at = get_now()
    return new_status


def reopen_on_reply(actor: User, thread: Doubts) -> bool:
    """A responder reply to a resolved/closed thread opens it again.

    Returns True when the status changed.
    """
    if not is_responder(actor, thread):
        return False
    if thread.status == DoubtStatus.OPEN.value:
        return False
    thread.status = DoubtStatus.OPEN.value
    thread.updated_at = get_now()
    return True
