"""Role required per transition.

Authorization lives in the core rather than at the transport boundary: the
service calls ``authorize`` before any handler runs. Authentication (is
there a caller at all?) is the API layer's job and raises
UnauthenticatedError there.
"""
from __future__ import annotations

from imprest_workflow.kernel.errors import ForbiddenError, SelfApprovalError
from imprest_workflow.kernel.record import (
    ROLE_ACCOUNTANT,
    ROLE_ADMIN,
    ROLE_HOD,
    Actor,
    ImprestRecord,
)
from imprest_workflow.kernel.states import ImprestEvent, ImprestStatus

# Requester-owned events: only the person who raised the imprest may fire them.
_REQUESTER_EVENTS = frozenset(
    {ImprestEvent.CONFIRM_RECEIPT, ImprestEvent.DISPUTE_RECEIPT, ImprestEvent.SUBMIT_ACCOUNTING}
)

# Events an approver may never fire on their own request.
_MAKER_CHECKER_EVENTS = frozenset(
    {
        ImprestEvent.HOD_APPROVE,
        ImprestEvent.ACCOUNTANT_APPROVE,
        ImprestEvent.DISBURSE,
        ImprestEvent.VERIFY_ACCOUNTING,
    }
)

_EVENT_ROLES: dict[ImprestEvent, frozenset[str]] = {
    ImprestEvent.HOD_APPROVE: frozenset({ROLE_HOD, ROLE_ADMIN}),
    ImprestEvent.ACCOUNTANT_APPROVE: frozenset({ROLE_ACCOUNTANT, ROLE_ADMIN}),
    ImprestEvent.DISBURSE: frozenset({ROLE_ACCOUNTANT, ROLE_ADMIN}),
    ImprestEvent.VERIFY_ACCOUNTING: frozenset({ROLE_ACCOUNTANT, ROLE_ADMIN}),
    ImprestEvent.RESOLVE_DISPUTE: frozenset({ROLE_ADMIN}),
}

_REJECT_ROLES: dict[ImprestStatus, frozenset[str]] = {
    ImprestStatus.PENDING_HOD: frozenset({ROLE_HOD, ROLE_ADMIN}),
    ImprestStatus.PENDING_ACCOUNTANT: frozenset({ROLE_ACCOUNTANT, ROLE_ADMIN}),
}

PORTFOLIO_ROLES = frozenset({ROLE_HOD, ROLE_ACCOUNTANT, ROLE_ADMIN})


def required_roles(event: ImprestEvent, status: ImprestStatus) -> frozenset[str]:
    if event == ImprestEvent.REJECT:
        # Outside the two pending stages any approver may ask; the state check refuses it.
        return _REJECT_ROLES.get(status, frozenset({ROLE_HOD, ROLE_ACCOUNTANT, ROLE_ADMIN}))
    return _EVENT_ROLES.get(event, frozenset())


def is_requester(actor: Actor, record: ImprestRecord) -> bool:
    return actor.id == record.requester.id


def same_department(actor: Actor, record: ImprestRecord) -> bool:
    return (actor.department or "").strip().lower() == (record.department or "").strip().lower()


def require_hod_department(actor: Actor) -> None:
    """A HOD without a department has no scope at all."""
    if not (actor.department or "").strip():
        raise ForbiddenError(
            "a HOD must act for a department",
            details={"actor_id": actor.id, "role": actor.role},
        )


def authorize(actor: Actor, record: ImprestRecord, event: ImprestEvent) -> None:
    """Raise an AuthorizationError unless ``actor`` may fire ``event`` on ``record``."""
    event = ImprestEvent(event)
    if event in _REQUESTER_EVENTS:
        if not is_requester(actor, record):
            raise ForbiddenError(
                f"only the requester may {event} this imprest",
                details={"event": event.value, "actor_id": actor.id},
            )
        return

    roles = required_roles(event, record.status)
    if actor.role not in roles:
        raise ForbiddenError(
            f"role {actor.role!r} may not {event}",
            details={"event": event.value, "required_roles": sorted(roles)},
        )

    if event in _MAKER_CHECKER_EVENTS and is_requester(actor, record):
        raise SelfApprovalError(
            f"an approver cannot {event} their own imprest",
            details={"event": event.value, "actor_id": actor.id},
        )

    # HODs act only for their own department.
    hod_scoped = event == ImprestEvent.HOD_APPROVE or (
        event == ImprestEvent.REJECT and record.status == ImprestStatus.PENDING_HOD
    )
    if hod_scoped and actor.role == ROLE_HOD:
        require_hod_department(actor)
        if not same_department(actor, record):
            raise ForbiddenError(
                "HOD approval is limited to the HOD's own department",
                details={"actor_department": actor.department, "record_department": record.department},
            )


def can_view(actor: Actor, record: ImprestRecord) -> bool:
    if is_requester(actor, record) or actor.role in (ROLE_ACCOUNTANT, ROLE_ADMIN):
        return True
    if actor.role == ROLE_HOD:
        return bool((actor.department or "").strip()) and same_department(actor, record)
    return False


def authorize_portfolio(actor: Actor) -> None:
    if actor.role not in PORTFOLIO_ROLES:
        raise ForbiddenError(
            "listing all imprests requires an approver role",
            details={"required_roles": sorted(PORTFOLIO_ROLES)},
        )
    if actor.role == ROLE_HOD:
        require_hod_department(actor)
