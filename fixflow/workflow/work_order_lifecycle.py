"""Work-order state machine for the vendor side of a ticket.

Ownership alternates between the vendor (service admin, technician, finance
back office) and the ticket's area maintenance manager. Closed work orders
have no outgoing rules, so every action on them raises
:class:`IllegalTransitionError`.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Sequence

from . import ticket_lifecycle
from .directory import UserDirectory
from .errors import IllegalTransitionError, NoAssigneeAvailableError, UnauthorizedError
from .models import (
    Actor,
    SideEffect,
    SideEffectKind,
    Ticket,
    Visit,
    WorkOrder,
    WorkOrderChange,
    latest,
)
from .money import MoneyLike, to_positive_money
from .roles import Role
from .rules import TransitionRule, actions_for, authorize, build_table, find_rule
from .state import TicketAction, VisitOutcome, WorkOrderAction, WorkOrderStatus

logger = logging.getLogger(__name__)

_ADMIN = frozenset({Role.SERVICE_ADMIN})
_TECHNICIAN = frozenset({Role.TECHNICIAN})
_BACKOFFICE = frozenset({Role.FINANCE_BACKOFFICE})
_MAINTENANCE = frozenset({Role.AREA_MAINTENANCE_MANAGER})

WORK_ORDER_RULES = build_table(
    [
        TransitionRule(
            WorkOrderStatus.CREATED,
            WorkOrderAction.ACCEPT,
            WorkOrderStatus.ACCEPTED_TECHNICIAN_ASSIGNED,
            _ADMIN,
        ),
        TransitionRule(
            WorkOrderStatus.CREATED,
            WorkOrderAction.RETURN_FOR_CLARIFICATION,
            WorkOrderStatus.CREATED,
            _ADMIN,
        ),
        TransitionRule(
            WorkOrderStatus.CREATED,
            WorkOrderAction.RESEND_TO_VENDOR,
            WorkOrderStatus.CREATED,
            _MAINTENANCE,
        ),
        TransitionRule(
            WorkOrderStatus.CREATED,
            WorkOrderAction.REJECT,
            WorkOrderStatus.REJECTED,
            _ADMIN | _MAINTENANCE,
        ),
        TransitionRule(
            WorkOrderStatus.CREATED,
            WorkOrderAction.CANCEL,
            WorkOrderStatus.REJECTED,
            requires_ownership=False,
        ),
        TransitionRule(
            WorkOrderStatus.ACCEPTED_TECHNICIAN_ASSIGNED,
            WorkOrderAction.START_VISIT,
            WorkOrderStatus.SERVICE_IN_PROGRESS,
            _TECHNICIAN,
        ),
        TransitionRule(
            WorkOrderStatus.SERVICE_IN_PROGRESS,
            WorkOrderAction.COMPLETE_VISIT,
            WorkOrderStatus.SERVICE_COMPLETED,
            _TECHNICIAN,
        ),
        TransitionRule(
            WorkOrderStatus.SERVICE_COMPLETED,
            WorkOrderAction.REQUEST_FOLLOW_UP,
            WorkOrderStatus.FOLLOW_UP_REQUESTED,
            _TECHNICIAN,
        ),
        TransitionRule(
            WorkOrderStatus.SERVICE_COMPLETED,
            WorkOrderAction.REPORT_UNSUCCESSFUL,
            WorkOrderStatus.REPAIR_UNSUCCESSFUL,
            _TECHNICIAN,
        ),
        TransitionRule(
            WorkOrderStatus.FOLLOW_UP_REQUESTED,
            WorkOrderAction.SCHEDULE_FOLLOW_UP,
            WorkOrderStatus.ACCEPTED_TECHNICIAN_ASSIGNED,
            _ADMIN,
        ),
        TransitionRule(
            WorkOrderStatus.FOLLOW_UP_REQUESTED,
            WorkOrderAction.REQUEST_NEW_WORK_ORDER,
            WorkOrderStatus.NEW_WO_NEEDED,
            _ADMIN,
        ),
        TransitionRule(
            WorkOrderStatus.REPAIR_UNSUCCESSFUL,
            WorkOrderAction.REQUEST_NEW_WORK_ORDER,
            WorkOrderStatus.NEW_WO_NEEDED,
            _MAINTENANCE,
        ),
        TransitionRule(
            WorkOrderStatus.REPAIR_UNSUCCESSFUL,
            WorkOrderAction.CLOSE_WITHOUT_COST,
            WorkOrderStatus.CLOSED_WITHOUT_COST,
            _MAINTENANCE,
        ),
        TransitionRule(
            WorkOrderStatus.SERVICE_COMPLETED,
            WorkOrderAction.PREPARE_COST_PROPOSAL,
            WorkOrderStatus.COST_PROPOSAL_PREPARED,
            _BACKOFFICE,
        ),
        TransitionRule(
            WorkOrderStatus.SERVICE_COMPLETED,
            WorkOrderAction.CLOSE_WITHOUT_COST,
            WorkOrderStatus.CLOSED_WITHOUT_COST,
            _BACKOFFICE,
        ),
        TransitionRule(
            WorkOrderStatus.COST_REVISION_REQUESTED,
            WorkOrderAction.PREPARE_COST_PROPOSAL,
            WorkOrderStatus.COST_PROPOSAL_PREPARED,
            _BACKOFFICE,
        ),
        TransitionRule(
            WorkOrderStatus.COST_PROPOSAL_PREPARED,
            WorkOrderAction.APPROVE_COST_PROPOSAL,
            WorkOrderStatus.COST_PROPOSAL_APPROVED,
            _MAINTENANCE,
        ),
        TransitionRule(
            WorkOrderStatus.COST_PROPOSAL_PREPARED,
            WorkOrderAction.REQUEST_COST_REVISION,
            WorkOrderStatus.COST_REVISION_REQUESTED,
            _MAINTENANCE,
        ),
        TransitionRule(
            WorkOrderStatus.COST_PROPOSAL_PREPARED,
            WorkOrderAction.REJECT,
            WorkOrderStatus.REJECTED,
            _MAINTENANCE,
        ),
        TransitionRule(
            WorkOrderStatus.COST_PROPOSAL_PREPARED,
            WorkOrderAction.CLOSE_WITHOUT_COST,
            WorkOrderStatus.CLOSED_WITHOUT_COST,
            _MAINTENANCE,
        ),
    ]
)

# visit outcomes that carry the work order past SERVICE_COMPLETED
_OUTCOME_FOLLOW_UPS: dict[VisitOutcome, WorkOrderAction] = {
    VisitOutcome.FOLLOW_UP_NEEDED: WorkOrderAction.REQUEST_FOLLOW_UP,
    VisitOutcome.UNSUCCESSFUL: WorkOrderAction.REPORT_UNSUCCESSFUL,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_open(work_order: WorkOrder) -> bool:
    return not work_order.status.is_closed


def is_cancellable(work_order: WorkOrder) -> bool:
    """Only a work order the vendor has not accepted yet may be cancelled."""

    return work_order.status is WorkOrderStatus.CREATED


def check_transition(work_order: WorkOrder, action: WorkOrderAction, actor: Actor | None) -> TransitionRule:
    rule = find_rule(WORK_ORDER_RULES, work_order.status, action)
    authorize(rule, actor, owner_id=work_order.current_owner_user_id)
    return rule


def _apply(
    work_order: WorkOrder,
    rule: TransitionRule,
    *,
    now: datetime | None,
    path: tuple[WorkOrderStatus, ...] = (),
    side_effects: tuple[SideEffect, ...] = (),
    ticket: Ticket | None = None,
    **changes: Any,
) -> WorkOrderChange:
    target = WorkOrderStatus(path[-1] if path else rule.target)
    if target.is_terminal:
        changes["current_owner_user_id"] = None
    timestamp = now or _utcnow()
    updated = replace(
        work_order,
        status=target,
        updated_at=timestamp,
        version=work_order.version + 1,
        **changes,
    )
    ticket_change = None
    if ticket is not None:
        ticket_change = ticket_lifecycle.roll_up_work_order(ticket, updated, now=timestamp)
    logger.debug(
        "Work order %s %s: %s -> %s (owner %s)",
        work_order.id,
        rule.action.value,
        work_order.status.value,
        target.value,
        updated.current_owner_user_id,
    )
    return WorkOrderChange(
        work_order=updated,
        action=rule.action,  # type: ignore[arg-type]
        from_status=work_order.status,
        to_status=target,
        path=path or (work_order.status, target),
        side_effects=side_effects,
        ticket_change=ticket_change,
    )


def _vendor_user(directory: UserDirectory, work_order: WorkOrder, role: Role) -> str:
    user = directory.resolve_user_for_role(work_order.vendor_company_id, role)
    if user is None:
        raise NoAssigneeAvailableError(role)
    return user.id


def _technician(directory: UserDirectory, work_order: WorkOrder, technician_id: str | None) -> str:
    if technician_id is None:
        return _vendor_user(directory, work_order, Role.TECHNICIAN)
    user = directory.get_user(technician_id)
    if (
        user is None
        or not user.active
        or user.role is not Role.TECHNICIAN
        or user.company_id != work_order.vendor_company_id
    ):
        raise UnauthorizedError(
            technician_id,
            None,
            detail=f"User {technician_id} is not an active technician of vendor {work_order.vendor_company_id}",
        )
    return user.id


def create_work_order(
    ticket: Ticket,
    actor: Actor,
    directory: UserDirectory,
    *,
    vendor_company_id: str,
    existing_work_orders: Sequence[WorkOrder] = (),
    work_order_id: str | None = None,
    now: datetime | None = None,
) -> WorkOrderChange:
    """Spawn a work order and move the ticket to WORK_ORDER_IN_PROGRESS.

    The returned change carries both snapshots; they must be committed
    together. A replacement work order links back to the most recent
    superseded one.
    """

    timestamp = now or _utcnow()
    ticket_change = ticket_lifecycle.start_work(ticket, actor, now=timestamp)
    siblings = [item for item in existing_work_orders if item.ticket_id == ticket.id]
    open_orders = [item for item in siblings if is_open(item)]
    if open_orders:
        raise IllegalTransitionError(
            ticket.status,
            TicketAction.START_WORK,
            detail=f"work order {open_orders[0].id} is still open",
        )
    owner = directory.resolve_user_for_role(vendor_company_id, Role.SERVICE_ADMIN)
    if owner is None:
        raise NoAssigneeAvailableError(Role.SERVICE_ADMIN)
    superseded = latest([item for item in siblings if item.status is WorkOrderStatus.NEW_WO_NEEDED])
    work_order = WorkOrder(
        id=work_order_id or str(uuid.uuid4()),
        ticket_id=ticket.id,
        vendor_company_id=vendor_company_id,
        status=WorkOrderStatus.CREATED,
        current_owner_user_id=owner.id,
        created_at=timestamp,
        updated_at=timestamp,
        previous_work_order_id=superseded.id if superseded else None,
    )
    logger.info(
        "Work order %s created for ticket %s (vendor %s, replaces %s)",
        work_order.id,
        ticket.id,
        vendor_company_id,
        work_order.previous_work_order_id,
    )
    return WorkOrderChange(
        work_order=work_order,
        action=WorkOrderAction.CREATE,
        from_status=None,
        to_status=WorkOrderStatus.CREATED,
        path=(WorkOrderStatus.CREATED,),
        ticket_change=ticket_change,
    )


def accept_work_order(
    work_order: WorkOrder,
    actor: Actor,
    directory: UserDirectory,
    *,
    technician_id: str | None = None,
    scheduled_at: datetime | None = None,
    now: datetime | None = None,
) -> WorkOrderChange:
    rule = check_transition(work_order, WorkOrderAction.ACCEPT, actor)
    technician = _technician(directory, work_order, technician_id)
    return _apply(
        work_order,
        rule,
        now=now,
        current_owner_user_id=technician,
        assigned_technician_id=technician,
        scheduled_at=scheduled_at,
    )


def return_for_clarification(
    work_order: WorkOrder,
    actor: Actor,
    directory: UserDirectory,
    ticket: Ticket,
    *,
    now: datetime | None = None,
) -> WorkOrderChange:
    """Hand an unaccepted work order back to the maintenance manager with questions."""

    rule = check_transition(work_order, WorkOrderAction.RETURN_FOR_CLARIFICATION, actor)
    owner = ticket_lifecycle.resolve_assignee(directory, ticket, Role.AREA_MAINTENANCE_MANAGER)
    return _apply(work_order, rule, now=now, current_owner_user_id=owner)


def resend_to_vendor(
    work_order: WorkOrder, actor: Actor, directory: UserDirectory, *, now: datetime | None = None
) -> WorkOrderChange:
    rule = check_transition(work_order, WorkOrderAction.RESEND_TO_VENDOR, actor)
    owner = _vendor_user(directory, work_order, Role.SERVICE_ADMIN)
    return _apply(work_order, rule, now=now, current_owner_user_id=owner)


def reject_work_order(
    work_order: WorkOrder, actor: Actor, ticket: Ticket, *, now: datetime | None = None
) -> WorkOrderChange:
    """Turn the work order down and reject the ticket with it.

    The service admin declines a new order, the maintenance manager declines
    a returned order or the vendor's cost proposal.
    """

    rule = check_transition(work_order, WorkOrderAction.REJECT, actor)
    return _apply(
        work_order,
        rule,
        now=now,
        ticket=ticket,
        side_effects=(SideEffect(SideEffectKind.REJECT_TICKET, work_order.ticket_id, work_order.id),),
    )


def cancel(work_order: WorkOrder, *, now: datetime | None = None) -> WorkOrderChange:
    if not is_cancellable(work_order):
        raise IllegalTransitionError(work_order.status, WorkOrderAction.CANCEL)
    rule = check_transition(work_order, WorkOrderAction.CANCEL, None)
    return _apply(work_order, rule, now=now)


def start_visit(work_order: WorkOrder, actor: Actor, *, now: datetime | None = None) -> WorkOrderChange:
    rule = check_transition(work_order, WorkOrderAction.START_VISIT, actor)
    timestamp = now or _utcnow()
    visit = Visit(technician_user_id=actor.user_id, started_at=timestamp)
    return _apply(work_order, rule, now=timestamp, visits=work_order.visits + (visit,))


def complete_visit(
    work_order: WorkOrder,
    actor: Actor,
    directory: UserDirectory,
    ticket: Ticket,
    *,
    outcome: VisitOutcome,
    note: str | None = None,
    now: datetime | None = None,
) -> WorkOrderChange:
    """Close the running visit and record its outcome.

    A successful visit waits in SERVICE_COMPLETED for the back office. A
    visit needing follow-up continues to FOLLOW_UP_REQUESTED for the service
    admin, an unsuccessful one to REPAIR_UNSUCCESSFUL for the maintenance
    manager.
    """

    rule = check_transition(work_order, WorkOrderAction.COMPLETE_VISIT, actor)
    timestamp = now or _utcnow()
    visits = work_order.visits
    if visits and visits[-1].ended_at is None:
        closed = replace(visits[-1], ended_at=timestamp, outcome=outcome, note=note)
        visits = visits[:-1] + (closed,)
    else:
        visits = visits + (
            Visit(
                technician_user_id=actor.user_id,
                started_at=timestamp,
                ended_at=timestamp,
                outcome=outcome,
                note=note,
            ),
        )

    path: tuple[WorkOrderStatus, ...] = (work_order.status, WorkOrderStatus.SERVICE_COMPLETED)
    follow_up = _OUTCOME_FOLLOW_UPS.get(outcome)
    if follow_up is None:
        owner = _vendor_user(directory, work_order, Role.FINANCE_BACKOFFICE)
    else:
        next_rule = find_rule(WORK_ORDER_RULES, WorkOrderStatus.SERVICE_COMPLETED, follow_up)
        authorize(next_rule, actor, owner_id=actor.user_id)
        path = path + (next_rule.target,)  # type: ignore[assignment]
        if follow_up is WorkOrderAction.REQUEST_FOLLOW_UP:
            owner = _vendor_user(directory, work_order, Role.SERVICE_ADMIN)
        else:
            owner = ticket_lifecycle.resolve_assignee(directory, ticket, Role.AREA_MAINTENANCE_MANAGER)
    return _apply(
        work_order,
        rule,
        now=timestamp,
        path=path,
        visits=visits,
        current_owner_user_id=owner,
    )


def schedule_follow_up(
    work_order: WorkOrder,
    actor: Actor,
    directory: UserDirectory,
    *,
    scheduled_at: datetime,
    technician_id: str | None = None,
    now: datetime | None = None,
) -> WorkOrderChange:
    rule = check_transition(work_order, WorkOrderAction.SCHEDULE_FOLLOW_UP, actor)
    technician = _technician(directory, work_order, technician_id or work_order.assigned_technician_id)
    return _apply(
        work_order,
        rule,
        now=now,
        current_owner_user_id=technician,
        assigned_technician_id=technician,
        scheduled_at=scheduled_at,
    )


def request_new_work_order(
    work_order: WorkOrder,
    actor: Actor,
    directory: UserDirectory,
    ticket: Ticket,
    *,
    now: datetime | None = None,
) -> WorkOrderChange:
    """Supersede this work order; the maintenance manager creates its replacement."""

    rule = check_transition(work_order, WorkOrderAction.REQUEST_NEW_WORK_ORDER, actor)
    owner = ticket_lifecycle.resolve_assignee(directory, ticket, Role.AREA_MAINTENANCE_MANAGER)
    return _apply(
        work_order,
        rule,
        now=now,
        current_owner_user_id=owner,
        side_effects=(SideEffect(SideEffectKind.REPLACE_WORK_ORDER, work_order.ticket_id, work_order.id),),
    )


def prepare_cost_proposal(
    work_order: WorkOrder,
    actor: Actor,
    directory: UserDirectory,
    ticket: Ticket,
    *,
    amount: MoneyLike,
    now: datetime | None = None,
) -> WorkOrderChange:
    rule = check_transition(work_order, WorkOrderAction.PREPARE_COST_PROPOSAL, actor)
    value = to_positive_money(amount)
    owner = ticket_lifecycle.resolve_assignee(directory, ticket, Role.AREA_MAINTENANCE_MANAGER)
    return _apply(work_order, rule, now=now, cost_proposal=value, current_owner_user_id=owner)


def approve_cost_proposal(
    work_order: WorkOrder, actor: Actor, ticket: Ticket, *, now: datetime | None = None
) -> WorkOrderChange:
    rule = check_transition(work_order, WorkOrderAction.APPROVE_COST_PROPOSAL, actor)
    return _apply(
        work_order,
        rule,
        now=now,
        ticket=ticket,
        side_effects=(SideEffect(SideEffectKind.ARCHIVE_TICKET, work_order.ticket_id, work_order.id),),
    )


def request_cost_revision(
    work_order: WorkOrder,
    actor: Actor,
    directory: UserDirectory,
    *,
    now: datetime | None = None,
) -> WorkOrderChange:
    """Send the proposal back to the vendor's back office.

    The loop is unbounded here; callers cap it if they need to.
    """

    rule = check_transition(work_order, WorkOrderAction.REQUEST_COST_REVISION, actor)
    owner = _vendor_user(directory, work_order, Role.FINANCE_BACKOFFICE)
    return _apply(
        work_order,
        rule,
        now=now,
        current_owner_user_id=owner,
        revision_count=work_order.revision_count + 1,
    )


def close_without_cost(
    work_order: WorkOrder, actor: Actor, ticket: Ticket, *, now: datetime | None = None
) -> WorkOrderChange:
    rule = check_transition(work_order, WorkOrderAction.CLOSE_WITHOUT_COST, actor)
    return _apply(
        work_order,
        rule,
        now=now,
        ticket=ticket,
        side_effects=(SideEffect(SideEffectKind.ARCHIVE_TICKET, work_order.ticket_id, work_order.id),),
    )


def available_actions(status: WorkOrderStatus, role: Role) -> list[WorkOrderAction]:
    hidden = {WorkOrderAction.REQUEST_FOLLOW_UP, WorkOrderAction.REPORT_UNSUCCESSFUL}
    return [
        action  # type: ignore[misc]
        for action in actions_for(WORK_ORDER_RULES, status, role)
        if action not in hidden
    ]
