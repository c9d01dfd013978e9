"""Ticket state machine.

Every operation takes an immutable :class:`Ticket` snapshot and returns a
:class:`TicketChange` carrying the next snapshot; the input is never touched.
Each (status, action) pair has exactly one rule in ``TICKET_RULES``. Pairs
without a rule raise :class:`IllegalTransitionError`.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Sequence

from .approval import Approver, is_valid_approver, next_approver, required_approvers
from .directory import UserDirectory
from .errors import (
    IllegalTransitionError,
    InvalidChainStateError,
    NoAssigneeAvailableError,
    UnauthorizedError,
)
from .models import Actor, ApprovalRecord, CostEstimation, SideEffect, Ticket, TicketChange, WorkOrder
from .money import MoneyLike, to_positive_money
from .roles import TICKET_CREATOR_ROLES, Role
from .rules import TransitionRule, actions_for, authorize, build_table, find_rule
from .state import (
    TICKET_TERMINAL_STATES,
    ApprovalDecision,
    TicketAction,
    TicketStatus,
    WorkOrderStatus,
)

logger = logging.getLogger(__name__)

_TRIAGE = frozenset({Role.AREA_MANAGER, Role.AREA_MAINTENANCE_MANAGER})
_ESTIMATOR = frozenset({Role.AREA_MAINTENANCE_MANAGER})
_CHAIN = frozenset(
    {Role.AREA_MANAGER, Role.SALES_DIRECTOR, Role.MAINTENANCE_DIRECTOR, Role.BOARD_OF_DIRECTORS}
)
_TRIAGE_STATES = (TicketStatus.SUBMITTED, TicketStatus.UPDATED_SUBMITTED)


def _rules() -> list[TransitionRule]:
    rules = [
        TransitionRule(TicketStatus.DRAFT, TicketAction.SUBMIT, TicketStatus.SUBMITTED, TICKET_CREATOR_ROLES),
        TransitionRule(
            TicketStatus.AWAITING_CREATOR_RESPONSE,
            TicketAction.RESUBMIT,
            TicketStatus.UPDATED_SUBMITTED,
            TICKET_CREATOR_ROLES,
        ),
        TransitionRule(
            TicketStatus.COST_ESTIMATION_NEEDED,
            TicketAction.REQUEST_INFO,
            TicketStatus.AWAITING_CREATOR_RESPONSE,
            _ESTIMATOR,
        ),
        TransitionRule(TicketStatus.COST_ESTIMATION_NEEDED, TicketAction.REJECT, TicketStatus.REJECTED, _ESTIMATOR),
        TransitionRule(
            TicketStatus.COST_ESTIMATION_NEEDED,
            TicketAction.RECORD_ESTIMATION,
            TicketStatus.COST_ESTIMATION_APPROVAL_NEEDED,
            _ESTIMATOR,
        ),
        TransitionRule(
            TicketStatus.COST_ESTIMATION_APPROVAL_NEEDED,
            TicketAction.APPROVE,
            TicketStatus.COST_ESTIMATION_APPROVED,
            _CHAIN,
        ),
        TransitionRule(
            TicketStatus.COST_ESTIMATION_APPROVAL_NEEDED, TicketAction.REJECT, TicketStatus.REJECTED, _CHAIN
        ),
        TransitionRule(
            TicketStatus.COST_ESTIMATION_APPROVAL_NEEDED,
            TicketAction.RETURN_ESTIMATION,
            TicketStatus.COST_ESTIMATION_NEEDED,
            _CHAIN,
        ),
        TransitionRule(
            TicketStatus.COST_ESTIMATION_APPROVED,
            TicketAction.START_WORK,
            TicketStatus.WORK_ORDER_IN_PROGRESS,
            _ESTIMATOR,
        ),
        TransitionRule(
            TicketStatus.WORK_ORDER_IN_PROGRESS,
            TicketAction.START_WORK,
            TicketStatus.WORK_ORDER_IN_PROGRESS,
            _ESTIMATOR,
        ),
        TransitionRule(
            TicketStatus.COST_ESTIMATION_NEEDED,
            TicketAction.START_WORK,
            TicketStatus.WORK_ORDER_IN_PROGRESS,
            _ESTIMATOR,
            urgent_only=True,
        ),
        TransitionRule(
            TicketStatus.SUBMITTED,
            TicketAction.ARCHIVE,
            TicketStatus.ARCHIVED,
            _ESTIMATOR,
            requires_ownership=False,
        ),
        TransitionRule(
            TicketStatus.COST_ESTIMATION_APPROVED,
            TicketAction.ARCHIVE,
            TicketStatus.ARCHIVED,
            _ESTIMATOR,
            requires_ownership=False,
        ),
        TransitionRule(
            TicketStatus.WORK_ORDER_IN_PROGRESS,
            TicketAction.ARCHIVE,
            TicketStatus.ARCHIVED,
            requires_ownership=False,
        ),
        TransitionRule(
            TicketStatus.WORK_ORDER_IN_PROGRESS,
            TicketAction.WORK_ORDER_REJECTED,
            TicketStatus.REJECTED,
            requires_ownership=False,
        ),
    ]
    for status in _TRIAGE_STATES:
        rules.extend(
            [
                TransitionRule(status, TicketAction.REQUEST_INFO, TicketStatus.AWAITING_CREATOR_RESPONSE, _TRIAGE),
                TransitionRule(
                    status, TicketAction.APPROVE_FOR_ESTIMATION, TicketStatus.COST_ESTIMATION_NEEDED, _TRIAGE
                ),
                TransitionRule(status, TicketAction.REJECT, TicketStatus.REJECTED, _TRIAGE),
                TransitionRule(
                    status,
                    TicketAction.START_WORK,
                    TicketStatus.WORK_ORDER_IN_PROGRESS,
                    _ESTIMATOR,
                    urgent_only=True,
                ),
            ]
        )
    for status in TicketStatus:
        if status in TICKET_TERMINAL_STATES:
            continue
        rules.append(
            TransitionRule(
                status,
                TicketAction.WITHDRAW,
                TicketStatus.WITHDRAWN,
                TICKET_CREATOR_ROLES,
                requires_ownership=False,
                creator_only=True,
            )
        )
    return rules


TICKET_RULES = build_table(_rules())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_transition(ticket: Ticket, action: TicketAction, actor: Actor | None) -> TransitionRule:
    """Return the rule for ``action`` after verifying ``actor`` may apply it."""

    rule = find_rule(TICKET_RULES, ticket.status, action)
    if rule.urgent_only and not ticket.urgent:
        raise IllegalTransitionError(
            ticket.status, action, detail="only urgent tickets may start work before estimation approval"
        )
    authorize(rule, actor, owner_id=ticket.current_owner_user_id, creator_id=ticket.created_by_user_id)
    return rule


def apply_transition(
    ticket: Ticket,
    rule: TransitionRule,
    *,
    status: TicketStatus | None = None,
    now: datetime | None = None,
    side_effects: tuple[SideEffect, ...] = (),
    **changes: Any,
) -> TicketChange:
    target = TicketStatus(status or rule.target)
    if target in TICKET_TERMINAL_STATES:
        changes["current_owner_user_id"] = None
    updated = replace(
        ticket,
        status=target,
        updated_at=now or _utcnow(),
        version=ticket.version + 1,
        **changes,
    )
    logger.debug(
        "Ticket %s %s: %s -> %s (owner %s)",
        ticket.id,
        rule.action.value,
        ticket.status.value,
        target.value,
        updated.current_owner_user_id,
    )
    return TicketChange(
        ticket=updated,
        action=rule.action,  # type: ignore[arg-type]
        from_status=ticket.status,
        to_status=target,
        side_effects=side_effects,
    )


def resolve_assignee(directory: UserDirectory, ticket: Ticket, role: Role) -> str:
    user = directory.resolve_user_for_role(
        ticket.company_id, role, region_id=ticket.region_id, store_id=ticket.store_id
    )
    if user is None:
        raise NoAssigneeAvailableError(role)
    return user.id


def create_ticket(
    actor: Actor,
    *,
    company_id: str,
    region_id: str,
    store_id: str,
    title: str,
    description: str,
    urgent: bool = False,
    ticket_id: str | None = None,
    now: datetime | None = None,
) -> Ticket:
    """Open a DRAFT ticket owned by its creator."""

    if actor.role not in TICKET_CREATOR_ROLES:
        raise UnauthorizedError(actor.user_id, None, detail=f"Role {actor.role.value} may not create tickets")
    if not title.strip():
        raise ValueError("Ticket title must not be empty")
    timestamp = now or _utcnow()
    return Ticket(
        id=ticket_id or str(uuid.uuid4()),
        company_id=company_id,
        region_id=region_id,
        store_id=store_id,
        created_by_user_id=actor.user_id,
        title=title.strip(),
        description=description,
        status=TicketStatus.DRAFT,
        current_owner_user_id=actor.user_id,
        created_at=timestamp,
        updated_at=timestamp,
        urgent=urgent,
    )


def submit_ticket(
    ticket: Ticket, actor: Actor, directory: UserDirectory, *, now: datetime | None = None
) -> TicketChange:
    """Hand a draft to triage: the area manager, or the maintenance manager when urgent."""

    rule = check_transition(ticket, TicketAction.SUBMIT, actor)
    triage_role = Role.AREA_MAINTENANCE_MANAGER if ticket.urgent else Role.AREA_MANAGER
    owner = resolve_assignee(directory, ticket, triage_role)
    return apply_transition(ticket, rule, now=now, current_owner_user_id=owner)


def request_info(ticket: Ticket, actor: Actor, *, now: datetime | None = None) -> TicketChange:
    rule = check_transition(ticket, TicketAction.REQUEST_INFO, actor)
    return apply_transition(
        ticket,
        rule,
        now=now,
        current_owner_user_id=ticket.created_by_user_id,
        info_requested_by_user_id=actor.user_id,
    )


def resubmit_ticket(
    ticket: Ticket,
    actor: Actor,
    directory: UserDirectory,
    *,
    description: str | None = None,
    now: datetime | None = None,
) -> TicketChange:
    """Return the updated ticket to whoever asked for more information."""

    rule = check_transition(ticket, TicketAction.RESUBMIT, actor)
    owner = ticket.info_requested_by_user_id or resolve_assignee(directory, ticket, Role.AREA_MANAGER)
    changes: dict[str, Any] = {"current_owner_user_id": owner, "info_requested_by_user_id": None}
    if description is not None:
        changes["description"] = description
    return apply_transition(ticket, rule, now=now, **changes)


def approve_for_estimation(
    ticket: Ticket, actor: Actor, directory: UserDirectory, *, now: datetime | None = None
) -> TicketChange:
    rule = check_transition(ticket, TicketAction.APPROVE_FOR_ESTIMATION, actor)
    owner = resolve_assignee(directory, ticket, Role.AREA_MAINTENANCE_MANAGER)
    return apply_transition(ticket, rule, now=now, current_owner_user_id=owner)


def reject_ticket(
    ticket: Ticket, actor: Actor, *, reason: str | None = None, now: datetime | None = None
) -> TicketChange:
    """Reject during triage, estimation or approval.

    While the estimation awaits approval only an approver of the
    amount-derived chain may reject, and the rejection is recorded in the
    approval history.
    """

    rule = check_transition(ticket, TicketAction.REJECT, actor)
    changes: dict[str, Any] = {}
    if ticket.status is TicketStatus.COST_ESTIMATION_APPROVAL_NEEDED:
        timestamp = now or _utcnow()
        _assert_chain_approver(ticket, actor)
        changes["approval_history"] = ticket.approval_history + (
            ApprovalRecord(
                role=actor.role,
                user_id=actor.user_id,
                decision=ApprovalDecision.REJECTED,
                decided_at=timestamp,
                reason=reason,
            ),
        )
        now = timestamp
    return apply_transition(ticket, rule, now=now, **changes)


def record_cost_estimation(
    ticket: Ticket,
    actor: Actor,
    amount: MoneyLike,
    directory: UserDirectory,
    *,
    now: datetime | None = None,
) -> TicketChange:
    """Record the estimate and route the ticket to the first approver.

    Any earlier approvals are discarded: the chain always restarts for the
    new amount.
    """

    rule = check_transition(ticket, TicketAction.RECORD_ESTIMATION, actor)
    value = to_positive_money(amount)
    chain = required_approvers(value)
    approver = next_approver(chain, ticket.scope, None, directory)
    if not isinstance(approver, Approver):
        # a non-empty chain never completes before its first approval
        raise InvalidChainStateError(None, chain)
    timestamp = now or _utcnow()
    return apply_transition(
        ticket,
        rule,
        now=timestamp,
        current_owner_user_id=approver.user_id,
        cost_estimation=CostEstimation(
            estimated_amount=value,
            estimated_by_user_id=actor.user_id,
            estimated_at=timestamp,
        ),
        approval_history=(),
        info_requested_by_user_id=None,
    )


def return_estimation(
    ticket: Ticket,
    actor: Actor,
    directory: UserDirectory,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> TicketChange:
    """Send the estimate back to the maintenance manager for revision."""

    rule = check_transition(ticket, TicketAction.RETURN_ESTIMATION, actor)
    _assert_chain_approver(ticket, actor)
    owner = resolve_assignee(directory, ticket, Role.AREA_MAINTENANCE_MANAGER)
    timestamp = now or _utcnow()
    record = ApprovalRecord(
        role=actor.role,
        user_id=actor.user_id,
        decision=ApprovalDecision.RETURNED,
        decided_at=timestamp,
        reason=reason,
    )
    return apply_transition(
        ticket,
        rule,
        now=timestamp,
        current_owner_user_id=owner,
        approval_history=ticket.approval_history + (record,),
    )


def start_work(ticket: Ticket, actor: Actor, *, now: datetime | None = None) -> TicketChange:
    rule = check_transition(ticket, TicketAction.START_WORK, actor)
    return apply_transition(ticket, rule, now=now)


def archive_ticket(
    ticket: Ticket,
    actor: Actor,
    *,
    work_orders: Sequence[WorkOrder] = (),
    now: datetime | None = None,
) -> TicketChange:
    """Close a ticket that needs no further work on the maintenance manager's say.

    Tickets with running work orders are archived by the work-order roll-up
    instead.
    """

    rule = check_transition(ticket, TicketAction.ARCHIVE, actor)
    running = [item for item in work_orders if item.ticket_id == ticket.id and not item.status.is_closed]
    if running:
        raise IllegalTransitionError(
            ticket.status, TicketAction.ARCHIVE, detail=f"work order {running[0].id} is still open"
        )
    return apply_transition(ticket, rule, now=now, info_requested_by_user_id=None)


def roll_up_work_order(
    ticket: Ticket, work_order: WorkOrder, *, now: datetime | None = None
) -> TicketChange | None:
    """Mirror a work order's terminal outcome onto its ticket.

    Approved or cost-free completion archives the ticket, a vendor rejection
    rejects it. Any other status leaves the ticket untouched and returns
    ``None``.
    """

    if work_order.ticket_id != ticket.id:
        raise ValueError(f"Work order {work_order.id} does not belong to ticket {ticket.id}")
    if work_order.status in (WorkOrderStatus.COST_PROPOSAL_APPROVED, WorkOrderStatus.CLOSED_WITHOUT_COST):
        action = TicketAction.ARCHIVE
    elif work_order.status is WorkOrderStatus.REJECTED:
        action = TicketAction.WORK_ORDER_REJECTED
    else:
        return None
    rule = check_transition(ticket, action, None)
    return apply_transition(ticket, rule, now=now)


def withdraw_ticket(
    ticket: Ticket,
    actor: Actor,
    *,
    open_work_order: WorkOrder | None = None,
    now: datetime | None = None,
) -> TicketChange:
    """Withdraw a ticket on behalf of its creator.

    An open work order must still be cancellable; it is cancelled in the
    same change.
    """

    from . import work_order_lifecycle

    rule = check_transition(ticket, TicketAction.WITHDRAW, actor)
    timestamp = now or _utcnow()
    cancelled: WorkOrder | None = None
    if open_work_order is not None and work_order_lifecycle.is_open(open_work_order):
        if not work_order_lifecycle.is_cancellable(open_work_order):
            raise IllegalTransitionError(
                ticket.status,
                TicketAction.WITHDRAW,
                detail=(
                    f"work order {open_work_order.id} is {open_work_order.status.value} "
                    "and can no longer be cancelled"
                ),
            )
        cancelled = work_order_lifecycle.cancel(open_work_order, now=timestamp).work_order
    change = apply_transition(ticket, rule, now=timestamp, info_requested_by_user_id=None)
    if cancelled is None:
        return change
    return replace(change, cancelled_work_order=cancelled)


def available_actions(status: TicketStatus, role: Role, *, urgent: bool = False) -> list[TicketAction]:
    """Actions ``role`` may take on a ticket in ``status``, ownership aside."""

    actions: list[TicketAction] = []
    for action in actions_for(TICKET_RULES, status, role):
        rule = TICKET_RULES[(status, action)]
        if rule.urgent_only and not urgent:
            continue
        actions.append(action)  # type: ignore[arg-type]
    return actions


def _assert_chain_approver(ticket: Ticket, actor: Actor) -> None:
    if not is_valid_approver(ticket, actor.user_id, actor.role):
        raise UnauthorizedError(
            actor.user_id,
            ticket.current_owner_user_id,
            detail=f"Role {actor.role.value} is not an approver for this estimation",
        )
