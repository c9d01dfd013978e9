"""Approval decisions on a ticket's cost estimation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from . import ticket_lifecycle
from .approval import Approver, NextApprover, is_valid_approver, next_approver, required_approvers
from .directory import UserDirectory
from .errors import NoEstimationPendingError, UnauthorizedError
from .models import Actor, ApprovalRecord, SideEffect, SideEffectKind, Ticket, TicketChange
from .roles import Role
from .state import ApprovalDecision, TicketAction, TicketStatus

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


@dataclass(frozen=True, slots=True)
class ApprovalOutcome:
    """New ticket snapshot plus the instructions for the caller.

    ``next_approver`` is set while the chain still has roles to consult.
    """

    ticket: Ticket
    change: TicketChange
    side_effects: tuple[SideEffect, ...] = ()
    next_approver: Approver | None = None


class ApprovalGate:
    """Validate approvers and walk the amount-derived chain one step per call.

    Calls are not idempotent: every accepted approval consumes one step of
    the chain, so callers must deliver each decision at most once.
    """

    def __init__(self, directory: UserDirectory) -> None:
        self._directory = directory

    def handle_approval_decision(
        self,
        ticket: Ticket,
        acting_user_id: str,
        acting_role: Role,
        decision: Decision,
        *,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> ApprovalOutcome:
        estimation = ticket.cost_estimation
        if estimation is None or ticket.status is not TicketStatus.COST_ESTIMATION_APPROVAL_NEEDED:
            raise NoEstimationPendingError(ticket.id)
        if not is_valid_approver(ticket, acting_user_id, acting_role):
            raise UnauthorizedError(acting_user_id, ticket.current_owner_user_id)

        actor = Actor(user_id=acting_user_id, role=acting_role)
        if Decision(decision) is Decision.REJECT:
            change = ticket_lifecycle.reject_ticket(ticket, actor, reason=reason, now=now)
            logger.info("Ticket %s estimation rejected by %s (%s)", ticket.id, acting_user_id, acting_role.value)
            return ApprovalOutcome(ticket=change.ticket, change=change)

        rule = ticket_lifecycle.check_transition(ticket, TicketAction.APPROVE, actor)
        timestamp = now or datetime.now(timezone.utc)
        history = ticket.approval_history + (
            ApprovalRecord(
                role=acting_role,
                user_id=acting_user_id,
                decision=ApprovalDecision.APPROVED,
                decided_at=timestamp,
                reason=reason,
            ),
        )
        chain = required_approvers(estimation.estimated_amount)
        step: NextApprover = next_approver(chain, ticket.scope, acting_role, self._directory)

        if isinstance(step, Approver):
            change = ticket_lifecycle.apply_transition(
                ticket,
                rule,
                status=TicketStatus.COST_ESTIMATION_APPROVAL_NEEDED,
                now=timestamp,
                current_owner_user_id=step.user_id,
                approval_history=history,
            )
            logger.info(
                "Ticket %s approved by %s; next approver %s (%s)",
                ticket.id,
                acting_role.value,
                step.user_id,
                step.role.value,
            )
            return ApprovalOutcome(ticket=change.ticket, change=change, next_approver=step)

        estimator = ticket_lifecycle.resolve_assignee(self._directory, ticket, Role.AREA_MAINTENANCE_MANAGER)
        effects = (SideEffect(SideEffectKind.CREATE_WORK_ORDER, ticket.id),)
        change = ticket_lifecycle.apply_transition(
            ticket,
            rule,
            now=timestamp,
            side_effects=effects,
            current_owner_user_id=estimator,
            approval_history=history,
        )
        logger.info("Ticket %s approval chain complete (%d approvals)", ticket.id, len(chain))
        return ApprovalOutcome(ticket=change.ticket, change=change, side_effects=effects)
