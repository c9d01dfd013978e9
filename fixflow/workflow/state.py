from __future__ import annotations

from enum import Enum


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    AWAITING_CREATOR_RESPONSE = "AWAITING_CREATOR_RESPONSE"
    UPDATED_SUBMITTED = "UPDATED_SUBMITTED"
    COST_ESTIMATION_NEEDED = "COST_ESTIMATION_NEEDED"
    COST_ESTIMATION_APPROVAL_NEEDED = "COST_ESTIMATION_APPROVAL_NEEDED"
    COST_ESTIMATION_APPROVED = "COST_ESTIMATION_APPROVED"
    WORK_ORDER_IN_PROGRESS = "WORK_ORDER_IN_PROGRESS"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"
    ARCHIVED = "ARCHIVED"

    @property
    def is_terminal(self) -> bool:
        return self in TICKET_TERMINAL_STATES


class TicketAction(str, Enum):
    """Actions that move a ticket between states."""

    SUBMIT = "SUBMIT"
    REQUEST_INFO = "REQUEST_INFO"
    RESUBMIT = "RESUBMIT"
    APPROVE_FOR_ESTIMATION = "APPROVE_FOR_ESTIMATION"
    REJECT = "REJECT"
    RECORD_ESTIMATION = "RECORD_ESTIMATION"
    APPROVE = "APPROVE"
    RETURN_ESTIMATION = "RETURN_ESTIMATION"
    START_WORK = "START_WORK"
    ARCHIVE = "ARCHIVE"
    WORK_ORDER_REJECTED = "WORK_ORDER_REJECTED"
    WITHDRAW = "WITHDRAW"


class WorkOrderStatus(str, Enum):
    """Supported states for a work order's lifecycle."""

    CREATED = "CREATED"
    ACCEPTED_TECHNICIAN_ASSIGNED = "ACCEPTED_TECHNICIAN_ASSIGNED"
    SERVICE_IN_PROGRESS = "SERVICE_IN_PROGRESS"
    SERVICE_COMPLETED = "SERVICE_COMPLETED"
    FOLLOW_UP_REQUESTED = "FOLLOW_UP_REQUESTED"
    NEW_WO_NEEDED = "NEW_WO_NEEDED"
    REPAIR_UNSUCCESSFUL = "REPAIR_UNSUCCESSFUL"
    COST_PROPOSAL_PREPARED = "COST_PROPOSAL_PREPARED"
    COST_REVISION_REQUESTED = "COST_REVISION_REQUESTED"
    COST_PROPOSAL_APPROVED = "COST_PROPOSAL_APPROVED"
    CLOSED_WITHOUT_COST = "CLOSED_WITHOUT_COST"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self in WORK_ORDER_TERMINAL_STATES

    @property
    def is_closed(self) -> bool:
        # superseded work orders are frozen but leave the ticket running
        return self in WORK_ORDER_TERMINAL_STATES or self is WorkOrderStatus.NEW_WO_NEEDED


class WorkOrderAction(str, Enum):
    """Actions that move a work order between states."""

    CREATE = "CREATE"
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"
    RETURN_FOR_CLARIFICATION = "RETURN_FOR_CLARIFICATION"
    RESEND_TO_VENDOR = "RESEND_TO_VENDOR"
    START_VISIT = "START_VISIT"
    COMPLETE_VISIT = "COMPLETE_VISIT"
    REQUEST_FOLLOW_UP = "REQUEST_FOLLOW_UP"
    REPORT_UNSUCCESSFUL = "REPORT_UNSUCCESSFUL"
    SCHEDULE_FOLLOW_UP = "SCHEDULE_FOLLOW_UP"
    REQUEST_NEW_WORK_ORDER = "REQUEST_NEW_WORK_ORDER"
    PREPARE_COST_PROPOSAL = "PREPARE_COST_PROPOSAL"
    APPROVE_COST_PROPOSAL = "APPROVE_COST_PROPOSAL"
    REQUEST_COST_REVISION = "REQUEST_COST_REVISION"
    CLOSE_WITHOUT_COST = "CLOSE_WITHOUT_COST"
    CANCEL = "CANCEL"


class VisitOutcome(str, Enum):
    """Repair outcome recorded when a technician ends a visit."""

    SUCCESS = "SUCCESS"
    FOLLOW_UP_NEEDED = "FOLLOW_UP_NEEDED"
    UNSUCCESSFUL = "UNSUCCESSFUL"


class ApprovalDecision(str, Enum):
    """Decision recorded in a ticket's approval history."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RETURNED = "RETURNED"


TICKET_TERMINAL_STATES: frozenset[TicketStatus] = frozenset(
    {TicketStatus.REJECTED, TicketStatus.WITHDRAWN, TicketStatus.ARCHIVED}
)

WORK_ORDER_TERMINAL_STATES: frozenset[WorkOrderStatus] = frozenset(
    {
        WorkOrderStatus.COST_PROPOSAL_APPROVED,
        WorkOrderStatus.CLOSED_WITHOUT_COST,
        WorkOrderStatus.REJECTED,
    }
)
