from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Sequence

from .roles import Role
from .state import (
    ApprovalDecision,
    TicketAction,
    TicketStatus,
    VisitOutcome,
    WorkOrderAction,
    WorkOrderStatus,
)


@dataclass(frozen=True, slots=True)
class User:
    """Roster entry for an internal or vendor user."""

    id: str
    name: str
    role: Role
    company_id: str
    region_id: str | None = None
    store_id: str | None = None
    active: bool = True


@dataclass(frozen=True, slots=True)
class Actor:
    """Verified identity performing an action."""

    user_id: str
    role: Role


@dataclass(frozen=True, slots=True)
class TicketScope:
    """Organizational location a ticket belongs to."""

    company_id: str
    region_id: str
    store_id: str


@dataclass(frozen=True, slots=True)
class CostEstimation:
    estimated_amount: Decimal
    estimated_by_user_id: str
    estimated_at: datetime


@dataclass(frozen=True, slots=True)
class ApprovalRecord:
    """One decision taken by an approver on the current cost estimation."""

    role: Role
    user_id: str
    decision: ApprovalDecision
    decided_at: datetime
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class Ticket:
    """Immutable snapshot of a maintenance ticket."""

    id: str
    company_id: str
    region_id: str
    store_id: str
    created_by_user_id: str
    title: str
    description: str
    status: TicketStatus
    current_owner_user_id: str | None
    created_at: datetime
    updated_at: datetime
    urgent: bool = False
    info_requested_by_user_id: str | None = None
    cost_estimation: CostEstimation | None = None
    approval_history: tuple[ApprovalRecord, ...] = ()
    version: int = 1

    @property
    def scope(self) -> TicketScope:
        return TicketScope(company_id=self.company_id, region_id=self.region_id, store_id=self.store_id)


@dataclass(frozen=True, slots=True)
class Visit:
    """On-site technician visit."""

    technician_user_id: str
    started_at: datetime
    ended_at: datetime | None = None
    outcome: VisitOutcome | None = None
    note: str | None = None


@dataclass(frozen=True, slots=True)
class WorkOrder:
    """Immutable snapshot of the vendor-side execution of a ticket."""

    id: str
    ticket_id: str
    vendor_company_id: str
    status: WorkOrderStatus
    current_owner_user_id: str | None
    created_at: datetime
    updated_at: datetime
    assigned_technician_id: str | None = None
    scheduled_at: datetime | None = None
    visits: tuple[Visit, ...] = ()
    cost_proposal: Decimal | None = None
    revision_count: int = 0
    previous_work_order_id: str | None = None
    version: int = 1

    @property
    def last_visit(self) -> Visit | None:
        return self.visits[-1] if self.visits else None


class SideEffectKind(str, Enum):
    """Follow-up instructions the caller must carry out after a change."""

    CREATE_WORK_ORDER = "CREATE_WORK_ORDER"
    REPLACE_WORK_ORDER = "REPLACE_WORK_ORDER"
    ARCHIVE_TICKET = "ARCHIVE_TICKET"
    REJECT_TICKET = "REJECT_TICKET"


@dataclass(frozen=True, slots=True)
class SideEffect:
    kind: SideEffectKind
    ticket_id: str
    work_order_id: str | None = None


@dataclass(frozen=True, slots=True)
class TicketChange:
    """Result of a ticket transition: the new snapshot plus what happened."""

    ticket: Ticket
    action: TicketAction
    from_status: TicketStatus
    to_status: TicketStatus
    side_effects: tuple[SideEffect, ...] = ()
    cancelled_work_order: WorkOrder | None = None


@dataclass(frozen=True, slots=True)
class WorkOrderChange:
    """Result of a work-order transition.

    ``path`` lists every status traversed, starting with ``from_status``; a
    visit that ends with a follow-up request passes through
    ``SERVICE_COMPLETED`` on its way to ``FOLLOW_UP_REQUESTED``.
    """

    work_order: WorkOrder
    action: WorkOrderAction
    from_status: WorkOrderStatus | None
    to_status: WorkOrderStatus
    path: tuple[WorkOrderStatus, ...] = ()
    side_effects: tuple[SideEffect, ...] = ()
    ticket_change: TicketChange | None = None


@dataclass(frozen=True, slots=True)
class ApprovalChainState:
    """Derived view of where a ticket stands in its approval chain."""

    required: tuple[Role, ...]
    approved: tuple[Role, ...]
    pending_role: Role | None
    complete: bool


def latest(work_orders: Sequence[WorkOrder]) -> WorkOrder | None:
    if not work_orders:
        return None
    return max(work_orders, key=lambda item: (item.created_at, item.id))
