"""Request and response models shared by the ticket and work-order routers."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from fixflow.services.repository import AuditEntry
from fixflow.workflow.approval import Approver
from fixflow.workflow.gate import ApprovalOutcome, Decision
from fixflow.workflow.models import (
    ApprovalChainState,
    SideEffect,
    SideEffectKind,
    Ticket,
    TicketChange,
    WorkOrder,
    WorkOrderChange,
)
from fixflow.workflow.roles import Role
from fixflow.workflow.state import (
    ApprovalDecision,
    TicketAction,
    TicketStatus,
    VisitOutcome,
    WorkOrderAction,
    WorkOrderStatus,
)


class ApprovalRecordModel(BaseModel):
    role: Role
    user_id: str
    decision: ApprovalDecision
    decided_at: str
    reason: str | None = None


class CostEstimationModel(BaseModel):
    estimated_amount: Decimal
    estimated_by_user_id: str
    estimated_at: str


class TicketModel(BaseModel):
    id: str
    company_id: str
    region_id: str
    store_id: str
    created_by_user_id: str
    title: str
    description: str
    urgent: bool
    status: TicketStatus
    current_owner_user_id: str | None = None
    info_requested_by_user_id: str | None = None
    cost_estimation: CostEstimationModel | None = None
    approval_history: list[ApprovalRecordModel] = Field(default_factory=list)
    version: int
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketModel":
        estimation = ticket.cost_estimation
        return cls(
            id=ticket.id,
            company_id=ticket.company_id,
            region_id=ticket.region_id,
            store_id=ticket.store_id,
            created_by_user_id=ticket.created_by_user_id,
            title=ticket.title,
            description=ticket.description,
            urgent=ticket.urgent,
            status=ticket.status,
            current_owner_user_id=ticket.current_owner_user_id,
            info_requested_by_user_id=ticket.info_requested_by_user_id,
            cost_estimation=(
                CostEstimationModel(
                    estimated_amount=estimation.estimated_amount,
                    estimated_by_user_id=estimation.estimated_by_user_id,
                    estimated_at=estimation.estimated_at.isoformat(),
                )
                if estimation
                else None
            ),
            approval_history=[
                ApprovalRecordModel(
                    role=record.role,
                    user_id=record.user_id,
                    decision=record.decision,
                    decided_at=record.decided_at.isoformat(),
                    reason=record.reason,
                )
                for record in ticket.approval_history
            ],
            version=ticket.version,
            created_at=ticket.created_at.isoformat(),
            updated_at=ticket.updated_at.isoformat(),
        )


class VisitModel(BaseModel):
    technician_user_id: str
    started_at: str
    ended_at: str | None = None
    outcome: VisitOutcome | None = None
    note: str | None = None


class WorkOrderModel(BaseModel):
    id: str
    ticket_id: str
    vendor_company_id: str
    status: WorkOrderStatus
    current_owner_user_id: str | None = None
    assigned_technician_id: str | None = None
    scheduled_at: str | None = None
    visits: list[VisitModel] = Field(default_factory=list)
    cost_proposal: Decimal | None = None
    revision_count: int
    previous_work_order_id: str | None = None
    version: int
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, work_order: WorkOrder) -> "WorkOrderModel":
        return cls(
            id=work_order.id,
            ticket_id=work_order.ticket_id,
            vendor_company_id=work_order.vendor_company_id,
            status=work_order.status,
            current_owner_user_id=work_order.current_owner_user_id,
            assigned_technician_id=work_order.assigned_technician_id,
            scheduled_at=work_order.scheduled_at.isoformat() if work_order.scheduled_at else None,
            visits=[
                VisitModel(
                    technician_user_id=visit.technician_user_id,
                    started_at=visit.started_at.isoformat(),
                    ended_at=visit.ended_at.isoformat() if visit.ended_at else None,
                    outcome=visit.outcome,
                    note=visit.note,
                )
                for visit in work_order.visits
            ],
            cost_proposal=work_order.cost_proposal,
            revision_count=work_order.revision_count,
            previous_work_order_id=work_order.previous_work_order_id,
            version=work_order.version,
            created_at=work_order.created_at.isoformat(),
            updated_at=work_order.updated_at.isoformat(),
        )


class SideEffectModel(BaseModel):
    kind: SideEffectKind
    ticket_id: str
    work_order_id: str | None = None

    @classmethod
    def from_entity(cls, effect: SideEffect) -> "SideEffectModel":
        return cls(kind=effect.kind, ticket_id=effect.ticket_id, work_order_id=effect.work_order_id)


class ApprovalChainModel(BaseModel):
    required: list[Role]
    approved: list[Role]
    pending_role: Role | None = None
    complete: bool

    @classmethod
    def from_state(cls, state: ApprovalChainState | None) -> "ApprovalChainModel | None":
        if state is None:
            return None
        return cls(
            required=list(state.required),
            approved=list(state.approved),
            pending_role=state.pending_role,
            complete=state.complete,
        )


class ApproverModel(BaseModel):
    role: Role
    user_id: str
    user_name: str
    is_last_approver: bool

    @classmethod
    def from_entity(cls, approver: Approver | None) -> "ApproverModel | None":
        if approver is None:
            return None
        return cls(
            role=approver.role,
            user_id=approver.user_id,
            user_name=approver.user_name,
            is_last_approver=approver.is_last_approver,
        )


class TicketDetailModel(TicketModel):
    work_orders: list[WorkOrderModel] = Field(default_factory=list)
    approval_chain: ApprovalChainModel | None = None


class TicketChangeModel(BaseModel):
    ticket: TicketModel
    action: TicketAction
    from_status: TicketStatus
    to_status: TicketStatus
    side_effects: list[SideEffectModel] = Field(default_factory=list)
    cancelled_work_order: WorkOrderModel | None = None

    @classmethod
    def from_change(cls, change: TicketChange) -> "TicketChangeModel":
        return cls(
            ticket=TicketModel.from_entity(change.ticket),
            action=change.action,
            from_status=change.from_status,
            to_status=change.to_status,
            side_effects=[SideEffectModel.from_entity(effect) for effect in change.side_effects],
            cancelled_work_order=(
                WorkOrderModel.from_entity(change.cancelled_work_order) if change.cancelled_work_order else None
            ),
        )


class ApprovalOutcomeModel(BaseModel):
    ticket: TicketModel
    side_effects: list[SideEffectModel] = Field(default_factory=list)
    next_approver: ApproverModel | None = None

    @classmethod
    def from_outcome(cls, outcome: ApprovalOutcome) -> "ApprovalOutcomeModel":
        return cls(
            ticket=TicketModel.from_entity(outcome.ticket),
            side_effects=[SideEffectModel.from_entity(effect) for effect in outcome.side_effects],
            next_approver=ApproverModel.from_entity(outcome.next_approver),
        )


class WorkOrderChangeModel(BaseModel):
    work_order: WorkOrderModel
    action: WorkOrderAction
    from_status: WorkOrderStatus | None = None
    to_status: WorkOrderStatus
    path: list[WorkOrderStatus] = Field(default_factory=list)
    side_effects: list[SideEffectModel] = Field(default_factory=list)
    ticket: TicketModel | None = None

    @classmethod
    def from_change(cls, change: WorkOrderChange) -> "WorkOrderChangeModel":
        return cls(
            work_order=WorkOrderModel.from_entity(change.work_order),
            action=change.action,
            from_status=change.from_status,
            to_status=change.to_status,
            path=list(change.path),
            side_effects=[SideEffectModel.from_entity(effect) for effect in change.side_effects],
            ticket=TicketModel.from_entity(change.ticket_change.ticket) if change.ticket_change else None,
        )


class AuditEntryModel(BaseModel):
    id: str
    entity_type: str
    entity_id: str
    action: str
    actor: str
    from_status: str | None = None
    to_status: str | None = None
    note: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str

    @classmethod
    def from_entity(cls, entry: AuditEntry) -> "AuditEntryModel":
        return cls(
            id=entry.id,
            entity_type=entry.entity_type.value,
            entity_id=entry.entity_id,
            action=entry.action,
            actor=entry.actor,
            from_status=entry.from_status,
            to_status=entry.to_status,
            note=entry.note,
            metadata=dict(entry.metadata),
            created_at=entry.created_at.isoformat(),
        )


class TicketCreateRequest(BaseModel):
    company_id: str = Field(min_length=1)
    region_id: str = Field(min_length=1)
    store_id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(default="")
    urgent: bool = Field(default=False)


class NoteRequest(BaseModel):
    note: str | None = None


class ReasonRequest(BaseModel):
    reason: str | None = None


class ResubmitRequest(BaseModel):
    description: str | None = None
    note: str | None = None


class AmountRequest(BaseModel):
    amount: Decimal


class ApprovalDecisionRequest(BaseModel):
    decision: Decision
    reason: str | None = None


class WorkOrderCreateRequest(BaseModel):
    vendor_company_id: str = Field(min_length=1)


class AcceptWorkOrderRequest(BaseModel):
    technician_id: str | None = None
    scheduled_at: datetime | None = None


class CompleteVisitRequest(BaseModel):
    outcome: VisitOutcome
    note: str | None = None


class ScheduleFollowUpRequest(BaseModel):
    scheduled_at: datetime
    technician_id: str | None = None
