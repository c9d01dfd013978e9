from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, status

from fixflow.api.schemas import (
    AmountRequest,
    ApprovalChainModel,
    ApprovalDecisionRequest,
    ApprovalOutcomeModel,
    AuditEntryModel,
    NoteRequest,
    ReasonRequest,
    ResubmitRequest,
    TicketChangeModel,
    TicketCreateRequest,
    TicketDetailModel,
    TicketModel,
    WorkOrderChangeModel,
    WorkOrderCreateRequest,
    WorkOrderModel,
)
from fixflow.dependencies.auth import CurrentActor, TicketCreator
from fixflow.dependencies.workflow import WorkflowServiceDep
from fixflow.services.workflow import TicketDetails
from fixflow.workflow.state import TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])


def _detail_to_model(details: TicketDetails) -> TicketDetailModel:
    base = TicketModel.from_entity(details.ticket)
    return TicketDetailModel(
        **base.model_dump(),
        work_orders=[WorkOrderModel.from_entity(item) for item in details.work_orders],
        approval_chain=ApprovalChainModel.from_state(details.approval_chain),
    )


@router.get("", response_model=list[TicketModel], summary="List tickets")
async def list_tickets(
    service: WorkflowServiceDep,
    actor: CurrentActor,
    status_filter: Annotated[TicketStatus | None, Query(alias="status")] = None,
) -> list[TicketModel]:
    tickets = await service.list_tickets(status=status_filter)
    return [TicketModel.from_entity(item) for item in tickets]


@router.post("", response_model=TicketModel, status_code=status.HTTP_201_CREATED, summary="Open a draft ticket")
async def create_ticket(
    payload: TicketCreateRequest,
    service: WorkflowServiceDep,
    actor: TicketCreator,
) -> TicketModel:
    ticket = await service.create_ticket(
        actor,
        company_id=payload.company_id,
        region_id=payload.region_id,
        store_id=payload.store_id,
        title=payload.title,
        description=payload.description,
        urgent=payload.urgent,
    )
    return TicketModel.from_entity(ticket)


@router.get("/{ticket_id}", response_model=TicketDetailModel)
async def get_ticket(ticket_id: str, service: WorkflowServiceDep, actor: CurrentActor) -> TicketDetailModel:
    details = await service.get_ticket(ticket_id)
    return _detail_to_model(details)


@router.get("/{ticket_id}/audit", response_model=list[AuditEntryModel])
async def get_ticket_audit(
    ticket_id: str, service: WorkflowServiceDep, actor: CurrentActor
) -> list[AuditEntryModel]:
    entries = await service.get_audit_log(ticket_id)
    return [AuditEntryModel.from_entity(entry) for entry in entries]


@router.post("/{ticket_id}/submit", response_model=TicketChangeModel)
async def submit_ticket(ticket_id: str, service: WorkflowServiceDep, actor: CurrentActor) -> TicketChangeModel:
    change = await service.submit_ticket(ticket_id, actor)
    return TicketChangeModel.from_change(change)


@router.post("/{ticket_id}/request-info", response_model=TicketChangeModel)
async def request_info(
    ticket_id: str,
    payload: NoteRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> TicketChangeModel:
    change = await service.request_info(ticket_id, actor, note=payload.note)
    return TicketChangeModel.from_change(change)


@router.post("/{ticket_id}/resubmit", response_model=TicketChangeModel)
async def resubmit_ticket(
    ticket_id: str,
    payload: ResubmitRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> TicketChangeModel:
    change = await service.resubmit_ticket(ticket_id, actor, description=payload.description, note=payload.note)
    return TicketChangeModel.from_change(change)


@router.post("/{ticket_id}/approve-for-estimation", response_model=TicketChangeModel)
async def approve_for_estimation(
    ticket_id: str, service: WorkflowServiceDep, actor: CurrentActor
) -> TicketChangeModel:
    change = await service.approve_for_estimation(ticket_id, actor)
    return TicketChangeModel.from_change(change)


@router.post("/{ticket_id}/reject", response_model=TicketChangeModel)
async def reject_ticket(
    ticket_id: str,
    payload: ReasonRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> TicketChangeModel:
    change = await service.reject_ticket(ticket_id, actor, reason=payload.reason)
    return TicketChangeModel.from_change(change)


@router.post("/{ticket_id}/withdraw", response_model=TicketChangeModel)
async def withdraw_ticket(
    ticket_id: str,
    payload: ReasonRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> TicketChangeModel:
    change = await service.withdraw_ticket(ticket_id, actor, reason=payload.reason)
    return TicketChangeModel.from_change(change)


@router.post("/{ticket_id}/archive", response_model=TicketChangeModel)
async def archive_ticket(
    ticket_id: str,
    payload: ReasonRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> TicketChangeModel:
    change = await service.archive_ticket(ticket_id, actor, reason=payload.reason)
    return TicketChangeModel.from_change(change)


@router.post("/{ticket_id}/cost-estimation", response_model=TicketChangeModel)
async def record_cost_estimation(
    ticket_id: str,
    payload: AmountRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> TicketChangeModel:
    change = await service.record_cost_estimation(ticket_id, actor, payload.amount)
    return TicketChangeModel.from_change(change)


@router.post("/{ticket_id}/approval", response_model=ApprovalOutcomeModel)
async def decide_approval(
    ticket_id: str,
    payload: ApprovalDecisionRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> ApprovalOutcomeModel:
    outcome = await service.decide_approval(ticket_id, actor, payload.decision, reason=payload.reason)
    return ApprovalOutcomeModel.from_outcome(outcome)


@router.post("/{ticket_id}/return-estimation", response_model=TicketChangeModel)
async def return_estimation(
    ticket_id: str,
    payload: ReasonRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> TicketChangeModel:
    change = await service.return_estimation(ticket_id, actor, reason=payload.reason)
    return TicketChangeModel.from_change(change)


@router.post("/{ticket_id}/work-orders", response_model=WorkOrderChangeModel, status_code=status.HTTP_201_CREATED)
async def create_work_order(
    ticket_id: str,
    payload: WorkOrderCreateRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> WorkOrderChangeModel:
    change = await service.create_work_order(ticket_id, actor, vendor_company_id=payload.vendor_company_id)
    return WorkOrderChangeModel.from_change(change)
