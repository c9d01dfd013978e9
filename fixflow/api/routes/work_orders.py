from __future__ import annotations

from fastapi import APIRouter

from fixflow.api.schemas import (
    AcceptWorkOrderRequest,
    AmountRequest,
    CompleteVisitRequest,
    NoteRequest,
    ReasonRequest,
    ScheduleFollowUpRequest,
    WorkOrderChangeModel,
    WorkOrderModel,
)
from fixflow.dependencies.auth import CurrentActor
from fixflow.dependencies.workflow import WorkflowServiceDep

router = APIRouter(prefix="/work-orders", tags=["work-orders"])


@router.get("/{work_order_id}", response_model=WorkOrderModel)
async def get_work_order(work_order_id: str, service: WorkflowServiceDep, actor: CurrentActor) -> WorkOrderModel:
    work_order = await service.get_work_order(work_order_id)
    return WorkOrderModel.from_entity(work_order)


@router.post("/{work_order_id}/accept", response_model=WorkOrderChangeModel)
async def accept_work_order(
    work_order_id: str,
    payload: AcceptWorkOrderRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> WorkOrderChangeModel:
    change = await service.accept_work_order(
        work_order_id, actor, technician_id=payload.technician_id, scheduled_at=payload.scheduled_at
    )
    return WorkOrderChangeModel.from_change(change)


@router.post("/{work_order_id}/return-for-clarification", response_model=WorkOrderChangeModel)
async def return_for_clarification(
    work_order_id: str,
    payload: NoteRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> WorkOrderChangeModel:
    change = await service.return_for_clarification(work_order_id, actor, note=payload.note)
    return WorkOrderChangeModel.from_change(change)


@router.post("/{work_order_id}/resend-to-vendor", response_model=WorkOrderChangeModel)
async def resend_to_vendor(
    work_order_id: str,
    payload: NoteRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> WorkOrderChangeModel:
    change = await service.resend_to_vendor(work_order_id, actor, note=payload.note)
    return WorkOrderChangeModel.from_change(change)


@router.post("/{work_order_id}/reject", response_model=WorkOrderChangeModel)
async def reject_work_order(
    work_order_id: str,
    payload: ReasonRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> WorkOrderChangeModel:
    change = await service.reject_work_order(work_order_id, actor, reason=payload.reason)
    return WorkOrderChangeModel.from_change(change)


@router.post("/{work_order_id}/start-visit", response_model=WorkOrderChangeModel)
async def start_visit(work_order_id: str, service: WorkflowServiceDep, actor: CurrentActor) -> WorkOrderChangeModel:
    change = await service.start_visit(work_order_id, actor)
    return WorkOrderChangeModel.from_change(change)


@router.post("/{work_order_id}/complete-visit", response_model=WorkOrderChangeModel)
async def complete_visit(
    work_order_id: str,
    payload: CompleteVisitRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> WorkOrderChangeModel:
    change = await service.complete_visit(work_order_id, actor, outcome=payload.outcome, note=payload.note)
    return WorkOrderChangeModel.from_change(change)


@router.post("/{work_order_id}/schedule-follow-up", response_model=WorkOrderChangeModel)
async def schedule_follow_up(
    work_order_id: str,
    payload: ScheduleFollowUpRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> WorkOrderChangeModel:
    change = await service.schedule_follow_up(
        work_order_id, actor, scheduled_at=payload.scheduled_at, technician_id=payload.technician_id
    )
    return WorkOrderChangeModel.from_change(change)


@router.post("/{work_order_id}/request-new", response_model=WorkOrderChangeModel)
async def request_new_work_order(
    work_order_id: str,
    payload: ReasonRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> WorkOrderChangeModel:
    change = await service.request_new_work_order(work_order_id, actor, reason=payload.reason)
    return WorkOrderChangeModel.from_change(change)


@router.post("/{work_order_id}/cost-proposal", response_model=WorkOrderChangeModel)
async def prepare_cost_proposal(
    work_order_id: str,
    payload: AmountRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> WorkOrderChangeModel:
    change = await service.prepare_cost_proposal(work_order_id, actor, payload.amount)
    return WorkOrderChangeModel.from_change(change)


@router.post("/{work_order_id}/approve-cost-proposal", response_model=WorkOrderChangeModel)
async def approve_cost_proposal(
    work_order_id: str, service: WorkflowServiceDep, actor: CurrentActor
) -> WorkOrderChangeModel:
    change = await service.approve_cost_proposal(work_order_id, actor)
    return WorkOrderChangeModel.from_change(change)


@router.post("/{work_order_id}/request-cost-revision", response_model=WorkOrderChangeModel)
async def request_cost_revision(
    work_order_id: str,
    payload: ReasonRequest,
    service: WorkflowServiceDep,
    actor: CurrentActor,
) -> WorkOrderChangeModel:
    change = await service.request_cost_revision(work_order_id, actor, reason=payload.reason)
    return WorkOrderChangeModel.from_change(change)


@router.post("/{work_order_id}/close-without-cost", response_model=WorkOrderChangeModel)
async def close_without_cost(
    work_order_id: str, service: WorkflowServiceDep, actor: CurrentActor
) -> WorkOrderChangeModel:
    change = await service.close_without_cost(work_order_id, actor)
    return WorkOrderChangeModel.from_change(change)
