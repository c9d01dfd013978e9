"""Async orchestration of the workflow core.

Each call reads the current snapshots, builds a user directory from the
roster of the companies involved, lets the pure core decide, and commits the
resulting snapshots together with their audit entries in one transaction.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Iterable, Mapping, Sequence

from opentelemetry import trace

from fixflow.metrics import (
    ERRORS_TOTAL,
    OPERATION_DURATION_SECONDS,
    TRANSITIONS_TOTAL,
    MetricsRegistry,
    metrics_registry,
    register_default_metrics,
    track_duration,
)
from fixflow.services.repository import AuditEntry, EntityType, WorkflowRepository
from fixflow.workflow import ticket_lifecycle, work_order_lifecycle
from fixflow.workflow.approval import chain_state
from fixflow.workflow.directory import StaticUserDirectory
from fixflow.workflow.errors import (
    InvalidChainStateError,
    RevisionLimitExceededError,
    TicketNotFoundError,
    WorkflowError,
    WorkOrderNotFoundError,
)
from fixflow.workflow.gate import ApprovalGate, ApprovalOutcome, Decision
from fixflow.workflow.models import (
    Actor,
    ApprovalChainState,
    SideEffect,
    Ticket,
    TicketChange,
    WorkOrder,
    WorkOrderChange,
)
from fixflow.workflow.money import MoneyLike
from fixflow.workflow.state import TicketStatus, VisitOutcome

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SYSTEM_ACTOR = "system"


@dataclass(slots=True)
class TicketDetails:
    """Ticket together with its work orders and the derived approval chain."""

    ticket: Ticket
    work_orders: Sequence[WorkOrder]
    approval_chain: ApprovalChainState | None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowService:
    """Entry points for every ticket and work-order action."""

    def __init__(
        self,
        repository: WorkflowRepository,
        *,
        registry: MetricsRegistry | None = None,
        max_cost_revisions: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._registry = register_default_metrics(registry or metrics_registry)
        self._max_cost_revisions = max_cost_revisions
        self._clock = clock or _utcnow

    # -- reads -------------------------------------------------------------

    async def list_tickets(self, *, status: TicketStatus | None = None) -> Sequence[Ticket]:
        return await self._repository.list_tickets(status=status)

    async def get_ticket(self, ticket_id: str) -> TicketDetails:
        ticket = await self._load_ticket(ticket_id)
        work_orders = await self._repository.list_work_orders(ticket_id)
        return TicketDetails(ticket=ticket, work_orders=work_orders, approval_chain=chain_state(ticket))

    async def get_audit_log(self, ticket_id: str) -> Sequence[AuditEntry]:
        await self._load_ticket(ticket_id)
        return await self._repository.list_audit(ticket_id)

    async def get_work_order(self, work_order_id: str) -> WorkOrder:
        work_order = await self._repository.get_work_order(work_order_id)
        if work_order is None:
            raise WorkOrderNotFoundError(f"Work order {work_order_id} not found")
        return work_order

    # -- ticket lifecycle --------------------------------------------------

    async def create_ticket(
        self,
        actor: Actor,
        *,
        company_id: str,
        region_id: str,
        store_id: str,
        title: str,
        description: str,
        urgent: bool = False,
    ) -> Ticket:
        async with self._operation("create_ticket", actor=actor):
            ticket = ticket_lifecycle.create_ticket(
                actor,
                company_id=company_id,
                region_id=region_id,
                store_id=store_id,
                title=title,
                description=description,
                urgent=urgent,
                now=self._clock(),
            )
            await self._repository.commit(
                tickets=[ticket],
                audit=[
                    self._audit(
                        EntityType.TICKET,
                        ticket.id,
                        ticket.id,
                        "CREATE",
                        actor.user_id,
                        None,
                        ticket.status.value,
                        metadata={"urgent": urgent},
                    )
                ],
            )
            self._count_transition(EntityType.TICKET, "CREATE")
            logger.info("Ticket %s created by %s", ticket.id, actor.user_id)
            return ticket

    async def submit_ticket(self, ticket_id: str, actor: Actor) -> TicketChange:
        async with self._operation("submit_ticket", actor=actor, ticket_id=ticket_id):
            ticket = await self._load_ticket(ticket_id)
            directory = await self._directory([ticket.company_id])
            change = ticket_lifecycle.submit_ticket(ticket, actor, directory, now=self._clock())
            await self._commit_ticket(change, actor)
            return change

    async def request_info(self, ticket_id: str, actor: Actor, *, note: str | None = None) -> TicketChange:
        async with self._operation("request_info", actor=actor, ticket_id=ticket_id):
            ticket = await self._load_ticket(ticket_id)
            change = ticket_lifecycle.request_info(ticket, actor, now=self._clock())
            await self._commit_ticket(change, actor, note=note)
            return change

    async def resubmit_ticket(
        self, ticket_id: str, actor: Actor, *, description: str | None = None, note: str | None = None
    ) -> TicketChange:
        async with self._operation("resubmit_ticket", actor=actor, ticket_id=ticket_id):
            ticket = await self._load_ticket(ticket_id)
            directory = await self._directory([ticket.company_id])
            change = ticket_lifecycle.resubmit_ticket(
                ticket, actor, directory, description=description, now=self._clock()
            )
            await self._commit_ticket(change, actor, note=note)
            return change

    async def approve_for_estimation(self, ticket_id: str, actor: Actor) -> TicketChange:
        async with self._operation("approve_for_estimation", actor=actor, ticket_id=ticket_id):
            ticket = await self._load_ticket(ticket_id)
            directory = await self._directory([ticket.company_id])
            change = ticket_lifecycle.approve_for_estimation(ticket, actor, directory, now=self._clock())
            await self._commit_ticket(change, actor)
            return change

    async def reject_ticket(self, ticket_id: str, actor: Actor, *, reason: str | None = None) -> TicketChange:
        async with self._operation("reject_ticket", actor=actor, ticket_id=ticket_id):
            ticket = await self._load_ticket(ticket_id)
            change = ticket_lifecycle.reject_ticket(ticket, actor, reason=reason, now=self._clock())
            await self._commit_ticket(change, actor, note=reason)
            return change

    async def withdraw_ticket(self, ticket_id: str, actor: Actor, *, reason: str | None = None) -> TicketChange:
        async with self._operation("withdraw_ticket", actor=actor, ticket_id=ticket_id):
            ticket = await self._load_ticket(ticket_id)
            work_orders = await self._repository.list_work_orders(ticket_id)
            open_work_order = next((item for item in work_orders if work_order_lifecycle.is_open(item)), None)
            change = ticket_lifecycle.withdraw_ticket(
                ticket, actor, open_work_order=open_work_order, now=self._clock()
            )
            audit = [self._ticket_audit(change, actor.user_id, note=reason)]
            cancelled = change.cancelled_work_order
            if cancelled is not None and open_work_order is not None:
                audit.append(
                    self._audit(
                        EntityType.WORK_ORDER,
                        cancelled.id,
                        ticket_id,
                        "CANCEL",
                        actor.user_id,
                        open_work_order.status.value,
                        cancelled.status.value,
                        note=reason,
                    )
                )
            await self._repository.commit(
                tickets=[change.ticket],
                work_orders=[cancelled] if cancelled is not None else [],
                audit=audit,
            )
            self._count_transition(EntityType.TICKET, change.action.value)
            if cancelled is not None:
                self._count_transition(EntityType.WORK_ORDER, "CANCEL")
            logger.info("Ticket %s withdrawn by %s", ticket_id, actor.user_id)
            return change

    async def archive_ticket(self, ticket_id: str, actor: Actor, *, reason: str | None = None) -> TicketChange:
        async with self._operation("archive_ticket", actor=actor, ticket_id=ticket_id):
            ticket = await self._load_ticket(ticket_id)
            work_orders = await self._repository.list_work_orders(ticket_id)
            change = ticket_lifecycle.archive_ticket(ticket, actor, work_orders=work_orders, now=self._clock())
            await self._commit_ticket(change, actor, note=reason)
            return change

    async def record_cost_estimation(self, ticket_id: str, actor: Actor, amount: MoneyLike) -> TicketChange:
        async with self._operation("record_cost_estimation", actor=actor, ticket_id=ticket_id):
            ticket = await self._load_ticket(ticket_id)
            directory = await self._directory([ticket.company_id])
            change = ticket_lifecycle.record_cost_estimation(ticket, actor, amount, directory, now=self._clock())
            estimation = change.ticket.cost_estimation
            await self._commit_ticket(
                change,
                actor,
                metadata={"amount": str(estimation.estimated_amount) if estimation else None},
            )
            return change

    async def decide_approval(
        self,
        ticket_id: str,
        actor: Actor,
        decision: Decision,
        *,
        reason: str | None = None,
    ) -> ApprovalOutcome:
        async with self._operation("decide_approval", actor=actor, ticket_id=ticket_id):
            ticket = await self._load_ticket(ticket_id)
            directory = await self._directory([ticket.company_id])
            outcome = ApprovalGate(directory).handle_approval_decision(
                ticket,
                actor.user_id,
                actor.role,
                decision,
                reason=reason,
                now=self._clock(),
            )
            await self._commit_ticket(
                outcome.change,
                actor,
                note=reason,
                metadata={"decision": Decision(decision).value, "role": actor.role.value},
            )
            return outcome

    async def return_estimation(self, ticket_id: str, actor: Actor, *, reason: str | None = None) -> TicketChange:
        async with self._operation("return_estimation", actor=actor, ticket_id=ticket_id):
            ticket = await self._load_ticket(ticket_id)
            directory = await self._directory([ticket.company_id])
            change = ticket_lifecycle.return_estimation(ticket, actor, directory, reason=reason, now=self._clock())
            await self._commit_ticket(change, actor, note=reason)
            return change

    # -- work-order lifecycle ----------------------------------------------

    async def create_work_order(self, ticket_id: str, actor: Actor, *, vendor_company_id: str) -> WorkOrderChange:
        async with self._operation("create_work_order", actor=actor, ticket_id=ticket_id):
            ticket = await self._load_ticket(ticket_id)
            existing = await self._repository.list_work_orders(ticket_id)
            directory = await self._directory([ticket.company_id, vendor_company_id])
            change = work_order_lifecycle.create_work_order(
                ticket,
                actor,
                directory,
                vendor_company_id=vendor_company_id,
                existing_work_orders=existing,
                now=self._clock(),
            )
            await self._commit_work_order(change, actor)
            return change

    async def accept_work_order(
        self,
        work_order_id: str,
        actor: Actor,
        *,
        technician_id: str | None = None,
        scheduled_at: datetime | None = None,
    ) -> WorkOrderChange:
        async with self._operation("accept_work_order", actor=actor, work_order_id=work_order_id):
            work_order, _ = await self._load_work_order(work_order_id)
            directory = await self._directory([work_order.vendor_company_id])
            change = work_order_lifecycle.accept_work_order(
                work_order,
                actor,
                directory,
                technician_id=technician_id,
                scheduled_at=scheduled_at,
                now=self._clock(),
            )
            await self._commit_work_order(change, actor)
            return change

    async def return_for_clarification(
        self, work_order_id: str, actor: Actor, *, note: str | None = None
    ) -> WorkOrderChange:
        async with self._operation("return_for_clarification", actor=actor, work_order_id=work_order_id):
            work_order, ticket = await self._load_work_order(work_order_id)
            directory = await self._directory([ticket.company_id])
            change = work_order_lifecycle.return_for_clarification(
                work_order, actor, directory, ticket, now=self._clock()
            )
            await self._commit_work_order(change, actor, note=note)
            return change

    async def resend_to_vendor(self, work_order_id: str, actor: Actor, *, note: str | None = None) -> WorkOrderChange:
        async with self._operation("resend_to_vendor", actor=actor, work_order_id=work_order_id):
            work_order, _ = await self._load_work_order(work_order_id)
            directory = await self._directory([work_order.vendor_company_id])
            change = work_order_lifecycle.resend_to_vendor(work_order, actor, directory, now=self._clock())
            await self._commit_work_order(change, actor, note=note)
            return change

    async def reject_work_order(
        self, work_order_id: str, actor: Actor, *, reason: str | None = None
    ) -> WorkOrderChange:
        async with self._operation("reject_work_order", actor=actor, work_order_id=work_order_id):
            work_order, ticket = await self._load_work_order(work_order_id)
            change = work_order_lifecycle.reject_work_order(work_order, actor, ticket, now=self._clock())
            await self._commit_work_order(change, actor, note=reason)
            return change

    async def start_visit(self, work_order_id: str, actor: Actor) -> WorkOrderChange:
        async with self._operation("start_visit", actor=actor, work_order_id=work_order_id):
            work_order, _ = await self._load_work_order(work_order_id)
            change = work_order_lifecycle.start_visit(work_order, actor, now=self._clock())
            await self._commit_work_order(change, actor)
            return change

    async def complete_visit(
        self,
        work_order_id: str,
        actor: Actor,
        *,
        outcome: VisitOutcome,
        note: str | None = None,
    ) -> WorkOrderChange:
        async with self._operation("complete_visit", actor=actor, work_order_id=work_order_id):
            work_order, ticket = await self._load_work_order(work_order_id)
            directory = await self._directory([ticket.company_id, work_order.vendor_company_id])
            change = work_order_lifecycle.complete_visit(
                work_order, actor, directory, ticket, outcome=outcome, note=note, now=self._clock()
            )
            await self._commit_work_order(change, actor, note=note, metadata={"outcome": outcome.value})
            return change

    async def schedule_follow_up(
        self,
        work_order_id: str,
        actor: Actor,
        *,
        scheduled_at: datetime,
        technician_id: str | None = None,
    ) -> WorkOrderChange:
        async with self._operation("schedule_follow_up", actor=actor, work_order_id=work_order_id):
            work_order, _ = await self._load_work_order(work_order_id)
            directory = await self._directory([work_order.vendor_company_id])
            change = work_order_lifecycle.schedule_follow_up(
                work_order,
                actor,
                directory,
                scheduled_at=scheduled_at,
                technician_id=technician_id,
                now=self._clock(),
            )
            await self._commit_work_order(change, actor)
            return change

    async def request_new_work_order(
        self, work_order_id: str, actor: Actor, *, reason: str | None = None
    ) -> WorkOrderChange:
        async with self._operation("request_new_work_order", actor=actor, work_order_id=work_order_id):
            work_order, ticket = await self._load_work_order(work_order_id)
            directory = await self._directory([ticket.company_id])
            change = work_order_lifecycle.request_new_work_order(
                work_order, actor, directory, ticket, now=self._clock()
            )
            await self._commit_work_order(change, actor, note=reason)
            return change

    async def prepare_cost_proposal(self, work_order_id: str, actor: Actor, amount: MoneyLike) -> WorkOrderChange:
        async with self._operation("prepare_cost_proposal", actor=actor, work_order_id=work_order_id):
            work_order, ticket = await self._load_work_order(work_order_id)
            directory = await self._directory([ticket.company_id])
            change = work_order_lifecycle.prepare_cost_proposal(
                work_order, actor, directory, ticket, amount=amount, now=self._clock()
            )
            proposal = change.work_order.cost_proposal
            await self._commit_work_order(
                change, actor, metadata={"amount": str(proposal) if proposal is not None else None}
            )
            return change

    async def approve_cost_proposal(self, work_order_id: str, actor: Actor) -> WorkOrderChange:
        async with self._operation("approve_cost_proposal", actor=actor, work_order_id=work_order_id):
            work_order, ticket = await self._load_work_order(work_order_id)
            change = work_order_lifecycle.approve_cost_proposal(work_order, actor, ticket, now=self._clock())
            await self._commit_work_order(change, actor)
            return change

    async def request_cost_revision(
        self, work_order_id: str, actor: Actor, *, reason: str | None = None
    ) -> WorkOrderChange:
        async with self._operation("request_cost_revision", actor=actor, work_order_id=work_order_id):
            work_order, _ = await self._load_work_order(work_order_id)
            limit = self._max_cost_revisions
            if limit is not None and work_order.revision_count >= limit:
                raise RevisionLimitExceededError(
                    f"Work order {work_order_id} already had {work_order.revision_count} cost revisions "
                    f"(limit {limit})"
                )
            directory = await self._directory([work_order.vendor_company_id])
            change = work_order_lifecycle.request_cost_revision(work_order, actor, directory, now=self._clock())
            await self._commit_work_order(change, actor, note=reason)
            return change

    async def close_without_cost(self, work_order_id: str, actor: Actor) -> WorkOrderChange:
        async with self._operation("close_without_cost", actor=actor, work_order_id=work_order_id):
            work_order, ticket = await self._load_work_order(work_order_id)
            change = work_order_lifecycle.close_without_cost(work_order, actor, ticket, now=self._clock())
            await self._commit_work_order(change, actor)
            return change

    # -- helpers -----------------------------------------------------------

    @asynccontextmanager
    async def _operation(self, name: str, *, actor: Actor, **attributes: str) -> AsyncIterator[None]:
        duration = self._registry.distribution(OPERATION_DURATION_SECONDS)
        with tracer.start_as_current_span(f"workflow.{name}") as span:
            span.set_attribute("workflow.actor", actor.user_id)
            span.set_attribute("workflow.role", actor.role.value)
            for key, value in attributes.items():
                span.set_attribute(f"workflow.{key}", value)
            with track_duration(duration, labels={"operation": name}):
                try:
                    yield
                except WorkflowError as exc:
                    self._registry.counter(ERRORS_TOTAL).inc(labels={"code": exc.code})
                    span.set_attribute("workflow.error_code", exc.code)
                    if isinstance(exc, InvalidChainStateError):
                        logger.error("%s failed for %s: %s", name, actor.user_id, exc.message)
                    else:
                        logger.info("%s refused for %s: %s", name, actor.user_id, exc.message)
                    raise

    async def _load_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def _load_work_order(self, work_order_id: str) -> tuple[WorkOrder, Ticket]:
        work_order = await self.get_work_order(work_order_id)
        ticket = await self._load_ticket(work_order.ticket_id)
        return work_order, ticket

    async def _directory(self, company_ids: Iterable[str]) -> StaticUserDirectory:
        return StaticUserDirectory(await self._repository.list_users(company_ids))

    async def _commit_ticket(
        self,
        change: TicketChange,
        actor: Actor,
        *,
        note: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        await self._repository.commit(
            tickets=[change.ticket],
            audit=[self._ticket_audit(change, actor.user_id, note=note, metadata=metadata)],
        )
        self._count_transition(EntityType.TICKET, change.action.value)
        self._log_side_effects(change.side_effects)
        logger.info(
            "Ticket %s %s by %s: %s -> %s",
            change.ticket.id,
            change.action.value,
            actor.user_id,
            change.from_status.value,
            change.to_status.value,
        )

    async def _commit_work_order(
        self,
        change: WorkOrderChange,
        actor: Actor,
        *,
        note: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        work_order = change.work_order
        audit_metadata = dict(metadata or {})
        if len(change.path) > 2:
            audit_metadata["path"] = [status.value for status in change.path]
        audit = [
            self._audit(
                EntityType.WORK_ORDER,
                work_order.id,
                work_order.ticket_id,
                change.action.value,
                actor.user_id,
                change.from_status.value if change.from_status else None,
                change.to_status.value,
                note=note,
                metadata=audit_metadata,
            )
        ]
        tickets: list[Ticket] = []
        ticket_change = change.ticket_change
        if ticket_change is not None:
            tickets.append(ticket_change.ticket)
            # roll-ups are applied by the system on behalf of the work order's outcome
            ticket_actor = actor.user_id if change.from_status is None else SYSTEM_ACTOR
            audit.append(
                self._ticket_audit(ticket_change, ticket_actor, metadata={"work_order_id": work_order.id})
            )
        await self._repository.commit(tickets=tickets, work_orders=[work_order], audit=audit)

        self._count_transition(EntityType.WORK_ORDER, change.action.value)
        if ticket_change is not None:
            self._count_transition(EntityType.TICKET, ticket_change.action.value)
        self._log_side_effects(change.side_effects)
        logger.info(
            "Work order %s %s by %s: %s",
            work_order.id,
            change.action.value,
            actor.user_id,
            " -> ".join(status.value for status in change.path),
        )

    def _ticket_audit(
        self,
        change: TicketChange,
        actor_id: str,
        *,
        note: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditEntry:
        return self._audit(
            EntityType.TICKET,
            change.ticket.id,
            change.ticket.id,
            change.action.value,
            actor_id,
            change.from_status.value,
            change.to_status.value,
            note=note,
            metadata={**(metadata or {}), "owner": change.ticket.current_owner_user_id},
        )

    def _audit(
        self,
        entity_type: EntityType,
        entity_id: str,
        ticket_id: str,
        action: str,
        actor_id: str,
        from_status: str | None,
        to_status: str | None,
        *,
        note: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditEntry:
        return AuditEntry(
            id=str(uuid.uuid4()),
            entity_type=entity_type,
            entity_id=entity_id,
            ticket_id=ticket_id,
            action=action,
            actor=actor_id,
            from_status=from_status,
            to_status=to_status,
            created_at=self._clock(),
            note=note,
            metadata=dict(metadata or {}),
        )

    def _count_transition(self, entity: EntityType, action: str) -> None:
        self._registry.counter(TRANSITIONS_TOTAL).inc(labels={"entity": entity.value, "action": action})

    @staticmethod
    def _log_side_effects(side_effects: Sequence[SideEffect]) -> None:
        for effect in side_effects:
            logger.info(
                "Side effect %s for ticket %s (work order %s)",
                effect.kind.value,
                effect.ticket_id,
                effect.work_order_id,
            )
