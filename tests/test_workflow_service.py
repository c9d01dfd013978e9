from __future__ import annotations

from decimal import Decimal

import pytest

from fixflow.metrics import ERRORS_TOTAL, TRANSITIONS_TOTAL, MetricsRegistry
from fixflow.services import WorkflowService
from fixflow.services.workflow import SYSTEM_ACTOR
from fixflow.workflow import (
    ConcurrentModificationError,
    Decision,
    IllegalTransitionError,
    RevisionLimitExceededError,
    TicketNotFoundError,
    TicketStatus,
    VisitOutcome,
    WorkOrderNotFoundError,
    WorkOrderStatus,
)


class InMemoryRepository:
    def __init__(self, users):
        self.tickets = {}
        self.work_orders = {}
        self.audit = []
        self.users = list(users)

    async def commit(self, *, tickets=(), work_orders=(), audit=()):
        for entity, store in [(item, self.tickets) for item in tickets] + [
            (item, self.work_orders) for item in work_orders
        ]:
            stored = store.get(entity.id)
            if entity.version == 1 and stored is not None:
                raise ConcurrentModificationError(f"{entity.id} already exists")
            if entity.version > 1 and (stored is None or stored.version != entity.version - 1):
                raise ConcurrentModificationError(f"{entity.id} was modified concurrently")
        for ticket in tickets:
            self.tickets[ticket.id] = ticket
        for work_order in work_orders:
            self.work_orders[work_order.id] = work_order
        self.audit.extend(audit)

    async def get_ticket(self, ticket_id):
        return self.tickets.get(ticket_id)

    async def list_tickets(self, *, status=None):
        return [ticket for ticket in self.tickets.values() if status is None or ticket.status is status]

    async def get_work_order(self, work_order_id):
        return self.work_orders.get(work_order_id)

    async def list_work_orders(self, ticket_id):
        return [item for item in self.work_orders.values() if item.ticket_id == ticket_id]

    async def list_audit(self, ticket_id):
        return [entry for entry in self.audit if entry.ticket_id == ticket_id]

    async def list_users(self, company_ids):
        ids = set(company_ids)
        return [user for user in self.users if user.company_id in ids and user.active]


@pytest.fixture
def repository(roster):
    return InMemoryRepository(roster)


@pytest.fixture
def registry():
    return MetricsRegistry()


@pytest.fixture
def service(repository, registry, now):
    return WorkflowService(repository, registry=registry, max_cost_revisions=1, clock=lambda: now)


async def _approved_ticket(service, actor):
    ticket = await service.create_ticket(
        actor("sm-1"),
        company_id="acme",
        region_id="north",
        store_id="store-7",
        title="Freezer leaking",
        description="Aisle 4",
    )
    await service.submit_ticket(ticket.id, actor("sm-1"))
    await service.approve_for_estimation(ticket.id, actor("am-1"))
    await service.record_cost_estimation(ticket.id, actor("amm-1"), "750")
    outcome = await service.decide_approval(ticket.id, actor("am-1"), Decision.APPROVE)
    assert outcome.ticket.status is TicketStatus.COST_ESTIMATION_APPROVED
    return ticket.id


@pytest.mark.asyncio
async def test_ticket_runs_from_draft_to_archive(service, repository, registry, actor):
    ticket_id = await _approved_ticket(service, actor)

    created = await service.create_work_order(ticket_id, actor("amm-1"), vendor_company_id="fixit")
    work_order_id = created.work_order.id
    await service.accept_work_order(work_order_id, actor("s1-1"))
    await service.start_visit(work_order_id, actor("s2-1"))
    await service.complete_visit(work_order_id, actor("s2-1"), outcome=VisitOutcome.SUCCESS)
    await service.prepare_cost_proposal(work_order_id, actor("s3-1"), "640.00")
    change = await service.approve_cost_proposal(work_order_id, actor("amm-1"))

    assert change.work_order.status is WorkOrderStatus.COST_PROPOSAL_APPROVED
    details = await service.get_ticket(ticket_id)
    assert details.ticket.status is TicketStatus.ARCHIVED
    assert details.work_orders[0].cost_proposal == Decimal("640.00")
    assert details.approval_chain.complete is True

    audit = await service.get_audit_log(ticket_id)
    actions = [(entry.entity_type.value, entry.action) for entry in audit]
    assert actions[:6] == [
        ("TICKET", "CREATE"),
        ("TICKET", "SUBMIT"),
        ("TICKET", "APPROVE_FOR_ESTIMATION"),
        ("TICKET", "RECORD_ESTIMATION"),
        ("TICKET", "APPROVE"),
        ("WORK_ORDER", "CREATE"),
    ]
    archive = audit[-1]
    assert (archive.action, archive.actor, archive.to_status) == ("ARCHIVE", SYSTEM_ACTOR, "ARCHIVED")
    assert registry.counter(TRANSITIONS_TOTAL).value({"entity": "TICKET", "action": "ARCHIVE"}) == 1


@pytest.mark.asyncio
async def test_chained_visit_outcome_is_audited_with_its_path(service, repository, actor):
    ticket_id = await _approved_ticket(service, actor)
    created = await service.create_work_order(ticket_id, actor("amm-1"), vendor_company_id="fixit")
    work_order_id = created.work_order.id
    await service.accept_work_order(work_order_id, actor("s1-1"))
    await service.start_visit(work_order_id, actor("s2-1"))

    change = await service.complete_visit(
        work_order_id, actor("s2-1"), outcome=VisitOutcome.FOLLOW_UP_NEEDED, note="Part on order"
    )

    assert change.to_status is WorkOrderStatus.FOLLOW_UP_REQUESTED
    entry = repository.audit[-1]
    assert entry.note == "Part on order"
    assert entry.metadata["path"] == ["SERVICE_IN_PROGRESS", "SERVICE_COMPLETED", "FOLLOW_UP_REQUESTED"]


@pytest.mark.asyncio
async def test_withdraw_cancels_pending_work_order(service, repository, actor):
    ticket_id = await _approved_ticket(service, actor)
    created = await service.create_work_order(ticket_id, actor("amm-1"), vendor_company_id="fixit")

    change = await service.withdraw_ticket(ticket_id, actor("sm-1"), reason="Fixed in-house")

    assert change.ticket.status is TicketStatus.WITHDRAWN
    assert repository.work_orders[created.work_order.id].status is WorkOrderStatus.REJECTED
    assert [entry.action for entry in repository.audit[-2:]] == ["WITHDRAW", "CANCEL"]


@pytest.mark.asyncio
async def test_work_order_clarification_then_rejected_proposal(service, repository, registry, actor, make_work_order):
    ticket_id = await _approved_ticket(service, actor)
    created = await service.create_work_order(ticket_id, actor("amm-1"), vendor_company_id="fixit")
    work_order_id = created.work_order.id

    returned = await service.return_for_clarification(work_order_id, actor("s1-1"), note="Which freezer?")
    resent = await service.resend_to_vendor(work_order_id, actor("amm-1"), note="Aisle 4")

    assert returned.work_order.current_owner_user_id == "amm-1"
    assert resent.work_order.current_owner_user_id == "s1-1"
    notes = [(entry.action, entry.note) for entry in repository.audit if entry.entity_id == work_order_id]
    assert notes[-2:] == [("RETURN_FOR_CLARIFICATION", "Which freezer?"), ("RESEND_TO_VENDOR", "Aisle 4")]

    repository.work_orders[work_order_id] = make_work_order(
        WorkOrderStatus.COST_PROPOSAL_PREPARED,
        owner="amm-1",
        id=work_order_id,
        ticket_id=ticket_id,
        cost_proposal=Decimal("4000"),
        version=resent.work_order.version,
    )
    change = await service.reject_work_order(work_order_id, actor("amm-1"), reason="Too expensive")

    assert change.work_order.status is WorkOrderStatus.REJECTED
    assert repository.tickets[ticket_id].status is TicketStatus.REJECTED
    assert registry.counter(TRANSITIONS_TOTAL).value({"entity": "TICKET", "action": "WORK_ORDER_REJECTED"}) == 1


@pytest.mark.asyncio
async def test_approved_ticket_is_archived_by_maintenance(service, repository, actor):
    ticket_id = await _approved_ticket(service, actor)

    change = await service.archive_ticket(ticket_id, actor("amm-1"), reason="Covered by warranty")

    assert change.ticket.status is TicketStatus.ARCHIVED
    assert repository.tickets[ticket_id].status is TicketStatus.ARCHIVED
    last = repository.audit[-1]
    assert (last.action, last.actor, last.note) == ("ARCHIVE", "amm-1", "Covered by warranty")


@pytest.mark.asyncio
async def test_revision_limit_is_enforced(service, repository, registry, actor, make_work_order, make_ticket):
    repository.tickets["ticket-1"] = make_ticket(TicketStatus.WORK_ORDER_IN_PROGRESS, owner="amm-1")
    repository.work_orders["wo-1"] = make_work_order(
        WorkOrderStatus.COST_PROPOSAL_PREPARED, owner="amm-1", cost_proposal=Decimal("900")
    )

    await service.request_cost_revision("wo-1", actor("amm-1"))
    await service.prepare_cost_proposal("wo-1", actor("s3-1"), "850")

    with pytest.raises(RevisionLimitExceededError):
        await service.request_cost_revision("wo-1", actor("amm-1"))
    assert repository.work_orders["wo-1"].status is WorkOrderStatus.COST_PROPOSAL_PREPARED
    assert registry.counter(ERRORS_TOTAL).value({"code": "REVISION_LIMIT"}) == 1


@pytest.mark.asyncio
async def test_refused_transition_is_counted_and_not_committed(service, repository, registry, actor):
    ticket_id = await _approved_ticket(service, actor)
    before = len(repository.audit)

    with pytest.raises(IllegalTransitionError):
        await service.submit_ticket(ticket_id, actor("sm-1"))

    assert len(repository.audit) == before
    assert registry.counter(ERRORS_TOTAL).value({"code": "ILLEGAL_TRANSITION"}) == 1


@pytest.mark.asyncio
async def test_missing_entities_raise_not_found(service, actor):
    with pytest.raises(TicketNotFoundError):
        await service.submit_ticket("missing", actor("sm-1"))
    with pytest.raises(WorkOrderNotFoundError):
        await service.start_visit("missing", actor("s2-1"))
