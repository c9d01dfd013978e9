from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from fixflow.workflow import (
    IllegalTransitionError,
    InvalidAmountError,
    Role,
    SideEffectKind,
    TicketStatus,
    UnauthorizedError,
    VisitOutcome,
    WorkOrderAction,
    WorkOrderStatus,
    work_order_lifecycle,
)


@pytest.fixture
def running_ticket(make_ticket):
    return make_ticket(TicketStatus.WORK_ORDER_IN_PROGRESS, owner="amm-1")


def test_create_work_order_starts_ticket_work(make_ticket, actor, directory, now):
    ticket = make_ticket(TicketStatus.COST_ESTIMATION_APPROVED, owner="amm-1", amount="500")

    change = work_order_lifecycle.create_work_order(
        ticket, actor("amm-1"), directory, vendor_company_id="fixit", work_order_id="wo-1", now=now
    )

    assert change.action is WorkOrderAction.CREATE
    assert change.from_status is None
    assert change.path == (WorkOrderStatus.CREATED,)
    assert change.work_order.status is WorkOrderStatus.CREATED
    assert change.work_order.current_owner_user_id == "s1-1"
    assert change.work_order.previous_work_order_id is None
    assert change.ticket_change.ticket.status is TicketStatus.WORK_ORDER_IN_PROGRESS


def test_create_work_order_requires_approved_estimation(make_ticket, actor, directory):
    ticket = make_ticket(TicketStatus.COST_ESTIMATION_NEEDED, owner="amm-1")

    with pytest.raises(IllegalTransitionError):
        work_order_lifecycle.create_work_order(ticket, actor("amm-1"), directory, vendor_company_id="fixit")


def test_only_one_open_work_order_per_ticket(running_ticket, make_work_order, actor, directory):
    with pytest.raises(IllegalTransitionError):
        work_order_lifecycle.create_work_order(
            running_ticket,
            actor("amm-1"),
            directory,
            vendor_company_id="fixit",
            existing_work_orders=[make_work_order(WorkOrderStatus.SERVICE_IN_PROGRESS, owner="s2-1")],
        )


def test_accept_assigns_technician(make_work_order, actor, directory, now):
    scheduled = now + timedelta(days=1)

    change = work_order_lifecycle.accept_work_order(
        make_work_order(), actor("s1-1"), directory, scheduled_at=scheduled, now=now
    )

    assert change.work_order.status is WorkOrderStatus.ACCEPTED_TECHNICIAN_ASSIGNED
    assert change.work_order.current_owner_user_id == "s2-1"
    assert change.work_order.assigned_technician_id == "s2-1"
    assert change.work_order.scheduled_at == scheduled


def test_accept_with_explicit_technician(make_work_order, actor, directory):
    change = work_order_lifecycle.accept_work_order(make_work_order(), actor("s1-1"), directory, technician_id="s2-2")

    assert change.work_order.current_owner_user_id == "s2-2"


@pytest.mark.parametrize("technician_id", ["amm-1", "s2-9", "ghost"])
def test_accept_refuses_users_who_are_not_active_vendor_technicians(make_work_order, actor, directory, technician_id):
    with pytest.raises(UnauthorizedError):
        work_order_lifecycle.accept_work_order(
            make_work_order(), actor("s1-1"), directory, technician_id=technician_id
        )


def test_only_the_owner_admin_accepts(make_work_order, actor, directory):
    with pytest.raises(UnauthorizedError):
        work_order_lifecycle.accept_work_order(make_work_order(), actor("s2-1"), directory)


def test_reject_work_order_rejects_ticket(make_work_order, running_ticket, actor):
    change = work_order_lifecycle.reject_work_order(make_work_order(), actor("s1-1"), running_ticket)

    assert change.work_order.status is WorkOrderStatus.REJECTED
    assert change.work_order.current_owner_user_id is None
    assert [effect.kind for effect in change.side_effects] == [SideEffectKind.REJECT_TICKET]
    assert change.ticket_change.ticket.status is TicketStatus.REJECTED


def test_visit_success_goes_to_back_office(make_work_order, running_ticket, actor, directory, now):
    accepted = make_work_order(WorkOrderStatus.ACCEPTED_TECHNICIAN_ASSIGNED, owner="s2-1")

    started = work_order_lifecycle.start_visit(accepted, actor("s2-1"), now=now)
    assert started.work_order.status is WorkOrderStatus.SERVICE_IN_PROGRESS
    assert started.work_order.last_visit.ended_at is None

    done = work_order_lifecycle.complete_visit(
        started.work_order,
        actor("s2-1"),
        directory,
        running_ticket,
        outcome=VisitOutcome.SUCCESS,
        note="Seal replaced",
        now=now + timedelta(hours=2),
    )

    assert done.work_order.status is WorkOrderStatus.SERVICE_COMPLETED
    assert done.work_order.current_owner_user_id == "s3-1"
    assert done.path == (WorkOrderStatus.SERVICE_IN_PROGRESS, WorkOrderStatus.SERVICE_COMPLETED)
    assert len(done.work_order.visits) == 1
    assert done.work_order.last_visit.ended_at == now + timedelta(hours=2)
    assert done.work_order.last_visit.outcome is VisitOutcome.SUCCESS
    assert done.ticket_change is None


def test_follow_up_visit_returns_to_admin_and_reschedules(make_work_order, running_ticket, actor, directory, now):
    in_service = make_work_order(WorkOrderStatus.SERVICE_IN_PROGRESS, owner="s2-1", assigned_technician_id="s2-2")

    change = work_order_lifecycle.complete_visit(
        in_service, actor("s2-1"), directory, running_ticket, outcome=VisitOutcome.FOLLOW_UP_NEEDED
    )

    assert change.path == (
        WorkOrderStatus.SERVICE_IN_PROGRESS,
        WorkOrderStatus.SERVICE_COMPLETED,
        WorkOrderStatus.FOLLOW_UP_REQUESTED,
    )
    assert change.work_order.current_owner_user_id == "s1-1"
    assert change.work_order.version == in_service.version + 1

    rescheduled = work_order_lifecycle.schedule_follow_up(
        change.work_order, actor("s1-1"), directory, scheduled_at=now + timedelta(days=3)
    )
    assert rescheduled.work_order.status is WorkOrderStatus.ACCEPTED_TECHNICIAN_ASSIGNED
    assert rescheduled.work_order.current_owner_user_id == "s2-2"


def test_repair_unsuccessful_leads_to_replacement_work_order(make_work_order, running_ticket, actor, directory, now):
    in_service = make_work_order(WorkOrderStatus.SERVICE_IN_PROGRESS, owner="s2-1")

    failed = work_order_lifecycle.complete_visit(
        in_service, actor("s2-1"), directory, running_ticket, outcome=VisitOutcome.UNSUCCESSFUL, now=now
    )
    assert failed.work_order.status is WorkOrderStatus.REPAIR_UNSUCCESSFUL
    assert failed.work_order.current_owner_user_id == "amm-1"

    superseded = work_order_lifecycle.request_new_work_order(
        failed.work_order, actor("amm-1"), directory, running_ticket, now=now
    )
    old = superseded.work_order
    assert old.status is WorkOrderStatus.NEW_WO_NEEDED
    assert [effect.kind for effect in superseded.side_effects] == [SideEffectKind.REPLACE_WORK_ORDER]
    assert superseded.ticket_change is None

    replacement = work_order_lifecycle.create_work_order(
        running_ticket,
        actor("amm-1"),
        directory,
        vendor_company_id="fixit",
        existing_work_orders=[old],
        work_order_id="wo-2",
        now=now + timedelta(minutes=5),
    )
    assert replacement.work_order.previous_work_order_id == old.id
    assert replacement.ticket_change.ticket.status is TicketStatus.WORK_ORDER_IN_PROGRESS

    with pytest.raises(IllegalTransitionError):
        work_order_lifecycle.close_without_cost(old, actor("amm-1"), running_ticket)
    with pytest.raises(IllegalTransitionError):
        work_order_lifecycle.accept_work_order(old, actor("s1-1"), directory)


def test_cost_proposal_revision_loop_then_approval(make_work_order, running_ticket, actor, directory):
    completed = make_work_order(WorkOrderStatus.SERVICE_COMPLETED, owner="s3-1")

    proposed = work_order_lifecycle.prepare_cost_proposal(
        completed, actor("s3-1"), directory, running_ticket, amount="1200.50"
    )
    assert proposed.work_order.status is WorkOrderStatus.COST_PROPOSAL_PREPARED
    assert proposed.work_order.cost_proposal == Decimal("1200.50")
    assert proposed.work_order.current_owner_user_id == "amm-1"

    revision = work_order_lifecycle.request_cost_revision(proposed.work_order, actor("amm-1"), directory)
    assert revision.work_order.status is WorkOrderStatus.COST_REVISION_REQUESTED
    assert revision.work_order.current_owner_user_id == "s3-1"
    assert revision.work_order.revision_count == 1

    revised = work_order_lifecycle.prepare_cost_proposal(
        revision.work_order, actor("s3-1"), directory, running_ticket, amount=990
    )
    approved = work_order_lifecycle.approve_cost_proposal(revised.work_order, actor("amm-1"), running_ticket)

    assert approved.work_order.status is WorkOrderStatus.COST_PROPOSAL_APPROVED
    assert approved.work_order.current_owner_user_id is None
    assert [effect.kind for effect in approved.side_effects] == [SideEffectKind.ARCHIVE_TICKET]
    assert approved.ticket_change.ticket.status is TicketStatus.ARCHIVED


def test_cost_proposal_must_be_positive(make_work_order, running_ticket, actor, directory):
    completed = make_work_order(WorkOrderStatus.SERVICE_COMPLETED, owner="s3-1")

    with pytest.raises(InvalidAmountError):
        work_order_lifecycle.prepare_cost_proposal(completed, actor("s3-1"), directory, running_ticket, amount="0")


def test_close_without_cost_archives_ticket(make_work_order, running_ticket, actor):
    completed = make_work_order(WorkOrderStatus.SERVICE_COMPLETED, owner="s3-1")

    change = work_order_lifecycle.close_without_cost(completed, actor("s3-1"), running_ticket)

    assert change.work_order.status is WorkOrderStatus.CLOSED_WITHOUT_COST
    assert change.ticket_change.ticket.status is TicketStatus.ARCHIVED


def test_cancel_only_before_acceptance(make_work_order):
    assert work_order_lifecycle.cancel(make_work_order()).work_order.status is WorkOrderStatus.REJECTED

    with pytest.raises(IllegalTransitionError):
        work_order_lifecycle.cancel(make_work_order(WorkOrderStatus.ACCEPTED_TECHNICIAN_ASSIGNED, owner="s2-1"))


def test_chained_visit_steps_are_not_offered_as_actions():
    assert work_order_lifecycle.available_actions(WorkOrderStatus.SERVICE_COMPLETED, Role.TECHNICIAN) == []
    assert set(
        work_order_lifecycle.available_actions(WorkOrderStatus.SERVICE_COMPLETED, Role.FINANCE_BACKOFFICE)
    ) == {WorkOrderAction.PREPARE_COST_PROPOSAL, WorkOrderAction.CLOSE_WITHOUT_COST}


def test_clarification_round_trip_between_vendor_and_maintenance(make_work_order, running_ticket, actor, directory):
    returned = work_order_lifecycle.return_for_clarification(
        make_work_order(), actor("s1-1"), directory, running_ticket
    )

    assert returned.work_order.status is WorkOrderStatus.CREATED
    assert returned.work_order.current_owner_user_id == "amm-1"
    assert returned.path == (WorkOrderStatus.CREATED, WorkOrderStatus.CREATED)
    assert returned.ticket_change is None
    with pytest.raises(UnauthorizedError):
        work_order_lifecycle.accept_work_order(returned.work_order, actor("s1-1"), directory)

    resent = work_order_lifecycle.resend_to_vendor(returned.work_order, actor("amm-1"), directory)

    assert resent.work_order.status is WorkOrderStatus.CREATED
    assert resent.work_order.current_owner_user_id == "s1-1"
    assert resent.work_order.version == returned.work_order.version + 1


def test_only_the_owning_maintenance_manager_resends(make_work_order, actor, directory):
    with pytest.raises(UnauthorizedError):
        work_order_lifecycle.resend_to_vendor(make_work_order(), actor("amm-1"), directory)
    with pytest.raises(UnauthorizedError):
        work_order_lifecycle.resend_to_vendor(make_work_order(owner="amm-1"), actor("s1-1"), directory)


def test_maintenance_manager_rejects_returned_work_order(make_work_order, running_ticket, actor):
    change = work_order_lifecycle.reject_work_order(make_work_order(owner="amm-1"), actor("amm-1"), running_ticket)

    assert change.work_order.status is WorkOrderStatus.REJECTED
    assert change.ticket_change.ticket.status is TicketStatus.REJECTED


def test_maintenance_manager_rejects_cost_proposal(make_work_order, running_ticket, actor):
    proposed = make_work_order(WorkOrderStatus.COST_PROPOSAL_PREPARED, owner="amm-1", cost_proposal=Decimal("800"))

    change = work_order_lifecycle.reject_work_order(proposed, actor("amm-1"), running_ticket)

    assert change.work_order.status is WorkOrderStatus.REJECTED
    assert change.work_order.current_owner_user_id is None
    assert [effect.kind for effect in change.side_effects] == [SideEffectKind.REJECT_TICKET]
    assert change.ticket_change.ticket.status is TicketStatus.REJECTED


def test_back_office_cannot_reject_its_own_proposal(make_work_order, running_ticket, actor):
    proposed = make_work_order(WorkOrderStatus.COST_PROPOSAL_PREPARED, owner="s3-1", cost_proposal=Decimal("800"))

    with pytest.raises(UnauthorizedError):
        work_order_lifecycle.reject_work_order(proposed, actor("s3-1"), running_ticket)


def test_returned_work_order_can_still_be_cancelled(make_work_order):
    cancelled = work_order_lifecycle.cancel(make_work_order(owner="amm-1"))

    assert cancelled.work_order.status is WorkOrderStatus.REJECTED


def test_new_work_order_offers_clarification_to_both_sides():
    assert set(work_order_lifecycle.available_actions(WorkOrderStatus.CREATED, Role.SERVICE_ADMIN)) == {
        WorkOrderAction.ACCEPT,
        WorkOrderAction.RETURN_FOR_CLARIFICATION,
        WorkOrderAction.REJECT,
    }
    assert set(work_order_lifecycle.available_actions(WorkOrderStatus.CREATED, Role.AREA_MAINTENANCE_MANAGER)) == {
        WorkOrderAction.RESEND_TO_VENDOR,
        WorkOrderAction.REJECT,
    }
