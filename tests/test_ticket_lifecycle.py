from __future__ import annotations

from decimal import Decimal

import pytest

from fixflow.workflow import (
    ApprovalDecision,
    ApprovalRecord,
    IllegalTransitionError,
    InvalidAmountError,
    InvalidChainStateError,
    NoAssigneeAvailableError,
    Role,
    StaticUserDirectory,
    TicketAction,
    TicketStatus,
    UnauthorizedError,
    WorkOrderStatus,
    ticket_lifecycle,
)


def test_create_ticket_opens_draft_owned_by_creator(actor, now):
    ticket = ticket_lifecycle.create_ticket(
        actor("sm-1"),
        company_id="acme",
        region_id="north",
        store_id="store-7",
        title="  Broken door  ",
        description="Entrance door stuck",
        now=now,
    )

    assert ticket.status is TicketStatus.DRAFT
    assert ticket.current_owner_user_id == "sm-1"
    assert ticket.created_by_user_id == "sm-1"
    assert ticket.title == "Broken door"
    assert ticket.version == 1
    assert ticket.created_at == now


def test_only_store_or_maintenance_managers_create_tickets(actor):
    with pytest.raises(UnauthorizedError):
        ticket_lifecycle.create_ticket(
            actor("am-1"), company_id="acme", region_id="north", store_id="store-7", title="x", description=""
        )
    with pytest.raises(ValueError):
        ticket_lifecycle.create_ticket(
            actor("sm-1"), company_id="acme", region_id="north", store_id="store-7", title="  ", description=""
        )


def test_submit_routes_to_area_manager(make_ticket, actor, directory, now):
    ticket = make_ticket()

    change = ticket_lifecycle.submit_ticket(ticket, actor("sm-1"), directory, now=now)

    assert change.from_status is TicketStatus.DRAFT
    assert change.to_status is TicketStatus.SUBMITTED
    assert change.ticket.current_owner_user_id == "am-1"
    assert change.ticket.version == 2
    assert ticket.status is TicketStatus.DRAFT
    assert ticket.version == 1


def test_urgent_submit_routes_to_maintenance_manager(make_ticket, actor, directory):
    change = ticket_lifecycle.submit_ticket(make_ticket(urgent=True), actor("sm-1"), directory)

    assert change.ticket.current_owner_user_id == "amm-1"


def test_submit_requires_owner_and_creator_role(make_ticket, actor, directory):
    with pytest.raises(UnauthorizedError):
        ticket_lifecycle.submit_ticket(make_ticket(), actor("sm-2"), directory)
    with pytest.raises(UnauthorizedError):
        ticket_lifecycle.submit_ticket(make_ticket(owner="s2-1"), actor("s2-1"), directory)


def test_submit_without_area_manager_fails(make_ticket, actor, roster):
    directory = StaticUserDirectory(user for user in roster if user.role is not Role.AREA_MANAGER)

    with pytest.raises(NoAssigneeAvailableError):
        ticket_lifecycle.submit_ticket(make_ticket(), actor("sm-1"), directory)


def test_request_info_and_resubmit_round_trip(make_ticket, actor, directory, now):
    ticket = make_ticket(TicketStatus.SUBMITTED, owner="am-1")

    asked = ticket_lifecycle.request_info(ticket, actor("am-1"), now=now)
    assert asked.ticket.status is TicketStatus.AWAITING_CREATOR_RESPONSE
    assert asked.ticket.current_owner_user_id == "sm-1"
    assert asked.ticket.info_requested_by_user_id == "am-1"

    answered = ticket_lifecycle.resubmit_ticket(
        asked.ticket, actor("sm-1"), directory, description="Door hinge snapped", now=now
    )
    assert answered.ticket.status is TicketStatus.UPDATED_SUBMITTED
    assert answered.ticket.current_owner_user_id == "am-1"
    assert answered.ticket.description == "Door hinge snapped"
    assert answered.ticket.info_requested_by_user_id is None
    assert answered.ticket.version == ticket.version + 2


def test_resubmit_returns_to_maintenance_manager_who_asked(make_ticket, actor, directory):
    ticket = make_ticket(TicketStatus.COST_ESTIMATION_NEEDED, owner="amm-1")

    asked = ticket_lifecycle.request_info(ticket, actor("amm-1"))
    answered = ticket_lifecycle.resubmit_ticket(asked.ticket, actor("sm-1"), directory)

    assert answered.ticket.current_owner_user_id == "amm-1"


def test_resubmit_without_requester_falls_back_to_area_manager(make_ticket, actor, directory):
    ticket = make_ticket(TicketStatus.AWAITING_CREATOR_RESPONSE, owner="sm-1")

    change = ticket_lifecycle.resubmit_ticket(ticket, actor("sm-1"), directory)

    assert change.ticket.current_owner_user_id == "am-1"
    assert change.ticket.description == ticket.description


def test_approve_for_estimation_hands_over_to_maintenance_manager(make_ticket, actor, directory):
    ticket = make_ticket(TicketStatus.UPDATED_SUBMITTED, owner="am-1")

    change = ticket_lifecycle.approve_for_estimation(ticket, actor("am-1"), directory)

    assert change.ticket.status is TicketStatus.COST_ESTIMATION_NEEDED
    assert change.ticket.current_owner_user_id == "amm-1"


def test_reject_is_terminal(make_ticket, actor, directory):
    change = ticket_lifecycle.reject_ticket(make_ticket(TicketStatus.SUBMITTED, owner="am-1"), actor("am-1"))

    assert change.ticket.status is TicketStatus.REJECTED
    assert change.ticket.current_owner_user_id is None
    with pytest.raises(IllegalTransitionError):
        ticket_lifecycle.approve_for_estimation(change.ticket, actor("am-1"), directory)


@pytest.mark.parametrize("status", [TicketStatus.REJECTED, TicketStatus.WITHDRAWN, TicketStatus.ARCHIVED])
@pytest.mark.parametrize("action", list(TicketAction))
def test_terminal_tickets_accept_no_action(make_ticket, actor, status, action):
    ticket = make_ticket(status, owner=None)

    with pytest.raises(IllegalTransitionError):
        ticket_lifecycle.check_transition(ticket, action, actor("sm-1"))


def test_record_cost_estimation_routes_to_first_approver(make_ticket, actor, directory, now):
    ticket = make_ticket(TicketStatus.COST_ESTIMATION_NEEDED, owner="amm-1")

    change = ticket_lifecycle.record_cost_estimation(ticket, actor("amm-1"), "2500.50", directory, now=now)

    assert change.ticket.status is TicketStatus.COST_ESTIMATION_APPROVAL_NEEDED
    assert change.ticket.current_owner_user_id == "am-1"
    assert change.ticket.cost_estimation.estimated_amount == Decimal("2500.50")
    assert change.ticket.cost_estimation.estimated_by_user_id == "amm-1"
    assert change.ticket.approval_history == ()


@pytest.mark.parametrize("amount", [-5, "0", "-0.01"])
def test_record_cost_estimation_rejects_non_positive_amounts(make_ticket, actor, directory, amount):
    ticket = make_ticket(TicketStatus.COST_ESTIMATION_NEEDED, owner="amm-1")

    with pytest.raises(InvalidAmountError):
        ticket_lifecycle.record_cost_estimation(ticket, actor("amm-1"), amount, directory)

    assert ticket.status is TicketStatus.COST_ESTIMATION_NEEDED
    assert ticket.cost_estimation is None


def test_record_cost_estimation_refuses_an_empty_chain(make_ticket, actor, directory, monkeypatch):
    monkeypatch.setattr(ticket_lifecycle, "required_approvers", lambda amount: ())
    ticket = make_ticket(TicketStatus.COST_ESTIMATION_NEEDED, owner="amm-1")

    with pytest.raises(InvalidChainStateError):
        ticket_lifecycle.record_cost_estimation(ticket, actor("amm-1"), "500", directory)


def test_return_estimation_sends_ticket_back_and_records_it(make_ticket, actor, directory, now):
    ticket = make_ticket(
        TicketStatus.COST_ESTIMATION_APPROVAL_NEEDED,
        owner="d-1",
        amount="2500",
        approval_history=(ApprovalRecord(Role.AREA_MANAGER, "am-1", ApprovalDecision.APPROVED, now),),
    )

    change = ticket_lifecycle.return_estimation(ticket, actor("d-1"), directory, reason="Get a second quote")

    assert change.ticket.status is TicketStatus.COST_ESTIMATION_NEEDED
    assert change.ticket.current_owner_user_id == "amm-1"
    assert change.ticket.approval_history[-1].decision is ApprovalDecision.RETURNED
    assert change.ticket.approval_history[-1].reason == "Get a second quote"

    again = ticket_lifecycle.record_cost_estimation(change.ticket, actor("amm-1"), "800", directory)
    assert again.ticket.approval_history == ()
    assert again.ticket.current_owner_user_id == "am-1"


def test_return_estimation_requires_chain_role(make_ticket, actor, directory):
    ticket = make_ticket(TicketStatus.COST_ESTIMATION_APPROVAL_NEEDED, owner="bod-1", amount="900")

    with pytest.raises(UnauthorizedError):
        ticket_lifecycle.return_estimation(ticket, actor("bod-1"), directory)


def test_urgent_ticket_may_start_work_before_estimation(make_ticket, actor):
    urgent = make_ticket(TicketStatus.SUBMITTED, owner="amm-1", urgent=True)

    change = ticket_lifecycle.start_work(urgent, actor("amm-1"))

    assert change.ticket.status is TicketStatus.WORK_ORDER_IN_PROGRESS
    with pytest.raises(IllegalTransitionError):
        ticket_lifecycle.start_work(make_ticket(TicketStatus.SUBMITTED, owner="amm-1"), actor("amm-1"))


def test_withdraw_is_reserved_to_creator(make_ticket, actor):
    ticket = make_ticket(TicketStatus.COST_ESTIMATION_NEEDED, owner="amm-1")

    change = ticket_lifecycle.withdraw_ticket(ticket, actor("sm-1"))

    assert change.ticket.status is TicketStatus.WITHDRAWN
    assert change.ticket.current_owner_user_id is None
    assert change.cancelled_work_order is None
    with pytest.raises(UnauthorizedError):
        ticket_lifecycle.withdraw_ticket(ticket, actor("sm-2"))
    with pytest.raises(UnauthorizedError):
        ticket_lifecycle.withdraw_ticket(ticket, actor("amm-1"))


def test_withdraw_cancels_unaccepted_work_order(make_ticket, make_work_order, actor):
    ticket = make_ticket(TicketStatus.WORK_ORDER_IN_PROGRESS, owner="amm-1")

    change = ticket_lifecycle.withdraw_ticket(ticket, actor("sm-1"), open_work_order=make_work_order())

    assert change.ticket.status is TicketStatus.WITHDRAWN
    assert change.cancelled_work_order.status is WorkOrderStatus.REJECTED
    assert change.cancelled_work_order.current_owner_user_id is None


def test_withdraw_refused_once_vendor_accepted(make_ticket, make_work_order, actor):
    ticket = make_ticket(TicketStatus.WORK_ORDER_IN_PROGRESS, owner="amm-1")
    accepted = make_work_order(WorkOrderStatus.ACCEPTED_TECHNICIAN_ASSIGNED, owner="s2-1")

    with pytest.raises(IllegalTransitionError):
        ticket_lifecycle.withdraw_ticket(ticket, actor("sm-1"), open_work_order=accepted)


def test_roll_up_mirrors_work_order_outcome(make_ticket, make_work_order):
    ticket = make_ticket(TicketStatus.WORK_ORDER_IN_PROGRESS, owner="amm-1")

    archived = ticket_lifecycle.roll_up_work_order(ticket, make_work_order(WorkOrderStatus.COST_PROPOSAL_APPROVED))
    rejected = ticket_lifecycle.roll_up_work_order(ticket, make_work_order(WorkOrderStatus.REJECTED))

    assert archived.ticket.status is TicketStatus.ARCHIVED
    assert rejected.ticket.status is TicketStatus.REJECTED
    assert ticket_lifecycle.roll_up_work_order(ticket, make_work_order(WorkOrderStatus.NEW_WO_NEEDED)) is None
    with pytest.raises(ValueError):
        ticket_lifecycle.roll_up_work_order(ticket, make_work_order(ticket_id="other"))


def test_archive_during_work_is_left_to_the_roll_up(make_ticket, actor):
    ticket = make_ticket(TicketStatus.WORK_ORDER_IN_PROGRESS, owner="amm-1")

    with pytest.raises(UnauthorizedError):
        ticket_lifecycle.check_transition(ticket, TicketAction.ARCHIVE, actor("amm-1"))


def test_available_actions_depend_on_role_and_urgency():
    triage = ticket_lifecycle.available_actions(TicketStatus.SUBMITTED, Role.AREA_MANAGER)

    assert set(triage) == {TicketAction.REQUEST_INFO, TicketAction.APPROVE_FOR_ESTIMATION, TicketAction.REJECT}
    assert TicketAction.START_WORK not in ticket_lifecycle.available_actions(
        TicketStatus.SUBMITTED, Role.AREA_MAINTENANCE_MANAGER
    )
    assert TicketAction.START_WORK in ticket_lifecycle.available_actions(
        TicketStatus.SUBMITTED, Role.AREA_MAINTENANCE_MANAGER, urgent=True
    )


@pytest.mark.parametrize(
    ("status", "owner", "amount"),
    [
        (TicketStatus.SUBMITTED, "am-1", None),
        (TicketStatus.COST_ESTIMATION_APPROVED, "amm-1", "500"),
    ],
)
def test_maintenance_manager_archives_without_ownership(make_ticket, actor, now, status, owner, amount):
    ticket = make_ticket(status, owner=owner, amount=amount)

    change = ticket_lifecycle.archive_ticket(ticket, actor("amm-1"), now=now)

    assert change.action is TicketAction.ARCHIVE
    assert change.ticket.status is TicketStatus.ARCHIVED
    assert change.ticket.current_owner_user_id is None
    assert change.ticket.version == ticket.version + 1


def test_archive_is_refused_to_other_roles_and_states(make_ticket, actor):
    with pytest.raises(UnauthorizedError):
        ticket_lifecycle.archive_ticket(make_ticket(TicketStatus.SUBMITTED, owner="am-1"), actor("am-1"))
    with pytest.raises(IllegalTransitionError):
        ticket_lifecycle.archive_ticket(
            make_ticket(TicketStatus.COST_ESTIMATION_NEEDED, owner="amm-1"), actor("amm-1")
        )


def test_archive_waits_for_open_work_orders(make_ticket, make_work_order, actor):
    ticket = make_ticket(TicketStatus.COST_ESTIMATION_APPROVED, owner="amm-1", amount="500")

    with pytest.raises(IllegalTransitionError):
        ticket_lifecycle.archive_ticket(ticket, actor("amm-1"), work_orders=[make_work_order()])

    closed = make_work_order(WorkOrderStatus.NEW_WO_NEEDED, owner="amm-1")
    assert ticket_lifecycle.archive_ticket(ticket, actor("amm-1"), work_orders=[closed]).ticket.status is (
        TicketStatus.ARCHIVED
    )
