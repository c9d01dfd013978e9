from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from fixflow.workflow import (
    Actor,
    CostEstimation,
    Role,
    StaticUserDirectory,
    Ticket,
    TicketStatus,
    User,
    WorkOrder,
    WorkOrderStatus,
)

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
COMPANY = "acme"
REGION = "north"
STORE = "store-7"
VENDOR = "fixit"

ROSTER = (
    User("sm-1", "Selin Store", Role.STORE_MANAGER, COMPANY, region_id=REGION, store_id=STORE),
    User("sm-2", "Sami Store", Role.STORE_MANAGER, COMPANY, region_id=REGION, store_id="store-8"),
    User("am-1", "Ada Area", Role.AREA_MANAGER, COMPANY, region_id=REGION),
    User("am-0", "Arda South", Role.AREA_MANAGER, COMPANY, region_id="south"),
    User("amm-1", "Mert Maintenance", Role.AREA_MAINTENANCE_MANAGER, COMPANY, region_id=REGION),
    User("d-1", "Deniz Sales", Role.SALES_DIRECTOR, COMPANY),
    User("c2-1", "Cem Maintenance", Role.MAINTENANCE_DIRECTOR, COMPANY),
    User("bod-1", "Board", Role.BOARD_OF_DIRECTORS, COMPANY),
    User("s1-1", "Vendor Admin", Role.SERVICE_ADMIN, VENDOR),
    User("s2-1", "Tech One", Role.TECHNICIAN, VENDOR),
    User("s2-2", "Tech Two", Role.TECHNICIAN, VENDOR),
    User("s2-9", "Tech Retired", Role.TECHNICIAN, VENDOR, active=False),
    User("s3-1", "Vendor Finance", Role.FINANCE_BACKOFFICE, VENDOR),
)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def roster() -> tuple[User, ...]:
    return ROSTER


@pytest.fixture
def directory() -> StaticUserDirectory:
    return StaticUserDirectory(ROSTER)


@pytest.fixture
def actor():
    users = {user.id: user for user in ROSTER}

    def _actor(user_id: str) -> Actor:
        return Actor(user_id=user_id, role=users[user_id].role)

    return _actor


@pytest.fixture
def make_ticket():
    def _make(
        status: TicketStatus = TicketStatus.DRAFT,
        *,
        owner: str | None = "sm-1",
        amount: str | None = None,
        **overrides,
    ) -> Ticket:
        values = {
            "id": "ticket-1",
            "company_id": COMPANY,
            "region_id": REGION,
            "store_id": STORE,
            "created_by_user_id": "sm-1",
            "title": "Freezer leaking",
            "description": "Aisle 4 freezer drips onto the floor",
            "status": status,
            "current_owner_user_id": owner,
            "created_at": NOW,
            "updated_at": NOW,
        }
        if amount is not None:
            values["cost_estimation"] = CostEstimation(Decimal(amount), "amm-1", NOW)
        values.update(overrides)
        return Ticket(**values)

    return _make


@pytest.fixture
def make_work_order():
    def _make(status: WorkOrderStatus = WorkOrderStatus.CREATED, *, owner: str | None = "s1-1", **overrides) -> WorkOrder:
        values = {
            "id": "wo-1",
            "ticket_id": "ticket-1",
            "vendor_company_id": VENDOR,
            "status": status,
            "current_owner_user_id": owner,
            "created_at": NOW,
            "updated_at": NOW,
        }
        values.update(overrides)
        return WorkOrder(**values)

    return _make
