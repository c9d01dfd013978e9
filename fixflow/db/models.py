"""SQLModel table definitions for the Fixflow data layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text
from sqlmodel import Field, SQLModel

from fixflow.workflow.money import MONEY_PRECISION, MONEY_SCALE


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    return str(uuid.uuid4())


class TicketTable(SQLModel, table=True):
    """Maintenance tickets raised by stores."""

    __tablename__ = "tickets"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    company_id: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    region_id: str = Field(sa_column=Column(String(64), nullable=False))
    store_id: str = Field(sa_column=Column(String(64), nullable=False))
    created_by_user_id: str = Field(sa_column=Column(String(64), nullable=False))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    urgent: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    status: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    current_owner_user_id: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    info_requested_by_user_id: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    estimated_amount: Decimal | None = Field(
        default=None, sa_column=Column(Numeric(MONEY_PRECISION, MONEY_SCALE), nullable=True)
    )
    estimated_by_user_id: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    estimated_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    approval_history: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class WorkOrderTable(SQLModel, table=True):
    """Vendor-side execution records; several may exist per ticket, one open at a time."""

    __tablename__ = "work_orders"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    vendor_company_id: str = Field(sa_column=Column(String(64), nullable=False))
    status: str = Field(sa_column=Column(String(50), nullable=False))
    current_owner_user_id: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    assigned_technician_id: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    scheduled_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    visits: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    cost_proposal: Decimal | None = Field(
        default=None, sa_column=Column(Numeric(MONEY_PRECISION, MONEY_SCALE), nullable=True)
    )
    revision_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    previous_work_order_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class WorkflowAuditLogTable(SQLModel, table=True):
    """Audit trail of every ticket and work-order transition."""

    __tablename__ = "workflow_audit_logs"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    entity_type: str = Field(sa_column=Column(String(20), nullable=False))
    entity_id: str = Field(sa_column=Column(String(36), nullable=False))
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    action: str = Field(sa_column=Column(String(100), nullable=False))
    actor: str = Field(sa_column=Column(String(255), nullable=False))
    from_status: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    to_status: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    note: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    metadata_: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class UserTable(SQLModel, table=True):
    """Roster of internal and vendor users with their role and scope."""

    __tablename__ = "users"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    role: str = Field(sa_column=Column(String(10), nullable=False, index=True))
    company_id: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    region_id: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    store_id: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
