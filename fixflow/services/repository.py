from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from fixflow.db.models import TicketTable, UserTable, WorkflowAuditLogTable, WorkOrderTable
from fixflow.workflow.errors import ConcurrentModificationError
from fixflow.workflow.models import ApprovalRecord, CostEstimation, Ticket, User, Visit, WorkOrder
from fixflow.workflow.roles import Role
from fixflow.workflow.state import ApprovalDecision, TicketStatus, VisitOutcome, WorkOrderStatus


class EntityType(str, Enum):
    TICKET = "TICKET"
    WORK_ORDER = "WORK_ORDER"


@dataclass(slots=True)
class AuditEntry:
    """Audit information describing one workflow transition."""

    id: str
    entity_type: EntityType
    entity_id: str
    ticket_id: str
    action: str
    actor: str
    from_status: str | None
    to_status: str | None
    created_at: datetime
    note: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


class WorkflowRepository:
    """Persistence for tickets, work orders, their audit trail and the user roster.

    Updates are compare-and-swap on ``version``: a snapshot at version ``n``
    only replaces the stored row at version ``n - 1``. Everything passed to a
    single :meth:`commit` call is written in one transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def commit(
        self,
        *,
        tickets: Sequence[Ticket] = (),
        work_orders: Sequence[WorkOrder] = (),
        audit: Sequence[AuditEntry] = (),
    ) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                for ticket in tickets:
                    if ticket.version == 1:
                        session.add(TicketTable(**self._ticket_values(ticket)))
                    else:
                        await self._swap(session, TicketTable, ticket.id, ticket.version, self._ticket_values(ticket))
                # new rows must exist before the audit rows referencing them
                await session.flush()
                for work_order in work_orders:
                    if work_order.version == 1:
                        session.add(WorkOrderTable(**self._work_order_values(work_order)))
                    else:
                        await self._swap(
                            session,
                            WorkOrderTable,
                            work_order.id,
                            work_order.version,
                            self._work_order_values(work_order),
                        )
                await session.flush()
                for entry in audit:
                    session.add(
                        WorkflowAuditLogTable(
                            id=entry.id,
                            entity_type=entry.entity_type.value,
                            entity_id=entry.entity_id,
                            ticket_id=entry.ticket_id,
                            action=entry.action,
                            actor=entry.actor,
                            from_status=entry.from_status,
                            to_status=entry.to_status,
                            note=entry.note,
                            metadata_=dict(entry.metadata),
                            created_at=entry.created_at,
                        )
                    )

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            if row is None:
                return None
            return self._table_to_ticket(row)

    async def list_tickets(self, *, status: TicketStatus | None = None) -> Sequence[Ticket]:
        statement = select(TicketTable).order_by(TicketTable.created_at.desc())
        if status is not None:
            statement = statement.where(TicketTable.status == status.value)
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return [self._table_to_ticket(row) for row in result.scalars().all()]

    async def get_work_order(self, work_order_id: str) -> WorkOrder | None:
        async with self._session_factory() as session:
            row = await session.get(WorkOrderTable, work_order_id)
            if row is None:
                return None
            return self._table_to_work_order(row)

    async def list_work_orders(self, ticket_id: str) -> Sequence[WorkOrder]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WorkOrderTable)
                .where(WorkOrderTable.ticket_id == ticket_id)
                .order_by(WorkOrderTable.created_at.asc())
            )
            return [self._table_to_work_order(row) for row in result.scalars().all()]

    async def list_audit(self, ticket_id: str) -> Sequence[AuditEntry]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WorkflowAuditLogTable)
                .where(WorkflowAuditLogTable.ticket_id == ticket_id)
                .order_by(WorkflowAuditLogTable.created_at.asc())
            )
            return [self._table_to_audit(row) for row in result.scalars().all()]

    async def add_users(self, users: Iterable[User]) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                for user in users:
                    await session.merge(
                        UserTable(
                            id=user.id,
                            name=user.name,
                            role=user.role.value,
                            company_id=user.company_id,
                            region_id=user.region_id,
                            store_id=user.store_id,
                            is_active=user.active,
                        )
                    )

    async def get_user(self, user_id: str) -> User | None:
        async with self._session_factory() as session:
            row = await session.get(UserTable, user_id)
            if row is None:
                return None
            return self._table_to_user(row)

    async def list_users(self, company_ids: Iterable[str]) -> Sequence[User]:
        """Active roster for the given retail and vendor companies."""

        ids = sorted({company_id for company_id in company_ids if company_id})
        if not ids:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserTable)
                .where(UserTable.company_id.in_(ids))  # type: ignore[attr-defined]
                .where(UserTable.is_active == True)  # noqa: E712
                .order_by(UserTable.id.asc())  # type: ignore[attr-defined]
            )
            return [self._table_to_user(row) for row in result.scalars().all()]

    @staticmethod
    async def _swap(
        session: AsyncSession,
        table: type[SQLModel],
        entity_id: str,
        version: int,
        values: dict[str, Any],
    ) -> None:
        values = {key: value for key, value in values.items() if key not in {"id", "created_at"}}
        result = await session.execute(
            update(table)
            .where(table.id == entity_id)  # type: ignore[attr-defined]
            .where(table.version == version - 1)  # type: ignore[attr-defined]
            .values(**values)
        )
        if result.rowcount != 1:
            raise ConcurrentModificationError(
                f"{table.__tablename__} row {entity_id} was modified concurrently (expected version {version - 1})"
            )

    @staticmethod
    def _ticket_values(ticket: Ticket) -> dict[str, Any]:
        estimation = ticket.cost_estimation
        return {
            "id": ticket.id,
            "company_id": ticket.company_id,
            "region_id": ticket.region_id,
            "store_id": ticket.store_id,
            "created_by_user_id": ticket.created_by_user_id,
            "title": ticket.title,
            "description": ticket.description,
            "urgent": ticket.urgent,
            "status": ticket.status.value,
            "current_owner_user_id": ticket.current_owner_user_id,
            "info_requested_by_user_id": ticket.info_requested_by_user_id,
            "estimated_amount": estimation.estimated_amount if estimation else None,
            "estimated_by_user_id": estimation.estimated_by_user_id if estimation else None,
            "estimated_at": estimation.estimated_at if estimation else None,
            "approval_history": [
                {
                    "role": record.role.value,
                    "user_id": record.user_id,
                    "decision": record.decision.value,
                    "decided_at": record.decided_at.isoformat(),
                    "reason": record.reason,
                }
                for record in ticket.approval_history
            ],
            "version": ticket.version,
            "created_at": ticket.created_at,
            "updated_at": ticket.updated_at,
        }

    @staticmethod
    def _work_order_values(work_order: WorkOrder) -> dict[str, Any]:
        return {
            "id": work_order.id,
            "ticket_id": work_order.ticket_id,
            "vendor_company_id": work_order.vendor_company_id,
            "status": work_order.status.value,
            "current_owner_user_id": work_order.current_owner_user_id,
            "assigned_technician_id": work_order.assigned_technician_id,
            "scheduled_at": work_order.scheduled_at,
            "visits": [
                {
                    "technician_user_id": visit.technician_user_id,
                    "started_at": visit.started_at.isoformat(),
                    "ended_at": visit.ended_at.isoformat() if visit.ended_at else None,
                    "outcome": visit.outcome.value if visit.outcome else None,
                    "note": visit.note,
                }
                for visit in work_order.visits
            ],
            "cost_proposal": work_order.cost_proposal,
            "revision_count": work_order.revision_count,
            "previous_work_order_id": work_order.previous_work_order_id,
            "version": work_order.version,
            "created_at": work_order.created_at,
            "updated_at": work_order.updated_at,
        }

    @staticmethod
    def _table_to_ticket(row: TicketTable) -> Ticket:
        estimation = None
        if row.estimated_amount is not None:
            estimation = CostEstimation(
                estimated_amount=Decimal(row.estimated_amount),
                estimated_by_user_id=row.estimated_by_user_id or "",
                estimated_at=_ensure_datetime(row.estimated_at),
            )
        return Ticket(
            id=row.id,
            company_id=row.company_id,
            region_id=row.region_id,
            store_id=row.store_id,
            created_by_user_id=row.created_by_user_id,
            title=row.title,
            description=row.description,
            status=TicketStatus(row.status),
            current_owner_user_id=row.current_owner_user_id,
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
            urgent=bool(row.urgent),
            info_requested_by_user_id=row.info_requested_by_user_id,
            cost_estimation=estimation,
            approval_history=tuple(
                ApprovalRecord(
                    role=Role(item["role"]),
                    user_id=item["user_id"],
                    decision=ApprovalDecision(item["decision"]),
                    decided_at=_parse_datetime(item["decided_at"]),
                    reason=item.get("reason"),
                )
                for item in row.approval_history or []
            ),
            version=row.version,
        )

    @staticmethod
    def _table_to_work_order(row: WorkOrderTable) -> WorkOrder:
        return WorkOrder(
            id=row.id,
            ticket_id=row.ticket_id,
            vendor_company_id=row.vendor_company_id,
            status=WorkOrderStatus(row.status),
            current_owner_user_id=row.current_owner_user_id,
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
            assigned_technician_id=row.assigned_technician_id,
            scheduled_at=_ensure_datetime(row.scheduled_at) if row.scheduled_at else None,
            visits=tuple(
                Visit(
                    technician_user_id=item["technician_user_id"],
                    started_at=_parse_datetime(item["started_at"]),
                    ended_at=_parse_datetime(item["ended_at"]) if item.get("ended_at") else None,
                    outcome=VisitOutcome(item["outcome"]) if item.get("outcome") else None,
                    note=item.get("note"),
                )
                for item in row.visits or []
            ),
            cost_proposal=Decimal(row.cost_proposal) if row.cost_proposal is not None else None,
            revision_count=row.revision_count,
            previous_work_order_id=row.previous_work_order_id,
            version=row.version,
        )

    @staticmethod
    def _table_to_audit(row: WorkflowAuditLogTable) -> AuditEntry:
        return AuditEntry(
            id=row.id,
            entity_type=EntityType(row.entity_type),
            entity_id=row.entity_id,
            ticket_id=row.ticket_id,
            action=row.action,
            actor=row.actor,
            from_status=row.from_status,
            to_status=row.to_status,
            created_at=_ensure_datetime(row.created_at),
            note=row.note,
            metadata=dict(row.metadata_ or {}),
        )

    @staticmethod
    def _table_to_user(row: UserTable) -> User:
        return User(
            id=row.id,
            name=row.name,
            role=Role(row.role),
            company_id=row.company_id,
            region_id=row.region_id,
            store_id=row.store_id,
            active=bool(row.is_active),
        )


def _parse_datetime(value: str) -> datetime:
    return _ensure_datetime(datetime.fromisoformat(value))


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
