"""Database models."""

from .models import TicketTable, UserTable, WorkflowAuditLogTable, WorkOrderTable

__all__ = [
    "TicketTable",
    "UserTable",
    "WorkOrderTable",
    "WorkflowAuditLogTable",
]
