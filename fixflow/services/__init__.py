"""Service layer exports."""

from .repository import AuditEntry, EntityType, WorkflowRepository
from .workflow import TicketDetails, WorkflowService

__all__ = [
    "AuditEntry",
    "EntityType",
    "TicketDetails",
    "WorkflowRepository",
    "WorkflowService",
]
