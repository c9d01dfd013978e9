"""Maintenance ticket and work-order workflow core."""

from .approval import CHAIN_COMPLETE, Approver, chain_state, is_valid_approver, next_approver, required_approvers
from .directory import StaticUserDirectory, UserDirectory
from .errors import (
    ConcurrentModificationError,
    IllegalTransitionError,
    InvalidAmountError,
    InvalidChainStateError,
    NoApproverAvailableError,
    NoAssigneeAvailableError,
    NoEstimationPendingError,
    RevisionLimitExceededError,
    TicketNotFoundError,
    UnauthorizedError,
    WorkflowError,
    WorkOrderNotFoundError,
)
from .gate import ApprovalGate, ApprovalOutcome, Decision
from .models import (
    Actor,
    ApprovalChainState,
    ApprovalRecord,
    CostEstimation,
    SideEffect,
    SideEffectKind,
    Ticket,
    TicketChange,
    TicketScope,
    User,
    Visit,
    WorkOrder,
    WorkOrderChange,
)
from .roles import Role, RoleScope, parse_role
from .state import (
    ApprovalDecision,
    TicketAction,
    TicketStatus,
    VisitOutcome,
    WorkOrderAction,
    WorkOrderStatus,
)

__all__ = [
    "Actor",
    "ApprovalChainState",
    "ApprovalDecision",
    "ApprovalGate",
    "ApprovalOutcome",
    "ApprovalRecord",
    "Approver",
    "CHAIN_COMPLETE",
    "ConcurrentModificationError",
    "CostEstimation",
    "Decision",
    "IllegalTransitionError",
    "InvalidAmountError",
    "InvalidChainStateError",
    "NoApproverAvailableError",
    "NoAssigneeAvailableError",
    "NoEstimationPendingError",
    "RevisionLimitExceededError",
    "Role",
    "RoleScope",
    "SideEffect",
    "SideEffectKind",
    "StaticUserDirectory",
    "Ticket",
    "TicketAction",
    "TicketChange",
    "TicketNotFoundError",
    "TicketScope",
    "TicketStatus",
    "UnauthorizedError",
    "User",
    "UserDirectory",
    "Visit",
    "VisitOutcome",
    "WorkOrder",
    "WorkOrderAction",
    "WorkOrderChange",
    "WorkOrderNotFoundError",
    "WorkOrderStatus",
    "WorkflowError",
    "chain_state",
    "is_valid_approver",
    "next_approver",
    "parse_role",
    "required_approvers",
]
