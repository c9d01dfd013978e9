"""Errors raised by the workflow core and its orchestration layer.

Every error carries a stable ``code`` and the HTTP status the API layer
renders it with. None of them is transient: resolving one needs a different
input or a different state.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Sequence


class WorkflowError(RuntimeError):
    """Base error for workflow decisions."""

    code = "WORKFLOW_ERROR"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class IllegalTransitionError(WorkflowError):
    """Raised when an action is not defined for the entity's current status."""

    code = "ILLEGAL_TRANSITION"
    status_code = 409

    def __init__(self, from_status: Any, attempted: Any, *, detail: str | None = None) -> None:
        self.from_status = from_status
        self.attempted = attempted
        message = f"Cannot {_label(attempted)} from status {_label(from_status)}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class UnauthorizedError(WorkflowError):
    """Raised when the actor is not the current owner or lacks the required role."""

    code = "UNAUTHORIZED"
    status_code = 403

    def __init__(self, actor: str, required_owner: str | None, *, detail: str | None = None) -> None:
        self.actor = actor
        self.required_owner = required_owner
        message = detail or f"User {actor} may not act; current owner is {required_owner or 'nobody'}"
        super().__init__(message)


class InvalidAmountError(WorkflowError):
    """Raised for negative, zero (where positive is required) or non-finite amounts."""

    code = "INVALID_AMOUNT"
    status_code = 400

    def __init__(self, amount: Any, *, detail: str | None = None) -> None:
        self.amount = amount
        super().__init__(detail or f"Invalid amount: {amount!r}")


class NoAssigneeAvailableError(WorkflowError):
    """Raised when no active user holds the role a transition hands the entity to."""

    code = "NO_ASSIGNEE_AVAILABLE"
    status_code = 422
    _holder = "user"

    def __init__(self, role: Any) -> None:
        self.role = role
        super().__init__(f"No active {self._holder} holds role {_label(role)}")


class NoApproverAvailableError(NoAssigneeAvailableError):
    """Raised when the approval chain reaches a role nobody is staffed for."""

    code = "NO_APPROVER_AVAILABLE"
    _holder = "approver"


class InvalidChainStateError(WorkflowError):
    """Raised when a recorded approver role is not part of the amount-derived chain."""

    code = "INVALID_CHAIN_STATE"
    status_code = 500

    def __init__(self, role: Any, chain: Sequence[Any]) -> None:
        self.role = role
        self.chain = tuple(chain)
        chain_text = " -> ".join(_label(item) for item in self.chain) or "(empty)"
        super().__init__(f"Approver role {_label(role)} is not part of chain {chain_text}")


class NoEstimationPendingError(WorkflowError):
    """Raised when an approval decision targets a ticket without a pending estimation."""

    code = "NO_ESTIMATION_PENDING"
    status_code = 409

    def __init__(self, ticket_id: str) -> None:
        self.ticket_id = ticket_id
        super().__init__(f"Ticket {ticket_id} has no cost estimation awaiting approval")


class TicketNotFoundError(WorkflowError):
    """Raised when an operation targets a non-existent ticket."""

    code = "NOT_FOUND"
    status_code = 404


class WorkOrderNotFoundError(WorkflowError):
    """Raised when an operation targets a non-existent work order."""

    code = "NOT_FOUND"
    status_code = 404


class ConcurrentModificationError(WorkflowError):
    """Raised when a compare-and-swap write loses against a concurrent writer."""

    code = "CONFLICT"
    status_code = 409


class RevisionLimitExceededError(WorkflowError):
    """Raised when the configured cap on cost revisions has been reached."""

    code = "REVISION_LIMIT"
    status_code = 409


def _label(value: Any) -> str:
    if isinstance(value, Decimal):
        return str(value)
    return str(getattr(value, "value", value))
