"""Amount-derived approval chain.

The chain is a pure function of the estimated amount: every estimate up to
1000 needs the area manager only, up to 3000 adds the sales and maintenance
directors, and anything above also needs the board. Threshold amounts belong
to the lower tier.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Final, Sequence, Union

from .directory import UserDirectory
from .errors import InvalidChainStateError, NoApproverAvailableError
from .models import ApprovalChainState, Ticket, TicketScope
from .money import MoneyLike, to_money
from .roles import Role
from .state import ApprovalDecision, TicketStatus

logger = logging.getLogger(__name__)

LOW_TIER_LIMIT: Final = Decimal("1000")
MID_TIER_LIMIT: Final = Decimal("3000")

_LOW_TIER: tuple[Role, ...] = (Role.AREA_MANAGER,)
_MID_TIER: tuple[Role, ...] = (Role.AREA_MANAGER, Role.SALES_DIRECTOR, Role.MAINTENANCE_DIRECTOR)
_HIGH_TIER: tuple[Role, ...] = _MID_TIER + (Role.BOARD_OF_DIRECTORS,)


class _ChainComplete:
    """Sentinel returned once every role of the chain has approved."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "CHAIN_COMPLETE"

    def __bool__(self) -> bool:
        return False


CHAIN_COMPLETE: Final = _ChainComplete()


@dataclass(frozen=True, slots=True)
class Approver:
    role: Role
    user_id: str
    user_name: str
    is_last_approver: bool


NextApprover = Union[Approver, _ChainComplete]


def required_approvers(amount: MoneyLike) -> tuple[Role, ...]:
    value = to_money(amount)
    if value <= LOW_TIER_LIMIT:
        return _LOW_TIER
    if value <= MID_TIER_LIMIT:
        return _MID_TIER
    return _HIGH_TIER


def next_approver(
    chain: Sequence[Role],
    scope: TicketScope,
    current_role: Role | None,
    directory: UserDirectory,
) -> NextApprover:
    """Resolve who approves after ``current_role``.

    ``None`` starts the chain. Raises :class:`InvalidChainStateError` when
    ``current_role`` is not part of ``chain`` and
    :class:`NoApproverAvailableError` when nobody holds the next role.
    """

    if current_role is None:
        index = 0
    else:
        try:
            index = list(chain).index(current_role) + 1
        except ValueError:
            error = InvalidChainStateError(current_role, chain)
            logger.error("Approval chain defect: %s", error.message)
            raise error from None

    if index >= len(chain):
        return CHAIN_COMPLETE

    role = chain[index]
    # only the area manager is regional; directors and board are company-wide
    region_id = scope.region_id if role is Role.AREA_MANAGER else None
    user = directory.resolve_user_for_role(scope.company_id, role, region_id=region_id)
    if user is None:
        raise NoApproverAvailableError(role)
    return Approver(
        role=role,
        user_id=user.id,
        user_name=user.name,
        is_last_approver=index == len(chain) - 1,
    )


def is_valid_approver(ticket: Ticket, acting_user_id: str, acting_role: Role) -> bool:
    """Capability check: the actor owns the ticket and holds a role of its chain."""

    if ticket.cost_estimation is None:
        return False
    if ticket.current_owner_user_id != acting_user_id:
        return False
    return acting_role in required_approvers(ticket.cost_estimation.estimated_amount)


def chain_state(ticket: Ticket) -> ApprovalChainState | None:
    if ticket.cost_estimation is None:
        return None
    required = required_approvers(ticket.cost_estimation.estimated_amount)
    approved = tuple(
        record.role for record in ticket.approval_history if record.decision is ApprovalDecision.APPROVED
    )
    complete = ticket.status is TicketStatus.COST_ESTIMATION_APPROVED or (
        bool(approved) and approved[-1] == required[-1]
    )
    pending_role: Role | None = None
    if not complete and ticket.status is TicketStatus.COST_ESTIMATION_APPROVAL_NEEDED:
        pending_role = next((role for role in required if role not in approved), None)
    return ApprovalChainState(required=required, approved=approved, pending_role=pending_role, complete=complete)
