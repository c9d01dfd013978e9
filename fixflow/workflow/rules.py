"""Transition tables shared by the ticket and work-order state machines."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping

from .errors import IllegalTransitionError, UnauthorizedError
from .models import Actor
from .roles import Role


@dataclass(frozen=True, slots=True)
class TransitionRule:
    """One row of a transition table.

    A rule without ``allowed_roles`` is a system transition: it is driven by
    another entity's outcome and never by a user.
    """

    source: Enum
    action: Enum
    target: Enum
    allowed_roles: frozenset[Role] = frozenset()
    requires_ownership: bool = True
    creator_only: bool = False
    urgent_only: bool = False

    @property
    def is_system(self) -> bool:
        return not self.allowed_roles


RuleTable = Mapping[tuple[Enum, Enum], TransitionRule]


def build_table(rules: Iterable[TransitionRule]) -> dict[tuple[Enum, Enum], TransitionRule]:
    table: dict[tuple[Enum, Enum], TransitionRule] = {}
    for rule in rules:
        key = (rule.source, rule.action)
        if key in table:
            raise ValueError(f"Duplicate transition rule for {rule.source.value} / {rule.action.value}")
        table[key] = rule
    return table


def find_rule(table: RuleTable, status: Enum, action: Enum) -> TransitionRule:
    rule = table.get((status, action))
    if rule is None:
        raise IllegalTransitionError(status, action)
    return rule


def authorize(
    rule: TransitionRule,
    actor: Actor | None,
    *,
    owner_id: str | None,
    creator_id: str | None = None,
) -> None:
    """Raise :class:`UnauthorizedError` unless ``actor`` may apply ``rule``.

    ``actor`` is ``None`` for system transitions only.
    """

    if rule.is_system:
        if actor is not None:
            raise UnauthorizedError(
                actor.user_id,
                owner_id,
                detail=f"{rule.action.value} is applied by the system, not by users",
            )
        return
    if actor is None:
        raise UnauthorizedError("system", owner_id, detail=f"{rule.action.value} requires an acting user")
    if actor.role not in rule.allowed_roles:
        allowed = ", ".join(sorted(role.value for role in rule.allowed_roles))
        raise UnauthorizedError(
            actor.user_id,
            owner_id,
            detail=f"Role {actor.role.value} may not {rule.action.value}; allowed roles: {allowed}",
        )
    if rule.creator_only and actor.user_id != creator_id:
        raise UnauthorizedError(
            actor.user_id,
            creator_id,
            detail=f"Only the creator {creator_id} may {rule.action.value}",
        )
    if rule.requires_ownership and actor.user_id != owner_id:
        raise UnauthorizedError(actor.user_id, owner_id)


def actions_for(table: RuleTable, status: Enum, role: Role) -> list[Enum]:
    return [
        rule.action
        for (source, _), rule in table.items()
        if source == status and role in rule.allowed_roles
    ]
