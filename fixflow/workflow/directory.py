from __future__ import annotations

import logging
from typing import Iterable, Protocol

from .models import User
from .roles import Role, RoleScope, scope_of

logger = logging.getLogger(__name__)


class UserDirectory(Protocol):
    """Resolve the user currently holding a role within an organizational scope."""

    def resolve_user_for_role(
        self,
        company_id: str,
        role: Role,
        region_id: str | None = None,
        store_id: str | None = None,
    ) -> User | None:
        ...

    def get_user(self, user_id: str) -> User | None:
        ...


class StaticUserDirectory:
    """In-memory directory over a roster snapshot.

    Matching follows the scope the role is bound to: store roles match on
    store, region roles on region, company and vendor roles on company only.
    When several active users qualify, the lowest id wins so resolution stays
    deterministic.
    """

    def __init__(self, users: Iterable[User]) -> None:
        self._users: tuple[User, ...] = tuple(users)

    @property
    def users(self) -> tuple[User, ...]:
        return self._users

    def get_user(self, user_id: str) -> User | None:
        for user in self._users:
            if user.id == user_id:
                return user
        return None

    def resolve_user_for_role(
        self,
        company_id: str,
        role: Role,
        region_id: str | None = None,
        store_id: str | None = None,
    ) -> User | None:
        scope = scope_of(role)
        candidates = [
            user
            for user in self._users
            if user.active
            and user.role is role
            and user.company_id == company_id
            and (scope is not RoleScope.REGION or region_id is None or user.region_id == region_id)
            and (scope is not RoleScope.STORE or store_id is None or user.store_id == store_id)
        ]
        if not candidates:
            return None
        candidates.sort(key=lambda user: user.id)
        if len(candidates) > 1:
            logger.warning(
                "Multiple users hold role %s for company=%s region=%s; picking %s",
                role.value,
                company_id,
                region_id,
                candidates[0].id,
            )
        return candidates[0]
