from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from fixflow.workflow.models import Actor
from fixflow.workflow.roles import Role, parse_role


def resolve_actor(user_id: str | None, role: str | None) -> Actor:
    """Build the acting identity from the headers set by the upstream gateway."""

    if not user_id or not user_id.strip() or not role:
        raise HTTPException(status_code=401, detail="Missing identity headers")
    try:
        parsed = parse_role(role)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=f"Unknown role: {role}") from exc
    return Actor(user_id=user_id.strip(), role=parsed)


async def get_current_actor(
    request: Request,
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> Actor:
    """Identity and role arrive already verified; this only parses them."""

    cached = getattr(request.state, "actor", None)
    if isinstance(cached, Actor):
        return cached

    actor = resolve_actor(x_user_id, x_user_role)
    request.state.actor = actor
    return actor


def role_required(*roles: Role) -> Callable[[Actor], Actor]:
    """Dependency factory ensuring the current actor holds one of ``roles``."""

    allowed = frozenset(roles)

    async def dependency(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
        if actor.role not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return actor

    return dependency


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
TicketCreator = Annotated[
    Actor, Depends(role_required(Role.STORE_MANAGER, Role.AREA_MAINTENANCE_MANAGER))
]
