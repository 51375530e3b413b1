"""FastAPI dependency injection helpers."""

from __future__ import annotations

from typing import NoReturn, Optional

from fastapi import Header, HTTPException, Request

from src.domain.entities import Actor
from src.domain.enums import ActorRole
from src.domain.errors import WorkflowError
from src.services.wiring import Components


def get_components(request: Request) -> Components:
    components: Optional[Components] = getattr(request.app.state, "components", None)
    if components is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return components


async def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
    x_client_source: Optional[str] = Header(None),
) -> Actor:
    """Identity is established upstream; this layer only reads the headers."""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=401, detail="Missing actor identity")
    try:
        role = ActorRole(x_actor_role.strip().lower())
    except ValueError:
        raise HTTPException(status_code=401, detail="Unknown actor role")
    source = x_client_source or f"{role.value}_app"
    return Actor(id=x_actor_id, role=role, source=source)


def raise_for(error: WorkflowError) -> NoReturn:
    raise HTTPException(status_code=error.http_status, detail=error.to_dict())
