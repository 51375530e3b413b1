"""
Admin / observability endpoints
===============================

POST   /api/v1/admin/bookings/{booking_id}/assign     -- assign a driver
GET    /api/v1/admin/bookings/{booking_id}/integrity  -- status/driver consistency
GET    /api/v1/admin/locks/{booking_id}               -- inspect the acceptance lock
DELETE /api/v1/admin/locks/{booking_id}               -- force release the lock
GET    /api/v1/admin/health                           -- simple health check
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from src.api.dependencies import get_actor, get_components, raise_for
from src.api.middleware import limiter
from src.api.schemas import (
    AssignRequest,
    HealthResponse,
    IntegrityResponse,
    LockStatusResponse,
    TransitionResponse,
)
from src.domain.entities import Actor
from src.domain.errors import WorkflowError
from src.domain.statuses import check_integrity
from src.services.wiring import Components

router = APIRouter(prefix="/admin", tags=["admin"])


async def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return actor


@router.post(
    "/bookings/{booking_id}/assign",
    response_model=TransitionResponse,
    summary="Assign a driver to a pending booking",
)
@limiter.limit("120/minute")
async def assign_driver(
    request: Request,
    booking_id: str,
    body: AssignRequest,
    actor: Actor = Depends(require_admin),
    components: Components = Depends(get_components),
):
    result = await components.workflow.assign_driver(
        booking_id, body.driver_id, actor, event_id=body.event_id
    )
    if isinstance(result, WorkflowError):
        raise_for(result)
    return TransitionResponse.from_result(result)


@router.get(
    "/bookings/{booking_id}/integrity",
    response_model=IntegrityResponse,
    summary="Check a booking's status against its driver assignment",
)
@limiter.limit("120/minute")
async def booking_integrity(
    request: Request,
    booking_id: str,
    actor: Actor = Depends(require_admin),
    components: Components = Depends(get_components),
):
    booking = await components.engine.load(booking_id)
    if isinstance(booking, WorkflowError):
        raise_for(booking)
    issues = check_integrity(booking)
    return IntegrityResponse(booking_id=booking_id, valid=not issues, issues=issues)


@router.get(
    "/locks/{booking_id}",
    response_model=LockStatusResponse,
    summary="Inspect the acceptance lock of a booking",
)
@limiter.limit("120/minute")
async def get_lock(
    request: Request,
    booking_id: str,
    actor: Actor = Depends(require_admin),
    components: Components = Depends(get_components),
):
    owner = await components.locks.owner(booking_id)
    return LockStatusResponse(booking_id=booking_id, locked=owner is not None, owner=owner)


@router.delete(
    "/locks/{booking_id}",
    summary="Force release the acceptance lock of a booking",
)
@limiter.limit("120/minute")
async def force_release_lock(
    request: Request,
    booking_id: str,
    actor: Actor = Depends(require_admin),
    components: Components = Depends(get_components),
):
    released = await components.locks.force_release(booking_id)
    return {"booking_id": booking_id, "released": released}


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
