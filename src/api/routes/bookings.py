"""
Booking lifecycle endpoints
===========================

GET   /api/v1/bookings/{booking_id}                  -- current booking snapshot
GET   /api/v1/bookings/{booking_id}/history          -- applied status updates
PATCH /api/v1/bookings/{booking_id}/status           -- driver status change / heartbeat
POST  /api/v1/bookings/{booking_id}/accept           -- driver accepts a pending booking
POST  /api/v1/bookings/{booking_id}/complete         -- geofenced delivery confirmation
POST  /api/v1/bookings/{booking_id}/confirm-payment  -- close out a delivered booking
POST  /api/v1/bookings/{booking_id}/cancel           -- cancel a booking
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_actor, get_components, raise_for
from src.api.middleware import limiter
from src.api.schemas import (
    AcceptRequest,
    BookingResponse,
    CancelRequest,
    CompleteDeliveryRequest,
    StatusHistoryEntry,
    StatusUpdateRequest,
    TransitionResponse,
)
from src.domain.entities import Actor
from src.domain.errors import WorkflowError
from src.services.state_machine import Outcome
from src.services.wiring import Components

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _respond(result: Outcome) -> TransitionResponse:
    if isinstance(result, WorkflowError):
        raise_for(result)
    return TransitionResponse.from_result(result)


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Get a booking",
)
@limiter.limit("120/minute")
async def get_booking(
    request: Request,
    booking_id: str,
    actor: Actor = Depends(get_actor),
    components: Components = Depends(get_components),
):
    booking = await components.engine.get_booking(booking_id, actor)
    if isinstance(booking, WorkflowError):
        raise_for(booking)
    return BookingResponse.from_booking(booking)


@router.get(
    "/{booking_id}/history",
    response_model=list[StatusHistoryEntry],
    summary="List applied status updates, oldest first",
)
@limiter.limit("120/minute")
async def get_history(
    request: Request,
    booking_id: str,
    actor: Actor = Depends(get_actor),
    components: Components = Depends(get_components),
):
    booking = await components.engine.get_booking(booking_id, actor)
    if isinstance(booking, WorkflowError):
        raise_for(booking)
    entries = await components.store.status_history(booking_id)
    return [StatusHistoryEntry(**entry) for entry in entries]


@router.patch(
    "/{booking_id}/status",
    response_model=TransitionResponse,
    summary="Update delivery status",
    description=(
        "Moves the booking along the delivery lifecycle.  Sending the "
        "current status is a heartbeat: location is refreshed and the "
        "response is marked idempotent."
    ),
)
@limiter.limit("120/minute")
async def update_status(
    request: Request,
    booking_id: str,
    body: StatusUpdateRequest,
    actor: Actor = Depends(get_actor),
    components: Components = Depends(get_components),
):
    result = await components.workflow.update_status(
        booking_id,
        body.status,
        actor,
        location=body.location.to_domain() if body.location else None,
        notes=body.notes,
        event_id=body.event_id,
        event_timestamp=body.event_timestamp,
    )
    return _respond(result)


@router.post(
    "/{booking_id}/accept",
    response_model=TransitionResponse,
    summary="Accept a pending booking",
    responses={423: {"description": "Another driver is accepting this booking."}},
)
@limiter.limit("120/minute")
async def accept_booking(
    request: Request,
    booking_id: str,
    body: Optional[AcceptRequest] = None,
    actor: Actor = Depends(get_actor),
    components: Components = Depends(get_components),
):
    body = body or AcceptRequest()
    result = await components.workflow.accept_booking(
        booking_id,
        actor,
        event_id=body.event_id,
        event_timestamp=body.event_timestamp,
    )
    return _respond(result)


@router.post(
    "/{booking_id}/complete",
    response_model=TransitionResponse,
    summary="Confirm delivery at the drop-off point",
)
@limiter.limit("120/minute")
async def complete_delivery(
    request: Request,
    booking_id: str,
    body: CompleteDeliveryRequest,
    actor: Actor = Depends(get_actor),
    components: Components = Depends(get_components),
):
    result = await components.workflow.complete_delivery(
        booking_id,
        actor,
        body.location.to_domain() if body.location else None,
        notes=body.notes,
        photo_ref=body.photo_ref,
        recipient_name=body.recipient_name,
        recipient_phone=body.recipient_phone,
        event_id=body.event_id,
        event_timestamp=body.event_timestamp,
    )
    return _respond(result)


@router.post(
    "/{booking_id}/confirm-payment",
    response_model=TransitionResponse,
    summary="Mark a delivered booking as completed",
)
@limiter.limit("120/minute")
async def confirm_payment(
    request: Request,
    booking_id: str,
    actor: Actor = Depends(get_actor),
    components: Components = Depends(get_components),
):
    return _respond(await components.workflow.confirm_payment(booking_id, actor))


@router.post(
    "/{booking_id}/cancel",
    response_model=TransitionResponse,
    summary="Cancel a booking",
)
@limiter.limit("120/minute")
async def cancel_booking(
    request: Request,
    booking_id: str,
    body: Optional[CancelRequest] = None,
    actor: Actor = Depends(get_actor),
    components: Components = Depends(get_components),
):
    reason = body.reason if body else None
    return _respond(await components.workflow.cancel_booking(booking_id, actor, reason))
