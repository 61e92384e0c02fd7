import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_allocator, get_number_space
from app.models.schemas import (
    AllocationRequest,
    AvailabilityOut,
    HolesOut,
    NumbersReservationRequest,
    TicketOut,
    ticket_out,
)
from app.services.allocator import Allocator
from app.services.number_space import NumberSpace

router = APIRouter(prefix="/raffles", tags=["raffles"])


@router.get("/{raffle_id}/availability", response_model=AvailabilityOut)
def availability(raffle_id: uuid.UUID, number_space: NumberSpace = Depends(get_number_space)):
    stats = number_space.availability(raffle_id)
    return {
        "raffle_id": str(raffle_id),
        "total": stats.total,
        "taken": stats.taken,
        "available": stats.available,
        "percentage": stats.percentage,
    }


@router.get("/{raffle_id}/holes", response_model=HolesOut)
def holes(
    raffle_id: uuid.UUID,
    start: Optional[int] = Query(None, ge=0),
    end: Optional[int] = Query(None, ge=0),
    limit: int = Query(500, ge=1, le=5000),
    number_space: NumberSpace = Depends(get_number_space),
):
    raffle = number_space.raffle(raffle_id)
    lower = raffle.number_start if start is None else start
    upper = raffle.number_end if end is None else end
    numbers = number_space.available_in_range(raffle_id, lower, upper)
    return {
        "raffle_id": str(raffle_id),
        "number_start": raffle.number_start,
        "number_end": raffle.number_end,
        "count": len(numbers),
        "numbers": [number_space.label(raffle, number) for number in numbers[:limit]],
    }


@router.post("/{raffle_id}/allocations", response_model=list[TicketOut], status_code=201)
def allocate(
    raffle_id: uuid.UUID,
    payload: AllocationRequest,
    allocator: Allocator = Depends(get_allocator),
):
    tickets = allocator.allocate(raffle_id, payload.quantity, payload.holder.to_holder())
    return [ticket_out(ticket) for ticket in tickets]


@router.post("/{raffle_id}/reservations", response_model=list[TicketOut], status_code=201)
def reserve_numbers(
    raffle_id: uuid.UUID,
    payload: NumbersReservationRequest,
    allocator: Allocator = Depends(get_allocator),
):
    tickets = allocator.allocate_numbers(
        raffle_id,
        payload.numbers,
        payload.holder.to_holder(),
        placeholder=payload.placeholder,
    )
    return [ticket_out(ticket) for ticket in tickets]
