from __future__ import annotations

from datetime import datetime
from typing import Optional
import uuid

from pydantic import BaseModel, EmailStr, Field

from app.models.tickets import Holder, Ticket


class HealthResponse(BaseModel):
    status: str
    time: datetime


class MigrationRunResponse(BaseModel):
    status: str
    applied_at: datetime


class HolderIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=120)
    national_id: str = Field(..., min_length=4, max_length=20)
    phone: str = Field(..., min_length=7, max_length=20)
    email: Optional[EmailStr] = None

    def to_holder(self) -> Holder:
        return Holder(
            name=self.name,
            national_id=self.national_id,
            phone=self.phone,
            email=str(self.email) if self.email else None,
        )


class AllocationRequest(BaseModel):
    quantity: int = Field(..., ge=1)
    holder: HolderIn


class NumbersReservationRequest(BaseModel):
    numbers: list[int] = Field(..., min_length=1)
    holder: HolderIn
    placeholder: bool = False


class TicketIdsRequest(BaseModel):
    ticket_ids: list[uuid.UUID] = Field(..., min_length=1)


class MarkPaidRequest(TicketIdsRequest):
    payment_id: uuid.UUID


class PaymentLockRequest(TicketIdsRequest):
    payment_id: uuid.UUID


class PaymentUnlockRequest(BaseModel):
    payment_id: uuid.UUID


class TicketOut(BaseModel):
    id: str
    raffle_id: str
    numero_ticket: str
    status: str
    holder_name: str
    holder_national_id: str
    holder_phone: str
    holder_email: Optional[str]
    created_at: datetime
    verified_at: Optional[datetime]
    locked_by_payment: bool
    payment_id: Optional[str]
    is_placeholder: bool


class AvailabilityOut(BaseModel):
    raffle_id: str
    total: int
    taken: int
    available: int
    percentage: int


class HolesOut(BaseModel):
    raffle_id: str
    number_start: int
    number_end: int
    count: int
    numbers: list[str]


class ReleaseResponse(BaseModel):
    status: str
    released: int


class SweepStatusOut(BaseModel):
    enabled: bool
    running: bool
    interval_minutes: float
    expiry_minutes: float
    last_run_at: Optional[datetime]
    last_released: Optional[int]
    last_error: Optional[str]
    next_run_at: Optional[datetime]


def ticket_out(ticket: Ticket) -> dict:
    return {
        "id": str(ticket.id),
        "raffle_id": str(ticket.raffle_id),
        "numero_ticket": ticket.numero_ticket,
        "status": ticket.status,
        "holder_name": ticket.holder.name,
        "holder_national_id": ticket.holder.national_id,
        "holder_phone": ticket.holder.phone,
        "holder_email": ticket.holder.email,
        "created_at": ticket.created_at,
        "verified_at": ticket.verified_at,
        "locked_by_payment": ticket.locked_by_payment,
        "payment_id": str(ticket.payment_id) if ticket.payment_id else None,
        "is_placeholder": ticket.is_placeholder,
    }
