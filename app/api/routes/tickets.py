import uuid

from fastapi import APIRouter, Depends

from app.api.dependencies import get_ledger
from app.models.schemas import (
    HolderIn,
    MarkPaidRequest,
    PaymentLockRequest,
    PaymentUnlockRequest,
    ReleaseResponse,
    TicketIdsRequest,
    TicketOut,
    ticket_out,
)
from app.services.ledger import ReservationLedger

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.post("/pay", response_model=list[TicketOut])
def mark_paid(payload: MarkPaidRequest, ledger: ReservationLedger = Depends(get_ledger)):
    tickets = ledger.mark_paid(payload.ticket_ids, payload.payment_id)
    return [ticket_out(ticket) for ticket in tickets]


@router.post("/verify", response_model=list[TicketOut])
def mark_verified(payload: TicketIdsRequest, ledger: ReservationLedger = Depends(get_ledger)):
    tickets = ledger.mark_verified(payload.ticket_ids)
    return [ticket_out(ticket) for ticket in tickets]


@router.post("/release", response_model=ReleaseResponse)
def release(payload: TicketIdsRequest, ledger: ReservationLedger = Depends(get_ledger)):
    return {"status": "released", "released": ledger.release(payload.ticket_ids)}


@router.post("/lock", response_model=list[TicketOut])
def lock_for_payment(payload: PaymentLockRequest, ledger: ReservationLedger = Depends(get_ledger)):
    tickets = ledger.lock_for_payment(payload.ticket_ids, payload.payment_id)
    return [ticket_out(ticket) for ticket in tickets]


@router.post("/unlock", response_model=ReleaseResponse)
def unlock_payment(payload: PaymentUnlockRequest, ledger: ReservationLedger = Depends(get_ledger)):
    return {"status": "unlocked", "released": ledger.unlock_payment(payload.payment_id)}


@router.put("/{ticket_id}/holder", response_model=TicketOut)
def assign_placeholder(
    ticket_id: uuid.UUID,
    payload: HolderIn,
    ledger: ReservationLedger = Depends(get_ledger),
):
    return ticket_out(ledger.assign_placeholder(ticket_id, payload.to_holder()))
