from fastapi import Depends, HTTPException, Request

from app.core.config import db_configured
from app.db.tickets import PostgresTicketStore, TicketStore
from app.services.allocator import Allocator
from app.services.ledger import ReservationLedger
from app.services.number_space import NumberSpace


def require_db() -> None:
    if not db_configured():
        raise HTTPException(status_code=500, detail="Database is not configured")


def get_store() -> TicketStore:
    require_db()
    return PostgresTicketStore()


def get_number_space(store: TicketStore = Depends(get_store)) -> NumberSpace:
    return NumberSpace(store)


def get_allocator(
    store: TicketStore = Depends(get_store),
    number_space: NumberSpace = Depends(get_number_space),
) -> Allocator:
    return Allocator(store, number_space=number_space)


def get_ledger(store: TicketStore = Depends(get_store)) -> ReservationLedger:
    return ReservationLedger(store)


def get_sweeper(request: Request):
    return getattr(request.app.state, "sweeper", None)
