from fastapi import APIRouter, Depends, HTTPException

from app.api.dependencies import get_ledger, get_sweeper
from app.models.schemas import ReleaseResponse, SweepStatusOut
from app.services.ledger import ReservationLedger

router = APIRouter(prefix="/reservations", tags=["reservations"])


@router.post("/sweep", response_model=ReleaseResponse)
def sweep(ledger: ReservationLedger = Depends(get_ledger)):
    return {"status": "swept", "released": ledger.sweep_expired()}


@router.get("/sweep", response_model=SweepStatusOut)
def sweep_status(sweeper=Depends(get_sweeper)):
    if sweeper is None:
        raise HTTPException(status_code=404, detail="Reservation sweeper is not configured")
    return sweeper.status()
