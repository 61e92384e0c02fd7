from contextlib import asynccontextmanager
import logging
import os
import traceback

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mangum import Mangum

from app.api.routes import health, migrations, raffles, reservations, tickets
from app.core.config import settings
from app.core.errors import (
    AllocationContention,
    InsufficientSupply,
    InvalidQuantity,
    InvalidTransition,
    NumbersUnavailable,
    PaymentNotFound,
    RaffleNotFound,
    RaffleNotOpen,
    SoldOut,
    StorageUnavailable,
    TicketCoreError,
    TicketNotFound,
)
from app.core.logging import configure_logging
from app.db.tickets import PostgresTicketStore
from app.services.ledger import ReservationLedger
from app.services.sweeper import ReservationSweeper

configure_logging()
logger = logging.getLogger(__name__)

API_PREFIX = "/rifaapp"
api_gateway_base_path = os.getenv("API_GATEWAY_BASE_PATH", "").strip()
if api_gateway_base_path and not api_gateway_base_path.startswith("/"):
    api_gateway_base_path = f"/{api_gateway_base_path}"


def build_sweeper() -> ReservationSweeper:
    return ReservationSweeper(ReservationLedger(PostgresTicketStore()), settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = build_sweeper()
    app.state.sweeper = sweeper
    if settings.sweep_enabled:
        sweeper.start()
    try:
        yield
    finally:
        if sweeper.running:
            sweeper.stop()


app = FastAPI(
    title="RifaApp Tickets API",
    version=health.VERSION,
    docs_url=f"{API_PREFIX}/docs",
    redoc_url=f"{API_PREFIX}/redoc",
    openapi_url=f"{API_PREFIX}/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=False,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

api_router = APIRouter(prefix=API_PREFIX)
api_router.include_router(health.router)
api_router.include_router(migrations.router)
api_router.include_router(raffles.router)
api_router.include_router(tickets.router)
api_router.include_router(reservations.router)
app.include_router(api_router)


def _core_error_response(exc: TicketCoreError) -> JSONResponse:
    detail: dict = {"message": str(exc), "error": exc.__class__.__name__}
    headers = None
    if isinstance(exc, InsufficientSupply):
        status_code = 409
        detail["requested"] = exc.requested
        detail["remaining"] = exc.remaining
    elif isinstance(exc, NumbersUnavailable):
        status_code = 409
        detail["numbers"] = exc.numbers
    elif isinstance(exc, (AllocationContention, StorageUnavailable)):
        status_code = 503
        headers = {"Retry-After": "2"}
    elif isinstance(exc, InvalidTransition):
        status_code = 409
        detail["ticket_id"] = str(exc.ticket_id)
        detail["current"] = exc.current
        detail["target"] = exc.target
    elif isinstance(exc, (PaymentNotFound, RaffleNotFound, TicketNotFound)):
        status_code = 404
    elif isinstance(exc, (InvalidQuantity, RaffleNotOpen)):
        status_code = 400
    else:
        status_code = 500
    error_type = "sold_out" if isinstance(exc, SoldOut) else "ticket_error"
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "type": error_type},
        headers=headers,
    )


@app.exception_handler(TicketCoreError)
def ticket_core_exception_handler(_: Request, exc: TicketCoreError):
    if isinstance(exc, StorageUnavailable):
        logger.warning("Ticket store unavailable: %s", exc)
    return _core_error_response(exc)


@app.exception_handler(HTTPException)
def http_exception_handler(_: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "type": "http_error"},
    )


@app.exception_handler(RequestValidationError)
def validation_exception_handler(_: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors()), "message": "Validation error", "type": "validation_error"},
    )


@app.exception_handler(Exception)
def unhandled_exception_handler(_: Request, exc: Exception):
    logger.exception("Unhandled error")
    if settings.expose_errors:
        detail = {
            "type": exc.__class__.__name__,
            "message": str(exc) or "Unhandled error",
            "trace": traceback.format_exc(),
        }
    else:
        detail = "Internal Server Error"
    return JSONResponse(status_code=500, content={"detail": detail, "type": "server_error"})


handler = Mangum(app, api_gateway_base_path=api_gateway_base_path or None, lifespan="off")
