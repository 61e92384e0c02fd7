from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
import uuid
from typing import Optional


class TicketStatus(str, Enum):
    RESERVED = "reservado"
    PAID = "pagado"
    VERIFIED = "verificado"
    # Written by admin tooling only; the expiry sweep deletes instead.
    CANCELLED = "cancelado"


class RaffleStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"
    FINALIZED = "finalized"


class PaymentStatus(str, Enum):
    PENDING = "pendiente"
    VERIFIED = "verificado"
    REJECTED = "rechazado"


# Width a new raffle gets unless it sets its own; the schema default matches.
DEFAULT_NUMBER_PADDING = 4

# A payment in one of these states keeps its tickets out of the expiry sweep.
CONFIRMING_PAYMENT_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.VERIFIED.value)


@dataclass(frozen=True)
class Raffle:
    id: uuid.UUID
    total_tickets: int
    status: str
    number_start: int = 1
    number_padding: int = DEFAULT_NUMBER_PADDING
    ticket_price: Decimal = Decimal("0")

    @property
    def number_end(self) -> int:
        return self.number_start + self.total_tickets - 1

    def is_open(self) -> bool:
        return self.status == RaffleStatus.ACTIVE.value


@dataclass(frozen=True)
class Holder:
    name: str
    national_id: str
    phone: str
    email: Optional[str] = None


@dataclass(frozen=True)
class Ticket:
    id: uuid.UUID
    raffle_id: uuid.UUID
    numero_ticket: str
    holder: Holder
    status: str
    created_at: datetime
    verified_at: Optional[datetime] = None
    locked_by_payment: bool = False
    payment_id: Optional[uuid.UUID] = None
    is_placeholder: bool = False

    @property
    def number(self) -> int:
        return int(self.numero_ticket)


@dataclass
class InsertResult:
    created: list[Ticket] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Availability:
    total: int
    taken: int
    available: int

    @property
    def percentage(self) -> int:
        if not self.total:
            return 0
        return round(self.taken * 100 / self.total)
