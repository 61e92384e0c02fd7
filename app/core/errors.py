from __future__ import annotations

from typing import Iterable, Optional


class TicketCoreError(Exception):
    """Base class for every failure the allocation core reports."""


class StorageUnavailable(TicketCoreError):
    """The ticket store could not be reached or failed mid-operation. Transient."""


class RaffleNotFound(TicketCoreError):
    def __init__(self, raffle_id) -> None:
        super().__init__(f"Raffle not found: {raffle_id}")
        self.raffle_id = raffle_id


class RaffleNotOpen(TicketCoreError):
    def __init__(self, raffle_id, status: str) -> None:
        super().__init__(f"Raffle {raffle_id} is not accepting reservations (status={status})")
        self.raffle_id = raffle_id
        self.status = status


class TicketNotFound(TicketCoreError):
    def __init__(self, ticket_ids: Iterable) -> None:
        self.ticket_ids = sorted(str(ticket_id) for ticket_id in ticket_ids)
        super().__init__(f"Tickets not found: {', '.join(self.ticket_ids)}")


class AllocationError(TicketCoreError):
    pass


class InvalidQuantity(AllocationError, ValueError):
    pass


class InsufficientSupply(AllocationError):
    """Fewer free numbers than requested. Permanent for this request."""

    def __init__(self, requested: int, remaining: int, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Only {remaining} tickets left, {requested} requested"
        )
        self.requested = requested
        self.remaining = remaining


class SoldOut(InsufficientSupply):
    def __init__(self, requested: int) -> None:
        super().__init__(requested, 0, "Raffle is sold out")


class NumbersUnavailable(AllocationError):
    def __init__(self, numbers: Iterable[int]) -> None:
        self.numbers = sorted(numbers)
        super().__init__(
            "Some numbers are no longer available: "
            + ", ".join(str(number) for number in self.numbers)
        )


class AllocationContention(AllocationError):
    """Retry budget exhausted while racing other allocators. Transient."""

    def __init__(self, requested: int, attempts: int) -> None:
        super().__init__(
            f"Could not secure {requested} tickets after {attempts} attempts"
        )
        self.requested = requested
        self.attempts = attempts


class InvalidTransition(TicketCoreError):
    def __init__(self, ticket_id, current: str, target: str) -> None:
        super().__init__(f"Ticket {ticket_id} cannot move from {current} to {target}")
        self.ticket_id = ticket_id
        self.current = current
        self.target = target


class PaymentNotFound(TicketCoreError):
    def __init__(self, payment_id) -> None:
        super().__init__(f"Payment not found: {payment_id}")
        self.payment_id = payment_id
