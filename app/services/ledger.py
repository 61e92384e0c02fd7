from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
import uuid
from typing import Callable, Optional, Sequence

from app.core.config import Settings, settings as default_settings
from app.core.errors import InvalidTransition
from app.db.tickets import TicketStore
from app.models.tickets import Holder, Ticket, TicketStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _unique(ticket_ids: Sequence[uuid.UUID]) -> list[uuid.UUID]:
    return list(dict.fromkeys(ticket_ids))


def plan_transition(
    tickets: Sequence[Ticket],
    from_status: str,
    to_status: str,
    payment_id: Optional[uuid.UUID] = None,
) -> list[uuid.UUID]:
    """Return the ids that must move from ``from_status`` to ``to_status``.

    Tickets already in ``to_status`` are left alone so repeated deliveries are
    harmless, unless they were paid through a different payment. Any other
    state is an illegal move and aborts the whole batch.
    """
    to_update: list[uuid.UUID] = []
    for ticket in tickets:
        if payment_id is not None and ticket.payment_id not in (None, payment_id):
            raise InvalidTransition(ticket.id, ticket.status, to_status)
        if ticket.status == to_status:
            continue
        if ticket.status != from_status:
            raise InvalidTransition(ticket.id, ticket.status, to_status)
        to_update.append(ticket.id)
    return to_update


class ReservationLedger:
    """Lifecycle of tickets once they exist.

    reservado -> pagado -> verificado, or reservado -> released by the expiry
    sweep. Released reservations are deleted so their numbers return to the
    hole set.
    """

    def __init__(
        self,
        store: TicketStore,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock

    @property
    def default_expiry(self) -> timedelta:
        return timedelta(minutes=self._settings.reservation_minutes)

    def mark_paid(self, ticket_ids: Sequence[uuid.UUID], payment_id: uuid.UUID) -> list[Ticket]:
        ticket_ids = _unique(ticket_ids)
        tickets = self._store.transition(
            ticket_ids,
            lambda locked: plan_transition(
                locked, TicketStatus.RESERVED.value, TicketStatus.PAID.value, payment_id
            ),
            from_status=TicketStatus.RESERVED.value,
            to_status=TicketStatus.PAID.value,
            payment_id=payment_id,
        )
        logger.info("Payment %s confirmed for %s tickets", payment_id, len(tickets))
        return tickets

    def mark_verified(self, ticket_ids: Sequence[uuid.UUID]) -> list[Ticket]:
        ticket_ids = _unique(ticket_ids)
        tickets = self._store.transition(
            ticket_ids,
            lambda locked: plan_transition(
                locked, TicketStatus.PAID.value, TicketStatus.VERIFIED.value
            ),
            from_status=TicketStatus.PAID.value,
            to_status=TicketStatus.VERIFIED.value,
            verified_at=self._clock(),
        )
        logger.info("Verified %s tickets", len(tickets))
        return tickets

    def sweep_expired(self, expiry_duration: Optional[timedelta] = None) -> int:
        expiry = self.default_expiry if expiry_duration is None else expiry_duration
        cutoff = self._clock() - expiry
        released = self._store.release_expired(cutoff)
        if released:
            logger.info(
                "Released %s expired reservations created before %s",
                len(released),
                cutoff.isoformat(),
            )
        else:
            logger.debug("No expired reservations before %s", cutoff.isoformat())
        return len(released)

    def release(self, ticket_ids: Sequence[uuid.UUID]) -> int:
        released = self._store.delete_unpaid(_unique(ticket_ids))
        logger.info("Cancelled %s reservations on request", len(released))
        return len(released)

    def lock_for_payment(
        self, ticket_ids: Sequence[uuid.UUID], payment_id: uuid.UUID
    ) -> list[Ticket]:
        tickets = self._store.lock_for_payment(_unique(ticket_ids), payment_id)
        logger.info("Locked %s tickets behind payment %s", len(tickets), payment_id)
        return tickets

    def unlock_payment(self, payment_id: uuid.UUID) -> int:
        cleared = self._store.clear_payment_lock(payment_id)
        logger.info("Unlocked %s tickets held by payment %s", cleared, payment_id)
        return cleared

    def assign_placeholder(self, ticket_id: uuid.UUID, holder: Holder) -> Ticket:
        return self._store.assign_holder(ticket_id, holder)
