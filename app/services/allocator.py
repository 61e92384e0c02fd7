from __future__ import annotations

from datetime import datetime, timezone
import logging
import random
import uuid
from typing import Callable, Iterable, Optional

from app.core.config import Settings, settings as default_settings
from app.core.errors import (
    AllocationContention,
    InsufficientSupply,
    InvalidQuantity,
    NumbersUnavailable,
    RaffleNotOpen,
    SoldOut,
    StorageUnavailable,
)
from app.db.connection import with_storage_retry
from app.db.tickets import TicketStore
from app.models.tickets import Holder, InsertResult, Raffle, Ticket
from app.services.number_space import NumberSpace

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Allocator:
    """Hands out random free ticket numbers as reservado tickets.

    Nothing here decides whether a number is free at insert time: candidates
    come from a snapshot of the hole set and the store's unique constraint
    rejects whatever a concurrent allocator took in between. Rejected slots are
    redrawn from a fresh snapshot until the attempt budget runs out.
    """

    def __init__(
        self,
        store: TicketStore,
        number_space: Optional[NumberSpace] = None,
        settings: Settings = default_settings,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._settings = settings
        self._number_space = number_space or NumberSpace(store, settings)
        self._rng = rng or random.SystemRandom()
        self._clock = clock

    def allocate(
        self,
        raffle_id: uuid.UUID,
        quantity: int,
        holder: Holder,
        placeholder: bool = False,
    ) -> list[Ticket]:
        self._check_quantity(quantity)
        raffle = self._open_raffle(raffle_id)

        created: list[Ticket] = []
        try:
            return self._fill(raffle, quantity, holder, placeholder, created)
        except Exception:
            self._release_partial(created)
            raise

    def _fill(
        self,
        raffle: Raffle,
        quantity: int,
        holder: Holder,
        placeholder: bool,
        created: list[Ticket],
    ) -> list[Ticket]:
        raffle_id = raffle.id
        needed = quantity
        attempts = max(1, self._settings.allocation_max_attempts)
        for attempt in range(1, attempts + 1):
            holes = self._number_space.holes_for(raffle)
            if len(holes) < needed:
                remaining = len(holes) + len(created)
                if remaining == 0:
                    raise SoldOut(quantity)
                raise InsufficientSupply(quantity, remaining)

            candidates = [
                self._number_space.label(raffle, number)
                for number in self._rng.sample(holes, needed)
            ]
            result = self._insert(raffle, candidates, holder, placeholder)
            created.extend(result.created)
            needed -= len(result.created)
            if needed == 0:
                logger.info(
                    "Reserved %s tickets in raffle %s after %s attempt(s)",
                    quantity,
                    raffle_id,
                    attempt,
                )
                return sorted(created, key=lambda ticket: ticket.number)
            logger.warning(
                "Raffle %s: %s of %s candidates lost to concurrent buyers (attempt %s/%s)",
                raffle_id,
                len(result.conflicts),
                len(candidates),
                attempt,
                attempts,
            )

        raise AllocationContention(quantity, attempts)

    def allocate_numbers(
        self,
        raffle_id: uuid.UUID,
        numbers: Iterable[int],
        holder: Holder,
        placeholder: bool = False,
    ) -> list[Ticket]:
        """Reserve exactly ``numbers``; nothing is kept unless all of them succeed."""
        requested = list(numbers)
        if len(set(requested)) != len(requested):
            raise InvalidQuantity("Duplicate numbers are not allowed")
        self._check_quantity(len(requested))
        raffle = self._open_raffle(raffle_id)
        out_of_range = [
            number
            for number in requested
            if not raffle.number_start <= number <= raffle.number_end
        ]
        if out_of_range:
            raise InvalidQuantity(
                f"Numbers out of range {raffle.number_start}-{raffle.number_end}: "
                + ", ".join(str(number) for number in sorted(out_of_range))
            )

        labels = [self._number_space.label(raffle, number) for number in requested]
        result = self._insert(raffle, labels, holder, placeholder)
        if result.conflicts:
            self._rollback(result.created)
            raise NumbersUnavailable(int(label) for label in result.conflicts)
        return sorted(result.created, key=lambda ticket: ticket.number)

    def _check_quantity(self, quantity: int) -> None:
        if quantity < 1:
            raise InvalidQuantity("Quantity must be at least 1")
        ceiling = self._settings.max_tickets_per_purchase
        if quantity > ceiling:
            raise InvalidQuantity(
                f"Cannot reserve more than {ceiling} tickets at once, {quantity} requested"
            )

    def _open_raffle(self, raffle_id: uuid.UUID) -> Raffle:
        raffle = self._number_space.raffle(raffle_id)
        if not raffle.is_open():
            raise RaffleNotOpen(raffle_id, raffle.status)
        return raffle

    def _insert(
        self, raffle: Raffle, labels: list[str], holder: Holder, placeholder: bool
    ) -> InsertResult:
        created_at = self._clock()
        return with_storage_retry(
            lambda: self._store.insert_reserved(
                raffle, labels, holder, created_at, is_placeholder=placeholder
            ),
            attempts=self._settings.storage_retry_attempts,
            backoff_seconds=self._settings.storage_retry_backoff_seconds,
        )

    def _release_partial(self, created: list[Ticket]) -> None:
        try:
            self._rollback(created)
        except StorageUnavailable:
            logger.warning(
                "Could not release %s partially reserved tickets, leaving them to the expiry sweep",
                len(created),
            )

    def _rollback(self, created: list[Ticket]) -> None:
        if not created:
            return
        released = self._store.delete_unpaid([ticket.id for ticket in created])
        logger.info("Released %s partially reserved tickets", len(released))
