"""Free/taken view of a raffle's ticket number range.

Ticket numbers live in storage as zero padded strings (``"0042"``) and are
handled here as integers. Holes are derived by merging the sorted taken set
against the raffle bounds, so the cost follows the number of taken tickets and
gaps rather than a membership probe per number.
"""
from __future__ import annotations

import logging
import uuid
from typing import Iterable, Iterator, Optional

from app.core.config import Settings, settings as default_settings
from app.db.connection import with_storage_retry
from app.db.tickets import TicketStore
from app.models.tickets import Availability, Raffle

logger = logging.getLogger(__name__)


def format_number(number: int, width: Optional[int]) -> str:
    if not width:
        return str(number)
    return str(number).zfill(width)


def parse_number(label: str) -> Optional[int]:
    try:
        return int(label)
    except (TypeError, ValueError):
        return None


def iter_holes(taken: Iterable[int], lower: int, upper: int) -> Iterator[int]:
    """Yield every integer in ``[lower, upper]`` missing from sorted ``taken``."""
    current = lower
    for number in taken:
        if number < current:
            continue
        if number > upper:
            break
        yield from range(current, number)
        current = number + 1
    if current <= upper:
        yield from range(current, upper + 1)


class NumberSpace:
    def __init__(self, store: TicketStore, settings: Settings = default_settings) -> None:
        self._store = store
        self._settings = settings

    def width(self, raffle: Raffle) -> int:
        # Pinned per raffle; a width that varied between calls would let the
        # same number be stored under two labels.
        return raffle.number_padding

    def label(self, raffle: Raffle, number: int) -> str:
        return format_number(number, self.width(raffle))

    def raffle(self, raffle_id: uuid.UUID) -> Raffle:
        return with_storage_retry(
            lambda: self._store.get_raffle(raffle_id),
            attempts=self._settings.storage_retry_attempts,
            backoff_seconds=self._settings.storage_retry_backoff_seconds,
        )

    def taken_numbers(self, raffle_id: uuid.UUID) -> list[int]:
        labels = with_storage_retry(
            lambda: self._store.list_ticket_numbers(raffle_id),
            attempts=self._settings.storage_retry_attempts,
            backoff_seconds=self._settings.storage_retry_backoff_seconds,
        )
        taken = set()
        for label in labels:
            number = parse_number(label)
            if number is None:
                logger.warning("Ignoring non numeric ticket %r in raffle %s", label, raffle_id)
                continue
            taken.add(number)
        return sorted(taken)

    def available_holes(
        self,
        raffle_id: uuid.UUID,
        lower: int,
        upper: int,
        taken: Optional[list[int]] = None,
    ) -> list[int]:
        if upper < lower:
            return []
        if taken is None:
            taken = self.taken_numbers(raffle_id)
        return list(iter_holes(taken, lower, upper))

    def holes_for(self, raffle: Raffle) -> list[int]:
        return self.available_holes(raffle.id, raffle.number_start, raffle.number_end)

    def availability(self, raffle_id: uuid.UUID) -> Availability:
        raffle = self.raffle(raffle_id)
        taken = self.taken_numbers(raffle_id)
        in_bounds = sum(
            1 for number in taken if raffle.number_start <= number <= raffle.number_end
        )
        total = raffle.total_tickets
        return Availability(total=total, taken=in_bounds, available=max(0, total - in_bounds))

    def is_available(self, raffle_id: uuid.UUID, number: int) -> bool:
        raffle = self.raffle(raffle_id)
        if not raffle.number_start <= number <= raffle.number_end:
            return False
        exists = with_storage_retry(
            lambda: self._store.number_exists(raffle_id, self.label(raffle, number)),
            attempts=self._settings.storage_retry_attempts,
            backoff_seconds=self._settings.storage_retry_backoff_seconds,
        )
        return not exists

    def available_in_range(self, raffle_id: uuid.UUID, start: int, end: int) -> list[int]:
        raffle = self.raffle(raffle_id)
        lower = max(start, raffle.number_start)
        upper = min(end, raffle.number_end)
        return self.available_holes(raffle_id, lower, upper)
