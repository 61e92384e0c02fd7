from datetime import datetime, timedelta, timezone
import random

import pytest

from app.core.config import Settings
from app.services.allocator import Allocator
from app.services.ledger import ReservationLedger
from app.services.number_space import NumberSpace
from fakes import FakeTicketStore


class FrozenClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def settings():
    return Settings(
        storage_retry_attempts=3,
        storage_retry_backoff_seconds=0,
        allocation_max_attempts=5,
        reservation_minutes=10,
        max_tickets_per_purchase=250,
    )


@pytest.fixture
def store():
    return FakeTicketStore()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def number_space(store, settings):
    return NumberSpace(store, settings)


@pytest.fixture
def allocator(store, number_space, settings, clock):
    return Allocator(store, number_space, settings, rng=random.Random(7), clock=clock)


@pytest.fixture
def ledger(store, settings, clock):
    return ReservationLedger(store, settings, clock=clock)
