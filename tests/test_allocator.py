from collections import Counter
import random
import threading
import uuid

import pytest

from app.core.config import Settings
from app.core.errors import (
    AllocationContention,
    InsufficientSupply,
    InvalidQuantity,
    NumbersUnavailable,
    RaffleNotFound,
    RaffleNotOpen,
    SoldOut,
    StorageUnavailable,
)
from app.services.allocator import Allocator
from app.services.number_space import NumberSpace
from fakes import BUYER, OTHER_BUYER


def _numbers(tickets):
    return [ticket.number for ticket in tickets]


def _seed(store, raffle, *labels):
    for label in labels:
        store.add_ticket(raffle, label)


def test_scenario_fills_raffle_then_sold_out(store, allocator):
    raffle = store.add_raffle(total_tickets=10)
    _seed(store, raffle, "0002", "0005", "0009")
    free = {1, 3, 4, 6, 7, 8, 10}

    first = allocator.allocate(raffle.id, 2, BUYER)
    assert len(first) == 2
    assert set(_numbers(first)) <= free
    assert len(store.tickets) == 5

    second = allocator.allocate(raffle.id, 5, OTHER_BUYER)
    assert set(_numbers(second)) == free - set(_numbers(first))

    with pytest.raises(SoldOut) as excinfo:
        allocator.allocate(raffle.id, 1, BUYER)
    assert excinfo.value.remaining == 0


def test_request_above_supply_reports_remaining(store, allocator):
    raffle = store.add_raffle(total_tickets=10)
    _seed(store, raffle, "0002", "0005", "0009")
    allocator.allocate(raffle.id, 2, BUYER)

    with pytest.raises(InsufficientSupply) as excinfo:
        allocator.allocate(raffle.id, 6, OTHER_BUYER)
    assert excinfo.value.remaining == 5
    assert excinfo.value.requested == 6
    assert len(store.tickets) == 5


def test_created_tickets_are_reserved_with_holder(store, allocator, clock):
    raffle = store.add_raffle(total_tickets=100)
    tickets = allocator.allocate(raffle.id, 3, BUYER)
    assert _numbers(tickets) == sorted(_numbers(tickets))
    for ticket in tickets:
        assert ticket.status == "reservado"
        assert ticket.created_at == clock.now
        assert ticket.holder == BUYER
        assert len(ticket.numero_ticket) == 4
        assert not ticket.is_placeholder


@pytest.mark.parametrize("quantity", [0, -1, 251])
def test_rejects_invalid_quantity(store, allocator, quantity):
    raffle = store.add_raffle(total_tickets=1000)
    with pytest.raises(InvalidQuantity):
        allocator.allocate(raffle.id, quantity, BUYER)
    assert store.insert_calls == []


def test_rejects_raffle_that_is_not_active(store, allocator):
    raffle = store.add_raffle(total_tickets=10, status="paused")
    with pytest.raises(RaffleNotOpen):
        allocator.allocate(raffle.id, 1, BUYER)


def test_unknown_raffle(allocator):
    with pytest.raises(RaffleNotFound):
        allocator.allocate(uuid.uuid4(), 1, BUYER)


def test_retries_only_conflicting_slots(store, allocator):
    raffle = store.add_raffle(total_tickets=100)
    stolen = []

    def steal_first(target, labels):
        if not stolen:
            stolen.append(labels[0])
            store.add_ticket(target, labels[0], holder=OTHER_BUYER)

    store.before_insert = steal_first
    tickets = allocator.allocate(raffle.id, 3, BUYER)

    assert len(tickets) == 3
    assert stolen[0] not in [ticket.numero_ticket for ticket in tickets]
    assert [len(call) for call in store.insert_calls] == [3, 1]
    assert stolen[0] not in store.insert_calls[1]


def test_contention_budget_exhausted_rolls_back(store, allocator):
    raffle = store.add_raffle(total_tickets=1000)

    def steal_one(target, labels):
        store.add_ticket(target, labels[0], holder=OTHER_BUYER)

    store.before_insert = steal_one
    with pytest.raises(AllocationContention) as excinfo:
        allocator.allocate(raffle.id, 2, BUYER)

    assert excinfo.value.attempts == 5
    assert len(store.insert_calls) == 5
    assert all(ticket.holder == OTHER_BUYER for ticket in store.tickets.values())


def test_losing_supply_mid_allocation_releases_partial_tickets(store, allocator):
    raffle = store.add_raffle(total_tickets=5)

    def take_everything_else(target, labels):
        if len(store.insert_calls) > 1:
            return
        for number in range(1, 6):
            label = f"{number:04d}"
            if label not in labels[1:] and not store.number_exists(target.id, label):
                store.add_ticket(target, label, holder=OTHER_BUYER)

    store.before_insert = take_everything_else
    with pytest.raises(InsufficientSupply) as excinfo:
        allocator.allocate(raffle.id, 3, BUYER)

    assert excinfo.value.remaining == 2
    assert all(ticket.holder == OTHER_BUYER for ticket in store.tickets.values())


def test_insert_retried_on_transient_failure(store, allocator):
    raffle = store.add_raffle(total_tickets=10)
    store.insert_failures = 1
    assert len(allocator.allocate(raffle.id, 4, BUYER)) == 4


def test_storage_failure_on_a_later_attempt_releases_earlier_tickets(store, allocator):
    raffle = store.add_raffle(total_tickets=100)

    def steal_then_fail(target, labels):
        store.before_insert = None
        store.add_ticket(target, labels[0], holder=OTHER_BUYER)
        store.insert_failures = 3

    store.before_insert = steal_then_fail
    with pytest.raises(StorageUnavailable):
        allocator.allocate(raffle.id, 3, BUYER)

    assert len(store.insert_calls) == 1
    assert all(ticket.holder == OTHER_BUYER for ticket in store.tickets.values())
    assert len(store.tickets) == 1


def test_concurrent_allocators_never_share_numbers(store, settings):
    raffle = store.add_raffle(total_tickets=120)
    errors = []

    def buy(seed):
        allocator = Allocator(store, NumberSpace(store, settings), settings, rng=random.Random(seed))
        try:
            allocator.allocate(raffle.id, 10, BUYER)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=buy, args=(seed,)) for seed in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    labels = store.numbers(raffle)
    assert len(labels) == 100
    assert len(set(labels)) == 100


def test_selection_is_not_sequential(store, allocator):
    raffle = store.add_raffle(total_tickets=1000)
    numbers = _numbers(allocator.allocate(raffle.id, 20, BUYER))
    assert numbers != list(range(numbers[0], numbers[0] + 20))
    assert numbers != list(range(1, 21))


def test_selection_is_roughly_uniform(store, allocator):
    counts = Counter()
    for _ in range(2000):
        raffle = store.add_raffle(total_tickets=10)
        counts.update(_numbers(allocator.allocate(raffle.id, 1, BUYER)))
    assert set(counts) == set(range(1, 11))
    assert all(140 <= count <= 260 for count in counts.values())


def test_allocate_numbers_placeholder(store, allocator):
    raffle = store.add_raffle(total_tickets=100)
    tickets = allocator.allocate_numbers(raffle.id, [77, 7], BUYER, placeholder=True)
    assert [ticket.numero_ticket for ticket in tickets] == ["0007", "0077"]
    assert all(ticket.is_placeholder for ticket in tickets)


def test_allocate_numbers_is_all_or_nothing(store, allocator):
    raffle = store.add_raffle(total_tickets=100)
    _seed(store, raffle, "0010")
    with pytest.raises(NumbersUnavailable) as excinfo:
        allocator.allocate_numbers(raffle.id, [9, 10, 11], BUYER)
    assert excinfo.value.numbers == [10]
    assert store.numbers(raffle) == ["0010"]


def test_allocate_numbers_validates_input(store, allocator):
    raffle = store.add_raffle(total_tickets=10)
    with pytest.raises(InvalidQuantity):
        allocator.allocate_numbers(raffle.id, [3, 3], BUYER)
    with pytest.raises(InvalidQuantity):
        allocator.allocate_numbers(raffle.id, [0, 11], BUYER)


def test_number_keeps_one_label_across_configurations(store, allocator):
    raffle = store.add_raffle(total_tickets=100000, number_padding=4)
    allocator.allocate_numbers(raffle.id, [42], BUYER)

    other = Settings(max_tickets_per_purchase=10, storage_retry_backoff_seconds=0)
    with pytest.raises(NumbersUnavailable):
        Allocator(store, NumberSpace(store, other), other).allocate_numbers(raffle.id, [42], OTHER_BUYER)
    assert store.numbers(raffle) == ["0042"]
