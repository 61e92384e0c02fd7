import uuid

from fastapi.testclient import TestClient
import pytest

from app.api.dependencies import get_allocator, get_ledger, get_number_space, get_store
from app.main import app
from app.services.allocator import Allocator
from app.services.ledger import ReservationLedger
from app.services.number_space import NumberSpace

HOLDER = {
    "name": "Ana Perez",
    "national_id": "12345678",
    "phone": "04141234567",
    "email": "ana@example.com",
}


@pytest.fixture
def client(store, settings):
    number_space = NumberSpace(store, settings)
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_number_space] = lambda: number_space
    app.dependency_overrides[get_allocator] = lambda: Allocator(store, number_space, settings)
    app.dependency_overrides[get_ledger] = lambda: ReservationLedger(store, settings)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _allocate(client, raffle, quantity):
    return client.post(
        f"/rifaapp/raffles/{raffle.id}/allocations",
        json={"quantity": quantity, "holder": HOLDER},
    )


def test_allocate_creates_reserved_tickets(client, store):
    raffle = store.add_raffle(total_tickets=10)
    response = _allocate(client, raffle, 3)
    assert response.status_code == 201
    body = response.json()
    assert len(body) == 3
    assert {ticket["status"] for ticket in body} == {"reservado"}
    assert {ticket["holder_email"] for ticket in body} == {"ana@example.com"}


def test_insufficient_supply_reports_remaining(client, store):
    raffle = store.add_raffle(total_tickets=4)
    store.add_ticket(raffle, "0001")
    response = _allocate(client, raffle, 5)
    assert response.status_code == 409
    assert response.json()["detail"]["remaining"] == 3
    assert response.json()["detail"]["requested"] == 5


def test_sold_out(client, store):
    raffle = store.add_raffle(total_tickets=1)
    store.add_ticket(raffle, "0001")
    response = _allocate(client, raffle, 1)
    assert response.status_code == 409
    assert response.json()["type"] == "sold_out"


def test_quantity_must_be_positive(client, store):
    raffle = store.add_raffle(total_tickets=4)
    assert _allocate(client, raffle, 0).status_code == 422


def test_unknown_raffle(client):
    response = client.get(f"/rifaapp/raffles/{uuid.uuid4()}/availability")
    assert response.status_code == 404


def test_paused_raffle(client, store):
    raffle = store.add_raffle(total_tickets=4, status="paused")
    assert _allocate(client, raffle, 1).status_code == 400


def test_storage_outage_is_503(client, store):
    raffle = store.add_raffle(total_tickets=4)
    store.read_failures = 10
    response = _allocate(client, raffle, 1)
    assert response.status_code == 503
    assert response.headers["Retry-After"] == "2"


def test_availability_and_holes(client, store):
    raffle = store.add_raffle(total_tickets=10)
    store.add_ticket(raffle, "0002")
    availability = client.get(f"/rifaapp/raffles/{raffle.id}/availability").json()
    assert availability == {
        "raffle_id": str(raffle.id),
        "total": 10,
        "taken": 1,
        "available": 9,
        "percentage": 10,
    }
    holes = client.get(f"/rifaapp/raffles/{raffle.id}/holes", params={"limit": 3}).json()
    assert holes["count"] == 9
    assert holes["numbers"] == ["0001", "0003", "0004"]


def test_reserve_specific_numbers_conflict(client, store):
    raffle = store.add_raffle(total_tickets=10)
    store.add_ticket(raffle, "0005")
    response = client.post(
        f"/rifaapp/raffles/{raffle.id}/reservations",
        json={"numbers": [4, 5], "holder": HOLDER},
    )
    assert response.status_code == 409
    assert response.json()["detail"]["numbers"] == [5]


def test_pay_is_idempotent_and_verify_follows(client, store):
    raffle = store.add_raffle(total_tickets=10)
    ticket_ids = [ticket["id"] for ticket in _allocate(client, raffle, 2).json()]
    payment_id = str(store.add_payment())

    for _ in range(2):
        response = client.post(
            "/rifaapp/tickets/pay", json={"ticket_ids": ticket_ids, "payment_id": payment_id}
        )
        assert response.status_code == 200
        assert {ticket["status"] for ticket in response.json()} == {"pagado"}

    response = client.post("/rifaapp/tickets/verify", json={"ticket_ids": ticket_ids})
    assert {ticket["status"] for ticket in response.json()} == {"verificado"}


def test_verify_unpaid_ticket_conflicts(client, store):
    raffle = store.add_raffle(total_tickets=10)
    ticket_ids = [ticket["id"] for ticket in _allocate(client, raffle, 1).json()]
    response = client.post("/rifaapp/tickets/verify", json={"ticket_ids": ticket_ids})
    assert response.status_code == 409
    assert response.json()["detail"]["current"] == "reservado"


def test_release_and_manual_sweep(client, store):
    raffle = store.add_raffle(total_tickets=10)
    ticket_ids = [ticket["id"] for ticket in _allocate(client, raffle, 2).json()]
    response = client.post("/rifaapp/tickets/release", json={"ticket_ids": ticket_ids[:1]})
    assert response.json() == {"status": "released", "released": 1}

    response = client.post("/rifaapp/reservations/sweep")
    assert response.status_code == 200
    assert response.json()["released"] == 0


def test_sweep_status_reports_disabled_sweeper(client):
    response = client.get("/rifaapp/reservations/sweep")
    assert response.status_code == 200
    body = response.json()
    assert body["enabled"] is False
    assert body["running"] is False


def test_health(client):
    assert client.get("/rifaapp/health").json()["status"] == "ok"


def test_pay_with_unknown_payment_is_404(client, store):
    raffle = store.add_raffle(total_tickets=10)
    ticket_ids = [ticket["id"] for ticket in _allocate(client, raffle, 1).json()]
    response = client.post(
        "/rifaapp/tickets/pay", json={"ticket_ids": ticket_ids, "payment_id": str(uuid.uuid4())}
    )
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "PaymentNotFound"
