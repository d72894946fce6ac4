from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from queueline.dependencies import auth as auth_deps
from queueline.dependencies import queue as queue_deps
from queueline.lines.errors import AlreadyCompletedError, EmptyQueueError, InvalidTimeSlotError, TransientQueueError
from queueline.lines.identity import Identity, Role
from queueline.lines.models import BookingReceipt, ServiceType, Ticket
from queueline.lines.state import TicketStatus
from queueline.main import create_app

STAFF_HEADERS = {"Authorization": "Bearer staff-token"}
USER_HEADERS = {"Authorization": "Bearer user-token"}


def _make_ticket(*, status: TicketStatus = TicketStatus.PENDING, position: int = 1) -> Ticket:
    return Ticket(
        id="ticket-1",
        owner_id="alice",
        service_type=ServiceType.BANK,
        time_slot="09:00 AM",
        line_date=date(2026, 10, 19),
        queue_number=1,
        position=position,
        status=status,
        created_at=datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def queue_client():
    app = create_app()
    engine = AsyncMock()
    staff = Identity("staff-1", Role.STAFF)

    async def override_engine():
        return engine

    app.dependency_overrides[queue_deps.get_queue_engine] = override_engine
    app.dependency_overrides[auth_deps.get_current_identity] = lambda: staff
    app.dependency_overrides[auth_deps.require_staff] = lambda: staff

    client = TestClient(app)
    try:
        yield client, engine, staff
    finally:
        app.dependency_overrides.clear()


def test_book_returns_receipt(queue_client):
    client, engine, staff = queue_client
    engine.book.return_value = BookingReceipt(_make_ticket(), "Your booking is confirmed! Queue Number: #1")

    response = client.post("/queue/book", json={"serviceType": "Bank", "timeSlot": "09:00 AM"})

    assert response.status_code == 201
    assert response.json() == {
        "ticketId": "ticket-1",
        "queueNumber": 1,
        "position": 1,
        "message": "Your booking is confirmed! Queue Number: #1",
    }
    engine.book.assert_awaited_once_with(staff, "Bank", "09:00 AM")


def test_book_rejects_missing_fields(queue_client):
    client, engine, _ = queue_client

    response = client.post("/queue/book", json={"serviceType": "Bank"})

    assert response.status_code == 422
    engine.book.assert_not_awaited()


def test_book_maps_validation_errors(queue_client):
    client, engine, _ = queue_client
    engine.book.side_effect = InvalidTimeSlotError("Unknown time slot: '11:45 PM'")

    response = client.post("/queue/book", json={"serviceType": "Bank", "timeSlot": "11:45 PM"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Unknown time slot: '11:45 PM'"


def test_next_returns_called_ticket(queue_client):
    client, engine, staff = queue_client
    engine.advance.return_value = _make_ticket(status=TicketStatus.SERVING)

    response = client.post("/queue/next", json={"serviceType": "Bank", "date": "2026-10-19"})

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Next customer called"
    assert body["ticket"]["ticketId"] == "ticket-1"
    assert body["ticket"]["status"] == "serving"
    assert body["ticket"]["serviceType"] == "Bank"
    engine.advance.assert_awaited_once_with(staff, "Bank", date(2026, 10, 19))


def test_next_on_empty_line_is_not_found(queue_client):
    client, engine, _ = queue_client
    engine.advance.side_effect = EmptyQueueError("No pending customers in line Bank@2026-10-19")

    response = client.post("/queue/next", json={"serviceType": "Bank"})

    assert response.status_code == 404


def test_complete_conflicts_are_reported(queue_client):
    client, engine, _ = queue_client
    engine.complete.side_effect = AlreadyCompletedError("Ticket ticket-1 is already completed")

    response = client.post("/queue/complete", json={"ticketId": "ticket-1"})

    assert response.status_code == 409


def test_busy_line_asks_client_to_retry(queue_client):
    client, engine, _ = queue_client
    engine.complete.side_effect = TransientQueueError("Line Bank@2026-10-19 is busy")

    response = client.post("/queue/complete", json={"ticketId": "ticket-1"})

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "1"


def test_requests_without_token_are_rejected():
    with TestClient(create_app()) as client:
        assert client.post("/queue/book", json={"serviceType": "Bank", "timeSlot": "09:00 AM"}).status_code == 401
        assert client.get("/user/bookings", headers={"Authorization": "Bearer nope"}).status_code == 401
        assert client.get("/user/bookings", headers={"Authorization": "Basic abc"}).status_code == 401


def test_users_cannot_use_staff_endpoints():
    with TestClient(create_app()) as client:
        assert client.post("/queue/next", json={"serviceType": "Bank"}, headers=USER_HEADERS).status_code == 403
        assert client.get("/queue/all", headers=USER_HEADERS).status_code == 403
        assert client.get("/queue/summary", headers=USER_HEADERS).status_code == 403


def test_full_line_flow():
    with TestClient(create_app()) as client:
        first = client.post("/queue/book", json={"serviceType": "Bank", "timeSlot": "09:00 AM"}, headers=USER_HEADERS)
        second = client.post(
            "/queue/book", json={"serviceType": "Bank", "timeSlot": "09:30 AM"}, headers=USER_HEADERS
        )
        assert first.status_code == second.status_code == 201
        assert (first.json()["queueNumber"], second.json()["queueNumber"]) == (1, 2)
        assert second.json()["position"] == 2

        called = client.post("/queue/next", json={"serviceType": "Bank"}, headers=STAFF_HEADERS)
        assert called.json()["ticket"]["ticketId"] == first.json()["ticketId"]

        done = client.post("/queue/complete", json={"ticketId": first.json()["ticketId"]}, headers=STAFF_HEADERS)
        assert done.status_code == 200
        assert done.json() == {}

        ticket = client.get(f"/queue/tickets/{second.json()['ticketId']}", headers=USER_HEADERS)
        assert ticket.json()["position"] == 1
        assert ticket.json()["status"] == "pending"

        bookings = client.get("/user/bookings", headers=USER_HEADERS).json()
        assert [booking["queueNumber"] for booking in bookings] == [2, 1]

        everything = client.get("/queue/all", headers=STAFF_HEADERS).json()
        assert [item["status"] for item in everything] == ["completed", "pending"]

        summary = client.get("/queue/summary", headers=STAFF_HEADERS).json()
        bank = next(item for item in summary if item["serviceType"] == "Bank")
        assert (bank["pending"], bank["completed"], bank["nextQueueNumber"]) == (1, 1, 3)

        again = client.post("/queue/complete", json={"ticketId": first.json()["ticketId"]}, headers=STAFF_HEADERS)
        assert again.status_code == 409


def test_unknown_service_is_a_bad_request():
    with TestClient(create_app()) as client:
        response = client.post(
            "/queue/book", json={"serviceType": "Library", "timeSlot": "09:00 AM"}, headers=USER_HEADERS
        )
        assert response.status_code == 400
