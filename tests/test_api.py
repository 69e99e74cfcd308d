from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from fastapi.testclient import TestClient

from conftest import MutableClock

AGENCY_HEADERS = {"X-User-Id": "agency-1", "X-User-Role": "agency"}
TOURIST_HEADERS = {"X-User-Id": "user-1", "X-User-Role": "tourist"}
ADMIN_HEADERS = {"X-User-Id": "admin-1", "X-User-Role": "admin"}


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def _create_tour(client: TestClient, clock: MutableClock, start_in: timedelta = timedelta(days=7)) -> dict:
    start = clock() + start_in
    response = client.post(
        "/v1/tours",
        json={
            "name": "Sahara nights",
            "location": "Merzouga",
            "price": "150",
            "capacity": 8,
            "start_date": _iso(start),
            "end_date": _iso(start + timedelta(days=2)),
        },
        headers=AGENCY_HEADERS,
    )
    assert response.status_code == 201
    return response.json()


def _create_booking(client: TestClient, clock: MutableClock, tour_id: str, participants: int = 2) -> dict:
    response = client.post(
        "/v1/bookings",
        json={
            "tour_id": tour_id,
            "booking_date": _iso(clock() + timedelta(days=7)),
            "number_of_participants": participants,
        },
        headers=TOURIST_HEADERS,
    )
    assert response.status_code == 201
    return response.json()


def _card(booking_id: str, number: str) -> dict:
    return {
        "booking_id": booking_id,
        "card_number": number,
        "cardholder_name": "Test User",
        "expiry_date": "12/30",
        "cvv": "123",
    }


def test_booking_and_card_payment_flow(client: TestClient, clock: MutableClock) -> None:
    tour = _create_tour(client, clock)
    assert tour["tour_status"] == "upcoming"
    assert tour["time_until_start"]["days"] == 7

    booking = _create_booking(client, clock, tour["id"])
    assert (booking["status"], booking["payment_status"]) == ("pending", "pending")
    assert Decimal(booking["total_price"]) == Decimal("300")

    anonymous = client.post("/v1/payments/fiat/confirm", json=_card(booking["id"], "4000000000000002"))
    assert anonymous.status_code == 403

    declined = client.post(
        "/v1/payments/fiat/confirm", json=_card(booking["id"], "4000000000000002"), headers=TOURIST_HEADERS
    )
    assert declined.status_code == 402
    assert declined.json()["code"] == "DECLINED"
    unchanged = client.get(f"/v1/bookings/{booking['id']}", headers=TOURIST_HEADERS).json()
    assert (unchanged["status"], unchanged["payment_status"]) == ("pending", "pending")

    paid = client.post(
        "/v1/payments/fiat/confirm", json=_card(booking["id"], "4242424242424242"), headers=TOURIST_HEADERS
    )
    assert paid.status_code == 200
    body = paid.json()
    assert (body["status"], body["payment_status"]) == ("confirmed", "paid")
    assert body["fiat_payment"]["card_last4"] == "4242"

    again = client.post(
        "/v1/payments/fiat/confirm", json=_card(booking["id"], "4242424242424242"), headers=TOURIST_HEADERS
    )
    assert again.status_code == 409
    assert again.json()["code"] == "ALREADY_PAID"

    history = client.get("/v1/payments/history", headers=TOURIST_HEADERS).json()
    assert [item["booking_id"] for item in history] == [booking["id"]]


def test_booking_unknown_tour_returns_not_found(client: TestClient, clock: MutableClock) -> None:
    response = client.post(
        "/v1/bookings",
        json={"tour_id": "tour_missing", "booking_date": _iso(clock()), "number_of_participants": 1},
        headers=TOURIST_HEADERS,
    )

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_status_update_forbidden_for_tourist(client: TestClient, clock: MutableClock) -> None:
    tour = _create_tour(client, clock)
    booking = _create_booking(client, clock, tour["id"])

    forbidden = client.put(
        f"/v1/bookings/{booking['id']}/status", json={"status": "confirmed"}, headers=TOURIST_HEADERS
    )
    assert forbidden.status_code == 403

    confirmed = client.put(
        f"/v1/bookings/{booking['id']}/status", json={"status": "confirmed"}, headers=AGENCY_HEADERS
    )
    assert confirmed.json()["status"] == "confirmed"


def test_cancel_then_transition_is_rejected(client: TestClient, clock: MutableClock) -> None:
    tour = _create_tour(client, clock)
    booking = _create_booking(client, clock, tour["id"])

    response = client.delete(f"/v1/bookings/{booking['id']}", headers=TOURIST_HEADERS)
    assert response.status_code == 204

    response = client.put(
        f"/v1/bookings/{booking['id']}/status", json={"status": "confirmed"}, headers=ADMIN_HEADERS
    )
    assert response.status_code == 409
    assert response.json()["code"] == "INVALID_TRANSITION"


def test_review_after_reconciled_completion(client: TestClient, clock: MutableClock) -> None:
    tour = _create_tour(client, clock, start_in=timedelta(hours=1))
    booking = _create_booking(client, clock, tour["id"])
    client.post(
        "/v1/payments/fiat/confirm", json=_card(booking["id"], "4242424242424242"), headers=TOURIST_HEADERS
    )
    review = {"tour_id": tour["id"], "booking_id": booking["id"], "rating": 5, "comment": "Unforgettable"}

    early = client.post("/v1/reviews", json=review, headers=TOURIST_HEADERS)
    assert early.status_code == 400
    assert early.json()["code"] == "INVALID_STATE"

    clock.advance(days=8)
    assert client.post("/v1/admin/reconcile", headers=TOURIST_HEADERS).status_code == 403
    report = client.post("/v1/admin/reconcile", headers=ADMIN_HEADERS).json()
    assert report["tours_completed"] == 1
    assert report["bookings_completed"] == 1

    created = client.post("/v1/reviews", json=review, headers=TOURIST_HEADERS)
    assert created.status_code == 201
    assert created.json()["is_verified"] is True

    stored_tour = client.get(f"/v1/tours/{tour['id']}").json()
    assert stored_tour["tour_status"] == "completed"
    assert (stored_tour["rating"], stored_tour["review_count"]) == (5.0, 1)


def test_list_tours_by_status(client: TestClient, clock: MutableClock) -> None:
    _create_tour(client, clock, start_in=timedelta(days=1))
    _create_tour(client, clock, start_in=timedelta(days=10))

    clock.advance(days=2)
    response = client.get("/v1/tours", params={"status": "ongoing"})

    assert response.status_code == 200
    assert response.json()["total"] == 1
    assert response.json()["items"][0]["tour_status"] == "ongoing"


def test_payment_methods_are_public(client: TestClient) -> None:
    response = client.get("/v1/payments/methods")

    assert response.status_code == 200
    assert "hedera" in {item["id"] for item in response.json()}
