"""API tests: health, auth, bookings, payments and the error envelope."""

from datetime import timedelta

import pytest

from booking_engine.core.exceptions import ExternalServiceError
from booking_engine.models.base import utcnow
from conftest import ADMIN_ID, OTHER_ID, PROVIDER_ID, REQUESTER_ID, auth_headers

API = "/api/v1"


def _create_body(offering_id, **overrides):
    body = {
        "offeringId": offering_id,
        "participantCount": 1,
        "contactName": "Aiko Tanaka",
        "contactEmail": "aiko@example.com",
        "contactPhone": "+81 90-1234-5678",
        "specialRequests": "First lesson",
        "paymentMethod": "card",
        "scheduledAt": (utcnow() + timedelta(hours=48)).isoformat(),
        "duration": 60,
    }
    body.update(overrides)
    return body


async def _create(client, offering, user_id=REQUESTER_ID, **overrides) -> str:
    response = await client.post(
        f"{API}/bookings", json=_create_body(offering.id, **overrides), headers=auth_headers(user_id)
    )
    assert response.status_code == 201, response.text
    return response.json()["bookingId"]


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_unauthenticated_requests_get_401(client):
    response = await client.get(f"{API}/bookings/anything")
    assert response.status_code == 401
    assert response.json() == {"error": "Not authenticated"}

    response = await client.get(f"{API}/bookings/anything", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid token"}


@pytest.mark.asyncio
async def test_create_and_read_booking(client, offering):
    booking_id = await _create(client, offering, participantCount=2)

    response = await client.get(f"{API}/bookings/{booking_id}", headers=auth_headers(REQUESTER_ID))
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "pending"
    assert data["paymentStatus"] == "pending"
    assert data["providerId"] == PROVIDER_ID
    assert data["requesterId"] == REQUESTER_ID
    assert data["duration"] == 60
    assert data["studentNotes"] == "First lesson"
    pricing = data["pricing"]
    assert pricing["baseAmount"] == 6000
    assert pricing["totalAmount"] == pricing["baseAmount"] + pricing["tax"] + pricing["platformFee"] + pricing[
        "paymentFee"
    ]
    assert pricing["currency"] == "JPY"


@pytest.mark.asyncio
async def test_snake_case_input_is_accepted(client, offering):
    body = {
        "offering_id": offering.id,
        "participant_count": 1,
        "contact_name": "Aiko Tanaka",
        "contact_email": "aiko@example.com",
        "contact_phone": "090-1234-5678",
        "payment_method": "cash",
        "scheduled_at": (utcnow() + timedelta(days=3)).isoformat(),
        "duration_minutes": 90,
    }
    response = await client.post(f"{API}/bookings", json=body, headers=auth_headers(REQUESTER_ID))
    assert response.status_code == 201, response.text


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"participantCount": 0},
        {"participantCount": 51},
        {"contactEmail": "not-an-email"},
        {"contactPhone": "call me"},
        {"paymentMethod": "bitcoin"},
        {"duration": 15},
        {"specialRequests": "x" * 501},
    ],
)
async def test_create_validation_errors_are_400(client, offering, overrides):
    response = await client.post(
        f"{API}/bookings", json=_create_body(offering.id, **overrides), headers=auth_headers(REQUESTER_ID)
    )
    assert response.status_code == 400
    assert set(response.json()) == {"error"}


@pytest.mark.asyncio
async def test_create_in_the_past_is_400(client, offering):
    past = (utcnow() - timedelta(hours=1)).isoformat()
    response = await client.post(
        f"{API}/bookings", json=_create_body(offering.id, scheduledAt=past), headers=auth_headers(REQUESTER_ID)
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_for_unknown_offering_is_404(client, offering):
    response = await client.post(
        f"{API}/bookings", json=_create_body("no-such-offering"), headers=auth_headers(REQUESTER_ID)
    )
    assert response.status_code == 404
    assert response.json() == {"error": "Offering not found"}


@pytest.mark.asyncio
async def test_provider_cannot_book_own_offering(client, offering):
    response = await client.post(f"{API}/bookings", json=_create_body(offering.id), headers=auth_headers(PROVIDER_ID))
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_strangers_get_403_and_admins_get_in(client, offering):
    booking_id = await _create(client, offering)

    response = await client.get(f"{API}/bookings/{booking_id}", headers=auth_headers(OTHER_ID))
    assert response.status_code == 403

    response = await client.get(f"{API}/bookings/{booking_id}", headers=auth_headers(ADMIN_ID, admin=True))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_missing_booking_is_404(client):
    response = await client.get(f"{API}/bookings/nope", headers=auth_headers(REQUESTER_ID))
    assert response.status_code == 404
    assert response.json() == {"error": "Booking not found"}


@pytest.mark.asyncio
async def test_list_requires_role(client, offering):
    await _create(client, offering)

    response = await client.get(f"{API}/bookings", headers=auth_headers(REQUESTER_ID))
    assert response.status_code == 400

    response = await client.get(f"{API}/bookings?role=student", headers=auth_headers(REQUESTER_ID))
    assert response.status_code == 200
    assert len(response.json()["bookings"]) == 1

    response = await client.get(f"{API}/bookings?role=teacher", headers=auth_headers(REQUESTER_ID))
    assert response.json()["bookings"] == []

    response = await client.get(f"{API}/bookings?role=teacher", headers=auth_headers(PROVIDER_ID))
    assert len(response.json()["bookings"]) == 1


@pytest.mark.asyncio
async def test_listing_someone_else_needs_admin(client, offering):
    await _create(client, offering)

    url = f"{API}/bookings?role=student&userId={REQUESTER_ID}"
    assert (await client.get(url, headers=auth_headers(OTHER_ID))).status_code == 403

    response = await client.get(url, headers=auth_headers(ADMIN_ID, admin=True))
    assert response.status_code == 200
    assert len(response.json()["bookings"]) == 1


@pytest.mark.asyncio
async def test_status_changes_through_put(client, offering):
    booking_id = await _create(client, offering, paymentMethod="transfer")
    url = f"{API}/bookings/{booking_id}"

    response = await client.put(url, json={"status": "confirmed"}, headers=auth_headers(REQUESTER_ID))
    assert response.status_code == 403

    response = await client.put(
        url, json={"status": "confirmed", "teacherNotes": "Meet at the pier"}, headers=auth_headers(PROVIDER_ID)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"
    assert response.json()["teacherNotes"] == "Meet at the pier"

    response = await client.put(url, json={"status": "pending"}, headers=auth_headers(PROVIDER_ID))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_card_booking_cannot_be_confirmed_unpaid(client, offering):
    booking_id = await _create(client, offering)
    response = await client.put(
        f"{API}/bookings/{booking_id}", json={"status": "confirmed"}, headers=auth_headers(PROVIDER_ID)
    )
    assert response.status_code == 409
    assert "error" in response.json()


@pytest.mark.asyncio
async def test_requester_cannot_write_teacher_notes(client, offering):
    booking_id = await _create(client, offering)
    response = await client.put(
        f"{API}/bookings/{booking_id}", json={"teacherNotes": "hi"}, headers=auth_headers(REQUESTER_ID)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_cancel_unpaid_booking(client, offering):
    booking_id = await _create(client, offering)
    url = f"{API}/bookings/{booking_id}"

    response = await client.delete(f"{url}?reason=Changed plans", headers=auth_headers(REQUESTER_ID))
    assert response.status_code == 200
    refund = response.json()["refund"]
    assert refund["refundAmount"] == 0
    assert refund["cancellationFee"] == 0

    booking = (await client.get(url, headers=auth_headers(REQUESTER_ID))).json()
    assert booking["status"] == "cancelled"
    assert booking["cancellationReason"] == "Changed plans"

    response = await client.delete(url, headers=auth_headers(REQUESTER_ID))
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_cancel_through_put_uses_cancellation_flow(client, offering):
    booking_id = await _create(client, offering)
    response = await client.put(
        f"{API}/bookings/{booking_id}", json={"status": "cancelled"}, headers=auth_headers(REQUESTER_ID)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["cancellationReason"] == "Cancelled by user"


@pytest.mark.asyncio
async def test_card_payment_flow_and_refund_on_cancel(client, offering, fake_provider):
    booking_id = await _create(client, offering)
    headers = auth_headers(REQUESTER_ID)
    booking = (await client.get(f"{API}/bookings/{booking_id}", headers=headers)).json()
    total = booking["pricing"]["totalAmount"]

    response = await client.post(
        f"{API}/payments/create-intent",
        json={"amount": total, "currency": "JPY", "bookingId": booking_id, "metadata": {"channel": "web"}},
        headers=headers,
    )
    assert response.status_code == 200, response.text
    intent = response.json()
    assert intent["clientSecret"]
    intent_id = intent["paymentIntentId"]

    fake_provider.set_status(intent_id, "succeeded")
    response = await client.post(f"{API}/payments/confirm", json={"paymentIntentId": intent_id}, headers=headers)
    assert response.status_code == 200
    assert response.json() == {
        "paymentStatus": "succeeded",
        "bookingStatus": "confirmed",
        "bookingPaymentStatus": "paid",
    }

    response = await client.delete(f"{API}/bookings/{booking_id}", headers=headers)
    assert response.status_code == 200
    refund = response.json()["refund"]
    assert refund["refundAmount"] == total
    assert refund["refundRate"] == 100
    assert fake_provider.refunds == [(intent_id, total, "Cancelled by user")]

    booking = (await client.get(f"{API}/bookings/{booking_id}", headers=headers)).json()
    assert booking["status"] == "cancelled"
    assert booking["paymentStatus"] == "refunded"


@pytest.mark.asyncio
async def test_create_intent_errors(client, offering, fake_provider):
    booking_id = await _create(client, offering)
    headers = auth_headers(REQUESTER_ID)
    total = (await client.get(f"{API}/bookings/{booking_id}", headers=headers)).json()["pricing"]["totalAmount"]

    body = {"amount": total - 1, "currency": "JPY", "bookingId": booking_id}
    response = await client.post(f"{API}/payments/create-intent", json=body, headers=headers)
    assert response.status_code == 400
    assert fake_provider.created == []

    body["amount"] = total
    response = await client.post(f"{API}/payments/create-intent", json=body, headers=auth_headers(PROVIDER_ID))
    assert response.status_code == 403

    assert (await client.post(f"{API}/payments/create-intent", json=body, headers=headers)).status_code == 200
    assert (await client.post(f"{API}/payments/create-intent", json=body, headers=headers)).status_code == 409
    assert len(fake_provider.created) == 1


@pytest.mark.asyncio
async def test_refund_endpoint(client, offering, fake_provider):
    booking_id = await _create(client, offering)
    headers = auth_headers(REQUESTER_ID)
    total = (await client.get(f"{API}/bookings/{booking_id}", headers=headers)).json()["pricing"]["totalAmount"]
    intent_id = (
        await client.post(
            f"{API}/payments/create-intent",
            json={"amount": total, "currency": "JPY", "bookingId": booking_id},
            headers=headers,
        )
    ).json()["paymentIntentId"]
    fake_provider.set_status(intent_id, "succeeded")
    await client.post(f"{API}/payments/confirm", json={"paymentIntentId": intent_id}, headers=headers)

    response = await client.post(f"{API}/payments/refund", json={"bookingId": booking_id}, headers=headers)
    assert response.status_code == 403

    response = await client.post(
        f"{API}/payments/refund",
        json={"bookingId": booking_id, "amount": 2000, "reason": "Partial refund"},
        headers=auth_headers(PROVIDER_ID),
    )
    assert response.status_code == 200
    assert response.json() == {"refundId": "re_test_1", "amount": 2000, "status": "succeeded"}


@pytest.mark.asyncio
async def test_provider_errors_surface_as_502(client, offering, fake_provider):
    booking_id = await _create(client, offering)
    headers = auth_headers(REQUESTER_ID)
    total = (await client.get(f"{API}/bookings/{booking_id}", headers=headers)).json()["pricing"]["totalAmount"]

    async def unavailable(*args, **kwargs):
        raise ExternalServiceError("Payment provider timed out")

    fake_provider.create_intent = unavailable
    response = await client.post(
        f"{API}/payments/create-intent",
        json={"amount": total, "currency": "JPY", "bookingId": booking_id},
        headers=headers,
    )
    assert response.status_code == 502
    assert response.json() == {"error": "Payment provider timed out"}
