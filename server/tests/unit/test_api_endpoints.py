"""API endpoint tests through the ASGI app."""

import pytest

from tourslots.schemas.common import Problem


def cart_body(tour, booking_date, quantity=2, time_slot="09:00-10:30", customer_id="customer-1"):
    return {
        "customer_id": customer_id,
        "selections": [{
            "tour_id": str(tour.id),
            "date": booking_date.isoformat(),
            "time_slot": time_slot,
            "quantity": quantity,
            "unit_price": 8000,
        }],
    }


@pytest.mark.asyncio
async def test_create_tour_requires_admin(test_client, sample_tour_data, admin_headers, customer_headers):
    """Catalog writes need an administrator token."""
    response = await test_client.post("/v1/tours", json=sample_tour_data)
    assert response.status_code == 401

    response = await test_client.post("/v1/tours", json=sample_tour_data, headers=customer_headers)
    assert response.status_code == 403

    response = await test_client.post("/v1/tours", json=sample_tour_data, headers=admin_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["slug"] == "kyoto-tea-ceremony"
    assert [slot["index"] for slot in data["time_slots"]] == [0, 1, 2]
    assert data["time_slots"][0]["label"] == "09:00-10:30"


@pytest.mark.asyncio
async def test_create_tour_duplicate_slug(test_client, sample_tour_data, admin_headers):
    await test_client.post("/v1/tours", json=sample_tour_data, headers=admin_headers)

    response = await test_client.post("/v1/tours", json=sample_tour_data, headers=admin_headers)

    assert response.status_code == 409
    assert response.json()["code"] == "CONFLICT"


@pytest.mark.asyncio
async def test_create_tour_validation_problem(test_client, sample_tour_data, admin_headers):
    body = {**sample_tour_data, "time_slots": []}

    response = await test_client.post("/v1/tours", json=body, headers=admin_headers)

    assert response.status_code == 422
    assert response.headers["content-type"].startswith("application/problem+json")
    assert any("time_slots" in violation["path"] for violation in response.json()["violations"])


@pytest.mark.asyncio
async def test_get_tour(test_client, tour):
    response = await test_client.get(f"/v1/tours/{tour.id}")

    assert response.status_code == 200
    assert response.json()["id"] == str(tour.id)


@pytest.mark.asyncio
async def test_get_unknown_tour(test_client):
    response = await test_client.get("/v1/tours/not-a-tour")

    assert response.status_code == 404
    assert response.headers["content-type"].startswith("application/problem+json")


@pytest.mark.asyncio
async def test_availability_endpoint(test_client, tour, booking_date):
    response = await test_client.get(
        f"/v1/tours/{tour.id}/availability", params={"date": booking_date.isoformat()}
    )

    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    data = response.json()
    assert data["availability"] == {"0": 0, "1": 0}
    assert [slot["status"] for slot in data["slots"]] == ["open", "open"]
    assert data["bookable"] is True


@pytest.mark.asyncio
async def test_availability_rejects_bad_date(test_client, tour):
    response = await test_client.get(f"/v1/tours/{tour.id}/availability", params={"date": "tomorrow"})

    assert response.status_code == 400
    assert response.json()["field"] == "date"


@pytest.mark.asyncio
async def test_deactivated_slot_leaves_availability(test_client, tour, booking_date, admin_headers):
    slot = tour.slots[0]

    response = await test_client.patch(
        f"/v1/tours/{tour.id}/slots/{slot.id}", json={"is_active": False}, headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json()["id"] == str(slot.id)
    assert response.json()["is_active"] is False

    response = await test_client.get(
        f"/v1/tours/{tour.id}/availability", params={"date": booking_date.isoformat()}
    )
    assert list(response.json()["availability"]) == ["1"]


@pytest.mark.asyncio
async def test_checkout_then_availability(test_client, tour, booking_date):
    response = await test_client.post("/v1/checkout", json=cart_body(tour, booking_date, quantity=3))

    assert response.status_code == 201
    data = response.json()
    assert data["session_id"] == "cs_test_1"
    assert len(data["reservation_ids"]) == 1

    response = await test_client.get(
        f"/v1/tours/{tour.id}/availability", params={"date": booking_date.isoformat()}
    )
    slot = response.json()["slots"][0]
    assert slot["status"] == "full"
    assert slot["booked"] == 3
    assert slot["remaining"] == 7


@pytest.mark.asyncio
async def test_checkout_capacity_problem(test_client, tour, booking_date):
    response = await test_client.post(
        "/v1/checkout", json=cart_body(tour, booking_date, quantity=6, time_slot="11:00-12:30")
    )

    assert response.status_code == 409
    problem = response.json()
    assert problem["code"] == "CAPACITY_EXCEEDED"
    assert problem["remaining_capacity"] == 5
    assert problem["selection_index"] == 0
    assert problem["time_slot"] == "11:00-12:30"


@pytest.mark.asyncio
async def test_checkout_rejects_malformed_time_slot(test_client, tour, booking_date):
    body = cart_body(tour, booking_date)
    body["selections"][0]["time_slot"] = "morning"

    response = await test_client.post("/v1/checkout", json=body)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_checkout_payment_failure_is_bad_gateway(test_client, fake_gateway, tour, booking_date):
    fake_gateway.fail_with = "stripe unavailable"

    response = await test_client.post("/v1/checkout", json=cart_body(tour, booking_date))

    assert response.status_code == 502
    assert len(response.json()["released_reservation_ids"]) == 1


@pytest.mark.asyncio
async def test_checkout_idempotent_replay(test_client, fake_gateway, tour, booking_date):
    headers = {"Idempotency-Key": "cart-123"}
    body = cart_body(tour, booking_date)

    first = await test_client.post("/v1/checkout", json=body, headers=headers)
    second = await test_client.post("/v1/checkout", json=body, headers=headers)

    assert first.status_code == second.status_code == 201
    assert second.json() == first.json()
    assert second.headers["idempotent-replayed"] == "true"
    assert len(fake_gateway.sessions) == 1


@pytest.mark.asyncio
async def test_checkout_idempotency_key_reused_with_other_cart(test_client, tour, booking_date):
    headers = {"Idempotency-Key": "cart-456"}
    await test_client.post("/v1/checkout", json=cart_body(tour, booking_date), headers=headers)

    response = await test_client.post(
        "/v1/checkout", json=cart_body(tour, booking_date, quantity=1), headers=headers
    )

    assert response.status_code == 422
    assert response.json()["code"] == "IDEMPOTENCY_KEY_MISMATCH"


@pytest.mark.asyncio
async def test_checkout_rejection_is_replayed(test_client, fake_gateway, tour, booking_date):
    headers = {"Idempotency-Key": "cart-789"}
    body = cart_body(tour, booking_date, quantity=11)

    first = await test_client.post("/v1/checkout", json=body, headers=headers)
    second = await test_client.post("/v1/checkout", json=body, headers=headers)

    assert first.status_code == second.status_code == 409
    assert second.headers["idempotent-replayed"] == "true"


@pytest.mark.asyncio
async def test_webhook_confirms_checkout(
    test_client, tour, booking_date, stripe_event, stripe_signature, encode_event
):
    checkout = (await test_client.post("/v1/checkout", json=cart_body(tour, booking_date))).json()
    payload = encode_event(
        stripe_event("checkout.session.completed", checkout["session_id"], checkout["reservation_ids"])
    )

    response = await test_client.post(
        "/v1/webhooks/stripe",
        content=payload,
        headers={"Stripe-Signature": stripe_signature(payload), "Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json()["confirmed"] == checkout["reservation_ids"]

    reservation = (await test_client.get(f"/v1/reservations/{checkout['reservation_ids'][0]}")).json()
    assert reservation["status"] == "confirmed"
    assert reservation["expires_at"] is None


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(test_client, tour, booking_date, stripe_event, encode_event):
    checkout = (await test_client.post("/v1/checkout", json=cart_body(tour, booking_date))).json()
    payload = encode_event(
        stripe_event("checkout.session.completed", checkout["session_id"], checkout["reservation_ids"])
    )

    response = await test_client.post(
        "/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": "t=1,v1=forged"}
    )

    assert response.status_code == 400
    assert response.json()["code"] == "PAYMENT_VERIFICATION_FAILED"

    reservation = (await test_client.get(f"/v1/reservations/{checkout['reservation_ids'][0]}")).json()
    assert reservation["status"] == "pending"


@pytest.mark.asyncio
async def test_reservation_lookups(test_client, tour, booking_date):
    checkout = (await test_client.post("/v1/checkout", json=cart_body(tour, booking_date))).json()
    reservation_id = checkout["reservation_ids"][0]

    single = await test_client.get(f"/v1/reservations/{reservation_id}")
    assert single.status_code == 200
    assert single.json()["time_slot"] == "09:00-10:30"
    assert single.json()["total_price"] == {"amount": 16000, "currency": "JPY"}

    by_session = await test_client.get(f"/v1/reservations/session/{checkout['session_id']}")
    assert [item["id"] for item in by_session.json()["items"]] == [reservation_id]

    by_customer = await test_client.get("/v1/reservations", params={"customer_id": "customer-1"})
    assert [item["id"] for item in by_customer.json()["items"]] == [reservation_id]

    missing = await test_client.get("/v1/reservations/00000000-0000-0000-0000-000000000000")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_cancel_and_complete(test_client, tour, booking_date, admin_headers, customer_headers):
    checkout = (await test_client.post("/v1/checkout", json=cart_body(tour, booking_date))).json()
    reservation_id = checkout["reservation_ids"][0]

    response = await test_client.post(
        f"/v1/reservations/{reservation_id}/cancel", json={"reason": "changed_plans"}
    )
    assert response.status_code == 401

    response = await test_client.post(
        f"/v1/reservations/{reservation_id}/cancel", json={"reason": "changed_plans"}, headers=customer_headers
    )
    assert response.status_code == 403

    response = await test_client.post(
        f"/v1/reservations/{reservation_id}/cancel", json={"reason": "changed_plans"}, headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["cancellation_reason"] == "changed_plans"

    # Cancelling twice is a no-op
    again = await test_client.post(f"/v1/reservations/{reservation_id}/cancel", headers=admin_headers)
    assert again.status_code == 200

    response = await test_client.post(f"/v1/reservations/{reservation_id}/complete")
    assert response.status_code == 401

    response = await test_client.post(f"/v1/reservations/{reservation_id}/complete", headers=admin_headers)
    assert response.status_code == 409
    assert response.json()["code"] == "INVALID_STATE_TRANSITION"


@pytest.mark.asyncio
async def test_metrics_track_webhooks(
    test_client, tour, booking_date, stripe_event, stripe_signature, encode_event
):
    checkout = (await test_client.post("/v1/checkout", json=cart_body(tour, booking_date))).json()
    payload = encode_event(
        stripe_event("checkout.session.expired", checkout["session_id"], checkout["reservation_ids"])
    )
    await test_client.post(
        "/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": stripe_signature(payload)}
    )

    response = await test_client.get("/metrics")

    assert response.status_code == 200
    assert "payment_webhooks_total" in response.text
    assert "reservations_created_total" in response.text


@pytest.mark.asyncio
async def test_checkout_problem_matches_documented_schema(test_client, tour, booking_date):
    await test_client.post("/v1/checkout", json=cart_body(tour, booking_date, quantity=10))

    response = await test_client.post(
        "/v1/checkout", json=cart_body(tour, booking_date, quantity=1, customer_id="customer-2")
    )
    problem = Problem.model_validate(response.json())

    assert problem.status == 409
    assert problem.selection_index == 0
    assert problem.remaining_capacity == 0
    assert problem.retryable is False

    schema = (await test_client.get("/openapi.json")).json()
    assert "409" in schema["paths"]["/v1/checkout"]["post"]["responses"]


@pytest.mark.asyncio
async def test_paid_reservation_cancel_needs_operator(
    test_client, tour, booking_date, customer_headers, admin_headers,
    stripe_event, stripe_signature, encode_event
):
    checkout = (await test_client.post("/v1/checkout", json=cart_body(tour, booking_date))).json()
    payload = encode_event(
        stripe_event("checkout.session.completed", checkout["session_id"], checkout["reservation_ids"])
    )
    await test_client.post("/v1/webhooks/stripe", content=payload, headers={"Stripe-Signature": stripe_signature(payload)})
    reservation_id = checkout["reservation_ids"][0]

    for headers in ({}, customer_headers):
        response = await test_client.post(f"/v1/reservations/{reservation_id}/cancel", headers=headers)
        assert response.status_code in (401, 403)

    reservation = (await test_client.get(f"/v1/reservations/{reservation_id}")).json()
    assert reservation["status"] == "confirmed"

    response = await test_client.post(f"/v1/reservations/{reservation_id}/cancel", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_orders_listing_is_for_operators(test_client, tour, booking_date, admin_headers, customer_headers):
    first = (await test_client.post("/v1/checkout", json=cart_body(tour, booking_date))).json()
    second = (await test_client.post(
        "/v1/checkout", json=cart_body(tour, booking_date, time_slot="11:00-12:30", customer_id="customer-2")
    )).json()

    assert (await test_client.get("/v1/reservations")).status_code == 401
    assert (await test_client.get("/v1/reservations", headers=customer_headers)).status_code == 403

    response = await test_client.get("/v1/reservations", headers=admin_headers)
    assert response.status_code == 200
    listed = [item["id"] for item in response.json()["items"]]
    assert sorted(listed) == sorted(first["reservation_ids"] + second["reservation_ids"])

    await test_client.post(f"/v1/reservations/{listed[0]}/cancel", headers=admin_headers)
    response = await test_client.get("/v1/reservations", params={"status": "pending"}, headers=admin_headers)
    assert [item["id"] for item in response.json()["items"]] == listed[1:]
