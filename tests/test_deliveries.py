import re

import httpx
import pytest
import pytest_asyncio
from fastapi import HTTPException, status

from app.schemas.delivery_schema import DeliveryStatus
from app.schemas.user_schema import RoleName
from app.services.delivery_service import get_next_status, validate_transition

TRACKING_PATTERN = re.compile(r"^DEL-\d{8}-[A-HJ-NP-Z2-9]{6}$")

PROGRESSION = ["picked", "in_transit", "out_for_delivery", "delivered"]


@pytest_asyncio.fixture
async def driver(make_user):
    return await make_user("driver@example.com", RoleName.DELIVERY_STAFF, name="Driver One")


async def create_delivery(client: httpx.AsyncClient, headers: dict, **fields) -> dict:
    payload = {"customer_name": "ACME Builders", "customer_address": "12 Rizal Ave"}
    payload.update(fields)
    response = await client.post("/api/deliveries", json=payload, headers=headers)
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()


@pytest.mark.parametrize(
    "current, expected",
    [
        (DeliveryStatus.CREATED, DeliveryStatus.PICKED),
        (DeliveryStatus.PICKED, DeliveryStatus.IN_TRANSIT),
        (DeliveryStatus.IN_TRANSIT, DeliveryStatus.OUT_FOR_DELIVERY),
        (DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.DELIVERED),
        (DeliveryStatus.DELIVERED, None),
        (DeliveryStatus.FAILED, None),
        (DeliveryStatus.RETURNED, None),
    ],
)
def test_get_next_status(current, expected):
    assert get_next_status(current) == expected


def test_skipping_a_status_is_rejected():
    with pytest.raises(HTTPException) as exc_info:
        validate_transition(DeliveryStatus.CREATED, DeliveryStatus.IN_TRANSIT)
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == (
        "Invalid status progression. Expected next status: picked, "
        "but received: in_transit"
    )


def test_failed_is_never_a_valid_next_status():
    with pytest.raises(HTTPException):
        validate_transition(DeliveryStatus.IN_TRANSIT, DeliveryStatus.FAILED)


@pytest.mark.asyncio
async def test_create_delivery_generates_tracking_number(
    client: httpx.AsyncClient, admin_headers
):
    delivery = await create_delivery(client, admin_headers)
    assert TRACKING_PATTERN.match(delivery["tracking_number"])
    assert delivery["status"] == "created"
    assert delivery["next_status"] == "picked"
    assert [h["status"] for h in delivery["status_history"]] == ["created"]


@pytest.mark.asyncio
async def test_duplicate_tracking_number(client: httpx.AsyncClient, admin_headers):
    await create_delivery(client, admin_headers, tracking_number="DEL-MANUAL-1")
    response = await client.post(
        "/api/deliveries",
        json={
            "tracking_number": "DEL-MANUAL-1",
            "customer_name": "Other",
            "customer_address": "Somewhere",
        },
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_409_CONFLICT


@pytest.mark.asyncio
async def test_full_progression_then_terminal(
    client: httpx.AsyncClient, admin, admin_headers, driver, headers_for
):
    delivery = await create_delivery(
        client, admin_headers, assigned_to_user_id=str(driver.id)
    )
    driver_headers = headers_for(driver)

    for step in PROGRESSION:
        response = await client.post(
            f"/api/deliveries/{delivery['id']}/status",
            json={"status": step, "location": "Quezon City"},
            headers=driver_headers,
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == step

    body = response.json()
    assert body["next_status"] is None
    assert [h["status"] for h in body["status_history"]] == ["created", *PROGRESSION]
    assert body["status_history"][-1]["updated_by_id"] == str(driver.id)

    response = await client.post(
        f"/api/deliveries/{delivery['id']}/status",
        json={"status": "returned"},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == (
        "Cannot update status. Delivery is already completed or terminated."
    )

    # The creator hears about every step the driver made
    response = await client.get("/api/notifications", headers=admin_headers)
    titles = [n["title"] for n in response.json()["notifications"]]
    assert len(titles) == len(PROGRESSION)
    assert all(t.startswith(f"Delivery {delivery['tracking_number']}") for t in titles)


@pytest.mark.asyncio
async def test_out_of_order_status_is_rejected(client: httpx.AsyncClient, admin_headers):
    delivery = await create_delivery(client, admin_headers)
    response = await client.post(
        f"/api/deliveries/{delivery['id']}/status",
        json={"status": "delivered"},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "Expected next status: picked" in response.json()["detail"]


@pytest.mark.asyncio
async def test_assignee_must_be_delivery_staff(
    client: httpx.AsyncClient, admin_headers, make_user
):
    cashier = await make_user("cashier@example.com", RoleName.POS_CASHIER)
    response = await client.post(
        "/api/deliveries",
        json={
            "customer_name": "ACME",
            "customer_address": "12 Rizal Ave",
            "assigned_to_user_id": str(cashier.id),
        },
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.asyncio
async def test_staff_only_sees_own_active_queue(
    client: httpx.AsyncClient, admin_headers, driver, make_user, headers_for
):
    other = await make_user("other-driver@example.com", RoleName.DELIVERY_STAFF)
    mine = await create_delivery(client, admin_headers, assigned_to_user_id=str(driver.id))
    theirs = await create_delivery(client, admin_headers, assigned_to_user_id=str(other.id))
    await create_delivery(client, admin_headers)

    response = await client.get("/api/deliveries", headers=headers_for(driver))
    assert [d["id"] for d in response.json()] == [mine["id"]]

    response = await client.get(
        f"/api/deliveries/{theirs['id']}", headers=headers_for(driver)
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN

    response = await client.get("/api/deliveries", headers=admin_headers)
    assert len(response.json()) == 3

    response = await client.get("/api/deliveries/staff", headers=admin_headers)
    assert [s["email"] for s in response.json()] == [
        "driver@example.com",
        "other-driver@example.com",
    ]


@pytest.mark.asyncio
async def test_status_update_requires_permission(
    client: httpx.AsyncClient, admin_headers, make_user, headers_for
):
    manager = await make_user("stock@example.com", RoleName.INVENTORY_MANAGER)
    delivery = await create_delivery(client, headers_for(manager))

    response = await client.post(
        f"/api/deliveries/{delivery['id']}/status",
        json={"status": "picked"},
        headers=headers_for(manager),
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN
