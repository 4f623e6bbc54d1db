import httpx
import pytest
from fastapi import status

from app.schemas.user_schema import RoleName


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", ["categories", "units", "departments"])
async def test_reference_data_crud(client: httpx.AsyncClient, admin_headers, kind):
    url = f"/api/settings/{kind}"

    response = await client.post(url, json={"name": "  Cement "}, headers=admin_headers)
    assert response.status_code == status.HTTP_201_CREATED
    item_id = response.json()["id"]
    assert response.json()["name"] == "Cement"

    response = await client.post(url, json={"name": "Cement"}, headers=admin_headers)
    assert response.status_code == status.HTTP_409_CONFLICT

    await client.post(url, json={"name": "Aggregates"}, headers=admin_headers)
    response = await client.get(url, headers=admin_headers)
    assert [i["name"] for i in response.json()] == ["Aggregates", "Cement"]

    response = await client.put(
        f"{url}/{item_id}", json={"name": "Aggregates"}, headers=admin_headers
    )
    assert response.status_code == status.HTTP_409_CONFLICT

    response = await client.put(f"{url}/{item_id}", json={"name": "Steel"}, headers=admin_headers)
    assert response.json() == {"id": item_id, "name": "Steel"}

    response = await client.delete(f"{url}/{item_id}", headers=admin_headers)
    assert response.status_code == status.HTTP_204_NO_CONTENT

    response = await client.delete(f"{url}/{item_id}", headers=admin_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.asyncio
async def test_inventory_roles_can_read_categories(
    client: httpx.AsyncClient, make_user, headers_for
):
    cashier = await make_user("cashier@example.com", RoleName.POS_CASHIER)
    driver = await make_user("driver@example.com", RoleName.DELIVERY_STAFF)

    response = await client.get("/api/settings/categories", headers=headers_for(cashier))
    assert response.status_code == status.HTTP_200_OK

    response = await client.get("/api/settings/units", headers=headers_for(driver))
    assert response.status_code == status.HTTP_403_FORBIDDEN

    response = await client.get("/api/settings/departments", headers=headers_for(cashier))
    assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.asyncio
async def test_customer_crud(client: httpx.AsyncClient, make_user, headers_for):
    cashier = await make_user("cashier@example.com", RoleName.POS_CASHIER)
    headers = headers_for(cashier)

    for name, phone in (("Beta Hardware", "0917-000-0002"), ("ACME Builders", "0917-000-0001")):
        response = await client.post(
            "/api/customers",
            json={"name": name, "address": "Pasig City", "phone": phone},
            headers=headers,
        )
        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["created_by_id"] == str(cashier.id)
    customer_id = response.json()["id"]

    response = await client.get("/api/customers", headers=headers)
    assert [c["name"] for c in response.json()] == ["ACME Builders", "Beta Hardware"]

    response = await client.get(
        "/api/customers", params={"search": "0002"}, headers=headers
    )
    assert [c["name"] for c in response.json()] == ["Beta Hardware"]

    response = await client.patch(
        f"/api/customers/{customer_id}", json={"email": "buy@acme.ph"}, headers=headers
    )
    assert response.json()["email"] == "buy@acme.ph"

    response = await client.patch(
        f"/api/customers/{customer_id}", json={"email": "not-an-email"}, headers=headers
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST

    response = await client.delete(f"/api/customers/{customer_id}", headers=headers)
    assert response.status_code == status.HTTP_204_NO_CONTENT
    response = await client.get(f"/api/customers/{customer_id}", headers=headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND
