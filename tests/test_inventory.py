from decimal import Decimal

import httpx
import pytest
from fastapi import status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import StockLevel
from app.schemas.inventory_schema import MovementType
from app.schemas.user_schema import RoleName
from app.services.inventory_service import is_low_stock, signed_delta


@pytest.mark.parametrize(
    "quantity, reorder_level, expected",
    [(5, 5, True), (6, 5, False), (0, 0, False), (0, 1, True)],
)
def test_is_low_stock(quantity, reorder_level, expected):
    assert is_low_stock(quantity, reorder_level) is expected


def test_signed_delta():
    assert signed_delta(MovementType.IN, 4) == 4
    assert signed_delta(MovementType.OUT, 4) == -4
    assert signed_delta(MovementType.ADJUSTMENT, -3) == -3


@pytest.mark.asyncio
async def test_create_product_starts_with_zero_stock(
    client: httpx.AsyncClient, admin_headers
):
    payload = {
        "name": "Portland Cement 40kg",
        "sku": "CEM-40KG",
        "category": "Cement",
        "unit": "bag",
        "list_price": "265.00",
        "reorder_level": 20,
    }
    response = await client.post("/api/inventory/products", json=payload, headers=admin_headers)
    assert response.status_code == status.HTTP_201_CREATED
    body = response.json()
    assert body["quantity"] == 0
    assert body["low_stock"] is True
    assert Decimal(body["list_price"]) == Decimal("265.00")

    response = await client.post("/api/inventory/products", json=payload, headers=admin_headers)
    assert response.status_code == status.HTTP_409_CONFLICT


@pytest.mark.asyncio
async def test_stock_movements_update_quantity(
    client: httpx.AsyncClient, test_db: AsyncSession, admin_headers, make_product
):
    product = await make_product("GRAVEL-1", quantity=0)

    for movement_type, quantity in (("in", 50), ("out", 15), ("adjustment", -5)):
        response = await client.post(
            "/api/inventory/stock-movements",
            json={"product_id": str(product.id), "type": movement_type, "quantity": quantity},
            headers=admin_headers,
        )
        assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["product_name"] == "Product GRAVEL-1"

    result = await test_db.execute(
        select(StockLevel.quantity).where(StockLevel.product_id == product.id)
    )
    assert result.scalar_one() == 30

    response = await client.get(
        "/api/inventory/stock-movements",
        params={"product_id": str(product.id), "type": "out"},
        headers=admin_headers,
    )
    assert [m["quantity"] for m in response.json()] == [-15]


@pytest.mark.asyncio
async def test_stock_cannot_go_negative(
    client: httpx.AsyncClient, admin_headers, make_product
):
    product = await make_product("SAND-1", quantity=3)
    response = await client.post(
        "/api/inventory/stock-movements",
        json={"product_id": str(product.id), "type": "out", "quantity": 4},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Insufficient stock for Product SAND-1: 3 available"


@pytest.mark.asyncio
async def test_invalid_movement_quantities(
    client: httpx.AsyncClient, admin_headers, make_product
):
    product = await make_product("NAIL-1", quantity=3)
    for movement_type, quantity in (("in", 0), ("out", -2), ("adjustment", 0)):
        response = await client.post(
            "/api/inventory/stock-movements",
            json={"product_id": str(product.id), "type": movement_type, "quantity": quantity},
            headers=admin_headers,
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.asyncio
async def test_low_stock_notifies_inventory_roles(
    client: httpx.AsyncClient, admin_headers, make_user, make_product, headers_for
):
    manager = await make_user("stock@example.com", RoleName.INVENTORY_MANAGER)
    cashier = await make_user("cashier@example.com", RoleName.POS_CASHIER)
    product = await make_product("PAINT-1", quantity=6, reorder_level=5)

    response = await client.post(
        "/api/inventory/stock-movements",
        json={"product_id": str(product.id), "type": "out", "quantity": 2},
        headers=headers_for(manager),
    )
    assert response.status_code == status.HTTP_201_CREATED

    for headers in (admin_headers, headers_for(manager)):
        response = await client.get("/api/notifications", headers=headers)
        body = response.json()
        assert body["unread_count"] == 1
        assert body["notifications"][0]["type"] == "low_stock"
        assert body["notifications"][0]["title"] == "Low stock: Product PAINT-1"

    response = await client.get("/api/notifications", headers=headers_for(cashier))
    assert response.json()["unread_count"] == 0

    response = await client.post(
        "/api/notifications/mark-read", json={"ids": []}, headers=admin_headers
    )
    assert response.json()["message"] == "1 notification(s) marked as read"
    response = await client.get(
        "/api/notifications", params={"unread_only": True}, headers=admin_headers
    )
    assert response.json()["notifications"] == []


@pytest.mark.asyncio
async def test_product_listing_and_archive(
    client: httpx.AsyncClient, admin_headers, make_product
):
    await make_product("A-1", quantity=9, category="Cement")
    steel = await make_product("B-1", quantity=1, category="Steel")

    response = await client.get(
        "/api/inventory/products",
        params={"sort_by": "quantity", "sort_order": "desc"},
        headers=admin_headers,
    )
    assert [p["sku"] for p in response.json()] == ["A-1", "B-1"]

    response = await client.patch(
        f"/api/inventory/products/{steel.id}", json={"archived": True}, headers=admin_headers
    )
    assert response.json()["archived"] is True

    response = await client.get("/api/inventory/products", headers=admin_headers)
    assert [p["sku"] for p in response.json()] == ["A-1"]

    response = await client.get(
        "/api/inventory/products", params={"include_archived": True, "category": "Steel"},
        headers=admin_headers,
    )
    assert [p["sku"] for p in response.json()] == ["B-1"]


@pytest.mark.asyncio
async def test_delete_product(client: httpx.AsyncClient, admin_headers, make_product):
    product = await make_product("TMP-1", quantity=2)
    response = await client.delete(
        f"/api/inventory/products/{product.id}", headers=admin_headers
    )
    assert response.status_code == status.HTTP_204_NO_CONTENT

    response = await client.get(f"/api/inventory/products/{product.id}", headers=admin_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.asyncio
async def test_viewer_cannot_write(
    client: httpx.AsyncClient, make_user, headers_for, make_product
):
    viewer = await make_user("viewer@example.com", RoleName.VIEWER)
    product = await make_product("V-1", quantity=1)

    response = await client.get("/api/inventory/products", headers=headers_for(viewer))
    assert response.status_code == status.HTTP_200_OK

    response = await client.post(
        "/api/inventory/stock-movements",
        json={"product_id": str(product.id), "type": "in", "quantity": 1},
        headers=headers_for(viewer),
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN
