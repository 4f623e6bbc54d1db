from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.auth import require_permission
from app.auth.permissions import Permission
from app.database.database import get_db
from app.models.models import User
from app.schemas.inventory_schema import (
    MovementType,
    ProductCreate,
    ProductResponse,
    ProductUpdate,
    StockMovementCreate,
    StockMovementResponse,
)
from app.services import inventory_service

router = APIRouter(prefix="/api/inventory", tags=["Inventory"])


@router.get("/products", status_code=status.HTTP_200_OK)
async def list_products(
    search: str | None = None,
    category: str | None = None,
    include_archived: bool = False,
    sort_by: str = "name",
    sort_order: str = "asc",
    skip: int = 0,
    limit: int = 50,
    current_user: User = Depends(require_permission(Permission.INVENTORY_READ)),
    db: AsyncSession = Depends(get_db),
) -> list[ProductResponse]:
    """
    List products with their current stock quantity.

    `low_stock` is set when the quantity is at or below a positive reorder level.
    """
    return await inventory_service.list_products(
        db=db,
        search=search,
        category=category,
        include_archived=include_archived,
        sort_by=sort_by,
        sort_order=sort_order,
        skip=skip,
        limit=limit,
    )


@router.post("/products", status_code=status.HTTP_201_CREATED)
async def create_product(
    data: ProductCreate,
    current_user: User = Depends(require_permission(Permission.INVENTORY_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> ProductResponse:
    return await inventory_service.create_product(db=db, data=data)


@router.get("/products/{product_id}", status_code=status.HTTP_200_OK)
async def get_product(
    product_id: UUID,
    current_user: User = Depends(require_permission(Permission.INVENTORY_READ)),
    db: AsyncSession = Depends(get_db),
) -> ProductResponse:
    product = await inventory_service.get_product_or_404(db=db, product_id=product_id)
    return inventory_service.product_response(product)


@router.patch("/products/{product_id}", status_code=status.HTTP_200_OK)
async def update_product(
    product_id: UUID,
    data: ProductUpdate,
    current_user: User = Depends(require_permission(Permission.INVENTORY_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> ProductResponse:
    return await inventory_service.update_product(db=db, product_id=product_id, data=data)


@router.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: UUID,
    current_user: User = Depends(require_permission(Permission.INVENTORY_WRITE)),
    db: AsyncSession = Depends(get_db),
):
    await inventory_service.delete_product(db=db, product_id=product_id)


@router.get("/stock-movements", status_code=status.HTTP_200_OK)
async def list_stock_movements(
    product_id: UUID | None = None,
    movement_type: MovementType | None = Query(default=None, alias="type"),
    search: str | None = None,
    skip: int = 0,
    limit: int = 50,
    current_user: User = Depends(require_permission(Permission.INVENTORY_READ)),
    db: AsyncSession = Depends(get_db),
) -> list[StockMovementResponse]:
    return await inventory_service.list_stock_movements(
        db=db,
        product_id=product_id,
        movement_type=movement_type,
        search=search,
        skip=skip,
        limit=limit,
    )


@router.post("/stock-movements", status_code=status.HTTP_201_CREATED)
async def create_stock_movement(
    data: StockMovementCreate,
    current_user: User = Depends(require_permission(Permission.INVENTORY_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> StockMovementResponse:
    """
    Record a stock movement.

    `in` and `out` take a positive quantity; `adjustment` takes a signed,
    non-zero one. A movement that would leave stock below zero is rejected.
    """
    return await inventory_service.create_stock_movement(
        db=db, data=data, current_user=current_user
    )
