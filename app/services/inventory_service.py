from uuid import UUID

import logfire
from fastapi import HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import Product, StockLevel, StockMovement, User, utcnow
from app.schemas.inventory_schema import (
    MovementType,
    ProductCreate,
    ProductResponse,
    ProductUpdate,
    StockMovementCreate,
    StockMovementResponse,
)
from app.schemas.notification_schema import NotificationType
from app.schemas.user_schema import RoleName
from app.services.notification_service import notify_roles

PRODUCT_SORT_COLUMNS = {
    "name": Product.name,
    "sku": Product.sku,
    "category": Product.category,
    "created_at": Product.created_at,
    "quantity": StockLevel.quantity,
}


def is_low_stock(quantity: int, reorder_level: int) -> bool:
    return reorder_level > 0 and quantity <= reorder_level


def product_response(product: Product) -> ProductResponse:
    quantity = product.stock_level.quantity if product.stock_level else 0
    response = ProductResponse.model_validate(product)
    response.quantity = quantity
    response.low_stock = is_low_stock(quantity, product.reorder_level)
    return response


async def get_product_or_404(db: AsyncSession, product_id: UUID) -> Product:
    product = await db.get(Product, product_id)
    if not product:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Product not found"
        )
    return product


async def _ensure_unique_sku(db: AsyncSession, sku: str, exclude_id: UUID | None = None):
    stmt = select(Product.id).where(Product.sku == sku)
    if exclude_id:
        stmt = stmt.where(Product.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="SKU already exists"
        )


async def list_products(
    db: AsyncSession,
    search: str | None = None,
    category: str | None = None,
    include_archived: bool = False,
    sort_by: str = "name",
    sort_order: str = "asc",
    skip: int = 0,
    limit: int = 50,
) -> list[ProductResponse]:
    stmt = select(Product).outerjoin(StockLevel)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Product.name.ilike(pattern), Product.sku.ilike(pattern)))
    if category:
        stmt = stmt.where(Product.category == category)
    if not include_archived:
        stmt = stmt.where(Product.archived.is_(False))

    column = PRODUCT_SORT_COLUMNS.get(sort_by, Product.name)
    stmt = stmt.order_by(column.desc() if sort_order == "desc" else column.asc())

    result = await db.execute(stmt.offset(skip).limit(limit))
    return [product_response(p) for p in result.scalars().all()]


async def create_product(
    db: AsyncSession, data: ProductCreate
) -> ProductResponse:
    """
    Create a product together with its zero stock level.
    """
    await _ensure_unique_sku(db, data.sku)

    product = Product(**data.model_dump())
    product.stock_level = StockLevel(quantity=0)
    db.add(product)
    await db.commit()
    logfire.info("product {sku} created", sku=product.sku)
    return product_response(product)


async def update_product(
    db: AsyncSession, product_id: UUID, data: ProductUpdate
) -> ProductResponse:
    product = await get_product_or_404(db, product_id)
    changes = data.model_dump(exclude_unset=True)
    if "sku" in changes and changes["sku"] != product.sku:
        await _ensure_unique_sku(db, changes["sku"], exclude_id=product_id)

    for key, value in changes.items():
        setattr(product, key, value)
    product.updated_at = utcnow()
    await db.commit()
    return product_response(product)


async def delete_product(db: AsyncSession, product_id: UUID) -> None:
    product = await get_product_or_404(db, product_id)
    try:
        await db.delete(product)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Product is referenced by sales; archive it instead",
        )


def signed_delta(movement_type: MovementType, quantity: int) -> int:
    if movement_type == MovementType.OUT:
        return -abs(quantity)
    if movement_type == MovementType.IN:
        return abs(quantity)
    return quantity


async def apply_stock_movement(
    db: AsyncSession,
    product_id: UUID,
    movement_type: MovementType,
    quantity: int,
    reference: str | None = None,
    note: str | None = None,
    created_by_id: UUID | None = None,
) -> StockMovement:
    """
    Record a stock movement and update the product's stock level.

    The stock row is locked for the rest of the caller's transaction; nothing is
    committed here so callers can batch several movements into one unit of work.

    Raises:
        HTTPException: 404 for an unknown product, 400 when the movement would
            take stock below zero.
    """
    product = await get_product_or_404(db, product_id)

    result = await db.execute(
        select(StockLevel)
        .where(StockLevel.product_id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    stock = result.scalar_one_or_none()
    if stock is None:
        stock = StockLevel(product_id=product_id, quantity=0)
        db.add(stock)

    delta = signed_delta(movement_type, quantity)
    new_quantity = stock.quantity + delta
    if new_quantity < 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Insufficient stock for {product.name}: {stock.quantity} available",
        )

    stock.quantity = new_quantity
    stock.updated_at = utcnow()
    movement = StockMovement(
        product_id=product_id,
        type=movement_type,
        quantity=delta,
        reference=reference,
        note=note,
        created_by_id=created_by_id,
    )
    db.add(movement)
    await db.flush()

    if is_low_stock(new_quantity, product.reorder_level):
        logfire.warn(
            "low stock on {sku}: {quantity} left", sku=product.sku, quantity=new_quantity
        )
        await notify_roles(
            db,
            [RoleName.INVENTORY_MANAGER, RoleName.ADMIN],
            NotificationType.LOW_STOCK,
            title=f"Low stock: {product.name}",
            message=(
                f"{product.name} ({product.sku}) is at {new_quantity} {product.unit}, "
                f"reorder level is {product.reorder_level}."
            ),
            link=f"/inventory/products/{product.id}",
        )
    return movement


def movement_response(movement: StockMovement) -> StockMovementResponse:
    response = StockMovementResponse.model_validate(movement)
    response.product_name = movement.product.name if movement.product else None
    return response


async def create_stock_movement(
    db: AsyncSession, data: StockMovementCreate, current_user: User
) -> StockMovementResponse:
    movement = await apply_stock_movement(
        db,
        product_id=data.product_id,
        movement_type=data.type,
        quantity=data.quantity,
        reference=data.reference,
        note=data.note,
        created_by_id=current_user.id,
    )
    await db.commit()
    await db.refresh(movement, ["product"])
    logfire.info(
        "stock movement {type} {quantity} on {product_id}",
        type=data.type.value,
        quantity=movement.quantity,
        product_id=str(data.product_id),
    )
    return movement_response(movement)


async def list_stock_movements(
    db: AsyncSession,
    product_id: UUID | None = None,
    movement_type: MovementType | None = None,
    search: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[StockMovementResponse]:
    stmt = select(StockMovement).join(Product)
    if product_id:
        stmt = stmt.where(StockMovement.product_id == product_id)
    if movement_type:
        stmt = stmt.where(StockMovement.type == movement_type)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                Product.name.ilike(pattern),
                Product.sku.ilike(pattern),
                StockMovement.reference.ilike(pattern),
            )
        )
    result = await db.execute(
        stmt.order_by(StockMovement.created_at.desc()).offset(skip).limit(limit)
    )
    return [movement_response(m) for m in result.scalars().all()]
