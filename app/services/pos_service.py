from decimal import Decimal
from uuid import UUID

import logfire
from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import Payment, Product, Sale, SaleLineItem, StockLevel, User, utcnow
from app.schemas.delivery_schema import DeliveryCreate
from app.schemas.inventory_schema import MovementType
from app.schemas.pos_schema import (
    CompleteSale,
    DiscountType,
    LineItemCreate,
    LineItemResponse,
    LineItemUpdate,
    PaymentCreate,
    PaymentResponse,
    SaleAction,
    SaleResponse,
    SaleStatus,
    SaleUpdate,
)
from app.services.delivery_service import create_delivery
from app.services.inventory_service import apply_stock_movement
from app.utils.utils import ZERO, to_money

OPEN_STATUSES = (SaleStatus.DRAFT, SaleStatus.HELD)


def apply_discount(amount: Decimal, discount: Decimal, discount_type) -> Decimal:
    """Percent or fixed discount, never taking the amount below zero."""
    discount = to_money(discount)
    if not discount_type or discount <= 0:
        return to_money(amount)
    if DiscountType(discount_type) == DiscountType.PERCENT:
        reduced = amount - amount * discount / Decimal(100)
    else:
        reduced = amount - discount
    return to_money(max(reduced, ZERO))


def line_total(line: SaleLineItem) -> Decimal:
    gross = to_money(line.unit_price) * line.quantity
    return apply_discount(gross, line.line_discount_amount, line.line_discount_type)


async def _lines(db: AsyncSession, sale_id: UUID) -> list[SaleLineItem]:
    result = await db.execute(
        select(SaleLineItem).where(SaleLineItem.sale_id == sale_id).order_by(SaleLineItem.id)
    )
    return result.scalars().all()


async def _payments(db: AsyncSession, sale_id: UUID) -> list[Payment]:
    result = await db.execute(
        select(Payment).where(Payment.sale_id == sale_id).order_by(Payment.id)
    )
    return result.scalars().all()


async def recompute_sale_totals(db: AsyncSession, sale: Sale) -> Sale:
    lines = await _lines(db, sale.id)
    sale.subtotal = sum((line_total(line) for line in lines), ZERO)
    sale.total = apply_discount(sale.subtotal, sale.discount_amount, sale.discount_type)
    sale.updated_at = utcnow()
    return sale


async def sale_response(db: AsyncSession, sale: Sale) -> SaleResponse:
    lines = await _lines(db, sale.id)
    payments = await _payments(db, sale.id)
    response = SaleResponse.model_validate(sale)
    response.line_items = [
        LineItemResponse(
            id=line.id,
            product_id=line.product_id,
            product_name=line.product.name if line.product else None,
            sku=line.product.sku if line.product else None,
            quantity=line.quantity,
            unit_price=line.unit_price,
            line_discount_amount=line.line_discount_amount,
            line_discount_type=line.line_discount_type,
            line_total=line_total(line),
        )
        for line in lines
    ]
    response.payments = [PaymentResponse.model_validate(p) for p in payments]
    response.payment_total = sum((to_money(p.amount) for p in payments), ZERO)
    return response


async def _get_sale_or_404(db: AsyncSession, sale_id: UUID) -> Sale:
    result = await db.execute(
        select(Sale)
        .where(Sale.id == sale_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    sale = result.scalar_one_or_none()
    if not sale:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sale not found")
    return sale


def _require_open(sale: Sale) -> None:
    if sale.status not in OPEN_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only draft or held sales can be modified",
        )


async def create_sale(db: AsyncSession, current_user: User) -> SaleResponse:
    sale = Sale(
        status=SaleStatus.DRAFT,
        subtotal=ZERO,
        discount_amount=ZERO,
        total=ZERO,
        created_by_id=current_user.id,
    )
    db.add(sale)
    await db.commit()
    return await sale_response(db, sale)


async def get_sale(db: AsyncSession, sale_id: UUID) -> SaleResponse:
    sale = await db.get(Sale, sale_id)
    if not sale:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sale not found")
    return await sale_response(db, sale)


async def list_sales(
    db: AsyncSession,
    sale_status: SaleStatus | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[SaleResponse]:
    stmt = select(Sale)
    if sale_status:
        stmt = stmt.where(Sale.status == sale_status)
    result = await db.execute(
        stmt.order_by(Sale.created_at.desc()).offset(skip).limit(limit)
    )
    return [await sale_response(db, sale) for sale in result.scalars().all()]


async def update_sale(db: AsyncSession, sale_id: UUID, data: SaleUpdate) -> SaleResponse:
    """Hold, retrieve, or set the sale-level discount."""
    sale = await _get_sale_or_404(db, sale_id)

    if data.action == SaleAction.HOLD:
        if sale.status != SaleStatus.DRAFT:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Only draft sales can be held",
            )
        sale.status = SaleStatus.HELD
    elif data.action == SaleAction.RETRIEVE:
        if sale.status != SaleStatus.HELD:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Only held sales can be retrieved",
            )
        sale.status = SaleStatus.DRAFT

    if data.discount_amount is not None:
        _require_open(sale)
        sale.discount_amount = to_money(data.discount_amount)
        sale.discount_type = data.discount_type

    await recompute_sale_totals(db, sale)
    await db.commit()
    return await sale_response(db, sale)


async def delete_sale(db: AsyncSession, sale_id: UUID) -> None:
    sale = await _get_sale_or_404(db, sale_id)
    if sale.status not in OPEN_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only draft or held sales can be deleted",
        )
    for line in await _lines(db, sale.id):
        await db.delete(line)
    for payment in await _payments(db, sale.id):
        await db.delete(payment)
    await db.delete(sale)
    await db.commit()


async def add_line_item(
    db: AsyncSession, sale_id: UUID, data: LineItemCreate
) -> SaleResponse:
    sale = await _get_sale_or_404(db, sale_id)
    _require_open(sale)

    product = await db.get(Product, data.product_id)
    if not product:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Product not found"
        )
    if product.archived:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Product is archived"
        )
    unit_price = data.unit_price if data.unit_price is not None else product.list_price
    if unit_price is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Product has no list price; provide unit_price",
        )

    db.add(
        SaleLineItem(
            sale_id=sale.id,
            product_id=product.id,
            quantity=data.quantity,
            unit_price=to_money(unit_price),
            line_discount_amount=to_money(data.line_discount_amount),
            line_discount_type=data.line_discount_type,
        )
    )
    await db.flush()
    await recompute_sale_totals(db, sale)
    await db.commit()
    return await sale_response(db, sale)


async def _get_line_or_404(db: AsyncSession, sale: Sale, line_id: int) -> SaleLineItem:
    line = await db.get(SaleLineItem, line_id)
    if not line or line.sale_id != sale.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Line item not found"
        )
    return line


async def update_line_item(
    db: AsyncSession, sale_id: UUID, line_id: int, data: LineItemUpdate
) -> SaleResponse:
    sale = await _get_sale_or_404(db, sale_id)
    _require_open(sale)
    line = await _get_line_or_404(db, sale, line_id)

    for key, value in data.model_dump(exclude_unset=True).items():
        if key in ("unit_price", "line_discount_amount") and value is not None:
            value = to_money(value)
        setattr(line, key, value)
    await db.flush()
    await recompute_sale_totals(db, sale)
    await db.commit()
    return await sale_response(db, sale)


async def delete_line_item(db: AsyncSession, sale_id: UUID, line_id: int) -> SaleResponse:
    sale = await _get_sale_or_404(db, sale_id)
    _require_open(sale)
    line = await _get_line_or_404(db, sale, line_id)
    await db.delete(line)
    await db.flush()
    await recompute_sale_totals(db, sale)
    await db.commit()
    return await sale_response(db, sale)


async def add_payment(db: AsyncSession, sale_id: UUID, data: PaymentCreate) -> SaleResponse:
    sale = await _get_sale_or_404(db, sale_id)
    if sale.status not in OPEN_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Payments can only be added to draft or held sales",
        )
    db.add(
        Payment(
            sale_id=sale.id,
            method=data.method,
            amount=to_money(data.amount),
            reference=(data.reference or "").strip() or None,
        )
    )
    await db.commit()
    return await sale_response(db, sale)


async def complete_sale(
    db: AsyncSession, sale_id: UUID, data: CompleteSale, current_user: User
) -> SaleResponse:
    """
    Close a sale: verify payment and stock, issue the stock-out movements and
    optionally queue a delivery, all in one transaction.

    Raises:
        HTTPException: 400 when the sale is not open, has no lines, is
            under-paid, or stock cannot cover a line.
    """
    sale = await _get_sale_or_404(db, sale_id)
    if sale.status not in OPEN_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Sale is already completed or voided",
        )

    lines = await _lines(db, sale.id)
    if not lines:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Sale has no line items"
        )

    await recompute_sale_totals(db, sale)
    paid = await db.execute(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.sale_id == sale.id)
    )
    payment_total = to_money(paid.scalar_one())
    if payment_total < sale.total:
        logfire.info(
            "sale {sale_id} under-paid: {paid} of {total}",
            sale_id=str(sale.id),
            paid=str(payment_total),
            total=str(sale.total),
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Insufficient payment"
        )

    needed: dict[UUID, int] = {}
    for line in lines:
        needed[line.product_id] = needed.get(line.product_id, 0) + line.quantity
    stock = await db.execute(
        select(StockLevel.product_id, StockLevel.quantity).where(
            StockLevel.product_id.in_(needed)
        )
    )
    available = dict(stock.all())
    short = [pid for pid, qty in needed.items() if available.get(pid, 0) < qty]
    if short:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Insufficient stock"
        )

    for line in lines:
        await apply_stock_movement(
            db,
            product_id=line.product_id,
            movement_type=MovementType.OUT,
            quantity=line.quantity,
            reference=f"sale:{sale.id}",
            created_by_id=current_user.id,
        )

    if data.for_delivery:
        delivery = await create_delivery(
            db,
            DeliveryCreate(
                order_reference=f"SALE-{str(sale.id)[:8].upper()}",
                customer_name=data.customer_name,
                customer_address=data.customer_address,
                customer_phone=data.customer_phone,
                customer_email=data.customer_email,
                notes=data.delivery_notes,
            ),
            current_user,
            commit=False,
        )
        sale.delivery_id = delivery.id

    sale.status = SaleStatus.COMPLETED
    sale.completed_at = utcnow()
    await db.commit()
    logfire.info(
        "sale {sale_id} completed for {total}", sale_id=str(sale.id), total=str(sale.total)
    )
    return await sale_response(db, sale)


async def void_sale(db: AsyncSession, sale_id: UUID, current_user: User) -> SaleResponse:
    sale = await _get_sale_or_404(db, sale_id)
    if sale.status != SaleStatus.COMPLETED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only completed sales can be voided",
        )

    for line in await _lines(db, sale.id):
        await apply_stock_movement(
            db,
            product_id=line.product_id,
            movement_type=MovementType.IN,
            quantity=line.quantity,
            reference=f"void:{sale.id}",
            created_by_id=current_user.id,
        )
    sale.status = SaleStatus.VOIDED
    sale.updated_at = utcnow()
    await db.commit()
    logfire.info("sale {sale_id} voided", sale_id=str(sale.id))
    return await sale_response(db, sale)
