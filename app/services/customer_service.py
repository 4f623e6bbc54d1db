from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import Customer, User, utcnow
from app.schemas.customer_schema import CustomerCreate, CustomerUpdate


async def create_customer(
    db: AsyncSession, data: CustomerCreate, current_user: User
) -> Customer:
    customer = Customer(**data.model_dump(), created_by_id=current_user.id)
    db.add(customer)
    await db.commit()
    return customer


async def get_customer(db: AsyncSession, customer_id: UUID) -> Customer:
    customer = await db.get(Customer, customer_id)
    if not customer:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found"
        )
    return customer


async def list_customers(
    db: AsyncSession,
    search: str | None = None,
    sort_by: str = "name",
    sort_order: str = "asc",
    skip: int = 0,
    limit: int = 50,
) -> list[Customer]:
    stmt = select(Customer)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                Customer.name.ilike(pattern),
                Customer.email.ilike(pattern),
                Customer.phone.ilike(pattern),
            )
        )
    column = Customer.created_at if sort_by == "created_at" else Customer.name
    stmt = stmt.order_by(column.desc() if sort_order == "desc" else column.asc())
    result = await db.execute(stmt.offset(skip).limit(limit))
    return result.scalars().all()


async def update_customer(
    db: AsyncSession, customer_id: UUID, data: CustomerUpdate
) -> Customer:
    customer = await get_customer(db, customer_id)
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(customer, key, value)
    customer.updated_at = utcnow()
    await db.commit()
    return customer


async def delete_customer(db: AsyncSession, customer_id: UUID) -> None:
    customer = await get_customer(db, customer_id)
    await db.delete(customer)
    await db.commit()
