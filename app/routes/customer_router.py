from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.auth import require_permission
from app.auth.permissions import Permission
from app.database.database import get_db
from app.models.models import User
from app.schemas.customer_schema import CustomerCreate, CustomerResponse, CustomerUpdate
from app.services import customer_service

router = APIRouter(prefix="/api/customers", tags=["Customers"])


@router.get("", status_code=status.HTTP_200_OK)
async def list_customers(
    search: str | None = None,
    sort_by: Literal["name", "created_at"] = "name",
    sort_order: Literal["asc", "desc"] = "asc",
    skip: int = 0,
    limit: int = 50,
    current_user: User = Depends(require_permission(Permission.CUSTOMERS_READ)),
    db: AsyncSession = Depends(get_db),
) -> list[CustomerResponse]:
    return await customer_service.list_customers(
        db=db,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        skip=skip,
        limit=limit,
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_customer(
    data: CustomerCreate,
    current_user: User = Depends(require_permission(Permission.CUSTOMERS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> CustomerResponse:
    return await customer_service.create_customer(
        db=db, data=data, current_user=current_user
    )


@router.get("/{customer_id}", status_code=status.HTTP_200_OK)
async def get_customer(
    customer_id: UUID,
    current_user: User = Depends(require_permission(Permission.CUSTOMERS_READ)),
    db: AsyncSession = Depends(get_db),
) -> CustomerResponse:
    return await customer_service.get_customer(db=db, customer_id=customer_id)


@router.patch("/{customer_id}", status_code=status.HTTP_200_OK)
async def update_customer(
    customer_id: UUID,
    data: CustomerUpdate,
    current_user: User = Depends(require_permission(Permission.CUSTOMERS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> CustomerResponse:
    return await customer_service.update_customer(
        db=db, customer_id=customer_id, data=data
    )


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_customer(
    customer_id: UUID,
    current_user: User = Depends(require_permission(Permission.CUSTOMERS_WRITE)),
    db: AsyncSession = Depends(get_db),
):
    await customer_service.delete_customer(db=db, customer_id=customer_id)
