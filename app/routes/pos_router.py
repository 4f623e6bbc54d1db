from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.auth import require_permission
from app.auth.permissions import Permission
from app.database.database import get_db
from app.models.models import User
from app.schemas.pos_schema import (
    CompleteSale,
    LineItemCreate,
    LineItemUpdate,
    PaymentCreate,
    SaleResponse,
    SaleStatus,
    SaleUpdate,
)
from app.services import pos_service

router = APIRouter(prefix="/api/pos/sales", tags=["POS"])


@router.get("", status_code=status.HTTP_200_OK)
async def list_sales(
    sale_status: SaleStatus | None = Query(default=None, alias="status"),
    skip: int = 0,
    limit: int = 50,
    current_user: User = Depends(require_permission(Permission.POS_READ)),
    db: AsyncSession = Depends(get_db),
) -> list[SaleResponse]:
    return await pos_service.list_sales(db=db, sale_status=sale_status, skip=skip, limit=limit)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_sale(
    current_user: User = Depends(require_permission(Permission.POS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> SaleResponse:
    """Open an empty draft sale."""
    return await pos_service.create_sale(db=db, current_user=current_user)


@router.get("/{sale_id}", status_code=status.HTTP_200_OK)
async def get_sale(
    sale_id: UUID,
    current_user: User = Depends(require_permission(Permission.POS_READ)),
    db: AsyncSession = Depends(get_db),
) -> SaleResponse:
    return await pos_service.get_sale(db=db, sale_id=sale_id)


@router.patch("/{sale_id}", status_code=status.HTTP_200_OK)
async def update_sale(
    sale_id: UUID,
    data: SaleUpdate,
    current_user: User = Depends(require_permission(Permission.POS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> SaleResponse:
    """
    Hold or retrieve a sale, or set its sale-level discount.

    `hold` moves a draft to held, `retrieve` moves a held sale back to draft.
    """
    return await pos_service.update_sale(db=db, sale_id=sale_id, data=data)


@router.delete("/{sale_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sale(
    sale_id: UUID,
    current_user: User = Depends(require_permission(Permission.POS_WRITE)),
    db: AsyncSession = Depends(get_db),
):
    await pos_service.delete_sale(db=db, sale_id=sale_id)


@router.post("/{sale_id}/line-items", status_code=status.HTTP_201_CREATED)
async def add_line_item(
    sale_id: UUID,
    data: LineItemCreate,
    current_user: User = Depends(require_permission(Permission.POS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> SaleResponse:
    return await pos_service.add_line_item(db=db, sale_id=sale_id, data=data)


@router.patch("/{sale_id}/line-items/{line_id}", status_code=status.HTTP_200_OK)
async def update_line_item(
    sale_id: UUID,
    line_id: int,
    data: LineItemUpdate,
    current_user: User = Depends(require_permission(Permission.POS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> SaleResponse:
    return await pos_service.update_line_item(
        db=db, sale_id=sale_id, line_id=line_id, data=data
    )


@router.delete("/{sale_id}/line-items/{line_id}", status_code=status.HTTP_200_OK)
async def delete_line_item(
    sale_id: UUID,
    line_id: int,
    current_user: User = Depends(require_permission(Permission.POS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> SaleResponse:
    return await pos_service.delete_line_item(db=db, sale_id=sale_id, line_id=line_id)


@router.post("/{sale_id}/payments", status_code=status.HTTP_201_CREATED)
async def add_payment(
    sale_id: UUID,
    data: PaymentCreate,
    current_user: User = Depends(require_permission(Permission.POS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> SaleResponse:
    return await pos_service.add_payment(db=db, sale_id=sale_id, data=data)


@router.post("/{sale_id}/complete", status_code=status.HTTP_200_OK)
async def complete_sale(
    sale_id: UUID,
    data: CompleteSale,
    current_user: User = Depends(require_permission(Permission.POS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> SaleResponse:
    """
    Complete a draft or held sale.

    Requires at least one line item, payments covering the total and enough
    stock for every line. Stock is decremented and, with `for_delivery`, a
    delivery is created in the same transaction.
    """
    return await pos_service.complete_sale(
        db=db, sale_id=sale_id, data=data, current_user=current_user
    )


@router.post("/{sale_id}/void", status_code=status.HTTP_200_OK)
async def void_sale(
    sale_id: UUID,
    current_user: User = Depends(require_permission(Permission.POS_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> SaleResponse:
    return await pos_service.void_sale(db=db, sale_id=sale_id, current_user=current_user)
