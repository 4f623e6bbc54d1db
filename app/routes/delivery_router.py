from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.auth import require_permission
from app.auth.permissions import Permission
from app.database.database import get_db
from app.models.models import User
from app.schemas.delivery_schema import (
    DeliveryCreate,
    DeliveryResponse,
    DeliveryStaffResponse,
    DeliveryStatus,
    DeliveryStatusChange,
    DeliveryUpdate,
)
from app.services import delivery_service

router = APIRouter(prefix="/api/deliveries", tags=["Deliveries"])


@router.get("", status_code=status.HTTP_200_OK)
async def list_deliveries(
    search: str | None = None,
    delivery_status: DeliveryStatus | None = Query(default=None, alias="status"),
    assigned_to: UUID | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    skip: int = 0,
    limit: int = 50,
    current_user: User = Depends(require_permission(Permission.DELIVERIES_READ)),
    db: AsyncSession = Depends(get_db),
) -> list[DeliveryResponse]:
    """
    List deliveries.

    Delivery staff without other roles only get their own open deliveries,
    oldest first, at most five. Filters are ignored for them.
    """
    return await delivery_service.list_deliveries(
        db=db,
        current_user=current_user,
        search=search,
        delivery_status=delivery_status,
        assigned_to=assigned_to,
        sort_by=sort_by,
        sort_order=sort_order,
        skip=skip,
        limit=limit,
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_delivery(
    data: DeliveryCreate,
    current_user: User = Depends(require_permission(Permission.DELIVERIES_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> DeliveryResponse:
    delivery = await delivery_service.create_delivery(
        db=db, data=data, current_user=current_user
    )
    return await delivery_service.get_delivery(
        db=db, delivery_id=delivery.id, current_user=current_user
    )


@router.get("/staff", status_code=status.HTTP_200_OK)
async def list_delivery_staff(
    current_user: User = Depends(require_permission(Permission.DELIVERIES_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> list[DeliveryStaffResponse]:
    return await delivery_service.list_delivery_staff(db)


@router.get("/{delivery_id}", status_code=status.HTTP_200_OK)
async def get_delivery(
    delivery_id: UUID,
    current_user: User = Depends(require_permission(Permission.DELIVERIES_READ)),
    db: AsyncSession = Depends(get_db),
) -> DeliveryResponse:
    return await delivery_service.get_delivery(
        db=db, delivery_id=delivery_id, current_user=current_user
    )


@router.patch("/{delivery_id}", status_code=status.HTTP_200_OK)
async def update_delivery(
    delivery_id: UUID,
    data: DeliveryUpdate,
    current_user: User = Depends(require_permission(Permission.DELIVERIES_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> DeliveryResponse:
    return await delivery_service.update_delivery(db=db, delivery_id=delivery_id, data=data)


@router.post("/{delivery_id}/status", status_code=status.HTTP_200_OK)
async def update_delivery_status(
    delivery_id: UUID,
    data: DeliveryStatusChange,
    current_user: User = Depends(
        require_permission(Permission.DELIVERIES_UPDATE_STATUS)
    ),
    db: AsyncSession = Depends(get_db),
) -> DeliveryResponse:
    """
    Advance a delivery one step.

    created -> picked -> in_transit -> out_for_delivery -> delivered.
    Anything else is rejected with 400 and the delivery is left unchanged.
    """
    return await delivery_service.update_delivery_status(
        db=db, delivery_id=delivery_id, data=data, current_user=current_user
    )


@router.delete("/{delivery_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_delivery(
    delivery_id: UUID,
    current_user: User = Depends(require_permission(Permission.DELIVERIES_WRITE)),
    db: AsyncSession = Depends(get_db),
):
    await delivery_service.delete_delivery(db=db, delivery_id=delivery_id)
