from types import MappingProxyType
from uuid import UUID

import logfire
from fastapi import HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.permissions import Permission, can, has_role
from app.models.models import Delivery, DeliveryStatusUpdate, Role, User, utcnow
from app.schemas.delivery_schema import (
    DeliveryCreate,
    DeliveryResponse,
    DeliveryStaffResponse,
    DeliveryStatus,
    DeliveryStatusChange,
    DeliveryStatusUpdateResponse,
    DeliveryUpdate,
)
from app.schemas.notification_schema import NotificationType
from app.schemas.user_schema import RoleName
from app.services.notification_service import add_notification
from app.utils.utils import generate_tracking_number

# Terminal states share -1
STATUS_ORDER = MappingProxyType(
    {
        DeliveryStatus.CREATED: 0,
        DeliveryStatus.PICKED: 1,
        DeliveryStatus.IN_TRANSIT: 2,
        DeliveryStatus.OUT_FOR_DELIVERY: 3,
        DeliveryStatus.DELIVERED: 4,
        DeliveryStatus.FAILED: -1,
        DeliveryStatus.RETURNED: -1,
    }
)
TERMINAL_STATUSES = frozenset(
    {DeliveryStatus.DELIVERED, DeliveryStatus.FAILED, DeliveryStatus.RETURNED}
)
TRACKING_NUMBER_ATTEMPTS = 5
STAFF_QUEUE_LIMIT = 5


def get_next_status(current: DeliveryStatus) -> DeliveryStatus | None:
    """The single status a delivery may move to next, or None when finished."""
    current = DeliveryStatus(current)
    if current in TERMINAL_STATUSES:
        return None
    wanted = STATUS_ORDER[current] + 1
    for candidate, order in STATUS_ORDER.items():
        if order == wanted:
            return candidate
    return None


def validate_transition(current: DeliveryStatus, requested: DeliveryStatus) -> None:
    expected = get_next_status(current)
    if expected is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot update status. Delivery is already completed or terminated.",
        )
    if DeliveryStatus(requested) != expected:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                "Invalid status progression. Expected next status: "
                f"{expected.value}, but received: {DeliveryStatus(requested).value}"
            ),
        )


def is_staff_only(user: User) -> bool:
    """Delivery staff without write access only ever see their own queue."""
    return has_role(user, RoleName.DELIVERY_STAFF) and not can(
        user, Permission.DELIVERIES_WRITE
    )


def delivery_response(
    delivery: Delivery, history: list[DeliveryStatusUpdate] | None = None
) -> DeliveryResponse:
    response = DeliveryResponse.model_validate(delivery)
    response.next_status = get_next_status(delivery.status)
    response.status_history = [
        DeliveryStatusUpdateResponse.model_validate(h) for h in history or []
    ]
    return response


async def unique_tracking_number(db: AsyncSession, prefix: str = "DEL") -> str:
    for _ in range(TRACKING_NUMBER_ATTEMPTS):
        candidate = generate_tracking_number(prefix)
        taken = await db.execute(
            select(Delivery.id).where(Delivery.tracking_number == candidate)
        )
        if not taken.first():
            return candidate
    logfire.error("tracking number generation exhausted {attempts} attempts",
                  attempts=TRACKING_NUMBER_ATTEMPTS)
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Could not generate a unique tracking number",
    )


async def _check_assignee(db: AsyncSession, user_id: UUID | None) -> User | None:
    if user_id is None:
        return None
    assignee = await db.get(User, user_id)
    if not assignee or assignee.disabled:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Assigned user not found"
        )
    if not has_role(assignee, RoleName.DELIVERY_STAFF):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Assigned user is not delivery staff",
        )
    return assignee


def _notify_assignment(db: AsyncSession, delivery: Delivery) -> None:
    add_notification(
        db,
        delivery.assigned_to_user_id,
        NotificationType.DELIVERY_STATUS,
        title=f"New delivery assigned: {delivery.tracking_number}",
        message=f"Deliver to {delivery.customer_name}, {delivery.customer_address}.",
        link=f"/deliveries/{delivery.id}",
    )


async def create_delivery(
    db: AsyncSession, data: DeliveryCreate, current_user: User, commit: bool = True
) -> Delivery:
    """
    Create a delivery in ``created`` status with its first status-update row.

    With ``commit=False`` the rows are only flushed so the caller can finish
    its own transaction (POS sale completion).
    """
    if data.tracking_number:
        taken = await db.execute(
            select(Delivery.id).where(Delivery.tracking_number == data.tracking_number)
        )
        if taken.first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Tracking number already exists",
            )
        tracking_number = data.tracking_number
    else:
        tracking_number = await unique_tracking_number(db)

    await _check_assignee(db, data.assigned_to_user_id)

    delivery = Delivery(
        **data.model_dump(exclude={"tracking_number"}),
        tracking_number=tracking_number,
        status=DeliveryStatus.CREATED,
        created_by_id=current_user.id,
    )
    db.add(delivery)
    await db.flush()
    db.add(
        DeliveryStatusUpdate(
            delivery_id=delivery.id,
            status=DeliveryStatus.CREATED,
            note="Delivery created",
            updated_by_id=current_user.id,
        )
    )
    if delivery.assigned_to_user_id:
        _notify_assignment(db, delivery)

    if commit:
        await db.commit()
    logfire.info("delivery {tracking} created", tracking=tracking_number)
    return delivery


async def _get_delivery_or_404(
    db: AsyncSession, delivery_id: UUID, for_update: bool = False
) -> Delivery:
    stmt = select(Delivery).where(Delivery.id == delivery_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    delivery = (await db.execute(stmt)).scalar_one_or_none()
    if not delivery:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Delivery not found"
        )
    return delivery


def _check_visibility(delivery: Delivery, current_user: User) -> None:
    if is_staff_only(current_user) and delivery.assigned_to_user_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Delivery is not assigned to you",
        )


async def _history(db: AsyncSession, delivery_id: UUID) -> list[DeliveryStatusUpdate]:
    result = await db.execute(
        select(DeliveryStatusUpdate)
        .where(DeliveryStatusUpdate.delivery_id == delivery_id)
        .order_by(DeliveryStatusUpdate.created_at, DeliveryStatusUpdate.id)
    )
    return result.scalars().all()


async def get_delivery(
    db: AsyncSession, delivery_id: UUID, current_user: User
) -> DeliveryResponse:
    delivery = await _get_delivery_or_404(db, delivery_id)
    _check_visibility(delivery, current_user)
    return delivery_response(delivery, await _history(db, delivery_id))


async def list_deliveries(
    db: AsyncSession,
    current_user: User,
    search: str | None = None,
    delivery_status: DeliveryStatus | None = None,
    assigned_to: UUID | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    skip: int = 0,
    limit: int = 50,
) -> list[DeliveryResponse]:
    stmt = select(Delivery)

    if is_staff_only(current_user):
        # Oldest first, only what is still on the road
        stmt = (
            stmt.where(
                Delivery.assigned_to_user_id == current_user.id,
                Delivery.status.not_in(TERMINAL_STATUSES),
            )
            .order_by(Delivery.created_at.asc())
            .limit(STAFF_QUEUE_LIMIT)
        )
        result = await db.execute(stmt)
        return [delivery_response(d) for d in result.scalars().all()]

    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                Delivery.tracking_number.ilike(pattern),
                Delivery.order_reference.ilike(pattern),
                Delivery.customer_name.ilike(pattern),
            )
        )
    if delivery_status:
        stmt = stmt.where(Delivery.status == delivery_status)
    if assigned_to:
        stmt = stmt.where(Delivery.assigned_to_user_id == assigned_to)

    column = {
        "created_at": Delivery.created_at,
        "status": Delivery.status,
        "customer_name": Delivery.customer_name,
        "tracking_number": Delivery.tracking_number,
    }.get(sort_by, Delivery.created_at)
    stmt = stmt.order_by(column.asc() if sort_order == "asc" else column.desc())
    result = await db.execute(stmt.offset(skip).limit(limit))
    return [delivery_response(d) for d in result.scalars().all()]


async def update_delivery_status(
    db: AsyncSession, delivery_id: UUID, data: DeliveryStatusChange, current_user: User
) -> DeliveryResponse:
    """
    Advance a delivery to its next status and record who did it.

    Raises:
        HTTPException: 404 when the delivery does not exist, 400 for a terminal
            delivery or any status other than the expected next one.
    """
    delivery = await _get_delivery_or_404(db, delivery_id, for_update=True)
    _check_visibility(delivery, current_user)
    previous = delivery.status
    validate_transition(previous, data.status)

    delivery.status = data.status
    delivery.updated_at = utcnow()
    db.add(
        DeliveryStatusUpdate(
            delivery_id=delivery.id,
            status=data.status,
            note=data.note,
            location=data.location,
            updated_by_id=current_user.id,
        )
    )

    for recipient in {delivery.assigned_to_user_id, delivery.created_by_id}:
        if recipient and recipient != current_user.id:
            add_notification(
                db,
                recipient,
                NotificationType.DELIVERY_STATUS,
                title=f"Delivery {delivery.tracking_number} is {data.status.value}",
                message=f"Status changed from {previous.value} to {data.status.value}.",
                link=f"/deliveries/{delivery.id}",
            )

    await db.commit()
    logfire.info(
        "delivery {tracking} {previous} -> {current}",
        tracking=delivery.tracking_number,
        previous=previous.value,
        current=data.status.value,
    )
    return delivery_response(delivery, await _history(db, delivery.id))


async def update_delivery(
    db: AsyncSession, delivery_id: UUID, data: DeliveryUpdate
) -> DeliveryResponse:
    delivery = await _get_delivery_or_404(db, delivery_id, for_update=True)
    changes = data.model_dump(exclude_unset=True)

    reassigned = (
        "assigned_to_user_id" in changes
        and changes["assigned_to_user_id"] != delivery.assigned_to_user_id
    )
    if reassigned:
        await _check_assignee(db, changes["assigned_to_user_id"])

    for key, value in changes.items():
        setattr(delivery, key, value)
    delivery.updated_at = utcnow()
    if reassigned and delivery.assigned_to_user_id:
        _notify_assignment(db, delivery)

    await db.commit()
    return delivery_response(delivery, await _history(db, delivery.id))


async def delete_delivery(db: AsyncSession, delivery_id: UUID) -> None:
    delivery = await _get_delivery_or_404(db, delivery_id)
    await db.delete(delivery)
    await db.commit()


async def list_delivery_staff(db: AsyncSession) -> list[DeliveryStaffResponse]:
    result = await db.execute(
        select(User)
        .join(User.roles)
        .where(Role.name == RoleName.DELIVERY_STAFF, User.disabled.is_(False))
        .order_by(User.name)
    )
    return [
        DeliveryStaffResponse(id=u.id, name=u.name, email=u.email)
        for u in result.scalars().unique().all()
    ]
