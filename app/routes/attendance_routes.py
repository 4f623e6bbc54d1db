from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.auth import get_current_user, require_permission
from app.auth.permissions import Permission
from app.database.database import get_db
from app.models.models import User
from app.schemas.attendance_schema import (
    AttendanceCreate,
    AttendanceResponse,
    AttendanceStatus,
    PersonalAttendanceAction,
    PersonalAttendanceStatus,
)
from app.schemas.payroll_schema import PayPeriodResponse
from app.services import attendance_service

router = APIRouter(prefix="/api/attendance", tags=["Attendance"])
personal_router = APIRouter(prefix="/api/personal-attendance", tags=["Attendance"])


@router.post("", response_model=AttendanceResponse, status_code=status.HTTP_201_CREATED)
async def submit_attendance(
    data: AttendanceCreate,
    current_user: User = Depends(require_permission(Permission.ATTENDANCE_WRITE)),
    db: AsyncSession = Depends(get_db),
):
    """
    Submit one pay period's attendance for an employee.

    One submission per employee and pay period. Submissions after the
    deadline (three days before pay date) are marked `late`.
    """
    return await attendance_service.submit_attendance(
        db=db, data=data, current_user=current_user
    )


@router.get("", response_model=list[AttendanceResponse])
async def list_attendance(
    pay_period_id: UUID | None = None,
    employee_id: UUID | None = None,
    attendance_status: AttendanceStatus | None = Query(default=None, alias="status"),
    sort_by: Literal["submitted_at", "status"] = "submitted_at",
    sort_order: Literal["asc", "desc"] = "desc",
    skip: int = 0,
    limit: int = 50,
    current_user: User = Depends(require_permission(Permission.ATTENDANCE_READ)),
    db: AsyncSession = Depends(get_db),
):
    return await attendance_service.list_attendance(
        db=db,
        current_user=current_user,
        pay_period_id=pay_period_id,
        employee_id=employee_id,
        attendance_status=attendance_status,
        sort_by=sort_by,
        sort_order=sort_order,
        skip=skip,
        limit=limit,
    )


@router.get("/available-periods", response_model=list[PayPeriodResponse])
async def available_periods(
    current_user: User = Depends(require_permission(Permission.ATTENDANCE_READ)),
    db: AsyncSession = Depends(get_db),
):
    return await attendance_service.get_available_periods(db=db, current_user=current_user)


@router.get("/{attendance_id}", response_model=AttendanceResponse)
async def get_attendance(
    attendance_id: UUID,
    current_user: User = Depends(require_permission(Permission.ATTENDANCE_READ)),
    db: AsyncSession = Depends(get_db),
):
    return await attendance_service.get_attendance(
        db=db, attendance_id=attendance_id, current_user=current_user
    )


@personal_router.get("", response_model=PersonalAttendanceStatus)
async def personal_status(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await attendance_service.get_personal_status(db=db, current_user=current_user)


@personal_router.post("", response_model=PersonalAttendanceStatus)
async def clock(
    action: PersonalAttendanceAction,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Clock in or out for today."""
    return await attendance_service.record_personal_attendance(
        db=db, action=action, current_user=current_user
    )
