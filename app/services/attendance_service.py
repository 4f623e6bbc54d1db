from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID
from zoneinfo import ZoneInfo

import logfire
from fastapi import HTTPException, status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.auth.permissions import has_role
from app.config.config import settings
from app.models.models import Attendance, AttendanceDay, Employee, PayPeriod, User, utcnow
from app.schemas.attendance_schema import (
    AttendanceCreate,
    AttendanceDayResponse,
    AttendanceResponse,
    AttendanceStatus,
    ClockAction,
    PersonalAttendanceAction,
    PersonalAttendanceStatus,
)
from app.schemas.payroll_schema import PayPeriodResponse
from app.schemas.user_schema import RoleName
from app.utils.utils import as_utc, local_today

SUBMISSION_LEAD_DAYS = 3
SELF_SERVICE_RATE = Decimal("1000.00")


def submission_deadline(pay_date: date) -> date:
    return pay_date - timedelta(days=SUBMISSION_LEAD_DAYS)


def is_late_submission(submitted_at: datetime, pay_date: date) -> bool:
    """Late once the local clock passes 23:59:59 on the deadline day."""
    local = as_utc(submitted_at).astimezone(ZoneInfo(settings.TIMEZONE))
    return local.date() > submission_deadline(pay_date)


def sees_all_attendance(user: User) -> bool:
    return has_role(user, RoleName.ADMIN, RoleName.PAYROLL_MANAGER)


def attendance_response(attendance: Attendance) -> AttendanceResponse:
    period = attendance.pay_period
    return AttendanceResponse(
        id=attendance.id,
        employee_id=attendance.employee_id,
        employee_name=attendance.employee.name if attendance.employee else None,
        employee_email=attendance.employee.email if attendance.employee else None,
        pay_period_id=attendance.pay_period_id,
        period_start=period.start_date if period else None,
        period_end=period.end_date if period else None,
        deadline=submission_deadline(period.pay_date) if period else None,
        submitted_at=attendance.submitted_at,
        status=attendance.status,
        days=[AttendanceDayResponse.model_validate(d) for d in attendance.days],
    )


async def get_employee_for_user(db: AsyncSession, user: User) -> Employee | None:
    result = await db.execute(select(Employee).where(Employee.user_id == user.id))
    employee = result.scalars().first()
    if employee:
        return employee

    result = await db.execute(
        select(Employee).where(func.lower(Employee.email) == user.email.lower())
    )
    employee = result.scalars().first()
    if employee and employee.user_id is None:
        employee.user_id = user.id
    return employee


async def get_or_create_self_employee(db: AsyncSession, user: User) -> Employee:
    employee = await get_employee_for_user(db, user)
    if employee:
        return employee

    employee = Employee(
        user_id=user.id,
        name=user.name,
        email=user.email,
        department=user.department.name if user.department else "General",
        rate=SELF_SERVICE_RATE,
        active=True,
    )
    db.add(employee)
    await db.flush()
    logfire.info("employee record created for {email}", email=user.email)
    return employee


async def _load_attendance(db: AsyncSession, attendance_id: UUID) -> Attendance | None:
    result = await db.execute(
        select(Attendance)
        .options(selectinload(Attendance.days))
        .where(Attendance.id == attendance_id)
    )
    return result.scalar_one_or_none()


async def submit_attendance(
    db: AsyncSession, data: AttendanceCreate, current_user: User
) -> AttendanceResponse:
    """
    Record one employee's attendance for a pay period.

    Args:
        db: Database session
        data: Pay period, employee and the list of days
        current_user: Submitting user

    Returns:
        The stored attendance with its days
    """
    if has_role(current_user, RoleName.ADMIN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrators do not need to submit attendance",
        )

    pay_period = await db.get(PayPeriod, data.pay_period_id)
    if not pay_period:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Pay period not found"
        )

    is_hr = has_role(current_user, RoleName.PAYROLL_MANAGER)
    employee = await db.get(Employee, data.employee_id)
    if employee is None:
        if is_hr:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found"
            )
        employee = await get_or_create_self_employee(db, current_user)

    if not is_hr:
        own_email = (employee.email or "").lower() == current_user.email.lower()
        if employee.user_id != current_user.id and not own_email:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You can only submit attendance for yourself",
            )

    dates = [day.date for day in data.days]
    if len(set(dates)) != len(dates):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Each date may only appear once",
        )
    if any(d < pay_period.start_date or d > pay_period.end_date for d in dates):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Attendance dates must fall within the pay period",
        )

    existing = await db.execute(
        select(Attendance.id).where(
            Attendance.employee_id == employee.id,
            Attendance.pay_period_id == pay_period.id,
        )
    )
    if existing.first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Attendance already submitted for this pay period",
        )

    submitted_at = utcnow()
    attendance = Attendance(
        employee_id=employee.id,
        pay_period_id=pay_period.id,
        submitted_at=submitted_at,
        submitted_by_id=current_user.id,
        status=(
            AttendanceStatus.LATE
            if is_late_submission(submitted_at, pay_period.pay_date)
            else AttendanceStatus.ON_TIME
        ),
        days=[
            AttendanceDay(
                date=day.date,
                present=day.present,
                hours_worked=Decimal(day.hours_worked) if day.hours_worked else None,
                notes=day.notes,
            )
            for day in data.days
        ],
    )
    try:
        db.add(attendance)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logfire.error("attendance submission failed: {error}", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not save attendance",
        )

    logfire.info(
        "attendance submitted for {employee} ({status})",
        employee=employee.name,
        status=attendance.status.value,
    )
    return attendance_response(await _load_attendance(db, attendance.id))


async def list_attendance(
    db: AsyncSession,
    current_user: User,
    pay_period_id: UUID | None = None,
    employee_id: UUID | None = None,
    attendance_status: AttendanceStatus | None = None,
    sort_by: str = "submitted_at",
    sort_order: str = "desc",
    skip: int = 0,
    limit: int = 50,
) -> list[AttendanceResponse]:
    stmt = select(Attendance).join(Employee).options(selectinload(Attendance.days))

    if not sees_all_attendance(current_user):
        stmt = stmt.where(
            or_(
                Employee.user_id == current_user.id,
                func.lower(Employee.email) == current_user.email.lower(),
            )
        )
    if pay_period_id:
        stmt = stmt.where(Attendance.pay_period_id == pay_period_id)
    if employee_id:
        stmt = stmt.where(Attendance.employee_id == employee_id)
    if attendance_status:
        stmt = stmt.where(Attendance.status == attendance_status)

    column = Attendance.status if sort_by == "status" else Attendance.submitted_at
    stmt = stmt.order_by(column.asc() if sort_order == "asc" else column.desc())

    result = await db.execute(stmt.offset(skip).limit(limit))
    return [attendance_response(a) for a in result.scalars().all()]


async def get_attendance(
    db: AsyncSession, attendance_id: UUID, current_user: User
) -> AttendanceResponse:
    attendance = await _load_attendance(db, attendance_id)
    if not attendance:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Attendance not found"
        )
    if not sees_all_attendance(current_user):
        employee = attendance.employee
        own_email = (employee.email or "").lower() == current_user.email.lower()
        if employee.user_id != current_user.id and not own_email:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Not enough permissions"
            )
    return attendance_response(attendance)


async def get_available_periods(
    db: AsyncSession, current_user: User
) -> list[PayPeriodResponse]:
    """Pay periods the caller has not yet submitted attendance for."""
    stmt = select(PayPeriod).order_by(PayPeriod.start_date.desc())
    employee = await get_employee_for_user(db, current_user)
    if employee:
        submitted = select(Attendance.pay_period_id).where(
            Attendance.employee_id == employee.id,
            Attendance.pay_period_id.is_not(None),
        )
        stmt = stmt.where(PayPeriod.id.not_in(submitted))
    result = await db.execute(stmt)
    return result.scalars().all()


# Personal clock in / clock out


async def _active_employee(db: AsyncSession, user: User) -> Employee:
    employee = await get_employee_for_user(db, user)
    if not employee or not employee.active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No active employee record for this user",
        )
    return employee


async def _current_pay_period(db: AsyncSession, today: date) -> PayPeriod | None:
    result = await db.execute(
        select(PayPeriod)
        .where(PayPeriod.start_date <= today, PayPeriod.end_date >= today)
        .order_by(PayPeriod.start_date.desc())
    )
    return result.scalars().first()


async def _today_record(
    db: AsyncSession, employee: Employee, today: date
) -> AttendanceDay | None:
    result = await db.execute(
        select(AttendanceDay)
        .join(Attendance)
        .where(Attendance.employee_id == employee.id, AttendanceDay.date == today)
        .order_by(AttendanceDay.id.desc())
    )
    return result.scalars().first()


async def get_personal_status(db: AsyncSession, current_user: User) -> PersonalAttendanceStatus:
    employee = await _active_employee(db, current_user)
    today = local_today()
    period = await _current_pay_period(db, today)
    record = await _today_record(db, employee, today)
    return PersonalAttendanceStatus(
        employee_id=employee.id,
        employee_name=employee.name,
        today=today,
        current_pay_period_id=period.id if period else None,
        clocked_in=bool(record and record.clock_in_time),
        clocked_out=bool(record and record.clock_out_time),
        today_record=AttendanceDayResponse.model_validate(record) if record else None,
    )


async def _clock_in(db: AsyncSession, user: User, employee: Employee, notes: str | None):
    today = local_today()
    record = await _today_record(db, employee, today)
    if record and record.clock_in_time:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Already clocked in"
        )

    now = utcnow()
    if record:
        record.present = 1
        record.clock_in_time = now
        record.notes = notes or record.notes
        return

    # Without a covering pay period the row stays orphaned until a run adopts it
    period = await _current_pay_period(db, today)
    stmt = select(Attendance).where(Attendance.employee_id == employee.id)
    if period:
        stmt = stmt.where(Attendance.pay_period_id == period.id)
    else:
        stmt = stmt.where(Attendance.pay_period_id.is_(None))
    attendance = (await db.execute(stmt)).scalars().first()
    if attendance is None:
        attendance = Attendance(
            employee_id=employee.id,
            pay_period_id=period.id if period else None,
            submitted_at=now,
            submitted_by_id=user.id,
            status=AttendanceStatus.ON_TIME,
        )
        db.add(attendance)
        await db.flush()

    db.add(
        AttendanceDay(
            attendance_id=attendance.id,
            date=today,
            present=1,
            clock_in_time=now,
            notes=notes,
        )
    )


async def _clock_out(db: AsyncSession, employee: Employee, notes: str | None):
    record = await _today_record(db, employee, local_today())
    if not record or not record.clock_in_time:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active clock in found for today",
        )
    if record.clock_out_time:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Already clocked out"
        )

    now = utcnow()
    elapsed = now - as_utc(record.clock_in_time)
    record.clock_out_time = now
    record.hours_worked = (
        Decimal(elapsed.total_seconds()) / Decimal(3600)
    ).quantize(Decimal("0.01"))
    if notes:
        record.notes = notes


async def record_personal_attendance(
    db: AsyncSession, action: PersonalAttendanceAction, current_user: User
) -> PersonalAttendanceStatus:
    employee = await _active_employee(db, current_user)
    if action.action == ClockAction.CLOCK_IN:
        await _clock_in(db, current_user, employee, action.notes)
    else:
        await _clock_out(db, employee, action.notes)
    await db.commit()
    logfire.info(
        "{employee} {action}", employee=employee.name, action=action.action.value
    )
    return await get_personal_status(db, current_user)
