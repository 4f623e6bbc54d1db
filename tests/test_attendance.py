from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import AttendanceDay, Employee, PayPeriod
from app.schemas.user_schema import RoleName
from app.services.attendance_service import is_late_submission, submission_deadline


@pytest_asyncio.fixture
async def open_period(test_db: AsyncSession) -> PayPeriod:
    today = date.today()
    period = PayPeriod(
        start_date=today - timedelta(days=10),
        end_date=today + timedelta(days=10),
        pay_date=today + timedelta(days=30),
    )
    test_db.add(period)
    await test_db.commit()
    return period


@pytest_asyncio.fixture
async def hr_headers(make_user, headers_for) -> dict:
    return headers_for(await make_user("hr@example.com", RoleName.PAYROLL_MANAGER))


def days_payload(start: date, count: int = 3) -> list[dict]:
    return [
        {"date": (start + timedelta(days=i)).isoformat(), "present": 1, "hours_worked": "8"}
        for i in range(count)
    ]


def test_submission_deadline_is_three_days_before_pay_date():
    assert submission_deadline(date(2024, 7, 5)) == date(2024, 7, 2)


def test_late_cutoff_is_end_of_deadline_day_in_local_time():
    pay_date = date(2024, 7, 5)
    # 2024-07-02 23:30 in Manila
    assert not is_late_submission(datetime(2024, 7, 2, 15, 30, tzinfo=timezone.utc), pay_date)
    # 2024-07-03 00:30 in Manila
    assert is_late_submission(datetime(2024, 7, 2, 16, 30, tzinfo=timezone.utc), pay_date)


@pytest.mark.asyncio
async def test_hr_submits_attendance(
    client: httpx.AsyncClient, hr_headers, open_period, employee
):
    response = await client.post(
        "/api/attendance",
        json={
            "pay_period_id": str(open_period.id),
            "employee_id": str(employee.id),
            "days": days_payload(open_period.start_date),
        },
        headers=hr_headers,
    )
    assert response.status_code == status.HTTP_201_CREATED
    body = response.json()
    assert body["status"] == "on_time"
    assert body["employee_name"] == "Juan Dela Cruz"
    assert body["deadline"] == (open_period.pay_date - timedelta(days=3)).isoformat()
    assert [Decimal(d["hours_worked"]) for d in body["days"]] == [Decimal("8")] * 3

    response = await client.post(
        "/api/attendance",
        json={
            "pay_period_id": str(open_period.id),
            "employee_id": str(employee.id),
            "days": days_payload(open_period.start_date, 1),
        },
        headers=hr_headers,
    )
    assert response.status_code == status.HTTP_409_CONFLICT


@pytest.mark.asyncio
async def test_submission_after_deadline_is_late(
    client: httpx.AsyncClient, hr_headers, pay_period, employee
):
    response = await client.post(
        "/api/attendance",
        json={
            "pay_period_id": str(pay_period.id),
            "employee_id": str(employee.id),
            "days": days_payload(pay_period.start_date),
        },
        headers=hr_headers,
    )
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["status"] == "late"


@pytest.mark.asyncio
async def test_admin_does_not_submit_attendance(
    client: httpx.AsyncClient, admin_headers, open_period, employee
):
    response = await client.post(
        "/api/attendance",
        json={
            "pay_period_id": str(open_period.id),
            "employee_id": str(employee.id),
            "days": days_payload(open_period.start_date),
        },
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.asyncio
async def test_dates_are_validated(
    client: httpx.AsyncClient, hr_headers, open_period, employee
):
    payload = {"pay_period_id": str(open_period.id), "employee_id": str(employee.id)}

    outside = days_payload(open_period.end_date, 2)
    response = await client.post(
        "/api/attendance", json={**payload, "days": outside}, headers=hr_headers
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Attendance dates must fall within the pay period"

    repeated = days_payload(open_period.start_date, 1) * 2
    response = await client.post(
        "/api/attendance", json={**payload, "days": repeated}, headers=hr_headers
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST

    for hours in ("eight", "24.01", "1000"):
        bad_hours = [
            {"date": open_period.start_date.isoformat(), "present": 1, "hours_worked": hours}
        ]
        response = await client.post(
            "/api/attendance", json={**payload, "days": bad_hours}, headers=hr_headers
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Validation failed"


@pytest.mark.asyncio
async def test_employee_submits_for_self_only(
    client: httpx.AsyncClient,
    test_db: AsyncSession,
    make_user,
    headers_for,
    open_period,
    employee,
):
    user = await make_user("rosa@example.com", RoleName.VIEWER, name="Rosa Lim")
    headers = headers_for(user)

    response = await client.post(
        "/api/attendance",
        json={
            "pay_period_id": str(open_period.id),
            "employee_id": str(employee.id),
            "days": days_payload(open_period.start_date),
        },
        headers=headers,
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN

    # Unknown employee id: an employee record is created for the caller
    response = await client.post(
        "/api/attendance",
        json={
            "pay_period_id": str(open_period.id),
            "employee_id": "00000000-0000-0000-0000-000000000000",
            "days": days_payload(open_period.start_date),
        },
        headers=headers,
    )
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["employee_name"] == "Rosa Lim"

    result = await test_db.execute(
        select(Employee.rate).where(Employee.email == "rosa@example.com")
    )
    assert result.scalar_one() == Decimal("1000.00")

    response = await client.get("/api/attendance", headers=headers)
    assert [a["employee_name"] for a in response.json()] == ["Rosa Lim"]

    response = await client.get("/api/attendance/available-periods", headers=headers)
    assert str(open_period.id) not in [p["id"] for p in response.json()]


@pytest.mark.asyncio
async def test_clock_in_and_out(
    client: httpx.AsyncClient, test_db: AsyncSession, make_user, headers_for, employee
):
    user = await make_user("juan@example.com", RoleName.VIEWER)
    headers = headers_for(user)

    response = await client.get("/api/personal-attendance", headers=headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["clocked_in"] is False

    response = await client.post(
        "/api/personal-attendance", json={"action": "clock_out"}, headers=headers
    )
    assert response.status_code == status.HTTP_404_NOT_FOUND

    response = await client.post(
        "/api/personal-attendance", json={"action": "clock_in"}, headers=headers
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["clocked_in"] is True
    assert response.json()["clocked_out"] is False

    response = await client.post(
        "/api/personal-attendance", json={"action": "clock_in"}, headers=headers
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST

    response = await client.post(
        "/api/personal-attendance",
        json={"action": "clock_out", "notes": "Left early"},
        headers=headers,
    )
    assert response.status_code == status.HTTP_200_OK
    record = response.json()["today_record"]
    assert response.json()["clocked_out"] is True
    assert record["notes"] == "Left early"
    assert Decimal(record["hours_worked"]) >= 0

    response = await client.post(
        "/api/personal-attendance", json={"action": "clock_out"}, headers=headers
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST

    count = await test_db.execute(select(func.count(AttendanceDay.id)))
    assert count.scalar_one() == 1


@pytest.mark.asyncio
async def test_clock_requires_employee_record(
    client: httpx.AsyncClient, make_user, headers_for
):
    user = await make_user("nobody@example.com", RoleName.VIEWER)
    response = await client.post(
        "/api/personal-attendance", json={"action": "clock_in"}, headers=headers_for(user)
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN
