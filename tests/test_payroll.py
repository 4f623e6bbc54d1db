from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

import httpx
import logfire
import pytest
import pytest_asyncio
from fastapi import status
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import (
    Attendance,
    AttendanceDay,
    Deduction,
    Earning,
    Employee,
    PayrollRun,
    Payslip,
)
from app.schemas.attendance_schema import AttendanceStatus
from app.schemas.user_schema import RoleName
from app.services.payroll_service import PayrollService


async def add_attendance(db: AsyncSession, employee, pay_period, days=5, hours=None):
    attendance = Attendance(
        employee_id=employee.id,
        pay_period_id=pay_period.id if pay_period else None,
        submitted_at=datetime(2024, 6, 28, tzinfo=timezone.utc),
        status=AttendanceStatus.ON_TIME,
        days=[
            AttendanceDay(date=date(2024, 6, 3 + i), present=1, hours_worked=hours)
            for i in range(days)
        ],
    )
    db.add(attendance)
    await db.commit()
    return attendance


@pytest_asyncio.fixture
async def payroll_run(
    client: httpx.AsyncClient, test_db, admin_headers, pay_period, employee
) -> dict:
    await add_attendance(test_db, employee, pay_period)
    response = await client.post(
        "/api/payroll/payroll-runs",
        json={"pay_period_id": str(pay_period.id)},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()


@pytest.mark.asyncio
async def test_create_payroll_run_derives_payslip(payroll_run: dict):
    assert payroll_run["status"] == "draft"
    assert payroll_run["payslip_count"] == 1

    payslip = payroll_run["payslips"][0]
    assert payslip["employee_name"] == "Juan Dela Cruz"
    assert Decimal(payslip["gross_pay"]) == Decimal("6000.00")
    assert Decimal(payslip["total_deductions"]) == Decimal("510.00")
    assert Decimal(payslip["net_pay"]) == Decimal("5490.00")


@pytest.mark.asyncio
async def test_payslip_details(client: httpx.AsyncClient, admin_headers, payroll_run):
    payslip_id = payroll_run["payslips"][0]["id"]
    response = await client.get(f"/api/payroll/payslips/{payslip_id}", headers=admin_headers)
    assert response.status_code == status.HTTP_200_OK
    body = response.json()

    assert len(body["earnings"]) == 1
    earning = body["earnings"][0]
    assert earning["type"] == "regular"
    assert earning["description"] == "40.00 hours × ₱150.00/hour"

    deductions = {d["type"]: Decimal(d["amount"]) for d in body["deductions"]}
    assert deductions == {"sss": Decimal("270.00"), "philhealth": Decimal("240.00")}
    assert body["period_start"] == "2024-06-01"


@pytest.mark.asyncio
async def test_duplicate_run_for_pay_period_conflicts(
    client: httpx.AsyncClient, admin_headers, pay_period, payroll_run
):
    response = await client.post(
        "/api/payroll/payroll-runs",
        json={"pay_period_id": str(pay_period.id)},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_409_CONFLICT


@pytest.mark.asyncio
async def test_concurrent_run_creation_conflicts(
    client: httpx.AsyncClient,
    test_db: AsyncSession,
    admin_headers,
    pay_period,
    payroll_run,
    monkeypatch,
):
    async def no_existing_run(self, pay_period_id):
        return None

    # Simulates a second request that passed the existence check first
    monkeypatch.setattr(PayrollService, "_run_for_period", no_existing_run)
    response = await client.post(
        "/api/payroll/payroll-runs",
        json={"pay_period_id": str(pay_period.id)},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["detail"] == "Payroll run already exists for this pay period"

    result = await test_db.execute(
        select(func.count(PayrollRun.id)).where(PayrollRun.pay_period_id == pay_period.id)
    )
    assert result.scalar_one() == 1


@pytest.mark.asyncio
async def test_zero_rate_employee_still_gets_payslip(
    client: httpx.AsyncClient, test_db: AsyncSession, admin_headers, pay_period, employee
):
    unpaid = Employee(name="Zero Rate", email="zero@example.com", rate=Decimal("0.00"))
    test_db.add(unpaid)
    await test_db.commit()
    await add_attendance(test_db, employee, pay_period)
    await add_attendance(test_db, unpaid, pay_period)

    response = await client.post(
        "/api/payroll/payroll-runs",
        json={"pay_period_id": str(pay_period.id)},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_201_CREATED
    payslips = {p["employee_name"]: p for p in response.json()["payslips"]}
    assert set(payslips) == {"Juan Dela Cruz", "Zero Rate"}
    assert Decimal(payslips["Zero Rate"]["gross_pay"]) == Decimal("0.00")
    assert Decimal(payslips["Zero Rate"]["net_pay"]) == Decimal("0.00")
    assert Decimal(payslips["Juan Dela Cruz"]["net_pay"]) == Decimal("5490.00")

    response = await client.get(
        f"/api/payroll/payslips/{payslips['Zero Rate']['id']}", headers=admin_headers
    )
    assert response.json()["earnings"] == []
    assert response.json()["deductions"] == []


async def corrupt_totals(db: AsyncSession, payslip_id: UUID) -> None:
    await db.execute(
        update(Payslip)
        .where(Payslip.id == payslip_id)
        .values(gross_pay=Decimal("1.00"), net_pay=Decimal("1.00"))
    )
    await db.commit()


async def stored_totals(db: AsyncSession, payslip_id: UUID) -> tuple[Decimal, Decimal]:
    result = await db.execute(
        select(Payslip.gross_pay, Payslip.net_pay).where(Payslip.id == payslip_id)
    )
    gross, net = result.one()
    return Decimal(gross), Decimal(net)


@pytest.mark.asyncio
async def test_drifted_draft_totals_are_rewritten_on_read(
    client: httpx.AsyncClient, test_db: AsyncSession, admin_headers, payroll_run
):
    payslip_id = UUID(payroll_run["payslips"][0]["id"])
    await corrupt_totals(test_db, payslip_id)

    response = await client.get(f"/api/payroll/payslips/{payslip_id}", headers=admin_headers)
    assert Decimal(response.json()["gross_pay"]) == Decimal("6000.00")
    assert Decimal(response.json()["net_pay"]) == Decimal("5490.00")
    assert await stored_totals(test_db, payslip_id) == (
        Decimal("6000.00"),
        Decimal("5490.00"),
    )


@pytest.mark.asyncio
async def test_final_payslip_totals_are_display_only(
    client: httpx.AsyncClient, test_db: AsyncSession, admin_headers, payroll_run, monkeypatch
):
    warnings = []
    monkeypatch.setattr(
        logfire, "warn", lambda message, **attrs: warnings.append(attrs)
    )
    payslip_id = UUID(payroll_run["payslips"][0]["id"])
    response = await client.post(
        f"/api/payroll/payroll-runs/{payroll_run['id']}/finalize", headers=admin_headers
    )
    assert response.status_code == status.HTTP_200_OK
    await corrupt_totals(test_db, payslip_id)

    response = await client.get(f"/api/payroll/payslips/{payslip_id}", headers=admin_headers)
    assert response.json()["status"] == "final"
    assert Decimal(response.json()["gross_pay"]) == Decimal("6000.00")
    assert Decimal(response.json()["net_pay"]) == Decimal("5490.00")
    assert await stored_totals(test_db, payslip_id) == (Decimal("1.00"), Decimal("1.00"))

    drift = warnings[-1]["drift"]
    assert "gross_pay stored 1.00 computed 6000.00" in drift
    assert "net_pay stored 1.00 computed 5490.00" in drift
    assert "total_deductions" not in drift


@pytest.mark.asyncio
async def test_run_without_attendance_is_rejected(
    client: httpx.AsyncClient, admin_headers, pay_period
):
    response = await client.post(
        "/api/payroll/payroll-runs",
        json={"pay_period_id": str(pay_period.id)},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "No attendance records found for this pay period"


@pytest.mark.asyncio
async def test_run_for_missing_pay_period(client: httpx.AsyncClient, admin_headers):
    response = await client.post(
        "/api/payroll/payroll-runs",
        json={"pay_period_id": "00000000-0000-0000-0000-000000000000"},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.asyncio
async def test_orphaned_attendance_is_adopted(
    client: httpx.AsyncClient, test_db, admin_headers, pay_period, employee
):
    await add_attendance(test_db, employee, None, days=2)
    response = await client.post(
        "/api/payroll/payroll-runs",
        json={"pay_period_id": str(pay_period.id)},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_201_CREATED
    assert Decimal(response.json()["payslips"][0]["gross_pay"]) == Decimal("2400.00")


@pytest.mark.asyncio
async def test_repeated_reads_do_not_duplicate_earnings(
    client: httpx.AsyncClient, test_db, admin_headers, payroll_run
):
    payslip_id = payroll_run["payslips"][0]["id"]
    for _ in range(3):
        response = await client.get(
            f"/api/payroll/payslips/{payslip_id}", headers=admin_headers
        )
        assert len(response.json()["earnings"]) == 1

    count = await test_db.execute(select(func.count(Earning.id)))
    assert count.scalar_one() == 1


@pytest.mark.asyncio
async def test_ensure_derived_is_idempotent(
    client: httpx.AsyncClient, session_factory, admin_headers, payroll_run
):
    payslip_id = UUID(payroll_run["payslips"][0]["id"])
    async with session_factory() as db:
        await db.execute(delete(Earning).where(Earning.payslip_id == payslip_id))
        await db.execute(delete(Deduction).where(Deduction.payslip_id == payslip_id))
        payslip = await db.get(Payslip, payslip_id)

        service = PayrollService(db)
        assert await service.ensure_derived(payslip) is True
        assert await service.ensure_derived(payslip) is False
        await db.commit()

        earnings = await db.execute(
            select(func.count(Earning.id)).where(Earning.payslip_id == payslip.id)
        )
        assert earnings.scalar_one() == 1


@pytest.mark.asyncio
async def test_edit_payslip_reconciles_totals(
    client: httpx.AsyncClient, admin_headers, payroll_run
):
    payslip_id = payroll_run["payslips"][0]["id"]
    response = await client.patch(
        f"/api/payroll/payslips/{payslip_id}",
        json={
            "earnings": [
                {"type": "regular", "amount": "6000.00"},
                {"type": "bonus", "amount": "500.00", "description": "Holiday bonus"},
            ]
        },
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert Decimal(body["gross_pay"]) == Decimal("6500.00")
    assert Decimal(body["total_deductions"]) == Decimal("510.00")
    assert Decimal(body["net_pay"]) == Decimal("5990.00")
    assert len(body["earnings"]) == 2

    response = await client.patch(
        f"/api/payroll/payslips/{payslip_id}",
        json={"deductions": [{"type": "loan", "amount": "1000.00"}]},
        headers=admin_headers,
    )
    body = response.json()
    assert Decimal(body["total_deductions"]) == Decimal("1000.00")
    assert Decimal(body["net_pay"]) == Decimal(body["gross_pay"]) - Decimal("1000.00")


@pytest.mark.asyncio
async def test_finalize_run_locks_payslips(
    client: httpx.AsyncClient, admin_headers, payroll_run
):
    run_id = payroll_run["id"]
    payslip_id = payroll_run["payslips"][0]["id"]

    response = await client.post(
        f"/api/payroll/payroll-runs/{run_id}/finalize", headers=admin_headers
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "finalized"
    assert response.json()["payslips"][0]["status"] == "final"

    response = await client.post(
        f"/api/payroll/payroll-runs/{run_id}/finalize", headers=admin_headers
    )
    assert response.status_code == status.HTTP_409_CONFLICT

    response = await client.patch(
        f"/api/payroll/payslips/{payslip_id}",
        json={"earnings": []},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["detail"] == "Cannot edit finalized payslip"

    response = await client.get(f"/api/payroll/payslips/{payslip_id}", headers=admin_headers)
    assert Decimal(response.json()["net_pay"]) == Decimal("5490.00")


@pytest.mark.asyncio
async def test_employee_can_read_own_payslip_only(
    client: httpx.AsyncClient, make_user, headers_for, payroll_run
):
    payslip_id = payroll_run["payslips"][0]["id"]
    owner = await make_user("juan@example.com", RoleName.VIEWER)
    stranger = await make_user("other@example.com", RoleName.VIEWER)

    response = await client.get(
        f"/api/payroll/payslips/{payslip_id}", headers=headers_for(owner)
    )
    assert response.status_code == status.HTTP_200_OK

    response = await client.get(
        f"/api/payroll/payslips/{payslip_id}", headers=headers_for(stranger)
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN

    response = await client.get("/api/payroll/payslips", headers=headers_for(stranger))
    assert response.json() == []


@pytest.mark.asyncio
async def test_payslip_pdf(client: httpx.AsyncClient, admin_headers, payroll_run):
    payslip_id = payroll_run["payslips"][0]["id"]
    response = await client.get(
        f"/api/payroll/payslips/{payslip_id}/pdf", headers=admin_headers
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")


@pytest.mark.asyncio
async def test_employee_crud(client: httpx.AsyncClient, admin_headers):
    response = await client.post(
        "/api/payroll/employees",
        json={"name": "Maria Santos", "email": "maria@example.com", "rate": "175.50"},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_201_CREATED
    employee_id = response.json()["id"]
    assert Decimal(response.json()["rate"]) == Decimal("175.50")

    response = await client.patch(
        f"/api/payroll/employees/{employee_id}",
        json={"active": False},
        headers=admin_headers,
    )
    assert response.json()["active"] is False

    response = await client.get(
        "/api/payroll/employees", params={"active": True}, headers=admin_headers
    )
    assert employee_id not in [e["id"] for e in response.json()]

    response = await client.delete(
        f"/api/payroll/employees/{employee_id}", headers=admin_headers
    )
    assert response.status_code == status.HTTP_204_NO_CONTENT


@pytest.mark.asyncio
async def test_pay_period_range_is_validated(client: httpx.AsyncClient, admin_headers):
    response = await client.post(
        "/api/payroll/pay-periods",
        json={"start_date": "2024-07-15", "end_date": "2024-07-01", "pay_date": "2024-07-20"},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Validation failed"
