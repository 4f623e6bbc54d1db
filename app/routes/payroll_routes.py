import io
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.auth import get_current_user, require_permission
from app.auth.permissions import Permission
from app.database.database import get_db
from app.models.models import User
from app.schemas.payroll_schema import (
    EmployeeCreate,
    EmployeeResponse,
    EmployeeUpdate,
    PayPeriodCreate,
    PayPeriodResponse,
    PayPeriodUpdate,
    PayrollRunCreate,
    PayrollRunResponse,
    PayrollRunStatus,
    PayslipResponse,
    PayslipSummary,
    PayslipUpdate,
)
from app.services.payroll_service import PayrollService
from app.utils.exporters import payslip_pdf

router = APIRouter(tags=["Payroll"], prefix="/api/payroll")


# Employees


@router.get("/employees", response_model=list[EmployeeResponse])
async def list_employees(
    search: str | None = None,
    active: bool | None = None,
    sort_by: str = "name",
    sort_order: str = "asc",
    skip: int = 0,
    limit: int = 50,
    current_user: User = Depends(require_permission(Permission.PAYROLL_READ)),
    db: AsyncSession = Depends(get_db),
) -> Any:
    payroll_service = PayrollService(db)
    return await payroll_service.list_employees(
        search=search,
        active=active,
        sort_by=sort_by,
        sort_order=sort_order,
        skip=skip,
        limit=limit,
    )


@router.post("/employees", response_model=EmployeeResponse, status_code=201)
async def create_employee(
    employee: EmployeeCreate,
    current_user: User = Depends(require_permission(Permission.PAYROLL_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Create a new employee.
    """
    payroll_service = PayrollService(db)
    return await payroll_service.create_employee(employee)


@router.get("/employees/{employee_id}", response_model=EmployeeResponse)
async def get_employee(
    employee_id: UUID,
    current_user: User = Depends(require_permission(Permission.PAYROLL_READ)),
    db: AsyncSession = Depends(get_db),
) -> Any:
    payroll_service = PayrollService(db)
    return await payroll_service.get_employee(employee_id)


@router.patch("/employees/{employee_id}", response_model=EmployeeResponse)
async def update_employee(
    employee_id: UUID,
    employee: EmployeeUpdate,
    current_user: User = Depends(require_permission(Permission.PAYROLL_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> Any:
    payroll_service = PayrollService(db)
    return await payroll_service.update_employee(employee_id, employee)


@router.delete("/employees/{employee_id}", status_code=204)
async def delete_employee(
    employee_id: UUID,
    current_user: User = Depends(require_permission(Permission.PAYROLL_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> None:
    """
    Delete an employee. Employees with payslips can only be deactivated.
    """
    payroll_service = PayrollService(db)
    await payroll_service.delete_employee(employee_id)


# Pay periods


@router.get("/pay-periods", response_model=list[PayPeriodResponse])
async def list_pay_periods(
    skip: int = 0,
    limit: int = 50,
    current_user: User = Depends(require_permission(Permission.PAYROLL_READ)),
    db: AsyncSession = Depends(get_db),
) -> Any:
    payroll_service = PayrollService(db)
    return await payroll_service.list_pay_periods(skip=skip, limit=limit)


@router.post("/pay-periods", response_model=PayPeriodResponse, status_code=201)
async def create_pay_period(
    pay_period: PayPeriodCreate,
    current_user: User = Depends(require_permission(Permission.PAYROLL_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> Any:
    payroll_service = PayrollService(db)
    return await payroll_service.create_pay_period(pay_period)


@router.get("/pay-periods/{pay_period_id}", response_model=PayPeriodResponse)
async def get_pay_period(
    pay_period_id: UUID,
    current_user: User = Depends(require_permission(Permission.PAYROLL_READ)),
    db: AsyncSession = Depends(get_db),
) -> Any:
    payroll_service = PayrollService(db)
    return await payroll_service.get_pay_period(pay_period_id)


@router.patch("/pay-periods/{pay_period_id}", response_model=PayPeriodResponse)
async def update_pay_period(
    pay_period_id: UUID,
    pay_period: PayPeriodUpdate,
    current_user: User = Depends(require_permission(Permission.PAYROLL_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> Any:
    payroll_service = PayrollService(db)
    return await payroll_service.update_pay_period(pay_period_id, pay_period)


@router.delete("/pay-periods/{pay_period_id}", status_code=204)
async def delete_pay_period(
    pay_period_id: UUID,
    current_user: User = Depends(require_permission(Permission.PAYROLL_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> None:
    payroll_service = PayrollService(db)
    await payroll_service.delete_pay_period(pay_period_id)


# Payroll runs


@router.post("/payroll-runs", response_model=PayrollRunResponse, status_code=201)
async def create_payroll_run(
    data: PayrollRunCreate,
    current_user: User = Depends(require_permission(Permission.PAYROLL_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Create a draft payroll run for a pay period.

    One payslip is created per employee with attendance in the period, with
    the regular earning and statutory deductions derived from that attendance.
    Only one run may exist per pay period.
    """
    payroll_service = PayrollService(db)
    return await payroll_service.create_payroll_run(data.pay_period_id, current_user)


@router.get("/payroll-runs", response_model=list[PayrollRunResponse])
async def list_payroll_runs(
    run_status: PayrollRunStatus | None = Query(default=None, alias="status"),
    skip: int = 0,
    limit: int = 50,
    current_user: User = Depends(require_permission(Permission.PAYROLL_READ)),
    db: AsyncSession = Depends(get_db),
) -> Any:
    payroll_service = PayrollService(db)
    return await payroll_service.list_payroll_runs(
        run_status=run_status, skip=skip, limit=limit
    )


@router.get("/payroll-runs/{run_id}", response_model=PayrollRunResponse)
async def get_payroll_run(
    run_id: UUID,
    current_user: User = Depends(require_permission(Permission.PAYROLL_READ)),
    db: AsyncSession = Depends(get_db),
) -> Any:
    payroll_service = PayrollService(db)
    return await payroll_service.get_payroll_run(run_id)


@router.post("/payroll-runs/{run_id}/finalize", response_model=PayrollRunResponse)
async def finalize_payroll_run(
    run_id: UUID,
    current_user: User = Depends(require_permission(Permission.PAYROLL_RUN)),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Finalize a payroll run. All of its payslips become final and read-only.
    """
    payroll_service = PayrollService(db)
    return await payroll_service.finalize_payroll_run(run_id)


# Payslips


@router.get("/payslips", response_model=list[PayslipSummary])
async def list_payslips(
    payroll_run_id: UUID | None = None,
    employee_id: UUID | None = None,
    sort_by: str = "employee",
    sort_order: str = "asc",
    skip: int = 0,
    limit: int = 50,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    List payslips. Users without payroll access only see their own.
    """
    payroll_service = PayrollService(db)
    return await payroll_service.list_payslips(
        current_user=current_user,
        payroll_run_id=payroll_run_id,
        employee_id=employee_id,
        sort_by=sort_by,
        sort_order=sort_order,
        skip=skip,
        limit=limit,
    )


@router.get("/payslips/{payslip_id}", response_model=PayslipResponse)
async def get_payslip(
    payslip_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    payroll_service = PayrollService(db)
    return await payroll_service.get_payslip(payslip_id, current_user)


@router.patch("/payslips/{payslip_id}", response_model=PayslipResponse)
async def update_payslip(
    payslip_id: UUID,
    payslip: PayslipUpdate,
    current_user: User = Depends(require_permission(Permission.PAYROLL_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Replace a draft payslip's earnings and/or deductions.

    Totals are recomputed from the new line items before responding.
    """
    payroll_service = PayrollService(db)
    return await payroll_service.update_payslip(payslip_id, payslip)


@router.get("/payslips/{payslip_id}/pdf", status_code=status.HTTP_200_OK)
async def download_payslip(
    payslip_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    payroll_service = PayrollService(db)
    payslip = await payroll_service.get_payslip(payslip_id, current_user)
    return StreamingResponse(
        io.BytesIO(payslip_pdf(payslip)),
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename=payslip-{payslip_id}.pdf"},
    )
