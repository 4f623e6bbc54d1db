from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

import logfire
from fastapi import HTTPException, status
from sqlalchemy import delete, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.auth.permissions import Permission, can
from app.config.config import settings
from app.models.models import (
    Attendance,
    AttendanceDay,
    Deduction,
    Earning,
    Employee,
    PayPeriod,
    PayrollRun,
    Payslip,
    User,
    utcnow,
)
from app.schemas.payroll_schema import (
    DeductionResponse,
    DeductionType,
    EarningResponse,
    EarningType,
    EmployeeCreate,
    EmployeeUpdate,
    PayPeriodCreate,
    PayPeriodUpdate,
    PayrollRunResponse,
    PayrollRunStatus,
    PayslipResponse,
    PayslipStatus,
    PayslipSummary,
    PayslipUpdate,
)
from app.services.payroll_calculations import (
    calculate_statutory_deductions,
    sum_amounts,
    total_hours,
)
from app.utils.utils import CENT, ZERO, to_money

DEDUCTION_DESCRIPTIONS = {
    DeductionType.SSS: "SSS Contribution (4.5%)",
    DeductionType.PHILHEALTH: "PhilHealth Contribution (4%)",
    DeductionType.PAGIBIG: "Pag-IBIG Contribution",
    DeductionType.TAX: "Income Tax (BIR)",
}


@dataclass
class PayslipTotals:
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal


class PayrollService:
    def __init__(self, db: AsyncSession):
        self.db = db

    # Employees

    async def get_employee(self, employee_id: UUID) -> Employee:
        employee = await self.db.get(Employee, employee_id)
        if not employee:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found"
            )
        return employee

    async def list_employees(
        self,
        search: str | None = None,
        active: bool | None = None,
        sort_by: str = "name",
        sort_order: str = "asc",
        skip: int = 0,
        limit: int = 50,
    ) -> list[Employee]:
        stmt = select(Employee)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(Employee.name.ilike(pattern), Employee.email.ilike(pattern))
            )
        if active is not None:
            stmt = stmt.where(Employee.active.is_(active))
        column = {
            "name": Employee.name,
            "rate": Employee.rate,
            "department": Employee.department,
            "created_at": Employee.created_at,
        }.get(sort_by, Employee.name)
        stmt = stmt.order_by(column.desc() if sort_order == "desc" else column.asc())
        result = await self.db.execute(stmt.offset(skip).limit(limit))
        return result.scalars().all()

    async def create_employee(self, data: EmployeeCreate) -> Employee:
        employee = Employee(**data.model_dump())
        employee.rate = to_money(employee.rate)
        self.db.add(employee)
        await self.db.commit()
        return employee

    async def update_employee(self, employee_id: UUID, data: EmployeeUpdate) -> Employee:
        employee = await self.get_employee(employee_id)
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(employee, key, value)
        employee.updated_at = utcnow()
        await self.db.commit()
        return employee

    async def delete_employee(self, employee_id: UUID) -> None:
        employee = await self.get_employee(employee_id)
        has_payslips = await self.db.execute(
            select(Payslip.id).where(Payslip.employee_id == employee_id).limit(1)
        )
        if has_payslips.first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Employee has payslips; deactivate instead",
            )
        await self.db.delete(employee)
        await self.db.commit()

    # Pay periods

    async def get_pay_period(self, pay_period_id: UUID) -> PayPeriod:
        pay_period = await self.db.get(PayPeriod, pay_period_id)
        if not pay_period:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Pay period not found"
            )
        return pay_period

    async def list_pay_periods(self, skip: int = 0, limit: int = 50) -> list[PayPeriod]:
        result = await self.db.execute(
            select(PayPeriod)
            .order_by(PayPeriod.start_date.desc())
            .offset(skip)
            .limit(limit)
        )
        return result.scalars().all()

    async def create_pay_period(self, data: PayPeriodCreate) -> PayPeriod:
        pay_period = PayPeriod(**data.model_dump())
        self.db.add(pay_period)
        await self.db.commit()
        return pay_period

    async def update_pay_period(
        self, pay_period_id: UUID, data: PayPeriodUpdate
    ) -> PayPeriod:
        pay_period = await self.get_pay_period(pay_period_id)
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(pay_period, key, value)
        if pay_period.start_date > pay_period.end_date:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="start_date must be on or before end_date",
            )
        await self.db.commit()
        return pay_period

    async def delete_pay_period(self, pay_period_id: UUID) -> None:
        pay_period = await self.get_pay_period(pay_period_id)
        if await self._run_for_period(pay_period_id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Pay period already has a payroll run",
            )
        await self.db.delete(pay_period)
        await self.db.commit()

    # Payslip derivation

    async def _earnings(self, payslip_id: UUID) -> list[Earning]:
        result = await self.db.execute(
            select(Earning).where(Earning.payslip_id == payslip_id).order_by(Earning.id)
        )
        return result.scalars().all()

    async def _deductions(self, payslip_id: UUID) -> list[Deduction]:
        result = await self.db.execute(
            select(Deduction)
            .where(Deduction.payslip_id == payslip_id)
            .order_by(Deduction.id)
        )
        return result.scalars().all()

    async def ensure_derived(self, payslip: Payslip) -> bool:
        """
        Fill in the regular earning and statutory deductions of a draft payslip
        from its employee's attendance.

        Does nothing once any earning exists, so repeated calls are safe.
        Deductions are only added when the payslip has none.

        Returns:
            True when rows were added
        """
        if payslip.status == PayslipStatus.FINAL:
            return False

        has_earnings = await self.db.execute(
            select(exists().where(Earning.payslip_id == payslip.id))
        )
        if has_earnings.scalar():
            return False

        employee = await self.db.get(Employee, payslip.employee_id)
        rate = to_money(employee.rate) if employee else ZERO
        if rate <= 0:
            return False

        run = await self.db.get(PayrollRun, payslip.payroll_run_id)
        pay_period = await self.db.get(PayPeriod, run.pay_period_id)
        result = await self.db.execute(
            select(Attendance)
            .options(selectinload(Attendance.days))
            .where(
                Attendance.employee_id == payslip.employee_id,
                Attendance.pay_period_id == run.pay_period_id,
            )
        )
        attendance = result.scalars().first()
        if attendance is None:
            return False

        hours = total_hours(attendance.days)
        if hours <= 0:
            return False

        gross = to_money(rate * hours)
        self.db.add(
            Earning(
                payslip_id=payslip.id,
                type=EarningType.REGULAR,
                amount=gross,
                description=(
                    f"{hours:.2f} hours × {settings.CURRENCY_SYMBOL}{rate:.2f}/hour"
                ),
            )
        )

        has_deductions = await self.db.execute(
            select(exists().where(Deduction.payslip_id == payslip.id))
        )
        if not has_deductions.scalar():
            statutory = calculate_statutory_deductions(gross, pay_period.type)
            for deduction_type, amount in (
                (DeductionType.SSS, statutory.sss),
                (DeductionType.PHILHEALTH, statutory.philhealth),
                (DeductionType.PAGIBIG, statutory.pagibig),
                (DeductionType.TAX, statutory.income_tax),
            ):
                if amount > 0:
                    self.db.add(
                        Deduction(
                            payslip_id=payslip.id,
                            type=deduction_type,
                            amount=amount,
                            description=DEDUCTION_DESCRIPTIONS[deduction_type],
                        )
                    )
        await self.db.flush()
        logfire.info(
            "derived payslip {payslip_id}: {hours} h, gross {gross}",
            payslip_id=str(payslip.id),
            hours=str(hours),
            gross=str(gross),
        )
        return True

    async def reconcile_totals(
        self, payslip: Payslip, tolerance: Decimal = CENT
    ) -> PayslipTotals:
        """
        Recompute gross, deductions and net from the line items.

        A draft payslip whose stored totals drift by more than ``tolerance`` is
        overwritten. Final payslips are never written; the computed totals are
        still returned.
        """
        gross = sum_amounts(await self._earnings(payslip.id))
        deductions = sum_amounts(await self._deductions(payslip.id))
        totals = PayslipTotals(
            gross_pay=gross, total_deductions=deductions, net_pay=gross - deductions
        )

        drifted = {
            field: (to_money(getattr(payslip, field)), getattr(totals, field))
            for field in ("gross_pay", "total_deductions", "net_pay")
            if abs(to_money(getattr(payslip, field)) - getattr(totals, field)) > tolerance
        }
        if not drifted:
            return totals

        if payslip.status == PayslipStatus.FINAL:
            logfire.warn(
                "final payslip {payslip_id} differs from its line items: {drift}",
                payslip_id=str(payslip.id),
                drift=", ".join(
                    f"{field} stored {stored} computed {computed}"
                    for field, (stored, computed) in drifted.items()
                ),
            )
            return totals

        payslip.gross_pay = totals.gross_pay
        payslip.total_deductions = totals.total_deductions
        payslip.net_pay = totals.net_pay
        payslip.updated_at = utcnow()
        await self.db.flush()
        return totals

    # Payroll runs

    async def _run_for_period(self, pay_period_id: UUID) -> PayrollRun | None:
        result = await self.db.execute(
            select(PayrollRun).where(PayrollRun.pay_period_id == pay_period_id)
        )
        return result.scalars().first()

    async def _adopt_orphaned_attendance(self, pay_period: PayPeriod) -> int:
        """Attach unassigned attendance with any day inside the period's range."""
        in_range = exists().where(
            AttendanceDay.attendance_id == Attendance.id,
            AttendanceDay.date >= pay_period.start_date,
            AttendanceDay.date <= pay_period.end_date,
        )
        result = await self.db.execute(
            select(Attendance)
            .options(selectinload(Attendance.days))
            .where(Attendance.pay_period_id.is_(None), in_range)
        )
        adopted = 0
        for orphan in result.scalars().all():
            existing = await self.db.execute(
                select(Attendance)
                .options(selectinload(Attendance.days))
                .where(
                    Attendance.employee_id == orphan.employee_id,
                    Attendance.pay_period_id == pay_period.id,
                )
            )
            target = existing.scalars().first()
            if target is None:
                orphan.pay_period_id = pay_period.id
            else:
                # Merge into the row already submitted for this period
                known = {day.date for day in target.days}
                for day in list(orphan.days):
                    orphan.days.remove(day)
                    if day.date not in known:
                        target.days.append(day)
                await self.db.delete(orphan)
            adopted += 1
        await self.db.flush()
        return adopted

    async def create_payroll_run(
        self, pay_period_id: UUID, current_user: User
    ) -> PayrollRunResponse:
        """
        Create a draft payroll run with one payslip per employee with attendance
        in the pay period. Everything is written in a single transaction.
        """
        pay_period = await self.get_pay_period(pay_period_id)
        if await self._run_for_period(pay_period_id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Payroll run already exists for this pay period",
            )

        adopted = await self._adopt_orphaned_attendance(pay_period)
        if adopted:
            logfire.info("adopted {count} orphaned attendance rows", count=adopted)

        result = await self.db.execute(
            select(Attendance.employee_id)
            .where(Attendance.pay_period_id == pay_period_id)
            .distinct()
        )
        employee_ids = result.scalars().all()
        if not employee_ids:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No attendance records found for this pay period",
            )

        run = PayrollRun(
            pay_period_id=pay_period_id,
            status=PayrollRunStatus.DRAFT,
            created_by_id=current_user.id,
        )
        self.db.add(run)
        try:
            await self.db.flush()
        except IntegrityError:
            # Another request created the run after our existence check
            await self.db.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Payroll run already exists for this pay period",
            )

        for employee_id in employee_ids:
            payslip = Payslip(
                payroll_run_id=run.id,
                employee_id=employee_id,
                gross_pay=ZERO,
                total_deductions=ZERO,
                net_pay=ZERO,
                status=PayslipStatus.DRAFT,
            )
            self.db.add(payslip)
            await self.db.flush()
            await self.ensure_derived(payslip)
            await self.reconcile_totals(payslip, tolerance=ZERO)

        await self.db.commit()
        logfire.info(
            "payroll run {run_id} created for {start} to {end}",
            run_id=str(run.id),
            start=str(pay_period.start_date),
            end=str(pay_period.end_date),
        )
        return await self.get_payroll_run(run.id)

    async def _get_run_or_404(self, run_id: UUID, for_update: bool = False) -> PayrollRun:
        stmt = select(PayrollRun).where(PayrollRun.id == run_id)
        if for_update:
            stmt = stmt.with_for_update()
        run = (await self.db.execute(stmt)).scalar_one_or_none()
        if not run:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Payroll run not found"
            )
        return run

    async def _run_payslips(self, run_id: UUID) -> list[Payslip]:
        result = await self.db.execute(
            select(Payslip)
            .join(Employee)
            .where(Payslip.payroll_run_id == run_id)
            .order_by(Employee.name)
        )
        return result.scalars().all()

    async def get_payroll_run(self, run_id: UUID) -> PayrollRunResponse:
        run = await self._get_run_or_404(run_id)
        payslips = await self._run_payslips(run_id)
        response = PayrollRunResponse.model_validate(run)
        response.payslips = [payslip_summary(p) for p in payslips]
        response.payslip_count = len(payslips)
        return response

    async def list_payroll_runs(
        self, run_status: PayrollRunStatus | None = None, skip: int = 0, limit: int = 50
    ) -> list[PayrollRunResponse]:
        counts = (
            select(Payslip.payroll_run_id, func.count(Payslip.id).label("payslip_count"))
            .group_by(Payslip.payroll_run_id)
            .subquery()
        )
        stmt = select(PayrollRun, func.coalesce(counts.c.payslip_count, 0)).outerjoin(
            counts, counts.c.payroll_run_id == PayrollRun.id
        )
        if run_status:
            stmt = stmt.where(PayrollRun.status == run_status)
        result = await self.db.execute(
            stmt.order_by(PayrollRun.created_at.desc()).offset(skip).limit(limit)
        )
        runs = []
        for run, payslip_count in result.all():
            response = PayrollRunResponse.model_validate(run)
            response.payslip_count = payslip_count
            runs.append(response)
        return runs

    async def finalize_payroll_run(self, run_id: UUID) -> PayrollRunResponse:
        run = await self._get_run_or_404(run_id, for_update=True)
        if run.status == PayrollRunStatus.FINALIZED:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Payroll run is already finalized",
            )

        # Freeze totals that match the line items
        for payslip in await self._run_payslips(run_id):
            await self.ensure_derived(payslip)
            await self.reconcile_totals(payslip, tolerance=ZERO)

        run.status = PayrollRunStatus.FINALIZED
        run.updated_at = utcnow()
        await self.db.execute(
            update(Payslip)
            .where(Payslip.payroll_run_id == run_id)
            .values(status=PayslipStatus.FINAL, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        await self.db.commit()
        logfire.info("payroll run {run_id} finalized", run_id=str(run_id))
        return await self.get_payroll_run(run_id)

    # Payslips

    async def _get_payslip_or_404(self, payslip_id: UUID) -> Payslip:
        result = await self.db.execute(
            select(Payslip)
            .where(Payslip.id == payslip_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        payslip = result.scalar_one_or_none()
        if not payslip:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Payslip not found"
            )
        return payslip

    async def list_payslips(
        self,
        current_user: User,
        payroll_run_id: UUID | None = None,
        employee_id: UUID | None = None,
        sort_by: str = "employee",
        sort_order: str = "asc",
        skip: int = 0,
        limit: int = 50,
    ) -> list[PayslipSummary]:
        stmt = select(Payslip).join(Employee)
        if not can(current_user, Permission.PAYROLL_READ):
            stmt = stmt.where(
                or_(
                    Employee.user_id == current_user.id,
                    func.lower(Employee.email) == current_user.email.lower(),
                )
            )
        if payroll_run_id:
            stmt = stmt.where(Payslip.payroll_run_id == payroll_run_id)
        if employee_id:
            stmt = stmt.where(Payslip.employee_id == employee_id)
        column = {
            "employee": Employee.name,
            "gross_pay": Payslip.gross_pay,
            "net_pay": Payslip.net_pay,
            "created_at": Payslip.created_at,
        }.get(sort_by, Employee.name)
        stmt = stmt.order_by(column.desc() if sort_order == "desc" else column.asc())
        result = await self.db.execute(stmt.offset(skip).limit(limit))
        return [payslip_summary(p) for p in result.scalars().all()]

    def _check_payslip_access(self, payslip: Payslip, current_user: User) -> None:
        if can(current_user, Permission.PAYROLL_READ):
            return
        employee = payslip.employee
        own_email = (employee.email or "").lower() == current_user.email.lower()
        if employee.user_id != current_user.id and not own_email:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Not enough permissions"
            )

    async def _payslip_response(
        self, payslip: Payslip, totals: PayslipTotals
    ) -> PayslipResponse:
        run = payslip.payroll_run
        pay_period = run.pay_period if run else None
        employee = payslip.employee
        return PayslipResponse(
            id=payslip.id,
            payroll_run_id=payslip.payroll_run_id,
            employee_id=payslip.employee_id,
            employee_name=employee.name if employee else None,
            employee_email=employee.email if employee else None,
            gross_pay=totals.gross_pay,
            total_deductions=totals.total_deductions,
            net_pay=totals.net_pay,
            status=payslip.status,
            period_start=pay_period.start_date if pay_period else None,
            period_end=pay_period.end_date if pay_period else None,
            pay_date=pay_period.pay_date if pay_period else None,
            earnings=[
                EarningResponse.model_validate(e) for e in await self._earnings(payslip.id)
            ],
            deductions=[
                DeductionResponse.model_validate(d)
                for d in await self._deductions(payslip.id)
            ],
        )

    async def get_payslip(self, payslip_id: UUID, current_user: User) -> PayslipResponse:
        """
        Serialise a payslip, deriving its line items first if they were never
        computed and correcting drifted totals on drafts.
        """
        payslip = await self._get_payslip_or_404(payslip_id)
        self._check_payslip_access(payslip, current_user)

        await self.ensure_derived(payslip)
        totals = await self.reconcile_totals(payslip)
        await self.db.commit()
        return await self._payslip_response(payslip, totals)

    async def update_payslip(
        self, payslip_id: UUID, data: PayslipUpdate
    ) -> PayslipResponse:
        payslip = await self._get_payslip_or_404(payslip_id)
        if payslip.status == PayslipStatus.FINAL:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Cannot edit finalized payslip",
            )

        if data.earnings is not None:
            await self.db.execute(delete(Earning).where(Earning.payslip_id == payslip.id))
            for item in data.earnings:
                self.db.add(
                    Earning(
                        payslip_id=payslip.id,
                        type=item.type,
                        amount=to_money(item.amount),
                        description=item.description,
                    )
                )
        if data.deductions is not None:
            await self.db.execute(
                delete(Deduction).where(Deduction.payslip_id == payslip.id)
            )
            for item in data.deductions:
                self.db.add(
                    Deduction(
                        payslip_id=payslip.id,
                        type=item.type,
                        amount=to_money(item.amount),
                        description=item.description,
                    )
                )
        await self.db.flush()

        totals = await self.reconcile_totals(payslip, tolerance=ZERO)
        await self.db.commit()
        logfire.info("payslip {payslip_id} edited", payslip_id=str(payslip.id))
        return await self._payslip_response(payslip, totals)


def payslip_summary(payslip: Payslip) -> PayslipSummary:
    summary = PayslipSummary.model_validate(payslip)
    summary.employee_name = payslip.employee.name if payslip.employee else None
    return summary
