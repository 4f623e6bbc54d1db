from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.auth import get_current_user, require_permission
from app.auth.permissions import Permission
from app.database.database import get_db
from app.models.models import User
from app.schemas.inventory_schema import MovementType
from app.schemas.pos_schema import SaleStatus
from app.schemas.report_schema import DeliveryTimeGroupBy, MovementGroupBy, ReportFormat
from app.services import report_service
from app.utils.exporters import export_report

router = APIRouter(prefix="/api/reports", tags=["Reports"])
dashboard_router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])

reports_reader = require_permission(Permission.REPORTS_READ)


class DateRange:
    def __init__(self, date_from: date | None = None, date_to: date | None = None):
        if date_from and date_to and date_from > date_to:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="date_from must be on or before date_to",
            )
        self.date_from = date_from
        self.date_to = date_to


# Inventory


@router.get("/inventory/stock-levels")
async def stock_levels(
    category: str | None = None,
    include_low_stock: bool = True,
    format: ReportFormat = ReportFormat.JSON,
    current_user: User = Depends(reports_reader),
    db: AsyncSession = Depends(get_db),
):
    report = await report_service.stock_levels_report(
        db, category=category, include_low_stock=include_low_stock
    )
    return export_report(report, format)


@router.get("/inventory/low-stock")
async def low_stock(
    category: str | None = None,
    format: ReportFormat = ReportFormat.JSON,
    current_user: User = Depends(reports_reader),
    db: AsyncSession = Depends(get_db),
):
    return export_report(await report_service.low_stock_report(db, category=category), format)


@router.get("/inventory/movement-summary")
async def movement_summary(
    group_by: MovementGroupBy = MovementGroupBy.DAY,
    movement_type: MovementType | None = Query(default=None, alias="type"),
    category: str | None = None,
    dates: DateRange = Depends(),
    format: ReportFormat = ReportFormat.JSON,
    current_user: User = Depends(reports_reader),
    db: AsyncSession = Depends(get_db),
):
    report = await report_service.movement_summary_report(
        db,
        date_from=dates.date_from,
        date_to=dates.date_to,
        group_by=group_by,
        movement_type=movement_type,
        category=category,
    )
    return export_report(report, format)


@router.get("/inventory/reorder-suggestions")
async def reorder_suggestions(
    category: str | None = None,
    format: ReportFormat = ReportFormat.JSON,
    current_user: User = Depends(reports_reader),
    db: AsyncSession = Depends(get_db),
):
    report = await report_service.reorder_suggestions_report(db, category=category)
    return export_report(report, format)


# Payroll


@router.get("/payroll/payslips-by-period")
async def payslips_by_period(
    pay_period_id: UUID | None = None,
    dates: DateRange = Depends(),
    format: ReportFormat = ReportFormat.JSON,
    current_user: User = Depends(reports_reader),
    db: AsyncSession = Depends(get_db),
):
    report = await report_service.payslips_by_period_report(
        db,
        pay_period_id=pay_period_id,
        date_from=dates.date_from,
        date_to=dates.date_to,
    )
    return export_report(report, format)


@router.get("/payroll/employee-summary")
async def employee_summary(
    dates: DateRange = Depends(),
    format: ReportFormat = ReportFormat.JSON,
    current_user: User = Depends(reports_reader),
    db: AsyncSession = Depends(get_db),
):
    report = await report_service.employee_summary_report(
        db, date_from=dates.date_from, date_to=dates.date_to
    )
    return export_report(report, format)


@router.get("/payroll/tax-contribution-summary")
async def tax_contribution_summary(
    dates: DateRange = Depends(),
    format: ReportFormat = ReportFormat.JSON,
    current_user: User = Depends(reports_reader),
    db: AsyncSession = Depends(get_db),
):
    report = await report_service.tax_contribution_summary_report(
        db, date_from=dates.date_from, date_to=dates.date_to
    )
    return export_report(report, format)


# Deliveries


@router.get("/deliveries/by-status")
async def deliveries_by_status(
    include_details: bool = False,
    dates: DateRange = Depends(),
    format: ReportFormat = ReportFormat.JSON,
    current_user: User = Depends(reports_reader),
    db: AsyncSession = Depends(get_db),
):
    report = await report_service.deliveries_by_status_report(
        db,
        date_from=dates.date_from,
        date_to=dates.date_to,
        include_details=include_details,
    )
    return export_report(report, format)


@router.get("/deliveries/by-date-range")
async def deliveries_by_date_range(
    dates: DateRange = Depends(),
    format: ReportFormat = ReportFormat.JSON,
    current_user: User = Depends(reports_reader),
    db: AsyncSession = Depends(get_db),
):
    report = await report_service.deliveries_by_date_range_report(
        db, date_from=dates.date_from, date_to=dates.date_to
    )
    return export_report(report, format)


@router.get("/deliveries/average-time")
async def delivery_average_time(
    group_by: DeliveryTimeGroupBy = DeliveryTimeGroupBy.DAY,
    dates: DateRange = Depends(),
    format: ReportFormat = ReportFormat.JSON,
    current_user: User = Depends(reports_reader),
    db: AsyncSession = Depends(get_db),
):
    """Hours from creation to the first `delivered` status update."""
    report = await report_service.delivery_average_time_report(
        db, date_from=dates.date_from, date_to=dates.date_to, group_by=group_by
    )
    return export_report(report, format)


# Sales


@router.get("/sales/summary")
async def sales_summary(
    dates: DateRange = Depends(),
    format: ReportFormat = ReportFormat.JSON,
    current_user: User = Depends(reports_reader),
    db: AsyncSession = Depends(get_db),
):
    report = await report_service.sales_summary_report(
        db, date_from=dates.date_from, date_to=dates.date_to
    )
    return export_report(report, format)


@router.get("/sales/transactions")
async def sales_transactions(
    sale_status: SaleStatus | None = Query(default=None, alias="status"),
    dates: DateRange = Depends(),
    format: ReportFormat = ReportFormat.JSON,
    current_user: User = Depends(reports_reader),
    db: AsyncSession = Depends(get_db),
):
    report = await report_service.sales_transactions_report(
        db, date_from=dates.date_from, date_to=dates.date_to, sale_status=sale_status
    )
    return export_report(report, format)


@router.get("/sales/top-products")
async def top_products(
    limit: int = Query(default=10, ge=1, le=100),
    dates: DateRange = Depends(),
    format: ReportFormat = ReportFormat.JSON,
    current_user: User = Depends(reports_reader),
    db: AsyncSession = Depends(get_db),
):
    report = await report_service.top_products_report(
        db, date_from=dates.date_from, date_to=dates.date_to, limit=limit
    )
    return export_report(report, format)


@router.get("/sales/by-payment-method")
async def sales_by_payment_method(
    dates: DateRange = Depends(),
    format: ReportFormat = ReportFormat.JSON,
    current_user: User = Depends(reports_reader),
    db: AsyncSession = Depends(get_db),
):
    report = await report_service.sales_by_payment_method_report(
        db, date_from=dates.date_from, date_to=dates.date_to
    )
    return export_report(report, format)


@dashboard_router.get("/stats")
async def dashboard_stats(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return await report_service.dashboard_stats(db, current_user)
