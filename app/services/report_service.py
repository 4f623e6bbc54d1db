from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.permissions import Permission, can
from app.models.models import (
    Deduction,
    Delivery,
    DeliveryStatusUpdate,
    Employee,
    Notification,
    PayPeriod,
    PayrollRun,
    Payslip,
    Payment,
    Product,
    Sale,
    SaleLineItem,
    StockLevel,
    StockMovement,
    User,
)
from app.schemas.delivery_schema import DeliveryStatus
from app.schemas.inventory_schema import MovementType
from app.schemas.payroll_schema import DeductionType, PayrollRunStatus
from app.schemas.pos_schema import SaleStatus
from app.schemas.report_schema import DeliveryTimeGroupBy, MovementGroupBy
from app.services.inventory_service import is_low_stock
from app.services.pos_service import line_total
from app.utils.exporters import Column, Report
from app.utils.utils import ZERO, as_utc, enum_value, local_today, to_money

CONTRIBUTION_LABELS = {
    DeductionType.TAX: "Tax",
    DeductionType.SSS: "SSS",
    DeductionType.PHILHEALTH: "PhilHealth",
    DeductionType.PAGIBIG: "Pag-IBIG",
}


def _start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _end(value: date) -> datetime:
    return datetime.combine(value + timedelta(days=1), time.min, tzinfo=timezone.utc)


def _in_range(stmt, column, date_from: date | None, date_to: date | None):
    if date_from:
        stmt = stmt.where(column >= _start(date_from))
    if date_to:
        stmt = stmt.where(column < _end(date_to))
    return stmt


def _period_key(value: datetime | date, group_by: str) -> str:
    day = value.date() if isinstance(value, datetime) else value
    if group_by == "week":
        return (day - timedelta(days=day.weekday())).isoformat()
    if group_by == "month":
        return f"{day:%Y-%m}"
    return day.isoformat()


def _range_subtitle(date_from: date | None, date_to: date | None) -> str:
    if not (date_from or date_to):
        return "All dates"
    return f"{date_from or 'beginning'} to {date_to or 'today'}"


# Inventory


async def _stock_rows(db: AsyncSession, category: str | None = None) -> list[dict]:
    stmt = (
        select(Product, func.coalesce(StockLevel.quantity, 0))
        .outerjoin(StockLevel)
        .where(Product.archived.is_(False))
        .order_by(Product.category, Product.name)
    )
    if category:
        stmt = stmt.where(Product.category == category)
    rows = []
    for product, quantity in (await db.execute(stmt)).all():
        price = to_money(product.list_price) if product.list_price is not None else None
        rows.append(
            {
                "product_id": str(product.id),
                "sku": product.sku,
                "name": product.name,
                "category": product.category,
                "unit": product.unit,
                "quantity": quantity,
                "reorder_level": product.reorder_level,
                "low_stock": is_low_stock(quantity, product.reorder_level),
                "list_price": price,
                "stock_value": to_money(price * quantity) if price is not None else None,
            }
        )
    return rows


async def stock_levels_report(
    db: AsyncSession, category: str | None = None, include_low_stock: bool = True
) -> Report:
    rows = await _stock_rows(db, category)
    if not include_low_stock:
        rows = [r for r in rows if not r["low_stock"]]
    return Report(
        title="Stock Levels",
        subtitle=f"Category: {category or 'All'}",
        filters={"category": category, "include_low_stock": include_low_stock},
        columns=[
            Column("sku", "SKU"),
            Column("name", "Product"),
            Column("category", "Category"),
            Column("quantity", "Quantity"),
            Column("unit", "Unit"),
            Column("reorder_level", "Reorder Level"),
            Column("stock_value", "Stock Value", money=True),
        ],
        rows=rows,
        summary={
            "total_products": len(rows),
            "low_stock_count": sum(1 for r in rows if r["low_stock"]),
            "total_stock_value": sum((r["stock_value"] or ZERO for r in rows), ZERO),
        },
        filename="stock-levels",
    )


async def low_stock_report(db: AsyncSession, category: str | None = None) -> Report:
    rows = [r for r in await _stock_rows(db, category) if r["low_stock"]]
    for row in rows:
        row["shortage"] = row["reorder_level"] - row["quantity"]
    rows.sort(key=lambda r: r["shortage"], reverse=True)
    return Report(
        title="Low Stock",
        subtitle="Products at or below their reorder level",
        filters={"category": category},
        columns=[
            Column("sku", "SKU"),
            Column("name", "Product"),
            Column("category", "Category"),
            Column("quantity", "Quantity"),
            Column("reorder_level", "Reorder Level"),
            Column("shortage", "Shortage"),
        ],
        rows=rows,
        filename="low-stock",
    )


def suggested_stock_level(reorder_level: int) -> int:
    return max(2 * reorder_level, reorder_level + 10)


async def reorder_suggestions_report(
    db: AsyncSession, category: str | None = None
) -> Report:
    rows = []
    for row in await _stock_rows(db, category):
        if not row["low_stock"]:
            continue
        suggested = suggested_stock_level(row["reorder_level"])
        to_order = suggested - row["quantity"]
        row.update(
            suggested_level=suggested,
            to_order=to_order,
            estimated_cost=(
                to_money(row["list_price"] * to_order)
                if row["list_price"] is not None
                else None
            ),
        )
        rows.append(row)
    rows.sort(key=lambda r: r["to_order"], reverse=True)
    return Report(
        title="Reorder Suggestions",
        filters={"category": category},
        columns=[
            Column("sku", "SKU"),
            Column("name", "Product"),
            Column("quantity", "Quantity"),
            Column("reorder_level", "Reorder Level"),
            Column("suggested_level", "Suggested Level"),
            Column("to_order", "To Order"),
            Column("estimated_cost", "Est. Cost", money=True),
        ],
        rows=rows,
        summary={
            "items": len(rows),
            "estimated_total": sum((r["estimated_cost"] or ZERO for r in rows), ZERO),
        },
        filename="reorder-suggestions",
    )


async def movement_summary_report(
    db: AsyncSession,
    date_from: date | None = None,
    date_to: date | None = None,
    group_by: MovementGroupBy = MovementGroupBy.DAY,
    movement_type: MovementType | None = None,
    category: str | None = None,
) -> Report:
    stmt = select(StockMovement, Product).join(Product)
    stmt = _in_range(stmt, StockMovement.created_at, date_from, date_to)
    if movement_type:
        stmt = stmt.where(StockMovement.type == movement_type)
    if category:
        stmt = stmt.where(Product.category == category)

    groups: dict[str, dict] = {}
    for movement, product in (await db.execute(stmt)).all():
        if group_by == MovementGroupBy.PRODUCT:
            key, label = str(product.id), f"{product.name} ({product.sku})"
        elif group_by == MovementGroupBy.CATEGORY:
            key = label = product.category or "Uncategorized"
        else:
            key = label = _period_key(as_utc(movement.created_at), group_by.value)
        group = groups.setdefault(
            key,
            {"group": label, "in": 0, "out": 0, "adjustment": 0, "net": 0, "movements": 0},
        )
        # in/out columns show magnitudes, adjustments keep their sign
        if movement.type == MovementType.ADJUSTMENT:
            group["adjustment"] += movement.quantity
        else:
            group[enum_value(movement.type)] += abs(movement.quantity)
        group["net"] += movement.quantity
        group["movements"] += 1

    rows = sorted(groups.values(), key=lambda g: g["group"])
    return Report(
        title="Stock Movement Summary",
        subtitle=f"Grouped by {group_by.value} | {_range_subtitle(date_from, date_to)}",
        filters={
            "date_from": date_from,
            "date_to": date_to,
            "type": enum_value(movement_type),
            "category": category,
        },
        columns=[
            Column("group", group_by.value.title()),
            Column("in", "In"),
            Column("out", "Out"),
            Column("adjustment", "Adjustment"),
            Column("net", "Net"),
            Column("movements", "Movements"),
        ],
        rows=rows,
        filename="movement-summary",
    )


# Payroll


def _overlapping_periods(stmt, date_from: date | None, date_to: date | None):
    if date_from:
        stmt = stmt.where(PayPeriod.end_date >= date_from)
    if date_to:
        stmt = stmt.where(PayPeriod.start_date <= date_to)
    return stmt


async def payslips_by_period_report(
    db: AsyncSession,
    pay_period_id: UUID | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> Report:
    stmt = (
        select(Payslip, Employee, PayPeriod)
        .join(Employee, Payslip.employee_id == Employee.id)
        .join(PayrollRun, Payslip.payroll_run_id == PayrollRun.id)
        .join(PayPeriod, PayrollRun.pay_period_id == PayPeriod.id)
        .order_by(PayPeriod.start_date.desc(), Employee.name)
    )
    if pay_period_id:
        stmt = stmt.where(PayPeriod.id == pay_period_id)
    else:
        stmt = _overlapping_periods(stmt, date_from, date_to)

    rows = [
        {
            "payslip_id": str(payslip.id),
            "employee": employee.name,
            "department": employee.department,
            "period_start": period.start_date,
            "period_end": period.end_date,
            "gross_pay": to_money(payslip.gross_pay),
            "total_deductions": to_money(payslip.total_deductions),
            "net_pay": to_money(payslip.net_pay),
            "status": enum_value(payslip.status),
        }
        for payslip, employee, period in (await db.execute(stmt)).all()
    ]
    return Report(
        title="Payslips by Period",
        subtitle=_range_subtitle(date_from, date_to),
        filters={"pay_period_id": pay_period_id, "date_from": date_from, "date_to": date_to},
        columns=[
            Column("employee", "Employee"),
            Column("department", "Department"),
            Column("period_start", "Start"),
            Column("period_end", "End"),
            Column("gross_pay", "Gross", money=True),
            Column("total_deductions", "Deductions", money=True),
            Column("net_pay", "Net", money=True),
            Column("status", "Status"),
        ],
        rows=rows,
        summary={
            "payslips": len(rows),
            "total_gross": sum((r["gross_pay"] for r in rows), ZERO),
            "total_deductions": sum((r["total_deductions"] for r in rows), ZERO),
            "total_net": sum((r["net_pay"] for r in rows), ZERO),
        },
        filename="payslips-by-period",
    )


async def employee_summary_report(
    db: AsyncSession, date_from: date | None = None, date_to: date | None = None
) -> Report:
    stmt = (
        select(
            Employee.id,
            Employee.name,
            Employee.department,
            func.count(Payslip.id),
            func.sum(Payslip.gross_pay),
            func.sum(Payslip.total_deductions),
            func.sum(Payslip.net_pay),
        )
        .join(Payslip, Payslip.employee_id == Employee.id)
        .join(PayrollRun, Payslip.payroll_run_id == PayrollRun.id)
        .join(PayPeriod, PayrollRun.pay_period_id == PayPeriod.id)
        .group_by(Employee.id, Employee.name, Employee.department)
        .order_by(Employee.name)
    )
    stmt = _overlapping_periods(stmt, date_from, date_to)
    rows = [
        {
            "employee_id": str(employee_id),
            "employee": name,
            "department": department,
            "payslips": count,
            "total_gross": to_money(gross),
            "total_deductions": to_money(deductions),
            "total_net": to_money(net),
        }
        for employee_id, name, department, count, gross, deductions, net in (
            await db.execute(stmt)
        ).all()
    ]
    return Report(
        title="Employee Payroll Summary",
        subtitle=_range_subtitle(date_from, date_to),
        filters={"date_from": date_from, "date_to": date_to},
        columns=[
            Column("employee", "Employee"),
            Column("department", "Department"),
            Column("payslips", "Payslips"),
            Column("total_gross", "Gross", money=True),
            Column("total_deductions", "Deductions", money=True),
            Column("total_net", "Net", money=True),
        ],
        rows=rows,
        filename="employee-summary",
    )


async def tax_contribution_summary_report(
    db: AsyncSession, date_from: date | None = None, date_to: date | None = None
) -> Report:
    stmt = (
        select(
            Deduction.type,
            func.sum(Deduction.amount),
            func.count(func.distinct(Payslip.employee_id)),
        )
        .join(Payslip, Deduction.payslip_id == Payslip.id)
        .join(PayrollRun, Payslip.payroll_run_id == PayrollRun.id)
        .join(PayPeriod, PayrollRun.pay_period_id == PayPeriod.id)
        .where(Deduction.type.in_(CONTRIBUTION_LABELS))
        .group_by(Deduction.type)
    )
    stmt = _overlapping_periods(stmt, date_from, date_to)
    totals = {
        DeductionType(t): (to_money(amount), employees)
        for t, amount, employees in (await db.execute(stmt)).all()
    }
    rows = [
        {
            "type": deduction_type.value,
            "label": label,
            "total": totals.get(deduction_type, (ZERO, 0))[0],
            "employees": totals.get(deduction_type, (ZERO, 0))[1],
        }
        for deduction_type, label in CONTRIBUTION_LABELS.items()
    ]
    return Report(
        title="Tax and Contribution Summary",
        subtitle=_range_subtitle(date_from, date_to),
        filters={"date_from": date_from, "date_to": date_to},
        columns=[
            Column("label", "Contribution"),
            Column("employees", "Employees"),
            Column("total", "Total", money=True),
        ],
        rows=rows,
        summary={"grand_total": sum((r["total"] for r in rows), ZERO)},
        filename="tax-contribution-summary",
    )


# Deliveries


def _delivery_row(delivery: Delivery, assignee: str | None = None) -> dict:
    return {
        "delivery_id": str(delivery.id),
        "tracking_number": delivery.tracking_number,
        "order_reference": delivery.order_reference,
        "customer_name": delivery.customer_name,
        "status": enum_value(delivery.status),
        "assigned_to": assignee,
        "created_at": as_utc(delivery.created_at),
    }


async def _deliveries(db: AsyncSession, date_from: date | None, date_to: date | None):
    stmt = (
        select(Delivery, User.name)
        .outerjoin(User, Delivery.assigned_to_user_id == User.id)
        .order_by(Delivery.created_at.desc())
    )
    stmt = _in_range(stmt, Delivery.created_at, date_from, date_to)
    return (await db.execute(stmt)).all()


async def deliveries_by_status_report(
    db: AsyncSession,
    date_from: date | None = None,
    date_to: date | None = None,
    include_details: bool = False,
) -> Report:
    deliveries = await _deliveries(db, date_from, date_to)
    filters = {"date_from": date_from, "date_to": date_to}
    if include_details:
        return Report(
            title="Deliveries by Status",
            subtitle=_range_subtitle(date_from, date_to),
            filters=filters,
            columns=[
                Column("status", "Status"),
                Column("tracking_number", "Tracking #"),
                Column("customer_name", "Customer"),
                Column("assigned_to", "Assigned To"),
                Column("created_at", "Created"),
            ],
            rows=sorted(
                (_delivery_row(d, name) for d, name in deliveries),
                key=lambda r: r["status"],
            ),
            filename="deliveries-by-status",
        )

    counts = {s.value: 0 for s in DeliveryStatus}
    for delivery, _ in deliveries:
        counts[enum_value(delivery.status)] += 1
    return Report(
        title="Deliveries by Status",
        subtitle=_range_subtitle(date_from, date_to),
        filters=filters,
        columns=[Column("status", "Status"), Column("count", "Deliveries")],
        rows=[{"status": s, "count": c} for s, c in counts.items()],
        summary={"total": len(deliveries)},
        filename="deliveries-by-status",
    )


async def deliveries_by_date_range_report(
    db: AsyncSession, date_from: date | None = None, date_to: date | None = None
) -> Report:
    return Report(
        title="Deliveries",
        subtitle=_range_subtitle(date_from, date_to),
        filters={"date_from": date_from, "date_to": date_to},
        columns=[
            Column("created_at", "Created"),
            Column("tracking_number", "Tracking #"),
            Column("order_reference", "Order Ref"),
            Column("customer_name", "Customer"),
            Column("status", "Status"),
            Column("assigned_to", "Assigned To"),
        ],
        rows=[_delivery_row(d, name) for d, name in await _deliveries(db, date_from, date_to)],
        filename="deliveries-by-date-range",
    )


async def delivery_average_time_report(
    db: AsyncSession,
    date_from: date | None = None,
    date_to: date | None = None,
    group_by: DeliveryTimeGroupBy = DeliveryTimeGroupBy.DAY,
) -> Report:
    delivered_at = (
        select(
            DeliveryStatusUpdate.delivery_id,
            func.min(DeliveryStatusUpdate.created_at).label("delivered_at"),
        )
        .where(DeliveryStatusUpdate.status == DeliveryStatus.DELIVERED)
        .group_by(DeliveryStatusUpdate.delivery_id)
        .subquery()
    )
    stmt = select(Delivery, delivered_at.c.delivered_at).join(
        delivered_at, delivered_at.c.delivery_id == Delivery.id
    )
    stmt = _in_range(stmt, Delivery.created_at, date_from, date_to)

    groups: dict[str, list[float]] = defaultdict(list)
    for delivery, finished in (await db.execute(stmt)).all():
        created = as_utc(delivery.created_at)
        hours = (as_utc(finished) - created).total_seconds() / 3600
        if group_by == DeliveryTimeGroupBy.CUSTOMER:
            key = delivery.customer_name or "Unknown"
        else:
            key = _period_key(created, group_by.value)
        groups[key].append(hours)

    rows = []
    for key in sorted(groups):
        hours = groups[key]
        average = sum(hours) / len(hours)
        rows.append(
            {
                "group": key,
                "deliveries": len(hours),
                "average_hours": round(average, 2),
                "average_days": round(average / 24, 2),
                "min_hours": round(min(hours), 2),
                "max_hours": round(max(hours), 2),
            }
        )
    all_hours = [h for values in groups.values() for h in values]
    return Report(
        title="Average Delivery Time",
        subtitle=f"Grouped by {group_by.value} | {_range_subtitle(date_from, date_to)}",
        filters={"date_from": date_from, "date_to": date_to, "group_by": group_by.value},
        columns=[
            Column("group", group_by.value.title()),
            Column("deliveries", "Delivered"),
            Column("average_hours", "Avg Hours"),
            Column("average_days", "Avg Days"),
            Column("min_hours", "Min Hours"),
            Column("max_hours", "Max Hours"),
        ],
        rows=rows,
        summary={
            "delivered": len(all_hours),
            "overall_average_hours": (
                round(sum(all_hours) / len(all_hours), 2) if all_hours else None
            ),
        },
        filename="delivery-average-time",
    )


# Sales


async def _completed_sales(
    db: AsyncSession, date_from: date | None, date_to: date | None
) -> list[Sale]:
    stmt = select(Sale).where(Sale.status == SaleStatus.COMPLETED)
    stmt = _in_range(stmt, Sale.completed_at, date_from, date_to)
    return (await db.execute(stmt.order_by(Sale.completed_at.desc()))).scalars().all()


async def _lines_by_sale(db: AsyncSession, sale_ids: list[UUID]) -> dict:
    lines = defaultdict(list)
    if sale_ids:
        result = await db.execute(
            select(SaleLineItem).where(SaleLineItem.sale_id.in_(sale_ids))
        )
        for line in result.scalars().all():
            lines[line.sale_id].append(line)
    return lines


async def sales_summary_report(
    db: AsyncSession, date_from: date | None = None, date_to: date | None = None
) -> Report:
    sales = await _completed_sales(db, date_from, date_to)
    lines = await _lines_by_sale(db, [s.id for s in sales])

    revenue = sum((to_money(s.total) for s in sales), ZERO)
    gross = sum(
        (to_money(line.unit_price) * line.quantity for s in sales for line in lines[s.id]),
        ZERO,
    )
    voided = select(func.count(Sale.id)).where(Sale.status == SaleStatus.VOIDED)
    voided = _in_range(voided, Sale.completed_at, date_from, date_to)
    voided_count = (await db.execute(voided)).scalar_one()

    row = {
        "completed_sales": len(sales),
        "voided_sales": voided_count,
        "items_sold": sum(line.quantity for s in sales for line in lines[s.id]),
        "gross_sales": gross,
        "total_discounts": gross - revenue,
        "revenue": revenue,
        "average_order_value": to_money(revenue / len(sales)) if sales else ZERO,
    }
    return Report(
        title="Sales Summary",
        subtitle=_range_subtitle(date_from, date_to),
        filters={"date_from": date_from, "date_to": date_to},
        columns=[
            Column("completed_sales", "Completed"),
            Column("voided_sales", "Voided"),
            Column("items_sold", "Items Sold"),
            Column("gross_sales", "Gross Sales", money=True),
            Column("total_discounts", "Discounts", money=True),
            Column("revenue", "Revenue", money=True),
            Column("average_order_value", "Avg Order", money=True),
        ],
        rows=[row],
        filename="sales-summary",
    )


async def sales_transactions_report(
    db: AsyncSession,
    date_from: date | None = None,
    date_to: date | None = None,
    sale_status: SaleStatus | None = None,
) -> Report:
    stmt = select(Sale).where(Sale.status.in_([SaleStatus.COMPLETED, SaleStatus.VOIDED]))
    if sale_status:
        stmt = select(Sale).where(Sale.status == sale_status)
    stmt = _in_range(stmt, func.coalesce(Sale.completed_at, Sale.created_at), date_from, date_to)
    sales = (await db.execute(stmt.order_by(Sale.created_at.desc()))).scalars().all()

    lines = await _lines_by_sale(db, [s.id for s in sales])
    methods = defaultdict(set)
    if sales:
        result = await db.execute(
            select(Payment.sale_id, Payment.method).where(
                Payment.sale_id.in_([s.id for s in sales])
            )
        )
        for sale_id, method in result.all():
            methods[sale_id].add(enum_value(method))

    rows = [
        {
            "sale_id": str(sale.id),
            "reference": str(sale.id)[:8].upper(),
            "date": as_utc(sale.completed_at or sale.created_at),
            "status": enum_value(sale.status),
            "items": sum(line.quantity for line in lines[sale.id]),
            "subtotal": to_money(sale.subtotal),
            "discount": to_money(sale.subtotal) - to_money(sale.total),
            "total": to_money(sale.total),
            "payment_methods": ", ".join(sorted(methods[sale.id])),
        }
        for sale in sales
    ]
    return Report(
        title="Sales Transactions",
        subtitle=_range_subtitle(date_from, date_to),
        filters={"date_from": date_from, "date_to": date_to, "status": enum_value(sale_status)},
        columns=[
            Column("reference", "Ref"),
            Column("date", "Date"),
            Column("status", "Status"),
            Column("items", "Items"),
            Column("subtotal", "Subtotal", money=True),
            Column("discount", "Discount", money=True),
            Column("total", "Total", money=True),
            Column("payment_methods", "Paid By"),
        ],
        rows=rows,
        filename="sales-transactions",
    )


async def top_products_report(
    db: AsyncSession,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 10,
) -> Report:
    sales = await _completed_sales(db, date_from, date_to)
    lines = await _lines_by_sale(db, [s.id for s in sales])

    products: dict[UUID, dict] = {}
    for sale in sales:
        for line in lines[sale.id]:
            entry = products.setdefault(
                line.product_id,
                {
                    "product_id": str(line.product_id),
                    "sku": line.product.sku if line.product else None,
                    "name": line.product.name if line.product else None,
                    "quantity": 0,
                    "revenue": ZERO,
                    "transactions": 0,
                },
            )
            entry["quantity"] += line.quantity
            entry["revenue"] += line_total(line)
            entry["transactions"] += 1

    rows = sorted(products.values(), key=lambda p: p["revenue"], reverse=True)[:limit]
    return Report(
        title="Top Products",
        subtitle=_range_subtitle(date_from, date_to),
        filters={"date_from": date_from, "date_to": date_to, "limit": limit},
        columns=[
            Column("sku", "SKU"),
            Column("name", "Product"),
            Column("quantity", "Qty Sold"),
            Column("transactions", "Sales"),
            Column("revenue", "Revenue", money=True),
        ],
        rows=rows,
        filename="top-products",
    )


async def sales_by_payment_method_report(
    db: AsyncSession, date_from: date | None = None, date_to: date | None = None
) -> Report:
    stmt = (
        select(Payment.method, func.count(Payment.id), func.sum(Payment.amount))
        .join(Sale, Payment.sale_id == Sale.id)
        .where(Sale.status == SaleStatus.COMPLETED)
        .group_by(Payment.method)
    )
    stmt = _in_range(stmt, Sale.completed_at, date_from, date_to)
    rows = [
        {"method": enum_value(method), "payments": count, "amount": to_money(amount)}
        for method, count, amount in (await db.execute(stmt)).all()
    ]
    rows.sort(key=lambda r: r["amount"], reverse=True)
    return Report(
        title="Sales by Payment Method",
        subtitle=_range_subtitle(date_from, date_to),
        filters={"date_from": date_from, "date_to": date_to},
        columns=[
            Column("method", "Method"),
            Column("payments", "Payments"),
            Column("amount", "Amount", money=True),
        ],
        rows=rows,
        summary={"total": sum((r["amount"] for r in rows), ZERO)},
        filename="sales-by-payment-method",
    )


# Dashboard


async def dashboard_stats(db: AsyncSession, current_user: User) -> dict:
    """Headline counts, limited to what the caller may read."""
    stats: dict = {}

    if can(current_user, Permission.INVENTORY_READ):
        stock = await _stock_rows(db)
        stats["inventory"] = {
            "products": len(stock),
            "low_stock": sum(1 for r in stock if r["low_stock"]),
        }

    if can(current_user, Permission.DELIVERIES_READ):
        result = await db.execute(
            select(Delivery.status, func.count(Delivery.id)).group_by(Delivery.status)
        )
        by_status = {s.value: 0 for s in DeliveryStatus}
        for delivery_status, count in result.all():
            by_status[enum_value(delivery_status)] = count
        stats["deliveries"] = by_status

    if can(current_user, Permission.POS_READ):
        open_sales = await db.execute(
            select(func.count(Sale.id)).where(
                Sale.status.in_([SaleStatus.DRAFT, SaleStatus.HELD])
            )
        )
        today = local_today()
        revenue = select(func.coalesce(func.sum(Sale.total), 0)).where(
            Sale.status == SaleStatus.COMPLETED
        )
        revenue = _in_range(revenue, Sale.completed_at, today, today)
        stats["sales"] = {
            "open_sales": open_sales.scalar_one(),
            "revenue_today": to_money((await db.execute(revenue)).scalar_one()),
        }

    if can(current_user, Permission.PAYROLL_READ):
        employees = await db.execute(
            select(func.count(Employee.id)).where(Employee.active.is_(True))
        )
        draft_runs = await db.execute(
            select(func.count(PayrollRun.id)).where(
                PayrollRun.status == PayrollRunStatus.DRAFT
            )
        )
        stats["payroll"] = {
            "active_employees": employees.scalar_one(),
            "draft_runs": draft_runs.scalar_one(),
        }

    unread = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == current_user.id, Notification.read.is_(False)
        )
    )
    stats["unread_notifications"] = unread.scalar_one()
    return stats
