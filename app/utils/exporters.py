"""CSV and PDF renderings of report tables and payslips."""

import csv
import io
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse
from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from app.schemas.report_schema import ReportFormat
from app.utils.utils import local_now, to_money

NAVY = HexColor("#1B2A4A")
SLATE = HexColor("#64748B")
SLATE_PALE = HexColor("#F1F5F9")

W, H = A4
MARGIN = 40
CONTENT_W = W - 2 * MARGIN
ROW_H = 16

# The standard PDF fonts have no peso glyph
PDF_CURRENCY = "PHP "


@dataclass
class Column:
    key: str
    label: str
    money: bool = False


@dataclass
class Report:
    title: str
    columns: list[Column]
    rows: list[dict]
    subtitle: str | None = None
    filters: dict = field(default_factory=dict)
    summary: dict | None = None
    filename: str = "report"


def cell_text(value, money: bool = False, currency: str = "") -> str:
    if value is None:
        return ""
    if money:
        return f"{currency}{to_money(value):,.2f}"
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def to_csv(report: Report) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([c.label for c in report.columns])
    for row in report.rows:
        writer.writerow([cell_text(row.get(c.key)) for c in report.columns])
    return buffer.getvalue()


class TablePdf:
    """Paginated A4 table: title block on the first page, header row on every page."""

    def __init__(self, report: Report):
        self.report = report
        self.buffer = io.BytesIO()
        self.c = canvas.Canvas(self.buffer, pagesize=A4)
        self.c.setTitle(report.title)
        self.page_num = 0
        self.y = H - MARGIN
        self.col_w = CONTENT_W / max(len(report.columns), 1)

    def new_page(self):
        if self.page_num:
            self.c.showPage()
        self.page_num += 1
        self.y = H - MARGIN
        self.c.setFont("Helvetica", 8)
        self.c.setFillColor(SLATE)
        self.c.drawRightString(W - MARGIN, MARGIN / 2, f"Page {self.page_num}")

    def header_block(self):
        report = self.report
        self.c.setFillColor(NAVY)
        self.c.setFont("Helvetica-Bold", 16)
        self.c.drawString(MARGIN, self.y, report.title)
        self.y -= 18
        self.c.setFillColor(SLATE)
        self.c.setFont("Helvetica", 9)
        if report.subtitle:
            self.c.drawString(MARGIN, self.y, report.subtitle)
            self.y -= 12
        self.c.drawString(
            MARGIN, self.y, f"Generated {local_now():%Y-%m-%d %H:%M}"
        )
        self.y -= 12
        filters = ", ".join(
            f"{k}: {cell_text(v)}" for k, v in report.filters.items() if v not in (None, "")
        )
        if filters:
            self.c.drawString(MARGIN, self.y, f"Filters: {filters}")
            self.y -= 12
        if report.summary:
            for key, value in report.summary.items():
                self.c.drawString(MARGIN, self.y, f"{key}: {cell_text(value)}")
                self.y -= 12
        self.y -= 8

    def column_headers(self):
        self.c.setFillColor(SLATE_PALE)
        self.c.rect(MARGIN, self.y - 4, CONTENT_W, ROW_H, stroke=0, fill=1)
        self.c.setFillColor(NAVY)
        self.c.setFont("Helvetica-Bold", 8)
        for i, column in enumerate(self.report.columns):
            self.c.drawString(MARGIN + i * self.col_w + 2, self.y, column.label[:24])
        self.y -= ROW_H

    def row(self, row: dict):
        if self.y < MARGIN + ROW_H:
            self.new_page()
            self.column_headers()
        self.c.setFillColor(NAVY)
        self.c.setFont("Helvetica", 8)
        max_chars = int(self.col_w / 4.4)
        for i, column in enumerate(self.report.columns):
            text = cell_text(row.get(column.key), column.money, PDF_CURRENCY)
            self.c.drawString(MARGIN + i * self.col_w + 2, self.y, text[:max_chars])
        self.y -= ROW_H

    def render(self) -> bytes:
        self.new_page()
        self.header_block()
        self.column_headers()
        for row in self.report.rows:
            self.row(row)
        if not self.report.rows:
            self.c.setFont("Helvetica-Oblique", 9)
            self.c.drawString(MARGIN, self.y, "No records found.")
        self.c.save()
        return self.buffer.getvalue()


def to_pdf(report: Report) -> bytes:
    return TablePdf(report).render()


def payslip_pdf(payslip) -> bytes:
    """Render a ``PayslipResponse`` as a single-page PDF."""
    report = Report(
        title="Payslip",
        subtitle=(
            f"{payslip.employee_name} | Period {cell_text(payslip.period_start)} to "
            f"{cell_text(payslip.period_end)} | Pay date {cell_text(payslip.pay_date)}"
        ),
        columns=[
            Column("kind", "Kind"),
            Column("type", "Type"),
            Column("description", "Description"),
            Column("amount", "Amount", money=True),
        ],
        rows=[
            {"kind": "Earning", "type": e.type, "description": e.description, "amount": e.amount}
            for e in payslip.earnings
        ]
        + [
            {"kind": "Deduction", "type": d.type, "description": d.description, "amount": d.amount}
            for d in payslip.deductions
        ],
        summary={
            "Gross pay": f"{PDF_CURRENCY}{payslip.gross_pay:,.2f}",
            "Total deductions": f"{PDF_CURRENCY}{payslip.total_deductions:,.2f}",
            "Net pay": f"{PDF_CURRENCY}{payslip.net_pay:,.2f}",
            "Status": payslip.status,
        },
    )
    return to_pdf(report)


def export_report(report: Report, fmt: ReportFormat):
    if fmt == ReportFormat.CSV:
        return StreamingResponse(
            iter([to_csv(report)]),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename={report.filename}.csv"},
        )
    if fmt == ReportFormat.PDF:
        return StreamingResponse(
            io.BytesIO(to_pdf(report)),
            media_type="application/pdf",
            headers={"Content-Disposition": f"attachment; filename={report.filename}.pdf"},
        )
    content = {"data": report.rows}
    if report.summary is not None:
        content["summary"] = report.summary
    return JSONResponse(content=jsonable_encoder(content, custom_encoder={Decimal: str}))
