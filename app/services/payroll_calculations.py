"""Philippine statutory deductions and attendance-to-hours reduction.

Pure functions over ``Decimal``; nothing here touches the database.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from app.schemas.payroll_schema import PayPeriodType
from app.utils.utils import ZERO, to_money

DEFAULT_DAY_HOURS = Decimal("8.0")

# Multipliers from a period's gross to its monthly equivalent
MONTHLY_FACTOR = {
    PayPeriodType.WEEKLY: Decimal("4.33"),
    PayPeriodType.BI_WEEKLY: Decimal("2.17"),
    PayPeriodType.MONTHLY: Decimal("1"),
}
PERIODS_PER_YEAR = {
    PayPeriodType.WEEKLY: Decimal("52"),
    PayPeriodType.BI_WEEKLY: Decimal("26"),
    PayPeriodType.MONTHLY: Decimal("12"),
}

SSS_RATE = Decimal("0.045")
SSS_SALARY_CAP = Decimal("30000")
PHILHEALTH_RATE = Decimal("0.04")
PHILHEALTH_SALARY_CAP = Decimal("100000")
PAGIBIG_MAX_CONTRIBUTION = Decimal("100.00")

# (upper bound of annual taxable income, base tax, marginal rate, bracket floor)
TAX_BRACKETS = (
    (Decimal("250000"), Decimal("0"), Decimal("0"), Decimal("0")),
    (Decimal("400000"), Decimal("0"), Decimal("0.15"), Decimal("250000")),
    (Decimal("800000"), Decimal("22500"), Decimal("0.20"), Decimal("400000")),
    (Decimal("2000000"), Decimal("102500"), Decimal("0.25"), Decimal("800000")),
    (Decimal("8000000"), Decimal("402500"), Decimal("0.30"), Decimal("2000000")),
    (None, Decimal("2202500"), Decimal("0.35"), Decimal("8000000")),
)


@dataclass(frozen=True)
class StatutoryDeductions:
    sss: Decimal
    philhealth: Decimal
    pagibig: Decimal
    income_tax: Decimal
    total: Decimal


def total_hours(days: Iterable) -> Decimal:
    """Sum of hours over present days; a present day without hours counts as 8.

    ``days`` may hold ORM rows or dicts with ``present`` and ``hours_worked``.
    """
    hours = Decimal("0")
    for day in days:
        present = day["present"] if isinstance(day, dict) else day.present
        worked = day.get("hours_worked") if isinstance(day, dict) else day.hours_worked
        if present != 1:
            continue
        hours += DEFAULT_DAY_HOURS if worked is None else Decimal(str(worked))
    return hours


def sss_contribution(monthly_gross: Decimal) -> Decimal:
    return min(monthly_gross, SSS_SALARY_CAP) * SSS_RATE


def philhealth_contribution(monthly_gross: Decimal) -> Decimal:
    return min(monthly_gross, PHILHEALTH_SALARY_CAP) * PHILHEALTH_RATE


def pagibig_contribution(monthly_gross: Decimal) -> Decimal:
    if monthly_gross < Decimal("12000"):
        return Decimal("0")
    if monthly_gross < Decimal("18000"):
        return monthly_gross * Decimal("0.01")
    if monthly_gross <= Decimal("60000"):
        return monthly_gross * Decimal("0.02")
    return PAGIBIG_MAX_CONTRIBUTION


def annual_income_tax(annual_gross: Decimal) -> Decimal:
    for ceiling, base, rate, floor in TAX_BRACKETS:
        if ceiling is None or annual_gross <= ceiling:
            return base + (annual_gross - floor) * rate
    return Decimal("0")


def calculate_statutory_deductions(
    gross_pay, period_type: PayPeriodType | str = PayPeriodType.MONTHLY
) -> StatutoryDeductions:
    """SSS, PhilHealth, Pag-IBIG and withholding tax for one pay period.

    Contributions are computed on the monthly equivalent of ``gross_pay`` and
    scaled back to the period; tax is annualised and divided by the number of
    periods per year. Negative gross is treated as zero. ``total`` is the sum of
    the rounded components.
    """
    period_type = PayPeriodType(period_type)
    gross = max(Decimal(str(gross_pay)), Decimal("0"))

    factor = MONTHLY_FACTOR[period_type]
    monthly_gross = gross * factor

    sss = sss_contribution(monthly_gross) / factor
    philhealth = philhealth_contribution(monthly_gross) / factor
    pagibig = pagibig_contribution(monthly_gross) / factor
    income_tax = annual_income_tax(monthly_gross * 12) / PERIODS_PER_YEAR[period_type]

    sss, philhealth, pagibig, income_tax = (
        to_money(v) for v in (sss, philhealth, pagibig, income_tax)
    )
    return StatutoryDeductions(
        sss=sss,
        philhealth=philhealth,
        pagibig=pagibig,
        income_tax=income_tax,
        total=sss + philhealth + pagibig + income_tax,
    )


def net_pay(gross_pay, total_deductions) -> Decimal:
    return to_money(gross_pay) - to_money(total_deductions)


def sum_amounts(rows) -> Decimal:
    return sum((to_money(row.amount) for row in rows), ZERO)
