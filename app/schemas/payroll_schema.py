from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


class PayPeriodType(str, Enum):
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"


class PayrollRunStatus(str, Enum):
    DRAFT = "draft"
    FINALIZED = "finalized"


class PayslipStatus(str, Enum):
    DRAFT = "draft"
    FINAL = "final"


class EarningType(str, Enum):
    REGULAR = "regular"
    OVERTIME = "overtime"
    BONUS = "bonus"
    ALLOWANCE = "allowance"


class DeductionType(str, Enum):
    TAX = "tax"
    SSS = "sss"
    PHILHEALTH = "philhealth"
    PAGIBIG = "pagibig"
    LOAN = "loan"
    OTHER = "other"


class EmployeeCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr | None = None
    department: str | None = None
    rate: Decimal = Field(ge=0, decimal_places=2)
    bank_name: str | None = None
    bank_account: str | None = None
    active: bool = True
    user_id: UUID | None = None


class EmployeeUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    email: EmailStr | None = None
    department: str | None = None
    rate: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    bank_name: str | None = None
    bank_account: str | None = None
    active: bool | None = None
    user_id: UUID | None = None


class EmployeeResponse(BaseModel):
    id: UUID
    name: str
    email: str | None = None
    department: str | None = None
    rate: Decimal
    bank_name: str | None = None
    bank_account: str | None = None
    active: bool
    user_id: UUID | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class PayPeriodCreate(BaseModel):
    start_date: date
    end_date: date
    pay_date: date
    type: PayPeriodType = PayPeriodType.MONTHLY

    @model_validator(mode="after")
    def validate_range(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class PayPeriodUpdate(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    pay_date: date | None = None
    type: PayPeriodType | None = None


class PayPeriodResponse(BaseModel):
    id: UUID
    start_date: date
    end_date: date
    pay_date: date
    type: PayPeriodType

    model_config = ConfigDict(from_attributes=True)


class PayrollRunCreate(BaseModel):
    pay_period_id: UUID


class EarningItem(BaseModel):
    type: EarningType
    amount: Decimal = Field(ge=0, decimal_places=2)
    description: str | None = None


class DeductionItem(BaseModel):
    type: DeductionType
    amount: Decimal = Field(ge=0, decimal_places=2)
    description: str | None = None


class EarningResponse(EarningItem):
    id: int

    model_config = ConfigDict(from_attributes=True)


class DeductionResponse(DeductionItem):
    id: int

    model_config = ConfigDict(from_attributes=True)


class PayslipUpdate(BaseModel):
    """Earnings/deductions lists replace the stored ones wholesale."""

    earnings: list[EarningItem] | None = None
    deductions: list[DeductionItem] | None = None


class PayslipSummary(BaseModel):
    id: UUID
    payroll_run_id: UUID
    employee_id: UUID
    employee_name: str | None = None
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    status: PayslipStatus

    model_config = ConfigDict(from_attributes=True)


class PayslipResponse(PayslipSummary):
    employee_email: str | None = None
    period_start: date | None = None
    period_end: date | None = None
    pay_date: date | None = None
    earnings: list[EarningResponse] = []
    deductions: list[DeductionResponse] = []


class PayrollRunResponse(BaseModel):
    id: UUID
    pay_period_id: UUID
    status: PayrollRunStatus
    created_by_id: UUID | None = None
    created_at: datetime | None = None
    payslip_count: int = 0
    payslips: list[PayslipSummary] = []

    model_config = ConfigDict(from_attributes=True)
