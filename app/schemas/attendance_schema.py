from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AttendanceStatus(str, Enum):
    ON_TIME = "on_time"
    LATE = "late"


class ClockAction(str, Enum):
    CLOCK_IN = "clock_in"
    CLOCK_OUT = "clock_out"


MAX_DAY_HOURS = Decimal("24")


class AttendanceDayInput(BaseModel):
    date: date
    present: Literal[0, 1]
    hours_worked: str | None = Field(default=None, pattern=r"^(\d+(\.\d{1,2})?)?$")
    notes: str | None = None

    @field_validator("hours_worked")
    def hours_within_a_day(cls, value):
        if not value:
            return None
        if Decimal(value) > MAX_DAY_HOURS:
            raise ValueError(f"hours_worked cannot exceed {MAX_DAY_HOURS}")
        return value


class AttendanceCreate(BaseModel):
    pay_period_id: UUID
    employee_id: UUID
    days: list[AttendanceDayInput] = Field(min_length=1)


class AttendanceDayResponse(BaseModel):
    id: int
    date: date
    present: int
    hours_worked: Decimal | None = None
    clock_in_time: datetime | None = None
    clock_out_time: datetime | None = None
    notes: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AttendanceResponse(BaseModel):
    id: UUID
    employee_id: UUID
    employee_name: str | None = None
    employee_email: str | None = None
    pay_period_id: UUID | None = None
    period_start: date | None = None
    period_end: date | None = None
    deadline: date | None = None
    submitted_at: datetime
    status: AttendanceStatus
    days: list[AttendanceDayResponse] = []

    model_config = ConfigDict(from_attributes=True)


class PersonalAttendanceAction(BaseModel):
    action: ClockAction
    notes: str | None = None


class PersonalAttendanceStatus(BaseModel):
    employee_id: UUID
    employee_name: str
    today: date
    current_pay_period_id: UUID | None = None
    clocked_in: bool
    clocked_out: bool
    today_record: AttendanceDayResponse | None = None
