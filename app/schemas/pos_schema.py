from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


class SaleStatus(str, Enum):
    DRAFT = "draft"
    HELD = "held"
    COMPLETED = "completed"
    VOIDED = "voided"


class DiscountType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    OTHER = "other"
    GCASH = "gcash"
    GOOGLE_PAY = "google_pay"
    PAYMAYA = "paymaya"


# Wallet payments must carry the provider's transaction reference
REFERENCE_REQUIRED_METHODS = frozenset(
    {PaymentMethod.GCASH, PaymentMethod.GOOGLE_PAY, PaymentMethod.PAYMAYA}
)


class SaleAction(str, Enum):
    HOLD = "hold"
    RETRIEVE = "retrieve"


class SaleUpdate(BaseModel):
    action: SaleAction | None = None
    discount_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    discount_type: DiscountType | None = None

    @model_validator(mode="after")
    def validate_discount(self):
        if (self.discount_amount is None) != (self.discount_type is None):
            raise ValueError("discount_amount and discount_type must be given together")
        return self


class LineItemCreate(BaseModel):
    product_id: UUID
    quantity: int = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    line_discount_amount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    line_discount_type: DiscountType | None = None


class LineItemUpdate(BaseModel):
    quantity: int | None = Field(default=None, gt=0)
    unit_price: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    line_discount_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    line_discount_type: DiscountType | None = None


class PaymentCreate(BaseModel):
    method: PaymentMethod
    amount: Decimal = Field(ge=Decimal("0.01"), decimal_places=2)
    reference: str | None = None

    @model_validator(mode="after")
    def validate_reference(self):
        if self.method in REFERENCE_REQUIRED_METHODS and not (self.reference or "").strip():
            raise ValueError(f"Reference number is required for {self.method.value} payments")
        return self


class CompleteSale(BaseModel):
    for_delivery: bool = False
    customer_name: str | None = None
    customer_address: str | None = None
    customer_phone: str | None = None
    customer_email: EmailStr | None = None
    delivery_notes: str | None = None

    @model_validator(mode="after")
    def validate_delivery(self):
        if self.for_delivery and not (self.customer_name and self.customer_address):
            raise ValueError("customer_name and customer_address are required for delivery")
        return self


class LineItemResponse(BaseModel):
    id: int
    product_id: UUID
    product_name: str | None = None
    sku: str | None = None
    quantity: int
    unit_price: Decimal
    line_discount_amount: Decimal
    line_discount_type: DiscountType | None = None
    line_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class PaymentResponse(BaseModel):
    id: int
    method: PaymentMethod
    amount: Decimal
    reference: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SaleResponse(BaseModel):
    id: UUID
    status: SaleStatus
    subtotal: Decimal
    discount_amount: Decimal
    discount_type: DiscountType | None = None
    total: Decimal
    payment_total: Decimal = Decimal("0.00")
    created_by_id: UUID | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    delivery_id: UUID | None = None
    line_items: list[LineItemResponse] = []
    payments: list[PaymentResponse] = []

    model_config = ConfigDict(from_attributes=True)
