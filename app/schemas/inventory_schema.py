from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, model_validator


class MovementType(str, Enum):
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"


class ProductCreate(BaseModel):
    name: str = Field(min_length=1)
    sku: str = Field(min_length=1)
    category: str | None = None
    unit: str = "pcs"
    list_price: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    reorder_level: int = Field(default=0, ge=0)


class ProductUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    sku: str | None = Field(default=None, min_length=1)
    category: str | None = None
    unit: str | None = None
    list_price: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    reorder_level: int | None = Field(default=None, ge=0)
    archived: bool | None = None


class ProductResponse(BaseModel):
    id: UUID
    name: str
    sku: str
    category: str | None = None
    unit: str
    list_price: Decimal | None = None
    reorder_level: int
    archived: bool
    quantity: int = 0
    low_stock: bool = False
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class StockMovementCreate(BaseModel):
    product_id: UUID
    type: MovementType
    quantity: int
    reference: str | None = None
    note: str | None = None

    @model_validator(mode="after")
    def validate_quantity(self):
        if self.type == MovementType.ADJUSTMENT:
            if self.quantity == 0:
                raise ValueError("Adjustment quantity cannot be zero")
        elif self.quantity <= 0:
            raise ValueError("Quantity must be positive for in/out movements")
        return self


class StockMovementResponse(BaseModel):
    id: int
    product_id: UUID
    product_name: str | None = None
    type: MovementType
    quantity: int
    reference: str | None = None
    note: str | None = None
    created_by_id: UUID | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
