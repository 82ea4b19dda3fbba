from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, model_validator
from stockledger.config import settings
from stockledger.schemas.common import CurrencyLiteral

class LineIn(BaseModel):
    product_id: str
    # bounded to the Numeric(14, 4) ledger columns
    quantity: Decimal = Field(gt=0, max_digits=14, decimal_places=4)
    unit_price: Optional[Decimal] = Field(default=None, ge=0, max_digits=14, decimal_places=4)  # unit cost on purchases
    amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=14, decimal_places=4)

class _TransactionIn(BaseModel):
    date: datetime
    currency: CurrencyLiteral = settings.DEFAULT_CURRENCY
    note: Optional[str] = None
    lines: list[LineIn] = Field(min_length=1)

    @model_validator(mode="after")
    def _aware_date(self):
        if self.date.tzinfo is None:
            raise ValueError("date must carry a timezone offset")
        return self

class SaleIn(_TransactionIn):
    customer_id: Optional[str] = None

class PurchaseIn(_TransactionIn):
    supplier_id: Optional[str] = None

class LineOut(LineIn):
    id: str
    model_config = {"from_attributes": True}

class SaleOut(BaseModel):
    id: str
    customer_id: Optional[str] = None
    date: datetime
    currency: str
    note: Optional[str] = None
    lines: list[LineOut]
    model_config = {"from_attributes": True}

class PurchaseOut(BaseModel):
    id: str
    supplier_id: Optional[str] = None
    date: datetime
    currency: str
    note: Optional[str] = None
    lines: list[LineOut]
    model_config = {"from_attributes": True}
