from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_validator
from stockledger.schemas.common import CurrencyLiteral

class ProductIn(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    description: Optional[str] = None
    unit: Optional[str] = None
    sale_price: Optional[Decimal] = Field(default=None, ge=0)
    sale_currency: Optional[CurrencyLiteral] = None

class ProductOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    unit: Optional[str] = None
    current_stock: Decimal
    sale_price: Optional[Decimal] = None
    sale_currency: Optional[str] = None

    model_config = {"from_attributes": True}

class CounterpartyIn(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    phone: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name is required")
        return v

class CounterpartyOut(CounterpartyIn):
    id: str
