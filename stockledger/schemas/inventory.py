from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel
from stockledger.services.costing import as_utc

class MovementOut(BaseModel):
    id: int
    date: datetime
    kind: str
    action: str
    product_id: str
    quantity: Decimal
    unit_price: Optional[Decimal] = None
    amount: Optional[Decimal] = None
    currency: str
    related_transaction_id: Optional[str] = None
    reverses_movement_id: Optional[int] = None
    resulting_balance: Decimal
    customer_id: Optional[str] = None
    supplier_id: Optional[str] = None

    @classmethod
    def from_row(cls, m) -> "MovementOut":
        return cls(
            id=m.id, date=as_utc(m.date), kind=m.kind.value, action=m.action.value,
            product_id=m.product_id, quantity=m.quantity, unit_price=m.unit_price,
            amount=m.amount, currency=m.currency,
            related_transaction_id=m.related_transaction_id,
            reverses_movement_id=m.reverses_movement_id,
            resulting_balance=m.resulting_balance,
            customer_id=m.customer_id, supplier_id=m.supplier_id,
        )

class MovementPage(BaseModel):
    items: list[MovementOut]
    next_cursor: Optional[str] = None

class StockLevelOut(BaseModel):
    product_id: str
    name: str
    unit: Optional[str] = None
    current_stock: Decimal
