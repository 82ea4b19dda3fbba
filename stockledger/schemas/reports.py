from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel

class CostLayerOut(BaseModel):
    remaining_quantity: Decimal
    unit_cost: Decimal

class ProductAggregateOut(BaseModel):
    product_id: str
    purchased_qty: Decimal
    purchased_amount: Decimal
    sold_qty: Decimal
    sales_amount: Decimal
    cogs: Decimal
    profit: Decimal
    uncosted_qty: Decimal
    layers: list[CostLayerOut] = []

class FifoReportOut(BaseModel):
    products: list[ProductAggregateOut]
    under_costed_sales: int
    unpriced_purchases: int

class RollingWindowOut(BaseModel):
    window_days: int
    avg_purchase_cost: Optional[Decimal] = None
    avg_sale_price: Optional[Decimal] = None

class RollingAveragesOut(BaseModel):
    product_id: str
    windows: list[RollingWindowOut]

class DailyAggregateOut(BaseModel):
    date_key: date
    product_id: str
    currency: str
    purchased_qty: Decimal
    purchased_amount: Decimal
    sold_qty: Decimal
    sales_amount: Decimal
    cogs: Decimal
    profit: Decimal
    model_config = {"from_attributes": True}

class DailyCustomerAggregateOut(BaseModel):
    date_key: date
    customer_id: str
    sold_qty: Decimal
    sales_amount: Decimal
    cogs: Decimal
    profit: Decimal
    model_config = {"from_attributes": True}

class RebuildOut(BaseModel):
    rebuilt: bool = True
    rows_written: int

class ABCRowOut(BaseModel):
    product_id: str
    profit: Decimal
    share_pct: float
    cumulative_pct: float
    abc_class: str

class DepletionRowOut(BaseModel):
    product_id: str
    current_stock: Decimal
    sold_in_window: Decimal
    daily_rate: float
    days_left: Optional[float] = None  # null = no trailing sales, no depletion risk
    no_risk: bool = False

class DormantRowOut(BaseModel):
    product_id: str
    last_sale_at: Optional[datetime] = None
    days_since_sale: Optional[int] = None

class SellerRowOut(BaseModel):
    product_id: str
    sold_qty: Decimal
    sales_amount: Decimal

class TurnoverRowOut(BaseModel):
    product_id: str
    beginning_stock: Decimal
    ending_stock: Decimal
    average_stock: Decimal
    sold_qty: Decimal
    turnover: Optional[float] = None
    days_on_hand: Optional[float] = None
