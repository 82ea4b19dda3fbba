"""FIFO cost engine.

Pure functions over :class:`MovementRecord` sequences. Nothing here touches the
database: the ledger turns rows into records, these functions turn records into
aggregates. Replaying the same records always yields the same numbers, which is
what makes daily rebuilds idempotent.
"""
from __future__ import annotations

import logging
import warnings
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from decimal import Decimal
from typing import Iterable

from stockledger.errors import UnderspecifiedCostWarning

logger = logging.getLogger(__name__)

PURCHASE = "purchase"
SALE = "sale"
APPLY = "apply"
REVERT = "revert"

ZERO = Decimal("0")
LAYER_EPSILON = Decimal("0.0000001")
UNKNOWN_CUSTOMER = "unknown"


@dataclass(frozen=True)
class MovementRecord:
    """One ledger movement as seen by the engine.

    ``quantity`` is always positive; ``kind`` says which way stock moved and
    ``action`` whether this applies an event or cancels an earlier one.
    """
    id: int
    date: datetime
    kind: str
    product_id: str
    quantity: Decimal
    currency: str
    unit_price: Decimal | None = None
    amount: Decimal | None = None
    action: str = APPLY
    related_transaction_id: str | None = None
    reverses_movement_id: int | None = None
    customer_id: str | None = None
    supplier_id: str | None = None

    def __post_init__(self):
        if self.kind not in (PURCHASE, SALE):
            raise ValueError(f"unknown movement kind: {self.kind!r}")
        if self.action not in (APPLY, REVERT):
            raise ValueError(f"unknown movement action: {self.action!r}")
        if not self.product_id:
            raise ValueError("movement requires a product_id")
        if self.date is None:
            raise ValueError("movement requires a date")
        if self.quantity is None or self.quantity < 0:
            raise ValueError(f"movement quantity must be >= 0, got {self.quantity!r}")


# ── Movement variants ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class PricedPurchase:
    record: MovementRecord
    unit_cost: Decimal


@dataclass(frozen=True)
class UnpricedPurchase:
    record: MovementRecord


@dataclass(frozen=True)
class SaleShipment:
    record: MovementRecord
    revenue: Decimal


def classify(m: MovementRecord) -> PricedPurchase | UnpricedPurchase | SaleShipment:
    if m.kind == SALE:
        return SaleShipment(m, movement_amount(m))
    if m.unit_price is not None:
        return PricedPurchase(m, m.unit_price)
    if m.amount is not None and m.quantity > 0:
        return PricedPurchase(m, m.amount / m.quantity)
    return UnpricedPurchase(m)


def movement_amount(m: MovementRecord) -> Decimal:
    if m.amount is not None:
        return m.amount
    if m.unit_price is not None:
        return m.unit_price * m.quantity
    return ZERO


# ── Layers & aggregates ─────────────────────────────────────────────────────

@dataclass
class CostLayer:
    remaining_quantity: Decimal
    unit_cost: Decimal


@dataclass
class ProductAggregate:
    product_id: str
    purchased_qty: Decimal = ZERO
    purchased_amount: Decimal = ZERO
    sold_qty: Decimal = ZERO
    sales_amount: Decimal = ZERO
    cogs: Decimal = ZERO
    profit: Decimal = ZERO
    uncosted_qty: Decimal = ZERO  # sold with no layer left to cost it


@dataclass
class DailyProductRow:
    date_key: date
    product_id: str
    currency: str
    purchased_qty: Decimal = ZERO
    purchased_amount: Decimal = ZERO
    sold_qty: Decimal = ZERO
    sales_amount: Decimal = ZERO
    cogs: Decimal = ZERO
    profit: Decimal = ZERO


@dataclass
class DailyCustomerRow:
    date_key: date
    customer_id: str
    sold_qty: Decimal = ZERO
    sales_amount: Decimal = ZERO
    cogs: Decimal = ZERO
    profit: Decimal = ZERO


@dataclass
class FifoResult:
    aggregates: dict[str, ProductAggregate]
    layers: dict[str, list[CostLayer]]
    under_costed_sales: int = 0
    unpriced_purchases: int = 0


@dataclass
class _LayerBook:
    """Per-product FIFO queues shared by every builder."""
    queues: dict[str, deque] = field(default_factory=dict)
    under_costed_sales: int = 0
    unpriced_purchases: int = 0

    def receive(self, product_id: str, quantity: Decimal, unit_cost: Decimal) -> None:
        if quantity <= 0:
            return
        self.queues.setdefault(product_id, deque()).append(CostLayer(quantity, unit_cost))

    def consume(self, product_id: str, quantity: Decimal, count: bool = True) -> tuple[Decimal, Decimal]:
        """Take ``quantity`` oldest-first. Returns (cogs, uncosted remainder).

        With ``count=False`` a shortfall is not added to ``under_costed_sales``.
        """
        layers = self.queues.setdefault(product_id, deque())
        remaining = quantity
        cogs = ZERO
        while remaining > 0 and layers:
            layer = layers[0]
            take = min(layer.remaining_quantity, remaining)
            cogs += take * layer.unit_cost
            layer.remaining_quantity -= take
            remaining -= take
            if layer.remaining_quantity <= LAYER_EPSILON:
                layers.popleft()
        if remaining > 0 and count:
            self.under_costed_sales += 1
        return cogs, remaining

    def snapshot(self) -> dict[str, list[CostLayer]]:
        return {
            pid: [CostLayer(l.remaining_quantity, l.unit_cost) for l in q]
            for pid, q in self.queues.items()
        }

    def report_gaps(self, where: str) -> None:
        if self.unpriced_purchases:
            warnings.warn(
                f"{self.unpriced_purchases} purchase(s) without unit cost were not layered",
                UnderspecifiedCostWarning,
                stacklevel=3,
            )
            logger.warning("%s: %d unpriced purchase(s) excluded from cost layers",
                           where, self.unpriced_purchases)
        if self.under_costed_sales:
            logger.warning("%s: %d sale(s) exceeded available FIFO layers; remainder costed at zero",
                           where, self.under_costed_sales)


# ── Normalization ───────────────────────────────────────────────────────────

def effective_movements(records: Iterable[MovementRecord]) -> list[MovementRecord]:
    """Drop reverts and the applies they cancel; sort by (date, id).

    A revert normally names the apply it cancels. Older reverts without that
    pointer cancel the earliest still-active apply of the same transaction,
    product, kind and quantity.
    """
    records = list(records)
    cancelled: set[int] = set()
    loose: list[MovementRecord] = []
    for m in records:
        if m.action != REVERT:
            continue
        if m.reverses_movement_id is not None:
            cancelled.add(m.reverses_movement_id)
        else:
            loose.append(m)

    if loose:
        applies = sorted((m for m in records if m.action == APPLY), key=_order_key)
        for r in sorted(loose, key=_order_key):
            for a in applies:
                if (a.id not in cancelled
                        and a.related_transaction_id == r.related_transaction_id
                        and a.product_id == r.product_id
                        and a.kind == r.kind
                        and a.quantity == r.quantity):
                    cancelled.add(a.id)
                    break

    kept = [m for m in records if m.action == APPLY and m.id not in cancelled]
    kept.sort(key=_order_key)
    return kept


def _order_key(m: MovementRecord):
    return (as_utc(m.date), m.id)


def as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def date_key(dt: datetime, tz: tzinfo = timezone.utc) -> date:
    return as_utc(dt).astimezone(tz).date()


# ── Builders ────────────────────────────────────────────────────────────────

def compute_fifo_aggregates(records: Iterable[MovementRecord], date_from: datetime | None = None,
                            date_to: datetime | None = None) -> FifoResult:
    """COGS and profit per product over the effective movement history.

    With a window, totals cover only movements dated inside it. Earlier
    movements still build and drain layers, replay stops after ``date_to``
    and the returned layers are those left at that point. Cancellation is
    resolved over the full history first, so a revert dated after the
    window still cancels the apply inside it.
    """
    lo = as_utc(date_from) if date_from else None
    hi = as_utc(date_to) if date_to else None
    book = _LayerBook()
    agg: dict[str, ProductAggregate] = {}

    for m in effective_movements(records):
        ts = as_utc(m.date)
        if hi and ts > hi:
            break
        inside = lo is None or ts >= lo
        v = classify(m)
        if not inside:
            if isinstance(v, PricedPurchase):
                book.receive(m.product_id, m.quantity, v.unit_cost)
            elif isinstance(v, SaleShipment) and m.quantity > 0:
                book.consume(m.product_id, m.quantity, count=False)
            continue

        a = agg.get(m.product_id)
        if a is None:
            a = agg[m.product_id] = ProductAggregate(m.product_id)
        if isinstance(v, PricedPurchase):
            book.receive(m.product_id, m.quantity, v.unit_cost)
            a.purchased_qty += m.quantity
            a.purchased_amount += v.unit_cost * m.quantity
        elif isinstance(v, UnpricedPurchase):
            book.unpriced_purchases += 1
            a.purchased_qty += m.quantity
            a.purchased_amount += m.amount or ZERO
        elif m.quantity > 0:
            cogs, uncosted = book.consume(m.product_id, m.quantity)
            a.cogs += cogs
            a.uncosted_qty += uncosted
            a.sold_qty += m.quantity
            a.sales_amount += v.revenue

    for a in agg.values():
        a.profit = a.sales_amount - a.cogs
    book.report_gaps("fifo")
    return FifoResult(
        aggregates=agg,
        layers=book.snapshot(),
        under_costed_sales=book.under_costed_sales,
        unpriced_purchases=book.unpriced_purchases,
    )


def build_daily_fifo_aggregates(records: Iterable[MovementRecord], tz: tzinfo = timezone.utc,
                                date_from: date | None = None,
                                date_to: date | None = None) -> dict[tuple, DailyProductRow]:
    """Per (date_key, product_id, currency) rollup.

    Movements dated before ``date_from`` still build and drain layers; they
    just do not produce rows.
    """
    book = _LayerBook()
    daily: dict[tuple, DailyProductRow] = {}

    for m in effective_movements(records):
        day = date_key(m.date, tz)
        emit = (date_from is None or day >= date_from) and (date_to is None or day <= date_to)
        row = None
        if emit:
            key = (day, m.product_id, m.currency)
            row = daily.get(key)
            if row is None:
                row = daily[key] = DailyProductRow(day, m.product_id, m.currency)

        v = classify(m)
        if isinstance(v, PricedPurchase):
            book.receive(m.product_id, m.quantity, v.unit_cost)
            if row:
                row.purchased_qty += m.quantity
                row.purchased_amount += v.unit_cost * m.quantity
        elif isinstance(v, UnpricedPurchase):
            book.unpriced_purchases += 1
            if row:
                row.purchased_qty += m.quantity
                row.purchased_amount += m.amount or ZERO
        elif m.quantity > 0:
            cogs, _ = book.consume(m.product_id, m.quantity)
            if row:
                row.sold_qty += m.quantity
                row.sales_amount += v.revenue
                row.cogs += cogs

    for row in daily.values():
        row.profit = row.sales_amount - row.cogs
    book.report_gaps("daily fifo")
    return daily


def build_daily_fifo_by_customer(records: Iterable[MovementRecord], tz: tzinfo = timezone.utc,
                                 date_from: date | None = None,
                                 date_to: date | None = None) -> dict[tuple, DailyCustomerRow]:
    """Per (date_key, customer_id) sale rollup. Purchases are not customer
    scoped: they feed the same global per-product queues."""
    book = _LayerBook()
    daily: dict[tuple, DailyCustomerRow] = {}

    for m in effective_movements(records):
        v = classify(m)
        if isinstance(v, PricedPurchase):
            book.receive(m.product_id, m.quantity, v.unit_cost)
            continue
        if isinstance(v, UnpricedPurchase):
            book.unpriced_purchases += 1
            continue
        if m.quantity <= 0:
            continue
        cogs, _ = book.consume(m.product_id, m.quantity)
        day = date_key(m.date, tz)
        if (date_from and day < date_from) or (date_to and day > date_to):
            continue
        customer = m.customer_id or UNKNOWN_CUSTOMER
        row = daily.get((day, customer))
        if row is None:
            row = daily[(day, customer)] = DailyCustomerRow(day, customer)
        row.sold_qty += m.quantity
        row.sales_amount += v.revenue
        row.cogs += cogs

    for row in daily.values():
        row.profit = row.sales_amount - row.cogs
    book.report_gaps("daily fifo by customer")
    return daily
