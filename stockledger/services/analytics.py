"""Decision-support signals built on top of FIFO aggregates and the ledger.

Provides:
- ABC classification by profit contribution
- Stock-depletion forecast (days until stock runs out)
- Dormant product detection
- Fastest-selling products
- Stock turnover and days of inventory on hand
"""
from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Iterable, Mapping

from stockledger.services.costing import (
    PURCHASE, SALE, ZERO, MovementRecord, ProductAggregate, as_utc, effective_movements,
    movement_amount,
)


class ABCClass(str, Enum):
    A = "A"
    B = "B"
    C = "C"


@dataclass
class ABCRow:
    product_id: str
    profit: Decimal
    share_pct: float
    cumulative_pct: float
    abc_class: ABCClass


@dataclass
class DepletionRow:
    product_id: str
    current_stock: Decimal
    sold_in_window: Decimal
    daily_rate: float
    days_left: float  # math.inf when nothing sold in the window


@dataclass
class DormantRow:
    product_id: str
    last_sale_at: datetime | None
    days_since_sale: int | None


@dataclass
class SellerRow:
    product_id: str
    sold_qty: Decimal
    sales_amount: Decimal


@dataclass
class TurnoverRow:
    product_id: str
    beginning_stock: Decimal
    ending_stock: Decimal
    average_stock: Decimal
    sold_qty: Decimal
    turnover: float | None
    days_on_hand: float | None


def classify_abc(aggregates: Iterable[ProductAggregate], a_threshold: float = 80.0,
                 b_threshold: float = 95.0) -> list[ABCRow]:
    """Rank products by profit and bucket them by cumulative share.

    A while cumulative share <= ``a_threshold``, B while <= ``b_threshold``,
    C afterwards. Shares are taken of total positive profit, so the
    cumulative column never decreases and the last profitable row reads 100.
    Products with zero or negative profit trail the list as C. Returns an
    empty list when net profit across all products is not positive.
    """
    if not 0 < a_threshold <= b_threshold <= 100:
        raise ValueError("thresholds must satisfy 0 < a <= b <= 100")
    rows = sorted(aggregates, key=lambda a: (-a.profit, a.product_id))
    if sum((a.profit for a in rows), ZERO) <= 0:
        return []
    total = sum((a.profit for a in rows if a.profit > 0), ZERO)

    out: list[ABCRow] = []
    cumulative = ZERO
    for a in rows:
        if a.profit > 0:
            cumulative += a.profit
            cum_pct = float(cumulative / total * 100)
            if cum_pct <= a_threshold:
                cls = ABCClass.A
            elif cum_pct <= b_threshold:
                cls = ABCClass.B
            else:
                cls = ABCClass.C
        else:
            cum_pct = 100.0
            cls = ABCClass.C
        out.append(ABCRow(
            product_id=a.product_id,
            profit=a.profit,
            share_pct=float(a.profit / total * 100),
            cumulative_pct=cum_pct,
            abc_class=cls,
        ))
    return out


def _sold_in_window(records: Iterable[MovementRecord], now: datetime, days: int) -> dict[str, Decimal]:
    now = as_utc(now)
    start = now - timedelta(days=days)
    sold: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for m in effective_movements(records):
        ts = as_utc(m.date)
        if m.kind == SALE and start <= ts <= now:
            sold[m.product_id] += m.quantity
    return sold


def forecast_depletion(stocks: Mapping[str, Decimal], records: Iterable[MovementRecord], now: datetime,
                       window_days: int = 30, threshold_days: float | None = None) -> list[DepletionRow]:
    """Days until each product's stock runs out at its trailing sales rate.

    ``days_left = stock / (sold_in_window / window_days)``; no trailing sales
    means no depletion risk (``math.inf``). Rows above ``threshold_days`` are
    dropped; the rest are sorted most urgent first.
    """
    if window_days <= 0:
        raise ValueError("window_days must be positive")
    sold = _sold_in_window(records, now, window_days)
    out: list[DepletionRow] = []
    for pid, stock in stocks.items():
        qty = sold.get(pid, ZERO)
        rate = float(qty) / window_days
        days_left = float(stock) / rate if rate > 0 else math.inf
        if threshold_days is not None and days_left > threshold_days:
            continue
        out.append(DepletionRow(pid, stock, qty, rate, days_left))
    out.sort(key=lambda r: (r.days_left, r.product_id))
    return out


def find_dormant_products(product_ids: Iterable[str], records: Iterable[MovementRecord], now: datetime,
                          days: int) -> list[DormantRow]:
    """Products whose latest effective sale is older than ``days`` (or absent)."""
    now = as_utc(now)
    last_sale: dict[str, datetime] = {}
    for m in effective_movements(records):
        if m.kind == SALE:
            ts = as_utc(m.date)
            if ts <= now and (m.product_id not in last_sale or ts > last_sale[m.product_id]):
                last_sale[m.product_id] = ts

    cutoff = now - timedelta(days=days)
    out: list[DormantRow] = []
    for pid in product_ids:
        ts = last_sale.get(pid)
        if ts is None:
            out.append(DormantRow(pid, None, None))
        elif ts < cutoff:
            out.append(DormantRow(pid, ts, (now - ts).days))
    # never-sold first, then oldest sale first
    out.sort(key=lambda r: (r.last_sale_at is not None, r.last_sale_at or now, r.product_id))
    return out


def fastest_selling(records: Iterable[MovementRecord], now: datetime, window_days: int = 30,
                    limit: int = 10) -> list[SellerRow]:
    now = as_utc(now)
    start = now - timedelta(days=window_days)
    qty: dict[str, Decimal] = defaultdict(lambda: ZERO)
    amount: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for m in effective_movements(records):
        ts = as_utc(m.date)
        if m.kind == SALE and start <= ts <= now:
            qty[m.product_id] += m.quantity
            amount[m.product_id] += movement_amount(m)
    rows = [SellerRow(pid, q, amount[pid]) for pid, q in qty.items() if q > 0]
    rows.sort(key=lambda r: (-r.sold_qty, r.product_id))
    return rows[:limit]


def compute_turnover(stocks: Mapping[str, Decimal], records: Iterable[MovementRecord],
                     date_from: datetime, date_to: datetime) -> list[TurnoverRow]:
    """Turnover and days-on-hand over ``[date_from, date_to]``.

    ``stocks`` are current levels. Ending stock is current stock minus the net
    effect of movements after ``date_to``; beginning stock backs out the
    range's purchases and sales from the ending figure.
    """
    lo, hi = as_utc(date_from), as_utc(date_to)
    if hi < lo:
        raise ValueError("date_to must not be before date_from")
    days = max((hi - lo).total_seconds() / 86400, 1.0)

    purchased: dict[str, Decimal] = defaultdict(lambda: ZERO)
    sold: dict[str, Decimal] = defaultdict(lambda: ZERO)
    after: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for m in effective_movements(records):
        ts = as_utc(m.date)
        signed = m.quantity if m.kind == PURCHASE else -m.quantity
        if ts > hi:
            after[m.product_id] += signed
        elif ts >= lo:
            if m.kind == PURCHASE:
                purchased[m.product_id] += m.quantity
            else:
                sold[m.product_id] += m.quantity

    out: list[TurnoverRow] = []
    for pid, stock in stocks.items():
        ending = stock - after[pid]
        beginning = ending - purchased[pid] + sold[pid]
        average = (beginning + ending) / 2
        qty = sold[pid]
        turnover = float(qty / average) if average > 0 else None
        daily = float(qty) / days
        days_on_hand = float(average) / daily if daily > 0 else None
        out.append(TurnoverRow(pid, beginning, ending, average, qty, turnover, days_on_hand))
    out.sort(key=lambda r: (r.turnover is None, -(r.turnover or 0), r.product_id))
    return out
