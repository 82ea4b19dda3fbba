from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Sequence

from stockledger.services.costing import (
    PURCHASE, ZERO, MovementRecord, as_utc, effective_movements, movement_amount,
)

DEFAULT_WINDOWS = (30, 60, 90)


@dataclass
class RollingAverage:
    window_days: int
    avg_purchase_cost: Decimal | None = None  # None means no purchases in window
    avg_sale_price: Decimal | None = None


@dataclass
class _Sums:
    purchase_qty: Decimal = ZERO
    purchase_amount: Decimal = ZERO
    sale_qty: Decimal = ZERO
    sale_amount: Decimal = ZERO


def compute_rolling_averages(records: Iterable[MovementRecord], now: datetime,
                             windows: Sequence[int] = DEFAULT_WINDOWS) -> dict[str, dict[int, RollingAverage]]:
    """Trailing-window average unit cost and unit price per product.

    Independent of FIFO layering: a window only looks at movements dated in
    ``[now - d days, now]``. All windows are filled in one pass.
    """
    windows = sorted(set(int(d) for d in windows))
    if any(d <= 0 for d in windows):
        raise ValueError("window sizes must be positive")
    now = as_utc(now)
    starts = {d: now - timedelta(days=d) for d in windows}
    sums: dict[str, dict[int, _Sums]] = {}

    for m in effective_movements(records):
        per_window = sums.setdefault(m.product_id, {d: _Sums() for d in windows})
        ts = as_utc(m.date)
        if ts > now:
            continue
        amount = movement_amount(m)
        for d in windows:
            if ts < starts[d]:
                continue
            s = per_window[d]
            if m.kind == PURCHASE:
                s.purchase_qty += m.quantity
                s.purchase_amount += amount
            else:
                s.sale_qty += m.quantity
                s.sale_amount += amount

    result: dict[str, dict[int, RollingAverage]] = {}
    for pid, per_window in sums.items():
        result[pid] = {
            d: RollingAverage(
                window_days=d,
                avg_purchase_cost=s.purchase_amount / s.purchase_qty if s.purchase_qty > 0 else None,
                avg_sale_price=s.sale_amount / s.sale_qty if s.sale_qty > 0 else None,
            )
            for d, s in per_window.items()
        }
    return result
