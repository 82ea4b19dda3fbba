"""Daily rollups materialized from the ledger.

``rebuild_daily_aggregates`` replays the effective history through the FIFO
engine and upserts one row per (day, product, currency) and one per
(day, customer). Rows are keyed on those composite keys, so re-running a
rebuild replaces values instead of adding to them. Each day is committed on
its own: if a write fails midway, days already written stand and the next
rebuild fixes the rest.
"""
from __future__ import annotations

import logging
from datetime import date, timezone, tzinfo
from decimal import Decimal

from sqlalchemy.orm import Session

from stockledger.models.core import DailyCustomerAggregate, DailyProductAggregate
from stockledger.services import ledger
from stockledger.services.costing import (
    DailyCustomerRow, DailyProductRow, build_daily_fifo_aggregates, build_daily_fifo_by_customer,
)

logger = logging.getLogger(__name__)

_SCALE = Decimal("0.0001")  # matches the Numeric(14, 4) columns

PRODUCT_FIELDS = ("purchased_qty", "purchased_amount", "sold_qty", "sales_amount", "cogs", "profit")
CUSTOMER_FIELDS = ("sold_qty", "sales_amount", "cogs", "profit")


def _q(x: Decimal) -> Decimal:
    return Decimal(x).quantize(_SCALE)


def _in_range(col, date_from: date | None, date_to: date | None):
    conds = []
    if date_from:
        conds.append(col >= date_from)
    if date_to:
        conds.append(col <= date_to)
    return conds


def _upsert(db: Session, existing, model, key: dict, values: dict) -> None:
    # assigning an equal value leaves the row clean, so unchanged rows are not rewritten
    if existing is None:
        db.add(model(**key, **values))
        return
    for k, v in values.items():
        if getattr(existing, k) != v:
            setattr(existing, k, v)


def _write_day(db: Session, day: date, product_rows: list[DailyProductRow],
               customer_rows: list[DailyCustomerRow]) -> int:
    written = 0

    current = {
        (r.product_id, r.currency): r
        for r in db.query(DailyProductAggregate).filter(DailyProductAggregate.date_key == day)
    }
    seen = set()
    for row in product_rows:
        k = (row.product_id, row.currency)
        seen.add(k)
        _upsert(db, current.get(k), DailyProductAggregate,
                {"date_key": day, "product_id": row.product_id, "currency": row.currency},
                {f: _q(getattr(row, f)) for f in PRODUCT_FIELDS})
        written += 1
    for k, stale in current.items():
        if k not in seen:
            db.delete(stale)

    current_c = {
        r.customer_id: r
        for r in db.query(DailyCustomerAggregate).filter(DailyCustomerAggregate.date_key == day)
    }
    seen_c = set()
    for row in customer_rows:
        seen_c.add(row.customer_id)
        _upsert(db, current_c.get(row.customer_id), DailyCustomerAggregate,
                {"date_key": day, "customer_id": row.customer_id},
                {f: _q(getattr(row, f)) for f in CUSTOMER_FIELDS})
        written += 1
    for k, stale in current_c.items():
        if k not in seen_c:
            db.delete(stale)

    return written


def rebuild_daily_aggregates(db: Session, date_from: date | None = None, date_to: date | None = None,
                             tz: tzinfo = timezone.utc) -> int:
    """Recompute and upsert daily rollups for ``[date_from, date_to]``.

    Layers are primed from the whole history before ``date_from`` so the
    first day in range is costed against the right stock. Days in range
    that no longer have activity lose their rows. Returns rows written.
    """
    if date_from and date_to and date_to < date_from:
        raise ValueError("date_to must not be before date_from")

    records = ledger.history(db)
    by_product = build_daily_fifo_aggregates(records, tz, date_from, date_to)
    by_customer = build_daily_fifo_by_customer(records, tz, date_from, date_to)

    product_days: dict[date, list[DailyProductRow]] = {}
    for row in by_product.values():
        product_days.setdefault(row.date_key, []).append(row)
    customer_days: dict[date, list[DailyCustomerRow]] = {}
    for row in by_customer.values():
        customer_days.setdefault(row.date_key, []).append(row)

    stale_days = {
        d for (d,) in db.query(DailyProductAggregate.date_key)
        .filter(*_in_range(DailyProductAggregate.date_key, date_from, date_to)).distinct()
    } | {
        d for (d,) in db.query(DailyCustomerAggregate.date_key)
        .filter(*_in_range(DailyCustomerAggregate.date_key, date_from, date_to)).distinct()
    }
    days = sorted(set(product_days) | set(customer_days) | stale_days)

    written = 0
    for day in days:
        try:
            written += _write_day(db, day, product_days.get(day, []), customer_days.get(day, []))
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("daily rebuild failed at %s; %d row(s) already written", day, written)
            raise
    logger.info("daily rebuild %s..%s: %d day(s), %d row(s) written",
                date_from or "start", date_to or "end", len(days), written)
    return written


def read_daily_aggregates(db: Session, date_from: date | None = None, date_to: date | None = None,
                          product_id: str | None = None,
                          currency: str | None = None) -> list[DailyProductAggregate]:
    q = db.query(DailyProductAggregate).filter(
        *_in_range(DailyProductAggregate.date_key, date_from, date_to))
    if product_id:
        q = q.filter(DailyProductAggregate.product_id == product_id)
    if currency:
        q = q.filter(DailyProductAggregate.currency == currency)
    return q.order_by(DailyProductAggregate.date_key.asc(), DailyProductAggregate.product_id.asc(),
                      DailyProductAggregate.currency.asc()).all()


def read_daily_aggregates_by_customer(db: Session, date_from: date | None = None,
                                      date_to: date | None = None,
                                      customer_id: str | None = None) -> list[DailyCustomerAggregate]:
    q = db.query(DailyCustomerAggregate).filter(
        *_in_range(DailyCustomerAggregate.date_key, date_from, date_to))
    if customer_id:
        q = q.filter(DailyCustomerAggregate.customer_id == customer_id)
    return q.order_by(DailyCustomerAggregate.date_key.asc(),
                      DailyCustomerAggregate.customer_id.asc()).all()
