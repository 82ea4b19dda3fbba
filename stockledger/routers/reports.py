import logging
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from stockledger.config import settings
from stockledger.db import get_db
from stockledger.deps import require_perm, REPORTS_VIEW, REPORTS_REBUILD
from stockledger.models.core import Product
from stockledger.schemas.reports import (
    ABCRowOut, CostLayerOut, DailyAggregateOut, DailyCustomerAggregateOut, DepletionRowOut,
    DormantRowOut, FifoReportOut, ProductAggregateOut, RebuildOut, RollingAveragesOut,
    RollingWindowOut, SellerRowOut, TurnoverRowOut,
)
from stockledger.services import analytics, ledger, materializer
from stockledger.services.averages import compute_rolling_averages
from stockledger.services.cache import snapshots
from stockledger.services.costing import compute_fifo_aggregates

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])


def _history(db: Session, product_id: str | None = None):
    return snapshots.get_or_compute(("history", product_id), lambda: ledger.history(db, product_id))


def _now(as_of: datetime | None) -> datetime:
    return as_of or datetime.now(timezone.utc)


def _fifo(db: Session, date_from: datetime | None = None, date_to: datetime | None = None):
    # full history, so layers bought before the window still cost sales inside it
    return compute_fifo_aggregates(_history(db), date_from, date_to)


@router.get("/fifo", response_model=FifoReportOut)
def fifo(date_from: datetime | None = None, date_to: datetime | None = None,
         product_id: str | None = None, db: Session = Depends(get_db),
         sub: str = Depends(require_perm(REPORTS_VIEW))):
    result = _fifo(db, date_from, date_to)
    products = []
    for pid in sorted(result.aggregates):
        if product_id and pid != product_id:
            continue
        a = result.aggregates[pid]
        products.append(ProductAggregateOut(
            product_id=pid,
            purchased_qty=a.purchased_qty, purchased_amount=a.purchased_amount,
            sold_qty=a.sold_qty, sales_amount=a.sales_amount,
            cogs=a.cogs, profit=a.profit, uncosted_qty=a.uncosted_qty,
            layers=[CostLayerOut(remaining_quantity=l.remaining_quantity, unit_cost=l.unit_cost)
                    for l in result.layers.get(pid, [])],
        ))
    return FifoReportOut(products=products, under_costed_sales=result.under_costed_sales,
                         unpriced_purchases=result.unpriced_purchases)


@router.get("/rolling_averages", response_model=list[RollingAveragesOut])
def rolling_averages(product_id: str | None = None, as_of: datetime | None = None,
                     windows: list[int] | None = Query(default=None),
                     db: Session = Depends(get_db), sub: str = Depends(require_perm(REPORTS_VIEW))):
    try:
        result = compute_rolling_averages(_history(db, product_id), _now(as_of),
                                          windows or settings.ROLLING_WINDOWS)
    except ValueError as e:
        raise HTTPException(400, detail=str(e))
    return [
        RollingAveragesOut(product_id=pid, windows=[
            RollingWindowOut(window_days=d, avg_purchase_cost=r.avg_purchase_cost,
                             avg_sale_price=r.avg_sale_price)
            for d, r in sorted(per_window.items())
        ])
        for pid, per_window in sorted(result.items())
    ]


# ── Daily rollups ───────────────────────────────────────────────────────────

@router.post("/daily/rebuild", response_model=RebuildOut)
def rebuild_daily(date_from: date | None = None, date_to: date | None = None,
                  db: Session = Depends(get_db), sub: str = Depends(require_perm(REPORTS_REBUILD))):
    # a rebuild doubles as a resync point for the live reports
    snapshots.invalidate()
    try:
        written = materializer.rebuild_daily_aggregates(db, date_from, date_to, tz=ZoneInfo(settings.TZ))
    except ValueError as e:
        raise HTTPException(400, detail=str(e))
    logger.info("daily rollups rebuilt by %s", sub)
    return RebuildOut(rows_written=written)


@router.get("/daily", response_model=list[DailyAggregateOut])
def daily(date_from: date | None = None, date_to: date | None = None, product_id: str | None = None,
          currency: str | None = None, db: Session = Depends(get_db),
          sub: str = Depends(require_perm(REPORTS_VIEW))):
    rows = materializer.read_daily_aggregates(db, date_from, date_to, product_id, currency)
    return [DailyAggregateOut.model_validate(r) for r in rows]


@router.get("/daily/customers", response_model=list[DailyCustomerAggregateOut])
def daily_customers(date_from: date | None = None, date_to: date | None = None,
                    customer_id: str | None = None, db: Session = Depends(get_db),
                    sub: str = Depends(require_perm(REPORTS_VIEW))):
    rows = materializer.read_daily_aggregates_by_customer(db, date_from, date_to, customer_id)
    return [DailyCustomerAggregateOut.model_validate(r) for r in rows]


# ── Derived analytics ───────────────────────────────────────────────────────

@router.get("/abc", response_model=list[ABCRowOut])
def abc(date_from: datetime | None = None, date_to: datetime | None = None,
        a_threshold: float = settings.ABC_A_THRESHOLD, b_threshold: float = settings.ABC_B_THRESHOLD,
        db: Session = Depends(get_db), sub: str = Depends(require_perm(REPORTS_VIEW))):
    try:
        rows = analytics.classify_abc(_fifo(db, date_from, date_to).aggregates.values(),
                                      a_threshold, b_threshold)
    except ValueError as e:
        raise HTTPException(400, detail=str(e))
    return [ABCRowOut(product_id=r.product_id, profit=r.profit, share_pct=r.share_pct,
                      cumulative_pct=r.cumulative_pct, abc_class=r.abc_class.value) for r in rows]


@router.get("/depletion", response_model=list[DepletionRowOut])
def depletion(window_days: int = Query(default=settings.DEPLETION_WINDOW_DAYS, ge=1),
              threshold_days: float = settings.DEPLETION_THRESHOLD_DAYS, include_all: bool = False,
              as_of: datetime | None = None, db: Session = Depends(get_db),
              sub: str = Depends(require_perm(REPORTS_VIEW))):
    # include_all lists every product, including those with no trailing sales
    rows = analytics.forecast_depletion(ledger.stock_levels(db), _history(db), _now(as_of),
                                        window_days, None if include_all else threshold_days)
    out = []
    for r in rows:
        no_risk = r.days_left == float("inf")
        out.append(DepletionRowOut(product_id=r.product_id, current_stock=r.current_stock,
                                   sold_in_window=r.sold_in_window, daily_rate=r.daily_rate,
                                   days_left=None if no_risk else r.days_left, no_risk=no_risk))
    return out


@router.get("/dormant", response_model=list[DormantRowOut])
def dormant(days: int = Query(default=settings.DORMANT_DAYS, ge=1), as_of: datetime | None = None,
            db: Session = Depends(get_db), sub: str = Depends(require_perm(REPORTS_VIEW))):
    product_ids = [pid for (pid,) in db.query(Product.id).filter(Product.deleted_at.is_(None))]
    rows = analytics.find_dormant_products(product_ids, _history(db), _now(as_of), days)
    return [DormantRowOut(product_id=r.product_id, last_sale_at=r.last_sale_at,
                          days_since_sale=r.days_since_sale) for r in rows]


@router.get("/fastest", response_model=list[SellerRowOut])
def fastest(window_days: int = Query(default=30, ge=1), limit: int = Query(default=10, ge=1, le=100),
            as_of: datetime | None = None, db: Session = Depends(get_db),
            sub: str = Depends(require_perm(REPORTS_VIEW))):
    rows = analytics.fastest_selling(_history(db), _now(as_of), window_days, limit)
    return [SellerRowOut(product_id=r.product_id, sold_qty=r.sold_qty, sales_amount=r.sales_amount)
            for r in rows]


@router.get("/turnover", response_model=list[TurnoverRowOut])
def turnover(date_from: datetime, date_to: datetime, db: Session = Depends(get_db),
             sub: str = Depends(require_perm(REPORTS_VIEW))):
    try:
        rows = analytics.compute_turnover(ledger.stock_levels(db), _history(db), date_from, date_to)
    except ValueError as e:
        raise HTTPException(400, detail=str(e))
    return [TurnoverRowOut(**vars(r)) for r in rows]
