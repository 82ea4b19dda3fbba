# stockledger/routers/inventory.py
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from stockledger.config import settings
from stockledger.db import get_db
from stockledger.deps import require_auth
from stockledger.errors import ProductNotFoundError
from stockledger.models.core import Product
from stockledger.schemas.common import MovementKindLiteral
from stockledger.schemas.inventory import MovementOut, MovementPage, StockLevelOut
from stockledger.services import ledger

router = APIRouter(prefix="/inventory", tags=["inventory"])


@router.get("/movements", response_model=MovementPage)
def list_movements(
    product_id: str | None = None,
    kind: MovementKindLiteral | None = None,
    customer_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = Query(default=settings.MOVEMENTS_PAGE_SIZE, ge=1, le=500),
    cursor: str | None = None,
    db: Session = Depends(get_db),
    sub: str = Depends(require_auth),
):
    """Raw ledger, newest first. Reverts are included; pass ``next_cursor``
    back as ``cursor`` to continue."""
    try:
        rows, next_cursor = ledger.page(
            db, limit=limit, cursor=cursor, product_id=product_id, kind=kind,
            customer_id=customer_id, date_from=date_from, date_to=date_to,
        )
    except ValueError as e:
        raise HTTPException(400, detail=str(e))
    return MovementPage(items=[MovementOut.from_row(m) for m in rows], next_cursor=next_cursor)


@router.get("/stock", response_model=list[StockLevelOut])
def stock(include_deleted: bool = False, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    q = db.query(Product)
    if not include_deleted:
        q = q.filter(Product.deleted_at.is_(None))
    return [
        StockLevelOut(product_id=p.id, name=p.name, unit=p.unit, current_stock=p.current_stock or 0)
        for p in q.order_by(Product.name.asc()).all()
    ]


@router.get("/stock/{product_id}/verify")
def verify_stock(product_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    # replays the ledger and compares every stored running balance
    try:
        stock_now = ledger.current_stock(db, product_id)
    except ProductNotFoundError as e:
        raise HTTPException(404, detail=str(e))
    mismatched = ledger.verify_balances(db, product_id)
    return {"product_id": product_id, "current_stock": str(stock_now), "ok": not mismatched,
            "mismatched_movement_ids": mismatched}
