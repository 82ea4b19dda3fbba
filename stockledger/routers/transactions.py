from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from stockledger.db import get_db
from stockledger.deps import require_auth, require_perm, INVENTORY_EDIT
from stockledger.errors import InsufficientStockError, LedgerError, NotFoundError
from stockledger.schemas.common import Ok
from stockledger.schemas.transactions import PurchaseIn, PurchaseOut, SaleIn, SaleOut
from stockledger.services import transactions as tx
from stockledger.services.transactions import LineSpec

router = APIRouter(tags=["transactions"])


def _lines(body: SaleIn | PurchaseIn) -> list[LineSpec]:
    return [LineSpec(l.product_id, l.quantity, l.unit_price, l.amount) for l in body.lines]


def _fail(db: Session, e: Exception):
    """Roll back the whole document and surface the domain error."""
    db.rollback()
    if isinstance(e, InsufficientStockError):
        raise HTTPException(409, detail={"message": "insufficient stock", "lines": e.as_detail()})
    if isinstance(e, NotFoundError):
        raise HTTPException(404, detail=str(e))
    raise HTTPException(400, detail=str(e))


# ── Sales ───────────────────────────────────────────────────────────────────

@router.post("/sales", response_model=SaleOut)
def create_sale(body: SaleIn, db: Session = Depends(get_db), sub: str = Depends(require_perm(INVENTORY_EDIT))):
    try:
        sale = tx.create_sale(db, date=body.date, currency=body.currency, lines=_lines(body),
                              customer_id=body.customer_id, note=body.note, actor=sub)
        db.commit()
    except (LedgerError, ValueError) as e:
        _fail(db, e)
    return SaleOut.model_validate(sale)


@router.get("/sales/{sale_id}", response_model=SaleOut)
def get_sale(sale_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    try:
        return SaleOut.model_validate(tx.get_sale(db, sale_id))
    except NotFoundError as e:
        raise HTTPException(404, detail=str(e))


@router.put("/sales/{sale_id}", response_model=SaleOut)
def update_sale(sale_id: str, body: SaleIn, db: Session = Depends(get_db), sub: str = Depends(require_perm(INVENTORY_EDIT))):
    try:
        sale = tx.update_sale(db, sale_id, date=body.date, currency=body.currency, lines=_lines(body),
                              customer_id=body.customer_id, note=body.note, actor=sub)
        db.commit()
    except (LedgerError, ValueError) as e:
        _fail(db, e)
    return SaleOut.model_validate(sale)


@router.delete("/sales/{sale_id}", response_model=Ok)
def delete_sale(sale_id: str, reason: str | None = None, db: Session = Depends(get_db),
                sub: str = Depends(require_perm(INVENTORY_EDIT))):
    try:
        tx.delete_sale(db, sale_id, actor=sub, reason=reason)
        db.commit()
    except (LedgerError, ValueError) as e:
        _fail(db, e)
    return Ok()


# ── Purchases ───────────────────────────────────────────────────────────────

@router.post("/purchases", response_model=PurchaseOut)
def create_purchase(body: PurchaseIn, db: Session = Depends(get_db), sub: str = Depends(require_perm(INVENTORY_EDIT))):
    try:
        purchase = tx.create_purchase(db, date=body.date, currency=body.currency, lines=_lines(body),
                                      supplier_id=body.supplier_id, note=body.note, actor=sub)
        db.commit()
    except (LedgerError, ValueError) as e:
        _fail(db, e)
    return PurchaseOut.model_validate(purchase)


@router.get("/purchases/{purchase_id}", response_model=PurchaseOut)
def get_purchase(purchase_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    try:
        return PurchaseOut.model_validate(tx.get_purchase(db, purchase_id))
    except NotFoundError as e:
        raise HTTPException(404, detail=str(e))


@router.put("/purchases/{purchase_id}", response_model=PurchaseOut)
def update_purchase(purchase_id: str, body: PurchaseIn, db: Session = Depends(get_db),
                    sub: str = Depends(require_perm(INVENTORY_EDIT))):
    try:
        purchase = tx.update_purchase(db, purchase_id, date=body.date, currency=body.currency,
                                      lines=_lines(body), supplier_id=body.supplier_id,
                                      note=body.note, actor=sub)
        db.commit()
    except (LedgerError, ValueError) as e:
        _fail(db, e)
    return PurchaseOut.model_validate(purchase)


@router.delete("/purchases/{purchase_id}", response_model=Ok)
def delete_purchase(purchase_id: str, reason: str | None = None, db: Session = Depends(get_db),
                    sub: str = Depends(require_perm(INVENTORY_EDIT))):
    try:
        tx.delete_purchase(db, purchase_id, actor=sub, reason=reason)
        db.commit()
    except (LedgerError, ValueError) as e:
        _fail(db, e)
    return Ok()
