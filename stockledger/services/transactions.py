"""Sales and purchases: the documents that drive the ledger.

create -> apply movements
edit   -> revert the document's active movements, then apply the new lines
delete -> revert only (the document is soft-deleted)

Sales are checked for sufficient stock before any movement is applied; on
an edit the check runs after the old lines have been reverted so the sale's
own previous quantity counts as available. Nothing here commits: on error
the caller rolls back and the document is left exactly as it was.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from stockledger.errors import CounterpartyNotFoundError, TransactionNotFoundError
from stockledger.models.core import (
    Customer, MovementKind, Purchase, PurchaseLine, Sale, SaleLine, Supplier,
)
from stockledger.services import ledger
from stockledger.services.costing import as_utc
from stockledger.util.audit import audit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineSpec:
    product_id: str
    quantity: Decimal
    unit_price: Decimal | None = None
    amount: Decimal | None = None

    def __post_init__(self):
        if not self.product_id:
            raise ValueError("line requires a product_id")
        if self.quantity is None or self.quantity <= 0:
            raise ValueError(f"line quantity must be positive, got {self.quantity!r}")


def _lines(lines: Iterable[LineSpec]) -> list[LineSpec]:
    lines = list(lines)
    if not lines:
        raise ValueError("a transaction needs at least one line")
    return lines


def _doc(t: Sale | Purchase) -> dict:
    party = {"customer_id": t.customer_id} if isinstance(t, Sale) else {"supplier_id": t.supplier_id}
    return {
        **party,
        "date": t.date,
        "currency": t.currency,
        "note": t.note,
        "lines": [
            {"product_id": l.product_id, "quantity": l.quantity,
             "unit_price": l.unit_price, "amount": l.amount}
            for l in t.lines
        ],
    }


def _require(db: Session, model, ident: str | None, kind: str) -> None:
    if ident is not None and db.get(model, ident) is None:
        raise CounterpartyNotFoundError(kind, ident)


# ── Sales ───────────────────────────────────────────────────────────────────

def _apply_sale(db: Session, sale: Sale) -> None:
    for line in sale.lines:
        ledger.record_movement(
            db, line.product_id, -line.quantity, sale.date,
            currency=sale.currency,
            kind=MovementKind.SALE,
            unit_price=line.unit_price,
            amount=line.amount,
            related_transaction_id=sale.id,
            customer_id=sale.customer_id,
        )


def get_sale(db: Session, sale_id: str) -> Sale:
    sale = db.get(Sale, sale_id)
    if sale is None or sale.deleted_at is not None:
        raise TransactionNotFoundError("sale", sale_id)
    return sale


def create_sale(db: Session, *, date: datetime, currency: str, lines: Iterable[LineSpec],
                customer_id: str | None = None, note: str | None = None,
                actor: str | None = None) -> Sale:
    lines = _lines(lines)
    _require(db, Customer, customer_id, "customer")
    ledger.check_sufficient_stock(db, [(l.product_id, l.quantity) for l in lines])

    sale = Sale(customer_id=customer_id, date=as_utc(date), currency=currency, note=note)
    sale.lines = [
        SaleLine(position=i, product_id=l.product_id, quantity=l.quantity,
                 unit_price=l.unit_price, amount=l.amount)
        for i, l in enumerate(lines)
    ]
    db.add(sale)
    db.flush()
    _apply_sale(db, sale)
    audit(db, actor, "sale", sale.id, "CREATE", after=_doc(sale))
    logger.info("sale %s created with %d line(s)", sale.id, len(lines))
    return sale


def update_sale(db: Session, sale_id: str, *, date: datetime, currency: str, lines: Iterable[LineSpec],
                customer_id: str | None = None, note: str | None = None,
                actor: str | None = None) -> Sale:
    lines = _lines(lines)
    sale = get_sale(db, sale_id)
    _require(db, Customer, customer_id, "customer")
    before = _doc(sale)

    ledger.reverse_movements_for(db, sale.id)
    ledger.check_sufficient_stock(db, [(l.product_id, l.quantity) for l in lines])

    sale.customer_id = customer_id
    sale.date = as_utc(date)
    sale.currency = currency
    sale.note = note
    sale.lines = [
        SaleLine(position=i, product_id=l.product_id, quantity=l.quantity,
                 unit_price=l.unit_price, amount=l.amount)
        for i, l in enumerate(lines)
    ]
    db.flush()
    _apply_sale(db, sale)
    audit(db, actor, "sale", sale.id, "UPDATE", before=before, after=_doc(sale))
    logger.info("sale %s edited", sale.id)
    return sale


def delete_sale(db: Session, sale_id: str, *, actor: str | None = None,
                reason: str | None = None) -> Sale:
    sale = get_sale(db, sale_id)
    ledger.reverse_movements_for(db, sale.id)
    sale.deleted_at = datetime.now(timezone.utc)
    audit(db, actor, "sale", sale.id, "DELETE", before=_doc(sale), reason=reason)
    logger.info("sale %s deleted", sale.id)
    return sale


# ── Purchases ───────────────────────────────────────────────────────────────

def _apply_purchase(db: Session, purchase: Purchase) -> None:
    for line in purchase.lines:
        ledger.record_movement(
            db, line.product_id, line.quantity, purchase.date,
            currency=purchase.currency,
            kind=MovementKind.PURCHASE,
            unit_price=line.unit_price,
            amount=line.amount,
            related_transaction_id=purchase.id,
            supplier_id=purchase.supplier_id,
        )


def get_purchase(db: Session, purchase_id: str) -> Purchase:
    purchase = db.get(Purchase, purchase_id)
    if purchase is None or purchase.deleted_at is not None:
        raise TransactionNotFoundError("purchase", purchase_id)
    return purchase


def create_purchase(db: Session, *, date: datetime, currency: str, lines: Iterable[LineSpec],
                    supplier_id: str | None = None, note: str | None = None,
                    actor: str | None = None) -> Purchase:
    lines = _lines(lines)
    _require(db, Supplier, supplier_id, "supplier")
    purchase = Purchase(supplier_id=supplier_id, date=as_utc(date), currency=currency, note=note)
    purchase.lines = [
        PurchaseLine(position=i, product_id=l.product_id, quantity=l.quantity,
                     unit_price=l.unit_price, amount=l.amount)
        for i, l in enumerate(lines)
    ]
    db.add(purchase)
    db.flush()
    _apply_purchase(db, purchase)
    audit(db, actor, "purchase", purchase.id, "CREATE", after=_doc(purchase))
    logger.info("purchase %s created with %d line(s)", purchase.id, len(lines))
    return purchase


def update_purchase(db: Session, purchase_id: str, *, date: datetime, currency: str,
                    lines: Iterable[LineSpec], supplier_id: str | None = None,
                    note: str | None = None, actor: str | None = None) -> Purchase:
    lines = _lines(lines)
    purchase = get_purchase(db, purchase_id)
    _require(db, Supplier, supplier_id, "supplier")
    before = _doc(purchase)

    ledger.reverse_movements_for(db, purchase.id)
    purchase.supplier_id = supplier_id
    purchase.date = as_utc(date)
    purchase.currency = currency
    purchase.note = note
    purchase.lines = [
        PurchaseLine(position=i, product_id=l.product_id, quantity=l.quantity,
                     unit_price=l.unit_price, amount=l.amount)
        for i, l in enumerate(lines)
    ]
    db.flush()
    _apply_purchase(db, purchase)
    audit(db, actor, "purchase", purchase.id, "UPDATE", before=before, after=_doc(purchase))
    logger.info("purchase %s edited", purchase.id)
    return purchase


def delete_purchase(db: Session, purchase_id: str, *, actor: str | None = None,
                    reason: str | None = None) -> Purchase:
    purchase = get_purchase(db, purchase_id)
    ledger.reverse_movements_for(db, purchase.id)
    purchase.deleted_at = datetime.now(timezone.utc)
    audit(db, actor, "purchase", purchase.id, "DELETE", before=_doc(purchase), reason=reason)
    logger.info("purchase %s deleted", purchase.id)
    return purchase
