"""Stock movement ledger.

Append-only: every inventory effect is a new ``StockMovement`` row and
corrections are offsetting ``revert`` rows. The ledger also owns each
product's running balance (``Product.current_stock``).

Nothing here commits; callers own the transaction so that an edit's
revert + reapply lands (or fails) as one unit.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Iterator

from sqlalchemy import and_, event, or_
from sqlalchemy.orm import Session

from stockledger.errors import InsufficientStockError, ProductNotFoundError
from stockledger.models.core import MovementAction, MovementKind, Product, StockMovement
from stockledger.services.costing import MovementRecord, as_utc

logger = logging.getLogger(__name__)

_listeners: list[Callable[[set[str]], None]] = []

# products written in a session, announced once its transaction ends
_PENDING = "stockledger.pending_products"


def on_change(callback: Callable[[set[str]], None]) -> Callable[[set[str]], None]:
    """Register ``callback(product_ids)`` to run after a session that wrote
    movements commits or rolls back."""
    _listeners.append(callback)
    return callback


def _notify(product_ids: set[str]) -> None:
    for cb in _listeners:
        cb(product_ids)


def _mark(db: Session, product_id: str) -> None:
    db.info.setdefault(_PENDING, set()).add(product_id)


@event.listens_for(Session, "after_commit")
@event.listens_for(Session, "after_rollback")
def _flush_pending(session: Session) -> None:
    pending = session.info.pop(_PENDING, None)
    if pending:
        _notify(pending)


def _dec(x) -> Decimal:
    return x if isinstance(x, Decimal) else Decimal(str(x))


def to_record(row: StockMovement) -> MovementRecord:
    return MovementRecord(
        id=row.id,
        date=as_utc(row.date),
        kind=row.kind.value,
        action=row.action.value,
        product_id=row.product_id,
        quantity=_dec(row.quantity),
        unit_price=_dec(row.unit_price) if row.unit_price is not None else None,
        amount=_dec(row.amount) if row.amount is not None else None,
        currency=row.currency,
        related_transaction_id=row.related_transaction_id,
        reverses_movement_id=row.reverses_movement_id,
        customer_id=row.customer_id,
        supplier_id=row.supplier_id,
    )


# ── Mutation ────────────────────────────────────────────────────────────────

def record_movement(
    db: Session,
    product_id: str,
    delta_quantity: Decimal | int | float | str,
    date: datetime,
    *,
    currency: str,
    kind: MovementKind | str | None = None,
    action: MovementAction | str = MovementAction.APPLY,
    unit_price: Decimal | None = None,
    amount: Decimal | None = None,
    related_transaction_id: str | None = None,
    reverses_movement_id: int | None = None,
    customer_id: str | None = None,
    supplier_id: str | None = None,
) -> StockMovement:
    """Append one movement and move the product's balance by ``delta_quantity``.

    Does not check sufficiency; the transaction layer does that first.
    """
    product = db.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError(product_id)

    delta = _dec(delta_quantity)
    if delta == 0:
        raise ValueError("delta_quantity must be non-zero")
    action = MovementAction(action)
    if kind is None:
        # an apply that adds stock is a purchase; a revert that adds stock undoes a sale
        adds = delta > 0
        kind = MovementKind.PURCHASE if adds == (action == MovementAction.APPLY) else MovementKind.SALE
    kind = MovementKind(kind)

    product.current_stock = _dec(product.current_stock or 0) + delta
    m = StockMovement(
        date=as_utc(date),
        kind=kind,
        action=action,
        product_id=product_id,
        quantity=abs(delta),
        unit_price=unit_price,
        amount=amount,
        currency=currency,
        related_transaction_id=related_transaction_id,
        reverses_movement_id=reverses_movement_id,
        resulting_balance=product.current_stock,
        customer_id=customer_id,
        supplier_id=supplier_id,
    )
    db.add(m)
    db.flush()
    logger.debug("movement %s %s/%s product=%s delta=%s balance=%s ref=%s",
                 m.id, kind.value, action.value, product_id, delta, m.resulting_balance,
                 related_transaction_id)
    _mark(db, product_id)
    return m


def active_movements_for(db: Session, related_transaction_id: str) -> list[StockMovement]:
    """Apply movements of a transaction that no revert has cancelled yet."""
    rows = (
        db.query(StockMovement)
        .filter(StockMovement.related_transaction_id == related_transaction_id)
        .order_by(StockMovement.id.asc())
        .all()
    )
    reverted = {r.reverses_movement_id for r in rows if r.action == MovementAction.REVERT}
    return [r for r in rows if r.action == MovementAction.APPLY and r.id not in reverted]


def reverse_movements_for(db: Session, related_transaction_id: str,
                          date: datetime | None = None) -> list[StockMovement]:
    """Cancel every still-active movement of a transaction.

    Each cancelling row carries the opposite delta and points at the row it
    cancels, so reversing twice is a no-op the second time.
    """
    when = date or datetime.now(timezone.utc)
    out = []
    for a in active_movements_for(db, related_transaction_id):
        delta = -a.quantity if a.kind == MovementKind.PURCHASE else a.quantity
        out.append(record_movement(
            db, a.product_id, delta, when,
            currency=a.currency,
            kind=a.kind,
            action=MovementAction.REVERT,
            unit_price=a.unit_price,
            amount=a.amount,
            related_transaction_id=related_transaction_id,
            reverses_movement_id=a.id,
            customer_id=a.customer_id,
            supplier_id=a.supplier_id,
        ))
    if out:
        logger.info("reversed %d movement(s) of %s", len(out), related_transaction_id)
    return out


# ── Stock levels ────────────────────────────────────────────────────────────

def current_stock(db: Session, product_id: str) -> Decimal:
    product = db.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError(product_id)
    return _dec(product.current_stock or 0)


def stock_levels(db: Session, include_deleted: bool = False) -> dict[str, Decimal]:
    q = db.query(Product.id, Product.current_stock)
    if not include_deleted:
        q = q.filter(Product.deleted_at.is_(None))
    return {pid: _dec(qty or 0) for pid, qty in q.all()}


def check_sufficient_stock(db: Session, lines: Iterable[tuple[str, Decimal]]) -> None:
    """Reject the whole set if any product would drop below zero.

    Lines for the same product are summed before comparing.
    """
    wanted: dict[str, Decimal] = {}
    for product_id, qty in lines:
        wanted[product_id] = wanted.get(product_id, Decimal("0")) + _dec(qty)

    shortfalls = []
    for product_id, qty in wanted.items():
        available = current_stock(db, product_id)
        if qty > available:
            shortfalls.append({"product_id": product_id, "requested": qty, "available": available})
    if shortfalls:
        logger.info("sale rejected, insufficient stock: %s", shortfalls)
        raise InsufficientStockError(shortfalls)


def verify_balances(db: Session, product_id: str) -> list[int]:
    """Replay a product's movements in insertion order; return ids whose
    stored ``resulting_balance`` disagrees with the replay."""
    balance = Decimal("0")
    bad = []
    rows = (
        db.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.id.asc())
    )
    for m in rows:
        adds = (m.kind == MovementKind.PURCHASE) == (m.action == MovementAction.APPLY)
        balance += _dec(m.quantity) if adds else -_dec(m.quantity)
        if balance != _dec(m.resulting_balance):
            bad.append(m.id)
    return bad


# ── Reads ───────────────────────────────────────────────────────────────────

class MovementQuery:
    """Lazy, restartable view over the ledger.

    Nothing runs until iteration; each ``iter()`` issues a fresh query, so the
    same object can be replayed.
    """

    def __init__(self, db: Session, *, product_id: str | None = None, kind: str | None = None,
                 date_from: datetime | None = None, date_to: datetime | None = None,
                 customer_id: str | None = None, include_reverts: bool = True,
                 descending: bool = False, batch_size: int = 500):
        self.db = db
        self.product_id = product_id
        self.kind = MovementKind(kind) if kind else None
        self.date_from = as_utc(date_from) if date_from else None
        self.date_to = as_utc(date_to) if date_to else None
        self.customer_id = customer_id
        self.include_reverts = include_reverts
        self.descending = descending
        self.batch_size = batch_size

    def _query(self):
        q = self.db.query(StockMovement)
        if self.product_id:
            q = q.filter(StockMovement.product_id == self.product_id)
        if self.kind:
            q = q.filter(StockMovement.kind == self.kind)
        if self.customer_id:
            q = q.filter(StockMovement.customer_id == self.customer_id)
        if self.date_from:
            q = q.filter(StockMovement.date >= self.date_from)
        if self.date_to:
            q = q.filter(StockMovement.date <= self.date_to)
        if not self.include_reverts:
            q = q.filter(StockMovement.action == MovementAction.APPLY)
        if self.descending:
            return q.order_by(StockMovement.date.desc(), StockMovement.id.desc())
        return q.order_by(StockMovement.date.asc(), StockMovement.id.asc())

    def __iter__(self) -> Iterator[StockMovement]:
        return iter(self._query().yield_per(self.batch_size))

    def records(self) -> Iterator[MovementRecord]:
        return (to_record(m) for m in self)

    def count(self) -> int:
        return self._query().order_by(None).count()


def query(db: Session, **filters) -> MovementQuery:
    return MovementQuery(db, **filters)


def history(db: Session, product_id: str | None = None) -> list[MovementRecord]:
    """Full movement history (reverts included) as engine records.

    Date windows are applied after reverts are matched, so a revert dated
    outside a report range still cancels its apply inside it.
    """
    return list(MovementQuery(db, product_id=product_id).records())


def encode_cursor(m: StockMovement) -> str:
    return f"{as_utc(m.date).isoformat()}|{m.id}"


def decode_cursor(cursor: str) -> tuple[datetime, int]:
    try:
        ts, mid = cursor.rsplit("|", 1)
        return as_utc(datetime.fromisoformat(ts)), int(mid)
    except ValueError:
        raise ValueError(f"malformed cursor: {cursor!r}")


def page(db: Session, *, limit: int = 50, cursor: str | None = None,
         **filters) -> tuple[list[StockMovement], str | None]:
    """Newest-first page of movements plus the cursor of the next page."""
    q = MovementQuery(db, descending=True, **filters)._query()
    if cursor:
        ts, mid = decode_cursor(cursor)
        q = q.filter(or_(
            StockMovement.date < ts,
            and_(StockMovement.date == ts, StockMovement.id < mid),
        ))
    rows = q.limit(limit + 1).all()
    next_cursor = encode_cursor(rows[limit - 1]) if len(rows) > limit else None
    return rows[:limit], next_cursor
