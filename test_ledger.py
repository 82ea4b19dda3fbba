# test_ledger.py
from datetime import datetime, timedelta, timezone
from decimal import Decimal as D

import pytest

from stockledger.errors import (
    CounterpartyNotFoundError, InsufficientStockError, ProductNotFoundError, TransactionNotFoundError,
)
from stockledger.models.core import AuditLog, MovementAction, MovementKind, Product, StockMovement
from stockledger.services import ledger
from stockledger.services import transactions as tx
from stockledger.services.costing import compute_fifo_aggregates
from stockledger.services.transactions import LineSpec

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_product(db, name="Widget"):
    p = Product(name=name, current_stock=D(0))
    db.add(p)
    db.commit()
    return p


def stock_in(db, product, qty, cost, when=T0):
    return tx.create_purchase(db, date=when, currency="TRY",
                              lines=[LineSpec(product.id, D(qty), unit_price=D(cost))])


def test_record_and_reverse_are_symmetric(db):
    p = make_product(db)
    purchase = stock_in(db, p, 10, 5)
    db.commit()
    assert ledger.current_stock(db, p.id) == D(10)

    reverted = ledger.reverse_movements_for(db, purchase.id)
    db.commit()
    assert len(reverted) == 1
    assert reverted[0].action == MovementAction.REVERT
    assert reverted[0].kind == MovementKind.PURCHASE
    assert ledger.current_stock(db, p.id) == 0

    # second reversal finds nothing left to cancel
    assert ledger.reverse_movements_for(db, purchase.id) == []
    assert ledger.verify_balances(db, p.id) == []


def test_kind_derived_from_sign_and_action(db):
    p = make_product(db)
    m = ledger.record_movement(db, p.id, 3, T0, currency="TRY")
    assert m.kind == MovementKind.PURCHASE
    m = ledger.record_movement(db, p.id, -1, T0, currency="TRY")
    assert m.kind == MovementKind.SALE
    m = ledger.record_movement(db, p.id, 1, T0, currency="TRY", action="revert")
    assert m.kind == MovementKind.SALE
    assert m.resulting_balance == D(3)


def test_unknown_product_rejected(db):
    with pytest.raises(ProductNotFoundError):
        ledger.record_movement(db, "nope", 1, T0, currency="TRY")
    with pytest.raises(ValueError):
        ledger.record_movement(db, make_product(db).id, 0, T0, currency="TRY")


def test_insufficient_stock_rejects_whole_sale(db):
    a, b = make_product(db, "A"), make_product(db, "B")
    stock_in(db, a, 10, 1)
    stock_in(db, b, 2, 1)
    db.commit()
    before = db.query(StockMovement).count()

    with pytest.raises(InsufficientStockError) as exc:
        tx.create_sale(db, date=T0, currency="TRY", lines=[
            LineSpec(a.id, D(4), unit_price=D(3)),
            LineSpec(b.id, D(3), unit_price=D(3)),
        ])
    db.rollback()
    detail = exc.value.as_detail()
    assert [d["product_id"] for d in detail] == [b.id]
    assert D(detail[0]["available"]) == D(2)
    assert db.query(StockMovement).count() == before
    assert ledger.current_stock(db, a.id) == D(10)


def test_lines_for_same_product_are_summed(db):
    p = make_product(db)
    stock_in(db, p, 5, 1)
    db.commit()
    with pytest.raises(InsufficientStockError):
        ledger.check_sufficient_stock(db, [(p.id, D(3)), (p.id, D(3))])


def test_edit_reverts_then_reapplies(db):
    p = make_product(db)
    stock_in(db, p, 10, 5)
    sale = tx.create_sale(db, date=T0 + timedelta(days=1), currency="TRY",
                          lines=[LineSpec(p.id, D(6), unit_price=D(9))])
    db.commit()

    # 9 > 4 on hand, but the sale's own 6 come back first
    tx.update_sale(db, sale.id, date=T0 + timedelta(days=1), currency="TRY",
                   lines=[LineSpec(p.id, D(9), unit_price=D(9))], actor="tester")
    db.commit()
    assert ledger.current_stock(db, p.id) == D(1)

    rows = ledger.active_movements_for(db, sale.id)
    assert [r.quantity for r in rows] == [D(9)]
    assert ledger.verify_balances(db, p.id) == []

    agg = compute_fifo_aggregates(ledger.history(db)).aggregates[p.id]
    assert agg.sold_qty == D(9)
    assert agg.cogs == D(45)
    assert db.query(AuditLog).filter(AuditLog.entity_id == sale.id).count() == 2


def test_delete_sale_returns_stock(db):
    p = make_product(db)
    stock_in(db, p, 10, 5)
    sale = tx.create_sale(db, date=T0, currency="TRY", lines=[LineSpec(p.id, D(4))])
    db.commit()
    tx.delete_sale(db, sale.id, reason="entered twice")
    db.commit()
    assert ledger.current_stock(db, p.id) == D(10)
    with pytest.raises(TransactionNotFoundError):
        tx.get_sale(db, sale.id)


def test_unknown_counterparty_rejected(db):
    p = make_product(db)
    with pytest.raises(CounterpartyNotFoundError):
        tx.create_purchase(db, date=T0, currency="TRY", supplier_id="missing",
                           lines=[LineSpec(p.id, D(1), unit_price=D(1))])


def test_line_spec_validation():
    with pytest.raises(ValueError):
        LineSpec("p", D(0))
    with pytest.raises(ValueError):
        LineSpec("", D(1))


def test_query_is_restartable(db):
    p = make_product(db)
    stock_in(db, p, 3, 1)
    stock_in(db, p, 4, 1, when=T0 + timedelta(days=2))
    db.commit()
    q = ledger.query(db, product_id=p.id, kind="purchase")
    assert q.count() == 2
    assert [m.quantity for m in q] == [D(3), D(4)]
    assert [r.quantity for r in q.records()] == [D(3), D(4)]
    later = ledger.query(db, date_from=T0 + timedelta(days=1))
    assert later.count() == 1


def test_page_walks_newest_first(db):
    p = make_product(db)
    for i in range(5):
        stock_in(db, p, 1, 1, when=T0 + timedelta(hours=i))
    db.commit()

    seen = []
    cursor = None
    while True:
        rows, cursor = ledger.page(db, limit=2, cursor=cursor, product_id=p.id)
        seen.extend(r.id for r in rows)
        if cursor is None:
            break
    assert len(seen) == 5
    assert len(set(seen)) == 5
    dates = [db.get(StockMovement, i).date for i in seen]
    assert dates == sorted(dates, reverse=True)


def test_bad_cursor(db):
    with pytest.raises(ValueError):
        ledger.page(db, cursor="garbage")


def test_change_listeners_fire_when_the_transaction_ends(db):
    seen = []
    ledger.on_change(seen.append)
    try:
        p = make_product(db)
        ledger.record_movement(db, p.id, 2, T0, currency="TRY")
        assert seen == []  # flushed, not yet committed
        db.commit()
        assert seen == [{p.id}]

        ledger.record_movement(db, p.id, 1, T0, currency="TRY")
        db.rollback()
        assert seen == [{p.id}, {p.id}]

        # a commit without ledger writes announces nothing
        db.commit()
        assert len(seen) == 2
    finally:
        ledger._listeners.remove(seen.append)
