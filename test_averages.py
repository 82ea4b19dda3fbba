# test_averages.py
from datetime import datetime, timedelta, timezone
from decimal import Decimal as D

import pytest

from stockledger.services.averages import compute_rolling_averages
from stockledger.services.costing import MovementRecord

NOW = datetime(2025, 6, 30, 12, 0, tzinfo=timezone.utc)


def mv(mid, days_ago, kind, qty, price=None, amount=None, product="P"):
    return MovementRecord(id=mid, date=NOW - timedelta(days=days_ago), kind=kind, product_id=product,
                          quantity=D(qty), unit_price=D(price) if price is not None else None,
                          amount=D(amount) if amount is not None else None, currency="TRY")


def test_windows_are_independent():
    recs = [
        mv(1, 10, "purchase", 10, price=4),
        mv(2, 45, "purchase", 10, price=8),
        mv(3, 80, "purchase", 20, price=2),
        mv(4, 5, "sale", 2, amount=30),
    ]
    res = compute_rolling_averages(recs, NOW)["P"]
    assert res[30].avg_purchase_cost == D(4)
    assert res[60].avg_purchase_cost == D(6)
    assert res[90].avg_purchase_cost == D(4)
    assert res[30].avg_sale_price == D(15)
    assert res[90].avg_sale_price == D(15)


def test_empty_side_is_none():
    res = compute_rolling_averages([mv(1, 100, "purchase", 5, price=3)], NOW)["P"]
    assert res[30].avg_purchase_cost is None
    assert res[90].avg_sale_price is None


def test_future_movements_ignored_and_custom_windows():
    recs = [mv(1, -2, "sale", 1, price=99), mv(2, 3, "sale", 1, price=11)]
    res = compute_rolling_averages(recs, NOW, windows=[7])["P"]
    assert list(res) == [7]
    assert res[7].avg_sale_price == D(11)


def test_rejects_non_positive_window():
    with pytest.raises(ValueError):
        compute_rolling_averages([], NOW, windows=[0])
