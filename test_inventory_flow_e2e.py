# test_inventory_flow_e2e.py
from datetime import datetime, timedelta, timezone
from decimal import Decimal as D

import pytest

from stockledger.util.security import create_token

def jprint(step, r):
    """Helper to print response and assert on failure."""
    assert 200 <= r.status_code < 300, f"{step} -> {r.status_code}: {r.text}"
    return r.json() if r.headers.get("content-type","").startswith("application/json") else r.text

def test_purchase_sell_edit_report_flow(client, base_url, auth_headers, rng_suffix):
    base = (datetime.now(timezone.utc) - timedelta(days=10)).replace(microsecond=0)

    r = client.get(f"{base_url}/healthz")
    assert jprint("GET /healthz", r)["ok"] is True

    # ===== 1. Catalog =====
    r = client.post(f"{base_url}/products/", headers=auth_headers, json={
        "name": f"Bolt-{rng_suffix}", "unit": "pcs", "sale_price": "10", "sale_currency": "TRY"
    })
    bolt_id = jprint("POST /products (bolt)", r)["id"]

    r = client.post(f"{base_url}/products/", headers=auth_headers, json={"name": f"Nut-{rng_suffix}", "unit": "pcs"})
    nut_id = jprint("POST /products (nut)", r)["id"]

    r = client.post(f"{base_url}/suppliers", headers=auth_headers, json={"name": f"Acme-{rng_suffix}", "phone": "5550001"})
    supplier_id = jprint("POST /suppliers", r)["id"]

    r = client.post(f"{base_url}/customers", headers=auth_headers, json={"name": f"Ayse-{rng_suffix}", "phone": "5550002"})
    customer_id = jprint("POST /customers", r)["id"]

    # ===== 2. Purchases build two cost layers =====
    for offset, cost in ((0, "5"), (2, "7")):
        r = client.post(f"{base_url}/purchases", headers=auth_headers, json={
            "date": (base + timedelta(days=offset)).isoformat(), "currency": "TRY", "supplier_id": supplier_id,
            "lines": [{"product_id": bolt_id, "quantity": "10", "unit_price": cost}]
        })
        jprint(f"POST /purchases (day {offset})", r)

    # ===== 3. Sale consumes oldest layer first =====
    sale_body = {
        "date": (base + timedelta(days=4)).isoformat(), "currency": "TRY", "customer_id": customer_id,
        "lines": [{"product_id": bolt_id, "quantity": "15", "unit_price": "10"}]
    }
    r = client.post(f"{base_url}/sales", headers=auth_headers, json=sale_body)
    sale = jprint("POST /sales", r)
    sale_id = sale["id"]
    assert len(sale["lines"]) == 1

    r = client.get(f"{base_url}/reports/fifo", headers=auth_headers, params={"product_id": bolt_id})
    fifo = jprint("GET /reports/fifo", r)
    bolt = fifo["products"][0]
    assert D(bolt["cogs"]) == D(85)
    assert D(bolt["sales_amount"]) == D(150)
    assert D(bolt["profit"]) == D(65)
    assert [(D(l["remaining_quantity"]), D(l["unit_cost"])) for l in bolt["layers"]] == [(D(5), D(7))]

    # window opens after both purchases; the sale is still costed from their layers
    r = client.get(f"{base_url}/reports/fifo", headers=auth_headers, params={
        "product_id": bolt_id, "date_from": (base + timedelta(days=3)).isoformat()
    })
    windowed = jprint("GET /reports/fifo (window)", r)
    bolt = windowed["products"][0]
    assert D(bolt["cogs"]) == D(85)
    assert D(bolt["purchased_qty"]) == 0
    assert windowed["under_costed_sales"] == 0

    # ===== 4. Oversell is rejected as a whole =====
    r = client.post(f"{base_url}/sales", headers=auth_headers, json={
        "date": (base + timedelta(days=5)).isoformat(), "currency": "TRY",
        "lines": [{"product_id": bolt_id, "quantity": "6", "unit_price": "10"}]
    })
    assert r.status_code == 409, r.text
    lines = r.json()["detail"]["lines"]
    assert lines[0]["product_id"] == bolt_id
    assert D(lines[0]["available"]) == D(5)

    r = client.get(f"{base_url}/inventory/stock", headers=auth_headers)
    levels = {s["product_id"]: D(s["current_stock"]) for s in jprint("GET /inventory/stock", r)}
    assert levels[bolt_id] == D(5)
    assert levels[nut_id] == 0

    # ===== 5. Movement listing pages newest first =====
    r = client.get(f"{base_url}/inventory/movements", headers=auth_headers, params={"product_id": bolt_id, "limit": 2})
    page1 = jprint("GET /inventory/movements (1)", r)
    assert [m["kind"] for m in page1["items"]] == ["sale", "purchase"]
    assert page1["next_cursor"]
    r = client.get(f"{base_url}/inventory/movements", headers=auth_headers,
                   params={"product_id": bolt_id, "limit": 2, "cursor": page1["next_cursor"]})
    page2 = jprint("GET /inventory/movements (2)", r)
    assert len(page2["items"]) == 1
    assert page2["next_cursor"] is None

    r = client.get(f"{base_url}/inventory/movements", headers=auth_headers, params={"cursor": "junk"})
    assert r.status_code == 400

    # ===== 6. Edit the sale: revert + reapply =====
    sale_body["lines"][0]["quantity"] = "12"
    r = client.put(f"{base_url}/sales/{sale_id}", headers=auth_headers, json=sale_body)
    jprint("PUT /sales/{id}", r)

    r = client.get(f"{base_url}/inventory/stock/{bolt_id}/verify", headers=auth_headers)
    check = jprint("GET /inventory/stock/{id}/verify", r)
    assert check["ok"] is True
    assert D(check["current_stock"]) == D(8)

    r = client.get(f"{base_url}/reports/fifo", headers=auth_headers, params={"product_id": bolt_id})
    bolt = jprint("GET /reports/fifo (after edit)", r)["products"][0]
    assert D(bolt["cogs"]) == D(64)  # 10x5 + 2x7
    assert D(bolt["profit"]) == D(56)

    # ===== 7. Daily rollups =====
    r = client.post(f"{base_url}/reports/daily/rebuild", headers=auth_headers)
    assert jprint("POST /reports/daily/rebuild", r)["rows_written"] == 4

    r = client.get(f"{base_url}/reports/daily", headers=auth_headers, params={"product_id": bolt_id})
    daily = jprint("GET /reports/daily", r)
    assert len(daily) == 3
    assert D(daily[-1]["profit"]) == D(56)

    r = client.get(f"{base_url}/reports/daily/customers", headers=auth_headers, params={"customer_id": customer_id})
    assert D(jprint("GET /reports/daily/customers", r)[0]["sold_qty"]) == D(12)

    # ===== 8. Analytics =====
    r = client.get(f"{base_url}/reports/rolling_averages", headers=auth_headers, params={"product_id": bolt_id})
    windows = jprint("GET /reports/rolling_averages", r)[0]["windows"]
    assert [w["window_days"] for w in windows] == [30, 60, 90]
    assert D(windows[0]["avg_purchase_cost"]) == D(6)
    assert D(windows[0]["avg_sale_price"]) == D(10)

    r = client.get(f"{base_url}/reports/abc", headers=auth_headers)
    abc = jprint("GET /reports/abc", r)
    assert abc[0]["product_id"] == bolt_id
    assert abc[-1]["cumulative_pct"] == 100.0

    r = client.get(f"{base_url}/reports/depletion", headers=auth_headers, params={"include_all": True})
    depletion = {d["product_id"]: d for d in jprint("GET /reports/depletion", r)}
    assert depletion[bolt_id]["no_risk"] is False
    assert depletion[bolt_id]["days_left"] == pytest.approx(20.0)
    assert depletion[nut_id]["no_risk"] is True
    assert depletion[nut_id]["days_left"] is None

    r = client.get(f"{base_url}/reports/dormant", headers=auth_headers)
    assert [d["product_id"] for d in jprint("GET /reports/dormant", r)] == [nut_id]

    r = client.get(f"{base_url}/reports/fastest", headers=auth_headers)
    assert jprint("GET /reports/fastest", r)[0]["product_id"] == bolt_id

    r = client.get(f"{base_url}/reports/turnover", headers=auth_headers, params={
        "date_from": (base - timedelta(days=1)).isoformat(), "date_to": datetime.now(timezone.utc).isoformat()
    })
    turnover = {t["product_id"]: t for t in jprint("GET /reports/turnover", r)}
    assert D(turnover[bolt_id]["sold_qty"]) == D(12)
    assert D(turnover[bolt_id]["beginning_stock"]) == 0

    # ===== 9. Delete the sale =====
    r = client.delete(f"{base_url}/sales/{sale_id}", headers=auth_headers, params={"reason": "test"})
    jprint("DELETE /sales/{id}", r)
    r = client.get(f"{base_url}/reports/fifo", headers=auth_headers, params={"product_id": bolt_id})
    bolt = jprint("GET /reports/fifo (after delete)", r)["products"][0]
    assert D(bolt["profit"]) == 0
    assert len(bolt["layers"]) == 2

    r = client.get(f"{base_url}/sales/{sale_id}", headers=auth_headers)
    assert r.status_code == 404


def test_auth_boundary(client, base_url, rng_suffix):
    r = client.get(f"{base_url}/reports/fifo")
    assert r.status_code == 401

    r = client.get(f"{base_url}/reports/fifo", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401

    viewer = {"Authorization": f"Bearer {create_token('viewer', perms=['REPORTS_VIEW'])}"}
    r = client.get(f"{base_url}/reports/fifo", headers=viewer)
    assert jprint("GET /reports/fifo (viewer)", r)["products"] == []

    r = client.post(f"{base_url}/products/", headers=viewer, json={"name": f"X-{rng_suffix}"})
    assert r.status_code == 403
    assert "INVENTORY_EDIT" in r.json()["detail"]

    r = client.post(f"{base_url}/reports/daily/rebuild", headers=viewer)
    assert r.status_code == 403


def test_unknown_references(client, base_url, auth_headers):
    body = {"date": datetime.now(timezone.utc).isoformat(), "currency": "TRY",
            "lines": [{"product_id": "missing", "quantity": "1", "unit_price": "1"}]}
    r = client.post(f"{base_url}/purchases", headers=auth_headers, json=body)
    assert r.status_code == 404

    r = client.put(f"{base_url}/sales/missing", headers=auth_headers, json=body)
    assert r.status_code == 404

    body["date"] = "2025-01-01T10:00:00"
    r = client.post(f"{base_url}/purchases", headers=auth_headers, json=body)
    assert r.status_code == 422


def test_line_precision_bounded_to_ledger_columns(client, base_url, auth_headers, rng_suffix):
    r = client.post(f"{base_url}/products/", headers=auth_headers, json={"name": f"Washer-{rng_suffix}"})
    pid = jprint("POST /products", r)["id"]
    body = {"date": datetime.now(timezone.utc).isoformat(), "currency": "TRY",
            "lines": [{"product_id": pid, "quantity": "0.00004", "unit_price": "1"}]}
    r = client.post(f"{base_url}/purchases", headers=auth_headers, json=body)
    assert r.status_code == 422

    body["lines"][0].update(quantity="1", unit_price="1.23456")
    r = client.post(f"{base_url}/purchases", headers=auth_headers, json=body)
    assert r.status_code == 422

    body["lines"][0].update(unit_price="1.2345", amount="123456789012345")
    r = client.post(f"{base_url}/purchases", headers=auth_headers, json=body)
    assert r.status_code == 422

    del body["lines"][0]["amount"]
    r = client.post(f"{base_url}/purchases", headers=auth_headers, json=body)
    jprint("POST /purchases (4 places)", r)
    r = client.get(f"{base_url}/inventory/stock", headers=auth_headers)
    levels = {s["product_id"]: D(s["current_stock"]) for s in jprint("GET /inventory/stock", r)}
    assert levels[pid] == D(1)
