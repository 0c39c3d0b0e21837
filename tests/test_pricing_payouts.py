from datetime import datetime

import pytest

from payout_recon.normalizer import parse_date_any
from payout_recon.payouts import (
    CHANNEL_ORDER_DATE,
    PayoutFilters,
    calculate_payouts,
    dashboard_stats,
    summarize_by_order_account,
    summarize_by_supplier,
)
from payout_recon.pricing import (
    PriceBook,
    find_missing_prices,
    price_before_gst,
    suppliers_with_missing_prices,
    unit_price_before_gst,
)

NOW = datetime(2024, 7, 3, 12, 0)
JUNE = PayoutFilters(date_from="2024-06-01", date_to="2024-06-30")


@pytest.fixture
def acme(make_supplier):
    return make_supplier("s1", "Acme", order_account="Acme Store")


@pytest.fixture
def beta(make_supplier):
    return make_supplier("s2", "Beta")


def delivered(make_order, supplier_id, product, day=datetime(2024, 6, 15), **kw):
    return make_order(supplier_id, product, delivered_date=day, **kw)


def test_price_before_gst_from_118():
    assert price_before_gst("118", "18") == 100.00
    assert price_before_gst(118, None) == 100.00


def test_stored_pre_gst_price_wins(make_price):
    entry = make_price("s1", "Widget", 118, price_before_gst=99.5)
    assert unit_price_before_gst(entry) == 99.5


def test_line_totals_for_two_orders(make_order, make_price, acme):
    orders = [
        delivered(make_order, "s1", "Widget", qty=3),
        delivered(make_order, "s1", "Widget", qty=2),
    ]
    entries = [make_price("s1", "Widget", 59, price_before_gst=50)]

    result = calculate_payouts(orders, entries, [acme], JUNE, now=NOW)

    s = result.summary
    assert s["totalPreGstAmount"] == 250
    assert s["totalGstAmount"] == 45
    assert s["totalPostGstAmount"] == 295
    assert s["deliveriesCount"] == 2
    assert s["totalDeliveredQty"] == 5
    assert s["averageGstRate"] == 18.0
    assert [l["lineAmount"] for l in result.lines] == [150, 100]
    assert result.lines[0]["orderAccount"] == "Acme Store"


def test_zero_price_is_priced_but_not_payable(make_order, make_price, acme):
    orders = [delivered(make_order, "s1", "Widget")]
    entries = [make_price("s1", "Widget", 0, price_before_gst=0)]

    assert find_missing_prices(orders, entries, [acme]) == []

    result = calculate_payouts(orders, entries, [acme], JUNE, now=NOW)
    assert result.lines == []
    assert result.summary["totalPostGstAmount"] == 0
    assert len(result.missing_prices) == 1


def test_end_of_day_is_inclusive(make_order, make_price, acme):
    late = parse_date_any("2024-06-30T22:00:00Z")
    orders = [delivered(make_order, "s1", "Widget", day=late)]
    entries = [make_price("s1", "Widget", 118)]

    result = calculate_payouts(orders, entries, [acme], PayoutFilters(date_to="2024-06-30", date_from="2024-06-30"), now=NOW)
    assert len(result.lines) == 1

    result = calculate_payouts(orders, entries, [acme], PayoutFilters(date_from="2024-07-01", date_to="2024-07-02"), now=NOW)
    assert result.lines == []


def test_payouts_fall_back_to_product_price(make_order, make_price, acme, beta):
    orders = [delivered(make_order, "s1", "Widget")]
    entries = [make_price("s2", "Widget", 236)]

    book = PriceBook(entries)
    assert book.match_exact_only("s1", "Widget") is None
    assert book.match_exact_then_product_fallback("s1", "Widget") is entries[0]

    result = calculate_payouts(orders, entries, [acme, beta], JUNE, now=NOW)
    assert len(result.lines) == 1
    assert result.lines[0]["priceMatch"] == "product"
    assert result.lines[0]["unitPriceBeforeGst"] == 200

    # still reported as missing an exact price
    assert [m["productName"] for m in find_missing_prices(orders, entries, [acme, beta])] == ["Widget"]


def test_latest_effective_entry_wins_then_lowest_id(make_price):
    older = make_price("s1", "Widget", 100, id="p1", effective_from=datetime(2024, 1, 1))
    newer = make_price("s1", "Widget", 200, id="p9", effective_from=datetime(2024, 5, 1))
    twin = make_price("s1", "Widget", 300, id="p5", effective_from=datetime(2024, 5, 1))
    undated = make_price("s1", "Widget", 400, id="p0", effective_from=None)

    book = PriceBook([older, undated, newer, twin])
    assert book.match_exact_only("s1", "Widget") is twin


def test_excluded_vs_returned_vs_pending(make_order, make_price, acme):
    orders = [
        delivered(make_order, "s1", "Widget", status="Cancelled"),
        delivered(make_order, "s1", "Widget", status="RTO Delivered"),
        delivered(make_order, "s1", "Widget", status="RTS"),
        delivered(make_order, "s1", "Widget", status="In Transit"),
        delivered(make_order, "s1", "Widget", status="completed"),
    ]
    entries = [make_price("s1", "Widget", 118)]

    result = calculate_payouts(orders, entries, [acme], JUNE, now=NOW)

    assert [c["status"] for c in result.cancelled_orders] == ["Cancelled", "RTO Delivered"]
    assert [l["status"] for l in result.lines] == ["completed"]
    assert result.summary["cancelledCount"] == 2


def test_channel_order_date_basis(make_order, make_price, acme):
    o = make_order("s1", "Widget", channel_order_date=datetime(2024, 6, 5), delivered_date=datetime(2024, 7, 2))
    entries = [make_price("s1", "Widget", 118)]

    by_delivery = calculate_payouts([o], entries, [acme], JUNE, now=NOW)
    by_channel = calculate_payouts(
        [o], entries, [acme],
        PayoutFilters(date_from="2024-06-01", date_to="2024-06-30", pricing_basis=CHANNEL_ORDER_DATE),
        now=NOW,
    )
    assert by_delivery.lines == []
    assert len(by_channel.lines) == 1


def test_supplier_filter_matches_id_or_name(make_order, make_price, acme, beta):
    orders = [delivered(make_order, "s1", "Widget"), delivered(make_order, "s2", "Widget")]
    entries = [make_price("s1", "Widget", 118), make_price("s2", "Widget", 118)]

    by_name = calculate_payouts(orders, entries, [acme, beta], PayoutFilters("2024-06-01", "2024-06-30", suppliers=["Beta"]), now=NOW)
    assert [l["supplierId"] for l in by_name.lines] == ["s2"]
    assert by_name.summary["supplier"] == "Beta"

    both = calculate_payouts(orders, entries, [acme, beta], PayoutFilters("2024-06-01", "2024-06-30", suppliers=["s1", "s2"]), now=NOW)
    assert both.summary["supplier"] == "2 Suppliers Combined"


def test_currency_and_min_amount(make_order, make_price, acme):
    orders = [
        delivered(make_order, "s1", "Widget", qty=1),
        delivered(make_order, "s1", "Widget", qty=5),
        delivered(make_order, "s1", "Widget", qty=5, currency="USD"),
    ]
    entries = [make_price("s1", "Widget", 118)]

    result = calculate_payouts(orders, entries, [acme], PayoutFilters("2024-06-01", "2024-06-30", currency="inr", min_amount=200), now=NOW)
    assert [l["qty"] for l in result.lines] == [5]
    assert result.lines[0]["totalWithGst"] == 590


def test_new_deliveries_counts_last_week(make_order, make_price, acme):
    orders = [
        delivered(make_order, "s1", "Widget", day=datetime(2024, 6, 28)),
        delivered(make_order, "s1", "Widget", day=datetime(2024, 6, 10)),
    ]
    entries = [make_price("s1", "Widget", 118)]
    result = calculate_payouts(orders, entries, [acme], JUNE, now=NOW)
    assert result.summary["newDeliveries"] == 1


def test_default_window_is_last_month(make_order, make_price, acme):
    orders = [
        delivered(make_order, "s1", "Widget", day=datetime(2024, 6, 10)),
        delivered(make_order, "s1", "Widget", day=datetime(2024, 5, 1)),
    ]
    entries = [make_price("s1", "Widget", 118)]
    result = calculate_payouts(orders, entries, [acme], PayoutFilters(), now=NOW)
    assert len(result.lines) == 1
    assert result.summary["dateRange"] == {"from": "2024-06-03", "to": "2024-07-03", "basis": "deliveredDate"}


def test_order_account_grouping(make_order, make_price, acme, beta):
    orders = [
        delivered(make_order, "s1", "Widget"),
        delivered(make_order, "s2", "Widget", order_account="Shop B"),
        delivered(make_order, "s2", "Gadget"),
    ]
    entries = [make_price("s1", "Widget", 118), make_price("s2", "Widget", 236), make_price("s2", "Gadget", 59)]

    groups = summarize_by_order_account(calculate_payouts(orders, entries, [acme, beta], JUNE, now=NOW))

    assert [g["orderAccount"] for g in groups] == ["Shop B", "Acme Store", "Unknown Account"]
    assert groups[0]["totalPostGst"] == 236
    assert groups[1]["suppliers"] == ["Acme"]


def test_supplier_summary_skips_unpriced(make_order, make_price, acme, beta):
    orders = [
        delivered(make_order, "s1", "Widget", qty=2),
        delivered(make_order, "s2", "Gadget"),
    ]
    entries = [make_price("s1", "Widget", 118), make_price("s2", "Gadget", 0)]

    rows = summarize_by_supplier(orders, entries, [acme, beta], JUNE, now=NOW)
    assert [r["supplierName"] for r in rows] == ["Acme"]
    assert rows[0]["totalPreGst"] == 200
    assert rows[0]["totalPostGst"] == 236


def test_missing_prices_grouped_per_supplier_product(make_order, make_price, acme, beta):
    orders = [
        make_order("s1", "Gadget", order_date=datetime(2024, 6, 1)),
        make_order("s1", "Gadget", order_date=datetime(2024, 6, 9)),
        make_order("s2", "Widget"),
        make_order("s1", "Widget"),
    ]
    entries = [make_price("s1", "Widget", 118)]

    missing = find_missing_prices(orders, entries, [acme, beta])
    assert [(m["supplierName"], m["productName"], m["orderCount"]) for m in missing] == [
        ("Acme", "Gadget", 2),
        ("Beta", "Widget", 1),
    ]
    assert missing[0]["latestOrderDate"] == "2024-06-09T00:00:00"

    only_beta = find_missing_prices(orders, entries, [acme, beta], supplier_name="Beta")
    assert len(only_beta) == 1


def test_suppliers_with_missing_prices_sorting(make_order, make_price, acme, beta):
    orders = [
        make_order("s1", "Widget"),
        make_order("s1", "Gadget"),
        make_order("s2", "Widget"),
    ]
    entries = [make_price("s1", "Widget", 118)]

    rows = suppliers_with_missing_prices(orders, entries, [acme, beta])
    assert [r["missingPrices"] for r in rows] == [1, 1]
    by_pct = {r["name"]: r["missingPricePercentage"] for r in rows}
    assert by_pct == {"Acme": 50.0, "Beta": 100.0}

    by_name = suppliers_with_missing_prices(orders, entries, [beta, acme], sort_by="name", sort_order="asc")
    assert [r["name"] for r in by_name] == ["Acme", "Beta"]

    by_orders = suppliers_with_missing_prices(orders, entries, [beta, acme], sort_by="total_orders")
    assert [r["totalOrders"] for r in by_orders] == [2, 1]


def test_dashboard_stats(make_order, make_price, acme, beta):
    orders = [
        make_order("s1", "Widget"),
        make_order("s1", "Widget", qty=2),
        make_order("s1", "Gadget", status="Cancelled"),
        make_order("s2", "Widget", status="RTS"),
        make_order("s2", "Widget", status="RTO"),
    ]
    entries = [make_price("s1", "Widget", 118)]

    stats = dashboard_stats(orders, [acme, beta], entries)
    assert stats["totalOrders"] == 5
    assert stats["totalSuppliers"] == 2
    assert stats["totalPriceEntries"] == 1
    assert stats["uniqueProducts"] == 2
    assert stats["deliveredOrders"] == 2
    assert stats["cancelledOrders"] == 1
    assert stats["rtsOrders"] == 2
    assert stats["averageOrderValue"] == 177.0
