# payout_recon/payouts.py
# Payout / GST calculation over stored orders and price entries

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from payout_recon.normalizer import parse_date_any
from payout_recon.pricing import PriceBook, gst_rate_or_default, unit_price_before_gst
from payout_recon.statuses import EXCLUDED, PAYABLE, RETURNED, ShipmentStatus, classify

ORDER_DATE = "orderDate"
CHANNEL_ORDER_DATE = "channelOrderDate"
DELIVERED_DATE = "deliveredDate"

UNKNOWN_ACCOUNT = "Unknown Account"
NEW_DELIVERY_DAYS = 7


def _r2(x: float) -> float:
    return round(x, 2)


def as_day(v) -> Optional[date]:
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    dt = parse_date_any(v)
    return dt.date() if dt else None


def target_date(order, basis: str) -> Optional[datetime]:
    if basis == CHANNEL_ORDER_DATE:
        return order.channel_order_date
    if basis == ORDER_DATE:
        return order.order_date or order.channel_order_date
    return order.delivered_date


@dataclass
class PayoutFilters:
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    pricing_basis: str = DELIVERED_DATE
    suppliers: list[str] = field(default_factory=list)  # ids or names; empty = all
    currency: Optional[str] = None
    min_amount: Optional[float] = None

    def __post_init__(self):
        self.date_from = as_day(self.date_from)
        self.date_to = as_day(self.date_to)

    def window(self, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
        """
        Inclusive [start, end] with the end at 23:59:59.999999 of date_to.
        Missing bounds default to the month ending today.
        """
        today = (now or datetime.utcnow()).date()
        end_day = self.date_to or today
        start_day = self.date_from or (end_day - relativedelta(months=1))
        return datetime.combine(start_day, time.min), datetime.combine(end_day, time.max)

    def selects(self, supplier) -> bool:
        if not self.suppliers:
            return True
        if supplier is None:
            return False
        return supplier.id in self.suppliers or supplier.name in self.suppliers


@dataclass
class PayoutResult:
    lines: list[dict]
    summary: dict
    cancelled_orders: list[dict]
    missing_prices: list[dict]

    def to_dict(self) -> dict:
        return {
            "payouts": self.lines,
            "summary": self.summary,
            "cancelledOrders": self.cancelled_orders,
            "missingPrices": self.missing_prices,
        }


def _iso(d) -> Optional[str]:
    return d.isoformat() if d else None


def _account_for(order, supplier) -> str:
    if supplier is not None and supplier.order_account:
        return supplier.order_account
    return order.order_account or UNKNOWN_ACCOUNT


def filter_orders(orders, supplier_by_id: dict, filters: PayoutFilters, now: Optional[datetime] = None) -> list:
    start, end = filters.window(now)
    currency = (filters.currency or "").strip().upper()

    out = []
    for o in orders:
        if not filters.selects(supplier_by_id.get(o.supplier_id)):
            continue
        if currency and (o.currency or "INR").upper() != currency:
            continue
        d = target_date(o, filters.pricing_basis)
        if d is None or not (start <= d <= end):
            continue
        out.append(o)
    return out


def payout_line(order, supplier, entry) -> dict:
    qty = order.qty if order.qty and order.qty > 0 else 1
    unit = unit_price_before_gst(entry)
    rate = gst_rate_or_default(entry.gst_rate)
    line_amount = qty * unit
    gst_amount = line_amount * rate / 100
    return {
        "orderId": order.id,
        "awbNo": order.awb_no,
        "supplierId": order.supplier_id,
        "supplierName": supplier.name if supplier else None,
        "productName": order.product_name,
        "courier": order.courier,
        "orderAccount": _account_for(order, supplier),
        "status": order.status,
        "qty": qty,
        "currency": order.currency or "INR",
        "orderDate": _iso(order.order_date or order.channel_order_date),
        "deliveredDate": _iso(order.delivered_date),
        "hsn": entry.hsn or "",
        "gstRate": rate,
        "unitPriceBeforeGst": _r2(unit),
        "lineAmount": _r2(line_amount),
        "gstAmount": _r2(gst_amount),
        "totalWithGst": _r2(line_amount + gst_amount),
        "priceMatch": "exact" if entry.supplier_id == order.supplier_id else "product",
    }


def _supplier_label(filters: PayoutFilters, supplier_by_id: dict, lines: list[dict]) -> str:
    if filters.suppliers:
        n = len(filters.suppliers)
        if n == 1:
            sel = filters.suppliers[0]
            sup = supplier_by_id.get(sel)
            return sup.name if sup else sel
        return f"{n} Suppliers Combined"
    names = {l["supplierName"] for l in lines if l["supplierName"]}
    if len(names) == 1:
        return next(iter(names))
    return "All Suppliers"


def calculate_payouts(orders, entries, suppliers, filters: PayoutFilters, now: Optional[datetime] = None) -> PayoutResult:
    """
    Payable orders in the window priced through the exact-then-product
    lookup. Orders whose price is unusable (none, 0, negative, NaN) go to
    `missing_prices`; cancelled / RTO / lost orders go to `cancelled_orders`.
    """
    now = now or datetime.utcnow()
    book = entries if isinstance(entries, PriceBook) else PriceBook(entries)
    supplier_by_id = {s.id: s for s in suppliers}
    start, end = filters.window(now)

    lines: list[dict] = []
    cancelled: list[dict] = []
    missing: list[dict] = []

    for o in filter_orders(orders, supplier_by_id, filters, now):
        sup = supplier_by_id.get(o.supplier_id)
        tag = classify(o.status)

        if tag in EXCLUDED:
            cancelled.append({
                "orderId": o.id,
                "awbNo": o.awb_no,
                "supplierName": sup.name if sup else None,
                "productName": o.product_name,
                "status": o.status,
                "qty": o.qty,
                "orderDate": _iso(o.order_date or o.channel_order_date),
            })
            continue
        if tag not in PAYABLE:
            continue

        entry = book.match_exact_then_product_fallback(o.supplier_id, o.product_name)
        unit = unit_price_before_gst(entry) if entry is not None else None
        if unit is None or math.isnan(unit) or unit <= 0:
            missing.append({
                "supplierName": sup.name if sup else None,
                "productName": o.product_name,
                "hsn": (entry.hsn or "") if entry is not None else "",
                "orderQty": o.qty,
                "awbNo": o.awb_no,
                "orderDate": _iso(o.order_date or o.channel_order_date),
            })
            continue

        line = payout_line(o, sup, entry)
        if filters.min_amount is not None and line["totalWithGst"] < filters.min_amount:
            continue
        line["_delivered"] = o.delivered_date
        lines.append(line)

    recent_cutoff = now - timedelta(days=NEW_DELIVERY_DAYS)
    new_deliveries = sum(1 for l in lines if l["_delivered"] and l["_delivered"] >= recent_cutoff)
    for l in lines:
        l.pop("_delivered")

    pre = sum(l["lineAmount"] for l in lines)
    gst = sum(l["gstAmount"] for l in lines)
    post = sum(l["totalWithGst"] for l in lines)
    count = len(lines)

    summary = {
        "supplier": _supplier_label(filters, supplier_by_id, lines),
        "dateRange": {"from": start.date().isoformat(), "to": end.date().isoformat(), "basis": filters.pricing_basis},
        "deliveriesCount": count,
        "totalDeliveredQty": sum(l["qty"] for l in lines),
        "totalPreGstAmount": _r2(pre),
        "totalGstAmount": _r2(gst),
        "totalPostGstAmount": _r2(post),
        "averageGstRate": _r2(gst / pre * 100) if pre else 0.0,
        "uniqueProducts": len({l["productName"] for l in lines}),
        "avgOrderValue": _r2(post / count) if count else 0.0,
        "newDeliveries": new_deliveries,
        "cancelledCount": len(cancelled),
        "missingPriceCount": len(missing),
    }
    return PayoutResult(lines=lines, summary=summary, cancelled_orders=cancelled, missing_prices=missing)


def summarize_by_order_account(result: PayoutResult) -> list[dict]:
    groups: dict[str, dict] = {}
    for l in result.lines:
        acct = l["orderAccount"] or UNKNOWN_ACCOUNT
        g = groups.setdefault(acct, {
            "orderAccount": acct,
            "orderCount": 0,
            "totalQty": 0,
            "totalPreGst": 0.0,
            "totalGst": 0.0,
            "totalPostGst": 0.0,
            "_products": set(),
            "_suppliers": set(),
        })
        g["orderCount"] += 1
        g["totalQty"] += l["qty"]
        g["totalPreGst"] += l["lineAmount"]
        g["totalGst"] += l["gstAmount"]
        g["totalPostGst"] += l["totalWithGst"]
        g["_products"].add(l["productName"])
        if l["supplierName"]:
            g["_suppliers"].add(l["supplierName"])

    out = []
    for g in groups.values():
        products = g.pop("_products")
        sups = sorted(g.pop("_suppliers"))
        g["totalPreGst"] = _r2(g["totalPreGst"])
        g["totalGst"] = _r2(g["totalGst"])
        g["totalPostGst"] = _r2(g["totalPostGst"])
        g["uniqueProducts"] = len(products)
        g["suppliers"] = sups
        g["supplierCount"] = len(sups)
        g["avgOrderValue"] = _r2(g["totalPostGst"] / g["orderCount"]) if g["orderCount"] else 0.0
        out.append(g)

    out.sort(key=lambda g: g["totalPostGst"], reverse=True)
    return out


def summarize_by_supplier(orders, entries, suppliers, filters: PayoutFilters, now: Optional[datetime] = None) -> list[dict]:
    """
    Suppliers with at least one payable, priced order in the window.

    Uses the post-GST price divided back by the rate; entries priced at 0 or
    below are skipped.
    """
    book = entries if isinstance(entries, PriceBook) else PriceBook(entries)
    supplier_by_id = {s.id: s for s in suppliers}

    agg: dict[str, dict] = {}
    for o in filter_orders(orders, supplier_by_id, filters, now):
        if classify(o.status) not in PAYABLE:
            continue
        entry = book.match_exact_then_product_fallback(o.supplier_id, o.product_name)
        if entry is None or not entry.price or entry.price <= 0:
            continue

        sup = supplier_by_id.get(o.supplier_id)
        if sup is None:
            continue
        qty = o.qty if o.qty and o.qty > 0 else 1
        rate = gst_rate_or_default(entry.gst_rate)
        pre = qty * entry.price / (1 + rate / 100)
        gst = pre * rate / 100

        a = agg.setdefault(sup.id, {
            "supplierId": sup.id,
            "supplierName": sup.name,
            "orderAccount": sup.order_account,
            "gstin": sup.gstin,
            "deliveredOrders": 0,
            "totalQty": 0,
            "totalPreGst": 0.0,
            "totalGst": 0.0,
            "totalPostGst": 0.0,
            "_products": set(),
        })
        a["deliveredOrders"] += 1
        a["totalQty"] += qty
        a["totalPreGst"] += pre
        a["totalGst"] += gst
        a["totalPostGst"] += pre + gst
        a["_products"].add(o.product_name)

    out = []
    for a in agg.values():
        a["uniqueProducts"] = len(a.pop("_products"))
        for k in ("totalPreGst", "totalGst", "totalPostGst"):
            a[k] = _r2(a[k])
        out.append(a)
    out.sort(key=lambda a: a["totalPostGst"], reverse=True)
    return out


def dashboard_stats(orders, suppliers, entries, status_counts: Optional[dict] = None) -> dict:
    """
    Headline numbers for the dashboard. `status_counts` (raw status -> count)
    may come from a grouped query; it is derived from `orders` otherwise.
    """
    book = entries if isinstance(entries, PriceBook) else PriceBook(entries)

    if status_counts is None:
        status_counts = defaultdict(int)
        for o in orders:
            status_counts[o.status] += 1

    by_tag: dict[ShipmentStatus, int] = defaultdict(int)
    for raw, n in status_counts.items():
        by_tag[classify(raw)] += n

    totals = []
    for o in orders:
        if classify(o.status) not in PAYABLE:
            continue
        entry = book.match_exact_then_product_fallback(o.supplier_id, o.product_name)
        if entry is None or unit_price_before_gst(entry) <= 0:
            continue
        totals.append(payout_line(o, None, entry)["totalWithGst"])

    last = max((o.created_at for o in orders if o.created_at), default=None)
    return {
        "totalOrders": sum(status_counts.values()),
        "totalSuppliers": len(suppliers),
        "totalPriceEntries": len(book.entries),
        "uniqueProducts": len({o.product_name for o in orders}),
        "averageOrderValue": _r2(sum(totals) / len(totals)) if totals else 0.0,
        "deliveredOrders": by_tag[ShipmentStatus.DELIVERED] + by_tag[ShipmentStatus.COMPLETED],
        "cancelledOrders": by_tag[ShipmentStatus.CANCELLED],
        "rtsOrders": sum(by_tag[t] for t in RETURNED),
        "lastUpdated": (last or datetime.utcnow()).isoformat(),
    }
