# payout_recon/pricing.py
# Price/HSN/GST lookup over price entries

from __future__ import annotations

import math
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional

DEFAULT_GST_RATE = 18.0


def _num(v) -> Optional[float]:
    if v is None:
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(f) else f


def gst_rate_or_default(rate) -> float:
    f = _num(rate)
    return DEFAULT_GST_RATE if f is None else f


def price_before_gst(price, gst_rate=None) -> float:
    """Post-GST unit price -> pre-GST unit price (118 @ 18% -> 100.0)."""
    p = _num(price) or 0.0
    rate = gst_rate_or_default(gst_rate)
    return round(p / (1 + rate / 100), 2)


def unit_price_before_gst(entry) -> float:
    """Stored pre-GST price; derived from the post-GST price when absent."""
    stored = _num(getattr(entry, "price_before_gst", None))
    if stored is not None:
        return stored
    return price_before_gst(entry.price, entry.gst_rate)


def _precedence(entry):
    eff = entry.effective_from or datetime.min
    return (-eff.timestamp() if eff != datetime.min else math.inf, str(entry.id or ""))


class PriceBook:
    """
    Index of price entries.

    Among entries sharing a key the one with the latest effective_from wins,
    then the lowest id. Effective windows are not used to filter matches.

    Two lookups are offered and picked per call site:
    - match_exact_then_product_fallback: payouts
    - match_exact_only: invoices
    """

    def __init__(self, entries: Iterable):
        self.entries = sorted(entries, key=_precedence)
        self._exact: dict[tuple, object] = {}
        self._by_product: dict[str, object] = {}
        for e in self.entries:
            self._exact.setdefault((e.supplier_id, e.product_name), e)
            self._by_product.setdefault(e.product_name, e)

    def match_exact_only(self, supplier_id, product_name):
        return self._exact.get((supplier_id, product_name))

    def match_exact_then_product_fallback(self, supplier_id, product_name):
        hit = self._exact.get((supplier_id, product_name))
        if hit is not None:
            return hit
        return self._by_product.get(product_name)

    def has_exact(self, supplier_id, product_name) -> bool:
        return (supplier_id, product_name) in self._exact


def _order_day(o) -> Optional[datetime]:
    return o.order_date or o.channel_order_date or o.created_at


def find_missing_prices(orders, entries, suppliers, supplier_name: Optional[str] = None) -> list[dict]:
    """
    Supplier/product combinations ordered but with no exact price entry.

    Any stored entry counts as priced, including one at 0.
    """
    book = entries if isinstance(entries, PriceBook) else PriceBook(entries)
    names = {s.id: s.name for s in suppliers}

    groups: dict[tuple, dict] = {}
    for o in orders:
        sname = names.get(o.supplier_id, "Unknown Supplier")
        if supplier_name and sname != supplier_name:
            continue
        if book.has_exact(o.supplier_id, o.product_name):
            continue

        key = (o.supplier_id, o.product_name)
        g = groups.get(key)
        day = _order_day(o)
        if g is None:
            groups[key] = {
                "supplierId": o.supplier_id,
                "supplierName": sname,
                "productName": o.product_name,
                "orderCount": 1,
                "latestOrderDate": day,
                "supplierProductId": f"{sname}{o.product_name}",
                "needsPricing": True,
            }
        else:
            g["orderCount"] += 1
            if day and (g["latestOrderDate"] is None or day > g["latestOrderDate"]):
                g["latestOrderDate"] = day

    out = sorted(groups.values(), key=lambda g: (g["supplierName"], g["productName"]))
    for g in out:
        if g["latestOrderDate"] is not None:
            g["latestOrderDate"] = g["latestOrderDate"].isoformat()
    return out


SUPPLIER_SORTS = ("name", "missing_prices", "total_orders", "created_at")


def suppliers_with_missing_prices(orders, entries, suppliers, sort_by: str = "missing_prices", sort_order: str = "desc") -> list[dict]:
    book = entries if isinstance(entries, PriceBook) else PriceBook(entries)

    order_counts: dict[str, int] = defaultdict(int)
    products: dict[str, set] = defaultdict(set)
    missing: dict[str, set] = defaultdict(set)
    for o in orders:
        order_counts[o.supplier_id] += 1
        products[o.supplier_id].add(o.product_name)
        if not book.has_exact(o.supplier_id, o.product_name):
            missing[o.supplier_id].add(o.product_name)

    rows = []
    for s in suppliers:
        total_products = len(products.get(s.id, ()))
        miss = len(missing.get(s.id, ()))
        rows.append({
            "id": s.id,
            "name": s.name,
            "orderAccount": s.order_account,
            "gstin": s.gstin,
            "totalOrders": order_counts.get(s.id, 0),
            "totalProducts": total_products,
            "missingPrices": miss,
            "missingPricePercentage": round(miss / total_products * 100, 2) if total_products else 0.0,
            "createdAt": s.created_at.isoformat() if s.created_at else None,
        })

    if sort_by not in SUPPLIER_SORTS:
        sort_by = "missing_prices"
    key = {
        "name": lambda r: r["name"].lower(),
        "missing_prices": lambda r: r["missingPrices"],
        "total_orders": lambda r: r["totalOrders"],
        "created_at": lambda r: r["createdAt"] or "",
    }[sort_by]
    rows.sort(key=key, reverse=(sort_order or "desc").lower() != "asc")
    return rows
