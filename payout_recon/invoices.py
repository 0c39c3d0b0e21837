# payout_recon/invoices.py
# GST invoice assembly (data only; rendering happens elsewhere)

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional

from payout_recon.errors import NotFound
from payout_recon.payouts import ORDER_DATE, as_day, target_date
from payout_recon.pricing import PriceBook, gst_rate_or_default
from payout_recon.statuses import PAYABLE, classify

logger = logging.getLogger(__name__)

DEFAULT_TERMS = (
    "Payment due within 30 days\n"
    "All disputes subject to local jurisdiction\n"
    "Goods once sold cannot be returned\n"
    "Subject to delivery as per terms agreed"
)


@dataclass
class PartyDetails:
    """GSTIN lookup result, or details typed in by the user."""

    gstin: Optional[str] = None
    trade_name: Optional[str] = None
    address: Optional[str] = None
    ship_to_address: Optional[str] = None
    place_of_supply: Optional[str] = None


@dataclass
class InvoiceRequest:
    date_from: date
    date_to: date
    date_type: str = ORDER_DATE
    buyer_name: str = ""
    buyer_gstin: str = ""
    buyer_address: str = ""
    ship_to_address: Optional[str] = None
    place_of_supply: Optional[str] = None
    terms: Optional[str] = None
    supplier_details: Optional[PartyDetails] = None

    def __post_init__(self):
        self.date_from = as_day(self.date_from)
        self.date_to = as_day(self.date_to)


def _stamp(now: datetime) -> int:
    return int(now.timestamp() * 1000)


def build_supplier_invoice(supplier, orders, book: PriceBook, req: InvoiceRequest, now: Optional[datetime] = None) -> Optional[dict]:
    """
    One supplier's invoice, or None when nothing in the window is billable.

    Orders are first cut to the date window, then to delivered/completed.
    Prices come from the exact supplier+product entry only; orders without a
    positive price (or with qty <= 0) are left off.
    """
    now = now or datetime.utcnow()
    start = datetime.combine(req.date_from, time.min)
    end = datetime.combine(req.date_to, time.max)

    in_range = []
    for o in orders:
        if o.supplier_id != supplier.id:
            continue
        d = target_date(o, req.date_type)
        if d is not None and start <= d <= end:
            in_range.append(o)

    delivered = [o for o in in_range if classify(o.status) in PAYABLE]
    logger.info(
        "Invoice %s: %d orders in range, %d delivered/completed",
        supplier.name, len(in_range), len(delivered),
    )
    if not delivered:
        return None

    items: dict[str, dict] = {}
    for o in delivered:
        entry = book.match_exact_only(supplier.id, o.product_name)
        if entry is None:
            continue
        qty = o.qty or 0
        price = entry.price or 0
        if price <= 0 or qty <= 0:
            continue

        rate = gst_rate_or_default(entry.gst_rate)
        unit = price / (1 + rate / 100)
        amount = unit * qty
        gst = amount * rate / 100

        item = items.get(o.product_name)
        if item is None:
            items[o.product_name] = {
                "productName": o.product_name,
                "quantity": qty,
                "unitPrice": unit,
                "gstRate": rate,
                "amount": amount,
                "gstAmount": gst,
                "totalAmount": amount + gst,
                "hsn": entry.hsn or "",
            }
        else:
            item["quantity"] += qty
            item["amount"] += amount
            item["gstAmount"] += gst
            item["totalAmount"] += amount + gst

    if not items:
        return None

    lines = list(items.values())
    before = sum(i["amount"] for i in lines)
    gst_total = sum(i["gstAmount"] for i in lines)
    for i in lines:
        for k in ("unitPrice", "amount", "gstAmount", "totalAmount"):
            i[k] = round(i[k], 2)

    details = req.supplier_details or PartyDetails()
    supplier_address = supplier.address or details.address
    return {
        "invoiceNumber": f"GST-{''.join(supplier.name.upper().split())}-{_stamp(now)}",
        "invoiceDate": now.date().isoformat(),
        "supplierName": supplier.name,
        "supplierGSTIN": supplier.gstin or details.gstin or "N/A",
        "supplierTradeName": supplier.trade_name or details.trade_name or supplier.name,
        "supplierAddress": supplier_address or "N/A",
        "supplierShipToAddress": supplier.ship_to_address or supplier_address or details.ship_to_address or "N/A",
        "buyerName": req.buyer_name,
        "buyerGSTIN": req.buyer_gstin,
        "buyerAddress": req.buyer_address,
        "shipToAddress": req.ship_to_address or req.buyer_address,
        "placeOfSupply": supplier.place_of_supply or details.place_of_supply or req.place_of_supply or "",
        "termsAndConditions": req.terms or DEFAULT_TERMS,
        "dateRange": {"from": req.date_from.isoformat(), "to": req.date_to.isoformat(), "dateType": req.date_type},
        "ordersInRange": len(in_range),
        "deliveredOrders": len(delivered),
        "items": lines,
        "totalAmountBeforeGST": round(before, 2),
        "totalGSTAmount": round(gst_total, 2),
        "totalAmountAfterGST": round(before + gst_total, 2),
    }


def combine_invoices(invoices: list[dict], now: Optional[datetime] = None) -> dict:
    if len(invoices) == 1:
        return invoices[0]

    now = now or datetime.utcnow()
    trade_names = list(dict.fromkeys(i["supplierTradeName"] or i["supplierName"] for i in invoices))
    combined = dict(invoices[0])
    combined.update({
        "invoiceNumber": f"GST-MULTI-{_stamp(now)}",
        "supplierName": ", ".join(i["supplierName"] for i in invoices),
        "supplierTradeName": trade_names[0] if len(trade_names) == 1 else ", ".join(trade_names),
        "items": [item for i in invoices for item in i["items"]],
        "ordersInRange": sum(i["ordersInRange"] for i in invoices),
        "deliveredOrders": sum(i["deliveredOrders"] for i in invoices),
        "totalAmountBeforeGST": round(sum(i["totalAmountBeforeGST"] for i in invoices), 2),
        "totalGSTAmount": round(sum(i["totalGSTAmount"] for i in invoices), 2),
        "totalAmountAfterGST": round(sum(i["totalAmountAfterGST"] for i in invoices), 2),
        "supplierInvoices": [i["invoiceNumber"] for i in invoices],
    })
    return combined


def assemble_invoice(suppliers, orders, entries, req: InvoiceRequest, now: Optional[datetime] = None) -> dict:
    """One invoice per supplier, merged into a single document when several."""
    now = now or datetime.utcnow()
    book = entries if isinstance(entries, PriceBook) else PriceBook(entries)

    invoices = []
    for sup in suppliers:
        inv = build_supplier_invoice(sup, orders, book, req, now)
        if inv is not None:
            invoices.append(inv)

    if not invoices:
        raise NotFound("No invoices could be generated for selected suppliers")
    return combine_invoices(invoices, now)
