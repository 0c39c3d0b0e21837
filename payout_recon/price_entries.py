# payout_recon/price_entries.py
# Price entry CRUD + bulk price list upsert

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from payout_recon.db import with_read_retry
from payout_recon.errors import NotFound
from payout_recon.file_parser import ParsedFile
from payout_recon.models import PriceEntry, Supplier
from payout_recon.normalizer import to_float, to_str, parse_date_any
from payout_recon.pricing import DEFAULT_GST_RATE

logger = logging.getLogger(__name__)

# Accepted header spellings per field: template header first, then alternates.
BULK_COLUMNS = {
    "supplier_name": ("Supplier Name", "supplier_name", "SupplierName"),
    "product_name": ("Product Name", "product_name", "ProductName"),
    "price_before_gst": ("Price Before GST (INR)", "price_before_gst", "PriceBeforeGST"),
    "gst_rate": ("GST Rate (%)", "gst_rate", "GSTRate"),
    "price_after_gst": ("Price After GST (INR)", "price_after_gst", "PriceAfterGST"),
    "hsn": ("HSN Code", "hsn_code", "HSN"),
    "currency": ("Currency", "currency"),
    "effective_from": ("Effective From (YYYY-MM-DD)", "effective_from"),
    "effective_to": ("Effective To (YYYY-MM-DD)", "effective_to"),
}


def entry_to_dict(e: PriceEntry) -> dict:
    return {
        "id": e.id,
        "supplierId": e.supplier_id,
        "supplierName": e.supplier.name if e.supplier is not None else None,
        "productName": e.product_name,
        "currency": e.currency,
        "price": e.price,
        "priceBeforeGst": e.price_before_gst,
        "gstRate": e.gst_rate,
        "hsn": e.hsn,
        "effectiveFrom": e.effective_from.isoformat() if e.effective_from else None,
        "effectiveTo": e.effective_to.isoformat() if e.effective_to else None,
        "createdAt": e.created_at.isoformat() if e.created_at else None,
    }


def resolve_prices(price_after, price_before, gst_rate) -> Optional[tuple[float, float]]:
    """
    (post-GST, pre-GST) from whichever price was given. 0 is a real price;
    negative or unparsable values give None.
    """
    after = to_float(price_after)
    before = to_float(price_before)
    if after is not None and after != after:
        after = None
    if before is not None and before != before:
        before = None

    if after is not None and after >= 0:
        final = after
    elif before is not None and before >= 0:
        final = before * (1 + gst_rate / 100)
    else:
        return None

    if before is None or before < 0:
        before = final / (1 + gst_rate / 100)
    return round(final, 2), round(before, 2)


def _cell(row: dict, field_name: str):
    for header in BULK_COLUMNS[field_name]:
        v = to_str(row.get(header))
        # formula text from a sheet saved without cached values
        if v is not None and not v.startswith("="):
            return v
    return None


def _get_or_create_supplier(db: Session, name: str, cache: dict) -> Supplier:
    sup = cache.get(name)
    if sup is None:
        sup = db.query(Supplier).filter(Supplier.name == name).first()
    if sup is None:
        sup = Supplier(name=name)
        db.add(sup)
        db.flush()
        logger.info("Created new supplier from price list: %s", name)
    cache[name] = sup
    return sup


@with_read_retry
def list_price_entries(db: Session, supplier_id: Optional[str] = None, search: Optional[str] = None) -> list[PriceEntry]:
    q = db.query(PriceEntry)
    if supplier_id:
        q = q.filter(PriceEntry.supplier_id == supplier_id)
    if search:
        q = q.filter(PriceEntry.product_name.ilike(f"%{search}%"))
    return q.order_by(PriceEntry.product_name.asc(), PriceEntry.created_at.desc()).all()


def create_price_entry(db: Session, data: dict) -> PriceEntry:
    rate = to_float(data.get("gst_rate"), DEFAULT_GST_RATE)
    prices = resolve_prices(data.get("price"), data.get("price_before_gst"), rate)
    if prices is None:
        raise ValueError("Price must be 0 or a positive number")

    supplier_id = data.get("supplier_id")
    if supplier_id is None and data.get("supplier_name"):
        supplier_id = _get_or_create_supplier(db, data["supplier_name"], {}).id

    e = PriceEntry(
        supplier_id=supplier_id,
        product_name=data["product_name"].strip(),
        currency=data.get("currency") or "INR",
        price=prices[0],
        price_before_gst=prices[1],
        gst_rate=rate,
        hsn=data.get("hsn") or "",
        effective_from=parse_date_any(data.get("effective_from")) or datetime.utcnow(),
        effective_to=parse_date_any(data.get("effective_to")),
    )
    db.add(e)
    db.commit()
    db.refresh(e)
    return e


def update_price_entry(db: Session, entry_id: str, data: dict) -> PriceEntry:
    e = db.get(PriceEntry, entry_id)
    if e is None:
        raise NotFound(f"Price entry {entry_id} not found")

    rate_changed = data.get("gst_rate") is not None
    if rate_changed:
        e.gst_rate = to_float(data["gst_rate"], e.gst_rate)
    if data.get("price") is not None or data.get("price_before_gst") is not None:
        prices = resolve_prices(data.get("price"), data.get("price_before_gst"), e.gst_rate)
        if prices is None:
            raise ValueError("Price must be 0 or a positive number")
        e.price, e.price_before_gst = prices
    elif rate_changed:
        # the after-GST price stays; the pre-GST price follows the new rate
        prices = resolve_prices(e.price, None, e.gst_rate)
        if prices is not None:
            e.price, e.price_before_gst = prices
    for key in ("product_name", "currency", "hsn", "supplier_id"):
        if data.get(key) is not None:
            setattr(e, key, data[key])
    if data.get("effective_from") is not None:
        e.effective_from = parse_date_any(data["effective_from"]) or e.effective_from
    if "effective_to" in data:
        e.effective_to = parse_date_any(data["effective_to"])

    db.commit()
    db.refresh(e)
    return e


def delete_price_entry(db: Session, entry_id: str) -> None:
    e = db.get(PriceEntry, entry_id)
    if e is None:
        raise NotFound(f"Price entry {entry_id} not found")
    db.delete(e)
    db.commit()


def bulk_upsert_price_entries(db: Session, parsed: ParsedFile, default_supplier: Optional[str] = None) -> dict:
    """
    Apply a price list. Rows are keyed by (supplier, product): existing
    entries are updated, others created. Bad rows are reported as
    "Row N: ..." (N = spreadsheet row, header is row 1) and skipped.
    """
    existing = {(e.supplier_id, e.product_name): e for e in db.query(PriceEntry).all()}
    suppliers: dict[str, Supplier] = {}

    created = updated = 0
    errors: list[str] = []
    seen_suppliers: set[str] = set()

    for i, row in enumerate(parsed.data, start=2):
        supplier_name = _cell(row, "supplier_name") or (default_supplier or "").strip()
        product_name = _cell(row, "product_name")
        if not supplier_name:
            errors.append(f'Row {i}: Supplier name is required (check "Supplier Name" column)')
            continue
        if not product_name:
            errors.append(f"Row {i}: Product name is required")
            continue

        rate = to_float(_cell(row, "gst_rate"), DEFAULT_GST_RATE)
        prices = resolve_prices(_cell(row, "price_after_gst"), _cell(row, "price_before_gst"), rate)
        if prices is None:
            errors.append(f"Row {i}: Invalid price values (negative values not allowed)")
            continue

        sup = _get_or_create_supplier(db, supplier_name, suppliers)
        seen_suppliers.add(supplier_name)

        values = {
            "price": prices[0],
            "price_before_gst": prices[1],
            "gst_rate": rate,
            "hsn": _cell(row, "hsn") or "",
            "currency": _cell(row, "currency") or "INR",
            "effective_from": parse_date_any(_cell(row, "effective_from")) or datetime.utcnow(),
            "effective_to": parse_date_any(_cell(row, "effective_to")),
        }

        e = existing.get((sup.id, product_name))
        if e is not None:
            for k, v in values.items():
                setattr(e, k, v)
            updated += 1
        else:
            e = PriceEntry(supplier_id=sup.id, product_name=product_name, **values)
            db.add(e)
            existing[(sup.id, product_name)] = e
            created += 1

    db.commit()
    logger.info("Price list applied: %d created, %d updated, %d errors", created, updated, len(errors))
    return {
        "processed": created + updated,
        "created": created,
        "updated": updated,
        "suppliers": len(seen_suppliers),
        "errors": errors,
    }
