# payout_recon/supplier_routes.py
# Suppliers: listing, missing-price overview, order account, GST details upload

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, File, HTTPException, Query, UploadFile
from pydantic import BaseModel

from payout_recon.db import SessionLocal
from payout_recon.errors import ReconError, http_error
from payout_recon.file_parser import parse_tabular_file
from payout_recon.models import Order, PriceEntry, Supplier
from payout_recon.pricing import suppliers_with_missing_prices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/suppliers", tags=["suppliers"])

GSTIN_LENGTH = 15


class OrderAccountIn(BaseModel):
    orderAccount: Optional[str] = None


def supplier_to_dict(s: Supplier) -> dict:
    return {
        "id": s.id,
        "name": s.name,
        "orderAccount": s.order_account,
        "gstin": s.gstin,
        "tradeName": s.trade_name,
        "address": s.address,
        "shipToAddress": s.ship_to_address,
        "placeOfSupply": s.place_of_supply,
        "createdAt": s.created_at.isoformat() if s.created_at else None,
    }


@router.get("")
def list_suppliers():
    db = SessionLocal()
    try:
        return [supplier_to_dict(s) for s in db.query(Supplier).order_by(Supplier.name.asc()).all()]
    finally:
        db.close()


@router.get("/with-missing-prices")
def with_missing_prices(
    sortBy: str = Query("missing_prices", description="name | missing_prices | total_orders | created_at"),
    sortOrder: str = Query("desc"),
):
    db = SessionLocal()
    try:
        return suppliers_with_missing_prices(
            db.query(Order).all(),
            db.query(PriceEntry).all(),
            db.query(Supplier).all(),
            sort_by=sortBy,
            sort_order=sortOrder,
        )
    finally:
        db.close()


@router.patch("/{supplier_id}/order-account")
def set_order_account(supplier_id: str, body: OrderAccountIn):
    db = SessionLocal()
    try:
        s = db.get(Supplier, supplier_id)
        if s is None:
            raise HTTPException(404, "Supplier not found")
        s.order_account = (body.orderAccount or "").strip() or None
        db.commit()
        db.refresh(s)
        return {"success": True, "supplier": supplier_to_dict(s)}
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        raise HTTPException(500, f"Failed to update supplier order account: {e}")
    finally:
        db.close()


def _find_col(headers: list[str], *needles: str) -> Optional[str]:
    for h in headers:
        low = h.lower()
        if any(n in low for n in needles):
            return h
    return None


@router.post("/gst-data")
def upload_gst_data(file: UploadFile = File(...)):
    """
    GSTIN / trade name / address sheet. Rows are matched to suppliers by
    name containment; unmatched rows create a supplier.
    """
    db = SessionLocal()
    try:
        content = file.file.read()
        parsed = parse_tabular_file(content, file.content_type, file.filename)

        gstin_col = _find_col(parsed.headers, "gstin", "gst", "tin")
        if gstin_col is None:
            raise HTTPException(400, "GSTIN column not found. Expected columns: GSTIN, Trade Name, Address")
        name_col = _find_col([h for h in parsed.headers if h != gstin_col], "trade", "company", "name")
        address_col = _find_col(parsed.headers, "address", "addr")
        place_col = _find_col(parsed.headers, "place", "state", "supply")

        suppliers = db.query(Supplier).all()
        updated = created = skipped = 0
        for row in parsed.data:
            gstin = (row.get(gstin_col) or "").strip().upper()
            if len(gstin) != GSTIN_LENGTH:
                skipped += 1
                continue
            trade_name = (row.get(name_col) or "").strip() if name_col else ""
            address = (row.get(address_col) or "").strip() if address_col else ""
            place = (row.get(place_col) or "").strip() if place_col else ""

            key = trade_name.split(" ")[0].lower() if trade_name else ""
            match = None
            if key:
                for s in suppliers:
                    n = s.name.lower()
                    if key in n or n in key:
                        match = s
                        break

            if match is not None:
                match.gstin = gstin
                match.trade_name = trade_name or match.name
                match.address = address or match.address
                match.ship_to_address = address or match.ship_to_address
                match.place_of_supply = place or match.place_of_supply
                updated += 1
            else:
                s = Supplier(
                    name=trade_name or f"Supplier_{gstin}",
                    gstin=gstin,
                    trade_name=trade_name or None,
                    address=address or None,
                    ship_to_address=address or None,
                    place_of_supply=place or None,
                )
                db.add(s)
                suppliers.append(s)
                created += 1

        db.commit()
        logger.info("GST data: %d suppliers updated, %d created, %d rows skipped", updated, created, skipped)
        return {
            "success": True,
            "count": updated + created,
            "updated": updated,
            "created": created,
            "skipped": skipped,
            "message": f"Successfully processed GST data for {updated + created} suppliers",
        }
    except ReconError as e:
        raise http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        raise HTTPException(500, {"error": "Failed to process GST data file", "details": str(e)})
    finally:
        db.close()
