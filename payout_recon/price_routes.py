# payout_recon/price_routes.py
# Price / HSN / GST table: CRUD, bulk upload, missing-price reporting

from __future__ import annotations

import io
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from payout_recon.db import SessionLocal
from payout_recon.errors import ReconError, http_error
from payout_recon.exports import missing_price_template_xlsx
from payout_recon.file_parser import parse_tabular_file
from payout_recon.models import Order, PriceEntry, Supplier
from payout_recon.price_entries import (
    bulk_upsert_price_entries,
    create_price_entry,
    delete_price_entry,
    entry_to_dict,
    list_price_entries,
    update_price_entry,
)
from payout_recon.pricing import find_missing_prices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["prices"])


class PriceEntryIn(BaseModel):
    supplier_id: Optional[str] = None
    supplier_name: Optional[str] = None
    product_name: str
    price: Optional[float] = None
    price_before_gst: Optional[float] = None
    gst_rate: Optional[float] = None
    hsn: Optional[str] = None
    currency: Optional[str] = "INR"
    effective_from: Optional[str] = None
    effective_to: Optional[str] = None


class PriceEntryPatch(BaseModel):
    supplier_id: Optional[str] = None
    product_name: Optional[str] = None
    price: Optional[float] = None
    price_before_gst: Optional[float] = None
    gst_rate: Optional[float] = None
    hsn: Optional[str] = None
    currency: Optional[str] = None
    effective_from: Optional[str] = None
    effective_to: Optional[str] = None


@router.get("/price-entries")
def get_price_entries(supplier_id: Optional[str] = Query(None), search: Optional[str] = Query(None)):
    db = SessionLocal()
    try:
        return [entry_to_dict(e) for e in list_price_entries(db, supplier_id, search)]
    finally:
        db.close()


@router.post("/price-entries")
def post_price_entry(body: PriceEntryIn):
    db = SessionLocal()
    try:
        e = create_price_entry(db, body.model_dump())
        return entry_to_dict(e)
    except ValueError as e:
        db.rollback()
        raise HTTPException(400, {"error": "Invalid price entry", "message": str(e)})
    except Exception as e:
        db.rollback()
        raise HTTPException(500, f"Failed to create price entry: {e}")
    finally:
        db.close()


@router.put("/price-entries/{entry_id}")
def put_price_entry(entry_id: str, body: PriceEntryPatch):
    db = SessionLocal()
    try:
        e = update_price_entry(db, entry_id, body.model_dump(exclude_unset=True))
        return entry_to_dict(e)
    except ReconError as e:
        raise http_error(e)
    except ValueError as e:
        db.rollback()
        raise HTTPException(400, {"error": "Invalid price entry", "message": str(e)})
    except Exception as e:
        db.rollback()
        raise HTTPException(500, f"Failed to update price entry: {e}")
    finally:
        db.close()


@router.delete("/price-entries/{entry_id}")
def remove_price_entry(entry_id: str):
    db = SessionLocal()
    try:
        delete_price_entry(db, entry_id)
        return {"ok": True}
    except ReconError as e:
        raise http_error(e)
    except Exception as e:
        db.rollback()
        raise HTTPException(500, f"Failed to delete price entry: {e}")
    finally:
        db.close()


@router.post("/price-entries/bulk-upload")
def bulk_upload_prices(
    file: UploadFile = File(...),
    supplier_name: Optional[str] = Form(None),
):
    """Price list in the missing-price template layout (or snake/camel headers)."""
    db = SessionLocal()
    try:
        content = file.file.read()
        parsed = parse_tabular_file(content, file.content_type, file.filename)
        result = bulk_upsert_price_entries(db, parsed, default_supplier=supplier_name)
        return {"success": True, **result}
    except ReconError as e:
        raise http_error(e)
    except Exception as e:
        db.rollback()
        logger.exception("Bulk price upload failed")
        raise HTTPException(500, {"error": "Bulk upload failed", "details": str(e)})
    finally:
        db.close()


def _missing(db, supplier_name: Optional[str]) -> list[dict]:
    orders = db.query(Order).all()
    entries = db.query(PriceEntry).all()
    suppliers = db.query(Supplier).all()
    return find_missing_prices(orders, entries, suppliers, supplier_name=supplier_name)


@router.get("/missing-price-entries")
def missing_price_entries(supplier: Optional[str] = Query(None)):
    db = SessionLocal()
    try:
        return _missing(db, supplier)
    finally:
        db.close()


@router.get("/export/missing-price-entries")
def export_missing_price_entries(supplier: Optional[str] = Query(None)):
    db = SessionLocal()
    try:
        missing = _missing(db, supplier)
        today = datetime.utcnow().date().isoformat()
        content = missing_price_template_xlsx(missing, effective_from=today)
        return StreamingResponse(
            io.BytesIO(content),
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers={"Content-Disposition": f"attachment; filename=missing_prices_{today}.xlsx"},
        )
    finally:
        db.close()
