# payout_recon/payout_routes.py
# Orders, payouts, dashboard, invoices and status reconciliation

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy import func

from payout_recon.column_mapping import validate_mapping
from payout_recon.db import SessionLocal, with_read_retry
from payout_recon.errors import MappingNotSet, ReconError, UploadExpired, http_error
from payout_recon.exports import payout_lines_csv
from payout_recon.ingestion import load_upload
from payout_recon.invoices import InvoiceRequest, PartyDetails, assemble_invoice
from payout_recon.job_store import file_cache
from payout_recon.models import Order, PriceEntry, ReconciliationLog, Supplier
from payout_recon.normalizer import normalize_rows
from payout_recon.payouts import (
    DELIVERED_DATE,
    ORDER_DATE,
    PayoutFilters,
    calculate_payouts,
    dashboard_stats,
    summarize_by_order_account,
    summarize_by_supplier,
)
from payout_recon.reconciliation import log_to_dict, reconcile_statuses

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["payouts"])


class PayoutRequest(BaseModel):
    dateFrom: Optional[str] = None
    dateTo: Optional[str] = None
    pricingBasis: str = DELIVERED_DATE
    suppliers: list[str] = Field(default_factory=list)
    currency: Optional[str] = None
    minAmount: Optional[float] = None

    def filters(self) -> PayoutFilters:
        return PayoutFilters(
            date_from=self.dateFrom,
            date_to=self.dateTo,
            pricing_basis=self.pricingBasis,
            suppliers=self.suppliers,
            currency=self.currency,
            min_amount=self.minAmount,
        )


class InvoiceIn(BaseModel):
    suppliers: list[str]
    dateFrom: str
    dateTo: str
    dateType: str = ORDER_DATE
    buyerName: str
    buyerGSTIN: str
    buyerAddress: str
    shipToAddress: Optional[str] = None
    placeOfSupply: Optional[str] = None
    termsAndConditions: Optional[str] = None
    # values typed in (or looked up by GSTIN) for suppliers missing them
    supplierGSTIN: Optional[str] = None
    supplierTradeName: Optional[str] = None
    supplierAddress: Optional[str] = None
    supplierShipToAddress: Optional[str] = None


class StatusUpdate(BaseModel):
    awbNo: str
    status: str


class ReconcileIn(BaseModel):
    fileId: Optional[str] = None
    orders: list[StatusUpdate] = Field(default_factory=list)


@with_read_retry
def _load_all(db):
    return db.query(Order).all(), db.query(PriceEntry).all(), db.query(Supplier).all()


def order_to_dict(o: Order) -> dict:
    return {
        "id": o.id,
        "awbNo": o.awb_no,
        "supplierId": o.supplier_id,
        "productName": o.product_name,
        "courier": o.courier,
        "qty": o.qty,
        "currency": o.currency,
        "status": o.status,
        "previousStatus": o.previous_status,
        "orderAccount": o.order_account,
        "channelOrderDate": o.channel_order_date.isoformat() if o.channel_order_date else None,
        "orderDate": o.order_date.isoformat() if o.order_date else None,
        "deliveredDate": o.delivered_date.isoformat() if o.delivered_date else None,
        "rtsDate": o.rts_date.isoformat() if o.rts_date else None,
        "fileId": o.file_id,
        "source": o.source,
        "createdAt": o.created_at.isoformat() if o.created_at else None,
    }


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

@router.get("/orders")
def list_orders(
    source: Optional[str] = Query(None),
    supplier_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(5000, ge=1, le=100000),
):
    db = SessionLocal()
    try:
        q = db.query(Order)
        if source:
            q = q.filter(Order.source == source.lower())
        if supplier_id:
            q = q.filter(Order.supplier_id == supplier_id)
        if status:
            q = q.filter(func.lower(Order.status) == status.strip().lower())
        return [order_to_dict(o) for o in q.order_by(Order.created_at.desc()).limit(limit).all()]
    finally:
        db.close()


@router.delete("/orders/clear-all")
def clear_orders(source: Optional[str] = Query(None, description="parcelx | nimbus; all when omitted")):
    """Deletes orders only; suppliers and price entries stay."""
    db = SessionLocal()
    try:
        q = db.query(Order)
        if source:
            q = q.filter(Order.source == source.lower())
        ids = [o.id for o in q.with_entities(Order.id).all()]
        if ids:
            db.query(ReconciliationLog).filter(ReconciliationLog.order_id.in_(ids)).update(
                {ReconciliationLog.order_id: None}, synchronize_session=False
            )
        deleted = q.delete(synchronize_session=False)
        db.commit()

        if not source:
            file_cache.clear()
        logger.info("Cleared %d orders (source=%s)", deleted, source or "all")
        return {"success": True, "deleted": deleted, "source": source or "all"}
    except Exception as e:
        db.rollback()
        raise HTTPException(500, f"Failed to clear orders: {e}")
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------

@router.post("/calculate-payouts")
def calculate(body: PayoutRequest):
    db = SessionLocal()
    try:
        orders, entries, suppliers = _load_all(db)
        return calculate_payouts(orders, entries, suppliers, body.filters()).to_dict()
    except Exception as e:
        logger.exception("Payout calculation failed")
        raise HTTPException(500, {"error": "Failed to calculate payouts", "details": str(e)})
    finally:
        db.close()


@router.post("/payouts/order-accounts")
def payouts_by_order_account(body: PayoutRequest):
    db = SessionLocal()
    try:
        orders, entries, suppliers = _load_all(db)
        result = calculate_payouts(orders, entries, suppliers, body.filters())
        return {
            "accounts": summarize_by_order_account(result),
            "summary": result.summary,
            "missingPrices": result.missing_prices,
        }
    finally:
        db.close()


@router.post("/payouts/suppliers")
def payouts_by_supplier(body: PayoutRequest):
    db = SessionLocal()
    try:
        orders, entries, suppliers = _load_all(db)
        return summarize_by_supplier(orders, entries, suppliers, body.filters())
    finally:
        db.close()


@router.post("/export/payouts")
def export_payouts(body: PayoutRequest):
    db = SessionLocal()
    try:
        orders, entries, suppliers = _load_all(db)
        result = calculate_payouts(orders, entries, suppliers, body.filters())
        stamp = datetime.utcnow().strftime("%Y%m%d")
        return StreamingResponse(
            iter([payout_lines_csv(result.lines)]),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename=payouts_{stamp}.csv"},
        )
    finally:
        db.close()


@router.get("/dashboard/stats")
def dashboard():
    db = SessionLocal()
    try:
        orders, entries, suppliers = _load_all(db)
        counts = dict(db.query(Order.status, func.count(Order.id)).group_by(Order.status).all())
        return dashboard_stats(orders, suppliers, entries, status_counts=counts)
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------

@router.post("/invoices/generate")
def generate_invoice(body: InvoiceIn):
    db = SessionLocal()
    try:
        orders, entries, suppliers = _load_all(db)
        wanted = set(body.suppliers)
        selected = [s for s in suppliers if s.id in wanted or s.name in wanted]
        if not selected:
            raise HTTPException(404, "No matching suppliers")

        req = InvoiceRequest(
            date_from=body.dateFrom,
            date_to=body.dateTo,
            date_type=body.dateType,
            buyer_name=body.buyerName,
            buyer_gstin=body.buyerGSTIN,
            buyer_address=body.buyerAddress,
            ship_to_address=body.shipToAddress,
            place_of_supply=body.placeOfSupply,
            terms=body.termsAndConditions,
            supplier_details=PartyDetails(
                gstin=body.supplierGSTIN,
                trade_name=body.supplierTradeName,
                address=body.supplierAddress,
                ship_to_address=body.supplierShipToAddress,
                place_of_supply=body.placeOfSupply,
            ),
        )
        if req.date_from is None or req.date_to is None:
            raise HTTPException(400, "dateFrom and dateTo must be valid dates")

        return assemble_invoice(selected, orders, entries, req)
    except ReconError as e:
        raise http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(500, {"error": "Failed to generate invoice", "details": str(e)})
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

@router.post("/reconciliation/process")
def reconcile(body: ReconcileIn):
    """
    Status updates either inline (`orders`) or from a mapped upload
    (`fileId`). Only AWB and status are read from the upload.
    """
    db = SessionLocal()
    try:
        incoming = [{"awb_no": u.awbNo, "status": u.status} for u in body.orders]
        if body.fileId:
            cached = file_cache.get(body.fileId)
            rec = load_upload(db, body.fileId)
            rows = (cached or {}).get("data") or (rec.data if rec is not None else None)
            mapping = (cached or {}).get("mapping") or (rec.column_mapping if rec is not None else None)
            if not rows:
                raise UploadExpired("File data not available. Please re-upload the file.")
            if not mapping:
                raise MappingNotSet("Please set the column mapping before reconciling")
            incoming.extend(normalize_rows(rows, validate_mapping(mapping)))

        return reconcile_statuses(db, incoming)
    except ReconError as e:
        raise http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.exception("Reconciliation failed")
        raise HTTPException(500, {"error": "Reconciliation failed", "details": str(e)})
    finally:
        db.close()


@router.get("/reconciliation/logs")
def reconciliation_logs(awb_no: Optional[str] = Query(None), limit: int = Query(500, ge=1, le=10000)):
    db = SessionLocal()
    try:
        q = db.query(ReconciliationLog)
        if awb_no:
            q = q.filter(ReconciliationLog.awb_no == awb_no)
        return [log_to_dict(l) for l in q.order_by(ReconciliationLog.timestamp.desc()).limit(limit).all()]
    finally:
        db.close()
