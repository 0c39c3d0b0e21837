# payout_recon/reconciliation.py
# Status changes on re-ingested AWBs -> audit log + monetary impact

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from payout_recon.models import Order, PriceEntry, ReconciliationLog
from payout_recon.pricing import PriceBook, unit_price_before_gst
from payout_recon.statuses import PAYABLE, RETURNED, classify

logger = logging.getLogger(__name__)


def _same_status(a: Optional[str], b: Optional[str]) -> bool:
    return (a or "").strip().lower() == (b or "").strip().lower()


def status_impact(previous: Optional[str], new: Optional[str], line_amount: float) -> float:
    """
    -line amount when a paid order comes back (Delivered -> RTS/RTO/Returned),
    +line amount for the reverse, 0 otherwise.
    """
    before, after = classify(previous), classify(new)
    if before in PAYABLE and after in RETURNED:
        return -line_amount
    if before in RETURNED and after in PAYABLE:
        return line_amount
    return 0.0


def reconcile_statuses(db: Session, incoming: list[dict], book: Optional[PriceBook] = None) -> dict:
    """
    `incoming` holds records with at least `awb_no` and `status`.

    Every stored order under a changed AWB gets a log row and its status
    moved to `previous_status`. Unknown AWBs are counted, not created.
    """
    if book is None:
        book = PriceBook(db.query(PriceEntry).all())

    now = datetime.utcnow()
    updated = unchanged = not_found = 0
    total_impact = 0.0
    logs: list[ReconciliationLog] = []

    for rec in incoming:
        awb = (rec.get("awb_no") or "").strip()
        new_status = (rec.get("status") or "").strip()
        if not awb or not new_status:
            continue

        orders = db.query(Order).filter(Order.awb_no == awb).all()
        if not orders:
            not_found += 1
            continue

        for o in orders:
            if _same_status(o.status, new_status):
                unchanged += 1
                continue

            entry = book.match_exact_then_product_fallback(o.supplier_id, o.product_name)
            line_amount = (o.qty or 1) * unit_price_before_gst(entry) if entry is not None else 0.0
            impact = round(status_impact(o.status, new_status, line_amount), 2)

            log = ReconciliationLog(
                awb_no=awb,
                order_id=o.id,
                previous_status=o.status,
                new_status=new_status,
                impact=impact,
                note=f"Status changed from {o.status} to {new_status}",
                timestamp=now,
            )
            db.add(log)
            logs.append(log)

            o.previous_status = o.status
            o.status = new_status
            updated += 1
            total_impact += impact

    db.commit()
    logger.info(
        "Reconciliation: %d updated, %d unchanged, %d unknown AWBs, impact %.2f",
        updated, unchanged, not_found, total_impact,
    )

    return {
        "processed": len(incoming),
        "updated": updated,
        "unchanged": unchanged,
        "notFound": not_found,
        "totalImpact": round(total_impact, 2),
        "logs": [log_to_dict(l) for l in logs],
    }


def log_to_dict(l: ReconciliationLog) -> dict:
    return {
        "id": l.id,
        "awbNo": l.awb_no,
        "orderId": l.order_id,
        "previousStatus": l.previous_status,
        "newStatus": l.new_status,
        "impact": l.impact,
        "note": l.note,
        "timestamp": l.timestamp.isoformat() if l.timestamp else None,
    }
