# payout_recon/ingestion.py
# Upload sessions + batched order ingestion with polled progress

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from payout_recon import settings
from payout_recon.column_mapping import clean_mapping, normalize_source, validate_mapping
from payout_recon.db import with_read_retry
from payout_recon.errors import MappingNotSet, UnknownHeaders, UploadExpired, UploadNotFound
from payout_recon.file_parser import ParsedFile
from payout_recon.job_store import JobStore
from payout_recon.models import Order, Supplier, UploadedFile
from payout_recon.normalizer import normalize_rows
from payout_recon.statuses import ShipmentStatus, classify, is_cancelled

logger = logging.getLogger(__name__)

TEMP_PREFIX = "temp-"
FILE_PREFIX = "file-"


@dataclass
class ProcessingProgress:
    status: str  # processing | completed | error | pending
    current_batch: int = 0
    total_batches: int = 0
    total_records: int = 0
    processed_records: int = 0
    percentage: int = 0
    message: str = ""
    error_message: Optional[str] = None
    summary: Optional[dict] = None

    def to_dict(self) -> dict:
        out = {
            "status": self.status,
            "currentBatch": self.current_batch,
            "totalBatches": self.total_batches,
            "totalRecords": self.total_records,
            "processedRecords": self.processed_records,
            "percentage": self.percentage,
            "message": self.message,
        }
        if self.error_message:
            out["errorMessage"] = self.error_message
        if self.summary is not None:
            out["summary"] = self.summary
        return out


@dataclass
class BatchFailure:
    batch_number: int
    start_index: int
    size: int
    error: str

    def to_dict(self) -> dict:
        return {
            "batchNumber": self.batch_number,
            "startIndex": self.start_index,
            "size": self.size,
            "error": self.error,
        }


@dataclass
class IngestionResult:
    created_order_ids: list[str] = field(default_factory=list)
    cancelled_orders: list[dict] = field(default_factory=list)
    summary: dict = field(default_factory=dict)
    failed_batches: list[BatchFailure] = field(default_factory=list)

    @property
    def orders_created(self) -> int:
        return len(self.created_order_ids)


def new_upload_id(temporary: bool) -> str:
    prefix = TEMP_PREFIX if temporary else FILE_PREFIX
    stamp = int(datetime.utcnow().timestamp() * 1000)
    return f"{prefix}{stamp}-{uuid.uuid4().hex[:9]}"


def bulk_insert_orders(db: Session, mappings: list[dict]) -> None:
    db.bulk_insert_mappings(Order, mappings)


@with_read_retry
def load_upload(db: Session, file_id: str) -> Optional[UploadedFile]:
    return db.get(UploadedFile, file_id)


# ---------------------------------------------------------------------------
# Upload session
# ---------------------------------------------------------------------------

def register_upload(
    db: Session,
    parsed: ParsedFile,
    *,
    filename: str,
    size: int,
    mime_type: str,
    source: Optional[str],
    temporary: bool,
    file_cache: JobStore,
    max_db_payload: Optional[int] = None,
    cache_ttl: Optional[float] = None,
) -> UploadedFile:
    """
    Persist an upload record and cache its rows.

    Files over the payload limit keep their rows in memory only; after a
    restart those must be uploaded again.
    Cached rows expire after `cache_ttl` seconds; processing then reads
    the rows stored on the record.
    """
    limit = settings.MAX_DB_PAYLOAD_BYTES if max_db_payload is None else max_db_payload
    file_id = new_upload_id(temporary)
    src = normalize_source(source)
    store_rows = size <= limit

    rec = UploadedFile(
        id=file_id,
        filename=filename,
        size=size,
        mime_type=mime_type,
        source=src,
        is_temporary=temporary,
        data=parsed.data if store_rows else None,
        headers=parsed.headers,
        column_mapping=None,
        summary=None,
        uploaded_at=datetime.utcnow(),
    )
    db.add(rec)
    db.commit()

    file_cache.put(file_id, {
        "data": parsed.data,
        "headers": parsed.headers,
        "filename": filename,
        "size": size,
        "mime_type": mime_type,
        "source": src,
        "mapping": None,
    }, ttl=settings.UPLOAD_CACHE_TTL_SECONDS if cache_ttl is None else cache_ttl)
    if not store_rows:
        logger.warning("Upload %s is %d bytes; rows kept in memory only", file_id, size)

    logger.info("Registered upload %s (%s, %d rows, temporary=%s)", file_id, filename, len(parsed.data), temporary)
    return rec


def _missing_upload(file_id: str) -> Exception:
    if file_id.startswith(TEMP_PREFIX):
        return UploadExpired("File session expired. Please upload the file again.")
    return UploadNotFound(f"File {file_id} not found")


def save_mapping(db: Session, file_id: str, raw_mapping: dict, *, file_cache: JobStore) -> dict:
    mapping = validate_mapping(clean_mapping(raw_mapping))

    rec = load_upload(db, file_id)
    cached = file_cache.get(file_id)
    if rec is None and cached is None:
        raise _missing_upload(file_id)

    headers = (cached or {}).get("headers") or (rec.headers if rec is not None else None)
    if headers:
        unknown = [h for h in dict.fromkeys(mapping.values()) if h not in headers]
        if unknown:
            raise UnknownHeaders(unknown)

    if cached is not None:
        cached["mapping"] = mapping
    if rec is not None:
        rec.column_mapping = mapping
        db.commit()

    logger.info("Saved column mapping for %s: %s", file_id, sorted(mapping))
    return mapping


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

def resolve_suppliers(db: Session, names) -> dict[str, str]:
    """
    Map each distinct supplier name to an id, creating unknown suppliers.
    Runs before any order insert so repeated names in one file share a row.
    """
    wanted = sorted({n for n in names if n})
    if not wanted:
        return {}

    existing = db.query(Supplier).filter(Supplier.name.in_(wanted)).all()
    out = {s.name: s.id for s in existing}

    created = 0
    for name in wanted:
        if name in out:
            continue
        sup = Supplier(name=name)
        db.add(sup)
        db.flush()
        out[name] = sup.id
        created += 1

    if created:
        db.commit()
        logger.info("Created %d new suppliers", created)
    return out


def _order_mapping(rec: dict, supplier_id: Optional[str], source: str, file_id: Optional[str], now: datetime) -> dict:
    return {
        "id": str(uuid.uuid4()),
        "awb_no": rec["awb_no"],
        "supplier_id": supplier_id,
        "product_name": rec["product_name"],
        "courier": rec.get("courier"),
        "qty": rec.get("qty") or 1,
        "currency": rec.get("currency") or "INR",
        "status": rec["status"],
        "order_account": rec.get("order_account"),
        "channel_order_date": rec.get("channel_order_date"),
        "order_date": rec.get("order_date"),
        "delivered_date": rec.get("delivered_date"),
        "rts_date": rec.get("rts_date"),
        "file_id": file_id,
        "source": source,
        "created_at": now,
    }


def ingest_orders(
    db: Session,
    normalized: list[dict],
    *,
    source: str,
    file_id: Optional[str] = None,
    progress_key: Optional[str] = None,
    progress_store: Optional[JobStore] = None,
    batch_size: Optional[int] = None,
    insert_batch: Callable[[Session, list[dict]], None] = bulk_insert_orders,
) -> IngestionResult:
    """
    Insert non-cancelled records in fixed-size batches.

    A failing batch is rolled back, logged and recorded in `failed_batches`;
    the remaining batches still run. Progress is published under
    `progress_key` after every batch.
    """
    size = batch_size or settings.INGEST_BATCH_SIZE
    key = progress_key or file_id

    cancelled = [r for r in normalized if is_cancelled(r.get("status"))]
    valid = [r for r in normalized if not is_cancelled(r.get("status"))]

    supplier_names = {r["supplier_name"] for r in valid if r.get("supplier_name")}
    supplier_ids = resolve_suppliers(db, supplier_names)

    total = len(valid)
    total_batches = math.ceil(total / size) if total else 0
    progress = ProcessingProgress(
        status="processing",
        total_batches=total_batches,
        total_records=total,
        message=f"Processing {total} orders...",
    )
    if progress_store is not None and key:
        progress_store.put(key, progress)

    now = datetime.utcnow()
    result = IngestionResult(cancelled_orders=cancelled)

    for batch_no, start in enumerate(range(0, total, size), start=1):
        chunk = valid[start:start + size]
        rows = [
            _order_mapping(r, supplier_ids.get(r.get("supplier_name")), source, file_id, now)
            for r in chunk
        ]
        try:
            insert_batch(db, rows)
            db.commit()
            result.created_order_ids.extend(m["id"] for m in rows)
            logger.info("Batch %d/%d inserted (%d orders)", batch_no, total_batches, len(rows))
        except Exception as e:
            db.rollback()
            logger.exception("Batch %d/%d failed (%d orders)", batch_no, total_batches, len(rows))
            result.failed_batches.append(
                BatchFailure(batch_number=batch_no, start_index=start, size=len(rows), error=str(e))
            )

        processed = start + len(chunk)
        progress.current_batch = batch_no
        progress.processed_records = processed
        progress.percentage = round(processed / total * 100)
        progress.message = f"Processing batch {batch_no} of {total_batches}..."

    delivered = sum(1 for r in valid if classify(r.get("status")) is ShipmentStatus.DELIVERED)
    result.summary = {
        "totalRecords": len(normalized),
        "validOrders": total,
        "cancelledOrders": len(cancelled),
        "deliveredOrders": delivered,
        "uniqueSuppliers": len(supplier_names),
        "ordersCreated": result.orders_created,
        "failedBatches": [f.to_dict() for f in result.failed_batches],
        "processingDate": datetime.utcnow().isoformat(),
    }

    progress.status = "completed"
    progress.current_batch = total_batches
    progress.processed_records = total
    progress.percentage = 100
    progress.message = f"Processing complete! {result.orders_created} orders created."
    progress.summary = result.summary

    if result.failed_batches:
        logger.warning(
            "Ingestion finished with %d failed batches: %d of %d orders created",
            len(result.failed_batches), result.orders_created, total,
        )
    return result


def process_uploaded_file(
    db: Session,
    file_id: str,
    *,
    file_cache: JobStore,
    progress_store: JobStore,
    source: Optional[str] = None,
    batch_size: Optional[int] = None,
    insert_batch: Callable[[Session, list[dict]], None] = bulk_insert_orders,
    progress_ttl: Optional[float] = None,
) -> IngestionResult:
    """
    Run the full pipeline for one upload: mapping -> normalize -> ingest.

    Raises UploadNotFound (no such upload), UploadExpired (rows gone, upload
    again) or MappingNotSet before anything is written.
    """
    ttl = settings.PROGRESS_TTL_SECONDS if progress_ttl is None else progress_ttl

    cached = file_cache.get(file_id)
    rec = load_upload(db, file_id)
    if rec is None and cached is None:
        raise _missing_upload(file_id)

    mapping = (cached or {}).get("mapping") or (rec.column_mapping if rec is not None else None)
    if not mapping:
        raise MappingNotSet("Please set the column mapping before processing")
    validate_mapping(mapping)

    rows = (cached or {}).get("data") or (rec.data if rec is not None else None)
    if not rows:
        raise UploadExpired("File data not available. Please re-upload the file.")

    src = normalize_source(source or (rec.source if rec is not None else None) or (cached or {}).get("source"))
    temporary = rec.is_temporary if rec is not None else file_id.startswith(TEMP_PREFIX)

    logger.info("Processing upload %s: %d rows, source=%s", file_id, len(rows), src)
    try:
        normalized = normalize_rows(rows, mapping)
        result = ingest_orders(
            db,
            normalized,
            source=src,
            file_id=None if temporary else file_id,
            progress_key=file_id,
            progress_store=progress_store,
            batch_size=batch_size,
            insert_batch=insert_batch,
        )

        if rec is not None:
            rec.summary = result.summary
            rec.data = None
            db.commit()
        file_cache.delete(file_id)
    except Exception as e:
        db.rollback()
        logger.exception("Processing failed for %s", file_id)
        progress_store.put(
            file_id,
            ProcessingProgress(status="error", message="Processing failed", error_message=str(e)),
            ttl=ttl,
        )
        raise

    progress_store.expire(file_id, ttl)
    logger.info("Upload %s processed: %s", file_id, {k: v for k, v in result.summary.items() if k != "failedBatches"})
    return result


def progress_for(db: Session, file_id: str, *, progress_store: JobStore, file_cache: Optional[JobStore] = None) -> dict:
    live = progress_store.get(file_id)
    if live is not None:
        return live.to_dict()

    rec = load_upload(db, file_id)
    if rec is not None and rec.summary:
        created = rec.summary.get("ordersCreated", 0)
        return ProcessingProgress(
            status="completed",
            current_batch=1,
            total_batches=1,
            total_records=rec.summary.get("validOrders", 0),
            processed_records=rec.summary.get("validOrders", 0),
            percentage=100,
            message=f"Processing complete! {created} orders created.",
            summary=rec.summary,
        ).to_dict()

    if rec is not None or (file_cache is not None and file_id in file_cache):
        return ProcessingProgress(
            status="pending",
            message="File uploaded but processing not started yet...",
        ).to_dict()

    raise UploadNotFound(f"File {file_id} not found")


def purge_expired_temp_uploads(
    db: Session,
    retention_seconds: Optional[float] = None,
    *,
    file_cache: Optional[JobStore] = None,
    now: Optional[datetime] = None,
) -> int:
    """Delete temporary uploads older than the retention window."""
    retention = settings.TEMP_FILE_RETENTION_SECONDS if retention_seconds is None else retention_seconds
    cutoff = (now or datetime.utcnow()) - timedelta(seconds=retention)

    stale = (
        db.query(UploadedFile)
        .filter(UploadedFile.is_temporary.is_(True), UploadedFile.uploaded_at < cutoff)
        .all()
    )
    for rec in stale:
        if file_cache is not None:
            file_cache.delete(rec.id)
        db.delete(rec)
    if stale:
        db.commit()
        logger.info("Purged %d expired temporary uploads", len(stale))
    return len(stale)
