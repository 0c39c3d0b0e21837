# payout_recon/upload_routes.py
# Order export upload -> column mapping -> processing -> progress polling

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, File, Form, HTTPException, Query, UploadFile

from payout_recon.column_mapping import is_ready, missing_required, normalize_source, suggest_mapping
from payout_recon.db import SessionLocal
from payout_recon.errors import ReconError, UploadExpired, UploadNotFound, http_error
from payout_recon.file_parser import parse_tabular_file
from payout_recon.ingestion import (
    TEMP_PREFIX,
    load_upload,
    process_uploaded_file,
    progress_for,
    purge_expired_temp_uploads,
    register_upload,
    save_mapping,
)
from payout_recon.job_store import file_cache, progress_store
from payout_recon.models import UploadedFile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])


def _upload_rows(db, file_id: str) -> tuple[list[str], list[dict]]:
    cached = file_cache.get(file_id)
    if cached is not None:
        return cached["headers"], cached["data"]

    rec = load_upload(db, file_id)
    if rec is None:
        if file_id.startswith(TEMP_PREFIX):
            raise UploadExpired("File session expired. Please upload the file again.")
        raise UploadNotFound(f"File {file_id} not found")
    return rec.headers or [], rec.data or []


@router.post("/upload")
def upload_file(
    file: UploadFile = File(...),
    source: str = Form("parcelx"),
    temporary: bool = Form(True),
):
    """Parse a CSV / Excel export and open an upload session."""
    db = SessionLocal()
    try:
        content = file.file.read()
        parsed = parse_tabular_file(content, file.content_type, file.filename)

        purge_expired_temp_uploads(db, file_cache=file_cache)
        rec = register_upload(
            db,
            parsed,
            filename=file.filename or "upload",
            size=len(content),
            mime_type=file.content_type or "application/octet-stream",
            source=source,
            temporary=temporary,
            file_cache=file_cache,
        )

        suggested = suggest_mapping(parsed.headers, rec.source)
        return {
            "fileId": rec.id,
            "filename": rec.filename,
            "size": rec.size,
            "source": rec.source,
            "isTemporary": rec.is_temporary,
            "storageType": "database" if rec.data is not None else "memory",
            "headers": parsed.headers,
            "preview": parsed.preview(3),
            "totalRows": len(parsed.data),
            "suggestedMapping": suggested,
            "missingFields": missing_required(suggested),
        }

    except ReconError as e:
        raise http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.exception("Upload failed")
        raise HTTPException(500, {"error": "File upload failed", "details": str(e)})
    finally:
        db.close()


@router.get("")
def list_files(limit: int = Query(50, ge=1, le=500)):
    db = SessionLocal()
    try:
        recs = db.query(UploadedFile).order_by(UploadedFile.uploaded_at.desc()).limit(limit).all()
        return [
            {
                "id": r.id,
                "filename": r.filename,
                "size": r.size,
                "mimeType": r.mime_type,
                "source": r.source,
                "isTemporary": r.is_temporary,
                "hasMapping": bool(r.column_mapping),
                "summary": r.summary,
                "uploadedAt": r.uploaded_at.isoformat() if r.uploaded_at else None,
            }
            for r in recs
        ]
    finally:
        db.close()


@router.get("/{file_id}/preview")
def preview_file(file_id: str, rows: int = Query(10, ge=1, le=200)):
    db = SessionLocal()
    try:
        headers, data = _upload_rows(db, file_id)
        if not data:
            raise UploadExpired("File data not available. Please re-upload the file.")
        return {"fileId": file_id, "headers": headers, "rows": data[:rows], "totalRows": len(data)}
    except ReconError as e:
        raise http_error(e)
    finally:
        db.close()


@router.get("/{file_id}/auto-mapping")
def auto_mapping(file_id: str, source: Optional[str] = Query(None)):
    db = SessionLocal()
    try:
        headers, _ = _upload_rows(db, file_id)
        if source is None:
            cached = file_cache.get(file_id)
            rec = load_upload(db, file_id)
            source = (cached or {}).get("source") or (rec.source if rec is not None else None)

        mapping = suggest_mapping(headers, source)
        return {
            "fileId": file_id,
            "source": normalize_source(source),
            "mapping": mapping,
            "missingFields": missing_required(mapping),
            "ready": is_ready(mapping),
        }
    except ReconError as e:
        raise http_error(e)
    finally:
        db.close()


@router.post("/{file_id}/mapping")
def set_mapping(file_id: str, mapping: dict[str, Optional[str]] = Body(...)):
    """Body is keyed by canonical field; "none" leaves a field unmapped."""
    db = SessionLocal()
    try:
        saved = save_mapping(db, file_id, mapping, file_cache=file_cache)
        return {"ok": True, "fileId": file_id, "mapping": saved}
    except ReconError as e:
        raise http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        raise HTTPException(500, {"error": "Failed to save mapping", "details": str(e)})
    finally:
        db.close()


@router.post("/{file_id}/process")
def process_file(file_id: str, source: Optional[str] = Query(None)):
    db = SessionLocal()
    try:
        result = process_uploaded_file(
            db,
            file_id,
            file_cache=file_cache,
            progress_store=progress_store,
            source=source,
        )
        return {
            "success": True,
            "fileId": file_id,
            "summary": result.summary,
            "ordersCreated": result.orders_created,
            "cancelledOrders": result.cancelled_orders,
            "failedBatches": [f.to_dict() for f in result.failed_batches],
        }
    except ReconError as e:
        raise http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        raise HTTPException(500, {"error": "Processing failed", "details": str(e)})
    finally:
        db.close()


@router.get("/{file_id}/progress")
def get_progress(file_id: str):
    db = SessionLocal()
    try:
        return progress_for(db, file_id, progress_store=progress_store, file_cache=file_cache)
    except ReconError as e:
        raise http_error(e)
    finally:
        db.close()


@router.post("/cleanup")
def cleanup_temp_files(retention_seconds: Optional[float] = Query(None, ge=0)):
    db = SessionLocal()
    try:
        purged = purge_expired_temp_uploads(db, retention_seconds, file_cache=file_cache)
        return {"ok": True, "purged": purged}
    except Exception as e:
        db.rollback()
        raise HTTPException(500, f"Cleanup failed: {e}")
    finally:
        db.close()
