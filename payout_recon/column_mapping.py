# payout_recon/column_mapping.py
# Header auto-detection for the two courier export formats.

from __future__ import annotations

import re
from typing import Optional

from payout_recon.errors import MappingIncomplete

PARCELX = "parcelx"
NIMBUS = "nimbus"
SOURCES = (PARCELX, NIMBUS)

REQUIRED_FIELDS = ("supplierName", "awbNo", "productName", "status")
OPTIONAL_FIELDS = (
    "orderAccount",
    "courier",
    "qty",
    "currency",
    "channelOrderDate",
    "orderDate",
    "deliveredDate",
    "rtsDate",
)
CANONICAL_FIELDS = REQUIRED_FIELDS + OPTIONAL_FIELDS

# UI sentinel for "leave this field unmapped"
NONE_SENTINEL = "none"

# canonical field -> header keywords, most specific first.
SOURCE_KEYWORDS: dict[str, dict[str, list[str]]] = {
    PARCELX: {
        "supplierName": ["pickup warehouse", "warehouse", "supplier name", "supplier", "vendor"],
        "awbNo": ["waybill num", "waybill", "awb no", "awb", "tracking no", "airway bill"],
        "productName": ["product name", "sku name", "item name", "product"],
        "status": ["status", "order status", "delivery status"],
        "orderAccount": ["order account", "account", "customer email"],
        "courier": ["fulfilled by", "courier", "carrier", "logistics partner"],
        "qty": ["product qty", "qty", "quantity"],
        "currency": ["currency"],
        "channelOrderDate": ["channel order date"],
        "orderDate": ["order date", "channel order date"],
        "deliveredDate": ["delivered date", "delivery date"],
        "rtsDate": ["rts date"],
    },
    NIMBUS: {
        "supplierName": ["warehouse name", "warehouse", "pickup location"],
        "awbNo": ["awb number", "awb", "tracking number", "waybill"],
        "productName": ["product(1)", "product name", "product"],
        "status": ["tracking status", "shipment status", "status"],
        "orderAccount": ["store name", "store", "channel"],
        "courier": ["courier", "courier name", "carrier"],
        "qty": ["quantity", "qty"],
        "currency": ["currency"],
        "channelOrderDate": ["order date"],
        "orderDate": ["shipment date", "shipped date"],
        "deliveredDate": ["delivery date", "delivered date"],
        "rtsDate": ["rto delivered date", "rto date", "rts date"],
    },
}


def _norm(s: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", str(s or "").strip().lower()).strip("_")


def normalize_source(source: Optional[str]) -> str:
    s = (source or "").strip().lower().replace(" ", "").replace("_", "")
    return NIMBUS if s == NIMBUS else PARCELX


def _pick_header(headers: list[str], keywords: list[str]) -> Optional[str]:
    normed = [(h, _norm(h)) for h in headers]

    # exact header match wins over a substring hit
    for kw in keywords:
        k = _norm(kw)
        for h, nh in normed:
            if nh == k:
                return h
    for kw in keywords:
        k = _norm(kw)
        for h, nh in normed:
            if k and k in nh:
                return h
    return None


def suggest_mapping(headers: list[str], source: Optional[str] = PARCELX) -> dict[str, str]:
    """
    Best-effort mapping canonical field -> header for a source format.
    Fields without a confident match are left out.
    """
    table = SOURCE_KEYWORDS[normalize_source(source)]
    mapping: dict[str, str] = {}
    for field_name in CANONICAL_FIELDS:
        header = _pick_header(headers, table.get(field_name, []))
        if header:
            mapping[field_name] = header
    return mapping


def apply_overrides(mapping: dict[str, str], overrides: dict[str, Optional[str]]) -> dict[str, str]:
    """Manual selections replace suggestions; "none" (or blank) clears a field."""
    merged = dict(mapping)
    for field_name, header in (overrides or {}).items():
        if field_name not in CANONICAL_FIELDS:
            continue
        value = (header or "").strip()
        if not value or value.lower() == NONE_SENTINEL:
            merged.pop(field_name, None)
        else:
            merged[field_name] = value
    return merged


def clean_mapping(raw: dict) -> dict[str, str]:
    """Keep canonical fields with a real header; drops sentinels and extras."""
    return apply_overrides({}, {k: v for k, v in (raw or {}).items() if isinstance(v, str) or v is None})


def missing_required(mapping: dict[str, str]) -> list[str]:
    return [f for f in REQUIRED_FIELDS if not (mapping.get(f) or "").strip()]


def is_ready(mapping: dict[str, str]) -> bool:
    return not missing_required(mapping)


def validate_mapping(mapping: dict[str, str]) -> dict[str, str]:
    missing = missing_required(mapping)
    if missing:
        raise MappingIncomplete(missing)
    return mapping
