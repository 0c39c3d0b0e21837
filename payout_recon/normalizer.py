# payout_recon/normalizer.py
# Raw uploaded rows + column mapping -> canonical order records

from __future__ import annotations

from datetime import date, datetime, time
from typing import Optional

import pandas as pd

DEFAULT_CURRENCY = "INR"

# canonical (camelCase, as the API speaks it) -> record key
FIELD_KEYS = {
    "supplierName": "supplier_name",
    "awbNo": "awb_no",
    "productName": "product_name",
    "status": "status",
    "courier": "courier",
    "orderAccount": "order_account",
    "qty": "qty",
    "currency": "currency",
    "channelOrderDate": "channel_order_date",
    "orderDate": "order_date",
    "deliveredDate": "delivered_date",
    "rtsDate": "rts_date",
}

DATE_FIELDS = ("channelOrderDate", "orderDate", "deliveredDate", "rtsDate")


def to_str(v) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    if s in ("", "null", "None", "nan", "NaN"):
        return None
    return s


def to_float(v, default=None):
    if v is None or str(v).strip() in ("", "null", "None"):
        return default
    try:
        return float(str(v).replace(",", "").strip())
    except (TypeError, ValueError):
        return default


def _to_qty(v) -> int:
    f = to_float(v)
    if f is None or f != f or f <= 0:
        return 1
    return int(f)


def parse_date_any(x) -> Optional[datetime]:
    """
    Parse a single date/datetime value coming from CSV/Excel.
    Returns a naive datetime or None; never raises.
    """
    if x is None:
        return None

    if isinstance(x, datetime):
        return x.replace(tzinfo=None) if x.tzinfo else x
    if isinstance(x, date):
        return datetime.combine(x, time.min)

    s = str(x).strip()
    if not s:
        return None

    # ISO strings must not be read day-first
    dayfirst = not (len(s) >= 10 and s[4] == "-" and s[:4].isdigit())
    try:
        dt = pd.to_datetime(s, errors="coerce", dayfirst=dayfirst)
        if pd.isna(dt):
            dt = pd.to_datetime(s[:10], errors="coerce", dayfirst=dayfirst)
        if pd.isna(dt):
            return None

        py_dt = dt.to_pydatetime()
        if py_dt.tzinfo is not None:
            py_dt = py_dt.replace(tzinfo=None)
        return py_dt
    except (ValueError, TypeError, OverflowError):
        return None


def _cell(row: dict, mapping: dict, field_name: str):
    header = mapping.get(field_name)
    if not header:
        return None
    return row.get(header)


def normalize_row(row: dict, mapping: dict) -> dict:
    rec = {
        "supplier_name": to_str(_cell(row, mapping, "supplierName")) or "",
        "awb_no": to_str(_cell(row, mapping, "awbNo")) or "",
        "product_name": to_str(_cell(row, mapping, "productName")) or "",
        "status": to_str(_cell(row, mapping, "status")) or "",
        "courier": to_str(_cell(row, mapping, "courier")),
        "order_account": to_str(_cell(row, mapping, "orderAccount")),
        "qty": _to_qty(_cell(row, mapping, "qty")),
        "currency": to_str(_cell(row, mapping, "currency")) or DEFAULT_CURRENCY,
    }
    for field_name in DATE_FIELDS:
        rec[FIELD_KEYS[field_name]] = parse_date_any(_cell(row, mapping, field_name))
    return rec


def normalize_rows(rows: list[dict], mapping: dict) -> list[dict]:
    """Pure transform; same rows + mapping always give the same records."""
    return [normalize_row(r, mapping) for r in rows]
