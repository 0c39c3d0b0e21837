# payout_recon/file_parser.py
# CSV / Excel upload decoding -> ordered headers + rows of trimmed strings

from __future__ import annotations

import csv
import io
import logging
import numbers
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

import pandas as pd

from payout_recon.errors import FileParseError, UnsupportedFileType

logger = logging.getLogger(__name__)

# Headers holding shipment / order identifiers. Numeric cells under these
# must come out as exact digits, never "1.23e+12".
IDENTIFIER_HINTS = ("waybill", "awb", "tracking", "orderid")


@dataclass
class ParsedFile:
    headers: list[str]
    data: list[dict[str, str]] = field(default_factory=list)

    def preview(self, n: int = 3) -> list[dict[str, str]]:
        return self.data[:n]


def is_identifier_header(header: str) -> bool:
    h = str(header or "").lower()
    return any(hint in h for hint in IDENTIFIER_HINTS)


def _file_kind(mime_type: str | None, filename: str | None) -> str:
    m = (mime_type or "").lower()
    name = (filename or "").lower()
    ext = name.rsplit(".", 1)[-1] if "." in name else ""

    if "csv" in m or m.startswith("text/") or ext == "csv":
        return "csv"
    if "excel" in m or "spreadsheet" in m or "openxmlformats" in m or ext in ("xlsx", "xls"):
        return "excel"
    raise UnsupportedFileType(
        f"Unsupported file type: {mime_type or 'unknown'} (extension: {ext or 'none'})"
    )


def _exact_decimal(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return format(Decimal(repr(value)), "f")


def _cell_text(value, identifier: bool = False) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        s = value.strip()
        if identifier and s.endswith(".0") and s[:-2].isdigit():
            s = s[:-2]
        return s
    if isinstance(value, (pd.Timestamp, datetime)):
        if pd.isna(value):
            return ""
        if (value.hour, value.minute, value.second, value.microsecond) == (0, 0, 0, 0):
            return value.strftime("%Y-%m-%d")
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, numbers.Integral):
        return str(int(value))
    if isinstance(value, numbers.Real):
        f = float(value)
        if f != f:  # NaN = empty cell
            return ""
        if identifier:
            return _exact_decimal(f)
        return str(int(f)) if f.is_integer() else str(f)
    return str(value).strip()


def _unique_headers(raw_headers: list) -> list[str]:
    headers: list[str] = []
    used: set[str] = set()
    for i, h in enumerate(raw_headers):
        base = _cell_text(h) or f"Column_{i + 1}"
        name, n = base, 1
        while name in used:
            n += 1
            name = f"{base}_{n}"
        used.add(name)
        headers.append(name)
    return headers


def _frame_to_parsed(df: pd.DataFrame, kind: str) -> ParsedFile:
    """First row of `df` is the header row (frames are read with header=None)."""
    if df.empty or len(df.index) == 0:
        raise FileParseError(f"No data found in {kind} file")

    raw_headers = list(df.iloc[0].tolist())
    if not any(_cell_text(h) for h in raw_headers):
        raise FileParseError("No headers found: the file must contain column headers in the first row")

    headers = _unique_headers(raw_headers)
    id_cols = {h for h in headers if is_identifier_header(h)}

    rows: list[dict[str, str]] = []
    for values in df.iloc[1:].itertuples(index=False, name=None):
        row = {h: _cell_text(v, identifier=h in id_cols) for h, v in zip(headers, values)}
        if any(row.values()):
            rows.append(row)

    if not rows:
        raise FileParseError("No data found: the file must contain data rows")

    return ParsedFile(headers=headers, data=rows)


def _header_width(content: bytes) -> int:
    text = content.decode("utf-8-sig", errors="replace")
    for fields in csv.reader(io.StringIO(text)):
        if fields:
            return len(fields)
    return 0


def _read_csv(content: bytes) -> pd.DataFrame:
    # Rows longer than the header row (trailing commas) are cut to the header width.
    width = _header_width(content)
    try:
        return pd.read_csv(
            io.BytesIO(content),
            header=None,
            dtype=str,
            keep_default_na=False,
            encoding="utf-8-sig",
            skip_blank_lines=True,
            engine="python",
            on_bad_lines=lambda fields: fields[:width],
        )
    except pd.errors.EmptyDataError:
        raise FileParseError("The CSV file is empty")
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise FileParseError(f"Could not read CSV: {e}")


def _read_excel(content: bytes) -> pd.DataFrame:
    # First worksheet only; dtype=object keeps the raw cell values so big
    # integers are not pushed through float64.
    try:
        return pd.read_excel(io.BytesIO(content), sheet_name=0, header=None, dtype=object)
    except (ValueError, IndexError, KeyError) as e:
        raise FileParseError(f"No readable worksheet found in Excel file: {e}")
    except Exception as e:
        raise FileParseError(f"Excel processing failed: {e}")


def parse_tabular_file(content: bytes, mime_type: str | None, filename: str | None = None) -> ParsedFile:
    """
    Decode an uploaded CSV / Excel buffer.

    Returns headers in file order and one dict per non-empty row. Every value
    is a trimmed string. Raises UnsupportedFileType / FileParseError instead
    of returning an empty result.
    """
    kind = _file_kind(mime_type, filename)
    if not content:
        raise FileParseError("Empty file")

    logger.info("Parsing %s upload %r (%d bytes)", kind, filename, len(content))

    df = _read_csv(content) if kind == "csv" else _read_excel(content)
    parsed = _frame_to_parsed(df, "CSV" if kind == "csv" else "Excel")

    logger.info("Parsed %r: %d columns, %d rows", filename, len(parsed.headers), len(parsed.data))
    return parsed
