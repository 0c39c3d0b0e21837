# payout_recon/exports.py
# Download encoders: missing-price Excel template, payout CSV

from __future__ import annotations

import csv as csv_mod
import io

import pandas as pd

TEMPLATE_HEADERS = [
    "Supplier Name",
    "Product Name",
    "Order Count",
    "Supplier Product ID",
    "Price Before GST (INR)",
    "GST Rate (%)",
    "Price After GST (INR)",
    "HSN Code",
    "Currency",
    "Effective From (YYYY-MM-DD)",
    "Effective To (YYYY-MM-DD)",
]

PAYOUT_HEADERS = [
    ("AWB No", "awbNo"),
    ("Supplier", "supplierName"),
    ("Order Account", "orderAccount"),
    ("Product", "productName"),
    ("HSN", "hsn"),
    ("Status", "status"),
    ("Qty", "qty"),
    ("Currency", "currency"),
    ("Order Date", "orderDate"),
    ("Delivered Date", "deliveredDate"),
    ("Unit Price Before GST", "unitPriceBeforeGst"),
    ("GST Rate (%)", "gstRate"),
    ("Line Amount", "lineAmount"),
    ("GST Amount", "gstAmount"),
    ("Total With GST", "totalWithGst"),
]


def missing_price_template_xlsx(missing: list[dict], effective_from: str = "") -> bytes:
    """
    Fill-in template for the bulk price upload. Price After GST is a formula
    over the two price columns so the sheet stays consistent while editing.
    """
    rows = []
    for i, m in enumerate(missing, start=2):
        rows.append([
            m.get("supplierName") or "",
            m.get("productName") or "",
            m.get("orderCount", 0),
            m.get("supplierProductId") or "",
            None,
            18,
            f"=E{i}*(1+F{i}/100)",
            "",
            "INR",
            effective_from,
            "",
        ])
    df = pd.DataFrame(rows, columns=TEMPLATE_HEADERS)

    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name="Missing Prices")
        ws = writer.sheets["Missing Prices"]
        for col, width in zip("ABCDEFGHIJK", (28, 36, 12, 40, 20, 12, 20, 12, 10, 24, 24)):
            ws.column_dimensions[col].width = width
    return buf.getvalue()


def payout_lines_csv(lines: list[dict]) -> str:
    output = io.StringIO()
    writer = csv_mod.writer(output)
    writer.writerow([h for h, _ in PAYOUT_HEADERS])
    for l in lines:
        writer.writerow(["" if l.get(k) is None else l.get(k) for _, k in PAYOUT_HEADERS])
    return output.getvalue()
