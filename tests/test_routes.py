import io

from openpyxl import load_workbook

MIXED_STATUSES = (
    b"Pickup Warehouse,WayBill Num,Product Name,Status\n"
    b"Acme,1001,Widget,Delivered\n"
    b"Acme,1002,Widget,Cancelled\n"
    b"Beta,1003,Gadget,RTS\n"
)

DELIVERIES = (
    b"Pickup Warehouse,WayBill Num,Product Name,Status,Product Qty,Delivered Date\n"
    b"Acme,2001,Widget,Delivered,3,15-06-2024\n"
    b"Acme,2002,Widget,Delivered,2,16-06-2024\n"
)

NIMBUS = (
    b"Warehouse Name,AWB Number,Product(1),Tracking Status\n"
    b"Gamma,3001,Bolt,Delivered\n"
)


def upload(client, content, name="orders.csv", source="parcelx", temporary="false"):
    resp = client.post(
        "/api/files/upload",
        files={"file": (name, content, "text/csv")},
        data={"source": source, "temporary": temporary},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def ingest(client, content, **kw):
    up = upload(client, content, **kw)
    file_id = up["fileId"]
    resp = client.post(f"/api/files/{file_id}/mapping", json=up["suggestedMapping"])
    assert resp.status_code == 200, resp.text
    resp = client.post(f"/api/files/{file_id}/process")
    assert resp.status_code == 200, resp.text
    return file_id, resp.json()


def test_upload_map_process_and_poll(client):
    up = upload(client, MIXED_STATUSES)
    assert up["fileId"].startswith("file-")
    assert up["totalRows"] == 3
    assert up["missingFields"] == []
    assert up["storageType"] == "database"
    assert len(up["preview"]) == 3

    file_id = up["fileId"]
    assert client.get(f"/api/files/{file_id}/progress").json()["status"] == "pending"

    auto = client.get(f"/api/files/{file_id}/auto-mapping").json()
    assert auto["ready"] is True
    assert auto["mapping"] == up["suggestedMapping"]

    assert client.post(f"/api/files/{file_id}/mapping", json=auto["mapping"]).json()["ok"] is True
    body = client.post(f"/api/files/{file_id}/process").json()

    assert body["success"] is True
    assert body["summary"]["validOrders"] == 2
    assert body["summary"]["cancelledOrders"] == 1
    assert body["summary"]["deliveredOrders"] == 1
    assert body["ordersCreated"] == 2
    assert body["failedBatches"] == []
    assert [c["awb_no"] for c in body["cancelledOrders"]] == ["1002"]

    progress = client.get(f"/api/files/{file_id}/progress").json()
    assert progress["status"] == "completed"
    assert progress["percentage"] == 100

    orders = client.get("/api/orders").json()
    assert sorted(o["awbNo"] for o in orders) == ["1001", "1003"]

    files = client.get("/api/files").json()
    assert files[0]["id"] == file_id
    assert files[0]["summary"]["ordersCreated"] == 2


def test_incomplete_mapping_lists_missing_fields(client):
    up = upload(client, MIXED_STATUSES)
    resp = client.post(f"/api/files/{up['fileId']}/mapping", json={"supplierName": "Pickup Warehouse", "courier": "none"})

    assert resp.status_code == 400
    assert resp.json()["detail"]["missingFields"] == ["awbNo", "productName", "status"]


def test_mapping_to_header_not_in_file_is_400(client):
    up = upload(client, MIXED_STATUSES)
    mapping = dict(up["suggestedMapping"], productName="Item Title")
    resp = client.post(f"/api/files/{up['fileId']}/mapping", json=mapping)

    assert resp.status_code == 400
    assert resp.json()["detail"]["unknownHeaders"] == ["Item Title"]


def test_process_without_mapping_is_rejected(client):
    up = upload(client, MIXED_STATUSES)
    resp = client.post(f"/api/files/{up['fileId']}/process")
    assert resp.status_code == 400


def test_unknown_file_vs_expired_session(client):
    missing = client.post("/api/files/file-0-abc/process")
    assert missing.status_code == 404

    expired = client.post("/api/files/temp-0-abc/process")
    assert expired.status_code == 410
    assert expired.json()["detail"]["action"] == "reupload"

    assert client.get("/api/files/file-0-abc/preview").status_code == 404
    assert client.get("/api/files/temp-0-abc/progress").status_code == 404


def test_unsupported_upload_is_400(client):
    resp = client.post(
        "/api/files/upload",
        files={"file": ("orders.pdf", b"%PDF-1.4", "application/pdf")},
        data={"source": "parcelx"},
    )
    assert resp.status_code == 400


def test_temporary_upload_and_cleanup(client):
    up = upload(client, MIXED_STATUSES, temporary="true")
    assert up["fileId"].startswith("temp-")
    assert up["isTemporary"] is True

    assert client.post("/api/files/cleanup").json()["purged"] == 0
    assert client.post("/api/files/cleanup?retention_seconds=0").json()["purged"] == 1
    assert client.post(f"/api/files/{up['fileId']}/process").status_code == 410


def test_price_entry_crud(client):
    created = client.post(
        "/api/price-entries",
        json={"supplier_name": "Acme", "product_name": "Widget", "price": 118, "gst_rate": 18, "hsn": "6109"},
    ).json()
    assert created["priceBeforeGst"] == 100.0
    assert created["supplierName"] == "Acme"

    entry_id = created["id"]
    updated = client.put(f"/api/price-entries/{entry_id}", json={"price_before_gst": 200}).json()
    assert updated["price"] == 236.0

    rerated = client.put(f"/api/price-entries/{entry_id}", json={"gst_rate": 5}).json()
    assert (rerated["price"], rerated["priceBeforeGst"], rerated["gstRate"]) == (236.0, 224.76, 5.0)

    assert [e["id"] for e in client.get("/api/price-entries").json()] == [entry_id]
    assert client.delete(f"/api/price-entries/{entry_id}").json() == {"ok": True}
    assert client.delete(f"/api/price-entries/{entry_id}").status_code == 404

    bad = client.post("/api/price-entries", json={"product_name": "Widget", "price": -1})
    assert bad.status_code == 400


def test_missing_prices_and_template_export(client):
    ingest(client, MIXED_STATUSES)

    missing = client.get("/api/missing-price-entries").json()
    assert [(m["supplierName"], m["productName"]) for m in missing] == [("Acme", "Widget"), ("Beta", "Gadget")]

    resp = client.get("/api/export/missing-price-entries")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/vnd.openxmlformats")

    ws = load_workbook(io.BytesIO(resp.content))["Missing Prices"]
    assert ws["A1"].value == "Supplier Name"
    assert ws["A2"].value == "Acme"
    assert ws["G2"].value == "=E2*(1+F2/100)"

    suppliers = client.get("/api/suppliers/with-missing-prices?sortBy=name&sortOrder=asc").json()
    assert [s["name"] for s in suppliers] == ["Acme", "Beta"]


def test_bulk_price_upload(client):
    ingest(client, MIXED_STATUSES)
    sheet = (
        b"Supplier Name,Product Name,Price Before GST (INR),GST Rate (%),Price After GST (INR)\n"
        b"Acme,Widget,100,18,\n"
        b",Gadget,50,18,\n"
    )
    resp = client.post("/api/price-entries/bulk-upload", files={"file": ("prices.csv", sheet, "text/csv")})
    body = resp.json()

    assert body["created"] == 1
    assert body["errors"][0].startswith("Row 3:")
    assert [m["productName"] for m in client.get("/api/missing-price-entries").json()] == ["Gadget"]


def test_calculate_payouts_and_exports(client):
    ingest(client, DELIVERIES)
    client.post("/api/price-entries", json={"supplier_name": "Acme", "product_name": "Widget", "price": 59, "price_before_gst": 50})

    window = {"dateFrom": "2024-06-01", "dateTo": "2024-06-30"}
    body = client.post("/api/calculate-payouts", json=window).json()
    assert body["summary"]["totalPreGstAmount"] == 250
    assert body["summary"]["totalGstAmount"] == 45
    assert body["summary"]["totalPostGstAmount"] == 295
    assert len(body["payouts"]) == 2

    accounts = client.post("/api/payouts/order-accounts", json=window).json()
    assert accounts["accounts"][0]["orderAccount"] == "Unknown Account"

    by_supplier = client.post("/api/payouts/suppliers", json=window).json()
    assert by_supplier[0]["totalPostGst"] == 295

    csv_resp = client.post("/api/export/payouts", json=window)
    lines = csv_resp.text.strip().splitlines()
    assert lines[0].startswith("AWB No,Supplier")
    assert len(lines) == 3

    stats = client.get("/api/dashboard/stats").json()
    assert stats["totalOrders"] == 2
    assert stats["deliveredOrders"] == 2


def test_invoice_generation(client):
    ingest(client, DELIVERIES)
    client.post("/api/price-entries", json={"supplier_name": "Acme", "product_name": "Widget", "price": 118})

    payload = {
        "suppliers": ["Acme"],
        "dateFrom": "2024-06-01",
        "dateTo": "2024-06-30",
        "dateType": "deliveredDate",
        "buyerName": "House Retail",
        "buyerGSTIN": "29ABCDE1234F1Z5",
        "buyerAddress": "Bengaluru",
    }
    inv = client.post("/api/invoices/generate", json=payload).json()
    assert inv["invoiceNumber"].startswith("GST-ACME-")
    assert inv["totalAmountBeforeGST"] == 500.0
    assert inv["supplierGSTIN"] == "N/A"

    payload["dateFrom"], payload["dateTo"] = "2023-01-01", "2023-01-31"
    assert client.post("/api/invoices/generate", json=payload).status_code == 404


def test_reconciliation_updates_statuses(client):
    ingest(client, DELIVERIES)
    client.post("/api/price-entries", json={"supplier_name": "Acme", "product_name": "Widget", "price": 118})

    result = client.post(
        "/api/reconciliation/process",
        json={"orders": [{"awbNo": "2001", "status": "RTS"}, {"awbNo": "9999", "status": "RTS"}]},
    ).json()
    assert result["updated"] == 1
    assert result["notFound"] == 1
    assert result["totalImpact"] == -300.0

    logs = client.get("/api/reconciliation/logs?awb_no=2001").json()
    assert logs[0]["previousStatus"] == "Delivered"


def test_clear_orders_by_source(client):
    ingest(client, MIXED_STATUSES)
    ingest(client, NIMBUS, name="nimbus.csv", source="nimbus")
    assert len(client.get("/api/orders").json()) == 3

    resp = client.delete("/api/orders/clear-all?source=nimbus").json()
    assert resp["deleted"] == 1
    remaining = client.get("/api/orders").json()
    assert {o["source"] for o in remaining} == {"parcelx"}

    assert client.delete("/api/orders/clear-all").json()["deleted"] == 2
    assert client.get("/api/suppliers").json() != []


def test_supplier_order_account(client):
    ingest(client, MIXED_STATUSES)
    acme = next(s for s in client.get("/api/suppliers").json() if s["name"] == "Acme")

    resp = client.patch(f"/api/suppliers/{acme['id']}/order-account", json={"orderAccount": "acme@shop"})
    assert resp.json()["supplier"]["orderAccount"] == "acme@shop"
    assert client.patch("/api/suppliers/nope/order-account", json={"orderAccount": "x"}).status_code == 404


def test_gst_data_upload(client):
    ingest(client, MIXED_STATUSES)
    sheet = (
        b"GSTIN,Trade Name,Address\n"
        b"27AAACA1234A1Z1,Acme Industries,Pune\n"
        b"SHORT,Nobody,Nowhere\n"
        b"29BBBBB0000B1Z2,Delta Goods,Mysuru\n"
    )
    body = client.post("/api/suppliers/gst-data", files={"file": ("gst.csv", sheet, "text/csv")}).json()
    assert (body["updated"], body["created"], body["skipped"]) == (1, 1, 1)

    by_name = {s["name"]: s for s in client.get("/api/suppliers").json()}
    assert by_name["Acme"]["gstin"] == "27AAACA1234A1Z1"
    assert by_name["Delta Goods"]["address"] == "Mysuru"


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
    assert client.get("/").json()["status"] == "ok"
