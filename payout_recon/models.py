# payout_recon/models.py

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from payout_recon.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Supplier(Base):
    __tablename__ = "suppliers"

    id = Column(String, primary_key=True, default=_uuid)

    # matching key for uploads and price lists (case-sensitive)
    name = Column(String, unique=True, nullable=False, index=True)

    # billing / email account used to group payouts
    order_account = Column(String, nullable=True)

    # GST details for invoices
    gstin = Column(String, nullable=True)
    trade_name = Column(String, nullable=True)
    address = Column(Text, nullable=True)
    ship_to_address = Column(Text, nullable=True)
    place_of_supply = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    orders = relationship("Order", back_populates="supplier")
    price_entries = relationship("PriceEntry", back_populates="supplier")


class UploadedFile(Base):
    __tablename__ = "uploaded_files"

    # "file-…" for kept uploads, "temp-…" for session uploads
    id = Column(String, primary_key=True)

    filename = Column(String, nullable=False)
    size = Column(Integer, nullable=False)
    mime_type = Column(String, nullable=False)
    source = Column(String, nullable=True)
    is_temporary = Column(Boolean, nullable=False, default=False)

    # raw parsed rows; cleared once processed or when too large to store
    data = Column(JSON, nullable=True)
    headers = Column(JSON, nullable=True)
    column_mapping = Column(JSON, nullable=True)
    summary = Column(JSON, nullable=True)

    uploaded_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=_uuid)

    # expected unique per shipment, not enforced (reconciliation handles repeats)
    awb_no = Column(String, nullable=False, index=True)

    supplier_id = Column(String, ForeignKey("suppliers.id"), nullable=True, index=True)
    supplier = relationship("Supplier", back_populates="orders")

    product_name = Column(String, nullable=False)
    courier = Column(String, nullable=True)
    qty = Column(Integer, nullable=False, default=1)
    currency = Column(String, nullable=True, default="INR")

    # free text as exported by the courier platform
    status = Column(String, nullable=False)
    previous_status = Column(String, nullable=True)

    order_account = Column(String, nullable=True)

    channel_order_date = Column(DateTime, nullable=True)
    order_date = Column(DateTime, nullable=True)
    delivered_date = Column(DateTime, nullable=True)
    rts_date = Column(DateTime, nullable=True)

    # null for temporary uploads
    file_id = Column(String, ForeignKey("uploaded_files.id"), nullable=True, index=True)
    source = Column(String, nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_orders_supplier_product", "supplier_id", "product_name"),
    )


class PriceEntry(Base):
    __tablename__ = "price_entries"

    id = Column(String, primary_key=True, default=_uuid)

    # null = orphaned entry, only reachable through the product-name fallback
    supplier_id = Column(String, ForeignKey("suppliers.id"), nullable=True, index=True)
    supplier = relationship("Supplier", back_populates="price_entries")

    product_name = Column(String, nullable=False, index=True)
    currency = Column(String, nullable=False, default="INR")

    # unit price after GST; 0 is a deliberate price
    price = Column(Float, nullable=False)
    price_before_gst = Column(Float, nullable=False)
    gst_rate = Column(Float, nullable=False, default=18.0)
    hsn = Column(String, nullable=False, default="")

    effective_from = Column(DateTime, nullable=False, default=datetime.utcnow)
    effective_to = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class ReconciliationLog(Base):
    __tablename__ = "reconciliation_log"

    id = Column(String, primary_key=True, default=_uuid)

    awb_no = Column(String, nullable=False, index=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=True)

    previous_status = Column(String, nullable=True)
    new_status = Column(String, nullable=False)
    impact = Column(Float, nullable=False, default=0.0)
    note = Column(Text, nullable=True)

    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
