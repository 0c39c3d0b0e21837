# payout_recon/statuses.py
# Shipment status tags. Orders keep the raw text; logic compares tags.

from __future__ import annotations

from enum import Enum


class ShipmentStatus(str, Enum):
    DELIVERED = "Delivered"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    RTS = "RTS"
    RTO = "RTO"
    LOST = "Lost"
    PENDING = "Pending"
    UNRECOGNIZED = "Unrecognized"


_EXACT = {
    "delivered": ShipmentStatus.DELIVERED,
    "completed": ShipmentStatus.COMPLETED,
    "cancelled": ShipmentStatus.CANCELLED,
    "rts": ShipmentStatus.RTS,
    "rto": ShipmentStatus.RTO,
    "returned": ShipmentStatus.RTO,
    "lost": ShipmentStatus.LOST,
    "pending": ShipmentStatus.PENDING,
    "in transit": ShipmentStatus.PENDING,
    "out for delivery": ShipmentStatus.PENDING,
    "shipped": ShipmentStatus.PENDING,
    "manifested": ShipmentStatus.PENDING,
    "pickup scheduled": ShipmentStatus.PENDING,
    "picked up": ShipmentStatus.PENDING,
}

PAYABLE = frozenset({ShipmentStatus.DELIVERED, ShipmentStatus.COMPLETED})
EXCLUDED = frozenset({ShipmentStatus.CANCELLED, ShipmentStatus.RTO, ShipmentStatus.LOST})
RETURNED = frozenset({ShipmentStatus.RTS, ShipmentStatus.RTO})


def classify(raw: str | None) -> ShipmentStatus:
    s = " ".join(str(raw or "").strip().lower().replace("_", " ").split())
    if not s:
        return ShipmentStatus.UNRECOGNIZED
    if s in _EXACT:
        return _EXACT[s]
    # Nimbus exports "RTO Delivered", "RTO In Transit", ...
    if s.startswith("rto "):
        return ShipmentStatus.RTO
    if s.startswith("rts "):
        return ShipmentStatus.RTS
    return ShipmentStatus.UNRECOGNIZED


def is_payable(raw: str | None) -> bool:
    return classify(raw) in PAYABLE


def is_cancelled(raw: str | None) -> bool:
    return classify(raw) is ShipmentStatus.CANCELLED
