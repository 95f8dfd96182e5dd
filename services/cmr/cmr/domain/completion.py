"""Completion gate: one-way administrative closure of a delivered shipment."""

from dataclasses import replace
from datetime import datetime

from .errors import AlreadyCompleted, NotDeliverable
from .machine import Event, ensure_allowed
from .record import ShipmentDeliveryRecord, ensure_utc


def mark_completed(record: ShipmentDeliveryRecord, at: datetime) -> ShipmentDeliveryRecord:
    if record.completed:
        raise AlreadyCompleted(f"Shipment {record.id} is already completed", record.id)
    ensure_allowed(record, Event.MARK_COMPLETED, NotDeliverable)
    return replace(record, completed=True, completed_at=ensure_utc(at))
