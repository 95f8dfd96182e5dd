"""Milestone ledger.

Slots are filled strictly in order and never rewritten. Replaying a filled
slot with identical values is a no-op; anything else out of sequence fails
with ``OutOfOrderMilestone``.
"""

from datetime import datetime
from typing import Optional

from .errors import IllegalTransition, MissingRequiredField, OutOfOrderMilestone
from .machine import ensure_allowed, ensure_mutable, milestone_event
from .record import Milestone, ShipmentDeliveryRecord, ensure_utc, with_derived_status
from .states import MILESTONE_COUNT, MilestoneSlot


def _clean(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    text = text.strip()
    return text or None


def is_replay(record: ShipmentDeliveryRecord, slot: int, timestamp: Optional[datetime],
              note: Optional[str]) -> bool:
    """True when ``slot`` is already filled with exactly these values."""
    if not 1 <= int(slot) <= record.current_step:
        return False
    existing = record.milestone(slot)
    return existing.timestamp == ensure_utc(timestamp) and existing.note == _clean(note)


def _merge_descriptive(record: ShipmentDeliveryRecord, name: str, value: Optional[str]) -> Optional[str]:
    current = getattr(record, name)
    value = _clean(value)
    if value is None:
        return current
    if current is not None and current != value:
        raise IllegalTransition(
            f"{name} of shipment {record.id} is already set to {current!r} and cannot change",
            record.id,
        )
    return value


def record_milestone(
    record: ShipmentDeliveryRecord,
    slot: int,
    timestamp: Optional[datetime],
    note: Optional[str] = None,
    service_provider: Optional[str] = None,
    delivery_address: Optional[str] = None,
) -> ShipmentDeliveryRecord:
    """Fill milestone ``slot`` and return the updated record.

    The same record object is returned for an idempotent replay, which lets
    callers skip the save.
    """
    ensure_mutable(record)
    if is_replay(record, slot, timestamp, note):
        return record

    step = record.current_step
    if int(slot) != step + 1 or int(slot) > MILESTONE_COUNT:
        raise OutOfOrderMilestone(int(slot), step, record.id)
    ensure_allowed(record, milestone_event(slot))
    if timestamp is None:
        raise MissingRequiredField("timestamp", record.id)

    slot = MilestoneSlot(int(slot))
    milestones = list(record.milestones)
    milestones[slot - 1] = Milestone(slot, ensure_utc(timestamp), _clean(note))

    return with_derived_status(
        record,
        milestones=tuple(milestones),
        service_provider=_merge_descriptive(record, "service_provider", service_provider),
        delivery_address=_merge_descriptive(record, "delivery_address", delivery_address),
    )


def next_slot(record: ShipmentDeliveryRecord) -> Optional[MilestoneSlot]:
    step = record.current_step
    return MilestoneSlot(step + 1) if step < MILESTONE_COUNT else None
