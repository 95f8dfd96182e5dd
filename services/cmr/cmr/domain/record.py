"""Immutable values describing one shipment's delivery state.

Records are frozen; every workflow operation returns a new record and leaves
its input untouched, so a rejected operation can never leave a partial write.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional, Tuple

from .states import (
    DeliveryStatus,
    ExceptionAction,
    ExceptionStatus,
    LIVE_EXCEPTION_STATUSES,
    MILESTONE_COUNT,
    MilestoneSlot,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise to an aware UTC datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Milestone:
    slot: MilestoneSlot
    timestamp: Optional[datetime] = None
    note: Optional[str] = None

    @property
    def filled(self) -> bool:
        return self.timestamp is not None

    @property
    def name(self) -> str:
        return self.slot.name


def empty_milestones() -> Tuple[Milestone, ...]:
    return tuple(Milestone(slot) for slot in MilestoneSlot)


def count_leading(milestones: Tuple[Milestone, ...]) -> int:
    """Number of contiguously filled slots from Pickup onward."""
    step = 0
    for milestone in milestones:
        if not milestone.filled:
            break
        step += 1
    return step


@dataclass(frozen=True)
class ExceptionRecord:
    """One entry of the exception audit trail. Never edited once appended."""
    seq: int
    action: ExceptionAction
    note: Optional[str]
    actor: str
    timestamp: datetime
    step: int


@dataclass(frozen=True)
class ExceptionState:
    status: ExceptionStatus
    note: str
    reported_at: datetime
    records: Tuple[ExceptionRecord, ...] = ()

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_EXCEPTION_STATUSES

    @property
    def is_closed(self) -> bool:
        return self.status == ExceptionStatus.CLOSED

    def append(self, action: ExceptionAction, text: Optional[str], actor: str,
               at: datetime, step: int, **changes) -> "ExceptionState":
        """Return a copy with one more trail entry and ``changes`` applied."""
        entry = ExceptionRecord(
            seq=len(self.records) + 1,
            action=action,
            note=text,
            actor=actor,
            timestamp=at,
            step=step,
        )
        return replace(self, records=self.records + (entry,), **changes)


@dataclass(frozen=True)
class ShipmentDeliveryRecord:
    id: str
    delivery_status: DeliveryStatus = DeliveryStatus.NOT_STARTED
    milestones: Tuple[Milestone, ...] = field(default_factory=empty_milestones)
    service_provider: Optional[str] = None
    delivery_address: Optional[str] = None
    exception: Optional[ExceptionState] = None
    completed: bool = False
    completed_at: Optional[datetime] = None
    bill_number: Optional[str] = None
    container_number: Optional[str] = None
    remark: Optional[str] = None
    # 0 until the store has saved the record once
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if len(self.milestones) != MILESTONE_COUNT:
            raise ValueError(f"a delivery record holds exactly {MILESTONE_COUNT} milestones")

    @property
    def current_step(self) -> int:
        return count_leading(self.milestones)

    def milestone(self, slot: int) -> Milestone:
        return self.milestones[int(slot) - 1]

    @property
    def has_live_exception(self) -> bool:
        return self.exception is not None and self.exception.is_live

    @property
    def is_frozen(self) -> bool:
        """Completed and exception-closed records accept no further change."""
        return self.completed or self.delivery_status == DeliveryStatus.EXCEPTION_CLOSED


def derive_status(record: ShipmentDeliveryRecord) -> DeliveryStatus:
    """deliveryStatus as a function of milestones and exception state only."""
    if record.exception is not None:
        if record.exception.is_live:
            return DeliveryStatus.EXCEPTION
        if record.exception.is_closed:
            return DeliveryStatus.EXCEPTION_CLOSED
    step = record.current_step
    if step == MILESTONE_COUNT:
        return DeliveryStatus.DELIVERED
    if step > 0:
        return DeliveryStatus.IN_TRANSIT
    return DeliveryStatus.NOT_STARTED


def with_derived_status(record: ShipmentDeliveryRecord, **changes) -> ShipmentDeliveryRecord:
    updated = replace(record, **changes)
    return replace(updated, delivery_status=derive_status(updated))
