"""Delivery state machine.

Single source of truth for which events each delivery status accepts. The
concrete effect of each event lives in ``ledger``, ``exception_flow`` and
``completion``; they all consult this table before writing anything.
"""

from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional

from .errors import DeliveryError, IllegalTransition, RecordLocked
from .record import ShipmentDeliveryRecord
from .states import DeliveryStatus, ExceptionAction, MilestoneSlot


class Event(str, Enum):
    RECORD_PICKUP = "RecordPickup"
    RECORD_MILESTONE = "RecordMilestone"
    REPORT_EXCEPTION = "ReportException"
    FOLLOWUP = "Followup"
    RESOLVE = "Resolve"
    CONTINUE = "Continue"
    CLOSE = "Close"
    MARK_COMPLETED = "MarkCompleted"


TRANSITIONS: Dict[DeliveryStatus, FrozenSet[Event]] = {
    DeliveryStatus.NOT_STARTED: frozenset({Event.RECORD_PICKUP}),
    # Close from InTransit/Delivered ends an exception that was already resolved
    DeliveryStatus.IN_TRANSIT: frozenset({Event.RECORD_MILESTONE, Event.REPORT_EXCEPTION, Event.CLOSE}),
    DeliveryStatus.EXCEPTION: frozenset({Event.FOLLOWUP, Event.RESOLVE, Event.CONTINUE, Event.CLOSE}),
    DeliveryStatus.DELIVERED: frozenset({Event.MARK_COMPLETED, Event.CLOSE}),
    DeliveryStatus.EXCEPTION_CLOSED: frozenset(),
}

EXCEPTION_EVENTS = {
    ExceptionAction.REPORT: Event.REPORT_EXCEPTION,
    ExceptionAction.FOLLOWUP: Event.FOLLOWUP,
    ExceptionAction.RESOLVE: Event.RESOLVE,
    ExceptionAction.CONTINUE: Event.CONTINUE,
    ExceptionAction.CLOSE: Event.CLOSE,
}


def milestone_event(slot: int) -> Event:
    return Event.RECORD_PICKUP if int(slot) == MilestoneSlot.PICKUP else Event.RECORD_MILESTONE


def is_allowed(status: DeliveryStatus, event: Event) -> bool:
    return event in TRANSITIONS.get(status, frozenset())


def ensure_mutable(record: ShipmentDeliveryRecord) -> None:
    if record.completed:
        raise RecordLocked(f"Shipment {record.id} is completed and can no longer change", record.id)
    if record.delivery_status == DeliveryStatus.EXCEPTION_CLOSED:
        raise RecordLocked(f"Shipment {record.id} was closed on exception and is frozen", record.id)


def ensure_allowed(
    record: ShipmentDeliveryRecord,
    event: Event,
    error: Optional[Callable[[str, str], DeliveryError]] = None,
) -> None:
    """Reject ``event`` unless the table lists it for the record's status."""
    if is_allowed(record.delivery_status, event):
        return
    message = f"{event.value} is not allowed while shipment {record.id} is {record.delivery_status.value}"
    raise (error or IllegalTransition)(message, record.id)


def crosses_exception_boundary(before: DeliveryStatus, after: DeliveryStatus) -> bool:
    """True for transitions into or out of Exception."""
    return before != after and DeliveryStatus.EXCEPTION in (before, after)
