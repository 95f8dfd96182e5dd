"""Pure transition function of the delivery workflow.

``apply(record, command)`` is the only way a record changes. It returns a
``Transition`` with the new record, or raises a ``DeliveryError`` and leaves
the input record as it was. Storage and HTTP layers both go through here.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from .completion import mark_completed
from .events import DeliveryStatusChanged
from .exception_flow import apply_exception_action
from .ledger import record_milestone
from .machine import crosses_exception_boundary
from .record import ShipmentDeliveryRecord, ensure_utc, utcnow
from .states import DeliveryStatus, ExceptionAction, MilestoneSlot


@dataclass(frozen=True)
class RecordMilestone:
    slot: int
    timestamp: Optional[datetime]
    note: Optional[str] = None
    service_provider: Optional[str] = None
    delivery_address: Optional[str] = None

    @property
    def operation(self) -> str:
        try:
            return f"milestone:{MilestoneSlot(int(self.slot)).name.lower()}"
        except ValueError:
            return f"milestone:{self.slot}"


@dataclass(frozen=True)
class ApplyExceptionAction:
    action: ExceptionAction
    note: Optional[str] = None
    actor: Optional[str] = None

    @property
    def operation(self) -> str:
        return f"exception:{ExceptionAction(self.action).value.lower()}"


@dataclass(frozen=True)
class MarkCompleted:
    operation = "complete"


Command = Union[RecordMilestone, ApplyExceptionAction, MarkCompleted]

SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class Transition:
    record: ShipmentDeliveryRecord
    previous: ShipmentDeliveryRecord
    operation: str
    at: datetime

    @property
    def changed(self) -> bool:
        return self.record is not self.previous

    @property
    def from_status(self) -> DeliveryStatus:
        return self.previous.delivery_status

    @property
    def to_status(self) -> DeliveryStatus:
        return self.record.delivery_status

    def status_event(self) -> Optional[DeliveryStatusChanged]:
        if not crosses_exception_boundary(self.from_status, self.to_status):
            return None
        return DeliveryStatusChanged(
            shipment_id=self.record.id,
            from_status=self.from_status,
            to_status=self.to_status,
            timestamp=self.at,
        )


def apply(record: ShipmentDeliveryRecord, command: Command,
          at: Optional[datetime] = None) -> Transition:
    at = ensure_utc(at) or utcnow()

    if isinstance(command, RecordMilestone):
        updated = record_milestone(
            record,
            command.slot,
            command.timestamp,
            command.note,
            service_provider=command.service_provider,
            delivery_address=command.delivery_address,
        )
    elif isinstance(command, ApplyExceptionAction):
        updated = apply_exception_action(
            record, command.action, command.note, command.actor or SYSTEM_ACTOR, at,
        )
    elif isinstance(command, MarkCompleted):
        updated = mark_completed(record, at)
    else:
        raise TypeError(f"unsupported command {command!r}")

    return Transition(record=updated, previous=record, operation=command.operation, at=at)
