"""Exception sub-workflow attached to a shipment.

An exception interrupts delivery until it is resolved back into the main flow
(``Resolve``/``Continue``) or closes the shipment for good (``Close``). Every
action needs a note and appends to the audit trail; nothing already in the
trail is touched. A resolved exception can still be closed.
"""

from datetime import datetime
from typing import Optional

from .errors import IllegalTransition, MissingRequiredField
from .machine import EXCEPTION_EVENTS, ensure_allowed, ensure_mutable
from .record import ExceptionState, ShipmentDeliveryRecord, ensure_utc, with_derived_status
from .states import ExceptionAction, ExceptionStatus

_NEXT_STATUS = {
    ExceptionAction.FOLLOWUP: ExceptionStatus.FOLLOWING,
    ExceptionAction.RESOLVE: ExceptionStatus.RESOLVED,
    ExceptionAction.CONTINUE: ExceptionStatus.RESOLVED,
    ExceptionAction.CLOSE: ExceptionStatus.CLOSED,
}


def _report(record: ShipmentDeliveryRecord, note: Optional[str], actor: str,
            at: datetime) -> ShipmentDeliveryRecord:
    if record.exception is None:
        opened = ExceptionState(status=ExceptionStatus.REPORTED, note=note, reported_at=at)
    else:
        # a resolved exception is reopened in place so the trail keeps growing
        opened = record.exception
    opened = opened.append(
        ExceptionAction.REPORT, note, actor, at, record.current_step,
        status=ExceptionStatus.REPORTED, note=note, reported_at=at,
    )
    return with_derived_status(record, exception=opened)


def apply_exception_action(
    record: ShipmentDeliveryRecord,
    action: ExceptionAction,
    note: Optional[str],
    actor: str,
    at: datetime,
) -> ShipmentDeliveryRecord:
    action = ExceptionAction(action)
    note = note.strip() if note else None
    at = ensure_utc(at)

    ensure_mutable(record)
    if action == ExceptionAction.REPORT and record.has_live_exception:
        raise IllegalTransition(f"Shipment {record.id} already has an open exception", record.id)
    if action == ExceptionAction.CLOSE:
        if record.exception is None:
            raise IllegalTransition(f"Shipment {record.id} has no exception to close", record.id)
    elif action != ExceptionAction.REPORT and not record.has_live_exception:
        raise IllegalTransition(f"Shipment {record.id} has no open exception to {action.value.lower()}", record.id)
    ensure_allowed(record, EXCEPTION_EVENTS[action])
    if not note:
        raise MissingRequiredField("note", record.id)

    if action == ExceptionAction.REPORT:
        return _report(record, note, actor, at)

    updated = record.exception.append(
        action, note, actor, at, record.current_step, status=_NEXT_STATUS[action],
    )
    return with_derived_status(record, exception=updated)


def exception_history(record: ShipmentDeliveryRecord):
    return record.exception.records if record.exception is not None else ()
