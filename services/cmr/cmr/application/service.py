from collections import Counter
from datetime import datetime
import threading
from typing import Callable, Dict, List, Optional, Tuple
from cmr.application.locking import KeyedLock, shipment_locks
from cmr.application.ports import EventPublisher, RecordStore
from cmr.domain.errors import DeliveryError
from cmr.domain.events import OperationLogEntry
from cmr.domain.exception_flow import exception_history
from cmr.domain.record import ShipmentDeliveryRecord, utcnow
from cmr.domain.states import CATEGORY_STATUSES, ExceptionAction, ListCategory
from cmr.domain.workflow import (
    ApplyExceptionAction,
    Command,
    MarkCompleted,
    RecordMilestone,
    SYSTEM_ACTOR,
    apply,
)
from shared.core import get_logger, shipment_context

logger = get_logger(__name__)


class WorkflowMetrics:
    """Process-wide counters exposed on /metrics"""

    def __init__(self):
        self._lock = threading.Lock()
        self.applied: Counter = Counter()
        self.rejected: Counter = Counter()
        self.noops = 0

    def record_applied(self, operation: str) -> None:
        with self._lock:
            self.applied[operation] += 1

    def record_rejected(self, code: str) -> None:
        with self._lock:
            self.rejected[code] += 1

    def record_noop(self) -> None:
        with self._lock:
            self.noops += 1

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "transitions_applied": dict(self.applied),
                "transitions_rejected": dict(self.rejected),
                "idempotent_replays": self.noops,
            }


workflow_metrics = WorkflowMetrics()


class DeliveryService:
    def __init__(
        self,
        store: RecordStore,
        publisher: Optional[EventPublisher] = None,
        locks: Optional[KeyedLock] = None,
        default_actor: str = SYSTEM_ACTOR,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.publisher = publisher
        self.locks = locks or shipment_locks
        self.default_actor = default_actor
        self.clock = clock

    def register(
        self,
        shipment_id: str,
        bill_number: Optional[str] = None,
        container_number: Optional[str] = None,
        remark: Optional[str] = None,
    ) -> ShipmentDeliveryRecord:
        """Create the NotStarted record of a shipment entering the transport system."""
        record = ShipmentDeliveryRecord(
            id=shipment_id,
            bill_number=bill_number,
            container_number=container_number,
            remark=remark,
        )
        with self.locks.hold(shipment_id), shipment_context(shipment_id):
            saved = self.store.add_record(record)
        logger.info("Shipment registered", extra={'extra_fields': {'shipment_id': shipment_id}})
        return saved

    def get_snapshot(self, shipment_id: str) -> ShipmentDeliveryRecord:
        return self.store.load_record(shipment_id)

    def get_snapshots(
        self, shipment_ids: List[str]
    ) -> List[Tuple[str, Optional[ShipmentDeliveryRecord], Optional[DeliveryError]]]:
        """One independent read per shipment; a failing id never aborts the batch."""
        results = []
        for shipment_id in shipment_ids:
            try:
                results.append((shipment_id, self.store.load_record(shipment_id), None))
            except DeliveryError as exc:
                results.append((shipment_id, None, exc))
        return results

    def record_milestone(
        self,
        shipment_id: str,
        slot: int,
        timestamp: Optional[datetime],
        note: Optional[str] = None,
        service_provider: Optional[str] = None,
        delivery_address: Optional[str] = None,
        actor: Optional[str] = None,
        remark: Optional[str] = None,
    ) -> ShipmentDeliveryRecord:
        command = RecordMilestone(
            slot=slot,
            timestamp=timestamp,
            note=note,
            service_provider=service_provider,
            delivery_address=delivery_address,
        )
        return self._execute(shipment_id, command, actor, remark)

    def apply_exception_action(
        self,
        shipment_id: str,
        action: ExceptionAction,
        note: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> ShipmentDeliveryRecord:
        actor = actor or self.default_actor
        command = ApplyExceptionAction(action=ExceptionAction(action), note=note, actor=actor)
        return self._execute(shipment_id, command, actor, note)

    def mark_completed(
        self, shipment_id: str, actor: Optional[str] = None, remark: Optional[str] = None
    ) -> ShipmentDeliveryRecord:
        return self._execute(shipment_id, MarkCompleted(), actor, remark)

    def exception_history(self, shipment_id: str):
        return exception_history(self.store.load_record(shipment_id))

    def operation_log(self, shipment_id: str) -> List[OperationLogEntry]:
        self.store.load_record(shipment_id)
        return self.store.operation_log(shipment_id)

    def list(self, category: ListCategory, limit: int = 20, offset: int = 0):
        return self.store.list_records(CATEGORY_STATUSES[ListCategory(category)], limit, offset)

    def stats(self) -> Dict[str, object]:
        return self.store.stats()

    def _execute(
        self, shipment_id: str, command: Command, actor: Optional[str], remark: Optional[str]
    ) -> ShipmentDeliveryRecord:
        actor = actor or self.default_actor
        log = logger.bind(operation=command.operation, actor=actor)
        with self.locks.hold(shipment_id), shipment_context(shipment_id):
            try:
                current = self.store.load_record(shipment_id)
                transition = apply(current, command, at=self.clock())
                if not transition.changed:
                    workflow_metrics.record_noop()
                    log.info(f"Replay of {command.operation} ignored")
                    return current
                entry = OperationLogEntry(
                    shipment_id=shipment_id,
                    operation=command.operation,
                    from_status=transition.from_status,
                    to_status=transition.to_status,
                    actor=actor,
                    remark=remark,
                    occurred_at=transition.at,
                )
                saved = self.store.save_record(transition.record, current.version, entry)
            except DeliveryError as exc:
                workflow_metrics.record_rejected(exc.code)
                log.warning(
                    f"Rejected {command.operation}: {exc.message}",
                    extra={'extra_fields': {'code': exc.code}},
                )
                raise

        workflow_metrics.record_applied(command.operation)
        log.info(
            f"Applied {command.operation}",
            extra={'extra_fields': {
                'shipment_id': shipment_id,
                'from_status': transition.from_status.value,
                'to_status': transition.to_status.value,
                'current_step': saved.current_step,
                'version': saved.version,
            }},
        )
        event = transition.status_event()
        if event is not None and self.publisher is not None:
            # the operation is committed by now
            try:
                self.publisher.publish(event)
            except Exception:
                log.warning(
                    f"Notification for {shipment_id} failed",
                    exc_info=True,
                    extra={'extra_fields': {'to_status': event.to_status.value}},
                )
        return saved
